"""Allow ``python -m src.cli`` execution."""

import sys

from src.cli.extract import main

sys.exit(main())
