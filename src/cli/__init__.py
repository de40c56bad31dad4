"""Command-line tools for posterExtract.

- ``python -m src.cli.extract`` (or ``python -m src.cli``) runs poster
  images through the extraction pipeline and prints a report or JSON.
"""
