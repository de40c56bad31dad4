"""Phase orchestration for poster extraction."""

from src.pipeline.iterative_processor import IterativeProcessor
from src.pipeline.phase_manager import PhaseManager
from src.pipeline.progress_tracker import ProgressTracker

__all__ = [
    "IterativeProcessor",
    "PhaseManager",
    "ProgressTracker",
]
