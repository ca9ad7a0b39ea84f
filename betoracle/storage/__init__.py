from .db import DatabaseManager
from .cache import AnalysisCache

__all__ = [
    "DatabaseManager",
    "AnalysisCache",
]
