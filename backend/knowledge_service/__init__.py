"""
Knowledge Service - Islamic knowledge base ingestion

Fetches the Quran and the major hadith collections, normalizes them into one
canonical corpus, and loads it into MongoDB and Qdrant with resumable batches.
"""

from .data_ingestion.loader import ResumableLoader
from .config.settings import settings

__version__ = "0.1.0"
__all__ = ["ResumableLoader", "settings"]
