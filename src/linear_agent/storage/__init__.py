"""Storage abstractions for the session journal."""

from .chroma import ChromaJournal, JournalEvent, JournalUnavailableError
from .models import ProjectMappingRecord, SessionSummary

__all__ = [
    "ChromaJournal",
    "JournalEvent",
    "JournalUnavailableError",
    "ProjectMappingRecord",
    "SessionSummary",
]
