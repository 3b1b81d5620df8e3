"""Search domain exports."""

from .history import SearchHistoryStore
from .service import SearchService

__all__ = [
	"SearchHistoryStore",
	"SearchService",
]
