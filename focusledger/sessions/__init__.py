"""Session store package."""

from .store import SessionStore, SessionFilter, DEFAULT_PAGE_SIZE

__all__ = ["SessionStore", "SessionFilter", "DEFAULT_PAGE_SIZE"]
