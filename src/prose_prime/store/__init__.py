from prose_prime.store.backends import InMemoryBackend, RecordBackend, SqliteBackend
from prose_prime.store.session_store import DEFAULT_JURISDICTION, DEFAULT_TRACK, SessionStore

__all__ = [
    "DEFAULT_JURISDICTION",
    "DEFAULT_TRACK",
    "InMemoryBackend",
    "RecordBackend",
    "SessionStore",
    "SqliteBackend",
]
