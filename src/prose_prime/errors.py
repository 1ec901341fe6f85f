class ProsePrimeError(Exception):
    """Base class for every error raised by prose_prime."""


class InvalidInputError(ProsePrimeError, ValueError):
    """A required request field is missing or blank."""


class SessionNotFoundError(ProsePrimeError, LookupError):
    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class GenerationError(ProsePrimeError):
    """The coach model could not produce a usable answer.

    Always recovered locally by falling back to a deterministic reply.
    """


class PersistenceError(ProsePrimeError):
    """The session backend could not be read or written."""
