"""Package exceptions."""


class MemoryKGError(Exception):
    """Base exception for memory-kg errors."""
    pass


class LLMNotReadyError(MemoryKGError):
    """Raised when a stage needs the LLM but it reports not ready."""
    pass


class ResponseParseError(MemoryKGError):
    """Raised when an LLM response cannot be parsed by any strategy."""
    pass


class PersistenceValidationError(MemoryKGError):
    """Raised when an ingestion lacks the identifiers needed to persist it."""
    pass


class StorageError(MemoryKGError):
    """Raised when a storage operation fails."""
    pass


class UnknownJobKindError(MemoryKGError):
    """Raised when a job kind has no registered factory."""
    pass


class JobValidationError(MemoryKGError):
    """Raised when a job payload or result fails validation."""
    pass
