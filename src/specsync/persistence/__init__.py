"""Document store and writer."""

from specsync.persistence.store import ConflictError, DocumentWriteError, FileDocumentStore
from specsync.persistence.writer import DocumentValidationError, WriteOutcome, Writer

__all__ = [
    "ConflictError",
    "DocumentValidationError",
    "DocumentWriteError",
    "FileDocumentStore",
    "WriteOutcome",
    "Writer",
]
