class ORMError(Exception):
    """Base class for all CRM ORM exceptions."""


class UnknownEntityTypeError(ORMError, LookupError):
    """Raised when an entity type has no registered metadata."""


class StorageError(ORMError, RuntimeError):
    """Raised when the storage backend fails to execute a mapper operation."""


class TableLockError(ORMError, RuntimeError):
    """Raised when a table lock is acquired twice by the same repository."""


class CollectionConsumedError(ORMError, RuntimeError):
    """Raised when a streamed collection is iterated a second time."""
