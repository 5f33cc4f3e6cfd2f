"""Failure taxonomy shared by every datastore."""


class DatastoreError(Exception):
    """Base error for all datastore failures."""

    code = "ERR_DATASTORE"
    default_message = "Datastore error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class NotFoundError(DatastoreError, KeyError):
    """Raised by get() when the key is absent."""

    code = "ERR_NOT_FOUND"
    default_message = "Not Found"

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return Exception.__str__(self)


class AbortedError(DatastoreError):
    """Raised when an operation is cancelled through its abort signal."""

    code = "ERR_ABORTED"
    default_message = "Aborted"


class DatastoreClosedError(DatastoreError):
    """Raised when an operation is issued against a closed datastore."""

    code = "ERR_DB_CLOSED"
    default_message = "Datastore is closed"


class BackendError(DatastoreError):
    """
    Operational failure reported by a backend. The underlying exception,
    when there is one, is available as `cause` (and as __cause__ when
    raised with `raise ... from`).
    """

    def __init__(
        self,
        message: str | None = None,
        cause: BaseException | None = None
    ) -> None:
        if message is None and cause is not None:
            message = f"{self.default_message}: {cause}"
        super().__init__(message)
        self.cause = cause


class OpenFailedError(BackendError):
    code = "ERR_DB_OPEN_FAILED"
    default_message = "Cannot open database"


class ReadFailedError(BackendError):
    code = "ERR_DB_READ_FAILED"
    default_message = "Read failed"


class WriteFailedError(BackendError):
    code = "ERR_DB_WRITE_FAILED"
    default_message = "Write failed"


class DeleteFailedError(BackendError):
    code = "ERR_DB_DELETE_FAILED"
    default_message = "Delete failed"


class NoCoveringMountError(DatastoreError):
    """Raised by the mount router when no mount prefix covers a key."""

    code = "ERR_NO_MOUNT"
    default_message = "No datastore mounted for this key"

    def __init__(self, key: object = None) -> None:
        self.key = key
        message = None
        if key is not None:
            message = f"No datastore mounted for key {key}"
        super().__init__(message)


class InvalidShardEncodingError(DatastoreError):
    """Raised when a persisted shard function descriptor cannot be parsed."""

    code = "ERR_INVALID_SHARD"
    default_message = "Invalid shard function encoding"


class InvalidKeyError(DatastoreError, ValueError):
    """Raised for key strings that are not valid keys."""

    code = "ERR_INVALID_KEY"
    default_message = "Invalid key"
