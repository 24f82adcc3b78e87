# sync/errors.py
from enum import Enum


class PersonalStoreError(Exception):
    """Base class for everything the sync engine raises."""


class EntryValidationError(PersonalStoreError):
    """A stored or incoming row fails basic shape checks; only that row is dropped."""


class UserInputError(PersonalStoreError):
    """Input rejected before it reaches the store, e.g. an empty note."""


class CloudErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    SCHEMA_MISMATCH = "schema_mismatch"
    TRANSIENT = "transient"


class CloudError(PersonalStoreError):
    kind = CloudErrorKind.TRANSIENT

    def __init__(self, message, table=None, code=None):
        super().__init__(message)
        self.message = message
        self.table = table
        self.code = code


class SchemaCompatibilityError(CloudError):
    """The cloud table does not have the shape the adapter assumed."""
    kind = CloudErrorKind.SCHEMA_MISMATCH

    def __init__(self, message, table=None, code=None, column=None):
        super().__init__(message, table=table, code=code)
        self.column = column


class TransientSyncFailure(CloudError):
    """Auth, network or rate-limit failure; logged and dropped, never retried inline."""
    kind = CloudErrorKind.TRANSIENT


class CloudRowNotFound(CloudError):
    kind = CloudErrorKind.NOT_FOUND
