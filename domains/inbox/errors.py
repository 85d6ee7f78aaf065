"""
Exception hierarchy for the inbox processing engine.
"""


class InboxError(Exception):
    """Base exception for all inbox engine errors."""
    pass


class BypassError(InboxError):
    """Raised by a stage that deliberately routes a file to the bypassed state."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class CollaboratorError(InboxError):
    """Raised when an external collaborator (AI, transcription, fetch) fails."""
    pass


class StaleReferenceError(InboxError):
    """Raised when a tracked file can no longer be found in the vault."""

    def __init__(self, record_id: str, names: list[str]):
        super().__init__(
            f"File for record {record_id} not found (looked for: {', '.join(names)})"
        )
        self.record_id = record_id
        self.names = names


class InvalidTransitionError(InboxError):
    """Raised when an operation is not allowed from the record's current status."""

    def __init__(self, record_id: str, status: str, operation: str):
        super().__init__(f"Cannot {operation} record {record_id} in status '{status}'")
        self.record_id = record_id
        self.status = status
        self.operation = operation


class RecordNotFoundError(InboxError):
    """Raised when a record id is unknown to the record store."""

    def __init__(self, record_id: str):
        super().__init__(f"Record not found: {record_id}")
        self.record_id = record_id


class PersistenceError(InboxError):
    """Raised when the record store document cannot be read or written."""
    pass


class UndoConflictError(InboxError):
    """Raised when undo would overwrite a file already in the inbox."""

    def __init__(self, record_id: str, target: str):
        super().__init__(f"Cannot undo record {record_id}: {target} already exists")
        self.record_id = record_id
        self.target = target
