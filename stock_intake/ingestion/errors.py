"""Errors raised by the ingestion workflow."""


class IngestionError(Exception):
    """Base class for ingestion errors; ``str(error)`` is the operator-facing message."""


class ValidationError(IngestionError):
    """Line items are not ready to be committed, or an edit is not allowed."""


class LineItemNotFoundError(IngestionError):
    def __init__(self, item_id: str) -> None:
        super().__init__(f"Line item not found: {item_id}")
        self.item_id = item_id


class WorkflowStateError(IngestionError):
    """Operation not allowed in the current step."""

    def __init__(self, operation: str, step: str) -> None:
        super().__init__(f"Cannot {operation} while in '{step}' step")
        self.operation = operation
        self.step = step


class CommitError(IngestionError):
    """A backend call failed part-way through a commit.

    Attributes:
        completed: Number of commit tasks that succeeded so far (including earlier attempts)
        pending: Number of commit tasks not yet done
    """

    def __init__(self, message: str, completed: int, pending: int) -> None:
        super().__init__(message)
        self.completed = completed
        self.pending = pending


class CatalogEntryNotFoundError(IngestionError):
    def __init__(self, kind: str, entry_id: str) -> None:
        super().__init__(f"{kind} not found: {entry_id}")
        self.kind = kind
        self.entry_id = entry_id
