# src/taskdeck/core/errors.py

from __future__ import annotations


class BoardError(Exception):
    """Base class for errors surfaced by the board data layer."""


class ValidationError(BoardError):
    """Input rejected before anything is applied or dispatched."""


class NotFoundError(BoardError):
    """Referenced entity (or invitee) does not exist. No state change."""


class ConflictError(BoardError):
    """Entity already exists (e.g. duplicate membership). No state change."""


class RemoteFailure(BoardError):
    """
    Persistence call failed during a mutation.

    Never escapes a mutation: the engine rolls back, logs it and publishes a notice.
    """

    def __init__(self, operation: str, entity_id: str | None = None, cause: BaseException | None = None) -> None:
        self.operation = operation
        self.entity_id = entity_id
        self.cause = cause
        detail = f" ({cause})" if cause is not None else ""
        super().__init__(f"{operation} failed for {entity_id or '-'}{detail}")


def friendly_failure_message(err: RemoteFailure) -> str:
    """Short user-facing text for a failed remote mutation."""
    verb = err.operation.split("_", 1)[0]
    messages = {
        "add": "Could not create the item. Your change was undone.",
        "create": "Could not create the item. Your change was undone.",
        "update": "Could not save your change. It was undone.",
        "delete": "Could not delete the item. It was restored.",
        "remove": "Could not remove the item. It was restored.",
        "reorder": "Could not save the new order. The previous order was restored.",
        "save": "Could not save the new order. Reload the board to see what was kept.",
        "upload": "Upload failed. Please try again.",
    }
    return messages.get(verb, "Something went wrong. Please try again.")
