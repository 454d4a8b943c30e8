# errors.py
"""Domain errors surfaced by the engine as ``kind`` + human-readable message."""
from typing import ClassVar


class EngineError(Exception):
    kind: ClassVar[str] = "EngineError"
    default_message: ClassVar[str] = "Engine operation failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class InvalidStateError(EngineError):
    kind = "InvalidState"
    default_message = "Operation is not allowed in the current state."


class NotEligibleError(EngineError):
    kind = "NotEligible"
    default_message = "Judge is not eligible for this operation."


class NoEligibleJudgeError(NotEligibleError):
    default_message = "No eligible judges available for this location."


class NotFoundError(EngineError):
    kind = "NotFound"
    default_message = "Resource not found."


class DuplicateVoteError(EngineError):
    kind = "DuplicateVote"
    default_message = "Judge has already voted in this tie-break."


class DuplicateAssignmentError(EngineError):
    kind = "DuplicateAssignment"
    default_message = "Submission is already assigned to a judge."


class ValidationError(EngineError):
    kind = "ValidationError"
    default_message = "Invalid input."


__all__ = [
    "EngineError",
    "InvalidStateError",
    "NotEligibleError",
    "NoEligibleJudgeError",
    "NotFoundError",
    "DuplicateVoteError",
    "DuplicateAssignmentError",
    "ValidationError",
]
