"""Exceptions raised by the quiz core and the client shell."""
from __future__ import annotations


class QuizError(Exception):
    pass


class EmptyPoolError(QuizError):
    """The requested mode/topic has no usable questions."""


class InvalidSessionOperation(QuizError):
    """A quiz session was driven outside its contract."""


class InvalidQuestionError(InvalidSessionOperation):
    pass


class IncompleteSessionError(InvalidSessionOperation):
    pass


class AccessDeniedError(QuizError):
    def __init__(self, mode: str):
        super().__init__(f"No entitlement for {mode} mode")
        self.mode = mode


class VerificationFailedError(QuizError):
    pass


class OfflineError(QuizError):
    """The API could not be reached (network down or offline response)."""


class FieldValidationError(QuizError):
    """Input rejected by the server; ``fields`` maps field name -> message."""

    def __init__(self, fields: dict[str, str]):
        super().__init__("; ".join(f"{k}: {v}" for k, v in fields.items()))
        self.fields = fields
