"""Error kinds raised by the settlement core.

Every error is raised before any document is replaced, so a caught error
always means the previous state is still the current one.
"""


class SettlementError(Exception):
    kind = "error"
    code = 1700

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind, "code": self.code, "detail": self.message}


class ValidationError(SettlementError):
    """Malformed or out-of-range input."""

    kind = "validation_error"
    code = 1601


class InvalidTransition(SettlementError):
    """A status change the state machine does not allow."""

    kind = "invalid_transition"
    code = 1305


class NotFound(SettlementError):
    kind = "not_found"
    code = 1301


class Conflict(SettlementError):
    """The record already exists or changed since it was read."""

    kind = "conflict"
    code = 1701
