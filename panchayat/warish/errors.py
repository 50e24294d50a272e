from __future__ import annotations


class WarishError(ValueError):
    """Base for every failure the warish workflow reports to its callers."""

    kind = "Internal"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, object]:
        return {"kind": self.kind, "message": self.message}


class ValidationError(WarishError):
    kind = "Validation"


class NotFoundError(WarishError):
    kind = "NotFound"


class InvalidTransition(WarishError):
    kind = "InvalidTransition"

    def __init__(self, current, target, reason: str = "") -> None:
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        message = f"Invalid transition: {current_value} -> {target_value}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.current = current
        self.target = target

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["current"] = getattr(self.current, "value", self.current)
        payload["target"] = getattr(self.target, "value", self.target)
        return payload


class AssignmentLocked(WarishError):
    kind = "AssignmentLocked"


class NotReviewable(WarishError):
    kind = "NotReviewable"


class ConflictError(WarishError):
    kind = "Conflict"


class DepthExceeded(WarishError):
    kind = "DepthExceeded"


class CorruptHierarchy(WarishError):
    kind = "CorruptHierarchy"


class StorageTimeout(WarishError):
    kind = "StorageTimeout"


class StorageFailure(WarishError):
    kind = "StorageFailure"
