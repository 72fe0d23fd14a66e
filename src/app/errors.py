"""Error taxonomy shared by dispatch services and the HTTP layer."""

from __future__ import annotations


class DispatchError(Exception):
    """Base class for user-visible dispatch failures."""

    category = "dispatch_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict:
        return {"error": self.category, "message": self.message}


class InvalidInputError(DispatchError):
    """A required field is missing or malformed."""

    category = "invalid_input"
    status_code = 400


class NotFoundError(DispatchError):
    """A referenced location, route, driver, vehicle, booking or stop does not exist."""

    category = "not_found"
    status_code = 404

    @classmethod
    def for_entity(cls, entity: str, entity_id: str | None = None) -> "NotFoundError":
        if entity_id is None:
            return cls(f"{entity} not found")
        return cls(f"{entity} '{entity_id}' not found")


class InvalidStateTransitionError(DispatchError):
    """The requested operation is not allowed from the entity's current status."""

    category = "invalid_state_transition"
    status_code = 400
