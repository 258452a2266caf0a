"""Typed error taxonomy raised by the core.

Every failure leaving a service is one of the classes below. The HTTP layer
(``pawnbroker.api.errors``) maps ``kind`` to a status code; nothing below the
API knows about HTTP.
"""

from __future__ import annotations

from typing import Any


class CoreError(Exception):
    kind: str = "internal"

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        detail: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.detail = detail

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind!r}, message={self.message!r}, field={self.field!r})"


class ValidationError(CoreError):
    """Missing or malformed input."""

    kind = "validation"


class NotFoundError(CoreError):
    kind = "not_found"

    @classmethod
    def for_entity(cls, entity: str, entity_id: Any) -> "NotFoundError":
        return cls(f"{entity} not found", detail={"id": str(entity_id)})


class DuplicateError(CoreError):
    kind = "duplicate"


class ForbiddenError(CoreError):
    kind = "forbidden"


class InvalidStateError(CoreError):
    """A state-machine transition that is not allowed, or a write to a terminal record."""

    kind = "invalid_state"

    @classmethod
    def transition(cls, entity: str, current: str, target: str) -> "InvalidStateError":
        return cls(
            f"Cannot change {entity} status from {current} to {target}",
            field="status",
            detail={"from": current, "to": target},
        )


class BusinessRuleError(CoreError):
    kind = "business_rule"


class UpstreamError(CoreError):
    """A collaborator outside the core (payment gateway, mail relay) failed."""

    kind = "upstream"


class UnauthenticatedError(CoreError):
    """No valid credentials were presented."""

    kind = "unauthenticated"
