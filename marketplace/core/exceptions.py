"""
Engagement-wide exception hierarchy.

Every service in the lifecycle engine raises one of these types. Blueprints
never build error responses for business failures themselves: the handlers
registered in ``marketplace.utils.errors`` translate them once, so every
front end sees the same status codes and the same structured body.

Each error carries enough context (entity, id, expected vs. actual state) for
a UI to explain *why* an action is unavailable right now.

Usage:
    from marketplace.core.exceptions import InvalidStateError, NotFoundError

    raise NotFoundError(resource="Project", resource_id=42)
    raise InvalidStateError("Proposal", 7, expected=("pending",), actual="accepted")
"""

from __future__ import annotations


class EngagementError(Exception):
    """Base class for all lifecycle engine errors."""

    code = "ERR_ENGAGEMENT"

    def __init__(
        self,
        message: str,
        *,
        entity: str | None = None,
        entity_id: int | None = None,
        details: dict | None = None,
    ) -> None:
        self.message = message
        self.entity = entity
        self.entity_id = entity_id
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        body = dict(self.details)
        if self.entity is not None:
            body["entity"] = self.entity
        if self.entity_id is not None:
            body["entity_id"] = self.entity_id
        return body


class NotFoundError(EngagementError):
    """Raised when a requested record does not exist.

    Args:
        resource: Human-readable model name (e.g. "Project", "Proposal").
        resource_id: The PK that was looked up.
    """

    code = "ERR_NOT_FOUND"

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(msg, entity=resource, entity_id=resource_id)


class ValidationError(EngagementError):
    """Raised when input is malformed or violates a value rule (e.g. negative budget).

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    code = "ERR_VALIDATION"

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message, details=details)


class UnauthorizedError(EngagementError):
    """Raised when the caller's identity or role does not permit the operation.

    ``actor_id`` is None when no identity was presented at all (HTTP 401);
    otherwise the caller is known but not allowed (HTTP 403).
    """

    code = "ERR_UNAUTHORIZED"

    def __init__(
        self,
        message: str,
        *,
        actor_id: int | None = None,
        actor_role: str | None = None,
        required: str | None = None,
        entity: str | None = None,
        entity_id: int | None = None,
    ) -> None:
        self.actor_id = actor_id
        self.actor_role = actor_role
        self.required = required
        details = {}
        if actor_role is not None:
            details["actor_role"] = actor_role
        if required is not None:
            details["required"] = required
        super().__init__(message, entity=entity, entity_id=entity_id, details=details)


class InvalidStateError(EngagementError):
    """Raised when an operation is not legal from the entity's current status.

    Args:
        entity: Model name.
        entity_id: PK of the record.
        expected: Statuses from which the operation would have been legal.
        actual: The status the record is actually in.
        message: Optional override of the generated message.
    """

    code = "ERR_INVALID_STATE"

    def __init__(
        self,
        entity: str,
        entity_id: int | None,
        *,
        expected=(),
        actual: str | None = None,
        message: str | None = None,
    ) -> None:
        self.expected = tuple(expected)
        self.actual = actual
        if message is None:
            message = (
                f"{entity} id={entity_id} is '{actual}'; "
                f"operation requires {' or '.join(repr(s) for s in self.expected) or 'a different state'}"
            )
        super().__init__(
            message,
            entity=entity,
            entity_id=entity_id,
            details={"expected": list(self.expected), "actual": actual},
        )


class StaleStateError(InvalidStateError):
    """Raised when a conditional update lost a race with another writer.

    The caller read state X, but by the time the write ran the stored state
    was no longer X. Always safe to retry after re-reading.
    """

    code = "ERR_STALE_STATE"

    def __init__(self, entity: str, entity_id: int | None, *, expected=(), actual: str | None = None) -> None:
        super().__init__(
            entity,
            entity_id,
            expected=expected,
            actual=actual,
            message=(
                f"{entity} id={entity_id} changed concurrently "
                f"(expected {'/'.join(str(s) for s in expected)}, found {actual}); re-read and retry"
            ),
        )


class NegotiationLimitExceededError(EngagementError):
    """Raised on a counter-offer once a proposal has used all negotiation rounds."""

    code = "ERR_NEGOTIATION_LIMIT"

    def __init__(self, proposal_id: int, *, limit: int, count: int) -> None:
        self.limit = limit
        self.count = count
        super().__init__(
            f"Proposal id={proposal_id} has reached the maximum of {limit} negotiation rounds",
            entity="Proposal",
            entity_id=proposal_id,
            details={"limit": limit, "negotiation_count": count},
        )


class AlreadyAcceptedError(EngagementError):
    """Raised when a project already has an accepted proposal."""

    code = "ERR_ALREADY_ACCEPTED"

    def __init__(self, project_id: int, *, accepted_proposal_id: int | None = None) -> None:
        self.project_id = project_id
        self.accepted_proposal_id = accepted_proposal_id
        super().__init__(
            f"Project id={project_id} already has an accepted proposal",
            entity="Project",
            entity_id=project_id,
            details={"accepted_proposal_id": accepted_proposal_id},
        )
