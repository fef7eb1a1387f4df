"""Compare-and-set status transitions.

Every lifecycle write in the engine goes through :func:`transition`, which
issues ``UPDATE … WHERE id = :id AND <status> IN (:expected)``. When the row
no longer matches, the current value is re-read so the caller gets a precise
``StaleStateError`` (or ``NotFoundError`` if the row vanished).

Usage:
    from marketplace.services.helpers.state_guard import get_or_raise, transition

    project = get_or_raise(Project, project_id)
    transition(Project, project.id, expected=("open",),
               values={"status": "in_progress"}, entity="Project")
"""

from __future__ import annotations

import logging

from sqlalchemy import or_, select, update

from marketplace.core.exceptions import NotFoundError, StaleStateError
from marketplace.models import db

logger = logging.getLogger(__name__)


def get_or_raise(model, pk, label: str | None = None):
    """Fetch ``model`` by primary key or raise NotFoundError."""
    label = label or model.__name__
    obj = db.session.get(model, pk)
    if obj is None:
        raise NotFoundError(resource=label, resource_id=pk)
    return obj


def transition(
    model,
    pk: int,
    *,
    expected,
    values: dict,
    entity: str | None = None,
    status_attr: str = "status",
    extra_criteria=(),
) -> None:
    """Conditionally apply ``values`` to one row whose status is in ``expected``.

    Args:
        model: Mapped class.
        pk: Primary key of the row.
        expected: Iterable of status strings the row must currently hold.
        values: Column → value mapping to write.
        entity: Name used in raised errors; defaults to the class name.
        status_attr: Column holding the guarded status.
        extra_criteria: Additional WHERE clauses that must also hold.

    Raises:
        StaleStateError: The row exists but no longer matches.
        NotFoundError: The row does not exist.

    Does not commit; the calling service owns the transaction.
    """
    entity = entity or model.__name__
    expected = tuple(expected)
    status_col = getattr(model, status_attr)

    # None in ``expected`` matches a NULL status (e.g. escrow not yet opened)
    matches = []
    present = [s for s in expected if s is not None]
    if present:
        matches.append(status_col.in_(present))
    if None in expected:
        matches.append(status_col.is_(None))

    stmt = (
        update(model)
        .where(model.id == pk, or_(*matches), *extra_criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount == 1:
        # Loaded instance reloads its columns on next access
        loaded = db.session.identity_map.get(db.session.identity_key(model, pk))
        if loaded is not None:
            db.session.expire(loaded)
        return

    actual = db.session.execute(select(status_col).where(model.id == pk)).scalar_one_or_none()
    if actual is None and db.session.get(model, pk) is None:
        raise NotFoundError(resource=entity, resource_id=pk)

    logger.warning(
        "Stale %s id=%s: expected %s=%s, found %s",
        entity, pk, status_attr, "/".join(str(s) for s in expected), actual,
    )
    raise StaleStateError(entity, pk, expected=expected, actual=actual)
