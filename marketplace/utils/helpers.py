"""Shared utility functions for services and blueprints.

parse_date:          ISO / DD.MM.YYYY → date, ValidationError on bad input
parse_money:         user input → Decimal quantized to cents
round_money:         ROUND_HALF_UP to two decimal places
db_commit_or_raise:  commit, or roll back and propagate
"""
import logging
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from marketplace.core.exceptions import ValidationError
from marketplace.models import db

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


# ── Dates ────────────────────────────────────────────────────────────────────

def parse_date(value, field="date"):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY

    Raises ValidationError for anything else.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError) as exc:
        raise ValidationError(
            f"Invalid {field}. Use YYYY-MM-DD or DD.MM.YYYY.",
            details={field: str(value)},
        ) from exc


# ── Money ────────────────────────────────────────────────────────────────────

def round_money(amount) -> Decimal:
    """Quantize to cents with ROUND_HALF_UP (0.005 → 0.01)."""
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_money(value, field="amount", *, positive=True, allow_none=False):
    """Convert user input to a cent-quantized Decimal.

    Floats are routed through ``str`` so 0.1 stays 0.1.

    Raises:
        ValidationError: missing, non-numeric, or not > 0 (>= 0 when ``positive`` is False).
    """
    if value is None or value == "":
        if allow_none:
            return None
        raise ValidationError(f"{field} is required", details={field: "required"})
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", details={field: value})
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be a number", details={field: value}) from exc
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number", details={field: str(value)})
    if positive and amount <= 0:
        raise ValidationError(f"{field} must be greater than zero", details={field: str(value)})
    if not positive and amount < 0:
        raise ValidationError(f"{field} must not be negative", details={field: str(value)})
    return round_money(amount)


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_raise():
    """Commit the current session; on any failure roll back and re-raise.

    Services call this once per operation so a failed transition never leaves
    a half-applied change in the session.
    """
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Database error on commit")
        raise


# ── Request helpers ──────────────────────────────────────────────────────────

def get_pagination(default_limit=50, max_limit=200):
    """Read ``limit`` / ``offset`` query args, clamped to sane bounds."""
    from flask import request

    limit = request.args.get("limit", default_limit, type=int)
    offset = request.args.get("offset", 0, type=int)
    limit = max(1, min(limit or default_limit, max_limit))
    offset = max(0, offset or 0)
    return limit, offset
