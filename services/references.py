"""
Human-readable reference numbers (DEM-2025-000042, PUR-20250905-00001, FORM003).

Sequences come from a dedicated counter row per formatted base, bumped with a
single UPDATE so two concurrent requests never read the same value. Inserts
still run inside a savepoint and retry on a unique violation, which covers rows
created with hand-written references or before the counter existed.
"""
import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import settings
from models.reference_counter import ReferenceCounter

logger = logging.getLogger(__name__)

SCOPE_YEAR = "year"
SCOPE_DAY = "day"
SCOPE_ALL = "all"

# (prefix, scope, width)
DEMANDE_REF = ("DEM", SCOPE_YEAR, 6)
PURCHASE_REF = ("PUR", SCOPE_DAY, 5)
PAYMENT_REF_WIDTH = 6
FORMATION_CODE = ("FORM", SCOPE_ALL, 3)


class ReferenceConflictError(Exception):
    """No free reference could be allocated within the retry budget. Safe to retry the request."""


def reference_base(prefix: str, scope: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    if scope == SCOPE_YEAR:
        return f"{prefix}-{now:%Y}-"
    if scope == SCOPE_DAY:
        return f"{prefix}-{now:%Y%m%d}-"
    if scope == SCOPE_ALL:
        return prefix
    raise ValueError(f"Unknown reference scope: {scope}")


def _increment(db: Session, base: str) -> Optional[int]:
    result = db.execute(
        update(ReferenceCounter)
        .where(ReferenceCounter.prefix == base)
        .values(value=ReferenceCounter.value + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return None
    return db.execute(select(ReferenceCounter.value).where(ReferenceCounter.prefix == base)).scalar_one()


def next_sequence(db: Session, base: str, seed_column: Any = None) -> int:
    """Atomically take the next number for ``base``, creating the counter on first use."""
    value = _increment(db, base)
    if value is not None:
        return value

    seed = 0
    if seed_column is not None:
        seed = db.query(func.count(seed_column)).filter(seed_column.like(f"{base}%")).scalar() or 0
    try:
        with db.begin_nested():
            db.add(ReferenceCounter(prefix=base, value=seed + 1))
        return seed + 1
    except IntegrityError:
        # Seeded concurrently by another transaction
        value = _increment(db, base)
        if value is None:
            raise
        return value


def next_reference(
    db: Session,
    prefix: str,
    scope: str,
    width: int,
    seed_column: Any = None,
    now: Optional[datetime] = None,
) -> str:
    base = reference_base(prefix, scope, now)
    seq = next_sequence(db, base, seed_column)
    return f"{base}{str(seq).zfill(width)}"


def _is_taken(db: Session, column: Any, value: str) -> bool:
    return db.query(column).filter(column == value).first() is not None


def assign_reference(
    db: Session,
    obj: Any,
    attr: str,
    prefix: str,
    scope: str,
    width: int,
    attempts: Optional[int] = None,
) -> str:
    """Give ``obj`` a fresh reference in ``attr`` and insert it, retrying on collisions."""
    attempts = attempts or settings.REFERENCE_MAX_ATTEMPTS
    column = getattr(type(obj), attr)

    for attempt in range(1, attempts + 1):
        value = next_reference(db, prefix, scope, width, seed_column=column)
        setattr(obj, attr, value)
        try:
            with db.begin_nested():
                db.add(obj)
            return value
        except IntegrityError:
            if not _is_taken(db, column, value):
                raise
            logger.warning("Reference %s already taken (attempt %s/%s), retrying", value, attempt, attempts)

    raise ReferenceConflictError(f"Could not allocate a {prefix} reference after {attempts} attempts")
