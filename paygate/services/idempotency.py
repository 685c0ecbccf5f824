"""Idempotency helpers."""
from typing import Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

T = TypeVar("T")


def get_existing_by_key(
    db: Session,
    model: Type[T],
    key_value: str | None,
    *,
    key_field: str = "idempotency_key",
) -> Optional[T]:
    """Return the record already created for ``key_value``, if any."""
    if not key_value:
        return None
    if not hasattr(model, key_field):
        raise AttributeError(f"{model.__name__} has no field '{key_field}'")

    column = getattr(model, key_field)
    stmt = select(model).where(column == key_value).limit(1)
    return db.scalars(stmt).first()


def normalize_key(header_value: str | None, body_value: str | None) -> str | None:
    """Prefer the ``Idempotency-Key`` header over a key sent in the body."""
    for candidate in (header_value, body_value):
        if candidate and candidate.strip():
            return candidate.strip()
    return None


__all__ = ["get_existing_by_key", "normalize_key"]
