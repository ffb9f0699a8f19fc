from __future__ import annotations

from sqlalchemy.orm import Session

from app.errors import ValidationError


def ensure_row(db: Session, model, key: int | None, label: str) -> None:
    """Reject a foreign key that points at no row; ``None`` is left to the caller."""
    if key is None:
        return
    if db.get(model, key) is None:
        raise ValidationError(f'Unknown {label} {key}')


def reject_nulls(changes: dict, fields: tuple[str, ...]) -> None:
    nulls = sorted(field for field in fields if field in changes and changes[field] is None)
    if nulls:
        raise ValidationError(f'Fields cannot be empty: {", ".join(nulls)}')
