from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError

from app.errors import ConsistencyFailure, NotFoundError


@contextmanager
def translate_service_errors(failure_detail: str) -> Iterator[None]:
    """Map service exceptions onto HTTP errors; the session is left uncommitted."""
    try:
        yield
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ConsistencyFailure as exc:
        raise HTTPException(status_code=500, detail=failure_detail) from exc
    except IntegrityError as exc:
        raise HTTPException(status_code=400, detail=failure_detail) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
