from __future__ import annotations


class ValidationError(ValueError):
    """Malformed or missing input, rejected before any synchronization runs."""


class NotFoundError(ValueError):
    pass


class ConsistencyFailure(RuntimeError):
    """A derived aggregate could not be recomputed, so the triggering write must not commit."""

    def __init__(self, ledger: str, key: object, message: str | None = None) -> None:
        self.ledger = ledger
        self.key = key
        super().__init__(message or f'{ledger} synchronization failed for {key!r}')
