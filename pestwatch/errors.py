from __future__ import annotations

from dataclasses import dataclass


@dataclass
class PestwatchError(Exception):
    """Base error raised by the verification and analytics core.

    Parameters
    ----------
    message:
        Human readable error message, safe to show to the caller.
    code:
        Short machine readable error code.
    """

    message: str
    code: str = "error"

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.message


@dataclass
class ValidationError(PestwatchError):
    """Malformed input: bad enum value, non-positive limit, missing field."""

    code: str = "validation_error"


@dataclass
class NotFoundError(PestwatchError):
    """A referenced record does not exist."""

    code: str = "not_found"


@dataclass
class StoreError(PestwatchError):
    """The backing document store failed (I/O, connection, permission)."""

    code: str = "store_error"


__all__ = ["PestwatchError", "ValidationError", "NotFoundError", "StoreError"]
