"""Classification of backend errors into the three cases the core cares about."""

from __future__ import annotations

from enum import Enum
from typing import Final


class ErrorKind(Enum):
    """What a backend failure means for the caller."""

    SCHEMA_MISSING = "schema_missing"
    ROUTINE_MISSING = "routine_missing"
    OTHER = "other"


# Postgres / PostgREST codes.
SCHEMA_MISSING_CODES: Final[frozenset[str]] = frozenset({"42P01", "PGRST205"})
ROUTINE_MISSING_CODES: Final[frozenset[str]] = frozenset({"42883", "PGRST202"})


def classify_error(code: str | None, message: str | None = None) -> ErrorKind:
    """Map a backend error code (or, without a code, its message) to an ErrorKind.

    The message is only consulted when the backend supplied no code at all.
    """

    if code:
        c = code.strip().upper()
        if c in SCHEMA_MISSING_CODES:
            return ErrorKind.SCHEMA_MISSING
        if c in ROUTINE_MISSING_CODES:
            return ErrorKind.ROUTINE_MISSING
        return ErrorKind.OTHER

    text = (message or "").lower()
    if "could not find the function" in text or ("function" in text and "does not exist" in text):
        return ErrorKind.ROUTINE_MISSING
    if "does not exist" in text:
        return ErrorKind.SCHEMA_MISSING
    return ErrorKind.OTHER


class RemoteError(Exception):
    """A failed call against the remote data store."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status: int | None = None,
        kind: ErrorKind | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status
        self.kind = kind if kind is not None else classify_error(code, message)

    @property
    def schema_missing(self) -> bool:
        return self.kind is ErrorKind.SCHEMA_MISSING

    @property
    def routine_missing(self) -> bool:
        return self.kind is ErrorKind.ROUTINE_MISSING

    def __repr__(self) -> str:
        return f"RemoteError(code={self.code!r}, status={self.status!r}, kind={self.kind.value}, message={self.message!r})"
