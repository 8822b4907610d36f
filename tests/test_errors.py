from __future__ import annotations

import pytest

from crossed_paths.errors import ErrorKind, RemoteError, classify_error


@pytest.mark.parametrize(
    ("code", "kind"),
    [
        ("42P01", ErrorKind.SCHEMA_MISSING),
        ("PGRST205", ErrorKind.SCHEMA_MISSING),
        ("42883", ErrorKind.ROUTINE_MISSING),
        ("PGRST202", ErrorKind.ROUTINE_MISSING),
        ("42501", ErrorKind.OTHER),
        ("23505", ErrorKind.OTHER),
    ],
)
def test_codes(code: str, kind: ErrorKind):
    assert classify_error(code) is kind


def test_code_wins_over_message():
    # permission error whose text happens to mention "does not exist"
    assert classify_error("42501", 'role "x" does not exist') is ErrorKind.OTHER


def test_message_used_only_without_code():
    assert classify_error(None, 'relation "crossed_paths" does not exist') is ErrorKind.SCHEMA_MISSING
    assert classify_error(None, "Could not find the function public.f") is ErrorKind.ROUTINE_MISSING
    assert classify_error(None, "function public.f(integer) does not exist") is ErrorKind.ROUTINE_MISSING
    assert classify_error(None, "timeout") is ErrorKind.OTHER
    assert classify_error(None, None) is ErrorKind.OTHER


def test_remote_error_properties():
    err = RemoteError("missing", code="42P01", status=404)
    assert err.schema_missing and not err.routine_missing
    assert RemoteError("boom", kind=ErrorKind.OTHER).kind is ErrorKind.OTHER
    assert "42P01" in repr(err)
