"""Error taxonomy: every sync failure maps to one ErrorClass."""

import pytest

from mailsync.domain.enums import ErrorClass
from mailsync.domain.exceptions import (
    AuthExpiredException,
    AuthRevokedException,
    CredentialException,
    CursorConflictException,
    CursorInvalidatedException,
    DataIntegrityException,
    MailSyncException,
    NetworkTransientException,
    RateLimitedException,
    ResourceNotFoundException,
    SyncTimeoutException,
    UnsupportedProviderException,
    classify,
)


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (AuthExpiredException(), ErrorClass.AUTH_EXPIRED),
        (AuthRevokedException(vendor_error="invalid_grant"), ErrorClass.AUTH_REVOKED),
        (CredentialException(), ErrorClass.CONFIGURATION),
        (RateLimitedException(30), ErrorClass.RATE_LIMITED),
        (CursorInvalidatedException(), ErrorClass.CURSOR_INVALIDATED),
        (NetworkTransientException(), ErrorClass.NETWORK_TRANSIENT),
        (DataIntegrityException("bad", external_id="m1"), ErrorClass.DATA_INTEGRITY),
        (SyncTimeoutException(300), ErrorClass.TIMEOUT),
        (TimeoutError(), ErrorClass.TIMEOUT),
        (MailSyncException("boom"), ErrorClass.UNKNOWN),
        (KeyError("x"), ErrorClass.UNKNOWN),
    ],
)
def test_classify(exc, expected) -> None:
    assert classify(exc) == expected


def test_error_code_defaults_to_class_name() -> None:
    assert MailSyncException("boom").error_code == "MailSyncException"


def test_to_dict_carries_details() -> None:
    payload = CursorConflictException("p1").to_dict()
    assert payload["error"] == "CURSOR_CONFLICT"
    assert payload["details"] == {"provider_id": "p1"}


def test_not_found_and_unsupported_messages() -> None:
    assert "p9" in ResourceNotFoundException("ProviderConfig", "p9").message
    exc = UnsupportedProviderException("aol", ["gmail", "outlook"])
    assert "aol" in exc.message


def test_rate_limited_keeps_retry_after() -> None:
    assert RateLimitedException(12.5).retry_after == 12.5
    assert RateLimitedException().retry_after is None
