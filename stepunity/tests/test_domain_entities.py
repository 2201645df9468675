from datetime import UTC, datetime, timedelta

import pytest

from stepunity.application.services.verification import draft_usability
from stepunity.domain import (
    DraftPayloadError,
    EmailChangePayload,
    RefreshSession,
    RegistrationPayload,
    ResetTicket,
    User,
    VerificationDraft,
)
from stepunity.domain.users.drafts import dump_payload, parse_payload
from stepunity.domain.users.entities import DraftCheck
from stepunity.domain.users.exceptions import AccountLockedError, IncorrectCodeError
from stepunity.domain.users.values import is_valid_handle, normalize_email, username_handle

NOW = datetime(2025, 6, 1, 9, 30, tzinfo=UTC)


def test_registration_payload_survives_storage() -> None:
    payload = RegistrationPayload(
        username="alice_1",
        display_name="Alice One",
        password_hash="scrypt:hash",
        avatar_url=None,
    )

    restored = parse_payload(dump_payload(payload))

    assert isinstance(restored, RegistrationPayload)
    assert restored == payload


def test_email_change_payload_is_discriminated() -> None:
    restored = parse_payload(dump_payload(EmailChangePayload(user_id=12)))
    assert isinstance(restored, EmailChangePayload)
    assert restored.user_id == 12


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "",
        "{not json",
        '{"kind": "register", "username": "alice"}',
        '{"kind": "unknown", "user_id": 1}',
        '{"kind": "change_email", "user_id": 0}',
    ],
)
def test_parse_payload_rejects_incomplete_drafts(raw) -> None:
    with pytest.raises(DraftPayloadError):
        parse_payload(raw)


def test_normalize_email_trims_and_lowercases() -> None:
    assert normalize_email("  Alice@Example.COM ") == "alice@example.com"


@pytest.mark.parametrize(
    ("raw", "handle", "valid"),
    [
        ("Alice Smith", "alicesmith", True),
        ("  bob_99  ", "bob_99", True),
        ("d@n!ce", "dnce", True),
        ("a b", "ab", False),
        ("!!!", "", False),
        ("x" * 40, "x" * 40, False),
    ],
)
def test_username_handle(raw: str, handle: str, valid: bool) -> None:
    assert username_handle(raw) == handle
    assert is_valid_handle(handle) is valid


def test_user_lock_state() -> None:
    user = User(
        id=1,
        email="alice@example.com",
        username="alice",
        password_hash="hash",
        created_at=NOW,
        failed_login_count=4,
        lock_until=NOW + timedelta(minutes=5),
    )

    assert user.is_locked(NOW) is True
    assert user.lock_remaining(NOW) == timedelta(minutes=5)
    assert user.is_locked(NOW + timedelta(minutes=5)) is False
    assert user.lock_remaining(NOW + timedelta(minutes=6)) == timedelta(0)


def test_unlocked_user_has_no_remaining_lock() -> None:
    user = User(id=1, email="a@b.c", username="abc", password_hash="h", created_at=NOW)
    assert user.is_locked(NOW) is False
    assert user.lock_remaining(NOW) == timedelta(0)


def test_refresh_session_keeps_its_lifetime() -> None:
    session = RefreshSession(
        id=1,
        user_id=1,
        token_hash="h",
        created_at=NOW,
        expires_at=NOW + timedelta(days=2),
    )

    assert session.lifetime == timedelta(days=2)
    assert session.is_active(NOW) is True
    assert session.is_active(NOW + timedelta(days=2)) is False


def test_revoked_refresh_session_is_inactive() -> None:
    session = RefreshSession(
        id=1,
        user_id=1,
        token_hash="h",
        created_at=NOW,
        expires_at=NOW + timedelta(days=30),
        revoked_at=NOW,
    )
    assert session.is_active(NOW) is False


def test_reset_ticket_usability() -> None:
    ticket = ResetTicket(
        id=1, user_id=1, token_hash="h", created_at=NOW, expires_at=NOW + timedelta(minutes=30)
    )

    assert ticket.is_usable(NOW) is True
    assert ticket.is_usable(NOW + timedelta(minutes=30)) is False
    used = ResetTicket(
        id=1,
        user_id=1,
        token_hash="h",
        created_at=NOW,
        expires_at=NOW + timedelta(minutes=30),
        used_at=NOW,
    )
    assert used.is_usable(NOW) is False


def test_draft_attempts_left_never_negative() -> None:
    draft = VerificationDraft(
        email="a@b.c",
        code_hash="h",
        expires_at=NOW,
        attempts=7,
        max_attempts=5,
        payload=None,
    )
    assert draft.attempts_left == 0


@pytest.mark.parametrize(
    ("offset", "attempts", "expected"),
    [
        (timedelta(minutes=5), 0, DraftCheck.OK),
        (timedelta(minutes=-1), 0, DraftCheck.EXPIRED),
        (timedelta(minutes=5), 5, DraftCheck.ATTEMPTS_EXCEEDED),
    ],
)
def test_draft_usability(offset: timedelta, attempts: int, expected: DraftCheck) -> None:
    draft = VerificationDraft(
        email="a@b.c",
        code_hash="h",
        expires_at=NOW + offset,
        attempts=attempts,
        max_attempts=5,
        payload=None,
    )
    assert draft_usability(draft, NOW) is expected
    assert draft_usability(None, NOW) is DraftCheck.NOT_FOUND


def test_error_envelopes() -> None:
    locked = AccountLockedError(NOW + timedelta(minutes=5), 300000)
    assert locked.to_dict() == {
        "ok": False,
        "error": "Too many attempts. Try again later.",
        "code": "account_locked",
        "unlockAt": "2025-06-01T09:35:00.000Z",
        "lockRemainingMs": 300000,
        "attemptsLeft": 0,
    }
    assert IncorrectCodeError(-1).to_dict()["attemptsLeft"] == 0
