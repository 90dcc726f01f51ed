"""
Unit tests for permit credential issuance and verification.
"""

import base64
import json
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from app.modules.permits.credentials import (
    PERMIT_VALIDITY_WINDOW,
    VerificationFailure,
    encode_payload,
    issue,
    permit_expiry_for,
    verify,
)


def _flip_bit(text: str, index: int, bit: int) -> str:
    return text[:index] + chr(ord(text[index]) ^ (1 << bit)) + text[index + 1 :]


def _reencode(payload: str, **changes) -> str:
    padded = payload + "=" * (-len(payload) % 4)
    body = json.loads(base64.urlsafe_b64decode(padded))
    body.update(changes)
    raw = json.dumps(body, sort_keys=True, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


class TestIssue:
    def test_payload_is_deterministic(self, now):
        app_id = uuid4()
        expiry = now + timedelta(days=90)
        assert encode_payload(app_id, expiry, "KRG-2026-000001") == encode_payload(
            app_id, expiry, "KRG-2026-000001"
        )

    def test_issue_is_deterministic(self, now, signing_key):
        app_id = uuid4()
        expiry = now + timedelta(days=90)
        first = issue(app_id, expiry, key=signing_key)
        second = issue(app_id, expiry, key=signing_key)
        assert first == second

    def test_key_changes_signature(self, now, signing_key):
        app_id = uuid4()
        expiry = now + timedelta(days=90)
        assert issue(app_id, expiry, key=signing_key).signature != issue(
            app_id, expiry, key=b"another-key"
        ).signature

    def test_payload_carries_id_and_expiry_but_not_key(self, now, signing_key):
        app_id = uuid4()
        issued = issue(app_id, now + timedelta(days=90), "KRG-2026-000007", key=signing_key)
        padded = issued.payload + "=" * (-len(issued.payload) % 4)
        body = json.loads(base64.urlsafe_b64decode(padded))
        assert body["app_id"] == str(app_id)
        assert body["ref"] == "KRG-2026-000007"
        assert datetime.fromisoformat(body["exp"]) == now + timedelta(days=90)
        assert signing_key.decode() not in json.dumps(body)

    def test_token_joins_payload_and_signature(self, now, signing_key):
        issued = issue(uuid4(), now + timedelta(days=1), key=signing_key)
        assert issued.token == f"{issued.payload}.{issued.signature}"

    def test_permit_expiry_for_uses_validity_window(self, now):
        assert PERMIT_VALIDITY_WINDOW == timedelta(days=90)
        assert permit_expiry_for(now) == now + PERMIT_VALIDITY_WINDOW

    def test_permit_expiry_for_drops_microseconds(self, now):
        approved_at = now + timedelta(microseconds=750_000)

        expiry = permit_expiry_for(approved_at)

        assert expiry.microsecond == 0
        assert expiry == now + PERMIT_VALIDITY_WINDOW

    def test_credential_and_stored_expiry_agree_before_expiry(self, now, signing_key):
        expiry = permit_expiry_for(now + timedelta(microseconds=750_000))
        issued = issue(uuid4(), expiry, key=signing_key)
        just_before = expiry - timedelta(milliseconds=300)

        result = verify(issued.token, now=just_before, key=signing_key)

        assert result.valid is True
        assert result.expires_at == expiry


class TestVerify:
    def test_round_trip(self, now, signing_key):
        app_id = uuid4()
        issued = issue(app_id, now + timedelta(days=90), "KRG-2026-000001", key=signing_key)

        result = verify(issued.token, now=now, key=signing_key)

        assert result.valid is True
        assert result.application_id == app_id
        assert result.reference_number == "KRG-2026-000001"
        assert result.reason is None

    def test_uses_configured_key_by_default(self, now):
        app_id = uuid4()
        issued = issue(app_id, now + timedelta(days=1))
        assert verify(issued.token, now=now).valid is True

    def test_wrong_key_is_invalid_signature(self, now, signing_key):
        issued = issue(uuid4(), now + timedelta(days=1), key=signing_key)
        result = verify(issued.token, now=now, key=b"attacker-key")
        assert result.valid is False
        assert result.reason == VerificationFailure.INVALID_SIGNATURE

    def test_expired_one_second_ago(self, now, signing_key):
        issued = issue(uuid4(), now - timedelta(seconds=1), key=signing_key)
        result = verify(issued.token, now=now, key=signing_key)
        assert result.valid is False
        assert result.reason == VerificationFailure.EXPIRED

    def test_expired_regardless_of_signature(self, now, signing_key):
        issued = issue(uuid4(), now - timedelta(seconds=1), key=signing_key)
        forged = f"{issued.payload}.not-the-signature"
        result = verify(forged, now=now, key=signing_key)
        assert result.reason == VerificationFailure.EXPIRED

    def test_valid_at_exact_expiry(self, now, signing_key):
        issued = issue(uuid4(), now, key=signing_key)
        assert verify(issued.token, now=now, key=signing_key).valid is True

    def test_extending_expiry_breaks_signature(self, now, signing_key):
        issued = issue(uuid4(), now + timedelta(days=1), key=signing_key)
        extended = _reencode(issued.payload, exp=(now + timedelta(days=900)).isoformat())
        result = verify(f"{extended}.{issued.signature}", now=now, key=signing_key)
        assert result.valid is False
        assert result.reason == VerificationFailure.INVALID_SIGNATURE

    def test_swapping_application_id_breaks_signature(self, now, signing_key):
        issued = issue(uuid4(), now + timedelta(days=1), key=signing_key)
        swapped = _reencode(issued.payload, app_id=str(uuid4()))
        result = verify(f"{swapped}.{issued.signature}", now=now, key=signing_key)
        assert result.reason == VerificationFailure.INVALID_SIGNATURE

    def test_every_signature_bit_flip_is_invalid_signature(self, now, signing_key):
        issued = issue(uuid4(), now + timedelta(days=90), key=signing_key)
        for index in range(len(issued.signature)):
            for bit in range(8):
                tampered = _flip_bit(issued.signature, index, bit)
                result = verify(f"{issued.payload}.{tampered}", now=now, key=signing_key)
                assert result.valid is False
                assert result.reason == VerificationFailure.INVALID_SIGNATURE

    def test_every_payload_bit_flip_is_refused(self, now, signing_key):
        issued = issue(uuid4(), now + timedelta(days=90), "KRG-2026-000001", key=signing_key)
        for index in range(len(issued.payload)):
            for bit in range(8):
                tampered = _flip_bit(issued.payload, index, bit)
                result = verify(f"{tampered}.{issued.signature}", now=now, key=signing_key)
                assert result.valid is False
                # EXPIRED is only reported when the tampered expiry really is in the past
                if result.reason == VerificationFailure.EXPIRED:
                    assert result.expires_at < now
                else:
                    assert result.reason == VerificationFailure.INVALID_SIGNATURE

    @pytest.mark.parametrize(
        "presented",
        [
            "",
            "no-separator",
            ".signature-only",
            "payload-only.",
            "!!!.???",
            base64.urlsafe_b64encode(b"not json").decode() + ".sig",
            base64.urlsafe_b64encode(b'{"v":"1"}').decode() + ".sig",
            base64.urlsafe_b64encode(b"[1, 2]").decode() + ".sig",
        ],
    )
    def test_malformed_is_invalid_signature(self, presented, now, signing_key):
        result = verify(presented, now=now, key=signing_key)
        assert result.valid is False
        assert result.reason == VerificationFailure.INVALID_SIGNATURE

    def test_naive_now_is_treated_as_utc(self, signing_key):
        expiry = datetime(2026, 6, 1, tzinfo=UTC)
        issued = issue(uuid4(), expiry, key=signing_key)
        assert verify(issued.token, now=datetime(2026, 5, 31), key=signing_key).valid is True
        assert (
            verify(issued.token, now=datetime(2026, 6, 2), key=signing_key).reason
            == VerificationFailure.EXPIRED
        )
