"""
Permit Credential Service

Mints and verifies the tamper-evident credential carried in the permit QR
code. A credential binds an application id to an expiry:

    <payload>.<signature>

- payload: URL-safe base64 (unpadded) of canonical JSON
  {"app_id", "exp", "ref", "v"}
- signature: URL-safe base64 (unpadded) HMAC-SHA256 of the payload bytes

The signature covers the whole payload, so the expiry cannot be changed
without invalidating it. The signing key comes from settings and never
appears in the payload. Verification is pure and never touches the store.
"""

import base64
import binascii
import enum
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from uuid import UUID

from app.core.config import settings

logger = logging.getLogger(__name__)

CREDENTIAL_VERSION = "1"

# How long an approved permit stays valid, counted from approval
PERMIT_VALIDITY_WINDOW = timedelta(days=90)


class VerificationFailure(str, enum.Enum):
    """Why a presented credential was refused."""

    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    EXPIRED = "EXPIRED"


@dataclass(frozen=True)
class IssuedCredential:
    """Result of issuing a credential."""

    payload: str
    signature: str
    expires_at: datetime

    @property
    def token(self) -> str:
        """The string presented at a checkpoint (what the QR code encodes)."""
        return f"{self.payload}.{self.signature}"


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of verifying a presented credential."""

    valid: bool
    application_id: UUID | None = None
    reference_number: str | None = None
    expires_at: datetime | None = None
    reason: VerificationFailure | None = None


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def _signing_key() -> bytes:
    return settings.credential_signing_key.get_secret_value().encode("utf-8")


def _sign(payload: str, key: bytes) -> str:
    digest = hmac.new(key, payload.encode("ascii"), hashlib.sha256).digest()
    return _b64encode(digest)


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def encode_payload(
    application_id: UUID,
    expiry: datetime,
    reference_number: str | None = None,
) -> str:
    """
    Deterministically encode the credential payload.

    The same inputs always produce the same string: keys are sorted, the
    JSON is compact, and the expiry is normalised to UTC with second
    precision.
    """
    body = {
        "v": CREDENTIAL_VERSION,
        "app_id": str(application_id),
        "exp": _to_utc(expiry).replace(microsecond=0).isoformat(),
    }
    if reference_number:
        body["ref"] = reference_number

    canonical = json.dumps(body, sort_keys=True, separators=(",", ":"))
    return _b64encode(canonical.encode("utf-8"))


def permit_expiry_for(approved_at: datetime) -> datetime:
    """
    Permit expiry for an approval at the given instant.

    Whole seconds, matching the exp a credential can carry, so the stored
    expiry and the credential agree to the instant.
    """
    return (approved_at + PERMIT_VALIDITY_WINDOW).replace(microsecond=0)


def issue(
    application_id: UUID,
    expiry: datetime,
    reference_number: str | None = None,
    key: bytes | None = None,
) -> IssuedCredential:
    """
    Issue a signed credential for an approved application.

    Args:
        application_id: Application the credential authorises
        expiry: Instant after which the credential is no longer valid
        reference_number: Human readable reference, embedded for display
        key: Signing key override (defaults to settings)

    Returns:
        IssuedCredential with payload and signature
    """
    payload = encode_payload(application_id, expiry, reference_number)
    signature = _sign(payload, key or _signing_key())
    logger.info(f"Issued credential for application {application_id}")
    return IssuedCredential(payload=payload, signature=signature, expires_at=_to_utc(expiry))


def _invalid() -> VerificationResult:
    return VerificationResult(valid=False, reason=VerificationFailure.INVALID_SIGNATURE)


def verify(
    presented: str,
    now: datetime | None = None,
    key: bytes | None = None,
) -> VerificationResult:
    """
    Verify a presented credential.

    Checks, in order:
    1. The credential is well formed (otherwise INVALID_SIGNATURE)
    2. The encoded expiry has not passed (otherwise EXPIRED, whatever the
       signature says)
    3. The signature matches, compared in constant time (otherwise
       INVALID_SIGNATURE)

    Args:
        presented: "<payload>.<signature>" as read from the QR code
        now: Current instant (defaults to the wall clock)
        key: Signing key override (defaults to settings)

    Returns:
        VerificationResult; never raises for bad input
    """
    now = _to_utc(now or datetime.now(UTC))

    payload, separator, signature = presented.strip().partition(".")
    if not separator or not payload or not signature:
        logger.warning("Credential verification failed: malformed credential")
        return _invalid()

    try:
        body = json.loads(_b64decode(payload))
        application_id = UUID(str(body["app_id"]))
        expires_at = _to_utc(datetime.fromisoformat(body["exp"]))
        reference_number = body.get("ref")
    except (binascii.Error, ValueError, KeyError, TypeError, AttributeError, OverflowError):
        logger.warning("Credential verification failed: undecodable payload")
        return _invalid()

    if now > expires_at:
        logger.info(f"Credential for application {application_id} expired at {expires_at}")
        return VerificationResult(
            valid=False,
            application_id=application_id,
            reference_number=reference_number,
            expires_at=expires_at,
            reason=VerificationFailure.EXPIRED,
        )

    expected = _sign(payload, key or _signing_key())
    if not hmac.compare_digest(expected.encode("ascii"), signature.encode("ascii", "replace")):
        logger.warning("Credential verification failed: signature mismatch")
        return _invalid()

    return VerificationResult(
        valid=True,
        application_id=application_id,
        reference_number=reference_number,
        expires_at=expires_at,
    )
