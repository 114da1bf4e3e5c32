"""Verification of order signatures on the creation and read paths.

``verify_order`` is the primitive check: it raises on malformed input
(wrong-length signature or public key) and returns ``False`` for a
well-formed signature that does not match. Two call sites build on it:

* :func:`verify_client_submission` guards order creation when the client
  produced the signature; a mismatch rejects the order.
* :func:`audit_order` re-checks a stored order on read; it never raises and
  reports the outcome as a :class:`VerificationResult`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum

from .canonical import canonicalize
from .errors import (
    OrderIntegrityError,
    SignatureLengthError,
    SignatureRejectedError,
)
from .hashing import digest
from .primitives import SignatureProvider, get_provider
from .schemas import CanonicalOrderRecord, SignatureEnvelope

LOGGER = logging.getLogger(__name__)

ProviderResolver = Callable[[str], SignatureProvider]


class SignatureStatus(str, Enum):
    """Signature state of a single order as observed on read."""

    UNSIGNED = "unsigned"
    VERIFIED = "verified"
    DISPUTED = "disputed"
    ERROR = "error"


_MESSAGES: dict[SignatureStatus, str] = {
    SignatureStatus.UNSIGNED: "Order does not contain signature information.",
    SignatureStatus.VERIFIED: "Signature is valid.",
    SignatureStatus.DISPUTED: "Signature is invalid.",
}


@dataclass(frozen=True, slots=True)
class VerificationResult:
    """Advisory outcome attached to order read responses."""

    status: SignatureStatus
    message: str
    algorithm: str | None = None

    @property
    def is_signature_valid(self) -> bool:
        return self.status is SignatureStatus.VERIFIED

    def response_fields(self) -> dict[str, object]:
        return {
            "isSignatureValid": self.is_signature_valid,
            "verificationMessage": self.message,
        }


def check_lengths(
    provider: SignatureProvider, signature: bytes, public_key: bytes
) -> None:
    """Raise :class:`SignatureLengthError` unless both blobs have declared sizes."""

    if len(signature) != provider.signature_length:
        raise SignatureLengthError(
            "signature", provider.signature_length, len(signature), provider.algorithm
        )
    if len(public_key) != provider.public_key_length:
        raise SignatureLengthError(
            "public key",
            provider.public_key_length,
            len(public_key),
            provider.algorithm,
        )


def verify_order(
    record: CanonicalOrderRecord,
    signature: bytes,
    public_key: bytes,
    provider: SignatureProvider,
) -> bool:
    """Return whether ``signature`` over ``record`` verifies under ``public_key``.

    Raises:
        SignatureLengthError: If either blob does not match the length declared
            by ``provider``.
    """

    check_lengths(provider, signature, public_key)
    return provider.verify(digest(record), signature, public_key)


def verify_client_submission(
    order: object,
    signature: bytes,
    public_key: bytes,
    algorithm: str,
    *,
    providers: ProviderResolver = get_provider,
) -> CanonicalOrderRecord:
    """Verify a client-signed order before it is created.

    Returns:
        The canonical record that was verified.

    Raises:
        OrderShapeError: If the order cannot be canonicalized.
        UnknownAlgorithmError: If ``algorithm`` has no provider.
        SignatureLengthError: If a blob has the wrong length.
        SignatureRejectedError: If the signature does not verify.
    """

    record = canonicalize(order)
    provider = providers(algorithm)
    if not verify_order(record, signature, public_key, provider):
        LOGGER.warning(
            "Rejected client-signed order with invalid signature",
            extra={"user_id": record.user_id, "algorithm": algorithm},
        )
        raise SignatureRejectedError(
            "Order signature does not match the submitted order"
        )
    return record


def audit_order(
    order: Mapping[str, object],
    *,
    providers: ProviderResolver = get_provider,
) -> VerificationResult:
    """Re-verify a stored order against the envelope stored alongside it.

    The envelope's own ``algorithm`` selects the provider, so orders signed
    before an algorithm change keep verifying. Errors are reported in the
    result, never raised.
    """

    algorithm: object = order.get("algorithm")
    try:
        envelope = SignatureEnvelope.from_stored(order)
        if envelope is None:
            return VerificationResult(
                SignatureStatus.UNSIGNED, _MESSAGES[SignatureStatus.UNSIGNED]
            )
        algorithm = envelope.algorithm
        provider = providers(envelope.algorithm)
        valid = verify_order(
            canonicalize(order), envelope.signature, envelope.public_key, provider
        )
    except OrderIntegrityError as exc:
        LOGGER.error(
            "Error verifying stored order signature",
            extra={
                "order_id": str(order.get("_id")),
                "algorithm": algorithm,
                "error_type": type(exc).__name__,
            },
            exc_info=exc,
        )
        return VerificationResult(
            SignatureStatus.ERROR,
            f"Verification error: {exc}",
            None if algorithm is None else str(algorithm),
        )

    status = SignatureStatus.VERIFIED if valid else SignatureStatus.DISPUTED
    return VerificationResult(status, _MESSAGES[status], envelope.algorithm)
