"""Server-side signing of canonical order records."""

from __future__ import annotations

import logging

from .canonical import canonicalize
from .errors import ProviderContractError, SigningKeyUnavailableError
from .hashing import digest
from .keys import SigningContext
from .schemas import CanonicalOrderRecord, SignatureEnvelope

LOGGER = logging.getLogger(__name__)


def _require_context(context: SigningContext | None) -> SigningContext:
    if context is None:
        raise SigningKeyUnavailableError(
            "No signing context available; the server signing key was never "
            "initialized"
        )
    return context


def sign_digest(context: SigningContext | None, message_digest: bytes) -> bytes:
    """Sign a precomputed digest with the context's secret key.

    Raises:
        SigningKeyUnavailableError: If ``context`` is ``None``.
        ProviderContractError: If the provider returns a signature whose length
            differs from its declared signature length.
    """

    context = _require_context(context)
    provider = context.provider
    signature = provider.sign(message_digest, context.secret_key)
    if len(signature) != provider.signature_length:
        raise ProviderContractError(
            f"{provider.algorithm} provider returned a {len(signature)}-byte "
            f"signature; declared length is {provider.signature_length}"
        )
    return signature


def sign_order(
    context: SigningContext | None, record: CanonicalOrderRecord
) -> SignatureEnvelope:
    """Sign ``record`` and return the envelope to persist with the order.

    The envelope is marked ``verified`` because the trusted server key produced
    it.
    """

    context = _require_context(context)
    signature = sign_digest(context, digest(record))
    LOGGER.debug(
        "Signed order",
        extra={
            "user_id": record.user_id,
            "line_count": len(record.cart),
            "algorithm": context.algorithm,
        },
    )
    return SignatureEnvelope(
        signature=signature,
        public_key=context.public_key,
        algorithm=context.algorithm,
        verified=True,
    )


class OrderSigner:
    """Signing service bound to one :class:`SigningContext`."""

    def __init__(self, context: SigningContext) -> None:
        self._context = context

    @property
    def context(self) -> SigningContext:
        return self._context

    def sign_order(self, order: object) -> SignatureEnvelope:
        """Canonicalize ``order`` (raw or canonical) and sign it."""

        return sign_order(self._context, canonicalize(order))
