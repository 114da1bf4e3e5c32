"""Signature primitive contract shared by every provider."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class KeyPair:
    """Raw key material produced by :meth:`SignatureProvider.generate_keypair`."""

    public_key: bytes
    secret_key: bytes = field(repr=False)


class SignatureProvider(ABC):
    """Black-box digital signature primitive with fixed-length outputs.

    Subclasses declare the byte lengths of their keys and signatures; callers
    must rely on these declarations instead of hardcoding sizes.
    """

    algorithm: str
    public_key_length: int
    secret_key_length: int
    signature_length: int

    @abstractmethod
    def generate_keypair(self) -> KeyPair:
        """Return a fresh keypair."""

    @abstractmethod
    def sign(self, message: bytes, secret_key: bytes) -> bytes:
        """Sign ``message`` with ``secret_key``."""

    @abstractmethod
    def _verify(self, message: bytes, signature: bytes, public_key: bytes) -> bool:
        """Primitive verification; may raise on unparseable input."""

    def verify(self, message: bytes, signature: bytes, public_key: bytes) -> bool:
        """Return ``True`` when ``signature`` is valid for ``message``.

        Correct-length blobs that the primitive cannot decode are reported as
        an invalid signature rather than an error.
        """

        try:
            return bool(self._verify(message, signature, public_key))
        except (ValueError, IndexError, TypeError) as exc:
            LOGGER.debug(
                "Primitive rejected undecodable signature input",
                extra={"algorithm": self.algorithm, "error_type": type(exc).__name__},
            )
            return False

    def describe(self) -> dict[str, object]:
        """Return the declared parameters for logs and CLI output."""

        return {
            "algorithm": self.algorithm,
            "public_key_length": self.public_key_length,
            "secret_key_length": self.secret_key_length,
            "signature_length": self.signature_length,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(algorithm={self.algorithm!r})"
