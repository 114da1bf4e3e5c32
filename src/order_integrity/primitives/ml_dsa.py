"""ML-DSA (FIPS 204) provider backed by ``dilithium-py``."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from dilithium_py.ml_dsa import ML_DSA_44, ML_DSA_65, ML_DSA_87

from .base import KeyPair, SignatureProvider


@dataclass(frozen=True, slots=True)
class _ParameterSet:
    scheme: object
    public_key_length: int
    secret_key_length: int
    signature_length: int


PARAMETER_SETS: Final[dict[str, _ParameterSet]] = {
    "ML-DSA-44": _ParameterSet(ML_DSA_44, 1312, 2560, 2420),
    "ML-DSA-65": _ParameterSet(ML_DSA_65, 1952, 4032, 3309),
    "ML-DSA-87": _ParameterSet(ML_DSA_87, 2592, 4896, 4627),
}


class MLDSAProvider(SignatureProvider):
    """Lattice-based post-quantum signatures.

    Args:
        algorithm: One of ``ML-DSA-44``, ``ML-DSA-65`` or ``ML-DSA-87``.

    Raises:
        ValueError: If ``algorithm`` is not a known parameter set.
    """

    def __init__(self, algorithm: str = "ML-DSA-65") -> None:
        try:
            params = PARAMETER_SETS[algorithm]
        except KeyError as exc:
            raise ValueError(f"Unsupported ML-DSA parameter set: {algorithm}") from exc
        self.algorithm = algorithm
        self.public_key_length = params.public_key_length
        self.secret_key_length = params.secret_key_length
        self.signature_length = params.signature_length
        self._scheme = params.scheme

    def generate_keypair(self) -> KeyPair:
        public_key, secret_key = self._scheme.keygen()
        return KeyPair(public_key=bytes(public_key), secret_key=bytes(secret_key))

    def sign(self, message: bytes, secret_key: bytes) -> bytes:
        return bytes(self._scheme.sign(secret_key, message))

    def _verify(self, message: bytes, signature: bytes, public_key: bytes) -> bool:
        return self._scheme.verify(public_key, message, signature)
