"""Signature primitive providers and the algorithm registry."""

from __future__ import annotations

from collections.abc import Callable
from functools import lru_cache

from ..errors import UnknownAlgorithmError
from .base import KeyPair, SignatureProvider
from .ed25519 import Ed25519Provider
from .ml_dsa import PARAMETER_SETS, MLDSAProvider

__all__ = [
    "DEFAULT_ALGORITHM",
    "Ed25519Provider",
    "KeyPair",
    "MLDSAProvider",
    "SignatureProvider",
    "available_algorithms",
    "get_provider",
]

DEFAULT_ALGORITHM = "ML-DSA-65"

_FACTORIES: dict[str, Callable[[], SignatureProvider]] = {
    **{name: (lambda name=name: MLDSAProvider(name)) for name in PARAMETER_SETS},
    "Ed25519": Ed25519Provider,
}


def available_algorithms() -> tuple[str, ...]:
    """Return the registered algorithm identifiers."""

    return tuple(_FACTORIES)


@lru_cache(maxsize=None)
def get_provider(algorithm: str) -> SignatureProvider:
    """Return the shared provider instance for ``algorithm``.

    Raises:
        UnknownAlgorithmError: If no provider is registered under that name.
    """

    try:
        factory = _FACTORIES[algorithm]
    except KeyError as exc:
        raise UnknownAlgorithmError(
            f"No signature provider registered for {algorithm!r}; "
            f"available: {', '.join(available_algorithms())}"
        ) from exc
    return factory()
