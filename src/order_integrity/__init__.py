"""Order Integrity - post-quantum signing and verification of e-commerce orders."""

from __future__ import annotations

from importlib import import_module
from typing import Any, TYPE_CHECKING

__all__ = [
    "CanonicalOrderRecord",
    "KeyLifecycleManager",
    "OrderIntegrityService",
    "SignatureEnvelope",
    "SigningContext",
    "audit_order",
    "canonicalize",
    "digest",
    "initialize_signing",
    "sign_order",
    "verify_client_submission",
    "verify_order",
]

if TYPE_CHECKING:
    from .canonical import canonicalize
    from .hashing import digest
    from .keys import KeyLifecycleManager, SigningContext, initialize_signing
    from .orders import OrderIntegrityService
    from .schemas import CanonicalOrderRecord, SignatureEnvelope
    from .signing import sign_order
    from .verification import audit_order, verify_client_submission, verify_order


def __getattr__(name: str) -> Any:
    """Lazily import submodules so the signature backends load on first use."""

    module_map = {
        "CanonicalOrderRecord": "schemas",
        "KeyLifecycleManager": "keys",
        "OrderIntegrityService": "orders",
        "SignatureEnvelope": "schemas",
        "SigningContext": "keys",
        "audit_order": "verification",
        "canonicalize": "canonical",
        "digest": "hashing",
        "initialize_signing": "keys",
        "sign_order": "signing",
        "verify_client_submission": "verification",
        "verify_order": "verification",
    }

    if name not in module_map:
        raise AttributeError(name)

    module = import_module(f".{module_map[name]}", __name__)
    return getattr(module, name)
