"""Exception hierarchy for :mod:`order_integrity`.

Errors fall into two families so operators can tell a broken deployment from
a suspicious order:

* :class:`SigningSubsystemError` and its subclasses mean the signing layer
  itself is misconfigured or defective ("fix my deployment").
* :class:`SignatureRejectedError` means one particular order carried a
  signature that does not verify ("investigate this order").

Input problems (:class:`OrderShapeError`, :class:`SignatureLengthError`) also
derive from :class:`ValueError` so request validation layers can map them to
client-facing validation errors.
"""

from __future__ import annotations

__all__ = [
    "OrderIntegrityError",
    "OrderShapeError",
    "SignatureLengthError",
    "SignatureRejectedError",
    "SigningSubsystemError",
    "SigningInitializationError",
    "SigningKeyUnavailableError",
    "SigningNotInitializedError",
    "ProviderContractError",
    "UnknownAlgorithmError",
]


class OrderIntegrityError(Exception):
    """Base class for every error raised by this package."""


class OrderShapeError(OrderIntegrityError, ValueError):
    """A required order section is structurally absent or malformed."""


class SignatureLengthError(OrderIntegrityError, ValueError):
    """A signature or public key blob does not match the declared length."""

    def __init__(self, field: str, expected: int, actual: int, algorithm: str) -> None:
        super().__init__(
            f"{field} for {algorithm} must be {expected} bytes, got {actual}"
        )
        self.field = field
        self.expected = expected
        self.actual = actual
        self.algorithm = algorithm


class SignatureRejectedError(OrderIntegrityError):
    """A client-supplied signature did not verify against the submitted order."""


class SigningSubsystemError(OrderIntegrityError):
    """The signing subsystem is unusable; requires operator intervention."""


class SigningInitializationError(SigningSubsystemError):
    """Key generation, loading or persistence failed during startup."""


class SigningKeyUnavailableError(SigningSubsystemError):
    """Signing was requested without an initialized signing context."""


class SigningNotInitializedError(SigningSubsystemError, RuntimeError):
    """Key accessors were used before :meth:`KeyLifecycleManager.initialize`."""


class ProviderContractError(SigningSubsystemError):
    """The signature primitive returned output violating its declared lengths."""


class UnknownAlgorithmError(SigningSubsystemError, LookupError):
    """No provider is registered for the requested algorithm identifier."""
