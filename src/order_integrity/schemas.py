"""Pydantic models for the signed order artifact and its envelope."""

from __future__ import annotations

import base64
import binascii
from collections.abc import Mapping
from typing import Union

from pydantic import BaseModel, ConfigDict, Field

from .errors import OrderShapeError

Number = Union[int, float]

# Stored-order keys carrying the signature envelope.
ENVELOPE_FIELDS: tuple[str, ...] = ("signature", "publicKey", "algorithm", "verified")


class _CanonicalModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        populate_by_name=True,
        allow_inf_nan=False,
    )


class CartLine(_CanonicalModel):
    """One protected line item. Display fields are deliberately absent."""

    product_id: str = Field(..., alias="productId", min_length=1)
    qty: Number | None = None
    price: Number | None = None
    shop_id: str | None = Field(default=None, alias="shopId")


class ShippingDestination(_CanonicalModel):
    """Destination fields covered by the signature."""

    address: str | None = None
    province: str | None = None
    country: str | None = None


class PaymentDescriptor(_CanonicalModel):
    """Payment reference as captured when the order was placed."""

    id: str | None = None
    status: str | None = None
    type: str | None = None


class CanonicalOrderRecord(_CanonicalModel):
    """Fixed-shape reduction of an order; the exact input to hashing.

    Field declaration order is the serialization order, so two records built
    from differently ordered inputs always serialize identically.
    """

    user_id: str = Field(..., alias="userId", min_length=1)
    cart: tuple[CartLine, ...]
    total_price: Number | None = Field(default=None, alias="totalPrice")
    shipping_address: ShippingDestination = Field(..., alias="shippingAddress")
    payment_info: PaymentDescriptor = Field(..., alias="paymentInfo")

    def to_canonical_dict(self) -> dict[str, object]:
        """Return the JSON-ready mapping using the wire (camelCase) keys."""

        return self.model_dump(mode="json", by_alias=True)


def _b64decode(value: object, field: str) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if not isinstance(value, str):
        raise OrderShapeError(f"{field} must be base64 text or bytes")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise OrderShapeError(f"{field} is not valid base64") from exc


class SignatureEnvelope(BaseModel):
    """``{signature, publicKey, algorithm, verified}`` persisted with an order."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    signature: bytes
    public_key: bytes = Field(..., alias="publicKey")
    algorithm: str = Field(..., min_length=1)
    verified: bool = False

    def storage_fields(self) -> dict[str, object]:
        """Return the flat fields attached to a stored order (raw bytes)."""

        return {
            "signature": self.signature,
            "publicKey": self.public_key,
            "algorithm": self.algorithm,
            "verified": self.verified,
        }

    def to_transport(self) -> dict[str, object]:
        """Return a JSON-safe mapping with base64-encoded blobs."""

        return {
            "signature": base64.b64encode(self.signature).decode("ascii"),
            "publicKey": base64.b64encode(self.public_key).decode("ascii"),
            "algorithm": self.algorithm,
            "verified": self.verified,
        }

    @classmethod
    def from_transport(cls, data: Mapping[str, object]) -> SignatureEnvelope:
        """Build an envelope from base64 transport fields.

        Raises:
            OrderShapeError: If a field is missing or not valid base64.
        """

        algorithm = data.get("algorithm")
        if not isinstance(algorithm, str) or not algorithm:
            raise OrderShapeError("algorithm is required")
        return cls(
            signature=_b64decode(data.get("signature"), "signature"),
            public_key=_b64decode(data.get("publicKey"), "publicKey"),
            algorithm=algorithm,
            verified=bool(data.get("verified", False)),
        )

    @classmethod
    def from_stored(cls, order: Mapping[str, object]) -> SignatureEnvelope | None:
        """Return the envelope stored on ``order``, or ``None`` when it has none.

        Raises:
            OrderShapeError: If envelope fields are present but the blobs are
                not raw bytes or a field is missing.
        """

        signature = order.get("signature")
        public_key = order.get("publicKey")
        algorithm = order.get("algorithm")
        if not signature and not public_key:
            return None
        if not signature or not public_key or not algorithm:
            raise OrderShapeError(
                "stored signature envelope is incomplete; signature, publicKey "
                "and algorithm are all required"
            )
        for field, blob in (("signature", signature), ("publicKey", public_key)):
            if not isinstance(blob, (bytes, bytearray)):
                raise OrderShapeError(
                    f"stored {field} must be raw bytes, got {type(blob).__name__}"
                )
        return cls(
            signature=bytes(signature),
            public_key=bytes(public_key),
            algorithm=str(algorithm),
            verified=bool(order.get("verified", False)),
        )
