"""Reduce live order documents to their canonical, signable form.

Orders reach this module in whatever shape the persistence layer or the
request body produced: plain mappings or document objects, with the user and
cart products either populated or left as bare references. Two reference
variants are recognised wherever an identifier is expected:

``populated``
    A mapping (or object) carrying an ``_id`` member, e.g. ``{"_id": "u1"}``.
``bare``
    Any other non-empty scalar, stringified, e.g. ``"u1"`` or an ObjectId.

Cart items come in two variants as well: ``referenced`` items carry a
``productId`` (itself bare or populated) and ``embedded`` items only carry the
product's own ``_id``. Items resolving to neither are dropped.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping, Sequence

from pydantic import ValidationError

from .errors import OrderShapeError
from .schemas import (
    CanonicalOrderRecord,
    CartLine,
    Number,
    PaymentDescriptor,
    ShippingDestination,
)

__all__ = [
    "canonicalize",
    "canonical_bytes",
    "canonical_json",
    "resolved_cart",
    "user_reference",
]

_SHIPPING_FIELDS: tuple[str, ...] = ("address", "province", "country")
_PAYMENT_FIELDS: tuple[str, ...] = ("id", "status", "type")


def _member(source: object, name: str) -> object:
    """Read ``name`` from a mapping or a document object."""

    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def _is_populated(value: object) -> bool:
    if isinstance(value, Mapping):
        return True
    return not isinstance(value, (str, bytes, int, float)) and hasattr(value, "_id")


def _reference_id(value: object) -> str | None:
    """Resolve a bare or populated reference to its string identifier."""

    if _is_populated(value):
        value = _member(value, "_id")
    if value is None or isinstance(value, bool):
        return None
    text = str(value)
    return text or None


def _text(value: object) -> str | None:
    if value is None or value == "":
        return None
    return value if isinstance(value, str) else str(value)


def _number(value: object, field: str) -> Number | None:
    """Normalise a numeric field; integral floats collapse to ``int``."""

    if value is None:
        return None
    if isinstance(value, bool):
        raise OrderShapeError(f"{field} must be numeric, got a boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise OrderShapeError(f"{field} must be a finite number")
        return int(value) if value.is_integer() else value
    raise OrderShapeError(f"{field} must be numeric, got {type(value).__name__}")


def _cart_line(item: object, index: int) -> CartLine | None:
    product_id = _reference_id(_member(item, "productId"))
    if product_id is None:
        product_id = _reference_id(_member(item, "_id"))
    if product_id is None:
        return None
    return CartLine(
        product_id=product_id,
        qty=_number(_member(item, "qty"), f"cart[{index}].qty"),
        price=_number(_member(item, "price"), f"cart[{index}].price"),
        shop_id=_text(_member(item, "shopId")),
    )


def resolved_cart(cart: Sequence[object]) -> list[tuple[object, CartLine]]:
    """Pair each resolvable cart item with its canonical line.

    Items resolving to neither a ``productId`` nor an ``_id`` are skipped, so
    the result lists exactly the items that reach the signed record.
    """

    pairs: list[tuple[object, CartLine]] = []
    for index, item in enumerate(cart):
        line = _cart_line(item, index)
        if line is not None:
            pairs.append((item, line))
    return pairs


def user_reference(order: object) -> object:
    """Return the raw user reference canonicalization resolves for ``order``.

    ``user`` wins when it resolves; otherwise the top-level ``userId``.
    """

    user = _member(order, "user")
    if _reference_id(user) is not None:
        return user
    return _member(order, "userId")


def _user_id(order: object) -> str:
    user_id = _reference_id(user_reference(order))
    if user_id is None:
        raise OrderShapeError("order has no resolvable user reference")
    return user_id


def canonicalize(order: object) -> CanonicalOrderRecord:
    """Return the canonical record for ``order``.

    Args:
        order: Mapping or document object exposing ``user``, ``cart``,
            ``totalPrice``, ``shippingAddress`` and ``paymentInfo``. A
            :class:`CanonicalOrderRecord` is returned unchanged.

    Returns:
        The fixed-shape record covering only the protected fields.

    Raises:
        OrderShapeError: If the cart or shipping address is absent, the user
            cannot be resolved, or a numeric field holds a non-number.
    """

    if isinstance(order, CanonicalOrderRecord):
        return order

    cart = _member(order, "cart")
    if cart is None or isinstance(cart, (str, bytes, Mapping)) or not isinstance(
        cart, Sequence
    ):
        raise OrderShapeError("order is missing its cart array")
    shipping = _member(order, "shippingAddress")
    if shipping is None:
        raise OrderShapeError("order is missing its shipping address")

    payment = _member(order, "paymentInfo")

    try:
        lines = tuple(line for _, line in resolved_cart(cart))
        return CanonicalOrderRecord(
            user_id=_user_id(order),
            cart=lines,
            total_price=_number(_member(order, "totalPrice"), "totalPrice"),
            shipping_address=ShippingDestination(
                **{name: _text(_member(shipping, name)) for name in _SHIPPING_FIELDS}
            ),
            payment_info=PaymentDescriptor(
                **{name: _text(_member(payment, name)) for name in _PAYMENT_FIELDS}
            ),
        )
    except ValidationError as exc:
        raise OrderShapeError(f"order cannot be canonicalized: {exc}") from exc


def canonical_json(record: CanonicalOrderRecord) -> str:
    """Serialize ``record`` compactly in its fixed key order."""

    return json.dumps(
        record.to_canonical_dict(),
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def canonical_bytes(record: CanonicalOrderRecord) -> bytes:
    """Return the UTF-8 encoding of :func:`canonical_json`."""

    return canonical_json(record).encode("utf-8")
