"""Pytest configuration and fixtures."""

from __future__ import annotations

import copy
import hashlib
import hmac
import os
import sys
import threading
import uuid
from collections.abc import Mapping

import pytest

# Ensure src/ is on sys.path for tests so the src layout is used during test runs
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from order_integrity.keys import KeyLifecycleManager, SigningContext  # noqa: E402
from order_integrity.primitives import (  # noqa: E402
    KeyPair,
    SignatureProvider,
    get_provider,
)


class FakeSignatureProvider(SignatureProvider):
    """Fast keyed-hash stand-in with the same fixed-length contract.

    Anyone holding the public key can forge signatures, so this only ever
    appears in tests.
    """

    algorithm = "FAKE-SIG"
    public_key_length = 32
    secret_key_length = 32
    signature_length = 48

    def __init__(self) -> None:
        self.sign_calls = 0

    @staticmethod
    def _public_for(secret_key: bytes) -> bytes:
        return hashlib.sha256(b"fake-public:" + secret_key).digest()

    def generate_keypair(self) -> KeyPair:
        secret_key = os.urandom(self.secret_key_length)
        return KeyPair(public_key=self._public_for(secret_key), secret_key=secret_key)

    def sign(self, message: bytes, secret_key: bytes) -> bytes:
        self.sign_calls += 1
        return hmac.new(self._public_for(secret_key), message, hashlib.sha384).digest()

    def _verify(self, message: bytes, signature: bytes, public_key: bytes) -> bool:
        expected = hmac.new(public_key, message, hashlib.sha384).digest()
        return hmac.compare_digest(expected, signature)


class InMemoryOrderRepository:
    """Dict-backed stand-in for the document store."""

    def __init__(self) -> None:
        self.orders: dict[str, dict[str, object]] = {}
        self.updates: list[tuple[str, dict[str, object]]] = []
        self.fail_updates = False
        self._lock = threading.Lock()

    def find_order_by_id(self, order_id: str) -> dict[str, object] | None:
        order = self.orders.get(order_id)
        return copy.deepcopy(order) if order is not None else None

    def find_orders(
        self, *, user_id: str | None = None, shop_id: str | None = None
    ) -> list[dict[str, object]]:
        found = []
        for order in self.orders.values():
            user = order.get("user")
            owner = user.get("_id") if isinstance(user, Mapping) else user
            if user_id is not None and str(owner) != user_id:
                continue
            if shop_id is not None and not any(
                item.get("shopId") == shop_id for item in order["cart"]
            ):
                continue
            found.append(copy.deepcopy(order))
        return found

    def create_order(self, fields: Mapping[str, object]) -> dict[str, object]:
        order = {"_id": uuid.uuid4().hex, "status": "Processing", **copy.deepcopy(dict(fields))}
        with self._lock:
            self.orders[order["_id"]] = order
        return copy.deepcopy(order)

    def update_order(self, order_id: str, fields: Mapping[str, object]) -> None:
        if self.fail_updates:
            raise ConnectionError("document store unavailable")
        with self._lock:
            self.orders[order_id].update(fields)
            self.updates.append((order_id, dict(fields)))


@pytest.fixture
def fake_provider() -> FakeSignatureProvider:
    return FakeSignatureProvider()


@pytest.fixture
def fake_context(fake_provider: FakeSignatureProvider) -> SigningContext:
    pair = fake_provider.generate_keypair()
    return SigningContext(
        provider=fake_provider, public_key=pair.public_key, secret_key=pair.secret_key
    )


@pytest.fixture
def providers(fake_provider: FakeSignatureProvider):
    """Resolver that knows the fake algorithm on top of the real registry."""

    def _resolve(algorithm: str) -> SignatureProvider:
        if algorithm == fake_provider.algorithm:
            return fake_provider
        return get_provider(algorithm)

    return _resolve


@pytest.fixture
def repository() -> InMemoryOrderRepository:
    return InMemoryOrderRepository()


@pytest.fixture
def key_manager(tmp_path, fake_provider: FakeSignatureProvider) -> KeyLifecycleManager:
    return KeyLifecycleManager(tmp_path / "keys", fake_provider)


@pytest.fixture
def sample_order() -> dict[str, object]:
    """Order from the reference scenario, with display and lifecycle fields."""

    return {
        "_id": "o1",
        "user": {"_id": "u1", "name": "Lan"},
        "cart": [
            {
                "productId": "p1",
                "name": "Desk lamp",
                "images": ["lamp.png"],
                "qty": 2,
                "price": 10,
                "shopId": "s1",
            }
        ],
        "totalPrice": 20,
        "shippingAddress": {
            "address": "1 Main St",
            "province": "Hanoi",
            "country": "VN",
            "zipCode": "100000",
        },
        "paymentInfo": {"id": None, "status": "succeeded", "type": "Direct"},
        "status": "Processing",
        "deliveredAt": None,
    }
