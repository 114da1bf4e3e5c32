#!/usr/bin/env python3
"""
Order Signing Example

This example demonstrates:
- Initializing a server signing key in a scratch directory
- Signing an order at creation time
- Auditing stored orders on read, including a tampered one
"""

import tempfile
from pathlib import Path

from order_integrity import OrderIntegrityService, initialize_signing
from order_integrity.settings import OrderIntegritySettings


class DictRepository:
    """Minimal in-process order store for the demo."""

    def __init__(self):
        self.orders = {}

    def find_order_by_id(self, order_id):
        return self.orders.get(order_id)

    def find_orders(self, *, user_id=None, shop_id=None):
        return [
            order
            for order in self.orders.values()
            if user_id is None or order["user"] == user_id
        ]

    def create_order(self, fields):
        order = {"_id": f"order-{len(self.orders) + 1}", **fields}
        self.orders[order["_id"]] = order
        return order

    def update_order(self, order_id, fields):
        self.orders[order_id].update(fields)


def demonstrate_order_signing():
    """Sign a two-shop order, then tamper with one sub-order and audit both."""
    print("Order Signing Example")
    print("=" * 40)

    with tempfile.TemporaryDirectory() as scratch:
        settings = OrderIntegritySettings(key_dir=Path(scratch), algorithm="ML-DSA-44")
        context = initialize_signing(settings)
        print(f"Signing with {context.algorithm} key {context.fingerprint()}")

        repository = DictRepository()
        payload = {
            "user": "u1",
            "cart": [
                {"productId": "p1", "qty": 2, "price": 10, "shopId": "s1"},
                {"productId": "p2", "qty": 1, "price": 4.5, "shopId": "s2"},
            ],
            "totalPrice": 24.5,
            "shippingAddress": {
                "address": "1 Main St",
                "province": "Hanoi",
                "country": "VN",
            },
            "paymentInfo": {"id": None, "status": "succeeded", "type": "Direct"},
        }

        with OrderIntegrityService.from_settings(
            context, repository, settings
        ) as service:
            created = service.create_orders(payload)
            for order in created:
                print(f"Created {order['_id']}: total {order['totalPrice']}")

            # Simulate a direct database edit on the first sub-order
            repository.orders[created[0]["_id"]]["totalPrice"] = 1

            for order in service.orders_for_user("u1"):
                print(
                    f"{order['_id']}: valid={order['isSignatureValid']} "
                    f"({order['verificationMessage']})"
                )


if __name__ == "__main__":
    demonstrate_order_signing()
