"""Tests for the order creation and read flows."""

from __future__ import annotations

import base64
import copy
import logging
from types import SimpleNamespace

import pytest

from order_integrity.canonical import canonicalize
from order_integrity.errors import (
    OrderShapeError,
    SignatureRejectedError,
    SigningKeyUnavailableError,
)
from order_integrity.keys import SigningContext
from order_integrity.orders import OrderIntegrityService
from order_integrity.settings import OrderIntegritySettings
from order_integrity.signing import sign_order


@pytest.fixture
def payload(sample_order: dict) -> dict:
    order = copy.deepcopy(sample_order)
    for key in ("_id", "status", "deliveredAt"):
        order.pop(key)
    return order


@pytest.fixture
def service(fake_context, repository, providers):
    svc = OrderIntegrityService(fake_context, repository, providers=providers)
    yield svc
    svc.close()


def _b64(blob: bytes) -> str:
    return base64.b64encode(blob).decode("ascii")


def test_single_shop_order_is_signed_and_stored(service, repository, payload, fake_context) -> None:
    [order] = service.create_orders(payload)

    stored = repository.orders[order["_id"]]
    assert stored["verified"] is True
    assert stored["algorithm"] == "FAKE-SIG"
    assert stored["publicKey"] == fake_context.public_key
    assert stored["totalPrice"] == 20
    assert service.annotate_order(stored)["isSignatureValid"] is True


def test_multi_shop_cart_is_split_with_subtotals(service, repository, payload) -> None:
    payload["cart"].append({"productId": "p2", "qty": 3, "price": 1.5, "shopId": "s2"})
    payload["totalPrice"] = 24.5

    orders = service.create_orders(payload)

    assert [order["totalPrice"] for order in orders] == [20, 4.5]
    assert [order["cart"][0]["shopId"] for order in orders] == ["s1", "s2"]
    for order in orders:
        assert service.read_order(order["_id"])["isSignatureValid"] is True


def test_client_signed_order_is_verified_and_kept(service, repository, payload, fake_provider) -> None:
    client_pair = fake_provider.generate_keypair()
    client_envelope = sign_order(
        SigningContext(
            provider=fake_provider,
            public_key=client_pair.public_key,
            secret_key=client_pair.secret_key,
        ),
        canonicalize(payload),
    )
    submission = {
        **payload,
        "signature": _b64(client_envelope.signature),
        "publicKey": _b64(client_pair.public_key),
        "algorithm": "FAKE-SIG",
    }

    [order] = service.create_orders(submission)

    assert order["publicKey"] == client_pair.public_key
    assert order["signature"] == client_envelope.signature
    assert order["verified"] is True
    assert service.annotate_order(order)["isSignatureValid"] is True


def test_client_signed_order_with_bad_signature_is_rejected(
    service, repository, payload, fake_context
) -> None:
    envelope = sign_order(fake_context, canonicalize(payload))
    submission = {
        **payload,
        "totalPrice": 1,
        "signature": _b64(envelope.signature),
        "publicKey": _b64(envelope.public_key),
        "algorithm": envelope.algorithm,
    }

    with pytest.raises(SignatureRejectedError):
        service.create_orders(submission)
    assert repository.orders == {}


def test_client_signed_order_must_cover_one_shop(service, repository, payload, fake_context) -> None:
    payload["cart"].append({"productId": "p2", "qty": 1, "price": 1, "shopId": "s2"})
    envelope = sign_order(fake_context, canonicalize(payload))
    submission = {**payload, **envelope.to_transport()}

    with pytest.raises(OrderShapeError, match="single shop"):
        service.create_orders(submission)
    assert repository.orders == {}


def test_missing_shipping_address_rejects_creation(service, repository, payload) -> None:
    payload.pop("shippingAddress")

    with pytest.raises(OrderShapeError):
        service.create_orders(payload)
    assert repository.orders == {}


def test_creation_without_signing_key_fails(repository, payload) -> None:
    service = OrderIntegrityService(None, repository)  # type: ignore[arg-type]
    try:
        with pytest.raises(SigningKeyUnavailableError):
            service.create_orders(payload)
    finally:
        service.close()
    assert repository.orders == {}


def test_tampered_order_is_flagged_and_cache_updated(
    fake_context, repository, providers, payload, caplog: pytest.LogCaptureFixture
) -> None:
    service = OrderIntegrityService(fake_context, repository, providers=providers)
    [order] = service.create_orders(payload)
    repository.orders[order["_id"]]["cart"][0]["qty"] = 5

    with caplog.at_level(logging.WARNING, logger="order_integrity"):
        annotated = service.read_order(order["_id"])
        service.close()

    assert annotated["isSignatureValid"] is False
    assert annotated["verificationMessage"] == "Signature is invalid."
    assert repository.orders[order["_id"]]["verified"] is False
    assert repository.updates == [(order["_id"], {"verified": False})]
    assert "failed signature verification" in caplog.text


def test_cache_update_failure_does_not_break_reads(
    fake_context, repository, providers, payload, caplog: pytest.LogCaptureFixture
) -> None:
    service = OrderIntegrityService(fake_context, repository, providers=providers)
    [order] = service.create_orders(payload)
    repository.orders[order["_id"]]["totalPrice"] = 999
    repository.fail_updates = True

    with caplog.at_level(logging.WARNING, logger="order_integrity"):
        annotated = service.read_order(order["_id"])
        service.close()

    assert annotated["isSignatureValid"] is False
    assert repository.orders[order["_id"]]["verified"] is True
    assert "Failed to update cached verification flag" in caplog.text


def test_unchanged_status_schedules_no_update(service, repository, payload) -> None:
    [order] = service.create_orders(payload)

    service.read_order(order["_id"])
    service.close()

    assert repository.updates == []


def test_dispute_alerting_escalates_to_error(
    fake_context, repository, providers, payload, caplog: pytest.LogCaptureFixture
) -> None:
    service = OrderIntegrityService(
        fake_context, repository, providers=providers, alert_on_dispute=True
    )
    [order] = service.create_orders(payload)
    repository.orders[order["_id"]]["paymentInfo"]["status"] = "refunded"

    with caplog.at_level(logging.WARNING, logger="order_integrity"):
        service.read_order(order["_id"])
        service.close()

    disputes = [r for r in caplog.records if "failed signature verification" in r.getMessage()]
    assert disputes and disputes[0].levelno == logging.ERROR


def test_unsigned_orders_are_reported_not_rejected(service, repository) -> None:
    order = repository.create_order(
        {
            "user": "u9",
            "cart": [{"productId": "p1", "qty": 1, "price": 1, "shopId": "s1"}],
            "totalPrice": 1,
            "shippingAddress": {"address": "x"},
        }
    )

    annotated = service.read_order(order["_id"])

    assert annotated["isSignatureValid"] is False
    assert annotated["verificationMessage"] == "Order does not contain signature information."


def test_listing_by_user_and_shop(service, payload) -> None:
    payload["cart"].append({"productId": "p2", "qty": 1, "price": 2, "shopId": "s2"})
    service.create_orders(payload)

    assert len(service.orders_for_user("u1")) == 2
    assert [o["isSignatureValid"] for o in service.orders_for_shop("s2")] == [True]
    assert service.orders_for_user("nobody") == []
    assert service.read_order("missing") is None


def test_from_settings_applies_dispute_policy(fake_context, repository, tmp_path) -> None:
    settings = OrderIntegritySettings(
        key_dir=tmp_path, alert_on_dispute=True, cache_workers=1
    )

    with OrderIntegrityService.from_settings(fake_context, repository, settings) as service:
        assert service._alert_on_dispute is True


def test_user_id_keyed_order_round_trips(service, repository, payload) -> None:
    payload.pop("user")
    payload["userId"] = "u1"

    [order] = service.create_orders(payload)
    stored = repository.orders[order["_id"]]

    assert stored["user"] == "u1"
    assert service.read_order(order["_id"])["isSignatureValid"] is True
    assert [o["_id"] for o in service.orders_for_user("u1")] == [order["_id"]]


def test_user_id_keyed_client_signed_order_round_trips(
    service, repository, payload, fake_context
) -> None:
    payload.pop("user")
    payload["userId"] = "u1"
    envelope = sign_order(fake_context, canonicalize(payload))

    [order] = service.create_orders({**payload, **envelope.to_transport()})

    assert repository.orders[order["_id"]]["user"] == "u1"
    annotated = service.read_order(order["_id"])
    assert annotated["isSignatureValid"] is True
    assert annotated["verificationMessage"] == "Signature is valid."


def test_unresolvable_items_do_not_become_sub_orders(service, repository, payload) -> None:
    payload["cart"].append({"qty": 1, "price": 5, "shopId": "s2"})

    orders = service.create_orders(payload)

    assert len(orders) == 1
    assert [item["productId"] for item in orders[0]["cart"]] == ["p1"]
    assert orders[0]["totalPrice"] == 20
    assert service.orders_for_shop("s2") == []


def test_cart_without_resolvable_items_is_rejected(service, repository, payload) -> None:
    payload["cart"] = [{"qty": 1, "price": 5, "shopId": "s1"}]

    with pytest.raises(OrderShapeError, match="no resolvable cart items"):
        service.create_orders(payload)
    assert repository.orders == {}


def test_document_object_cart_items_are_split_by_shop(service, payload) -> None:
    payload["cart"] = [
        SimpleNamespace(productId="p1", qty=2, price=10, shopId="s1"),
        SimpleNamespace(productId="p2", qty=1, price=4.5, shopId="s2"),
    ]

    orders = service.create_orders(payload)

    assert [order["totalPrice"] for order in orders] == [20, 4.5]
    assert [order["cart"][0].shopId for order in orders] == ["s1", "s2"]
