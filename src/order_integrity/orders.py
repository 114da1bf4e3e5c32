"""Order creation and read flows wired to the signing core.

The persistence layer is reached only through :class:`OrderRepository`; any
document store exposing these four calls can back the service.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Protocol

from .canonical import canonicalize, resolved_cart, user_reference
from .errors import OrderShapeError
from .keys import SigningContext
from .primitives import get_provider
from .schemas import SignatureEnvelope
from .settings import OrderIntegritySettings, get_settings
from .signing import sign_order
from .verification import (
    ProviderResolver,
    SignatureStatus,
    VerificationResult,
    audit_order,
    verify_client_submission,
)

LOGGER = logging.getLogger(__name__)

OrderDocument = dict[str, object]


class OrderRepository(Protocol):
    """Document-store operations the flows depend on."""

    def find_order_by_id(self, order_id: str) -> OrderDocument | None:
        """Return the stored order or ``None``."""

    def find_orders(
        self, *, user_id: str | None = None, shop_id: str | None = None
    ) -> list[OrderDocument]:
        """Return orders placed by ``user_id`` or containing items of ``shop_id``."""

    def create_order(self, fields: Mapping[str, object]) -> OrderDocument:
        """Persist a new order and return it, including its ``_id``."""

    def update_order(self, order_id: str, fields: Mapping[str, object]) -> None:
        """Apply a partial update to a stored order."""


def _group_by_shop(cart: Sequence[object]) -> dict[str | None, list[object]]:
    """Group the resolvable cart items by their canonical ``shopId``."""

    groups: dict[str | None, list[object]] = {}
    for item, line in resolved_cart(cart):
        groups.setdefault(line.shop_id, []).append(item)
    return groups


def _client_envelope(payload: Mapping[str, object]) -> SignatureEnvelope | None:
    if payload.get("signature") is None:
        return None
    return SignatureEnvelope.from_transport(payload)


class OrderIntegrityService:
    """Create signed orders and attach verification status on read.

    Args:
        context: Initialized signing context for server-produced signatures.
        repository: Persistence collaborator.
        providers: Resolves an envelope's algorithm to a provider.
        executor: Runs background ``verified`` cache writes. When omitted a
            private pool of ``cache_workers`` threads is created and shut
            down by :meth:`close`.
        cache_workers: Size of the private pool.
        alert_on_dispute: Log failed read-time verifications at ``ERROR``.
    """

    def __init__(
        self,
        context: SigningContext,
        repository: OrderRepository,
        *,
        providers: ProviderResolver = get_provider,
        executor: Executor | None = None,
        cache_workers: int = 2,
        alert_on_dispute: bool = False,
    ) -> None:
        self._context = context
        self._repository = repository
        self._providers = providers
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=cache_workers, thread_name_prefix="order-verified-cache"
        )
        self._alert_on_dispute = alert_on_dispute

    @classmethod
    def from_settings(
        cls,
        context: SigningContext,
        repository: OrderRepository,
        settings: OrderIntegritySettings | None = None,
    ) -> OrderIntegrityService:
        settings = settings or get_settings()
        return cls(
            context,
            repository,
            cache_workers=settings.cache_workers,
            alert_on_dispute=settings.alert_on_dispute,
        )

    def close(self, wait: bool = True) -> None:
        """Shut down the cache-update pool if this service created it."""

        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    def __enter__(self) -> OrderIntegrityService:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # creation path

    def create_orders(self, payload: Mapping[str, object]) -> list[OrderDocument]:
        """Split ``payload`` into one signed sub-order per shop and persist them.

        A payload carrying ``signature``/``publicKey``/``algorithm`` is treated
        as client-signed: it must verify and must cover a single shop.
        Nothing is persisted unless every sub-order was signed.

        Raises:
            OrderShapeError: If the payload cannot be canonicalized or has no
                resolvable cart items.
            SignatureRejectedError: If a client signature does not verify.
            SigningKeyUnavailableError: If server signing is not possible.
        """

        canonicalize(payload)
        groups = _group_by_shop(payload["cart"])  # type: ignore[arg-type]
        if not groups:
            raise OrderShapeError("order has no resolvable cart items")
        client_envelope = _client_envelope(payload)

        if client_envelope is not None:
            if len(groups) > 1:
                raise OrderShapeError(
                    "Client-signed orders must contain items from a single shop"
                )
            verify_client_submission(
                payload,
                client_envelope.signature,
                client_envelope.public_key,
                client_envelope.algorithm,
                providers=self._providers,
            )
            [items] = groups.values()
            fields = self._order_fields(payload, items, payload.get("totalPrice"))
            fields.update(
                client_envelope.model_copy(update={"verified": True}).storage_fields()
            )
            return [self._repository.create_order(fields)]

        pending: list[OrderDocument] = []
        for items in groups.values():
            fields = self._order_fields(payload, items, payload.get("totalPrice"))
            record = canonicalize(fields)
            if len(groups) > 1:
                subtotal = round(
                    sum((line.qty or 0) * (line.price or 0) for line in record.cart), 2
                )
                fields["totalPrice"] = subtotal
                record = canonicalize(fields)
            fields.update(sign_order(self._context, record).storage_fields())
            pending.append(fields)

        created = [self._repository.create_order(fields) for fields in pending]
        LOGGER.info(
            "Created signed orders",
            extra={"order_count": len(created), "algorithm": self._context.algorithm},
        )
        return created

    @staticmethod
    def _order_fields(
        payload: Mapping[str, object], items: list[object], total: object
    ) -> OrderDocument:
        return {
            "user": user_reference(payload),
            "cart": list(items),
            "totalPrice": total,
            "shippingAddress": payload.get("shippingAddress"),
            "paymentInfo": payload.get("paymentInfo") or {},
        }

    # read path

    def annotate_order(self, order: OrderDocument) -> OrderDocument:
        """Return ``order`` with ``isSignatureValid``/``verificationMessage``."""

        result = audit_order(order, providers=self._providers)
        self._record_outcome(order, result)
        return {**order, **result.response_fields()}

    def annotate_orders(self, orders: list[OrderDocument]) -> list[OrderDocument]:
        return [self.annotate_order(order) for order in orders]

    def read_order(self, order_id: str) -> OrderDocument | None:
        order = self._repository.find_order_by_id(order_id)
        return None if order is None else self.annotate_order(order)

    def orders_for_user(self, user_id: str) -> list[OrderDocument]:
        return self.annotate_orders(self._repository.find_orders(user_id=user_id))

    def orders_for_shop(self, shop_id: str) -> list[OrderDocument]:
        return self.annotate_orders(self._repository.find_orders(shop_id=shop_id))

    def _record_outcome(self, order: OrderDocument, result: VerificationResult) -> None:
        order_id = order.get("_id")
        if result.status is SignatureStatus.DISPUTED:
            LOGGER.log(
                logging.ERROR if self._alert_on_dispute else logging.WARNING,
                "Stored order failed signature verification",
                extra={"order_id": str(order_id), "algorithm": result.algorithm},
            )
        if result.status not in (SignatureStatus.VERIFIED, SignatureStatus.DISPUTED):
            return
        if order.get("verified") == result.is_signature_valid:
            return
        if order_id is None:
            LOGGER.debug("Skipping verified cache update for order without _id")
            return
        self._schedule_cache_update(str(order_id), result.is_signature_valid)

    def _schedule_cache_update(self, order_id: str, verified: bool) -> None:
        try:
            future = self._executor.submit(
                self._repository.update_order, order_id, {"verified": verified}
            )
        except RuntimeError as exc:
            LOGGER.warning(
                "Could not schedule verified cache update",
                extra={"order_id": order_id, "error_type": type(exc).__name__},
            )
            return

        def _report(done: Future[None]) -> None:
            exc = done.exception()
            if exc is not None:
                LOGGER.warning(
                    "Failed to update cached verification flag",
                    extra={"order_id": order_id, "verified": verified},
                    exc_info=exc,
                )

        future.add_done_callback(_report)
