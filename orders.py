"""
Order placement and lifecycle.

place_order turns a requested line list into a persisted order. Stock for each
line is reserved with an atomic conditional decrement; if any line cannot be
reserved, or the order insert fails, every reservation already taken for that
order is given back before the error propagates. Either the order exists and
its stock is committed, or neither happened.

Status changes go through transition_status, which only follows the lifecycle
graph and restocks the order's lines when it is cancelled. The status is
written first and the lines are restocked after it, so a cancel that wins the
status write restocks exactly once. If a storage error interrupts the restock,
the order stays Cancelled; the lines already returned and the ones still
pending are logged as `cancel_restock_failed` for manual reconciliation.
"""
from typing import Any, Dict, List, Optional, Tuple

import structlog
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from catalog import CatalogStore
from database import create_document, parse_object_id, utcnow
from errors import InvalidRequest, InvalidTransition, NotFound
from pricing import effective_price, order_totals
from schemas import Order, OrderCreate, OrderLine

logger = structlog.get_logger(__name__)

COLLECTION = "order"

TRANSITIONS = {
    "Pending": {"Processing", "Cancelled"},
    "Processing": {"Shipped", "Cancelled"},
    "Shipped": {"Delivered"},
    "Delivered": set(),
    "Cancelled": set(),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


def can_be_cancelled(status: str) -> bool:
    return can_transition(status, "Cancelled")


def _release_all(catalog: CatalogStore, reserved: List[Tuple[str, int]]) -> None:
    for product_id, quantity in reversed(reserved):
        catalog.release(product_id, quantity)


def place_order(database: Database, user_id: str, request: OrderCreate) -> Dict[str, Any]:
    """Validate, price, reserve stock for and persist a new order.

    Raises InvalidRequest for an empty line list, NotFound for an unknown
    product and InsufficientStock when a line can't be covered. Line prices are
    the catalog's effective prices at this moment, never the client's.
    """
    if not request.lines:
        raise InvalidRequest("No order items")

    catalog = CatalogStore(database)
    now = utcnow()
    lines: List[OrderLine] = []
    for item in request.lines:
        product = catalog.get(item.product_id)
        lines.append(
            OrderLine(
                product_id=str(product["_id"]),
                name=product.get("name"),
                quantity=item.quantity,
                price=round(effective_price(product, now), 2),
            )
        )

    reserved: List[Tuple[str, int]] = []
    try:
        for line in lines:
            catalog.reserve(line.product_id, line.quantity)
            reserved.append((line.product_id, line.quantity))

        subtotal, shipping, total = order_totals(
            [line.model_dump() for line in lines], request.shipping_method
        )
        order = Order(
            user_id=user_id,
            lines=lines,
            shipping_address=request.shipping_address,
            payment_method=request.payment_method,
            shipping_method=request.shipping_method,
            subtotal=subtotal,
            shipping_cost=shipping,
            total_amount=total,
            created_at=now,
        )
        order_id = create_document(database, COLLECTION, order)
    except Exception:
        _release_all(catalog, reserved)
        raise

    logger.info(
        "order_placed",
        order_id=order_id,
        user_id=user_id,
        lines=len(lines),
        total_amount=total,
    )
    return get_order(database, order_id)


def get_order(database: Database, order_id: str) -> Dict[str, Any]:
    oid = parse_object_id(order_id)
    doc = database[COLLECTION].find_one({"_id": oid}) if oid else None
    if not doc:
        raise NotFound("Order", str(order_id))
    return doc


def transition_status(database: Database, order_id: str, target: str) -> Dict[str, Any]:
    """Move an order along its lifecycle.

    The update is conditional on the status that was read, so of two
    concurrent transitions only one applies and cancellation restocks once.
    """
    order = get_order(database, order_id)
    current = order.get("status", "Pending")
    if not can_transition(current, target):
        raise InvalidTransition(current, target)

    now = utcnow()
    changes: Dict[str, Any] = {"status": target, "updated_at": now}
    if target == "Delivered":
        changes["delivered_at"] = now

    updated = database[COLLECTION].find_one_and_update(
        {"_id": order["_id"], "status": current},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        latest = get_order(database, order_id)
        raise InvalidTransition(latest.get("status", current), target)

    if target == "Cancelled":
        catalog = CatalogStore(database)
        lines = [(line["product_id"], line["quantity"]) for line in updated.get("lines", [])]
        for index, (product_id, quantity) in enumerate(lines):
            try:
                catalog.release(product_id, quantity)
            except PyMongoError:
                logger.error(
                    "cancel_restock_failed",
                    order_id=str(order_id),
                    released=lines[:index],
                    pending=lines[index:],
                )
                raise

    logger.info("order_status_changed", order_id=str(order_id), previous=current, status=target)
    return updated


def update_payment_status(
    database: Database,
    order_id: str,
    payment_status: str,
    transaction_id: Optional[str] = None,
) -> Dict[str, Any]:
    order = get_order(database, order_id)
    now = utcnow()
    changes: Dict[str, Any] = {
        "payment_status": payment_status,
        "payment_details.payment_date": now,
        "updated_at": now,
    }
    if transaction_id is not None:
        changes["payment_details.transaction_id"] = transaction_id

    updated = database[COLLECTION].find_one_and_update(
        {"_id": order["_id"]},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    logger.info("payment_status_changed", order_id=str(order_id), payment_status=payment_status)
    return updated


def list_user_orders(database: Database, user_id: str) -> List[Dict[str, Any]]:
    return list(database[COLLECTION].find({"user_id": user_id}).sort("created_at", -1))
