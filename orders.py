"""
Order lifecycle: checkout, pricing, order numbering and status changes.

Orders are built from line items whose name, price, sku and image are
copied from the catalog at checkout, so later catalog edits never change
a placed order. Once stored an order only moves through ``update_status``
(plus payment and tracking bookkeeping); it is never deleted.

Order numbers look like ``ORD-20240131-0007``: the creation day (UTC)
and the 1-based position of the order within that day. The sequence is
drawn from a per-day counter document with an atomic ``$inc``; the
unique index on ``orderNumber`` is the last line of defence, and a
collision re-syncs the counter and retries a bounded number of times.
The numeric suffix is also stored as ``orderSeq`` so the highest one
for a day can be found by sorting.
"""

import logging
import math
from collections import OrderedDict
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional

import config
from catalog import primary_image
from database import as_utc, collection, serialize, to_obj_id, utcnow
from errors import (ConflictError, InvalidTransitionError, NotFoundError, PermissionDeniedError,
                    UniqueConstraintError, ValidationError)
from schemas import ORDER_STATUSES, OrderIn, Principal, Tracking, parse

logger = logging.getLogger(__name__)

TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"processing", "cancelled"},
    "processing": {"shipped", "cancelled"},
    "shipped": {"delivered", "cancelled"},
    "delivered": {"refunded"},
    "cancelled": {"refunded"},
    "refunded": set(),
}

STATUS_STAMPS = {
    "shipped": "shippedDate",
    "delivered": "deliveredDate",
    "cancelled": "cancelledDate",
}

CENT = Decimal("0.01")


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


# Order numbers

def format_order_number(day: date, seq: int) -> str:
    return f"ORD-{day:%Y%m%d}-{seq:04d}"


def _counter_key(day: date) -> str:
    return f"order:{day:%Y%m%d}"


def _next_sequence(day: date) -> int:
    counter = collection("counter").upsert_counter(_counter_key(day), {"$inc": {"seq": 1}})
    return int(counter["seq"])


def _resync_sequence(day: date) -> None:
    """Move the day's counter past every order number already stored."""
    prefix = f"ORD-{day:%Y%m%d}-"
    orders = collection("order")
    query = {"orderNumber": {"$regex": f"^{prefix}"}}
    used = orders.count_documents(query)
    latest = orders.find(query, sort=[("orderSeq", -1)], limit=1)
    if latest:
        used = max(used, int(latest[0].get("orderSeq", 0)))
    collection("counter").upsert_counter(_counter_key(day), {"$max": {"seq": used}})


# Pricing

def _line_items(items: Iterable) -> List[Dict[str, Any]]:
    quantities: "OrderedDict[str, int]" = OrderedDict()
    for item in items:
        key = str(to_obj_id(item.product))
        quantities[key] = quantities.get(key, 0) + item.quantity

    lines = []
    for product_id, quantity in quantities.items():
        product = collection("product").find_by_id(product_id)
        if not product:
            raise NotFoundError(f"Product {product_id} not found")
        if not product.get("isActive", True):
            raise ValidationError(f"Product {product.get('name', product_id)} is not available")
        price = money(product.get("price", 0))
        lines.append({
            "product": product["_id"],
            "name": product.get("name"),
            "price": float(price),
            "sku": product.get("sku"),
            "image": primary_image(product),
            "quantity": quantity,
            "subtotal": float(money(price * quantity)),
        })
    return lines


def compute_pricing(lines: List[Dict[str, Any]], shipping_method: str, discount=0) -> Dict[str, float]:
    settings = config.settings
    subtotal = sum((money(line["subtotal"]) for line in lines), Decimal("0"))
    tax = money(subtotal * Decimal(str(settings.tax_rate)))
    shipping_cost = money(settings.shipping_costs.get(shipping_method, 0))
    discount = money(discount)
    if discount < 0:
        raise ValidationError("Discount cannot be negative")
    if discount > subtotal + tax + shipping_cost:
        raise ValidationError("Discount cannot exceed the order amount")
    total = subtotal + tax + shipping_cost - discount
    return {
        "subtotal": float(subtotal),
        "tax": float(tax),
        "shippingCost": float(shipping_cost),
        "discount": float(discount),
        "total": float(total),
    }


# Operations

def create_order(principal: Principal, items, billing, shipping, payment_method: str = "cod",
                 discount=0, notes: Optional[str] = None, now: Optional[datetime] = None) -> dict:
    """Price, number and store a new pending order for ``principal``."""
    order_in = parse(OrderIn, {
        "items": items,
        "billing": billing,
        "shipping": shipping,
        "paymentMethod": payment_method,
        "discount": discount,
        "notes": notes,
    })
    lines = _line_items(order_in.items)
    pricing = compute_pricing(lines, order_in.shipping.method, order_in.discount)

    billing_doc = order_in.billing.model_dump()
    if not billing_doc.get("email"):
        user = collection("user").find_by_id(principal.id)
        billing_doc["email"] = user.get("email") if user else None
    shipping_doc = order_in.shipping.model_dump()
    shipping_doc["cost"] = pricing["shippingCost"]

    now = now or utcnow()
    day = now.date()
    doc = {
        "user": to_obj_id(principal.id),
        "items": lines,
        "billing": billing_doc,
        "shipping": shipping_doc,
        "payment": {"method": order_in.paymentMethod, "status": "pending"},
        "pricing": pricing,
        "status": "pending",
        "notes": order_in.notes,
        "orderDate": now,
        "statusHistory": [{"status": "pending", "changedAt": now, "changedBy": to_obj_id(principal.id)}],
        "createdAt": now,
        "updatedAt": now,
    }

    orders = collection("order")
    attempts = config.settings.order_number_max_attempts
    for attempt in range(1, attempts + 1):
        for key in ("_id", "orderSeq", "orderNumber"):
            doc.pop(key, None)
        try:
            doc["orderSeq"] = _next_sequence(day)
            doc["orderNumber"] = format_order_number(day, doc["orderSeq"])
            doc["_id"] = orders.insert(doc)
        except UniqueConstraintError:
            logger.warning("Order number %s already taken (attempt %d/%d)", doc.get("orderNumber"), attempt, attempts)
            _resync_sequence(day)
            continue
        logger.info("Created order %s for user %s total=%.2f", doc["orderNumber"], principal.id, pricing["total"])
        return doc

    raise ConflictError("Could not assign a unique order number, please retry")


def get_order(order_id, principal: Optional[Principal] = None) -> dict:
    order = collection("order").find_by_id(order_id)
    if not order:
        raise NotFoundError("Order not found")
    if principal is not None and not principal.is_admin and str(order.get("user")) != principal.id:
        raise PermissionDeniedError("Access denied")
    return order


def update_status(order_id, new_status: str, actor: Principal, tracking=None,
                  now: Optional[datetime] = None) -> dict:
    """Move an order to ``new_status``.

    Re-entering the current status returns the order untouched. Date
    stamps are written only the first time their status is entered.
    """
    if not actor.is_admin:
        raise PermissionDeniedError("Only administrators can change order status")
    if new_status not in ORDER_STATUSES:
        raise ValidationError(f"Unknown order status '{new_status}'")

    order = get_order(order_id)
    current = order.get("status", "pending")
    if new_status == current:
        return order
    if not can_transition(current, new_status):
        raise InvalidTransitionError(f"Cannot move order {order.get('orderNumber')} from {current} to {new_status}")

    now = now or utcnow()
    changes: Dict[str, Any] = {"status": new_status}
    stamp = STATUS_STAMPS.get(new_status)
    if stamp and not order.get(stamp):
        changes[stamp] = now
    if tracking is not None and new_status == "shipped":
        changes["tracking"] = parse(Tracking, tracking).model_dump()
    if new_status == "refunded" and order.get("payment", {}).get("status") == "paid":
        changes["payment.status"] = "refunded"

    updated = collection("order").update_by_id(
        order["_id"],
        {
            "$set": changes,
            "$push": {"statusHistory": {"status": new_status, "changedAt": now, "changedBy": to_obj_id(actor.id)}},
        },
        conditions={"status": current},
    )
    if updated is None:
        raise ConflictError("Order was updated by another request, please retry")
    logger.info("Order %s moved %s -> %s by %s", order.get("orderNumber"), current, new_status, actor.id)
    return updated


def record_payment(order_id, actor: Principal, transaction_id: Optional[str] = None,
                   now: Optional[datetime] = None) -> dict:
    if not actor.is_admin:
        raise PermissionDeniedError("Only administrators can record payments")
    order = get_order(order_id)
    payment = order.get("payment", {})
    if payment.get("status") not in ("pending", "failed"):
        raise InvalidTransitionError(f"Payment for order {order.get('orderNumber')} is already {payment.get('status')}")
    if order.get("status") in ("cancelled", "refunded"):
        raise InvalidTransitionError(f"Order {order.get('orderNumber')} is {order.get('status')}")

    updated = collection("order").update_by_id(
        order["_id"],
        {"payment.status": "paid", "payment.transactionId": transaction_id, "payment.paymentDate": now or utcnow()},
        conditions={"payment.status": payment.get("status")},
    )
    if updated is None:
        raise ConflictError("Order was updated by another request, please retry")
    logger.info("Recorded payment for order %s", order.get("orderNumber"))
    return updated


def list_orders_for_user(principal: Principal) -> List[dict]:
    return collection("order").find({"user": to_obj_id(principal.id)}, sort=[("createdAt", -1)])


def list_orders(actor: Principal, status: Optional[str] = None, page: int = 1, limit: int = 50) -> dict:
    if not actor.is_admin:
        raise PermissionDeniedError("Access denied. Admin privileges required.")
    if status and status not in ORDER_STATUSES:
        raise ValidationError(f"Unknown order status '{status}'")
    page, limit = max(1, page), max(1, limit)
    query = {"status": status} if status else {}
    orders = collection("order")
    total = orders.count_documents(query)
    found = orders.find(query, sort=[("createdAt", -1)], limit=limit, skip=(page - 1) * limit)
    return {"orders": found, "total": total, "page": page, "pages": math.ceil(total / limit)}


def total_items(order: dict) -> int:
    return sum(item.get("quantity", 0) for item in order.get("items", []))


def present(order: dict, now: Optional[datetime] = None) -> dict:
    out = serialize(order)
    out["totalItems"] = total_items(order)
    created = as_utc(order.get("createdAt"))
    out["orderAge"] = ((now or utcnow()) - created).days if created else 0
    return out
