"""
Shopping cart kept on the user document as ``cart: [{product, quantity,
addedAt}]``, plus checkout into an order.

A product appears at most once in a cart; adding it again raises the
quantity of the existing line.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List

import orders
from catalog import get_product, is_available, primary_image
from database import collection, to_obj_id, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from schemas import CartItemIn, CartQuantityUpdate, Principal, parse

logger = logging.getLogger(__name__)


def _user(principal: Principal) -> dict:
    user = collection("user").find_by_id(principal.id)
    if not user:
        raise NotFoundError("User not found")
    return user


def get_cart(principal: Principal) -> Dict[str, Any]:
    """The cart priced at current catalog prices."""
    lines = []
    subtotal = Decimal("0")
    for entry in _user(principal).get("cart") or []:
        line = {"product": entry["product"], "quantity": entry["quantity"], "addedAt": entry.get("addedAt")}
        product = collection("product").find_by_id(entry["product"])
        if product is None:
            line.update(isAvailable=False, subtotal=0.0)
        else:
            price = orders.money(product.get("price", 0))
            line_total = orders.money(price * entry["quantity"])
            subtotal += line_total
            line.update(
                name=product.get("name"),
                price=float(price),
                image=primary_image(product),
                isAvailable=is_available(product),
                subtotal=float(line_total),
            )
        lines.append(line)
    return {
        "items": lines,
        "totalItems": sum(line["quantity"] for line in lines),
        "subtotal": float(subtotal),
    }


def add_to_cart(principal: Principal, product_id, quantity: int = 1) -> List[dict]:
    item = parse(CartItemIn, {"product": str(product_id), "quantity": quantity})
    product = get_product(item.product)
    if not product.get("isActive", True):
        raise ValidationError(f"Product {product.get('name')} is not available")
    user_id = _user(principal)["_id"]

    users = collection("user")
    # two rounds: a concurrent add of the same product can win the push
    for _ in range(2):
        updated = users.update_by_id(
            user_id,
            {"$inc": {"cart.$.quantity": item.quantity}},
            conditions={"cart.product": product["_id"]},
        )
        if updated is not None:
            return updated["cart"]
        updated = users.update_by_id(
            user_id,
            {"$push": {"cart": {"product": product["_id"], "quantity": item.quantity, "addedAt": utcnow()}}},
            conditions={"cart.product": {"$ne": product["_id"]}},
        )
        if updated is not None:
            logger.info("User %s added product %s to cart", principal.id, product["_id"])
            return updated["cart"]
    raise ConflictError("Cart was updated by another request, please retry")


def update_cart_item(principal: Principal, product_id, quantity: int) -> List[dict]:
    change = parse(CartQuantityUpdate, {"quantity": quantity})
    if change.quantity == 0:
        return remove_from_cart(principal, product_id)
    updated = collection("user").update_by_id(
        _user(principal)["_id"],
        {"$set": {"cart.$.quantity": change.quantity}},
        conditions={"cart.product": to_obj_id(product_id)},
    )
    if updated is None:
        raise NotFoundError("Product is not in the cart")
    return updated["cart"]


def remove_from_cart(principal: Principal, product_id) -> List[dict]:
    updated = collection("user").update_by_id(
        _user(principal)["_id"], {"$pull": {"cart": {"product": to_obj_id(product_id)}}}
    )
    if updated is None:
        raise NotFoundError("User not found")
    return updated.get("cart", [])


def clear_cart(principal: Principal) -> None:
    collection("user").update_by_id(_user(principal)["_id"], {"cart": []})


def checkout(principal: Principal, billing, shipping, payment_method: str = "cod", discount=0,
             notes=None) -> dict:
    """Turn the cart into a pending order, then drop the ordered lines."""
    cart = _user(principal).get("cart") or []
    if not cart:
        raise ValidationError("Cart is empty")
    items = [{"product": str(entry["product"]), "quantity": entry["quantity"]} for entry in cart]
    order = orders.create_order(principal, items, billing, shipping, payment_method=payment_method,
                                discount=discount, notes=notes)
    collection("user").update_by_id(
        to_obj_id(principal.id),
        {"$pull": {"cart": {"product": {"$in": [entry["product"] for entry in cart]}}}},
    )
    logger.info("User %s checked out cart as order %s", principal.id, order["orderNumber"])
    return order
