"""
Catalog store operations: products and the category tree.

Products never carry caller-supplied rating aggregates; those fields are
initialised and maintained by ``ratings.recompute``.
"""

import logging
import random
import re
import string
import time
from collections import deque
from typing import Dict, List, Optional

from bson import ObjectId

import ratings
from database import collection, serialize, to_obj_id
from errors import NotFoundError, ValidationError
from schemas import CategoryIn, ProductIn, ProductUpdate

logger = logging.getLogger(__name__)

PRODUCT_SORTS = {
    "newest": [("createdAt", -1)],
    "price_asc": [("price", 1)],
    "price_desc": [("price", -1)],
    "rating": [("ratingsAverage", -1)],
    "name": [("name", 1)],
}

LOW_STOCK_THRESHOLD = 5


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9 -]", "", name.lower())
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def _base36(n: int) -> str:
    digits = string.digits + string.ascii_lowercase
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = digits[r] + out
    return out or "0"


def generate_sku() -> str:
    stamp = _base36(int(time.time() * 1000))
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=5))
    return f"PLT-{stamp}-{suffix}".upper()


def _unique_slug(name: str, exclude_id: Optional[ObjectId] = None) -> str:
    base = slugify(name) or "product"
    slug, n = base, 1
    while True:
        query = {"slug": slug}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        if not collection("product").count_documents(query):
            return slug
        n += 1
        slug = f"{base}-{n}"


# Products

def get_product(product_id) -> dict:
    product = collection("product").find_by_id(product_id)
    if not product:
        raise NotFoundError("Product not found")
    return product


def list_products(category: Optional[str] = None, q: Optional[str] = None, sort: str = "newest",
                  limit: int = 50, skip: int = 0, include_inactive: bool = False) -> List[dict]:
    query = {}
    if not include_inactive:
        query["isActive"] = True
    if category:
        query["category"] = to_obj_id(category)
    if q:
        pattern = re.escape(q)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"tags": {"$regex": pattern, "$options": "i"}},
        ]
    if sort not in PRODUCT_SORTS:
        raise ValidationError(f"Unknown sort '{sort}'")
    return collection("product").find(query, sort=PRODUCT_SORTS[sort], limit=limit, skip=skip)


def create_product(payload: ProductIn) -> dict:
    get_category(payload.category)
    doc = payload.model_dump()
    doc["category"] = to_obj_id(payload.category)
    doc["slug"] = _unique_slug(payload.name)
    doc["sku"] = (payload.sku or generate_sku()).upper()
    doc["tags"] = [t.lower() for t in payload.tags]
    doc["_id"] = collection("product").insert(doc)
    ratings.recompute(doc["_id"])
    logger.info("Created product %s (%s)", doc["_id"], doc["sku"])
    return get_product(doc["_id"])


def update_product(product_id, payload: ProductUpdate) -> dict:
    product = get_product(product_id)
    changes = payload.model_dump(exclude_unset=True)
    if "category" in changes:
        get_category(changes["category"])
        changes["category"] = to_obj_id(changes["category"])
    if "name" in changes and changes["name"] != product.get("name"):
        changes["slug"] = _unique_slug(changes["name"], exclude_id=product["_id"])
    if changes.get("sku"):
        changes["sku"] = changes["sku"].upper()
    if "tags" in changes:
        changes["tags"] = [t.lower() for t in changes["tags"]]
    for field in ratings.RATING_FIELDS:
        changes.pop(field, None)
    if not changes:
        return product
    return collection("product").update_by_id(product["_id"], changes)


def delete_product(product_id) -> None:
    product = get_product(product_id)
    removed = collection("review").delete_many({"product": product["_id"]})
    collection("product").delete_by_id(product["_id"])
    logger.info("Deleted product %s and %d reviews", product["_id"], removed)


def primary_image(product: dict) -> Optional[str]:
    images = product.get("images") or []
    for image in images:
        if image.get("isPrimary"):
            return image.get("url")
    return images[0].get("url") if images else None


def is_available(product: dict) -> bool:
    return bool(product.get("isActive", True)) and (product.get("stock") or {}).get("quantity", 0) > 0


def present_product(product: dict) -> dict:
    out = serialize(product)
    out["isAvailable"] = is_available(product)
    return out


def product_counts() -> Dict[str, int]:
    """Stock figures for the admin dashboard."""
    products = collection("product")
    return {
        "totalProducts": products.count_documents({}),
        "activeProducts": products.count_documents({"isActive": True}),
        "lowStockProducts": products.count_documents({"stock.quantity": {"$lte": LOW_STOCK_THRESHOLD, "$gt": 0}}),
        "outOfStockProducts": products.count_documents({"stock.quantity": 0}),
    }


# Categories

def get_category(category_id) -> dict:
    category = collection("category").find_by_id(category_id)
    if not category:
        raise NotFoundError("Category not found")
    return category


def create_category(payload: CategoryIn) -> dict:
    doc = payload.model_dump()
    if payload.parentCategory:
        doc["parentCategory"] = get_category(payload.parentCategory)["_id"]
    doc["slug"] = slugify(payload.name)
    doc["_id"] = collection("category").insert(doc)
    logger.info("Created category %s", doc["_id"])
    return doc


def list_categories(active_only: bool = True) -> List[dict]:
    query = {"isActive": True} if active_only else {}
    return collection("category").find(query, sort=[("sortOrder", 1), ("name", 1)])


def root_categories() -> List[dict]:
    return collection("category").find(
        {"parentCategory": None, "isActive": True}, sort=[("sortOrder", 1), ("name", 1)]
    )


def _children_index(categories: List[dict]) -> Dict[Optional[ObjectId], List[dict]]:
    children: Dict[Optional[ObjectId], List[dict]] = {}
    for cat in categories:
        children.setdefault(cat.get("parentCategory"), []).append(cat)
    return children


def subcategories(category_id) -> List[dict]:
    """All descendants of a category, breadth first.

    Each category is visited once, so a parent cycle in stored data ends
    the walk instead of looping.
    """
    root = get_category(category_id)
    children = _children_index(collection("category").find({}))
    seen = {root["_id"]}
    out = []
    queue = deque([root["_id"]])
    while queue:
        for child in children.get(queue.popleft(), []):
            if child["_id"] in seen:
                continue
            seen.add(child["_id"])
            out.append(child)
            queue.append(child["_id"])
    return out


def hierarchy(category_id) -> List[dict]:
    """Ancestors of a category from the root down, ending with the category."""
    by_id = {cat["_id"]: cat for cat in collection("category").find({})}
    current = get_category(category_id)
    chain = [current]
    seen = {current["_id"]}
    while current.get("parentCategory"):
        parent = by_id.get(current["parentCategory"])
        if parent is None or parent["_id"] in seen:
            if parent is not None:
                logger.warning("Category cycle detected at %s", parent["_id"])
            break
        seen.add(parent["_id"])
        chain.append(parent)
        current = parent
    chain.reverse()
    return chain


def category_tree() -> List[dict]:
    categories = list_categories()
    children = _children_index(categories)
    roots = [cat for cat in categories if cat.get("parentCategory") is None]
    tree = []
    seen = set()
    stack = []
    for root in roots:
        node = {**root, "children": []}
        tree.append(node)
        seen.add(root["_id"])
        stack.append(node)
    while stack:
        node = stack.pop()
        for child in children.get(node["_id"], []):
            if child["_id"] in seen:
                continue
            seen.add(child["_id"])
            child_node = {**child, "children": []}
            node["children"].append(child_node)
            stack.append(child_node)
    return tree


def present_categories(categories: List[dict]) -> List[dict]:
    """Serialize categories with ``subcategoryCount`` and ``fullPath``.

    ``fullPath`` is ``"Parent > Name"`` for a child and just the name for
    a root; the count covers direct children only.
    """
    everything = collection("category").find({})
    by_id = {cat["_id"]: cat for cat in everything}
    children = _children_index(everything)
    out = []
    for cat in categories:
        item = serialize(cat)
        item["subcategoryCount"] = len(children.get(cat["_id"], []))
        parent = by_id.get(cat.get("parentCategory"))
        item["fullPath"] = f"{parent['name']} > {cat['name']}" if parent else cat["name"]
        out.append(item)
    return out
