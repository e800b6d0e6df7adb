"""
Product rating aggregation.

``recompute`` is the only code path allowed to write ``ratingsAverage``
and ``ratingsQuantity`` on a product. It is called by the review
workflow after every change to a product's approved review set.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional

from database import collection, to_obj_id

logger = logging.getLogger(__name__)

RATING_FIELDS = ("ratingsAverage", "ratingsQuantity")


def _round_average(value: Optional[float]) -> float:
    if value is None:
        return 0.0
    return float(Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def _approved(product_id) -> dict:
    return {"$match": {"product": to_obj_id(product_id), "isApproved": True}}


def recompute(product_id) -> Optional[Dict[str, float]]:
    """Recalculate and store the rating aggregate for one product.

    Returns the written values, or ``None`` when the product no longer
    exists (a concurrent delete); that case is not an error.
    """
    product_id = to_obj_id(product_id)
    agg = collection("review").aggregate([
        _approved(product_id),
        {"$group": {"_id": "$product", "avg": {"$avg": "$rating"}, "count": {"$sum": 1}}},
    ])
    count = int(agg[0]["count"]) if agg else 0
    avg = _round_average(agg[0]["avg"]) if count else 0.0
    values = {"ratingsAverage": avg, "ratingsQuantity": count}

    updated = collection("product").update_by_id(product_id, values)
    if updated is None:
        logger.debug("Skipped rating recompute for missing product %s", product_id)
        return None
    logger.info("Product %s rated %.1f over %d reviews", product_id, avg, count)
    return values


def rating_distribution(product_id) -> List[Dict[str, int]]:
    """Approved review counts per star value, 5 down to 1."""
    agg = collection("review").aggregate([
        _approved(product_id),
        {"$group": {"_id": "$rating", "count": {"$sum": 1}}},
    ])
    counts = {int(row["_id"]): int(row["count"]) for row in agg if row["_id"] is not None}
    return [{"rating": stars, "count": counts.get(stars, 0)} for stars in range(5, 0, -1)]


def reviews_summary(product_id) -> Dict[str, object]:
    agg = collection("review").aggregate([
        _approved(product_id),
        {"$group": {
            "_id": None,
            "totalReviews": {"$sum": 1},
            "averageRating": {"$avg": "$rating"},
            "verifiedPurchases": {"$sum": {"$cond": ["$isVerifiedPurchase", 1, 0]}},
        }},
    ])
    if not agg or not agg[0]["totalReviews"]:
        summary = {"totalReviews": 0, "averageRating": 0.0, "verifiedPurchases": 0}
    else:
        summary = {
            "totalReviews": int(agg[0]["totalReviews"]),
            "averageRating": _round_average(agg[0]["averageRating"]),
            "verifiedPurchases": int(agg[0]["verifiedPurchases"]),
        }
    summary["distribution"] = rating_distribution(product_id)
    return summary
