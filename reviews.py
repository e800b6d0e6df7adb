"""
Review lifecycle: submission, edits, helpfulness votes, moderation and
removal.

A user has at most one review per product (unique index on
``(product, user)``). Every change that can move a product's approved
rating set (create, rating edit, approve/reject, removal) recomputes the
product aggregate before returning, and a failure there propagates to
the caller.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

import config
import ratings
from catalog import get_product
from database import collection, serialize, to_obj_id, utcnow
from errors import (ConflictError, DuplicateReviewError, NotFoundError, PermissionDeniedError, UniqueConstraintError,
                    ValidationError)
from schemas import REPORT_REASONS, Principal, ReviewContent, parse

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "comment", "rating", "pros", "cons")
MAX_POINT_LENGTH = 200
MAX_RESPONSE_LENGTH = 500
REVIEW_SORTS = ("createdAt", "rating")


def _points(items: Iterable[str], label: str) -> List[str]:
    out = []
    for item in items or []:
        if not isinstance(item, str):
            raise ValidationError(f"{label} must be text")
        item = item.strip()
        if not item:
            continue
        if len(item) > MAX_POINT_LENGTH:
            raise ValidationError(f"{label} entries cannot exceed {MAX_POINT_LENGTH} characters")
        if item not in out:
            out.append(item)
    return out


def validate_content(title, comment, rating, pros=(), cons=()) -> Dict[str, Any]:
    content = parse(ReviewContent, {"title": title, "comment": comment, "rating": rating})
    data = content.model_dump(exclude={"pros", "cons"})
    data["pros"] = _points(pros, "Pros")
    data["cons"] = _points(cons, "Cons")
    return data


def get_review(review_id) -> dict:
    review = collection("review").find_by_id(review_id)
    if not review:
        raise NotFoundError("Review not found")
    return review


def _require_admin(actor: Principal, action: str) -> None:
    if not actor.is_admin:
        raise PermissionDeniedError(f"Only administrators can {action} reviews")


def _order_covers(order: dict, user_id, product_id) -> bool:
    if order.get("user") != user_id:
        return False
    return any(item.get("product") == product_id for item in order.get("items", []))


def submit_review(principal: Principal, product_id, rating, title, comment, order_id=None,
                  pros: Iterable[str] = (), cons: Iterable[str] = ()) -> dict:
    content = validate_content(title, comment, rating, pros, cons)
    product = get_product(product_id)
    user_id = to_obj_id(principal.id)

    reviews = collection("review")
    if reviews.find_one({"product": product["_id"], "user": user_id}):
        raise DuplicateReviewError("You have already reviewed this product")

    order_ref = None
    if order_id:
        order = collection("order").find_by_id(order_id)
        if not order:
            raise NotFoundError("Order not found")
        if not _order_covers(order, user_id, product["_id"]):
            raise ValidationError("The order does not contain this product for this user")
        order_ref = order["_id"]

    now = utcnow()
    doc = {
        "product": product["_id"],
        "user": user_id,
        "order": order_ref,
        **content,
        "isVerifiedPurchase": order_ref is not None,
        "isApproved": config.settings.reviews_auto_approve,
        "isReported": False,
        "reportReasons": [],
        "reports": [],
        "helpfulVotes": {"positive": [], "negative": []},
        "adminResponse": None,
        "moderationNotes": None,
        "editHistory": [],
        "createdAt": now,
        "updatedAt": now,
    }
    try:
        doc["_id"] = reviews.insert(doc)
    except UniqueConstraintError:
        raise DuplicateReviewError("You have already reviewed this product")

    logger.info("User %s reviewed product %s (%d stars)", principal.id, product["_id"], content["rating"])
    ratings.recompute(product["_id"])
    return doc


def edit_review(review_id, editor: Principal, fields: Dict[str, Any], reason: Optional[str] = None) -> dict:
    review = get_review(review_id)
    if str(review.get("user")) != editor.id:
        raise PermissionDeniedError("Only the author can edit this review")

    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Cannot edit {', '.join(sorted(unknown))}")
    fields = {k: v for k, v in fields.items() if v is not None}
    if not fields:
        return review

    merged = {name: fields.get(name, review.get(name)) for name in EDITABLE_FIELDS}
    content = validate_content(**merged)
    changes = {name: content[name] for name in fields}

    now = utcnow()
    entry = {
        "editedAt": now,
        "reason": reason,
        "editedBy": to_obj_id(editor.id),
        "previousContent": {
            "title": review.get("title"),
            "comment": review.get("comment"),
            "rating": review.get("rating"),
        },
    }
    # the snapshot in editHistory must be exactly what this write replaces
    updated = collection("review").update_by_id(
        review["_id"],
        {"$set": changes, "$push": {"editHistory": entry}},
        conditions=entry["previousContent"],
    )
    if updated is None:
        raise ConflictError("Review was changed by another request, please retry")

    logger.info("Review %s edited by %s", review["_id"], editor.id)
    if content["rating"] != review.get("rating"):
        ratings.recompute(review["product"])
    return updated


def vote(review_id, principal: Principal, vote_type: str = "positive") -> dict:
    """Record ``principal``'s helpfulness vote, replacing any earlier one."""
    if vote_type not in ("positive", "negative"):
        raise ValidationError("Vote type must be positive or negative")
    other = "negative" if vote_type == "positive" else "positive"
    user_id = to_obj_id(principal.id)

    # one write: drop from the other set and add to the chosen one, unless already there
    updated = collection("review").update_by_id(
        review_id,
        {
            "$pull": {f"helpfulVotes.{other}": {"user": user_id}},
            "$push": {f"helpfulVotes.{vote_type}": {"user": user_id, "votedAt": utcnow()}},
        },
        conditions={f"helpfulVotes.{vote_type}.user": {"$ne": user_id}},
    )
    if updated is None:
        return get_review(review_id)
    return updated


def remove_vote(review_id, principal: Principal) -> dict:
    user_id = to_obj_id(principal.id)
    updated = collection("review").update_by_id(
        review_id,
        {"$pull": {"helpfulVotes.positive": {"user": user_id}, "helpfulVotes.negative": {"user": user_id}}},
    )
    if updated is None:
        raise NotFoundError("Review not found")
    return updated


def user_vote(review: dict, user_id) -> Optional[str]:
    user_id = to_obj_id(user_id)
    votes = review.get("helpfulVotes") or {}
    for kind in ("positive", "negative"):
        if any(v.get("user") == user_id for v in votes.get(kind, [])):
            return kind
    return None


# Moderation

def approve(review_id, admin: Principal) -> dict:
    _require_admin(admin, "approve")
    review = get_review(review_id)
    notes = f"Approved by admin {admin.id} at {utcnow().isoformat()}"
    updated = collection("review").update_by_id(review["_id"], {"isApproved": True, "moderationNotes": notes})
    logger.info("Review %s approved by %s", review["_id"], admin.id)
    if not review.get("isApproved"):
        ratings.recompute(review["product"])
    return updated


def reject(review_id, admin: Principal, reason: str) -> dict:
    _require_admin(admin, "reject")
    if not reason or not reason.strip():
        raise ValidationError("A rejection reason is required")
    review = get_review(review_id)
    notes = f"Rejected by admin {admin.id}: {reason.strip()}"
    updated = collection("review").update_by_id(review["_id"], {"isApproved": False, "moderationNotes": notes})
    logger.info("Review %s rejected by %s", review["_id"], admin.id)
    if review.get("isApproved"):
        ratings.recompute(review["product"])
    return updated


def report(review_id, reason: str, reported_by: Principal) -> dict:
    if reason not in REPORT_REASONS:
        raise ValidationError(f"Report reason must be one of: {', '.join(REPORT_REASONS)}")
    updated = collection("review").update_by_id(
        review_id,
        {
            "$set": {"isReported": True},
            "$addToSet": {"reportReasons": reason},
            "$push": {"reports": {"reason": reason, "reportedBy": to_obj_id(reported_by.id), "reportedAt": utcnow()}},
        },
    )
    if updated is None:
        raise NotFoundError("Review not found")
    logger.warning("Review %s reported as %s by %s", review_id, reason, reported_by.id)
    return updated


def respond(review_id, admin: Principal, message: str) -> dict:
    _require_admin(admin, "respond to")
    message = (message or "").strip()
    if not message:
        raise ValidationError("Response message is required")
    if len(message) > MAX_RESPONSE_LENGTH:
        raise ValidationError(f"Admin response cannot exceed {MAX_RESPONSE_LENGTH} characters")
    response = {"message": message, "respondedBy": to_obj_id(admin.id), "respondedAt": utcnow()}
    updated = collection("review").update_by_id(review_id, {"adminResponse": response})
    if updated is None:
        raise NotFoundError("Review not found")
    return updated


def mark_verified(review_id, admin: Principal) -> dict:
    """Flag a review as a verified purchase without a linked order.

    The flag only ever moves to true.
    """
    _require_admin(admin, "verify")
    updated = collection("review").update_by_id(review_id, {"isVerifiedPurchase": True})
    if updated is None:
        raise NotFoundError("Review not found")
    logger.info("Review %s marked verified by %s", review_id, admin.id)
    return updated


def remove_review(review_id, actor: Principal) -> None:
    review = get_review(review_id)
    if str(review.get("user")) != actor.id and not actor.is_admin:
        raise PermissionDeniedError("Access denied")
    collection("review").delete_by_id(review["_id"])
    logger.info("Review %s removed by %s", review["_id"], actor.id)
    ratings.recompute(review["product"])


# Queries

def product_reviews(product_id, page: int = 1, limit: int = 10, sort_by: str = "createdAt",
                    sort_order: str = "desc", rating: Optional[int] = None,
                    verified: Optional[bool] = None) -> List[dict]:
    if sort_by not in REVIEW_SORTS:
        raise ValidationError(f"Cannot sort reviews by {sort_by}")
    query: Dict[str, Any] = {"product": to_obj_id(product_id), "isApproved": True}
    if rating:
        query["rating"] = rating
    if verified is not None:
        query["isVerifiedPurchase"] = verified
    page, limit = max(1, page), max(1, limit)
    direction = -1 if sort_order == "desc" else 1
    return collection("review").find(query, sort=[(sort_by, direction)], limit=limit, skip=(page - 1) * limit)


def list_reviews(actor: Principal, reported: Optional[bool] = None) -> List[dict]:
    _require_admin(actor, "list all")
    query = {"isReported": reported} if reported is not None else {}
    return collection("review").find(query, sort=[("createdAt", -1)])


def present(review: dict, viewer: Optional[Principal] = None) -> dict:
    out = serialize(review)
    votes = review.get("helpfulVotes") or {}
    positive = len(votes.get("positive", []))
    negative = len(votes.get("negative", []))
    total = positive + negative
    out["helpfulScore"] = positive - negative
    out["totalVotes"] = total
    out["helpfulnessPercentage"] = round(positive / total * 100) if total else 0
    if viewer is not None:
        out["userVote"] = user_vote(review, viewer.id)
    return out
