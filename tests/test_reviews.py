import pytest

import catalog
import config
import orders
import reviews
from conftest import BILLING, SHIPPING
from errors import ConflictError, DuplicateReviewError, NotFoundError, PermissionDeniedError, ValidationError


def write_review(principal, product, rating=5, **kwargs):
    return reviews.submit_review(
        principal, str(product["_id"]), rating=rating,
        title=kwargs.pop("title", "Thriving on my windowsill"),
        comment=kwargs.pop("comment", "Arrived healthy and has put out two new leaves."),
        **kwargs,
    )


def buy(principal, product):
    return orders.create_order(principal, [{"product": str(product["_id"]), "quantity": 1}], BILLING, SHIPPING)


class TestSubmit:

    def test_new_review_defaults(self, customer, product):
        review = write_review(customer, product, pros=[" Fast growth ", "Fast growth", ""])

        assert review["isApproved"] is True
        assert review["isVerifiedPurchase"] is False
        assert review["helpfulVotes"] == {"positive": [], "negative": []}
        assert review["pros"] == ["Fast growth"]
        assert catalog.get_product(product["_id"])["ratingsQuantity"] == 1

    def test_one_review_per_product(self, customer, product):
        first = write_review(customer, product)
        with pytest.raises(DuplicateReviewError):
            write_review(customer, product, rating=1)

        assert reviews.get_review(first["_id"])["rating"] == 5
        stored = catalog.get_product(product["_id"])
        assert stored["ratingsQuantity"] == 1
        assert stored["ratingsAverage"] == 5.0

    def test_same_user_may_review_other_products(self, customer, product, make_product):
        write_review(customer, product)
        write_review(customer, make_product("Snake Plant", 299.0))

    @pytest.mark.parametrize("rating", [0, 6, 4.5, True, "5"])
    def test_rating_must_be_whole_star(self, customer, product, rating):
        with pytest.raises(ValidationError):
            write_review(customer, product, rating=rating)

    def test_title_length(self, customer, product):
        with pytest.raises(ValidationError):
            write_review(customer, product, title="x" * 201)
        with pytest.raises(ValidationError):
            write_review(customer, product, title="   ")

    def test_comment_length(self, customer, product):
        with pytest.raises(ValidationError):
            write_review(customer, product, comment="x" * 1001)

    def test_unknown_product(self, customer):
        with pytest.raises(NotFoundError):
            reviews.submit_review(customer, "5f0c8b8e8b8e8b8e8b8e8b8e", 5, "Great", "Loved it")

    def test_order_marks_verified_purchase(self, customer, product):
        order = buy(customer, product)
        review = write_review(customer, product, order_id=str(order["_id"]))
        assert review["isVerifiedPurchase"] is True
        assert review["order"] == order["_id"]

    def test_order_must_cover_product(self, customer, product, make_product):
        order = buy(customer, make_product("Snake Plant", 299.0))
        with pytest.raises(ValidationError):
            write_review(customer, product, order_id=str(order["_id"]))

    def test_order_must_belong_to_reviewer(self, customer, other_customer, product):
        order = buy(other_customer, product)
        with pytest.raises(ValidationError):
            write_review(customer, product, order_id=str(order["_id"]))

    def test_moderated_submissions_start_unapproved(self, customer, product):
        config.override_settings(reviews_auto_approve=False)
        review = write_review(customer, product)
        assert review["isApproved"] is False
        assert catalog.get_product(product["_id"])["ratingsQuantity"] == 0


class TestEdit:

    def test_edit_keeps_history_and_rerates(self, customer, product):
        review = write_review(customer, product, rating=5)
        edited = reviews.edit_review(review["_id"], customer, {"rating": 3, "comment": "Lost a leaf."},
                                     reason="Update after a month")

        assert edited["rating"] == 3
        assert edited["title"] == review["title"]
        assert len(edited["editHistory"]) == 1
        entry = edited["editHistory"][0]
        assert entry["reason"] == "Update after a month"
        assert entry["previousContent"]["rating"] == 5
        assert entry["previousContent"]["comment"] == review["comment"]
        assert catalog.get_product(product["_id"])["ratingsAverage"] == 3.0

    def test_only_author_edits(self, customer, other_customer, admin, product):
        review = write_review(customer, product)
        for editor in (other_customer, admin):
            with pytest.raises(PermissionDeniedError):
                reviews.edit_review(review["_id"], editor, {"title": "Hijacked"})

    def test_protected_fields(self, customer, product):
        review = write_review(customer, product)
        with pytest.raises(ValidationError):
            reviews.edit_review(review["_id"], customer, {"isApproved": True})

    def test_edit_revalidates(self, customer, product):
        review = write_review(customer, product)
        with pytest.raises(ValidationError):
            reviews.edit_review(review["_id"], customer, {"rating": 9})

    def test_concurrent_edit_is_a_conflict(self, customer, product, db, monkeypatch):
        review = write_review(customer, product)
        stale = reviews.get_review(review["_id"])
        db["review"].update_one({"_id": review["_id"]}, {"$set": {"title": "Edited elsewhere"}})
        monkeypatch.setattr(reviews, "get_review", lambda review_id: stale)

        with pytest.raises(ConflictError):
            reviews.edit_review(review["_id"], customer, {"comment": "Second thoughts."})
        stored = db["review"].find_one({"_id": review["_id"]})
        assert stored["title"] == "Edited elsewhere"
        assert stored["comment"] == review["comment"]
        assert stored.get("editHistory", []) == []


class TestVotes:

    def test_switching_vote_leaves_one_entry(self, customer, other_customer, product):
        review = write_review(customer, product)

        after = reviews.vote(review["_id"], other_customer, "positive")
        assert len(after["helpfulVotes"]["positive"]) == 1

        after = reviews.vote(review["_id"], other_customer, "negative")
        assert after["helpfulVotes"]["positive"] == []
        assert len(after["helpfulVotes"]["negative"]) == 1

        after = reviews.vote(review["_id"], other_customer, "positive")
        assert len(after["helpfulVotes"]["positive"]) == 1
        assert after["helpfulVotes"]["negative"] == []
        assert reviews.user_vote(after, other_customer.id) == "positive"

    def test_repeat_vote_is_noop(self, customer, other_customer, product):
        review = write_review(customer, product)
        reviews.vote(review["_id"], other_customer, "positive")
        after = reviews.vote(review["_id"], other_customer, "positive")
        assert len(after["helpfulVotes"]["positive"]) == 1

    def test_remove_vote(self, customer, other_customer, product):
        review = write_review(customer, product)
        reviews.vote(review["_id"], other_customer, "negative")
        after = reviews.remove_vote(review["_id"], other_customer)
        assert after["helpfulVotes"] == {"positive": [], "negative": []}
        assert reviews.user_vote(after, other_customer.id) is None

    def test_bad_vote_type(self, customer, other_customer, product):
        review = write_review(customer, product)
        with pytest.raises(ValidationError):
            reviews.vote(review["_id"], other_customer, "meh")

    def test_helpfulness_figures(self, customer, make_user, product):
        review = write_review(customer, product)
        for name, kind in (("Meera", "positive"), ("Kabir", "positive"), ("Dev", "negative")):
            reviews.vote(review["_id"], make_user(name), kind)

        out = reviews.present(reviews.get_review(review["_id"]), customer)
        assert out["helpfulScore"] == 1
        assert out["totalVotes"] == 3
        assert out["helpfulnessPercentage"] == 67
        assert out["userVote"] is None


class TestModeration:

    def test_reports_accumulate_unique_reasons(self, customer, other_customer, admin, product):
        review = write_review(customer, product)
        reviews.report(review["_id"], "spam", other_customer)
        after = reviews.report(review["_id"], "spam", admin)

        assert after["isReported"] is True
        assert after["reportReasons"] == ["spam"]
        assert len(after["reports"]) == 2
        assert [r["_id"] for r in reviews.list_reviews(admin, reported=True)] == [review["_id"]]

    def test_report_reason_checked(self, customer, other_customer, product):
        review = write_review(customer, product)
        with pytest.raises(ValidationError):
            reviews.report(review["_id"], "boring", other_customer)

    def test_reject_and_approve_move_aggregate(self, customer, admin, product):
        review = write_review(customer, product, rating=4)

        rejected = reviews.reject(review["_id"], admin, "Mentions a competitor")
        assert rejected["isApproved"] is False
        assert "Mentions a competitor" in rejected["moderationNotes"]
        assert catalog.get_product(product["_id"])["ratingsQuantity"] == 0

        approved = reviews.approve(review["_id"], admin)
        assert approved["isApproved"] is True
        assert catalog.get_product(product["_id"])["ratingsAverage"] == 4.0

    def test_reject_needs_reason(self, customer, admin, product):
        review = write_review(customer, product)
        with pytest.raises(ValidationError):
            reviews.reject(review["_id"], admin, "  ")

    def test_moderation_is_admin_only(self, customer, other_customer, product):
        review = write_review(customer, product)
        with pytest.raises(PermissionDeniedError):
            reviews.approve(review["_id"], other_customer)
        with pytest.raises(PermissionDeniedError):
            reviews.mark_verified(review["_id"], customer)
        with pytest.raises(PermissionDeniedError):
            reviews.list_reviews(customer)

    def test_admin_response(self, customer, admin, product):
        review = write_review(customer, product)
        answered = reviews.respond(review["_id"], admin, "Thanks for the photos!")
        assert answered["adminResponse"]["message"] == "Thanks for the photos!"
        with pytest.raises(ValidationError):
            reviews.respond(review["_id"], admin, "x" * 501)

    def test_mark_verified(self, customer, admin, product):
        review = write_review(customer, product)
        assert reviews.mark_verified(review["_id"], admin)["isVerifiedPurchase"] is True


class TestRemoveAndQuery:

    def test_author_or_admin_removes(self, customer, other_customer, admin, make_user, product):
        mine = write_review(customer, product, rating=5)
        theirs = write_review(make_user("Meera"), product, rating=1)

        with pytest.raises(PermissionDeniedError):
            reviews.remove_review(mine["_id"], other_customer)

        reviews.remove_review(mine["_id"], customer)
        reviews.remove_review(theirs["_id"], admin)
        with pytest.raises(NotFoundError):
            reviews.get_review(mine["_id"])
        assert catalog.get_product(product["_id"])["ratingsQuantity"] == 0

    def test_product_reviews_filters(self, make_user, admin, product):
        stars = {"Meera": 5, "Kabir": 4, "Dev": 5, "Ira": 2}
        written = {name: write_review(make_user(name), product, rating=r) for name, r in stars.items()}
        reviews.reject(written["Ira"]["_id"], admin, "Off topic")
        reviews.mark_verified(written["Kabir"]["_id"], admin)

        assert len(reviews.product_reviews(product["_id"])) == 3
        assert {r["rating"] for r in reviews.product_reviews(product["_id"], rating=5)} == {5}
        verified = reviews.product_reviews(product["_id"], verified=True)
        assert [r["_id"] for r in verified] == [written["Kabir"]["_id"]]

        by_rating = reviews.product_reviews(product["_id"], sort_by="rating", sort_order="asc")
        assert [r["rating"] for r in by_rating] == [4, 5, 5]
        assert len(reviews.product_reviews(product["_id"], page=2, limit=2)) == 1

    def test_unknown_sort(self, product):
        with pytest.raises(ValidationError):
            reviews.product_reviews(product["_id"], sort_by="helpfulVotes")

    def test_deleting_product_removes_reviews(self, customer, product, db):
        write_review(customer, product)
        catalog.delete_product(product["_id"])
        assert db["review"].count_documents({}) == 0
