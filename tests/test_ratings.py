import catalog
import config
import ratings
import reviews


def rate(principal, product, stars):
    return reviews.submit_review(principal, str(product["_id"]), stars, "Lovely plant", "Healthy and well packed.")


def aggregate_of(product):
    stored = catalog.get_product(product["_id"])
    return stored["ratingsAverage"], stored["ratingsQuantity"]


def test_new_product_starts_unrated(product):
    assert aggregate_of(product) == (0, 0)


def test_average_follows_approved_reviews(make_user, product):
    written = [rate(make_user(name), product, stars) for name, stars in (("Meera", 5), ("Kabir", 4), ("Dev", 3))]
    assert aggregate_of(product) == (4.0, 3)

    reviews.remove_review(written[2]["_id"], make_user("Root", role="admin"))
    assert aggregate_of(product) == (4.5, 2)


def test_average_rounds_half_up(make_user, product):
    for name, stars in (("Meera", 5), ("Kabir", 4), ("Dev", 4), ("Ira", 4)):
        rate(make_user(name), product, stars)
    # 17 / 4
    assert aggregate_of(product) == (4.3, 4)


def test_recompute_is_idempotent(customer, product):
    rate(customer, product, 4)
    first = ratings.recompute(product["_id"])
    assert ratings.recompute(product["_id"]) == first == {"ratingsAverage": 4.0, "ratingsQuantity": 1}


def test_recompute_on_missing_product_is_noop(customer, product, db):
    rate(customer, product, 4)
    db["product"].delete_one({"_id": product["_id"]})
    assert ratings.recompute(product["_id"]) is None


def test_unapproved_reviews_do_not_count(customer, other_customer, admin, product):
    config.override_settings(reviews_auto_approve=False)
    pending = rate(customer, product, 1)
    rate(other_customer, product, 5)
    assert aggregate_of(product) == (0, 0)

    reviews.approve(pending["_id"], admin)
    assert aggregate_of(product) == (1.0, 1)


def test_distribution_and_summary(make_user, admin, product):
    for name, stars in (("Meera", 5), ("Kabir", 5), ("Dev", 2)):
        rate(make_user(name), product, stars)
    verified = rate(make_user("Ira"), product, 4)
    reviews.mark_verified(verified["_id"], admin)

    assert ratings.rating_distribution(product["_id"]) == [
        {"rating": 5, "count": 2},
        {"rating": 4, "count": 1},
        {"rating": 3, "count": 0},
        {"rating": 2, "count": 1},
        {"rating": 1, "count": 0},
    ]
    summary = ratings.reviews_summary(product["_id"])
    assert summary["totalReviews"] == 4
    assert summary["averageRating"] == 4.0
    assert summary["verifiedPurchases"] == 1


def test_summary_without_reviews(product):
    summary = ratings.reviews_summary(product["_id"])
    assert summary["totalReviews"] == 0
    assert summary["averageRating"] == 0.0
    assert [row["count"] for row in summary["distribution"]] == [0, 0, 0, 0, 0]


def test_empty_group_averages_to_zero():
    assert ratings._round_average(None) == 0.0
    assert ratings._round_average(4.25) == 4.3
