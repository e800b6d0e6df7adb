import logging
import os
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import cart
import catalog
import config
import database
import orders
import ratings
import reviews
from database import collection, serialize, to_obj_id
from errors import ShopError, ValidationError
from logging_config import configure_logging, new_request_id, reset_context, set_context
from schemas import (AdminResponseIn, CartItemIn, CartQuantityUpdate, CategoryIn, CheckoutIn, LoginRequest, OrderIn,
                     PaymentUpdate, Principal, ProductIn, ProductUpdate, RegisterRequest, RejectIn, ReportIn, ReviewIn,
                     ReviewUpdate, StatusUpdate, TokenResponse, UserAdminUpdate, VoteIn, describe_errors)
from security import (authenticate, create_access_token, find_user_by_id, get_current_principal, public_user,
                      register_user, require_role)

configure_logging()
logger = logging.getLogger(__name__)

# App setup
app = FastAPI(title="Plant Shop API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

admin_only = require_role("admin")


@app.middleware("http")
async def request_context(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or new_request_id()
    token = set_context(request_id=request_id, path=request.url.path)
    try:
        response = await call_next(request)
    finally:
        reset_context(token)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return await shop_error_handler(request, ValidationError(describe_errors(exc.errors())))


# Routes
@app.get("/")
def root():
    return {"message": "Plant Shop API"}


@app.get("/test")
def test_database():
    try:
        collections = database.get_db().list_collection_names()
        return {"backend": "ok", "database": "ok", "collections": collections}
    except Exception as e:
        return {"backend": "ok", "database": f"error: {str(e)[:80]}"}


@app.get("/api/health")
def health():
    try:
        database.get_db().command("ping")
        state = "Connected"
    except Exception:
        state = "Disconnected"
    return {"status": "OK", "database": state}


# Auth
@app.post("/auth/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest):
    user = register_user(payload)
    return public_user(user)


@app.post("/auth/login", response_model=TokenResponse)
def login(payload: LoginRequest):
    user = authenticate(payload.email, payload.password)
    if not user:
        raise HTTPException(status_code=400, detail="Invalid email or password")
    if not user.get("isActive", True):
        raise HTTPException(status_code=403, detail="Account disabled")
    access_token = create_access_token({"sub": str(user["_id"]), "role": user.get("role", "customer")})
    return TokenResponse(access_token=access_token, user=public_user(user))


@app.get("/me")
def me(principal: Principal = Depends(get_current_principal)):
    user = find_user_by_id(principal.id)
    return public_user(user)


# Products
@app.get("/api/products", response_model=List[dict])
def list_products(category: Optional[str] = None, q: Optional[str] = None, sort: str = "newest",
                  limit: int = 50, skip: int = 0):
    found = catalog.list_products(category=category, q=q, sort=sort, limit=limit, skip=skip)
    return [catalog.present_product(p) for p in found]


@app.get("/api/products/count")
def product_counts(principal: Principal = Depends(admin_only)):
    return catalog.product_counts()


@app.get("/api/products/{product_id}", response_model=dict)
def get_product(product_id: str):
    return catalog.present_product(catalog.get_product(product_id))


@app.post("/api/products", status_code=status.HTTP_201_CREATED)
def create_product(payload: ProductIn, principal: Principal = Depends(admin_only)):
    return catalog.present_product(catalog.create_product(payload))


@app.patch("/api/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, principal: Principal = Depends(admin_only)):
    return catalog.present_product(catalog.update_product(product_id, payload))


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, principal: Principal = Depends(admin_only)):
    catalog.delete_product(product_id)
    return {"deleted": True}


# Categories
@app.get("/api/categories")
def list_categories():
    return catalog.present_categories(catalog.list_categories())


@app.get("/api/categories/tree")
def category_tree():
    return serialize(catalog.category_tree())


@app.get("/api/categories/roots")
def root_categories():
    return catalog.present_categories(catalog.root_categories())


@app.post("/api/categories", status_code=status.HTTP_201_CREATED)
def create_category(payload: CategoryIn, principal: Principal = Depends(admin_only)):
    return serialize(catalog.create_category(payload))


@app.get("/api/categories/{category_id}/subcategories")
def subcategories(category_id: str):
    return serialize(catalog.subcategories(category_id))


@app.get("/api/categories/{category_id}/hierarchy")
def category_hierarchy(category_id: str):
    return serialize(catalog.hierarchy(category_id))


# Orders
@app.post("/api/orders", status_code=status.HTTP_201_CREATED)
def create_order(payload: OrderIn, principal: Principal = Depends(get_current_principal)):
    order = orders.create_order(
        principal,
        items=payload.items,
        billing=payload.billing,
        shipping=payload.shipping,
        payment_method=payload.paymentMethod,
        discount=payload.discount,
        notes=payload.notes,
    )
    return orders.present(order)


@app.get("/api/orders/my")
def my_orders(principal: Principal = Depends(get_current_principal)):
    found = orders.list_orders_for_user(principal)
    return {"count": len(found), "orders": [orders.present(o) for o in found]}


@app.get("/api/orders")
def all_orders(status: Optional[str] = None, page: int = 1, limit: int = 50,
               principal: Principal = Depends(admin_only)):
    result = orders.list_orders(principal, status=status, page=page, limit=limit)
    result["orders"] = [orders.present(o) for o in result["orders"]]
    result["count"] = len(result["orders"])
    return result


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, principal: Principal = Depends(get_current_principal)):
    return orders.present(orders.get_order(order_id, principal))


@app.put("/api/orders/{order_id}/status")
def update_order_status(order_id: str, payload: StatusUpdate, principal: Principal = Depends(admin_only)):
    order = orders.update_status(order_id, payload.status, principal, tracking=payload.tracking)
    return orders.present(order)


@app.put("/api/orders/{order_id}/payment")
def record_order_payment(order_id: str, payload: PaymentUpdate, principal: Principal = Depends(admin_only)):
    order = orders.record_payment(order_id, principal, transaction_id=payload.transactionId)
    return orders.present(order)


# Cart
@app.get("/api/cart")
def view_cart(principal: Principal = Depends(get_current_principal)):
    return serialize(cart.get_cart(principal))


@app.post("/api/cart")
def add_cart_item(payload: CartItemIn, principal: Principal = Depends(get_current_principal)):
    cart.add_to_cart(principal, payload.product, payload.quantity)
    return serialize(cart.get_cart(principal))


@app.put("/api/cart/{product_id}")
def update_cart_item(product_id: str, payload: CartQuantityUpdate,
                     principal: Principal = Depends(get_current_principal)):
    cart.update_cart_item(principal, product_id, payload.quantity)
    return serialize(cart.get_cart(principal))


@app.delete("/api/cart/{product_id}")
def remove_cart_item(product_id: str, principal: Principal = Depends(get_current_principal)):
    cart.remove_from_cart(principal, product_id)
    return serialize(cart.get_cart(principal))


@app.delete("/api/cart")
def clear_cart(principal: Principal = Depends(get_current_principal)):
    cart.clear_cart(principal)
    return {"cleared": True}


@app.post("/api/cart/checkout", status_code=status.HTTP_201_CREATED)
def checkout(payload: CheckoutIn, principal: Principal = Depends(get_current_principal)):
    order = cart.checkout(
        principal,
        billing=payload.billing,
        shipping=payload.shipping,
        payment_method=payload.paymentMethod,
        discount=payload.discount,
        notes=payload.notes,
    )
    return orders.present(order)


# Reviews
@app.get("/api/products/{product_id}/reviews")
def product_reviews(product_id: str, page: int = 1, limit: int = 10, sortBy: str = "createdAt",
                    sortOrder: str = "desc", rating: Optional[int] = None, verified: Optional[bool] = None):
    found = reviews.product_reviews(product_id, page=page, limit=limit, sort_by=sortBy, sort_order=sortOrder,
                                    rating=rating, verified=verified)
    return {"count": len(found), "reviews": [reviews.present(r) for r in found]}


@app.get("/api/products/{product_id}/reviews/summary")
def product_reviews_summary(product_id: str):
    catalog.get_product(product_id)
    return ratings.reviews_summary(product_id)


@app.post("/api/reviews", status_code=status.HTTP_201_CREATED)
def add_review(payload: ReviewIn, principal: Principal = Depends(get_current_principal)):
    review = reviews.submit_review(
        principal,
        payload.product,
        rating=payload.rating,
        title=payload.title,
        comment=payload.comment,
        order_id=payload.order,
        pros=payload.pros,
        cons=payload.cons,
    )
    return reviews.present(review, principal)


@app.patch("/api/reviews/{review_id}")
def edit_review(review_id: str, payload: ReviewUpdate, principal: Principal = Depends(get_current_principal)):
    fields = payload.model_dump(exclude_unset=True, exclude={"reason"})
    review = reviews.edit_review(review_id, principal, fields, reason=payload.reason)
    return reviews.present(review, principal)


@app.delete("/api/reviews/{review_id}")
def delete_review(review_id: str, principal: Principal = Depends(get_current_principal)):
    reviews.remove_review(review_id, principal)
    return {"deleted": True}


@app.post("/api/reviews/{review_id}/vote")
def vote_review(review_id: str, payload: VoteIn, principal: Principal = Depends(get_current_principal)):
    return reviews.present(reviews.vote(review_id, principal, payload.voteType), principal)


@app.delete("/api/reviews/{review_id}/vote")
def unvote_review(review_id: str, principal: Principal = Depends(get_current_principal)):
    return reviews.present(reviews.remove_vote(review_id, principal), principal)


@app.post("/api/reviews/{review_id}/report")
def report_review(review_id: str, payload: ReportIn, principal: Principal = Depends(get_current_principal)):
    reviews.report(review_id, payload.reason, principal)
    return {"reported": True}


# Admin endpoints
@app.get("/admin/users")
def admin_users(principal: Principal = Depends(admin_only)):
    users = collection("user").find({}, sort=[("createdAt", -1)])
    return [public_user(u) for u in users]


@app.patch("/admin/users/{user_id}")
def admin_update_user(user_id: str, updates: UserAdminUpdate, principal: Principal = Depends(admin_only)):
    set_fields = updates.model_dump(exclude_none=True)
    if not set_fields:
        raise HTTPException(400, "No valid fields")
    u = collection("user").update_by_id(to_obj_id(user_id), set_fields)
    if not u:
        raise HTTPException(404, "User not found")
    return public_user(u)


@app.get("/admin/reviews")
def admin_reviews(reported: Optional[bool] = None, principal: Principal = Depends(admin_only)):
    return [reviews.present(r) for r in reviews.list_reviews(principal, reported=reported)]


@app.post("/admin/reviews/{review_id}/approve")
def admin_approve_review(review_id: str, principal: Principal = Depends(admin_only)):
    return reviews.present(reviews.approve(review_id, principal))


@app.post("/admin/reviews/{review_id}/reject")
def admin_reject_review(review_id: str, payload: RejectIn, principal: Principal = Depends(admin_only)):
    return reviews.present(reviews.reject(review_id, principal, payload.reason))


@app.post("/admin/reviews/{review_id}/response")
def admin_respond_review(review_id: str, payload: AdminResponseIn, principal: Principal = Depends(admin_only)):
    return reviews.present(reviews.respond(review_id, principal, payload.message))


@app.post("/admin/reviews/{review_id}/verify")
def admin_verify_review(review_id: str, principal: Principal = Depends(admin_only)):
    return reviews.present(reviews.mark_verified(review_id, principal))


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", config.settings.port))
    uvicorn.run(app, host="0.0.0.0", port=port)
