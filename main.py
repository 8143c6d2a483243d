import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pymongo.database import Database

import carts
import catalog
import orders
import users
from config import CORS_ORIGINS, configure_logging
from database import ensure_indexes, get_db
from errors import install_exception_handlers, ok
from schemas import (
    CategoryIn,
    LoginRequest,
    ProductDescriptionRequest,
    ProductIn,
    ProductNameRequest,
    ProductRequest,
    ProductUpdate,
    QuantityRequest,
    ReviewIn,
    ReviewUpdate,
    SignUpRequest,
    UpdatePasswordRequest,
    UpdateUserRequest,
)
from security import Identity, authenticate, require_identity

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_indexes(get_db())
    logger.info("Indexes ensured")
    yield


# the gate runs once per request and only ever attaches an identity
app = FastAPI(title="Shop API", lifespan=lifespan, dependencies=[Depends(authenticate)])

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

install_exception_handlers(app)


# Routes
@app.get("/")
def read_root():
    return ok({"service": "Shop API"}, "Shop API running")


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": db.name,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return ok(response)


# Auth
@app.post("/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    return ok(users.login(db, payload.username, payload.password), "Login successful")


@app.post("/auth/logout")
def logout():
    # tokens are stateless, the client discards its copy
    return ok(None, "Logout successful")


# Users
@app.post("/api/users", status_code=201)
def sign_up(payload: SignUpRequest, db: Database = Depends(get_db)):
    user = users.create_user(db, payload)
    return ok(users.to_user_out(user), "User created")


@app.get("/api/users")
def list_users(identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(users.list_users(db))


@app.get("/api/users/me")
def get_me(identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(users.to_user_out(users.get_user(db, identity.user_id)))


@app.patch("/api/users/me")
def update_me(payload: UpdateUserRequest, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    user = users.update_user(db, identity.user_id, payload)
    return ok(users.to_updated_user_out(user, identity.email), "User details updated")


@app.patch("/api/users/me/password")
def update_my_password(payload: UpdatePasswordRequest, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    users.update_password(db, identity.user_id, payload.current_password, payload.new_password)
    return ok(None, "Password updated successfully")


@app.get("/api/users/{user_id}")
def get_user(user_id: str, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(users.to_user_out(users.get_user(db, user_id)))


def _own_account(user_id: str, identity: Identity):
    if user_id != identity.user_id:
        raise HTTPException(status_code=404, detail=f"User not found with id {user_id}")


@app.patch("/api/users/{user_id}")
def update_user(user_id: str, payload: UpdateUserRequest, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    _own_account(user_id, identity)
    user = users.update_user(db, user_id, payload)
    return ok(users.to_updated_user_out(user, identity.email), "User updated")


@app.delete("/api/users/{user_id}")
def delete_user(user_id: str, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    _own_account(user_id, identity)
    users.delete_user(db, user_id)
    return ok(None, "User deleted successfully")


# Cart
@app.get("/api/cart")
def get_cart(identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(carts.list_cart_items(db, identity.user_id))


@app.post("/api/cart")
def add_to_cart(payload: ProductRequest, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    item = carts.add_to_cart(db, identity.user_id, payload.product_id)
    return ok(item, "Product added to cart")


@app.delete("/api/cart")
def clear_cart(identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    carts.clear_cart(db, identity.user_id)
    return ok(None, "Cart cleared")


@app.post("/api/cart/buy")
def buy_cart(identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(orders.place_order(db, identity.user_id), "Items bought successfully")


@app.patch("/api/cart/{item_id}")
def update_cart_item(item_id: str, payload: QuantityRequest, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    carts.update_cart_item_quantity(db, item_id, payload.quantity, identity.user_id)
    return ok(None, "Cart item quantity updated")


@app.delete("/api/cart/{item_id}")
def remove_cart_item(item_id: str, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    carts.remove_cart_item(db, identity.user_id, item_id)
    return ok(None, "Item removed from cart")


# Wishlist
@app.get("/api/wishlist")
def get_wishlist(identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(carts.list_wishlist_items(db, identity.user_id))


@app.post("/api/wishlist")
def add_to_wishlist(payload: ProductRequest, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    item = carts.add_to_wishlist(db, identity.user_id, payload.product_id)
    return ok(item, "Product added to wishlist")


@app.post("/api/wishlist/addAllToCart")
def add_all_to_cart(identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    count = carts.add_all_to_cart(db, identity.user_id)
    return ok({"added": count}, "All wishlist items added to cart")


@app.delete("/api/wishlist/clear")
def clear_wishlist(identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    carts.clear_wishlist(db, identity.user_id)
    return ok(None, "Wishlist cleared")


@app.delete("/api/wishlist/{item_id}")
def remove_wishlist_item(item_id: str, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    carts.remove_wishlist_item(db, identity.user_id, item_id)
    return ok(None, "Item removed from wishlist")


# Orders
@app.get("/api/orders")
def list_orders(identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(orders.list_orders(db, identity.user_id))


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(orders.get_order(db, order_id, identity.user_id))


# Products
@app.get("/api/products")
def list_products(category: Optional[str] = None, db: Database = Depends(get_db)):
    return ok(catalog.list_products(db, category))


@app.post("/api/products", status_code=201)
def create_product(payload: ProductIn, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(catalog.create_product(db, payload), "Product created")


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return ok(catalog.get_product_out(db, product_id))


@app.patch("/api/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(catalog.update_product(db, product_id, payload), "Product updated")


@app.patch("/api/products/{product_id}/name")
def update_product_name(product_id: str, payload: ProductNameRequest, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    update = ProductUpdate(name=payload.name)
    return ok(catalog.update_product(db, product_id, update), "Product name updated")


@app.patch("/api/products/{product_id}/description")
def update_product_description(product_id: str, payload: ProductDescriptionRequest, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    update = ProductUpdate(description=payload.description)
    return ok(catalog.update_product(db, product_id, update), "Product description updated")


@app.get("/api/products/{product_id}/categories")
def get_product_categories(product_id: str, db: Database = Depends(get_db)):
    return ok(catalog.product_categories(db, product_id))


# Categories
@app.get("/api/categories")
def list_categories(db: Database = Depends(get_db)):
    return ok(catalog.list_categories(db))


@app.get("/api/categories/name/{name}")
def get_category_by_name(name: str, db: Database = Depends(get_db)):
    category = catalog.find_category_by_name(db, name)
    if not category:
        raise HTTPException(status_code=404, detail=f"Category not found with name: {name}")
    return ok(catalog.to_category_out(category))


@app.get("/api/categories/{category_id}")
def get_category(category_id: str, db: Database = Depends(get_db)):
    return ok(catalog.to_category_out(catalog.get_category(db, category_id)))


@app.post("/api/categories", status_code=201)
def create_category(payload: CategoryIn, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(catalog.to_category_out(catalog.create_category(db, payload.name)), "Category created")


@app.put("/api/categories/{category_id}")
def update_category(category_id: str, payload: CategoryIn, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(catalog.to_category_out(catalog.update_category(db, category_id, payload.name)), "Category updated")


@app.delete("/api/categories/{category_id}")
def delete_category(category_id: str, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    catalog.delete_category(db, category_id)
    return ok(None, "Category deleted successfully")


@app.get("/api/categories/{category_id}/product-count")
def get_category_product_count(category_id: str, db: Database = Depends(get_db)):
    category = catalog.get_category(db, category_id)
    count = catalog.count_products_in_category(db, category["_id"])
    return ok({"categoryId": category_id, "productCount": count})


# Reviews
@app.get("/api/reviews")
def list_reviews(product_id: Optional[str] = Query(default=None, alias="productId"), db: Database = Depends(get_db)):
    return ok(catalog.list_reviews(db, product_id))


@app.get("/api/reviews/{review_id}")
def get_review(review_id: str, db: Database = Depends(get_db)):
    return ok(catalog.to_review_out(catalog.get_review(db, review_id)))


@app.post("/api/reviews", status_code=201)
def create_review(payload: ReviewIn, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(catalog.create_review(db, payload), "Review created")


@app.put("/api/reviews/{review_id}")
def update_review(review_id: str, payload: ReviewUpdate, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    return ok(catalog.update_review(db, review_id, payload), "Review updated")


@app.delete("/api/reviews/{review_id}")
def delete_review(review_id: str, identity: Identity = Depends(require_identity), db: Database = Depends(get_db)):
    catalog.delete_review(db, review_id)
    return ok(None, "Review deleted successfully")


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
