"""
Cart and wishlist aggregates.

Both are per-user singletons created lazily on the first add, holding line
items that reference products. The cart counts quantities, the wishlist only
records presence. Line item uniqueness per (aggregate, product) is enforced by
a unique index, and adds are single atomic upserts against it.

Any mutation of an existing item first checks that the item's aggregate
belongs to the caller. A foreign item is reported exactly like a missing one.
"""

import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import HTTPException
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import parse_object_id, utcnow
from schemas import CartItemOut, WishlistItemOut

logger = logging.getLogger(__name__)

# attempts for an upsert that lost a race on a unique key
UPSERT_ATTEMPTS = 3


def _upsert(collection, filter_dict: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    for attempt in range(1, UPSERT_ATTEMPTS + 1):
        try:
            return collection.find_one_and_update(
                filter_dict, update, upsert=True, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            # a concurrent request inserted the same key first; the retry matches it
            if attempt == UPSERT_ATTEMPTS:
                raise
            logger.debug("Upsert on %s collided, retrying", collection.name)


class Aggregate:
    """Storage layout shared by the cart and the wishlist."""

    def __init__(self, label: str, collection: str, item_collection: str, key: str):
        self.label = label
        self.collection = collection
        self.item_collection = item_collection
        self.key = key

    def find(self, db: Database, user_id: str) -> Optional[Dict[str, Any]]:
        return db[self.collection].find_one({"user_id": ObjectId(user_id)})

    def get_or_create(self, db: Database, user_id: str) -> Dict[str, Any]:
        now = utcnow()
        return _upsert(
            db[self.collection],
            {"user_id": ObjectId(user_id)},
            {"$setOnInsert": {"created_at": now, "updated_at": now}},
        )

    def items(self, db: Database, user_id: str) -> List[Dict[str, Any]]:
        aggregate = self.find(db, user_id)
        if not aggregate:
            return []
        return list(db[self.item_collection].find({self.key: aggregate["_id"]}).sort("created_at", 1))

    def owned_item(self, db: Database, user_id: str, item_id: str) -> Dict[str, Any]:
        not_found = HTTPException(status_code=404, detail=f"{self.label} item not found with id {item_id}")
        item = db[self.item_collection].find_one({"_id": parse_object_id(item_id, f"{self.label.lower()} item")})
        if not item:
            raise not_found
        aggregate = db[self.collection].find_one({"_id": item[self.key]})
        if not aggregate or aggregate["user_id"] != ObjectId(user_id):
            logger.warning("User %s tried to modify %s item %s owned by someone else", user_id, self.label.lower(), item_id)
            raise not_found
        return item

    def remove(self, db: Database, user_id: str, item_id: str):
        item = self.owned_item(db, user_id, item_id)
        db[self.item_collection].delete_one({"_id": item["_id"]})

    def clear(self, db: Database, user_id: str) -> int:
        aggregate = self.find(db, user_id)
        if not aggregate:
            return 0
        return db[self.item_collection].delete_many({self.key: aggregate["_id"]}).deleted_count


cart = Aggregate("Cart", "cart", "cartitem", "cart_id")
wishlist = Aggregate("Wishlist", "wishlist", "wishlistitem", "wishlist_id")


def get_product(db: Database, product_id: str) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": parse_object_id(product_id, "product")})
    if not product:
        raise HTTPException(status_code=404, detail=f"Product not found with id {product_id}")
    return product


def _products_by_id(db: Database, items: List[Dict[str, Any]]) -> Dict[ObjectId, Dict[str, Any]]:
    ids = list({it["product_id"] for it in items})
    return {p["_id"]: p for p in db["product"].find({"_id": {"$in": ids}})}


def _product_fields(product: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "product_id": str(product["_id"]),
        "product_name": product.get("name", ""),
        "product_image_url": product.get("image_url"),
        "product_price": product.get("price", 0),
    }


# Cart

def list_cart_items(db: Database, user_id: str) -> List[CartItemOut]:
    items = cart.items(db, user_id)
    products = _products_by_id(db, items)
    return [
        CartItemOut(id=str(it["_id"]), quantity=it["quantity"], **_product_fields(products[it["product_id"]]))
        for it in items
        if it["product_id"] in products
    ]


def add_to_cart(db: Database, user_id: str, product_id: str) -> CartItemOut:
    product = get_product(db, product_id)
    aggregate = cart.get_or_create(db, user_id)
    now = utcnow()
    item = _upsert(
        db["cartitem"],
        {"cart_id": aggregate["_id"], "product_id": product["_id"]},
        {"$inc": {"quantity": 1}, "$set": {"updated_at": now}, "$setOnInsert": {"created_at": now}},
    )
    logger.info("User %s cart: product %s quantity now %s", user_id, product_id, item["quantity"])
    return CartItemOut(id=str(item["_id"]), quantity=item["quantity"], **_product_fields(product))


def update_cart_item_quantity(db: Database, item_id: str, quantity: int, user_id: str):
    item = cart.owned_item(db, user_id, item_id)
    if quantity < 1:
        raise HTTPException(status_code=400, detail="Quantity must be at least 1")
    db["cartitem"].update_one({"_id": item["_id"]}, {"$set": {"quantity": quantity, "updated_at": utcnow()}})


def remove_cart_item(db: Database, user_id: str, item_id: str):
    cart.remove(db, user_id, item_id)


def clear_cart(db: Database, user_id: str) -> int:
    return cart.clear(db, user_id)


# Wishlist

def list_wishlist_items(db: Database, user_id: str) -> List[WishlistItemOut]:
    items = wishlist.items(db, user_id)
    products = _products_by_id(db, items)
    return [
        WishlistItemOut(id=str(it["_id"]), **_product_fields(products[it["product_id"]]))
        for it in items
        if it["product_id"] in products
    ]


def add_to_wishlist(db: Database, user_id: str, product_id: str) -> WishlistItemOut:
    product = get_product(db, product_id)
    aggregate = wishlist.get_or_create(db, user_id)
    now = utcnow()
    item = _upsert(
        db["wishlistitem"],
        {"wishlist_id": aggregate["_id"], "product_id": product["_id"]},
        {"$setOnInsert": {"created_at": now, "updated_at": now}},
    )
    return WishlistItemOut(id=str(item["_id"]), **_product_fields(product))


def remove_wishlist_item(db: Database, user_id: str, item_id: str):
    wishlist.remove(db, user_id, item_id)


def clear_wishlist(db: Database, user_id: str) -> int:
    return wishlist.clear(db, user_id)


def add_all_to_cart(db: Database, user_id: str) -> int:
    """Copy every wishlist product into the cart. The wishlist is left as is."""
    items = wishlist.items(db, user_id)
    for it in items:
        add_to_cart(db, user_id, str(it["product_id"]))
    return len(items)
