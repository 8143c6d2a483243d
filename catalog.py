"""
Product catalog: categories, products and reviews.

A product belongs to at most one category. Its rating is the average of its
review ratings, recomputed whenever a review is added, removed or re-rated.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import HTTPException
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from carts import get_product
from database import create_document, get_documents, parse_object_id, utcnow
from schemas import (
    Category as CategorySchema,
    CategoryOut,
    Product as ProductSchema,
    ProductIn,
    ProductOut,
    ProductUpdate,
    Review as ReviewSchema,
    ReviewIn,
    ReviewOut,
    ReviewUpdate,
)

logger = logging.getLogger(__name__)


# Categories

def to_category_out(doc: Dict[str, Any]) -> CategoryOut:
    return CategoryOut(id=str(doc["_id"]), name=doc["name"])


def list_categories(db: Database) -> List[CategoryOut]:
    return [CategoryOut(**c) for c in get_documents(db, "category", sort="name")]


def get_category(db: Database, category_id: str) -> Dict[str, Any]:
    category = db["category"].find_one({"_id": parse_object_id(category_id, "category")})
    if not category:
        raise HTTPException(status_code=404, detail=f"Category not found with id: {category_id}")
    return category


def find_category_by_name(db: Database, name: str) -> Optional[Dict[str, Any]]:
    return db["category"].find_one({"name": name})


def create_category(db: Database, name: str) -> Dict[str, Any]:
    if find_category_by_name(db, name):
        raise HTTPException(status_code=409, detail=f"Category with name '{name}' already exists.")
    try:
        category_id = create_document(db, "category", CategorySchema(name=name))
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail=f"Category with name '{name}' already exists.")
    return db["category"].find_one({"_id": ObjectId(category_id)})


def find_or_create_category(db: Database, name: str) -> Dict[str, Any]:
    existing = find_category_by_name(db, name)
    if existing:
        return existing
    logger.info("Creating new category: %s", name)
    return create_category(db, name)


def update_category(db: Database, category_id: str, name: str) -> Dict[str, Any]:
    category = get_category(db, category_id)
    other = find_category_by_name(db, name)
    if other and other["_id"] != category["_id"]:
        raise HTTPException(status_code=409, detail=f"Another category with name '{name}' already exists.")
    db["category"].update_one({"_id": category["_id"]}, {"$set": {"name": name, "updated_at": utcnow()}})
    category["name"] = name
    return category


def count_products_in_category(db: Database, category_id: ObjectId) -> int:
    return db["product"].count_documents({"category_id": category_id})


def delete_category(db: Database, category_id: str):
    category = get_category(db, category_id)
    if count_products_in_category(db, category["_id"]) > 0:
        raise HTTPException(status_code=409, detail="Category cannot be deleted because it contains products.")
    db["category"].delete_one({"_id": category["_id"]})


# Products

def to_product_out(doc: Dict[str, Any], category_name: Optional[str] = None) -> ProductOut:
    return ProductOut(
        id=str(doc["_id"]),
        name=doc["name"],
        price=doc["price"],
        description=doc.get("description"),
        brand=doc.get("brand"),
        rating=doc.get("rating"),
        tags=doc.get("tags", []),
        image_url=doc.get("image_url"),
        category=category_name,
    )


def _with_categories(db: Database, docs: List[Dict[str, Any]]) -> List[ProductOut]:
    ids = list({d["category_id"] for d in docs if d.get("category_id")})
    names = {c["_id"]: c["name"] for c in db["category"].find({"_id": {"$in": ids}})}
    return [to_product_out(d, names.get(d.get("category_id"))) for d in docs]


def list_products(db: Database, category: Optional[str] = None) -> List[ProductOut]:
    query: Dict[str, Any] = {}
    if category and category.strip():
        match = db["category"].find_one({"name": {"$regex": f"^{re.escape(category.strip())}$", "$options": "i"}})
        if not match:
            return []
        query["category_id"] = match["_id"]
    return _with_categories(db, list(db["product"].find(query).sort("name", 1)))


def get_product_out(db: Database, product_id: str) -> ProductOut:
    return _with_categories(db, [get_product(db, product_id)])[0]


def create_product(db: Database, payload: ProductIn) -> ProductOut:
    category_id = find_or_create_category(db, payload.category)["_id"] if payload.category else None
    product = ProductSchema(
        name=payload.name,
        price=payload.price,
        description=payload.description,
        brand=payload.brand,
        tags=payload.tags,
        image_url=payload.image_url,
        category_id=category_id,
    )
    product_id = create_document(db, "product", product)
    logger.info("Created product %s", product_id)
    return get_product_out(db, product_id)


def update_product(db: Database, product_id: str, payload: ProductUpdate) -> ProductOut:
    product = get_product(db, product_id)
    changes = payload.model_dump(exclude_none=True)
    if changes:
        changes["updated_at"] = utcnow()
        db["product"].update_one({"_id": product["_id"]}, {"$set": changes})
    return get_product_out(db, product_id)


def product_categories(db: Database, product_id: str) -> List[CategoryOut]:
    product = get_product(db, product_id)
    if not product.get("category_id"):
        return []
    category = db["category"].find_one({"_id": product["category_id"]})
    return [to_category_out(category)] if category else []


def update_product_rating(db: Database, product_id: ObjectId):
    ratings = [r["rating"] for r in db["review"].find({"product_id": product_id}) if r.get("rating") is not None]
    rating = round(sum(ratings) / len(ratings), 2) if ratings else None
    db["product"].update_one({"_id": product_id}, {"$set": {"rating": rating, "updated_at": utcnow()}})
    logger.info("Updated rating for product %s to %s", product_id, rating)


# Reviews

def to_review_out(doc: Dict[str, Any]) -> ReviewOut:
    return ReviewOut(
        review_id=str(doc["_id"]),
        product_id=str(doc["product_id"]),
        rating=doc["rating"],
        comment=doc["comment"],
        reviewer_name=doc["reviewer_name"],
        reviewer_email=doc["reviewer_email"],
        date=doc["date"],
    )


def list_reviews(db: Database, product_id: Optional[str] = None) -> List[ReviewOut]:
    query = {"product_id": parse_object_id(product_id, "product")} if product_id else {}
    return [to_review_out(r) for r in db["review"].find(query).sort("date", -1)]


def get_review(db: Database, review_id: str) -> Dict[str, Any]:
    review = db["review"].find_one({"_id": parse_object_id(review_id, "review")})
    if not review:
        raise HTTPException(status_code=404, detail=f"Review not found with id: {review_id}")
    return review


def create_review(db: Database, payload: ReviewIn) -> ReviewOut:
    product = get_product(db, payload.product_id)
    review = ReviewSchema(
        product_id=product["_id"],
        rating=payload.rating,
        comment=payload.comment,
        reviewer_name=payload.reviewer_name,
        reviewer_email=payload.reviewer_email,
        date=utcnow(),
    )
    review_id = create_document(db, "review", review)
    update_product_rating(db, product["_id"])
    return to_review_out(db["review"].find_one({"_id": ObjectId(review_id)}))


def update_review(db: Database, review_id: str, payload: ReviewUpdate) -> ReviewOut:
    review = get_review(db, review_id)
    changes: Dict[str, Any] = {}
    rating_changed = payload.rating is not None and payload.rating != review["rating"]
    if rating_changed:
        changes["rating"] = payload.rating
    if payload.comment is not None:
        changes["comment"] = payload.comment
    if changes:
        changes["updated_at"] = utcnow()
        db["review"].update_one({"_id": review["_id"]}, {"$set": changes})
        review.update(changes)
    if rating_changed:
        update_product_rating(db, review["product_id"])
    return to_review_out(review)


def delete_review(db: Database, review_id: str):
    review = get_review(db, review_id)
    db["review"].delete_one({"_id": review["_id"]})
    update_product_rating(db, review["product_id"])
