import logging
from typing import Any, Dict, List

from bson import ObjectId
from fastapi import HTTPException
from pymongo.database import Database

from carts import cart
from database import create_document, parse_object_id, utcnow
from schemas import Order, OrderItem, OrderItemOut, OrderOut

logger = logging.getLogger(__name__)


def to_order_out(doc: Dict[str, Any]) -> OrderOut:
    return OrderOut(
        id=str(doc["_id"]),
        order_date=doc["order_date"],
        status=doc.get("status", "PLACED"),
        items=[
            OrderItemOut(
                product_id=str(it["product_id"]),
                product_name=it["product_name"],
                price=it["price"],
                quantity=it["quantity"],
            )
            for it in doc.get("items", [])
        ],
        total=doc.get("total", 0),
    )


def place_order(db: Database, user_id: str) -> OrderOut:
    """Turn the caller's cart into an order and empty the cart."""
    items = cart.items(db, user_id)
    if not items:
        raise HTTPException(status_code=400, detail="Cart is empty")
    products = {p["_id"]: p for p in db["product"].find({"_id": {"$in": [it["product_id"] for it in items]}})}
    lines = [
        OrderItem(
            product_id=it["product_id"],
            product_name=products[it["product_id"]].get("name", ""),
            price=products[it["product_id"]].get("price", 0),
            quantity=it["quantity"],
        )
        for it in items
        if it["product_id"] in products
    ]
    if not lines:
        # every line points at a product that has since been removed
        raise HTTPException(status_code=400, detail="Cart is empty")
    total = round(sum(line.price * line.quantity for line in lines), 2)
    order = Order(user_id=ObjectId(user_id), order_date=utcnow(), items=lines, total=total)
    order_id = create_document(db, "order", order)
    cart.clear(db, user_id)
    logger.info("User %s placed order %s (%d lines, total %.2f)", user_id, order_id, len(lines), total)
    return to_order_out(db["order"].find_one({"_id": ObjectId(order_id)}))


def list_orders(db: Database, user_id: str) -> List[OrderOut]:
    docs = db["order"].find({"user_id": ObjectId(user_id)}).sort("order_date", -1)
    return [to_order_out(d) for d in docs]


def get_order(db: Database, order_id: str, user_id: str) -> OrderOut:
    order = db["order"].find_one({"_id": parse_object_id(order_id, "order")})
    if not order or order["user_id"] != ObjectId(user_id):
        raise HTTPException(status_code=404, detail=f"Order not found with id {order_id}")
    return to_order_out(order)
