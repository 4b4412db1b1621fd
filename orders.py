"""
Checkout: turns a cart into an order.

Stock is debited with one conditional update per line, so a line only
succeeds while enough stock is left. Placing an order is all or nothing:
when a later step fails, the steps already applied are undone (stock
re-credited, order deleted, cart items put back) and the error is raised
again.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import create_document, now
from logger import get_logger
from schemas import Order, OrderItem

_logger = get_logger(__name__)


class CheckoutError(Exception):
    def __init__(self, message: str, product_id: ObjectId):
        super().__init__(message)
        self.message = message
        self.product_id = product_id


class MissingProductError(CheckoutError):
    pass


class InsufficientStockError(CheckoutError):
    pass


def generate_reference() -> str:
    return f"ORD-{datetime.now(timezone.utc):%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


def order_lines(db: Database, items: List[dict]) -> List[Dict[str, Any]]:
    """Price every cart line with the product's current price."""
    ids = [item["product_id"] for item in items]
    products = {p["_id"]: p for p in db["product"].find({"_id": {"$in": ids}}, {"name": 1, "price": 1})}
    lines = []
    for item in items:
        product = products.get(item["product_id"])
        if product is None:
            raise MissingProductError(f"Product {item['product_id']} no longer exists", item["product_id"])
        lines.append({
            "product_id": item["product_id"],
            "name": product.get("name"),
            "quantity": int(item["quantity"]),
            "price": float(product.get("price", 0)),
        })
    return lines


def order_total(lines: List[Dict[str, Any]]) -> float:
    return round(sum(line["price"] * line["quantity"] for line in lines), 2)


def _restore_stock(db: Database, lines: List[Dict[str, Any]]) -> None:
    for line in lines:
        try:
            db["product"].update_one({"_id": line["product_id"]}, {"$inc": {"stock": line["quantity"]}})
        except PyMongoError:
            _logger.exception(f"Could not restore {line['quantity']} unit(s) of product {line['product_id']}")


def _discard_order(db: Database, order_id: ObjectId, cart: dict) -> None:
    try:
        db["order"].delete_one({"_id": order_id})
    except PyMongoError:
        _logger.exception(f"Could not delete order {order_id} during rollback")
    try:
        db["cart"].update_one({"_id": cart["_id"]}, {"$set": {"items": cart.get("items", [])}})
    except PyMongoError:
        _logger.exception(f"Could not restore the items of cart {cart['_id']} during rollback")


def _debit_stock(db: Database, lines: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    debited = []
    try:
        for line in lines:
            res = db["product"].find_one_and_update(
                {"_id": line["product_id"], "stock": {"$gte": line["quantity"]}},
                {"$inc": {"stock": -line["quantity"]}, "$set": {"updated_at": now()}},
            )
            if res is None:
                raise InsufficientStockError(f"Insufficient stock for product {line['name'] or line['product_id']}", line["product_id"])
            debited.append(line)
    except Exception:
        _restore_stock(db, debited)
        raise
    return debited


def place_order(db: Database, user_id: ObjectId, cart: dict, shipping_address: Optional[str] = None) -> Dict[str, Any]:
    lines = order_lines(db, cart.get("items", []))
    total = order_total(lines)

    _logger.debug(f"Debiting stock for {len(lines)} line(s)")
    debited = _debit_stock(db, lines)

    order_id = None
    try:
        order = Order(
            user_id=user_id,
            items=[OrderItem(product_id=l["product_id"], quantity=l["quantity"], price=l["price"]) for l in lines],
            reference_number=generate_reference(),
            total_amount=total,
            shipping_address=shipping_address,
        )
        order_id = ObjectId(create_document(db, "order", order))
        db["cart"].update_one({"_id": cart["_id"]}, {"$set": {"items": [], "updated_at": now()}})
        db["user"].update_one({"_id": user_id}, {"$push": {"orders": order_id}})
    except Exception:
        _logger.error(f"Placing order for user {user_id} failed, rolling back")
        _restore_stock(db, debited)
        if order_id is not None:
            _discard_order(db, order_id, cart)
        raise

    _logger.info(f"Order {order_id} placed for user {user_id}, total {total}")
    return {
        "order_id": str(order_id),
        "reference_number": order.reference_number,
        "total_amount": total,
    }


def populate_order(db: Database, order: dict) -> dict:
    """Attach product name, price and description to each order line."""
    ids = [item["product_id"] for item in order.get("items", [])]
    products = {
        p["_id"]: p
        for p in db["product"].find({"_id": {"$in": ids}}, {"name": 1, "price": 1, "description": 1})
    }
    order = dict(order)
    order["items"] = [dict(item, product=products.get(item["product_id"])) for item in order.get("items", [])]
    return order
