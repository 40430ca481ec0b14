"""Shopping cart: one cart per user, totals recomputed from live prices."""

from typing import Any, Dict, Iterable, List, Mapping

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

from catalog import find_product
from database import now
from errors import NotFound, ValidationError
from payloads import CartItemCreate, CartItemUpdate
from schemas import Cart, ProductSummary

CART_PRODUCT_FIELDS = {"name": 1, "price": 1, "images": 1, "in_stock": 1, "total_stock": 1}


def compute_cart_total(items: Iterable[Mapping[str, Any]], prices: Mapping[ObjectId, float]) -> float:
    """Sum quantity x current price; lines whose product is gone count as 0."""
    total = 0.0
    for item in items:
        price = prices.get(item["product"])
        if price is not None:
            total += price * item["quantity"]
    return round(total, 2)


def has_stock(product: Mapping[str, Any], quantity: int) -> bool:
    return bool(product.get("in_stock")) and product.get("total_stock", 0) >= quantity


def _current_prices(db: Database, items: List[Dict[str, Any]]) -> Dict[ObjectId, float]:
    ids = list({item["product"] for item in items})
    if not ids:
        return {}
    return {p["_id"]: p["price"] for p in db["product"].find({"_id": {"$in": ids}}, {"price": 1})}


def get_or_create_cart(db: Database, user_id: ObjectId) -> Dict[str, Any]:
    timestamp = now()
    return db["cart"].find_one_and_update(
        {"user": user_id},
        {"$setOnInsert": {"items": [], "total_amount": 0, "created_at": timestamp, "updated_at": timestamp}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def _find_cart(db: Database, user_id: ObjectId) -> Dict[str, Any]:
    cart = db["cart"].find_one({"user": user_id})
    if not cart:
        raise NotFound("Cart not found")
    return cart


def _find_line(cart: Dict[str, Any], item_id: str) -> Dict[str, Any]:
    if ObjectId.is_valid(item_id):
        for item in cart["items"]:
            if item["_id"] == ObjectId(item_id):
                return item
    raise NotFound("Cart item not found")


def save_cart(db: Database, cart: Dict[str, Any]) -> Dict[str, Any]:
    cart["total_amount"] = compute_cart_total(cart["items"], _current_prices(db, cart["items"]))
    cart["updated_at"] = now()
    db["cart"].update_one(
        {"_id": cart["_id"]},
        {"$set": {"items": cart["items"], "total_amount": cart["total_amount"], "updated_at": cart["updated_at"]}},
    )
    return cart


def populate(db: Database, cart: Dict[str, Any]) -> Dict[str, Any]:
    """Render a cart with each line's product summary in place of its id."""
    ids = [item["product"] for item in cart["items"]]
    products = {p["_id"]: p for p in db["product"].find({"_id": {"$in": ids}}, CART_PRODUCT_FIELDS)} if ids else {}
    data = dict(cart)
    data["items"] = [
        dict(item, product=ProductSummary.from_doc(products[item["product"]]).model_dump(by_alias=True))
        if item["product"] in products
        else item
        for item in cart["items"]
    ]
    return Cart.from_doc(data).to_api()


def view_cart(db: Database, user_id: ObjectId) -> Dict[str, Any]:
    return populate(db, get_or_create_cart(db, user_id))


def add_item(db: Database, user_id: ObjectId, payload: CartItemCreate) -> Dict[str, Any]:
    product = find_product(db, payload.product_id)
    if not has_stock(product, payload.quantity):
        raise ValidationError("Product is out of stock or insufficient quantity")

    cart = get_or_create_cart(db, user_id)
    for item in cart["items"]:
        if item["product"] == product["_id"] and item["colour"] == payload.colour and item["size"] == payload.size:
            item["quantity"] += payload.quantity
            break
    else:
        cart["items"].append({
            "_id": ObjectId(),
            "product": product["_id"],
            "quantity": payload.quantity,
            "colour": payload.colour,
            "size": payload.size,
        })
    return populate(db, save_cart(db, cart))


def update_item(db: Database, user_id: ObjectId, item_id: str, payload: CartItemUpdate) -> Dict[str, Any]:
    cart = _find_cart(db, user_id)
    item = _find_line(cart, item_id)
    product = db["product"].find_one({"_id": item["product"]})
    if not product or not has_stock(product, payload.quantity):
        raise ValidationError("Product is out of stock or insufficient quantity")
    item["quantity"] = payload.quantity
    return populate(db, save_cart(db, cart))


def remove_item(db: Database, user_id: ObjectId, item_id: str) -> Dict[str, Any]:
    cart = _find_cart(db, user_id)
    item = _find_line(cart, item_id)
    cart["items"] = [line for line in cart["items"] if line["_id"] != item["_id"]]
    return populate(db, save_cart(db, cart))


def clear_cart(db: Database, user_id: ObjectId) -> Dict[str, Any]:
    cart = _find_cart(db, user_id)
    cart["items"] = []
    return populate(db, save_cart(db, cart))


def item_count(db: Database, user_id: ObjectId) -> int:
    cart = db["cart"].find_one({"user": user_id})
    if not cart:
        return 0
    return sum(item["quantity"] for item in cart.get("items", []))


def empty_cart(db: Database, user_id: Any) -> None:
    db["cart"].update_one({"user": user_id}, {"$set": {"items": [], "total_amount": 0, "updated_at": now()}})

