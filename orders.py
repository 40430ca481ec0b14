"""Checkout, payment confirmation and order administration.

Checkout snapshots prices into a ``pending`` order and opens a payment
session; stock only moves once the gateway reports the session as paid.
There is no stock reservation between the two steps, and the stock
decrement and the cart purge are separate single-document writes.
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

from carts import empty_cart, has_stock
from database import NEWEST_FIRST, create_document, now, object_id, paginate
from errors import NotFound, ValidationError
from log import get_logger
from payloads import CheckoutRequest
from payments import CheckoutSession, LineItem, StripeGateway
from responses import pagination
from schemas import Order, OrderStatus, PaymentStatus

logger = get_logger(__name__)

ORDER_PRODUCT_FIELDS = {"name": 1, "price": 1, "images": 1}


def snapshot_lines(
    cart_items: List[Mapping[str, Any]], products: Mapping[ObjectId, Mapping[str, Any]]
) -> Tuple[List[Dict[str, Any]], List[LineItem]]:
    """Copy each cart line with the product's price at this instant.

    Any line whose product is gone or short on stock fails the whole batch.
    """
    order_items = []
    line_items = []
    for item in cart_items:
        product = products.get(item["product"])
        if product is None:
            raise ValidationError("A product in your cart is no longer available")
        if not has_stock(product, item["quantity"]):
            raise ValidationError(f"Product {product['name']} is out of stock or insufficient quantity")
        order_items.append({
            "product": product["_id"],
            "name": product["name"],
            "quantity": item["quantity"],
            "price": product["price"],
            "colour": item["colour"],
            "size": item["size"],
        })
        line_items.append(LineItem(
            name=product["name"],
            unit_amount=int(round(product["price"] * 100)),
            quantity=item["quantity"],
            images=product.get("images", []),
        ))
    return order_items, line_items


def order_total(order_items: List[Mapping[str, Any]]) -> float:
    return round(sum(item["price"] * item["quantity"] for item in order_items), 2)


def _populate(db: Database, docs: List[Dict[str, Any]], with_user: bool = False) -> List[Dict[str, Any]]:
    product_ids = {item["product"] for doc in docs for item in doc["items"]}
    products = {}
    if product_ids:
        products = {p["_id"]: p for p in db["product"].find({"_id": {"$in": list(product_ids)}}, ORDER_PRODUCT_FIELDS)}
    users = {}
    if with_user:
        user_ids = list({doc["user"] for doc in docs})
        users = {u["_id"]: u for u in db["user"].find({"_id": {"$in": user_ids}}, {"username": 1, "email": 1})} if user_ids else {}

    rendered = []
    for doc in docs:
        data = dict(doc)
        data["items"] = []
        for item in doc["items"]:
            product = products.get(item["product"])
            if product is not None:
                item = dict(item, product={"id": str(product["_id"]), "name": product["name"], "price": product["price"], "images": product.get("images", [])})
            data["items"].append(item)
        user = users.get(doc["user"])
        if user is not None:
            data["user"] = {"id": str(user["_id"]), "username": user["username"], "email": user["email"]}
        rendered.append(Order.from_doc(data).to_api())
    return rendered


def checkout(
    db: Database,
    user: Dict[str, Any],
    payload: CheckoutRequest,
    gateway: StripeGateway,
    callback_base: str,
) -> Dict[str, Any]:
    cart = db["cart"].find_one({"user": user["_id"]})
    if not cart or not cart.get("items"):
        raise ValidationError("Cart is empty")

    ids = list({item["product"] for item in cart["items"]})
    products = {p["_id"]: p for p in db["product"].find({"_id": {"$in": ids}})}
    order_items, line_items = snapshot_lines(cart["items"], products)
    total = order_total(order_items)

    order_id = ObjectId()
    session = gateway.create_checkout_session(
        line_items,
        success_url=f"{callback_base}/orders/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{callback_base}/orders/cancel",
        metadata={
            "orderId": str(order_id),
            "userId": str(user["_id"]),
            "paymentMethod": payload.payment_method,
        },
    )

    doc = {
        "_id": order_id,
        "user": user["_id"],
        "items": order_items,
        "total_amount": total,
        "shipping_address": payload.shipping_address.model_dump(),
        "payment_method": payload.payment_method,
        "payment_status": PaymentStatus.PENDING.value,
        "status": OrderStatus.PENDING.value,
        "payment_session_id": session.id,
        "payment_intent_id": session.payment_intent,
    }
    create_document(db, "order", doc)
    logger.info("checkout session created", order_id=str(order_id), session_id=session.id, total=total)
    return {
        "sessionId": session.id,
        "sessionUrl": session.url,
        "order": Order.from_doc(doc).to_api(),
    }


def apply_paid_session(db: Database, session: CheckoutSession) -> Optional[Dict[str, Any]]:
    """Complete the pending order behind a paid session.

    Returns the order, or None when the session is not paid. Only an order
    still awaiting payment is transitioned, so a repeated confirmation does
    not move stock twice.
    """
    if session.payment_status != "paid":
        return None
    timestamp = now()
    order = db["order"].find_one_and_update(
        {"payment_session_id": session.id, "payment_status": PaymentStatus.PENDING.value},
        {"$set": {
            "payment_status": PaymentStatus.COMPLETED.value,
            "status": OrderStatus.PROCESSING.value,
            "payment_intent_id": session.payment_intent,
            "paid_at": timestamp,
            "updated_at": timestamp,
        }},
        return_document=ReturnDocument.AFTER,
    )
    if order is None:
        order = db["order"].find_one({"payment_session_id": session.id})
        if order is None:
            raise NotFound("Order not found")
        return order

    for item in order["items"]:
        db["product"].update_one(
            {"_id": item["product"]},
            {"$inc": {"total_stock": -item["quantity"], "sold_count": item["quantity"]}, "$set": {"updated_at": timestamp}},
        )
    empty_cart(db, order["user"])
    logger.info("payment confirmed", order_id=str(order["_id"]), session_id=session.id)
    return order


def confirm_payment(db: Database, gateway: StripeGateway, session_id: Optional[str]) -> Dict[str, Any]:
    if not session_id:
        raise ValidationError("Session ID is required")
    session = gateway.retrieve_session(session_id)
    order = apply_paid_session(db, session)
    if order is None:
        pending = db["order"].find_one({"payment_session_id": session.id}, {"_id": 1})
        return {
            "paid": False,
            "message": "Payment has not been completed.",
            "orderId": str(pending["_id"]) if pending else session.metadata.get("orderId"),
            "paymentStatus": session.payment_status,
        }
    return {
        "paid": True,
        "message": "Payment successful! Your order has been placed.",
        "orderId": str(order["_id"]),
        "paymentStatus": order["payment_status"],
    }


def handle_webhook(db: Database, gateway: StripeGateway, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
    event = gateway.parse_webhook_event(payload, signature)
    order = None
    if event.type == "checkout.session.completed" and event.session is not None:
        try:
            order = apply_paid_session(db, event.session)
        except NotFound:
            # acknowledged so the provider stops retrying
            logger.warning("payment webhook for unknown order", session_id=event.session.id)
    logger.info("payment webhook received", event_type=event.type, handled=order is not None)
    return {"received": True, "type": event.type, "orderId": str(order["_id"]) if order else None}


def user_orders(db: Database, user_id: ObjectId) -> List[Dict[str, Any]]:
    docs = list(db["order"].find({"user": user_id}).sort(NEWEST_FIRST))
    return _populate(db, docs)


def user_order(db: Database, user_id: ObjectId, order_id: str) -> Dict[str, Any]:
    doc = db["order"].find_one({"_id": object_id(order_id, "Order"), "user": user_id})
    if not doc:
        raise NotFound("Order not found")
    return _populate(db, [doc])[0]


def all_orders(db: Database, page: int, limit: int, status: Optional[str] = None) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if status:
        query["status"] = status
    docs, total = paginate(db, "order", query, NEWEST_FIRST, page, limit)
    return {"orders": _populate(db, docs, with_user=True), "pagination": pagination(page, limit, total)}


def update_status(db: Database, order_id: str, status: str) -> Dict[str, Any]:
    doc = db["order"].find_one_and_update(
        {"_id": object_id(order_id, "Order")},
        {"$set": {"status": status, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFound("Order not found")
    logger.info("order status changed", order_id=order_id, status=status)
    return _populate(db, [doc], with_user=True)[0]
