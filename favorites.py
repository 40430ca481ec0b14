from typing import Any, Dict, Optional

from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from catalog import find_product
from database import NEWEST_FIRST, create_document, object_id, paginate
from errors import Conflict, NotFound
from responses import pagination
from schemas import Favorite, ProductSummary

FAVORITE_PRODUCT_FIELDS = {"name": 1, "price": 1, "images": 1, "description": 1, "tags": 1, "in_stock": 1, "total_stock": 1}


def _render(favorite: Dict[str, Any], product: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    data = dict(favorite)
    if product is not None:
        data["product"] = ProductSummary.from_doc(product).model_dump(by_alias=True)
    return Favorite.from_doc(data).to_api()


def add_favorite(db: Database, user_id: ObjectId, product_id: str) -> Dict[str, Any]:
    product = find_product(db, product_id)
    if db["favorite"].find_one({"user": user_id, "product": product["_id"]}):
        raise Conflict("Product is already in favorites")
    doc = {"user": user_id, "product": product["_id"]}
    try:
        doc["_id"] = create_document(db, "favorite", doc)
    except DuplicateKeyError:
        raise Conflict("Product is already in favorites")
    return _render(doc, product)


def remove_favorite(db: Database, user_id: ObjectId, product_id: str) -> None:
    favorite = None
    if ObjectId.is_valid(product_id):
        favorite = db["favorite"].find_one_and_delete({"user": user_id, "product": ObjectId(product_id)})
    if not favorite:
        raise NotFound("Product not found in favorites")


def list_favorites(db: Database, user_id: ObjectId, page: int, limit: int) -> Dict[str, Any]:
    docs, total = paginate(db, "favorite", {"user": user_id}, NEWEST_FIRST, page, limit)
    ids = [d["product"] for d in docs]
    products = {p["_id"]: p for p in db["product"].find({"_id": {"$in": ids}}, FAVORITE_PRODUCT_FIELDS)} if ids else {}
    return {
        "favorites": [_render(d, products.get(d["product"])) for d in docs],
        "pagination": pagination(page, limit, total),
    }


def favorite_status(db: Database, user_id: ObjectId, product_id: str) -> Dict[str, Any]:
    favorite = db["favorite"].find_one({"user": user_id, "product": object_id(product_id, "Product")})
    return {"isFavorite": favorite is not None, "favoriteId": str(favorite["_id"]) if favorite else None}
