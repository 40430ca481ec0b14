"""Product catalog: slugs, filtered listing, search and admin maintenance."""

import re
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from starlette.datastructures import UploadFile

from database import NEWEST_FIRST, create_document, now, object_id, paginate
from errors import Conflict, NotFound, ValidationError
from log import get_logger
from media import MAX_PRODUCT_IMAGES, CloudinaryMediaHost, check_image
from payloads import ProductCreate, ProductUpdate
from responses import pagination
from schemas import Product

logger = get_logger(__name__)

SORTS = {
    "price_asc": [("price", ASCENDING), ("_id", ASCENDING)],
    "price_desc": [("price", DESCENDING), ("_id", DESCENDING)],
    "popular": [("sold_count", DESCENDING), ("_id", DESCENDING)],
    "newest": NEWEST_FIRST,
}


def derive_slug(name: str) -> str:
    """'Red T-Shirt!!' -> 'red-t-shirt'"""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def build_filter(
    category: Optional[str] = None,
    tag: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    in_stock: Optional[bool] = None,
) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    wanted = [t for t in (category, tag) if t]
    if wanted:
        query["tags"] = {"$all": wanted} if len(wanted) > 1 else {"$in": wanted}
    if min_price is not None or max_price is not None:
        query["price"] = {}
        if min_price is not None:
            query["price"]["$gte"] = min_price
        if max_price is not None:
            query["price"]["$lte"] = max_price
    if in_stock is not None:
        query["in_stock"] = in_stock
    return query


def search_filter(q: str) -> Dict[str, Any]:
    pattern = re.escape(q.strip())
    return {
        "$or": [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
            {"tags": {"$regex": pattern, "$options": "i"}},
        ]
    }


def list_products(db: Database, query: Dict[str, Any], sort: str, page: int, limit: int) -> Dict[str, Any]:
    docs, total = paginate(db, "product", query, SORTS.get(sort, NEWEST_FIRST), page, limit)
    return {
        "products": [Product.from_doc(d).to_api() for d in docs],
        "pagination": pagination(page, limit, total),
    }


def categories(db: Database) -> List[str]:
    return sorted(db["product"].distinct("tags"))


def get_by_slug(db: Database, slug: str) -> Dict[str, Any]:
    doc = db["product"].find_one({"slug": slug})
    if not doc:
        raise NotFound("Product not found")
    return Product.from_doc(doc).to_api()


def find_product(db: Database, product_id) -> Dict[str, Any]:
    doc = db["product"].find_one({"_id": object_id(product_id, "Product")})
    if not doc:
        raise NotFound("Product not found")
    return doc


def get_by_id(db: Database, product_id: str) -> Dict[str, Any]:
    return Product.from_doc(find_product(db, product_id)).to_api()


async def upload_images(files: List[UploadFile], media_host: Optional[CloudinaryMediaHost]) -> List[str]:
    if not files:
        return []
    if media_host is None:
        raise ValidationError("Image upload is not configured")
    if len(files) > MAX_PRODUCT_IMAGES:
        raise ValidationError(f"At most {MAX_PRODUCT_IMAGES} images can be uploaded")
    contents = []
    for upload in files:
        content = await upload.read()
        check_image(upload.filename, upload.content_type, len(content))
        contents.append(content)
    return [media_host.upload_image(c).secure_url for c in contents]


def _slug_taken(db: Database, slug: str, exclude=None) -> bool:
    query: Dict[str, Any] = {"slug": slug}
    if exclude is not None:
        query["_id"] = {"$ne": exclude}
    return db["product"].find_one(query) is not None


def create_product(db: Database, payload: ProductCreate, uploaded: List[str]) -> Dict[str, Any]:
    images = uploaded or payload.images
    if not images:
        raise ValidationError("At least one product image is required", [{"field": "images", "message": "At least one product image is required"}])
    slug = payload.slug or derive_slug(payload.name)
    if not slug:
        raise ValidationError("Product name must contain letters or numbers")
    if _slug_taken(db, slug):
        raise Conflict("Product with this name already exists")

    doc = payload.model_dump(exclude={"slug", "images"})
    doc.update({"slug": slug, "images": images, "sold_count": 0})
    doc["_id"] = create_document(db, "product", doc)
    logger.info("product created", product_id=str(doc["_id"]), slug=slug)
    return Product.from_doc(doc).to_api()


def update_product(db: Database, product_id: str, payload: ProductUpdate, uploaded: List[str]) -> Dict[str, Any]:
    current = find_product(db, product_id)
    update = payload.model_dump(exclude_unset=True, exclude_none=True)
    if uploaded:
        update["images"] = uploaded
    if "images" in update and not update["images"]:
        raise ValidationError("At least one product image is required")

    if "slug" not in update and "name" in update and update["name"] != current["name"]:
        update["slug"] = derive_slug(update["name"])
        if not update["slug"]:
            raise ValidationError("Product name must contain letters or numbers")
    if "slug" in update and update["slug"] != current["slug"]:
        if _slug_taken(db, update["slug"], exclude=current["_id"]):
            raise Conflict("Product with this slug already exists")

    update["updated_at"] = now()
    db["product"].update_one({"_id": current["_id"]}, {"$set": update})
    return Product.from_doc(db["product"].find_one({"_id": current["_id"]})).to_api()


def delete_product(db: Database, product_id: str) -> None:
    result = db["product"].delete_one({"_id": object_id(product_id, "Product")})
    if result.deleted_count == 0:
        raise NotFound("Product not found")
