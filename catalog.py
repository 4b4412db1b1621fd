"""
Product and category reads.

The same routes are served to customers and, under /admin, to admins;
catalog_router builds them behind whichever auth dependency is given.
"""
from typing import Any, Callable, Dict, Iterable, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pymongo.database import Database

from database import envelope, get_db, paginate, parse_pagination, to_object_id
from logger import get_logger

_logger = get_logger(__name__)


def product_count(db: Database, category_id: ObjectId) -> int:
    return db["product"].count_documents({"category_id": category_id})


def get_category_or_404(db: Database, category_id: ObjectId) -> dict:
    category = db["category"].find_one({"_id": category_id})
    if not category:
        _logger.warning(f"Category with ID: {category_id} does not exist in the db")
        raise HTTPException(status_code=404, detail="Category not found")
    return category


def get_product_or_404(db: Database, product_id: ObjectId) -> dict:
    product = db["product"].find_one({"_id": product_id})
    if not product:
        _logger.warning(f"Product with ID: {product_id} does not exist in the db")
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def _category_summaries(db: Database, category_ids: Iterable[ObjectId]) -> Dict[ObjectId, dict]:
    ids = list(set(category_ids))
    if not ids:
        return {}
    cursor = db["category"].find({"_id": {"$in": ids}}, {"name": 1, "description": 1})
    return {c["_id"]: c for c in cursor}


def with_categories(db: Database, products: List[dict]) -> List[dict]:
    """Embed a category summary (id, name, description) on each product."""
    summaries = _category_summaries(db, (p.get("category_id") for p in products if p.get("category_id")))
    out = []
    for p in products:
        p = dict(p)
        p["category"] = summaries.get(p.get("category_id"))
        out.append(p)
    return out


def category_with_count(db: Database, category: dict) -> dict:
    category = dict(category)
    category["product_count"] = product_count(db, category["_id"])
    return category


def catalog_router(auth: Callable[..., Any]) -> APIRouter:
    router = APIRouter(dependencies=[Depends(auth)])

    @router.get("/products")
    def get_products(page: Optional[str] = None, limit: Optional[str] = None, db: Database = Depends(get_db)):
        _logger.debug("Incoming request to get all products...")
        page_number, limit_number = parse_pagination(page, limit)
        products, pagination = paginate(db, "product", {}, page_number, limit_number)
        return envelope(
            "Products fetched successfully" if products else "No products found",
            with_categories(db, products),
            pagination=pagination,
        )

    @router.get("/products/{product_id}")
    def get_product(product_id: str, db: Database = Depends(get_db)):
        _logger.debug(f"Incoming request to get product with ID: {product_id}")
        product = dict(get_product_or_404(db, to_object_id(product_id, "product")))
        category = db["category"].find_one({"_id": product.get("category_id")}, {"name": 1, "description": 1})
        product["category"] = category_with_count(db, category) if category else None
        _logger.info(f"Product with ID: {product_id} fetched")
        return envelope("Product fetched successfully", product)

    @router.get("/categories")
    def get_categories(page: Optional[str] = None, limit: Optional[str] = None, db: Database = Depends(get_db)):
        _logger.debug("Incoming request to get categories...")
        page_number, limit_number = parse_pagination(page, limit)
        categories, pagination = paginate(db, "category", {}, page_number, limit_number)
        return envelope(
            "Categories fetched successfully" if categories else "No categories found",
            [category_with_count(db, c) for c in categories],
            pagination=pagination,
        )

    @router.get("/categories/{category_id}")
    def get_category(category_id: str, db: Database = Depends(get_db)):
        _logger.debug(f"Incoming request to get category with ID: {category_id}")
        category = get_category_or_404(db, to_object_id(category_id, "category"))
        return envelope("Category fetched successfully", category_with_count(db, category))

    @router.get("/categories/{category_id}/products")
    def get_products_in_category(category_id: str, page: Optional[str] = None, limit: Optional[str] = None, db: Database = Depends(get_db)):
        _logger.debug(f"Incoming request to get products of category with ID: {category_id}")
        category = get_category_or_404(db, to_object_id(category_id, "category"))
        page_number, limit_number = parse_pagination(page, limit)
        products, pagination = paginate(db, "product", {"category_id": category["_id"]}, page_number, limit_number)
        return envelope(
            "Products fetched successfully" if products else "No products found",
            with_categories(db, products),
            pagination=pagination,
        )

    @router.get("/categories/{category_id}/products/{product_id}")
    def get_product_in_category(category_id: str, product_id: str, db: Database = Depends(get_db)):
        category_oid = to_object_id(category_id, "category")
        product_oid = to_object_id(product_id, "product")
        get_category_or_404(db, category_oid)
        get_product_or_404(db, product_oid)
        product = db["product"].find_one({"_id": product_oid, "category_id": category_oid})
        if not product:
            _logger.warning(f"Product {product_id} is not in category {category_id}")
            raise HTTPException(status_code=404, detail="Product not found in category")
        return envelope("Product fetched successfully", with_categories(db, [product])[0])

    return router

