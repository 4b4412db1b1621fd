from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.database import Database

import config
from catalog import catalog_router, get_category_or_404, get_product_or_404
from database import create_document, envelope, get_db, now, paginate, parse_pagination, to_object_id
from logger import get_logger
from orders import populate_order
from schemas import ORDER_STATUSES, Category, OrderStatus, Product
from security import authorization
from storage import CloudStorage, get_storage, upload_images

_logger = get_logger(__name__)

# Fields an update may touch; anything else in a request is ignored.
CATEGORY_FIELDS = ("name", "description", "image")
PRODUCT_FIELDS = ("name", "description", "price", "images", "stock", "category_id")
ORDER_FIELDS = ("reference_number", "status", "shipping_address")

router = APIRouter(prefix="/admin", dependencies=[Depends(authorization)])
router.include_router(catalog_router(authorization))


class OrderStatusUpdate(BaseModel):
    reference_number: Optional[str] = None
    status: Optional[OrderStatus] = None
    shipping_address: Optional[str] = None


def _allowed(data: Dict[str, Any], fields) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k in fields and v is not None}


def _require_text(value: Optional[str], field: str) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{field} must not be empty")
    return value


def _files(files: Optional[List[UploadFile]]) -> List[UploadFile]:
    return [f for f in (files or []) if f is not None and f.filename]


# Categories
@router.post("/categories", status_code=status.HTTP_201_CREATED)
def create_category(
    name: str = Form(...),
    description: str = Form(...),
    image: Optional[UploadFile] = File(None),
    db: Database = Depends(get_db),
    storage: CloudStorage = Depends(get_storage),
):
    _logger.info("Incoming request to create category...")
    category = Category(
        name=_require_text(name, "name"),
        description=_require_text(description, "description"),
    )
    files = _files([image])
    if files:
        category.image = upload_images(storage, files)[0]
    category_id = create_document(db, "category", category)
    _logger.info(f"Category created successfully with ID: {category_id}")
    return envelope("Category created successfully", db["category"].find_one({"_id": ObjectId(category_id)}))


@router.put("/categories/{category_id}")
def update_category(
    category_id: str,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    db: Database = Depends(get_db),
    storage: CloudStorage = Depends(get_storage),
):
    _logger.info(f"Incoming request to update category with ID: {category_id}")
    category_oid = to_object_id(category_id, "category")
    get_category_or_404(db, category_oid)

    update = {
        "name": _require_text(name, "name"),
        "description": _require_text(description, "description"),
    }
    files = _files([image])
    if files:
        update["image"] = upload_images(storage, files)[0]
    update = _allowed(update, CATEGORY_FIELDS)
    update["updated_at"] = now()

    updated = db["category"].find_one_and_update(
        {"_id": category_oid}, {"$set": update}, return_document=ReturnDocument.AFTER
    )
    if not updated:
        raise HTTPException(status_code=404, detail="Category not found")
    _logger.info(f"Category with ID: {category_id} updated")
    return envelope("Category updated successfully", updated)


@router.delete("/categories/{category_id}")
def delete_category(category_id: str, db: Database = Depends(get_db)):
    _logger.debug(f"Incoming request to delete category with ID: {category_id}")
    category_oid = to_object_id(category_id, "category")
    get_category_or_404(db, category_oid)

    remaining = db["product"].count_documents({"category_id": category_oid})
    if remaining:
        _logger.warning(f"Category {category_id} still has {remaining} product(s)")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Category still has {remaining} product(s). Move or delete them first.",
        )
    db["category"].delete_one({"_id": category_oid})
    _logger.info(f"Category with ID: {category_id} deleted")
    return envelope(f"Category with ID: {category_id} deleted successfully")


# Products
@router.post("/products", status_code=status.HTTP_201_CREATED)
def create_product(
    name: str = Form(...),
    description: str = Form(...),
    price: float = Form(..., ge=0),
    stock: int = Form(0, ge=0),
    category_id: str = Form(...),
    images: Optional[List[UploadFile]] = File(None, alias="image"),
    db: Database = Depends(get_db),
    storage: CloudStorage = Depends(get_storage),
):
    _logger.debug("Incoming request to create a product...")
    category_oid = to_object_id(category_id, "category")
    get_category_or_404(db, category_oid)

    files = _files(images)
    if len(files) > config.MAX_PRODUCT_IMAGES:
        raise HTTPException(status_code=400, detail=f"At most {config.MAX_PRODUCT_IMAGES} images per product")

    product = Product(
        name=_require_text(name, "name"),
        description=_require_text(description, "description"),
        price=price,
        stock=stock,
        category_id=category_oid,
        images=upload_images(storage, files) if files else [],
    )
    product_id = ObjectId(create_document(db, "product", product))
    db["category"].update_one({"_id": category_oid}, {"$addToSet": {"products": product_id}})
    _logger.info(f"Product created successfully with ID: {product_id} in category {category_id}")
    return envelope("Product created successfully", db["product"].find_one({"_id": product_id}))


@router.put("/products/{product_id}")
def update_product(
    product_id: str,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[float] = Form(None, ge=0),
    stock: Optional[int] = Form(None, ge=0),
    category_id: Optional[str] = Form(None),
    images: Optional[List[UploadFile]] = File(None, alias="image"),
    db: Database = Depends(get_db),
    storage: CloudStorage = Depends(get_storage),
):
    _logger.debug(f"Updating product ID: {product_id}")
    product_oid = to_object_id(product_id, "product")
    new_category = None
    if category_id:
        new_category = to_object_id(category_id, "category")
        get_category_or_404(db, new_category)
    product = get_product_or_404(db, product_oid)

    files = _files(images)
    if len(files) > config.MAX_PRODUCT_IMAGES:
        raise HTTPException(status_code=400, detail=f"At most {config.MAX_PRODUCT_IMAGES} images per product")

    update = {
        "name": _require_text(name, "name"),
        "description": _require_text(description, "description"),
        "price": price,
        "stock": stock,
        "category_id": new_category,
        "images": upload_images(storage, files) if files else None,
    }
    update = _allowed(update, PRODUCT_FIELDS)
    update["updated_at"] = now()

    updated = db["product"].find_one_and_update(
        {"_id": product_oid}, {"$set": update}, return_document=ReturnDocument.AFTER
    )
    if not updated:
        raise HTTPException(status_code=404, detail="Product not found")

    old_category = product.get("category_id")
    if new_category is not None and new_category != old_category:
        db["category"].update_one({"_id": old_category}, {"$pull": {"products": product_oid}})
        db["category"].update_one({"_id": new_category}, {"$addToSet": {"products": product_oid}})
        _logger.info(f"Product {product_id} moved from category {old_category} to {new_category}")

    _logger.info(f"Product updated successfully with ID: {product_id}")
    return envelope("Product updated successfully", updated)


@router.delete("/products/{product_id}")
def delete_product(product_id: str, db: Database = Depends(get_db)):
    _logger.debug(f"Incoming request to delete product with ID: {product_id}")
    product_oid = to_object_id(product_id, "product")
    product = get_product_or_404(db, product_oid)

    db["product"].delete_one({"_id": product_oid})
    db["category"].update_one({"_id": product.get("category_id")}, {"$pull": {"products": product_oid}})
    _logger.info(f"Product ID: {product_id} deleted and removed from category {product.get('category_id')}")
    return envelope(f"Product with ID: {product_id} deleted successfully")


# Orders
@router.get("/orders")
def get_all_orders(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Database = Depends(get_db),
):
    query: Dict[str, Any] = {}
    if status_filter and status_filter.strip():
        statuses = {s.lower(): s for s in ORDER_STATUSES}
        wanted = statuses.get(status_filter.strip().lower())
        if wanted is None:
            raise HTTPException(
                status_code=400,
                detail=f"Unknown status '{status_filter}'. Expected one of: {', '.join(ORDER_STATUSES)}",
            )
        query["status"] = wanted
    _logger.debug(f"Fetching orders with filter {query}")

    page_number, limit_number = parse_pagination(page, limit)
    orders, pagination = paginate(db, "order", query, page_number, limit_number)
    if not orders:
        message = "No orders found"
    elif query:
        message = f"Orders filtered by status: {query['status']}"
    else:
        message = "All orders fetched successfully"
    return envelope(
        message,
        [populate_order(db, o) for o in orders],
        count=len(orders),
        pagination=pagination,
    )


@router.get("/orders/{order_id}")
def get_order(order_id: str, db: Database = Depends(get_db)):
    order = db["order"].find_one({"_id": to_object_id(order_id, "order")})
    if not order:
        _logger.warning(f"Order with ID: {order_id} does not exist")
        raise HTTPException(status_code=404, detail="Order not found")
    return envelope("Order fetched successfully", populate_order(db, order))


@router.put("/orders/{order_id}/status")
def update_order_status(order_id: str, body: OrderStatusUpdate, db: Database = Depends(get_db)):
    _logger.debug(f"Incoming request to update order {order_id}")
    order_oid = to_object_id(order_id, "order")
    update = _allowed(body.model_dump(), ORDER_FIELDS)
    update["updated_at"] = now()

    updated = db["order"].find_one_and_update(
        {"_id": order_oid}, {"$set": update}, return_document=ReturnDocument.AFTER
    )
    if not updated:
        _logger.warning(f"Order with ID: {order_id} cannot be found")
        raise HTTPException(status_code=404, detail="Order not found")
    _logger.info(f"Order with ID: {order_id} updated: {update}")
    return envelope("Order updated successfully", updated)
