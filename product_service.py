import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import pydantic
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import PRODUCTS, USERS, serialize_doc, to_object_id
from errors import NotFoundError, PermissionDeniedError, ValidationError
from helpers import calculate_distance, flatten_update, generate_sku, sanitize_input
from schemas import Product, ProductCreate
from search import (
    SearchFilters,
    SearchOptions,
    build_count_pipeline,
    build_listing_pipeline,
    build_search_pipeline,
    build_search_query,
    derived_fields_stage,
    discount_percentage,
    geo_within,
    paginate,
    stock_status,
)

logger = logging.getLogger(__name__)

PROTECTED_FIELDS = ("_id", "id", "created_by", "created_at", "updated_at", "ratings")
REQUIRED_FIELDS = ("name", "price", "category", "location", "condition", "status")
NON_NULLABLE_FIELDS = REQUIRED_FIELDS + ("inventory", "shipping", "images", "tags", "specifications")
SKU_ATTEMPTS = 3


def validation_error_from(exc: pydantic.ValidationError) -> ValidationError:
    errors = [
        {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return ValidationError("Validation failed", errors=errors)


def geo_point(location: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "Point", "coordinates": [location["lng"], location["lat"]]}


def mark_primary_image(images: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [{**image, "is_primary": index == 0} for index, image in enumerate(images)]


def with_derived_fields(doc: Dict[str, Any]) -> Dict[str, Any]:
    inventory = doc.get("inventory") or {}
    doc["discount_percentage"] = discount_percentage(doc.get("price"), doc.get("original_price"))
    doc["stock_status"] = stock_status(inventory.get("quantity", 0), inventory.get("low_stock_threshold", 5))
    return doc


def seller_fields(user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not user:
        return None
    return {"_id": user["_id"], "name": user.get("name"), "email": user.get("email")}


def is_owner_or_admin(product: Dict[str, Any], actor: Dict[str, Any]) -> bool:
    return str(product.get("created_by")) == str(actor.get("_id")) or actor.get("role") == "admin"


class ProductService:
    def __init__(self, db: Database):
        self.db = db
        self.products = db[PRODUCTS]
        self.users = db[USERS]

    # --------------------- Queries ---------------------

    def search_products(self, filters: SearchFilters, options: SearchOptions) -> Dict[str, Any]:
        query = build_search_query(filters)
        products = list(self.products.aggregate(build_search_pipeline(query, options, filters.text)))

        count = list(self.products.aggregate(build_count_pipeline(query)))
        total = count[0]["total"] if count else 0

        return {
            "products": serialize_doc(products),
            "pagination": paginate(options.page, options.limit, total).model_dump(),
            "filters": filters.applied(),
        }

    def list_products(self, filters: SearchFilters, limit: int = 50, populate: bool = False) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if filters.has_center:
            query["location.point"] = geo_within(filters.lat, filters.lng, filters.radius)

        products = list(self.products.aggregate(build_listing_pipeline(query, limit, populate)))
        if filters.has_center:
            for product in products:
                location = product.get("location") or {}
                if "lat" in location and "lng" in location:
                    distance = calculate_distance(filters.lat, filters.lng, location["lat"], location["lng"])
                    product["distance_km"] = round(distance, 2)
        return serialize_doc(products)

    def find_product(self, product_id: Any) -> Dict[str, Any]:
        product = self.products.find_one({"_id": to_object_id(product_id, "product id")})
        if not product:
            raise NotFoundError("Product not found")
        return product

    def get_product(self, product_id: Any, populate: bool = False) -> Dict[str, Any]:
        product = with_derived_fields(self.find_product(product_id))
        if populate:
            seller = self.users.find_one({"_id": product.get("created_by")})
            product["seller"] = seller_fields(seller)
        return serialize_doc(product)

    def products_by_user(self, user_id: Any, page: int = 1, limit: int = 20,
                         status: Optional[str] = None) -> Dict[str, Any]:
        query: Dict[str, Any] = {"created_by": to_object_id(user_id, "user id")}
        if status:
            query["status"] = status

        total = self.products.count_documents(query)
        pagination = paginate(page, limit, total)
        cursor = (
            self.products.find(query)
            .sort([("created_at", -1), ("_id", -1)])
            .skip((page - 1) * limit)
            .limit(limit)
        )
        products = [with_derived_fields(p) for p in cursor]
        return {"products": serialize_doc(products), "pagination": pagination.model_dump()}

    def trending_products(self, limit: int = 10) -> List[Dict[str, Any]]:
        # Naive UTC, as BSON dates are compared without a zone
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        pipeline = [
            {"$match": {"status": "active"}},
            {
                "$addFields": {
                    "trending_score": {
                        "$subtract": [
                            {
                                "$add": [
                                    {"$multiply": [{"$ifNull": ["$ratings.average", 0]}, 10]},
                                    {"$multiply": [{"$ifNull": ["$ratings.count", 0]}, 2]},
                                ]
                            },
                            {"$divide": [{"$subtract": [now, "$created_at"]}, 86400000]},
                        ]
                    }
                }
            },
            {"$sort": {"trending_score": -1, "_id": 1}},
            {"$limit": limit},
            derived_fields_stage(),
        ]
        return serialize_doc(list(self.products.aggregate(pipeline)))

    def similar_products(self, product_id: Any, limit: int = 6) -> List[Dict[str, Any]]:
        product = self.find_product(product_id)
        pipeline = [
            {
                "$match": {
                    "_id": {"$ne": product["_id"]},
                    "status": "active",
                    "category": product.get("category"),
                    "inventory.quantity": {"$gt": 0},
                }
            },
            {"$sort": {"ratings.average": -1, "_id": 1}},
            {"$limit": limit},
            derived_fields_stage(),
        ]
        return serialize_doc(list(self.products.aggregate(pipeline)))

    def categories(self) -> Dict[str, Any]:
        def grouped(field: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
            pipeline: List[Dict[str, Any]] = [
                {"$match": {field: {"$exists": True, "$ne": None}}},
                {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
                {"$sort": {"count": -1, "_id": 1}},
            ]
            if limit:
                pipeline.append({"$limit": limit})
            return [{"name": row["_id"], "count": row["count"]} for row in self.products.aggregate(pipeline)]

        return {
            "categories": grouped("category"),
            "subcategories": grouped("subcategory"),
            "brands": grouped("brand", limit=50),
        }

    def analytics(self) -> Dict[str, Any]:
        facets = {
            "total_products": [{"$count": "count"}],
            "active_products": [{"$match": {"status": "active"}}, {"$count": "count"}],
            "low_stock_products": [
                {
                    "$match": {
                        "$expr": {
                            "$and": [
                                {"$gt": ["$inventory.quantity", 0]},
                                {"$lte": ["$inventory.quantity", "$inventory.low_stock_threshold"]},
                            ]
                        }
                    }
                },
                {"$count": "count"},
            ],
            "out_of_stock_products": [{"$match": {"inventory.quantity": 0}}, {"$count": "count"}],
            "price": [
                {"$group": {"_id": None, "avg": {"$avg": "$price"}, "min": {"$min": "$price"}, "max": {"$max": "$price"}}}
            ],
            "category_distribution": [
                {"$group": {"_id": "$category", "count": {"$sum": 1}}},
                {"$sort": {"count": -1, "_id": 1}},
            ],
            "top_rated_products": [
                {"$match": {"ratings.average": {"$gte": 4}}},
                {"$sort": {"ratings.average": -1, "_id": 1}},
                {"$limit": 10},
            ],
            "recent_products": [{"$sort": {"created_at": -1, "_id": -1}}, {"$limit": 10}],
        }
        result = list(self.products.aggregate([{"$facet": facets}]))
        raw = result[0] if result else {}

        def count_of(name: str) -> int:
            rows = raw.get(name) or []
            return rows[0]["count"] if rows else 0

        price = (raw.get("price") or [{}])[0]
        return {
            "total_products": count_of("total_products"),
            "active_products": count_of("active_products"),
            "low_stock_products": count_of("low_stock_products"),
            "out_of_stock_products": count_of("out_of_stock_products"),
            "average_price": price.get("avg"),
            "price_range": {"min": price.get("min"), "max": price.get("max")},
            "category_distribution": [
                {"category": row["_id"], "count": row["count"]} for row in raw.get("category_distribution", [])
            ],
            "top_rated_products": serialize_doc(raw.get("top_rated_products", [])),
            "recent_products": serialize_doc(raw.get("recent_products", [])),
        }

    # --------------------- Mutations ---------------------

    def create_product(self, data: Union[ProductCreate, Dict[str, Any]], user_id: Any) -> Dict[str, Any]:
        if not isinstance(data, ProductCreate):
            try:
                data = ProductCreate.model_validate(data)
            except pydantic.ValidationError as exc:
                raise validation_error_from(exc)

        owner_id = to_object_id(user_id, "user id")
        product = Product(**data.model_dump()).model_dump()
        product["name"] = sanitize_input(product["name"])
        product["description"] = sanitize_input(product.get("description"))
        product["images"] = mark_primary_image(product["images"])
        product["location"]["point"] = geo_point(product["location"])

        now = datetime.now(timezone.utc)
        product.update({"created_by": owner_id, "created_at": now, "updated_at": now})

        generated_sku = not product["inventory"].get("sku")
        for attempt in range(SKU_ATTEMPTS):
            if generated_sku:
                product["inventory"]["sku"] = generate_sku()
            try:
                result = self.products.insert_one(product)
                break
            except DuplicateKeyError:
                product.pop("_id", None)
                if not generated_sku or attempt == SKU_ATTEMPTS - 1:
                    raise
                logger.warning("Generated SKU %s collided, retrying", product["inventory"]["sku"])

        self.users.update_one({"_id": owner_id}, {"$inc": {"stats.products_listed": 1}})
        logger.info("Product %s created by user %s", result.inserted_id, owner_id)

        product["_id"] = result.inserted_id
        return serialize_doc(with_derived_fields(product))

    def update_product(self, product_id: Any, changes: Dict[str, Any], actor: Dict[str, Any]) -> Dict[str, Any]:
        product = self.find_product(product_id)
        if not is_owner_or_admin(product, actor):
            raise PermissionDeniedError("You can only update your own products")

        update: Dict[str, Any] = {}
        for field, value in changes.items():
            if field in PROTECTED_FIELDS:
                continue
            if value is None and field in NON_NULLABLE_FIELDS:
                message = "required" if field in REQUIRED_FIELDS else "must not be null"
                raise ValidationError(f"{field} cannot be empty", errors=[{"field": field, "message": message}])
            if field in ("inventory", "shipping") and isinstance(value, dict):
                update.update(flatten_update(value, field))
            elif field == "location":
                update["location"] = {**value, "point": geo_point(value)}
            elif field == "images":
                update["images"] = mark_primary_image(value)
            elif field in ("name", "description"):
                update[field] = sanitize_input(value)
            else:
                update[field] = value

        if "price" in update and update["price"] < 0:
            raise ValidationError("Price must be non-negative", errors=[{"field": "price", "message": "must be >= 0"}])

        update["updated_at"] = datetime.now(timezone.utc)
        updated = self.products.find_one_and_update(
            {"_id": product["_id"]},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFoundError("Product not found")
        logger.info("Product %s updated by user %s", product["_id"], actor.get("_id"))
        return serialize_doc(with_derived_fields(updated))

    def delete_product(self, product_id: Any, actor: Dict[str, Any]) -> Dict[str, Any]:
        product = self.find_product(product_id)
        if not is_owner_or_admin(product, actor):
            raise PermissionDeniedError("You can only delete your own products")

        result = self.products.delete_one({"_id": product["_id"]})
        if result.deleted_count == 0:
            raise NotFoundError("Product not found")
        self.users.update_one({"_id": product.get("created_by")}, {"$inc": {"stats.products_listed": -1}})
        logger.info("Product %s deleted by user %s", product["_id"], actor.get("_id"))
        return {"message": "Product deleted successfully"}

    def update_inventory(self, product_id: Any, quantity: int, actor: Dict[str, Any]) -> Dict[str, Any]:
        if quantity < 0:
            raise ValidationError("Quantity must be non-negative", errors=[{"field": "quantity", "message": "must be >= 0"}])
        product = self.find_product(product_id)
        if not is_owner_or_admin(product, actor):
            raise PermissionDeniedError("You can only update your own products")

        updated = self.products.find_one_and_update(
            {"_id": product["_id"]},
            {"$set": {"inventory.quantity": quantity, "updated_at": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFoundError("Product not found")
        return serialize_doc(with_derived_fields(updated))
