"""
Product search.

Pure functions that turn search parameters into MongoDB filter documents and
aggregation pipelines, plus the pagination arithmetic. Nothing here touches the
database, so every piece can be tested on plain data.
"""
import math
import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from errors import ValidationError
from schemas import Category, Condition, ProductStatus

EARTH_RADIUS_METERS = 6378137

DEFAULT_SORT_FIELD = "created_at"
SORT_FIELDS = {
    "created_at": "created_at",
    "createdAt": "created_at",
    "updated_at": "updated_at",
    "updatedAt": "updated_at",
    "name": "name",
    "price": "price",
    "rating": "ratings.average",
    "ratings.average": "ratings.average",
    "quantity": "inventory.quantity",
    "inventory.quantity": "inventory.quantity",
    "discount_percentage": "discount_percentage",
    "relevance": "relevance",
}
MAX_PAGE_SIZE = 100


class SearchFilters(BaseModel):
    text: Optional[str] = None
    category: Optional[Category] = None
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    condition: Optional[Condition] = None
    status: Optional[ProductStatus] = None
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    min_rating: Optional[float] = Field(None, ge=0, le=5)
    in_stock: Optional[bool] = None
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    radius: Optional[float] = Field(None, gt=0, description="Search radius in km")

    @field_validator("text", "subcategory", "brand")
    @classmethod
    def blank_is_absent(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @property
    def has_center(self) -> bool:
        return self.lat is not None and self.lng is not None and self.radius is not None

    def applied(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class SearchOptions(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=MAX_PAGE_SIZE)
    sort_by: str = DEFAULT_SORT_FIELD
    sort_order: Literal["asc", "desc"] = "desc"
    populate: bool = True

    @field_validator("sort_by")
    @classmethod
    def known_sort_field(cls, value: str) -> str:
        if value not in SORT_FIELDS:
            raise ValueError(f"Unsupported sort field: {value}")
        return SORT_FIELDS[value]


def geo_within(lat: float, lng: float, radius_km: float) -> Dict[str, Any]:
    """Point-in-circle on a sphere; the radius is expressed in radians."""
    return {
        "$geoWithin": {
            "$centerSphere": [[lng, lat], radius_km * 1000 / EARTH_RADIUS_METERS]
        }
    }


def build_search_query(filters: SearchFilters) -> Dict[str, Any]:
    query: Dict[str, Any] = {}

    if filters.text:
        query["$text"] = {"$search": filters.text}
    if filters.category:
        query["category"] = filters.category
    if filters.subcategory:
        query["subcategory"] = filters.subcategory
    if filters.brand:
        query["brand"] = {"$regex": re.escape(filters.brand), "$options": "i"}
    if filters.condition:
        query["condition"] = filters.condition
    if filters.status:
        query["status"] = filters.status

    price: Dict[str, float] = {}
    if filters.min_price is not None:
        price["$gte"] = filters.min_price
    if filters.max_price is not None:
        price["$lte"] = filters.max_price
    if price:
        query["price"] = price

    if filters.min_rating is not None:
        query["ratings.average"] = {"$gte": filters.min_rating}
    if filters.in_stock:
        query["inventory.quantity"] = {"$gt": 0}
    if filters.has_center:
        query["location.point"] = geo_within(filters.lat, filters.lng, filters.radius)

    return query


def discount_percentage(price: Optional[float], original_price: Optional[float]) -> int:
    if original_price is None or price is None or price >= original_price:
        return 0
    return int(math.floor(100 * (original_price - price) / original_price + 0.5))


def stock_status(quantity: int, low_stock_threshold: int) -> str:
    if quantity <= 0:
        return "out-of-stock"
    if quantity <= low_stock_threshold:
        return "low-stock"
    return "in-stock"


def derived_fields_stage() -> Dict[str, Any]:
    # Same rules as discount_percentage() and stock_status(), evaluated server side
    return {
        "$addFields": {
            "discount_percentage": {
                "$cond": {
                    "if": {
                        "$and": [
                            {"$ne": [{"$ifNull": ["$original_price", None]}, None]},
                            {"$lt": ["$price", "$original_price"]},
                        ]
                    },
                    "then": {
                        "$floor": {
                            "$add": [
                                {
                                    "$multiply": [
                                        {"$divide": [{"$subtract": ["$original_price", "$price"]}, "$original_price"]},
                                        100,
                                    ]
                                },
                                0.5,
                            ]
                        }
                    },
                    "else": 0,
                }
            },
            "stock_status": {
                "$switch": {
                    "branches": [
                        {"case": {"$lte": [{"$ifNull": ["$inventory.quantity", 0]}, 0]}, "then": "out-of-stock"},
                        {
                            "case": {"$lte": ["$inventory.quantity", {"$ifNull": ["$inventory.low_stock_threshold", 5]}]},
                            "then": "low-stock",
                        },
                    ],
                    "default": "in-stock",
                }
            },
        }
    }


def sort_stage(sort_by: str, sort_order: str, text: Optional[str] = None) -> Dict[str, Any]:
    if sort_by == "relevance":
        if text:
            return {"$sort": {"score": {"$meta": "textScore"}, "_id": 1}}
        sort_by = DEFAULT_SORT_FIELD
    direction = -1 if sort_order == "desc" else 1
    return {"$sort": {sort_by: direction, "_id": direction}}


def seller_lookup_stages(users_collection: str = "user") -> List[Dict[str, Any]]:
    """Join the owner's public fields as a single ``seller`` object."""
    # $map builds a fresh document; a literal sub-document in $addFields would
    # merge into the joined user and keep its private fields
    public = {"_id": "$$user._id", "name": "$$user.name", "email": "$$user.email"}
    return [
        {
            "$lookup": {
                "from": users_collection,
                "localField": "created_by",
                "foreignField": "_id",
                "as": "seller",
            }
        },
        {
            "$addFields": {
                "seller": {
                    "$arrayElemAt": [{"$map": {"input": "$seller", "as": "user", "in": public}}, 0]
                }
            }
        },
    ]


def build_search_pipeline(query: Dict[str, Any], options: SearchOptions, text: Optional[str] = None) -> List[Dict[str, Any]]:
    pipeline: List[Dict[str, Any]] = [
        {"$match": query},
        derived_fields_stage(),
        sort_stage(options.sort_by, options.sort_order, text),
        {"$skip": (options.page - 1) * options.limit},
        {"$limit": options.limit},
    ]
    if options.populate:
        pipeline.extend(seller_lookup_stages())
    return pipeline


def build_count_pipeline(query: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [{"$match": query}, {"$count": "total"}]


def build_listing_pipeline(query: Dict[str, Any], limit: int, populate: bool = False) -> List[Dict[str, Any]]:
    pipeline: List[Dict[str, Any]] = [
        {"$match": query},
        {"$sort": {"created_at": -1, "_id": -1}},
        {"$limit": limit},
        derived_fields_stage(),
    ]
    if populate:
        pipeline.extend(seller_lookup_stages())
    return pipeline


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool


def paginate(page: int, limit: int, total: int) -> Pagination:
    errors = []
    if page < 1:
        errors.append({"field": "page", "message": "must be at least 1"})
    if limit < 1:
        errors.append({"field": "limit", "message": "must be at least 1"})
    if total < 0:
        errors.append({"field": "total", "message": "must not be negative"})
    if errors:
        raise ValidationError("Invalid pagination parameters", errors=errors)

    total_pages = math.ceil(total / limit)
    return Pagination(
        page=page,
        limit=limit,
        total=total,
        total_pages=total_pages,
        has_next_page=page < total_pages,
        has_prev_page=page > 1,
    )
