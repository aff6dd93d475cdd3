from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Query

from dependencies import get_current_user, get_product_service, get_verified_user, require_roles
from product_service import ProductService
from schemas import ProductCreate, ProductStatus, ProductUpdate, InventoryUpdate
from search import MAX_PAGE_SIZE, SearchFilters, SearchOptions

router = APIRouter(prefix="/api/products", tags=["products"])


@router.get("")
def list_products(
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    radius: Optional[float] = Query(None, gt=0, description="Radius in km"),
    populate: bool = False,
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    products: ProductService = Depends(get_product_service),
):
    filters = SearchFilters(lat=lat, lng=lng, radius=radius)
    return products.list_products(filters, limit=limit, populate=populate)


@router.get("/search")
def search_products(
    text: Optional[str] = None,
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    brand: Optional[str] = None,
    condition: Optional[str] = None,
    status: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice"),
    max_price: Optional[float] = Query(None, alias="maxPrice"),
    min_rating: Optional[float] = Query(None, alias="minRating"),
    in_stock: Optional[bool] = Query(None, alias="inStock"),
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    radius: Optional[float] = None,
    sort_by: str = Query("created_at", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    populate: bool = True,
    products: ProductService = Depends(get_product_service),
):
    # Constraints on the filter values themselves are enforced by the models
    filters = SearchFilters(
        text=text, category=category, subcategory=subcategory, brand=brand,
        condition=condition, status=status, min_price=min_price, max_price=max_price,
        min_rating=min_rating, in_stock=in_stock, lat=lat, lng=lng, radius=radius,
    )
    options = SearchOptions(page=page, limit=limit, sort_by=sort_by, sort_order=sort_order, populate=populate)
    return products.search_products(filters, options)


@router.get("/categories")
def categories(products: ProductService = Depends(get_product_service)):
    return products.categories()


@router.get("/analytics")
def analytics(user=Depends(require_roles("admin")), products: ProductService = Depends(get_product_service)):
    return products.analytics()


@router.get("/trending")
def trending(limit: int = Query(10, ge=1, le=MAX_PAGE_SIZE), products: ProductService = Depends(get_product_service)):
    return products.trending_products(limit)


@router.get("/user/{user_id}")
def products_by_user(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    status: Optional[ProductStatus] = None,
    products: ProductService = Depends(get_product_service),
):
    return products.products_by_user(user_id, page=page, limit=limit, status=status)


@router.get("/{product_id}")
def get_product(product_id: str, populate: bool = False, products: ProductService = Depends(get_product_service)):
    return products.get_product(product_id, populate=populate)


@router.get("/{product_id}/similar")
def similar(product_id: str, limit: int = Query(6, ge=1, le=MAX_PAGE_SIZE),
            products: ProductService = Depends(get_product_service)):
    return products.similar_products(product_id, limit)


@router.post("", status_code=201)
def create_product(body: ProductCreate, current: Dict[str, Any] = Depends(get_verified_user),
                   products: ProductService = Depends(get_product_service)):
    return products.create_product(body, current["_id"])


@router.put("/{product_id}")
def update_product(product_id: str, body: ProductUpdate, current: Dict[str, Any] = Depends(get_current_user),
                   products: ProductService = Depends(get_product_service)):
    return products.update_product(product_id, body.model_dump(exclude_unset=True), current)


@router.patch("/{product_id}/inventory")
def update_inventory(product_id: str, body: InventoryUpdate, current: Dict[str, Any] = Depends(get_current_user),
                     products: ProductService = Depends(get_product_service)):
    return products.update_inventory(product_id, body.quantity, current)


@router.delete("/{product_id}")
def delete_product(product_id: str, current: Dict[str, Any] = Depends(get_current_user),
                   products: ProductService = Depends(get_product_service)):
    return products.delete_product(product_id, current)
