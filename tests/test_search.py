import math

import pydantic
import pytest

from errors import ValidationError
from search import (
    EARTH_RADIUS_METERS,
    SearchFilters,
    SearchOptions,
    build_count_pipeline,
    build_listing_pipeline,
    build_search_pipeline,
    build_search_query,
    discount_percentage,
    paginate,
    sort_stage,
    stock_status,
)


# --------------------- Filter builder ---------------------

def test_no_filters_is_unconstrained():
    assert build_search_query(SearchFilters()) == {}


def test_price_range_is_inclusive():
    query = build_search_query(SearchFilters(min_price=10, max_price=50))
    assert query == {"price": {"$gte": 10, "$lte": 50}}


def test_price_bounds_are_independent():
    assert build_search_query(SearchFilters(min_price=0)) == {"price": {"$gte": 0}}
    assert build_search_query(SearchFilters(max_price=5)) == {"price": {"$lte": 5}}


def test_all_filters_combine_with_and_semantics():
    filters = SearchFilters(
        text="bike", category="sports", subcategory="cycling", brand="Trek",
        condition="good", status="active", min_rating=4, in_stock=True,
    )
    query = build_search_query(filters)
    assert query == {
        "$text": {"$search": "bike"},
        "category": "sports",
        "subcategory": "cycling",
        "brand": {"$regex": "Trek", "$options": "i"},
        "condition": "good",
        "status": "active",
        "ratings.average": {"$gte": 4},
        "inventory.quantity": {"$gt": 0},
    }


def test_brand_is_escaped_for_regex():
    query = build_search_query(SearchFilters(brand="A+B (x)"))
    assert query["brand"]["$regex"] == r"A\+B\ \(x\)"


def test_in_stock_false_imposes_nothing():
    assert build_search_query(SearchFilters(in_stock=False)) == {}


def test_blank_text_is_ignored():
    assert build_search_query(SearchFilters(text="   ")) == {}


def test_geo_radius_uses_center_sphere_in_radians():
    query = build_search_query(SearchFilters(lat=27.95, lng=-82.46, radius=10))
    center, radius = query["location.point"]["$geoWithin"]["$centerSphere"]
    assert center == [-82.46, 27.95]
    assert radius == pytest.approx(10 * 1000 / EARTH_RADIUS_METERS)


def test_geo_needs_all_three_parameters():
    assert build_search_query(SearchFilters(lat=27.95, lng=-82.46)) == {}


def test_unknown_parameters_are_ignored():
    filters = SearchFilters(**{"category": "books", "colour": "red"})
    assert build_search_query(filters) == {"category": "books"}


def test_malformed_numbers_are_rejected():
    with pytest.raises(pydantic.ValidationError):
        SearchFilters(min_price="abc")
    with pytest.raises(pydantic.ValidationError):
        SearchFilters(lat=120, lng=0, radius=5)


# --------------------- Derived fields ---------------------

@pytest.mark.parametrize("price, original, expected", [
    (50, None, 0),
    (50, 50, 0),
    (60, 50, 0),
    (75, 100, 25),
    (2, 3, 33),
    (1, 3, 67),
    (0, 10, 100),
])
def test_discount_percentage(price, original, expected):
    assert discount_percentage(price, original) == expected


def test_stock_status_has_exactly_one_state():
    seen = {}
    for threshold in range(0, 6):
        for quantity in range(0, 10):
            status = stock_status(quantity, threshold)
            if quantity == 0:
                assert status == "out-of-stock"
            elif quantity <= threshold:
                assert status == "low-stock"
            else:
                assert status == "in-stock"
            seen[status] = True
    assert set(seen) == {"out-of-stock", "low-stock", "in-stock"}


# --------------------- Pipeline ---------------------

def test_pipeline_stage_order_and_pagination():
    query = {"category": "books"}
    pipeline = build_search_pipeline(query, SearchOptions(page=3, limit=10, populate=False))
    assert [next(iter(stage)) for stage in pipeline] == ["$match", "$addFields", "$sort", "$skip", "$limit"]
    assert pipeline[0] == {"$match": query}
    assert pipeline[3] == {"$skip": 20}
    assert pipeline[4] == {"$limit": 10}
    assert set(pipeline[1]["$addFields"]) == {"discount_percentage", "stock_status"}


def test_pipeline_populates_single_seller():
    pipeline = build_search_pipeline({}, SearchOptions())
    lookup = pipeline[5]["$lookup"]
    assert lookup["from"] == "user"
    assert lookup["localField"] == "created_by"
    assert len(pipeline) == 7
    mapped = pipeline[6]["$addFields"]["seller"]["$arrayElemAt"][0]["$map"]
    assert mapped["input"] == "$seller"
    assert set(mapped["in"]) == {"_id", "name", "email"}


def test_sort_defaults_to_newest_first():
    assert sort_stage("created_at", "desc") == {"$sort": {"created_at": -1, "_id": -1}}
    assert sort_stage("price", "asc") == {"$sort": {"price": 1, "_id": 1}}


def test_relevance_sort_uses_text_score_only_with_text():
    assert sort_stage("relevance", "desc", "bike")["$sort"]["score"] == {"$meta": "textScore"}
    assert sort_stage("relevance", "desc", None) == {"$sort": {"created_at": -1, "_id": -1}}


def test_sort_aliases_and_unknown_fields():
    assert SearchOptions(sort_by="createdAt").sort_by == "created_at"
    assert SearchOptions(sort_by="rating").sort_by == "ratings.average"
    with pytest.raises(pydantic.ValidationError):
        SearchOptions(sort_by="password_hash")


def test_options_reject_non_positive_page_and_limit():
    with pytest.raises(pydantic.ValidationError):
        SearchOptions(page=0)
    with pytest.raises(pydantic.ValidationError):
        SearchOptions(limit=0)


def test_count_pipeline_reuses_match():
    assert build_count_pipeline({"status": "active"}) == [{"$match": {"status": "active"}}, {"$count": "total"}]


def test_listing_pipeline_populate_is_optional():
    plain = build_listing_pipeline({}, 50)
    assert not any("$lookup" in stage for stage in plain)
    assert {"$limit": 50} in plain
    assert any("$lookup" in stage for stage in build_listing_pipeline({}, 50, populate=True))


# --------------------- Pagination ---------------------

@pytest.mark.parametrize("page, limit, total", [
    (1, 1, 0), (1, 20, 0), (1, 20, 19), (1, 20, 20), (1, 20, 21),
    (2, 20, 21), (3, 20, 21), (5, 7, 100), (15, 7, 100),
])
def test_pagination_properties(page, limit, total):
    info = paginate(page, limit, total)
    assert info.total_pages == math.ceil(total / limit)
    assert info.has_next_page == (page < info.total_pages)
    assert info.has_prev_page == (page > 1)


def test_pagination_of_empty_result():
    info = paginate(1, 20, 0)
    assert info.total_pages == 0
    assert not info.has_next_page
    assert not info.has_prev_page


def test_pagination_rejects_invalid_page():
    with pytest.raises(ValidationError) as excinfo:
        paginate(0, 0, 10)
    fields = {e["field"] for e in excinfo.value.errors}
    assert fields == {"page", "limit"}
