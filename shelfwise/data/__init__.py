from shelfwise.data.categories import (
    CATEGORIES,
    CategoryConstraints,
    get_category_constraints,
    get_category_metadata,
    get_category_slugs,
)

__all__ = [
    "CATEGORIES",
    "CategoryConstraints",
    "get_category_constraints",
    "get_category_metadata",
    "get_category_slugs",
]
