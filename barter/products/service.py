from typing import Iterable, Optional


def matches_search(product: dict, query: str) -> bool:
    """Case-insensitive substring match on name or description."""
    needle = query.strip().lower()
    if not needle:
        return True
    name = (product.get("name") or "").lower()
    description = (product.get("description") or "").lower()
    return needle in name or needle in description


def filter_products(
    products: Iterable[dict],
    query: Optional[str] = None,
    category_ids: Iterable[int] = (),
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort: str = "newest",
) -> list[dict]:
    """
    Narrow a product listing the way the browse screen does: text search,
    any-of category selection, an inclusive price range, then ordering.

    `products` is expected newest first, as the listing query returns it;
    price sorts are stable so equal prices keep that order.
    """
    categories = set(category_ids)

    selected = [
        product
        for product in products
        if (not query or matches_search(product, query))
        and (not categories or product.get("category_id") in categories)
        and (min_price is None or float(product["price"]) >= min_price)
        and (max_price is None or float(product["price"]) <= max_price)
    ]

    if sort == "price_asc":
        selected.sort(key=lambda p: float(p["price"]))
    elif sort == "price_desc":
        selected.sort(key=lambda p: float(p["price"]), reverse=True)

    return selected
