"""Cache key construction.

Keys are deterministic: the same resource and parameters always produce the
same key, and different parameters produce different keys.
"""

from __future__ import annotations

from typing import Any, Mapping
from urllib.parse import quote

__all__ = ["CacheKeys", "build_cache_key"]

# Characters left unescaped in key parts
_SAFE_CHARS = "-_."
# Resource names may carry an endpoint path
_RESOURCE_SAFE_CHARS = _SAFE_CHARS + "/"


def _render_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _quote_value(value: Any) -> str:
    """Percent-encode a value; list items are encoded one by one, then comma-joined."""
    if isinstance(value, (list, tuple)):
        return ",".join(_quote_value(item) for item in value)
    return quote(_render_value(value), safe=_SAFE_CHARS)


def build_cache_key(resource: str, params: Mapping[str, Any] | None = None) -> str:
    """Build a cache key from a resource name and query parameters.

    Parameters are sorted by name. ``None`` and empty-string values are
    dropped. Names and values are percent-encoded so separators inside a
    value cannot collide with the key structure.

    Args:
        resource: Resource name, e.g. ``"orders"``
        params: Optional parameter mapping

    Returns:
        ``resource`` or ``resource:name1=value1&name2=value2``

    Raises:
        ValueError: If ``resource`` is empty

    Example:
        >>> build_cache_key("orders", {"status": "pending", "page": 2})
        'orders:page=2&status=pending'
    """
    if not resource:
        msg = "resource must be non-empty"
        raise ValueError(msg)

    parts = [
        f"{quote(str(name), safe=_SAFE_CHARS)}={_quote_value(value)}"
        for name, value in sorted((params or {}).items())
        if value is not None and value != ""
    ]
    prefix = quote(resource, safe=_RESOURCE_SAFE_CHARS)
    if not parts:
        return prefix
    return f"{prefix}:{'&'.join(parts)}"


class CacheKeys:
    """Key builders for the business-app screens."""

    @staticmethod
    def products() -> str:
        return "products"

    @staticmethod
    def product_by_id(product_id: str | int) -> str:
        return build_cache_key("product", {"id": product_id})

    @staticmethod
    def categories() -> str:
        return "categories"

    @staticmethod
    def items(item_type: str | None = None, category: str | None = None) -> str:
        return build_cache_key("items", {"type": item_type, "category": category})

    @staticmethod
    def item_by_id(item_id: str | int) -> str:
        return build_cache_key("item", {"id": item_id})

    @staticmethod
    def inventory_stock() -> str:
        return "inventory_stock"

    @staticmethod
    def inventory_stats() -> str:
        return "inventory_stats"

    @staticmethod
    def orders(status: str | None = None) -> str:
        return build_cache_key("orders", {"status": status})

    @staticmethod
    def order_by_id(order_id: str | int) -> str:
        return build_cache_key("order", {"id": order_id})

    @staticmethod
    def vendors() -> str:
        return "vendors"

    @staticmethod
    def purchase_orders() -> str:
        return "purchase_orders"

    @staticmethod
    def transfers() -> str:
        return "transfers"

    @staticmethod
    def dashboard(period: str) -> str:
        return build_cache_key("dashboard", {"period": period})

    @staticmethod
    def business(business_id: str | int) -> str:
        return build_cache_key("business", {"id": business_id})

    @staticmethod
    def branches(business_id: str | int) -> str:
        return build_cache_key("branches", {"business_id": business_id})

    @staticmethod
    def production_templates() -> str:
        return "production_templates"

    @staticmethod
    def productions() -> str:
        return "productions"

    @staticmethod
    def production_stats() -> str:
        return "production_stats"

    @staticmethod
    def system_config() -> str:
        return "system_config"

    # Management screens
    @staticmethod
    def delivery_partners() -> str:
        return "management_delivery_partners"

    @staticmethod
    def tables() -> str:
        return "management_tables"

    @staticmethod
    def drivers() -> str:
        return "management_drivers"

    @staticmethod
    def discounts() -> str:
        return "management_discounts"

    @staticmethod
    def staff_users() -> str:
        return "management_staff_users"

    @staticmethod
    def bundles() -> str:
        return "management_bundles"

    @staticmethod
    def store_products() -> str:
        return "management_store_products"

    @staticmethod
    def management_orders(filter_name: str | None = None) -> str:
        return build_cache_key("management_orders", {"filter": filter_name})

    @staticmethod
    def raw_items(filter_name: str | None = None) -> str:
        return build_cache_key("management_items_raw", {"filter": filter_name})

    @staticmethod
    def composite_items() -> str:
        return "management_items_composite"

    @staticmethod
    def production_data() -> str:
        return "management_production_data"

    @staticmethod
    def paginated(
        endpoint: str,
        page: int,
        limit: int,
        params: Mapping[str, Any] | None = None,
    ) -> str:
        """Key for one page of a paginated list endpoint."""
        merged = dict(params or {})
        merged.update(page=page, limit=limit)
        return build_cache_key(f"paginated{endpoint}", merged)
