"""Route group exports."""

from . import health, orders, packing, routes, stock

__all__ = ["health", "orders", "packing", "routes", "stock"]
