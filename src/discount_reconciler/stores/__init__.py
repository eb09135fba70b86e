"""Discount store implementations."""
from discount_reconciler.stores.base import DiscountStore
from discount_reconciler.stores.memory import InMemoryDiscountStore
from discount_reconciler.stores.shopify import ShopifyDiscountStore

__all__ = [
    "DiscountStore",
    "InMemoryDiscountStore",
    "ShopifyDiscountStore",
]
