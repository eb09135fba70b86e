"""Base discount store interface."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from discount_reconciler.models import (
    CreateRequest,
    CreateResult,
    DiscountRecord,
    Representation,
    ShopInfo,
)


class DiscountStore(ABC):
    """
    Abstract interface for the external discount store.

    Writes are eventually consistent: a create or delete may not be visible
    to the list operations immediately afterwards.
    """

    @abstractmethod
    async def list_automatic_discounts(self) -> List[DiscountRecord]:
        """List every automatic discount."""
        pass

    @abstractmethod
    async def list_code_discounts(self) -> List[DiscountRecord]:
        """List every code discount."""
        pass

    @abstractmethod
    async def create_automatic_discount(self, request: CreateRequest) -> CreateResult:
        """
        Create an automatic discount.

        Transport, authentication and permission failures are raised.
        Field rejections come back in ``CreateResult.user_errors``.
        """
        pass

    @abstractmethod
    async def create_code_discount(self, request: CreateRequest) -> CreateResult:
        """Create a code discount. Same failure contract as automatic."""
        pass

    @abstractmethod
    async def delete_automatic_discount(self, discount_id: str) -> str:
        """Delete an automatic discount, returning the deleted id."""
        pass

    @abstractmethod
    async def delete_code_discount(self, discount_id: str) -> str:
        """Delete a code discount, returning the deleted id."""
        pass

    @abstractmethod
    async def read_shop_info(self) -> ShopInfo:
        """Read shop details. Used as a connectivity probe."""
        pass

    async def list_discounts(self, representation: Representation) -> List[DiscountRecord]:
        if representation == Representation.AUTOMATIC:
            return await self.list_automatic_discounts()
        return await self.list_code_discounts()

    async def delete_discount(self, discount_id: str, representation: Representation) -> str:
        if representation == Representation.AUTOMATIC:
            return await self.delete_automatic_discount(discount_id)
        return await self.delete_code_discount(discount_id)

    async def close(self) -> None:
        """Release any held resources."""
        return None
