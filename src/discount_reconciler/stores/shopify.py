"""Shopify Admin GraphQL discount store."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from discount_reconciler.config import ReconcilerSettings
from discount_reconciler.errors import (
    AuthenticationError,
    ConfigurationError,
    OpaqueFailure,
    PermissionDeniedError,
    PrecisionError,
    StoreValidationError,
    TransportError,
)
from discount_reconciler.models import (
    CreateRequest,
    CreateResult,
    DiscountKind,
    DiscountRecord,
    DiscountStatus,
    Representation,
    ShopInfo,
    UserError,
)
from discount_reconciler.stores.base import DiscountStore

logger = logging.getLogger(__name__)

PERMISSION_MARKERS = ("write_discounts", "read_discounts", "access denied", "access_denied")

_VALUE_FIELDS = """
        customerGets {
          value {
            ... on DiscountPercentage { percentage }
            ... on DiscountAmount { amount { amount currencyCode } }
          }
        }
        minimumRequirement {
          ... on DiscountMinimumSubtotal {
            greaterThanOrEqualToSubtotal { amount currencyCode }
          }
        }
"""

AUTOMATIC_FIELDS = f"""
      ... on DiscountAutomaticBasic {{
        title status startsAt endsAt createdAt
        {_VALUE_FIELDS}
      }}
      ... on DiscountAutomaticBxgy {{ title status startsAt endsAt createdAt }}
      ... on DiscountAutomaticFreeShipping {{ title status startsAt endsAt createdAt }}
"""

CODE_FIELDS = f"""
      ... on DiscountCodeBasic {{
        title status startsAt endsAt createdAt
        codes(first: 1) {{ edges {{ node {{ code }} }} }}
        {_VALUE_FIELDS}
      }}
      ... on DiscountCodeBxgy {{
        title status startsAt endsAt createdAt
        codes(first: 1) {{ edges {{ node {{ code }} }} }}
      }}
      ... on DiscountCodeFreeShipping {{
        title status startsAt endsAt createdAt
        codes(first: 1) {{ edges {{ node {{ code }} }} }}
      }}
"""

LIST_AUTOMATIC_QUERY = f"""
query AutomaticDiscounts($first: Int!, $after: String) {{
  automaticDiscountNodes(first: $first, after: $after) {{
    edges {{ node {{ id automaticDiscount {{ {AUTOMATIC_FIELDS} }} }} }}
    pageInfo {{ hasNextPage endCursor }}
  }}
}}
"""

LIST_CODE_QUERY = f"""
query CodeDiscounts($first: Int!, $after: String) {{
  codeDiscountNodes(first: $first, after: $after) {{
    edges {{ node {{ id codeDiscount {{ {CODE_FIELDS} }} }} }}
    pageInfo {{ hasNextPage endCursor }}
  }}
}}
"""

CREATE_AUTOMATIC_MUTATION = f"""
mutation CreateAutomatic($input: DiscountAutomaticBasicInput!) {{
  discountAutomaticBasicCreate(automaticBasicDiscount: $input) {{
    automaticDiscountNode {{ id automaticDiscount {{ {AUTOMATIC_FIELDS} }} }}
    userErrors {{ field message code }}
  }}
}}
"""

CREATE_CODE_MUTATION = f"""
mutation CreateCode($input: DiscountCodeBasicInput!) {{
  discountCodeBasicCreate(basicCodeDiscount: $input) {{
    codeDiscountNode {{ id codeDiscount {{ {CODE_FIELDS} }} }}
    userErrors {{ field message code }}
  }}
}}
"""

DELETE_AUTOMATIC_MUTATION = """
mutation DeleteAutomatic($id: ID!) {
  discountAutomaticDelete(id: $id) {
    deletedAutomaticDiscountId
    userErrors { field message code }
  }
}
"""

DELETE_CODE_MUTATION = """
mutation DeleteCode($id: ID!) {
  discountCodeDelete(id: $id) {
    deletedCodeDiscountId
    userErrors { field message code }
  }
}
"""

SHOP_QUERY = """
query Shop {
  shop { name currencyCode plan { displayName } }
}
"""


class ShopifyDiscountStore(DiscountStore):
    """Discount store backed by the Shopify Admin GraphQL API."""

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str = "2024-10",
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_backoff_seconds: float = 1.0,
        page_size: int = 50,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not shop_domain:
            raise ConfigurationError(
                "Shop domain is required",
                setting="shop_domain",
                remediation="Set DISCOUNT_RECONCILER_SHOP_DOMAIN or pass --shop, e.g. example.myshopify.com.",
            )
        if not access_token:
            raise ConfigurationError(
                "Access token is required",
                setting="access_token",
                remediation="Set DISCOUNT_RECONCILER_ACCESS_TOKEN or pass --token.",
            )

        self.shop_domain = shop_domain
        self.api_version = api_version
        self.max_retries = max(1, max_retries)
        self.retry_backoff_seconds = retry_backoff_seconds
        self.page_size = page_size
        self._path = f"/admin/api/{api_version}/graphql.json"
        self._client = httpx.AsyncClient(
            base_url=f"https://{shop_domain}",
            headers={
                "X-Shopify-Access-Token": access_token,
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: ReconcilerSettings, **kwargs: Any) -> "ShopifyDiscountStore":
        return cls(
            shop_domain=settings.shop_domain,
            access_token=settings.access_token,
            api_version=settings.api_version,
            timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            retry_backoff_seconds=settings.retry_backoff_seconds,
            page_size=settings.page_size,
            **kwargs,
        )

    async def __aenter__(self) -> "ShopifyDiscountStore":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close HTTP client."""
        await self._client.aclose()

    async def execute(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Run a GraphQL operation with retry on transport failures.

        Returns the ``data`` object. Raises AuthenticationError,
        PermissionDeniedError or TransportError for protocol-level failures.
        """
        last_error = TransportError(f"No response from {self.shop_domain}")

        for attempt in range(self.max_retries):
            try:
                response = await self._client.post(
                    self._path,
                    json={"query": query, "variables": variables or {}},
                )
            except httpx.RequestError as e:
                last_error = TransportError(
                    f"Request to {self.shop_domain} failed: {e}",
                    details={"exception": type(e).__name__},
                )
                await self._backoff(attempt, last_error)
                continue

            if response.status_code == 401:
                raise AuthenticationError(details={"body": _safe_text(response)})
            if response.status_code == 403:
                raise PermissionDeniedError(
                    "Access token lacks the required scopes",
                    details={"body": _safe_text(response)},
                )
            if response.status_code == 429 or response.status_code >= 500:
                last_error = TransportError(
                    f"Store responded with HTTP {response.status_code}",
                    status_code=response.status_code,
                )
                await self._backoff(attempt, last_error, _retry_after(response))
                continue
            if response.status_code >= 400:
                raise TransportError(
                    f"Store responded with HTTP {response.status_code}",
                    status_code=response.status_code,
                    details={"body": _safe_text(response)},
                    retryable=False,
                )

            try:
                body = response.json()
            except ValueError:
                raise TransportError(
                    "Store returned a non-JSON response",
                    status_code=response.status_code,
                    details={"body": _safe_text(response)},
                    retryable=False,
                ) from None

            errors = body.get("errors")
            if errors:
                errors = _normalize_errors(errors)
                if any(_error_code(e) == "THROTTLED" for e in errors):
                    last_error = TransportError("Store throttled the request", details={"errors": errors})
                    await self._backoff(attempt, last_error)
                    continue
                if any(_is_permission_error(e) for e in errors):
                    raise PermissionDeniedError(
                        "; ".join(e.get("message", "") for e in errors),
                        details={"errors": errors},
                    )
                raise TransportError(
                    "GraphQL error: " + " | ".join(_describe_error(e) for e in errors),
                    status_code=response.status_code,
                    details={"errors": errors},
                    retryable=False,
                )

            return body.get("data") or {}

        raise last_error

    async def _backoff(self, attempt: int, error: TransportError, delay: Optional[float] = None) -> None:
        if attempt >= self.max_retries - 1:
            raise error
        wait = delay if delay is not None else self.retry_backoff_seconds * (2 ** attempt)
        logger.warning(f"{error.message}; retrying in {wait:.1f}s (attempt {attempt + 1}/{self.max_retries})")
        await asyncio.sleep(wait)

    async def _list(self, query: str, root: str, representation: Representation) -> List[DiscountRecord]:
        records: List[DiscountRecord] = []
        after: Optional[str] = None
        while True:
            data = await self.execute(query, {"first": self.page_size, "after": after})
            connection = data.get(root) or {}
            for edge in connection.get("edges") or []:
                node = edge.get("node") or {}
                records.append(_parse_record(node, representation))
            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage") or not page_info.get("endCursor"):
                break
            after = page_info["endCursor"]
        return records

    async def list_automatic_discounts(self) -> List[DiscountRecord]:
        return await self._list(LIST_AUTOMATIC_QUERY, "automaticDiscountNodes", Representation.AUTOMATIC)

    async def list_code_discounts(self) -> List[DiscountRecord]:
        return await self._list(LIST_CODE_QUERY, "codeDiscountNodes", Representation.CODE)

    async def create_automatic_discount(self, request: CreateRequest) -> CreateResult:
        data = await self.execute(CREATE_AUTOMATIC_MUTATION, {"input": build_discount_input(request)})
        payload = data.get("discountAutomaticBasicCreate") or {}
        return _create_result(payload, "automaticDiscountNode", Representation.AUTOMATIC)

    async def create_code_discount(self, request: CreateRequest) -> CreateResult:
        if not request.code:
            raise ValueError("Code discounts require a code")
        data = await self.execute(CREATE_CODE_MUTATION, {"input": build_discount_input(request)})
        payload = data.get("discountCodeBasicCreate") or {}
        return _create_result(payload, "codeDiscountNode", Representation.CODE)

    async def delete_automatic_discount(self, discount_id: str) -> str:
        data = await self.execute(DELETE_AUTOMATIC_MUTATION, {"id": discount_id})
        return _deleted_id(
            data.get("discountAutomaticDelete") or {},
            "deletedAutomaticDiscountId",
            "Automatic discount deletion",
            discount_id,
        )

    async def delete_code_discount(self, discount_id: str) -> str:
        data = await self.execute(DELETE_CODE_MUTATION, {"id": discount_id})
        return _deleted_id(
            data.get("discountCodeDelete") or {},
            "deletedCodeDiscountId",
            "Code discount deletion",
            discount_id,
        )

    async def read_shop_info(self) -> ShopInfo:
        data = await self.execute(SHOP_QUERY)
        shop = data.get("shop")
        if not shop:
            raise AuthenticationError("Store returned no shop data for this token")
        return ShopInfo(
            name=shop.get("name") or "",
            currency_code=shop.get("currencyCode") or "USD",
            plan_name=(shop.get("plan") or {}).get("displayName"),
        )


def build_discount_input(request: CreateRequest) -> Dict[str, Any]:
    """Build the GraphQL input object for a basic discount."""
    payload: Dict[str, Any] = {
        "title": request.title,
        "startsAt": request.starts_at,
        "endsAt": request.ends_at,
        "customerGets": {
            "value": _customer_gets_value(request),
            "items": {"all": True},
        },
    }
    if request.representation == Representation.CODE:
        payload["code"] = request.code
        payload["customerSelection"] = {"all": True}
    if request.minimum_subtotal is not None and request.minimum_subtotal > 0:
        payload["minimumRequirement"] = {
            "subtotal": {"greaterThanOrEqualToSubtotal": str(request.minimum_subtotal)}
        }
    return payload


def _customer_gets_value(request: CreateRequest) -> Dict[str, Any]:
    if request.kind == DiscountKind.PERCENTAGE:
        # Percentage is a GraphQL Float; it must survive float conversion exactly.
        wire = float(request.encoded_value)
        if Decimal(repr(wire)) != request.encoded_value:
            raise PrecisionError(
                f"Percentage {request.encoded_value} does not survive float encoding",
                details={"encoded_value": str(request.encoded_value), "wire_value": repr(wire)},
            )
        return {"percentage": wire}
    return {
        "discountAmount": {
            "amount": str(request.encoded_value),
            "appliesOnEachItem": False,
        }
    }


def _parse_record(node: Dict[str, Any], representation: Representation) -> DiscountRecord:
    key = "automaticDiscount" if representation == Representation.AUTOMATIC else "codeDiscount"
    discount = node.get(key) or {}

    value_kind = None
    value = None
    currency_code = None
    gets_value = (discount.get("customerGets") or {}).get("value") or {}
    if gets_value.get("percentage") is not None:
        value_kind = DiscountKind.PERCENTAGE
        value = Decimal(str(gets_value["percentage"]))
    elif gets_value.get("amount"):
        value_kind = DiscountKind.FIXED
        value = Decimal(str(gets_value["amount"].get("amount", "0")))
        currency_code = gets_value["amount"].get("currencyCode")

    minimum = ((discount.get("minimumRequirement") or {}).get("greaterThanOrEqualToSubtotal") or {}).get("amount")

    code = None
    if representation == Representation.CODE:
        edges = (discount.get("codes") or {}).get("edges") or []
        if edges:
            code = (edges[0].get("node") or {}).get("code")

    return DiscountRecord(
        id=node.get("id", ""),
        representation=representation,
        title=discount.get("title") or "",
        status=DiscountStatus.from_store(discount.get("status")),
        code=code,
        created_at=_parse_datetime(discount.get("createdAt")),
        value_kind=value_kind,
        value=value,
        currency_code=currency_code,
        starts_at=discount.get("startsAt"),
        ends_at=discount.get("endsAt"),
        minimum_subtotal=Decimal(str(minimum)) if minimum is not None else None,
    )


def _create_result(payload: Dict[str, Any], node_key: str, representation: Representation) -> CreateResult:
    user_errors = [
        UserError(message=e.get("message", ""), field=e.get("field"), code=e.get("code"))
        for e in payload.get("userErrors") or []
    ]
    node = payload.get(node_key)
    record = _parse_record(node, representation) if node else None
    return CreateResult(record=record, user_errors=user_errors, raw=payload)


def _deleted_id(payload: Dict[str, Any], id_key: str, operation: str, discount_id: str) -> str:
    user_errors = payload.get("userErrors") or []
    if user_errors:
        raise StoreValidationError.from_user_errors(operation, user_errors)
    deleted = payload.get(id_key)
    if not deleted:
        raise OpaqueFailure(
            f"{operation} returned no confirmation for {discount_id}",
            details={"discount_id": discount_id},
        )
    return deleted


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _normalize_errors(errors: Any) -> List[Dict[str, Any]]:
    if isinstance(errors, str):
        return [{"message": errors}]
    if isinstance(errors, dict):
        return [{"message": str(errors)}]
    return [e if isinstance(e, dict) else {"message": str(e)} for e in errors]


def _error_code(error: Dict[str, Any]) -> Optional[str]:
    return (error.get("extensions") or {}).get("code")


def _is_permission_error(error: Dict[str, Any]) -> bool:
    if _error_code(error) == "ACCESS_DENIED":
        return True
    message = (error.get("message") or "").lower()
    return any(marker in message for marker in PERMISSION_MARKERS)


def _describe_error(error: Dict[str, Any]) -> str:
    path = ".".join(str(p) for p in error.get("path") or []) or "N/A"
    return f"{error.get('message')} (Path: {path})"


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _safe_text(response: httpx.Response) -> str:
    try:
        return response.text[:500]
    except Exception:
        return ""
