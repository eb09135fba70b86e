"""
Pytest configuration and fixtures for discount reconciler tests.
"""
from __future__ import annotations

import json
from datetime import date
from typing import Any, Callable, Dict, List

import httpx
import pytest

from discount_reconciler.config import ReconcilerSettings
from discount_reconciler.models import DiscountKind, DiscountSpec
from discount_reconciler.stores.memory import InMemoryDiscountStore
from discount_reconciler.stores.shopify import ShopifyDiscountStore

TODAY = date(2026, 10, 17)


@pytest.fixture
def settings():
    """Settings with no settle delay so tests run instantly."""
    return ReconcilerSettings(
        shop_domain="test-store.myshopify.com",
        access_token="shpat_test",
        settle_interval_seconds=0,
        settle_max_attempts=3,
        retry_backoff_seconds=0,
        monitor_auto_wait_seconds=0.01,
        pipeline_deadline_seconds=5,
    )


@pytest.fixture
def store():
    """Empty in-memory store."""
    return InMemoryDiscountStore(today=TODAY)


@pytest.fixture
def percentage_spec():
    return DiscountSpec(
        name="Spring Sale",
        kind=DiscountKind.PERCENTAGE,
        raw_value=10,
        start_date=TODAY,
        end_date=date(2027, 10, 17),
        auto_apply=True,
    )


class GraphQLMock:
    """Scripted GraphQL responses for ShopifyDiscountStore tests."""

    def __init__(self) -> None:
        self.responses: List[Callable[[Dict[str, Any]], httpx.Response]] = []
        self.requests: List[Dict[str, Any]] = []

    def add(self, status_code: int = 200, json_body: Any = None, headers: Dict[str, str] | None = None) -> None:
        def respond(_: Dict[str, Any]) -> httpx.Response:
            return httpx.Response(status_code, json=json_body, headers=headers)
        self.responses.append(respond)

    def add_data(self, data: Dict[str, Any]) -> None:
        self.add(json_body={"data": data})

    def add_exception(self, exc: Exception) -> None:
        def respond(_: Dict[str, Any]) -> httpx.Response:
            raise exc
        self.responses.append(respond)

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        body["_headers"] = dict(request.headers)
        body["_path"] = request.url.path
        self.requests.append(body)
        if not self.responses:
            raise AssertionError(f"No mocked response for query: {body['query'][:80]}")
        return self.responses.pop(0)(body)


@pytest.fixture
def graphql():
    return GraphQLMock()


@pytest.fixture
def shopify_store(graphql):
    return ShopifyDiscountStore(
        shop_domain="test-store.myshopify.com",
        access_token="shpat_test",
        max_retries=3,
        retry_backoff_seconds=0,
        page_size=2,
        transport=httpx.MockTransport(graphql.handler),
    )

