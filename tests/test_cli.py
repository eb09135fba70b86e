"""Tests for the command line interface."""
from __future__ import annotations

import pytest
from click.testing import CliRunner

from discount_reconciler.cli import cli
from discount_reconciler.models import Representation


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def invoke(runner, settings, store):
    def _invoke(*args):
        return runner.invoke(
            cli,
            list(args),
            obj={"settings": settings, "store_factory": lambda s: store},
        )
    return _invoke


class TestStoreCommands:
    def test_probe(self, invoke):
        result = invoke("probe")
        assert result.exit_code == 0
        assert "Connected" in result.output
        assert "Development Store" in result.output

    def test_create_automatic(self, invoke, store):
        result = invoke(
            "create", "--name", "Spring Sale", "--value", "10",
            "--start", "2026-10-17", "--end", "2027-10-17", "--auto-apply",
        )
        assert result.exit_code == 0, result.output
        assert "10% discount created successfully! Auto-applies at checkout" in result.output
        assert "0.1000" in result.output
        assert store.records[0].title == "Spring Sale"

    def test_create_validation_error(self, invoke, store):
        result = invoke("create", "--name", "Too much", "--value", "150")
        assert result.exit_code == 1
        assert "Error (validation)" in result.output
        assert store.calls == []

    def test_cleanup(self, invoke, store):
        store.add(Representation.AUTOMATIC, "Test 100", percentage=100)
        store.add(Representation.CODE, "Loyalty Reward 5", percentage=5, code="LOYAL5")

        result = invoke("cleanup")
        assert result.exit_code == 0
        assert "Deleted 1 automatic discounts and 0 code discounts." in result.output
        assert "Remaining: 0 automatic, 1 code" in result.output

    def test_analyze_reports_issues(self, invoke, store):
        store.add(Representation.AUTOMATIC, "Spring 10", percentage=10)
        store.add(Representation.AUTOMATIC, "Members 5", percentage=5)

        result = invoke("analyze")
        assert result.exit_code == 0
        assert "stacking_risk" in result.output
        assert "Issues detected. Clean up conflicting discounts." in result.output

    def test_inventory_clean(self, invoke):
        result = invoke("inventory")
        assert result.exit_code == 0
        assert "CLEAN!" in result.output

    def test_delete_missing_discount(self, invoke):
        result = invoke("delete", "gid://shopify/DiscountCodeNode/404", "--type", "code")
        assert result.exit_code == 1
        assert "Error (store_validation)" in result.output

    def test_fix_checkout(self, invoke, store):
        store.add(Representation.AUTOMATIC, "Test 100", percentage=100)
        result = invoke("fix-checkout")
        assert result.exit_code == 0, result.output
        assert [r.title for r in store.records] == ["Working 10% Off - Auto Apply"]


class TestSettingsOverrides:
    """Global options and missing credentials."""

    def test_missing_shop_domain_is_configuration_error(self, runner, settings):
        unset = settings.model_copy(update={"shop_domain": ""})
        result = runner.invoke(
            cli,
            ["probe"],
            obj={"settings": unset},
            env={"DISCOUNT_RECONCILER_SHOP_DOMAIN": None},
        )
        assert result.exit_code == 1
        assert not isinstance(result.exception, ValueError)
        assert "Error (configuration)" in result.output
        assert "DISCOUNT_RECONCILER_SHOP_DOMAIN" in result.output

    def test_shop_option_strips_scheme(self, runner, settings, store):
        seen = []

        def factory(s):
            seen.append(s)
            return store

        result = runner.invoke(
            cli,
            ["--shop", "https://b.myshopify.com/", "probe"],
            obj={"settings": settings, "store_factory": factory},
        )
        assert result.exit_code == 0, result.output
        assert seen[0].shop_domain == "b.myshopify.com"
        assert seen[0].access_token == settings.access_token


class TestCheckTotals:
    def test_match(self, runner):
        result = runner.invoke(cli, ["check-totals", "--subtotal", "100", "--discount", "10", "--total", "90"], obj={})
        assert result.exit_code == 0
        assert "match" in result.output

    def test_mismatch_exits_nonzero(self, runner):
        result = runner.invoke(cli, ["check-totals", "--subtotal", "100", "--discount", "10", "--total", "85"], obj={})
        assert result.exit_code == 1
        assert "mismatch" in result.output

    def test_bad_amount(self, runner):
        result = runner.invoke(cli, ["check-totals", "--subtotal", "abc", "--total", "85"], obj={})
        assert result.exit_code == 2
