"""
Routing Table Tests
"""

import pytest

from exchange_core.exchanges.routing import (
    Route,
    build_routing_table,
    extract_params,
    implode_params,
    operation_name,
    url_with_query,
)


class TestOperationName:
    """operation_name()"""

    def test_simple_path(self):
        assert operation_name("public", "get", "getorderbook") == "public_get_getorderbook"

    def test_placeholders_and_separators(self):
        assert operation_name("private", "GET", "order/{id}") == "private_get_order_id"
        assert operation_name("public", "get", "get_tradingview_chart_data") == (
            "public_get_get_tradingview_chart_data"
        )


class TestBuildRoutingTable:
    """build_routing_table()"""

    def test_table_contents(self):
        table = build_routing_table({
            "public": {"get": ["getorderbook", " ping "]},
            "private": {"post": ["buy"]},
        })

        assert table["public_get_getorderbook"] == Route("getorderbook", "public", "GET")
        assert table["public_get_ping"] == Route("ping", "public", "GET")
        assert table["private_post_buy"] == Route("buy", "private", "POST")
        assert len(table) == 3

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError, match="Duplicate operation name"):
            build_routing_table({"public": {"get": ["order/id", "order/{id}"]}})

    def test_empty_api(self):
        assert build_routing_table({}) == {}


class TestPathParams:
    """Placeholder helpers"""

    def test_extract_params(self):
        assert extract_params("orders/{symbol}/{id}") == ["symbol", "id"]

    def test_implode_keeps_unknown(self):
        assert implode_params("{baseurl}/{stream}", {"baseurl": "wss://x"}) == "wss://x/{stream}"

    def test_url_with_query(self):
        url = url_with_query("order/{id}", {"id": 42, "limit": 5})
        assert url == "order/42?limit=5"

    def test_url_without_query(self):
        assert url_with_query("ping", {}) == "ping"
