"""
Tests for the billing API client against a mocked transport.
"""

import asyncio
from decimal import Decimal

import httpx
import pytest

from finops.services.ingestion.adapter import PayloadError
from finops.services.ingestion.client import BillingAPIClient, BillingAPIError

BASE_URL = "https://api.example.test/v2"

CSV_BY_INVOICE = {
    "inv-1": "product,USD\nDroplets,10.00\nSpaces,5.00\n",
    "inv-2": "product,USD\nDroplets,12.00\n",
}


def run(coro):
    return asyncio.run(coro)


def make_client(handler, token="test-token"):
    return BillingAPIClient(token=token, base_url=BASE_URL, page_size=1, transport=httpx.MockTransport(handler))


async def fetch_all(handler):
    async with make_client(handler) as client:
        return await client.fetch_all_invoice_data()


def body_pagination_handler(failing=()):
    """Invoice list split over two pages via links.pages.next"""

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/customers/my/invoices"):
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json={
                    "invoices": [{"invoice_uuid": "inv-2", "invoice_period": "2024-02", "amount": "12.00"}],
                    "links": {},
                })
            return httpx.Response(200, json={
                "invoices": [{"invoice_uuid": "inv-1", "invoice_period": "2024-01", "amount": "15.00"}],
                "links": {"pages": {"next": f"{BASE_URL}/customers/my/invoices?page=2&per_page=1"}},
            })
        invoice_id = path.split("/")[-2]
        if invoice_id in failing:
            return httpx.Response(500, text="boom")
        return httpx.Response(200, text=CSV_BY_INVOICE[invoice_id])

    return handler


class TestClientSetup:
    """Test cases for client construction"""

    def test_token_is_required(self, monkeypatch):
        monkeypatch.delenv("FINOPS_API_TOKEN", raising=False)

        with pytest.raises(BillingAPIError):
            BillingAPIClient(token=None, base_url=BASE_URL)

    def test_token_from_environment(self, monkeypatch):
        monkeypatch.setenv("FINOPS_API_TOKEN", "env-token")

        assert BillingAPIClient(base_url=BASE_URL).token == "env-token"

    def test_requires_context_manager(self):
        client = make_client(body_pagination_handler())

        with pytest.raises(RuntimeError):
            _ = client.client

    def test_bearer_auth_header(self):
        seen = {}

        def handler(request):
            seen["authorization"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"invoices": []})

        async def go():
            async with make_client(handler) as client:
                return await client.list_invoice_entries()

        assert run(go()) == []
        assert seen["authorization"] == "Bearer test-token"


class TestPagination:
    """Test cases for invoice list pagination"""

    def test_links_in_body(self):
        result = run(fetch_all(body_pagination_handler()))

        assert [invoice.invoice_id for invoice in result.invoices] == ["inv-1", "inv-2"]
        assert len(result.line_items) == 3
        assert result.line_items[0]["invoice_uuid"] == "inv-1"
        assert result.line_items[0]["invoice_amount"] == Decimal("15.00")
        assert result.is_complete

    def test_link_header(self):
        calls = []

        def handler(request):
            calls.append(str(request.url))
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json={"invoices": [{"invoice_uuid": "b"}]})
            return httpx.Response(
                200,
                json={"invoices": [{"invoice_uuid": "a"}]},
                headers={"Link": f'<{BASE_URL}/customers/my/invoices?page=2>; rel="next"'},
            )

        async def go():
            async with make_client(handler) as client:
                return await client.list_invoice_entries()

        entries = run(go())

        assert [entry["invoice_uuid"] for entry in entries] == ["a", "b"]
        assert "per_page=1" in calls[0]
        assert len(calls) == 2

    def test_repeated_next_link_stops(self):
        def handler(request):
            return httpx.Response(200, json={
                "invoices": [{"invoice_uuid": "a"}],
                "links": {"pages": {"next": f"{BASE_URL}/customers/my/invoices?page=1"}},
            })

        async def go():
            async with make_client(handler) as client:
                return await client.list_invoice_entries()

        assert len(run(go())) == 2

    def test_malformed_page(self):
        def handler(request):
            return httpx.Response(200, json={"invoices": {"not": "a list"}})

        with pytest.raises(PayloadError):
            run(fetch_all(handler))


class TestFailures:
    """Test cases for error reporting"""

    def test_failed_invoice_fetch_is_reported(self):
        result = run(fetch_all(body_pagination_handler(failing=("inv-2",))))

        assert [failure.invoice_id for failure in result.failures] == ["inv-2"]
        assert "500" in result.failures[0].error
        assert {item["invoice_uuid"] for item in result.line_items} == {"inv-1"}
        assert not result.is_complete

    def test_list_error_raises_with_status(self):
        def handler(request):
            return httpx.Response(401, json={"message": "Unable to authenticate you"})

        with pytest.raises(BillingAPIError) as exc_info:
            run(fetch_all(handler))

        assert exc_info.value.status_code == 401

    def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(BillingAPIError) as exc_info:
            run(fetch_all(handler))

        assert exc_info.value.status_code is None
