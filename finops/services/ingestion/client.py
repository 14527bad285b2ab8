"""
Billing API client (HTTP retrieval collaborator).

Fetches the paginated invoice list and the per-invoice CSV export from a
DigitalOcean-style billing API. Per-invoice fetches run concurrently and a
failed fetch is recorded as a FetchFailure instead of aborting the others.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import httpx
import structlog

from finops.core.config import get_settings
from finops.services.billing.models import Invoice

from .adapter import (
    FetchFailure,
    IngestionContext,
    IngestionResult,
    PayloadError,
    build_ingestion_result,
    parse_invoices,
)
from .tokenizer import parse_csv

logger = structlog.get_logger(__name__)

INVOICES_PATH = "/customers/my/invoices"


class BillingAPIError(Exception):
    """Raised when the billing API cannot be reached or returns an error status"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class BillingAPIClient:
    """
    Async client for the billing API.

    Use as an async context manager:

        async with BillingAPIClient(token) as client:
            result = await client.fetch_all_invoice_data()
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        page_size: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings().api
        self.token = token or settings.token
        if not self.token:
            raise BillingAPIError("An API token is required (set FINOPS_API_TOKEN or pass token)")
        self.base_url = (base_url or settings.base_url).rstrip("/")
        self.page_size = page_size or settings.page_size
        self.timeout = timeout or settings.timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._logger = logger.bind(component="billing_api_client")

    async def __aenter__(self) -> "BillingAPIClient":
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.token}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("BillingAPIClient must be used as an async context manager")
        return self._client

    async def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        try:
            response = await self.client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise BillingAPIError(f"Billing API timeout: {url}") from e
        except httpx.HTTPError as e:
            raise BillingAPIError(f"Billing API request failed: {e}") from e

        if response.status_code >= 400:
            raise BillingAPIError(
                f"Billing API error {response.status_code} for {url}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _next_page(data: Dict[str, Any], response: httpx.Response) -> Optional[str]:
        """Next page URL from links.pages.next or an RFC 5988 Link header"""
        links = data.get("links") or {}
        pages = links.get("pages") if isinstance(links, dict) else None
        if isinstance(pages, dict) and pages.get("next"):
            return pages["next"]
        next_link = response.links.get("next")
        if next_link and next_link.get("url"):
            return next_link["url"]
        return None

    async def list_invoice_entries(self) -> List[Dict[str, Any]]:
        """Raw invoice list entries across all pages"""
        entries: List[Dict[str, Any]] = []
        url: Optional[str] = INVOICES_PATH
        params: Optional[Dict[str, Any]] = {"per_page": self.page_size}
        seen = set()

        while url and url not in seen:
            seen.add(url)
            response = await self._get(url, params=params)
            try:
                data = response.json()
            except ValueError as e:
                raise PayloadError(f"Invoice list page is not JSON: {url}") from e
            if not isinstance(data, dict):
                raise PayloadError("Invoice list page must be a JSON object")

            page = data.get("invoices") or []
            if not isinstance(page, list):
                raise PayloadError("'invoices' must be a list")
            entries.extend(page)
            self._logger.debug("invoice_page_fetched", url=url, count=len(page))

            url = self._next_page(data, response)
            # Next-page URLs already carry their query string
            params = None

        self._logger.info("invoice_list_fetched", count=len(entries))
        return entries

    async def list_invoices(self) -> Tuple[List[Invoice], list]:
        """Validated invoices and rejected entries across all pages"""
        return parse_invoices(await self.list_invoice_entries())

    async def fetch_invoice_records(self, invoice_id: str) -> List[Dict[str, Any]]:
        """Parsed CSV line items of one invoice"""
        response = await self._get(f"{INVOICES_PATH}/{invoice_id}/csv")
        records = parse_csv(response.text)
        if not records:
            self._logger.warning("invoice_csv_empty", invoice_id=invoice_id)
        return records

    async def fetch_all_invoice_data(self, context: Optional[IngestionContext] = None) -> IngestionResult:
        """
        Fetch every invoice and its line items.

        Per-invoice fetches run concurrently. A failed fetch is logged and
        reported in IngestionResult.failures; the list fetch itself raises.

        Returns:
            IngestionResult with tagged line items
        """
        invoices, rejections = await self.list_invoices()

        results = await asyncio.gather(
            *(self.fetch_invoice_records(invoice.invoice_id) for invoice in invoices),
            return_exceptions=True,
        )

        records_by_invoice: Dict[str, List[Dict[str, Any]]] = {}
        failures: List[FetchFailure] = []
        for invoice, result in zip(invoices, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                self._logger.error(
                    "invoice_fetch_failed",
                    invoice_id=invoice.invoice_id,
                    error=str(result),
                )
                failures.append(FetchFailure(invoice_id=invoice.invoice_id, error=str(result)))
                continue
            records_by_invoice[invoice.invoice_id] = result

        return build_ingestion_result(
            invoices,
            records_by_invoice,
            failures=failures,
            context=context,
            rejections=rejections,
        )
