from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

import httpx
from opentelemetry import trace

from ksiegai.core.config import Settings, get_settings
from ksiegai.integrations.ksef.errors import KsefError, KsefErrorType, classify_http_error, parse_retry_after
from ksiegai.integrations.ksef.rate_limit import KsefRateLimitHandler
from ksiegai.integrations.ksef.tokens import TokenInfo
from ksiegai.metrics import observe_ksef_request


logger = logging.getLogger("ksiegai.ksef")
tracer = trace.get_tracer("ksiegai.ksef")

API_BASE_URLS = {
    "test": "https://api-test.ksef.mf.gov.pl/v2",
    "demo": "https://api-demo.ksef.mf.gov.pl/v2",
    "prod": "https://api.ksef.mf.gov.pl/v2",
}


@dataclass(slots=True)
class SubmitInvoiceResult:
    reference_number: str
    processing_code: int
    processing_description: str
    timestamp: str
    upo: str | None = None


@dataclass(slots=True)
class InvoiceMetadata:
    ksef_number: str
    invoice_number: str
    issue_date: date
    seller_nip: str
    seller_name: str | None
    buyer_nip: str | None
    total_gross_amount: Decimal
    currency: str
    permanent_storage_date: datetime

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> InvoiceMetadata:
        return cls(
            ksef_number=payload["ksefNumber"],
            invoice_number=payload.get("invoiceNumber", ""),
            issue_date=date.fromisoformat(payload["issueDate"][:10]),
            seller_nip=payload.get("sellerNip", ""),
            seller_name=payload.get("sellerName"),
            buyer_nip=payload.get("buyerNip"),
            total_gross_amount=Decimal(str(payload.get("totalGrossAmount", "0"))),
            currency=payload.get("currency", "PLN"),
            permanent_storage_date=_parse_timestamp(payload["permanentStorageDate"]),
        )


@dataclass(slots=True)
class MetadataPage:
    invoices: list[InvoiceMetadata]
    has_more: bool


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def resolve_base_url(settings: Settings) -> str:
    if settings.ksef_api_base_url:
        return settings.ksef_api_base_url.rstrip("/")
    return API_BASE_URLS.get(settings.ksef_environment, API_BASE_URLS["test"])


class KsefApiClient:
    """Blocking KSeF REST client.

    Every call goes through the rate-limit handler. HTTP failures are
    classified into ``KsefError``; timeouts and transport failures become
    retryable NETWORK errors.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        rate_limiter: KsefRateLimitHandler | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter or KsefRateLimitHandler()
        self._http = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)
        self._session_token: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None, *, transport: httpx.BaseTransport | None = None) -> KsefApiClient:
        settings = settings or get_settings()
        return cls(
            resolve_base_url(settings),
            timeout=settings.ksef_request_timeout_seconds,
            rate_limiter=KsefRateLimitHandler(
                max_retries=settings.ksef_max_retries,
                base_delay_seconds=settings.ksef_retry_base_delay_seconds,
                max_delay_seconds=settings.ksef_retry_max_delay_seconds,
            ),
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> KsefApiClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def init_session(self, token: str) -> dict[str, Any]:
        if not token:
            raise KsefError(KsefErrorType.AUTHENTICATION, "empty KSeF token")
        self._session_token = token
        return {"session_token": token, "timestamp": datetime.now(timezone.utc).isoformat()}

    def terminate_session(self) -> None:
        self._session_token = None

    def is_session_active(self) -> bool:
        return self._session_token is not None

    def submit_invoice(self, invoice_xml: str) -> SubmitInvoiceResult:
        self._require_session()
        opened = self._call(
            "submit_invoice.open",
            "POST",
            "/online/session/interactive",
            json={"initiationData": {"initiationType": "Invoice"}},
        )
        reference = opened.get("sessionReferenceNumber")
        if not reference:
            raise KsefError(KsefErrorType.SERVER, "KSeF did not return a session reference number", details=opened)

        self._call(
            "submit_invoice.upload",
            "POST",
            f"/online/session/interactive/{reference}/invoice",
            content=invoice_xml.encode("utf-8"),
            headers={"Content-Type": "application/xml"},
        )
        closed = self._call("submit_invoice.close", "POST", f"/online/session/interactive/{reference}/close")

        status_block = closed.get("status") or {}
        upo = closed.get("upo")
        return SubmitInvoiceResult(
            reference_number=reference,
            processing_code=int(status_block.get("code", 200)),
            processing_description=str(status_block.get("description", "Success")),
            timestamp=closed.get("dateUpdated") or datetime.now(timezone.utc).isoformat(),
            upo=str(upo) if upo is not None else None,
        )

    def get_upo(self, reference_number: str) -> dict[str, Any]:
        self._require_session()
        data = self._call("get_upo", "GET", f"/online/session/interactive/{reference_number}/status")
        pages = (data.get("upo") or {}).get("pages") or []
        if not pages:
            raise KsefError(KsefErrorType.SERVER, "UPO not available yet", retryable=True, details=data)
        return pages[0]

    def check_invoice_status(self, reference_number: str) -> dict[str, Any]:
        self._require_session()
        return self._call("check_invoice_status", "GET", f"/online/invoice/status/{reference_number}")

    def refresh_access_token(self, refresh_token: str) -> TokenInfo:
        data = self._call(
            "refresh_access_token",
            "POST",
            "/auth/token/refresh",
            headers={"Authorization": f"Bearer {refresh_token}"},
            authenticated=False,
        )
        access = data.get("accessToken") or {}
        token = access.get("token")
        if not token:
            raise KsefError(KsefErrorType.AUTHENTICATION, "KSeF refresh returned no access token", details=data)
        if access.get("validUntil"):
            expires_at = _parse_timestamp(access["validUntil"])
            expires_in = max(0, int((expires_at - datetime.now(timezone.utc)).total_seconds()))
            return TokenInfo(token=token, expires_in=expires_in, expires_at=expires_at)
        return TokenInfo.issued(token, int(access.get("expiresIn", 900)))

    def query_invoice_metadata(
        self,
        *,
        subject_type: str,
        date_from: datetime,
        date_to: datetime | None = None,
        page_offset: int = 0,
        page_size: int = 100,
    ) -> MetadataPage:
        self._require_session()
        date_range: dict[str, Any] = {"dateType": "PermanentStorage", "from": date_from.isoformat()}
        if date_to is not None:
            date_range["to"] = date_to.isoformat()
        data = self._call(
            "query_invoice_metadata",
            "POST",
            "/invoices/query/metadata",
            params={"pageOffset": page_offset, "pageSize": page_size},
            json={"subjectType": subject_type, "dateRange": date_range},
        )
        invoices = [InvoiceMetadata.from_payload(item) for item in data.get("invoices", [])]
        return MetadataPage(invoices=invoices, has_more=bool(data.get("hasMore", False)))

    def iter_invoice_metadata(
        self,
        *,
        subject_type: str,
        date_from: datetime,
        date_to: datetime | None = None,
        page_size: int = 100,
    ) -> Iterator[InvoiceMetadata]:
        page_offset = 0
        while True:
            page = self.query_invoice_metadata(
                subject_type=subject_type,
                date_from=date_from,
                date_to=date_to,
                page_offset=page_offset,
                page_size=page_size,
            )
            yield from page.invoices
            if not page.has_more or not page.invoices:
                return
            page_offset += 1

    def _require_session(self) -> None:
        if self._session_token is None:
            raise KsefError(KsefErrorType.SESSION, "KSeF session not initialized, call init_session first")

    def _call(self, operation: str, method: str, path: str, *, authenticated: bool = True, **kwargs: Any) -> dict[str, Any]:
        return self.rate_limiter.execute(
            lambda: self._send(operation, method, path, authenticated=authenticated, **kwargs),
            operation_name=operation,
        )

    def _send(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        authenticated: bool,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        request_headers = {"Accept": "application/json"}
        if authenticated and self._session_token is not None:
            request_headers["Authorization"] = f"Bearer {self._session_token}"
        request_headers.update(headers or {})

        started = time.perf_counter()
        with tracer.start_as_current_span(f"ksef.{operation}") as span:
            span.set_attribute("http.method", method)
            span.set_attribute("ksef.path", path)
            try:
                response = self._http.request(method, path, headers=request_headers, **kwargs)
            except httpx.TimeoutException as exc:
                observe_ksef_request(operation, "timeout", time.perf_counter() - started)
                raise KsefError(KsefErrorType.NETWORK, f"KSeF request timed out: {exc}", retryable=True) from exc
            except httpx.TransportError as exc:
                observe_ksef_request(operation, "network_error", time.perf_counter() - started)
                raise KsefError(KsefErrorType.NETWORK, f"KSeF request failed: {exc}", retryable=True) from exc

            span.set_attribute("http.status_code", response.status_code)
            if response.is_error:
                observe_ksef_request(operation, "error", time.perf_counter() - started)
                raise self._error_from_response(response, operation)

            observe_ksef_request(operation, "success", time.perf_counter() - started)
            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError:
                return {"raw": response.text}

    @staticmethod
    def _error_from_response(response: httpx.Response, operation: str) -> KsefError:
        details: Any = None
        message = f"KSeF {operation} failed (HTTP {response.status_code})"
        try:
            details = response.json()
        except ValueError:
            details = None
        if isinstance(details, dict):
            message = str(details.get("message") or details.get("error") or message)
        return classify_http_error(
            response.status_code,
            message,
            details=details,
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )
