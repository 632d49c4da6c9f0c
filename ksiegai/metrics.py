from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

fls_masked_fields_count = Counter(
    "fls_masked_fields_count",
    "Total FLS-masked fields",
    ["resource", "operation"],
)

fls_denied_fields_count = Counter(
    "fls_denied_fields_count",
    "Total FLS-denied fields",
    ["resource", "operation"],
)

rls_denied_reads_count = Counter(
    "rls_denied_reads_count",
    "Total denied reads by RLS",
    ["resource", "scope_type"],
)

rls_denied_writes_count = Counter(
    "rls_denied_writes_count",
    "Total denied writes by RLS",
    ["resource", "scope_type"],
)

ledger_entries_posted_count = Counter(
    "ledger_entries_posted_count",
    "Total posted ledger entries",
)

ledger_lines_posted_count = Counter(
    "ledger_lines_posted_count",
    "Total posted ledger lines",
)

ledger_post_failures_count = Counter(
    "ledger_post_failures_count",
    "Total ledger post failures by reason",
    ["reason"],
)

ledger_entries_reversed_count = Counter(
    "ledger_entries_reversed_count",
    "Total reversed ledger entries",
)

invoices_issued_count = Counter(
    "invoices_issued_count",
    "Total issued invoices by transaction type",
    ["transaction_type", "document_type"],
)

invoice_auto_post_total = Counter(
    "invoice_auto_post_total",
    "Invoice auto-posting outcomes",
    ["outcome"],
)

period_locks_total = Counter(
    "period_locks_total",
    "Accounting period locks by trigger",
    ["trigger"],
)

ksef_requests_total = Counter(
    "ksef_requests_total",
    "KSeF API requests by operation and outcome",
    ["operation", "outcome"],
)

ksef_request_duration_seconds = Histogram(
    "ksef_request_duration_seconds",
    "KSeF API request duration in seconds",
    ["operation"],
)

ksef_retries_total = Counter(
    "ksef_retries_total",
    "KSeF request retries by error type",
    ["error_type"],
)

ksef_sync_runs_total = Counter(
    "ksef_sync_runs_total",
    "KSeF received-invoice sync runs by status",
    ["status"],
)

ksef_sync_invoices_total = Counter(
    "ksef_sync_invoices_total",
    "Received invoices stored by KSeF sync",
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _normalize_route_template(path: str) -> str:
    return _PATH_PARAM_RE.sub("{id}", path)


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _normalize_route_template(path_format)
        route_path = getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _normalize_route_template(route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    status_str = str(status)
    http_requests_total.labels(method=method, path=path, status=status_str).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_fls_field_counts(resource: str, operation: str, masked_count: int, denied_count: int) -> None:
    if masked_count > 0:
        fls_masked_fields_count.labels(resource=resource, operation=operation).inc(masked_count)
    if denied_count > 0:
        fls_denied_fields_count.labels(resource=resource, operation=operation).inc(denied_count)


def observe_rls_denied_read(resource: str, scope_type: str) -> None:
    rls_denied_reads_count.labels(resource=resource, scope_type=scope_type).inc()


def observe_rls_denied_write(resource: str, scope_type: str) -> None:
    rls_denied_writes_count.labels(resource=resource, scope_type=scope_type).inc()


def observe_ledger_entries_posted(count: int = 1) -> None:
    if count > 0:
        ledger_entries_posted_count.inc(count)


def observe_ledger_lines_posted(count: int = 1) -> None:
    if count > 0:
        ledger_lines_posted_count.inc(count)


def observe_ledger_post_failure(reason: str) -> None:
    ledger_post_failures_count.labels(reason=reason).inc()


def observe_ledger_entry_reversed() -> None:
    ledger_entries_reversed_count.inc()


def observe_invoice_issued(transaction_type: str, document_type: str) -> None:
    invoices_issued_count.labels(transaction_type=transaction_type, document_type=document_type).inc()


def observe_invoice_auto_post(outcome: str) -> None:
    invoice_auto_post_total.labels(outcome=outcome).inc()


def observe_period_locked(trigger: str, count: int = 1) -> None:
    if count > 0:
        period_locks_total.labels(trigger=trigger).inc(count)


def observe_ksef_request(operation: str, outcome: str, duration: float) -> None:
    ksef_requests_total.labels(operation=operation, outcome=outcome).inc()
    ksef_request_duration_seconds.labels(operation=operation).observe(duration)


def observe_ksef_retry(error_type: str) -> None:
    ksef_retries_total.labels(error_type=error_type).inc()


def observe_ksef_sync_run(status: str, invoices: int = 0) -> None:
    ksef_sync_runs_total.labels(status=status).inc()
    if invoices > 0:
        ksef_sync_invoices_total.inc(invoices)


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
