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

crm_deal_stage_transitions_total = Counter(
    "crm_deal_stage_transitions_total",
    "Total deal stage transitions by target stage",
    ["to_stage"],
)

crm_import_records_total = Counter(
    "crm_import_records_total",
    "Total HubSpot import records by entity and outcome",
    ["entity", "outcome"],
)

crm_import_duration_seconds = Histogram(
    "crm_import_duration_seconds",
    "HubSpot import duration in seconds",
    ["status"],
)

crm_backup_operations_total = Counter(
    "crm_backup_operations_total",
    "Total backup and restore operations by status",
    ["operation", "status"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None) or getattr(route, "path", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_stage_transition(to_stage: str) -> None:
    crm_deal_stage_transitions_total.labels(to_stage=to_stage).inc()


def observe_import_records(entity: str, imported: int, skipped: int, failed: int) -> None:
    for outcome, count in (("imported", imported), ("skipped", skipped), ("failed", failed)):
        if count > 0:
            crm_import_records_total.labels(entity=entity, outcome=outcome).inc(count)


def observe_import_run(status: str, duration: float) -> None:
    crm_import_duration_seconds.labels(status=status).observe(duration)


def observe_backup_operation(operation: str, status: str) -> None:
    crm_backup_operations_total.labels(operation=operation, status=status).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
