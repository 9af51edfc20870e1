from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from agency_crm.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("app.request")


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs and meters every request under its route template.

    The template is resolved after the call: `/api/deals/<uuid>` is
    recorded as `/api/deals/{id}`.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception:
            logger.error("http.error", exc_info=True, extra=self._fields(request, status_code, started))
            raise
        finally:
            observe_http_request(
                method=request.method,
                path=resolve_http_path_label(request),
                status=status_code,
                duration=(time.perf_counter() - started),
            )

        logger.info("http.request", extra=self._fields(request, status_code, started))
        return response

    @staticmethod
    def _fields(request: Request, status_code: int, started: float) -> dict[str, object]:
        return {
            "method": request.method,
            "path": resolve_http_path_label(request),
            "status_code": status_code,
            "duration_ms": _elapsed_ms(started),
        }
