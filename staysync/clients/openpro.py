"""
Async client for the remote reservation API ("OpenPro").

Returns raw provider-shaped JSON; turning it into domain records is the job
of ``utils.normalize``. Every failure (transport, timeout, non-2xx, invalid
JSON) surfaces as UpstreamError. Idempotent GETs are retried on transport
errors only.
"""
from datetime import date
from typing import Any, Dict, Optional, Protocol

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..config import HTTP_RETRIES, HTTP_TIMEOUT, OPENPRO_API_KEY, OPENPRO_BASE_URL
from ..context import RequestContext
from ..errors import UpstreamError

logger = structlog.get_logger(__name__)


class RemoteApi(Protocol):
    async def list_accommodations(self, supplier_id: int, ctx: RequestContext) -> Any: ...

    async def list_rate_types(self, supplier_id: int, ctx: RequestContext) -> Any: ...

    async def list_rate_type_links(self, supplier_id: int, accommodation_id: int, ctx: RequestContext) -> Any: ...

    async def get_rates(self, supplier_id: int, accommodation_id: int, debut: date, fin: date, ctx: RequestContext) -> Any: ...

    async def get_stock(self, supplier_id: int, accommodation_id: int, debut: date, fin: date, ctx: RequestContext) -> Any: ...

    async def list_bookings(self, supplier_id: int, accommodation_id: int, ctx: RequestContext) -> Any: ...

    async def create_booking(self, supplier_id: int, payload: Dict[str, Any], ctx: RequestContext) -> Any: ...

    async def set_rates(self, supplier_id: int, accommodation_id: int, payload: Dict[str, Any], ctx: RequestContext) -> Any: ...

    async def update_stock(self, supplier_id: int, accommodation_id: int, payload: Dict[str, Any], ctx: RequestContext) -> Any: ...


class OpenProClient:
    def __init__(
        self,
        base_url: str = OPENPRO_BASE_URL,
        api_key: str = OPENPRO_API_KEY,
        timeout: float = HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url:
            logger.warning("openpro_base_url_missing")
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"OsApiKey {api_key}", "Accept": "application/json"},
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(max(1, HTTP_RETRIES)),
        wait=wait_exponential(multiplier=0.2, max=2),
        reraise=True,
    )
    async def _send(self, method: str, path: str, trace_id: str, **kwargs) -> httpx.Response:
        return await self._client.request(method, path, headers={"X-Trace-Id": trace_id}, **kwargs)

    async def _call(self, method: str, path: str, ctx: RequestContext, **kwargs) -> Any:
        ctx.check()
        log = logger.bind(trace_id=ctx.trace_id, method=method, path=path)
        try:
            if method == "GET":
                resp = await self._send(method, path, ctx.trace_id, **kwargs)
            else:
                # never replay writes
                resp = await self._client.request(
                    method, path, headers={"X-Trace-Id": ctx.trace_id}, **kwargs
                )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            log.warning("openpro_http_error", status=e.response.status_code)
            raise UpstreamError(
                f"{method} {path} returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            log.warning("openpro_transport_error", error=str(e))
            raise UpstreamError(f"{method} {path} failed: {e}") from e
        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamError(f"{method} {path} returned invalid JSON") from e

    # -------- operations --------

    async def list_accommodations(self, supplier_id: int, ctx: RequestContext) -> Any:
        return await self._call("GET", f"/fournisseur/{supplier_id}/hebergements", ctx)

    async def list_rate_types(self, supplier_id: int, ctx: RequestContext) -> Any:
        return await self._call("GET", f"/fournisseur/{supplier_id}/typetarifs", ctx)

    async def list_rate_type_links(self, supplier_id: int, accommodation_id: int, ctx: RequestContext) -> Any:
        return await self._call(
            "GET", f"/fournisseur/{supplier_id}/hebergements/{accommodation_id}/typetarifs", ctx
        )

    async def get_rates(
        self, supplier_id: int, accommodation_id: int, debut: date, fin: date, ctx: RequestContext
    ) -> Any:
        return await self._call(
            "GET",
            f"/fournisseur/{supplier_id}/hebergements/{accommodation_id}/tarif",
            ctx,
            params={"debut": debut.isoformat(), "fin": fin.isoformat()},
        )

    async def get_stock(
        self, supplier_id: int, accommodation_id: int, debut: date, fin: date, ctx: RequestContext
    ) -> Any:
        return await self._call(
            "GET",
            f"/fournisseur/{supplier_id}/hebergements/{accommodation_id}/stock",
            ctx,
            params={"debut": debut.isoformat(), "fin": fin.isoformat()},
        )

    async def list_bookings(self, supplier_id: int, accommodation_id: int, ctx: RequestContext) -> Any:
        return await self._call(
            "GET", f"/fournisseur/{supplier_id}/dossiers", ctx, params={"idHebergement": accommodation_id}
        )

    async def create_booking(self, supplier_id: int, payload: Dict[str, Any], ctx: RequestContext) -> Any:
        return await self._call("POST", f"/fournisseur/{supplier_id}/dossiers", ctx, json=payload)

    async def set_rates(
        self, supplier_id: int, accommodation_id: int, payload: Dict[str, Any], ctx: RequestContext
    ) -> Any:
        """``payload`` is ``{"tarifs": [...]}``; each entry replaces one period of one rate type."""
        return await self._call(
            "POST", f"/fournisseur/{supplier_id}/hebergements/{accommodation_id}/tarif", ctx, json=payload
        )

    async def update_stock(
        self, supplier_id: int, accommodation_id: int, payload: Dict[str, Any], ctx: RequestContext
    ) -> Any:
        return await self._call(
            "POST", f"/fournisseur/{supplier_id}/hebergements/{accommodation_id}/stock", ctx, json=payload
        )
