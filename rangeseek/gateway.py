from __future__ import annotations

import logging
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import TYPE_CHECKING, Any

import httpx
from litestar.response import Response, Stream
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import InvalidURL
from .headers import (
    BINARY_MEDIA_TYPE,
    CORS_HEADERS,
    filter_request_headers,
    filter_response_headers,
    validate_url,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from litestar import Request
else:  # pragma: no cover
    AsyncIterator = Any

LOG = logging.getLogger("rangeseek.gateway")

PROXY_PATH = "/resources/proxy"
FORWARDED_METHODS = frozenset({"GET", "HEAD"})


class GatewaySettings(BaseSettings):
    """Configuration for the proxy gateway."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    connect_timeout: float = Field(
        default=10.0,
        validation_alias="RANGESEEK_GATEWAY_CONNECT_TIMEOUT",
    )
    read_timeout: float = Field(
        default=60.0,
        validation_alias="RANGESEEK_GATEWAY_READ_TIMEOUT",
    )
    user_agent: str | None = Field(
        default=None,
        validation_alias="RANGESEEK_GATEWAY_USER_AGENT",
    )


def load_gateway_settings_from_env() -> GatewaySettings:
    """Load gateway settings from environment variables.

    Returns:
        GatewaySettings instance populated from environment variables.
    """
    return GatewaySettings()


class ProxyGateway:
    """Forwards range requests to an arbitrary origin and makes the answer
    readable cross-origin.

    The gateway keeps no per-request state. The only thing shared between
    requests is the pooled upstream client opened in :meth:`startup`.
    """

    def __init__(
        self,
        settings: GatewaySettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._settings = settings
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def startup(self) -> None:
        self._http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                self._settings.read_timeout, connect=self._settings.connect_timeout
            ),
            follow_redirects=True,
            trust_env=False,
            # upstream cookies are never stored or replayed
            cookies=CookieJar(policy=DefaultCookiePolicy(allowed_domains=())),
            transport=self._transport,
        )
        LOG.info(
            "proxy gateway ready (connect_timeout=%ss, read_timeout=%ss)",
            self._settings.connect_timeout,
            self._settings.read_timeout,
        )

    async def shutdown(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def handle(self, request: Request) -> Response:
        LOG.debug("handle method=%s", request.method)
        if request.method == "OPTIONS":
            return Response(
                content=b"",
                status_code=204,
                headers=dict(CORS_HEADERS),
                media_type=BINARY_MEDIA_TYPE,
            )
        if request.method not in FORWARDED_METHODS:
            return self._error(405, "Method not allowed")

        target = request.query_params.get("url")
        if not target:
            return self._error(400, "Missing 'url' query parameter")
        try:
            upstream_url = validate_url(target)
        except InvalidURL:
            return self._error(400, "Invalid 'url' query parameter")

        if self._http_client is None:
            message = "proxy not initialised"
            raise RuntimeError(message)

        upstream_request = self._build_upstream_request(request, upstream_url)
        LOG.debug(
            "forwarding %s %s range=%s",
            upstream_request.method,
            upstream_url,
            upstream_request.headers.get("range"),
        )
        try:
            response = await self._http_client.send(upstream_request, stream=True)
        except httpx.HTTPError as exc:
            LOG.warning("upstream request to %s failed: %s", upstream_url, exc)
            return self._error(502, f"Proxy error: {str(exc) or type(exc).__name__}")

        return await self._to_streaming_response(response)

    def _build_upstream_request(
        self, request: Request, upstream_url: httpx.URL
    ) -> httpx.Request:
        assert self._http_client is not None
        headers = filter_request_headers(request.headers)
        origin = f"{upstream_url.scheme}://{upstream_url.netloc.decode('ascii')}"
        headers["host"] = upstream_url.netloc.decode("ascii")
        headers["referer"] = origin
        headers["accept-encoding"] = "identity"
        if self._settings.user_agent:
            headers["user-agent"] = self._settings.user_agent

        return self._http_client.build_request(
            method=request.method,
            url=upstream_url,
            headers=headers,
        )

    async def _to_streaming_response(self, response: httpx.Response) -> Response:
        headers = filter_response_headers(response.headers.raw)
        headers.update(CORS_HEADERS)
        url = response.request.url
        if response.headers.get("content-encoding", "identity").lower() != "identity":
            # the body is forwarded decoded, so the encoded length no longer applies
            headers.pop("content-length", None)

        if response.request.method == "HEAD":
            await response.aclose()
            return Stream(
                content=(),
                status_code=response.status_code,
                headers=headers,
                media_type=BINARY_MEDIA_TYPE,
            )

        async def iterator() -> AsyncIterator[bytes]:
            try:
                async for chunk in response.aiter_bytes():
                    yield chunk
            except httpx.HTTPError:
                LOG.warning("upstream stream from %s failed", url, exc_info=True)
                raise
            finally:
                await response.aclose()
                LOG.debug("closed upstream stream from %s", url)

        return Stream(
            content=iterator(),
            status_code=response.status_code,
            headers=headers,
            media_type=BINARY_MEDIA_TYPE,
        )

    @staticmethod
    def _error(status_code: int, message: str) -> Response:
        return Response(
            content=message,
            status_code=status_code,
            headers=dict(CORS_HEADERS),
            media_type="text/plain",
        )

    @classmethod
    def from_env(cls) -> ProxyGateway:
        """Create a ProxyGateway instance from environment variables.

        Returns:
            ProxyGateway configured from environment variables.
        """
        return cls(settings=load_gateway_settings_from_env())
