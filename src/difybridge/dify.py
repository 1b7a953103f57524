"""Dify streaming client utilities."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from .config import Settings
from .errors import BackendRejected, BackendUnavailable, UploadFailed
from .schemas.dify import BackendQuery

logger = logging.getLogger(__name__)


class DifyClient:
    """Client responsible for talking to the Dify application API.

    Unless an ``http_client`` is injected, instances share one pooled
    ``httpx.AsyncClient`` per (base URL, timeout) pair, so creating a client
    per request does not open new connection pools.
    """

    _client_lock: asyncio.Lock = asyncio.Lock()
    _client_pool: dict[tuple[str, float], httpx.AsyncClient] = {}

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._settings = settings
        self._http_client = http_client

    def _client_key(self) -> tuple[str, float]:
        return (self._base_url, float(self._settings.request_timeout))

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client

        key = self._client_key()
        client = self.__class__._client_pool.get(key)
        if client is not None:
            return client

        async with self.__class__._client_lock:
            client = self.__class__._client_pool.get(key)
            if client is None:
                timeout = httpx.Timeout(self._settings.request_timeout, connect=10.0)
                limits = httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=20,
                )
                client = httpx.AsyncClient(
                    timeout=timeout,
                    limits=limits,
                    http2=True,
                )
                self.__class__._client_pool[key] = client
        return client

    @property
    def _auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._settings.dify_api_key.get_secret_value()}",
        }

    @property
    def _base_url(self) -> str:
        """Return the Dify API base URL without a trailing slash."""

        return str(self._settings.dify_api_url).rstrip("/")

    async def open_chat_stream(self, query: BackendQuery) -> httpx.Response:
        """Send a chat-messages request and return the open streaming response.

        The caller owns the returned response and must ``aclose()`` it. A
        non-2xx answer is read in full and raised as ``BackendRejected``.
        """

        url = f"{self._base_url}/chat-messages"
        headers = dict(self._auth_headers)
        headers["Content-Type"] = "application/json"
        headers["Accept"] = "text/event-stream"

        client = await self._get_http_client()
        started = time.perf_counter()
        try:
            request = client.build_request(
                "POST", url, headers=headers, json=query.to_payload()
            )
            response = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise BackendUnavailable(str(exc)) from exc

        logger.info(
            "Dify responded %s for /chat-messages in %.0f ms",
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )

        if not response.is_success:
            try:
                body = await response.aread()
            except httpx.HTTPError as exc:
                raise BackendUnavailable(str(exc)) from exc
            finally:
                await response.aclose()
            logger.error(
                "Dify chat request failed with %s: %s",
                response.status_code,
                body.decode("utf-8", errors="replace"),
            )
            raise BackendRejected(
                response.status_code,
                body,
                content_type=response.headers.get("content-type"),
            )

        return response

    async def upload_file(
        self,
        data: bytes,
        *,
        mime_type: str,
        filename: str,
        user: str,
    ) -> str:
        """Upload a file for use in a later query and return its id."""

        url = f"{self._base_url}/files/upload"
        logger.info(
            "Uploading %s (%s, %d bytes) to Dify", filename, mime_type, len(data)
        )

        client = await self._get_http_client()
        try:
            response = await client.post(
                url,
                headers=self._auth_headers,
                files={"file": (filename, data, mime_type)},
                data={"user": user},
            )
        except httpx.HTTPError as exc:
            raise BackendUnavailable(str(exc)) from exc

        if not response.is_success:
            logger.error(
                "Dify file upload failed with %s: %s",
                response.status_code,
                response.text,
            )
            raise UploadFailed(response.status_code, response.text)

        try:
            payload: Any = response.json()
        except ValueError as exc:
            raise UploadFailed(response.status_code, response.text) from exc
        file_id = payload.get("id") if isinstance(payload, dict) else None
        if not isinstance(file_id, str) or not file_id:
            raise UploadFailed(response.status_code, response.text)

        logger.info("Uploaded %s as Dify file %s", filename, file_id)
        return file_id

    async def aclose(self) -> None:
        await self.__class__.aclose_shared()

    @classmethod
    async def aclose_shared(cls) -> None:
        async with cls._client_lock:
            clients = list(cls._client_pool.values())
            cls._client_pool.clear()
        for client in clients:
            try:
                await client.aclose()
            except Exception:  # pragma: no cover - best effort cleanup
                logger.debug("Failed to close pooled HTTP client", exc_info=True)


__all__ = ["DifyClient"]
