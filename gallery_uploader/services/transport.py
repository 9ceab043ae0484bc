"""HTTP adapter for single-file gallery uploads."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from ..errors import TransportError, TransportNetworkError, TransportServerError, UserCancelled
from ..models import DEFAULT_ENDPOINT, FileDescriptor, UploadOutcome
from ..protocols import ProgressCallback

logger = logging.getLogger(__name__)


class HTTPUploadTransport:
    """
    Multipart upload transport over httpx.

    Implements IUploadTransport protocol. Progress is reported as the encoded
    body is streamed; cancellation resolves with UploadOutcome.cancel().
    """

    FILE_FIELD = "image"

    def __init__(
        self,
        base_url: str = "",
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = 60,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._base_url = base_url
        self._endpoint = endpoint
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self):
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
        return self

    async def __aexit__(self, *args):
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def upload(
        self,
        payload: FileDescriptor,
        metadata: Dict[str, str],
        on_progress: ProgressCallback,
        cancel_event: asyncio.Event,
    ) -> UploadOutcome:
        if not self._client:
            raise RuntimeError("HTTPUploadTransport not initialized. Use 'async with' context.")

        if cancel_event.is_set():
            return UploadOutcome.cancel()

        send_task = asyncio.ensure_future(self._send(payload, metadata, on_progress, cancel_event))
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {send_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            send_task.cancel()
            cancel_task.cancel()
            raise
        finally:
            if not cancel_task.done():
                cancel_task.cancel()

        if send_task not in done:
            send_task.cancel()
            try:
                await send_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"[transport] Error while cancelling {payload.name}: {e}")
            logger.info(f"[transport] Cancelled: {payload.name}")
            return UploadOutcome.cancel()

        try:
            body = send_task.result()
        except UserCancelled:
            logger.info(f"[transport] Cancelled: {payload.name}")
            return UploadOutcome.cancel()
        except TransportError as e:
            logger.warning(f"[transport] Failed: {payload.name}: {e}")
            return UploadOutcome.fail(str(e), e.kind)

        logger.info(f"[transport] Uploaded: {payload.name}")
        return UploadOutcome.success(body)

    async def _send(
        self,
        payload: FileDescriptor,
        metadata: Dict[str, str],
        on_progress: ProgressCallback,
        cancel_event: asyncio.Event,
    ) -> Any:
        try:
            fh = payload.open()
        except OSError as e:
            raise TransportError(f"Could not read file: {e}") from e

        try:
            files = {self.FILE_FIELD: (payload.name, fh, payload.mime_type)}
            encoded = self._client.build_request(
                "POST", self._endpoint, data=metadata, files=files
            )
            total = int(encoded.headers.get("Content-Length", 0) or 0)
            request = httpx.Request(
                "POST",
                encoded.url,
                headers=encoded.headers,
                content=self._iter_body(encoded.stream, total, on_progress, cancel_event),
            )
            response = await self._client.send(request)
        except httpx.TimeoutException as e:
            raise TransportNetworkError("Upload timed out") from e
        except httpx.RequestError as e:
            raise TransportNetworkError("Network error during upload") from e
        finally:
            fh.close()

        if 200 <= response.status_code < 300:
            return self._parse_body(response)

        raise TransportServerError(self._error_message(response), response.status_code)

    async def _iter_body(
        self,
        stream: Any,
        total: int,
        on_progress: ProgressCallback,
        cancel_event: asyncio.Event,
    ) -> AsyncIterator[bytes]:
        sent = 0
        last_percent = -1
        async for chunk in stream:
            if cancel_event.is_set():
                raise UserCancelled("Upload cancelled")
            yield chunk
            sent += len(chunk)
            if total > 0:
                percent = min(100, int(sent * 100 / total))
                if percent != last_percent:
                    last_percent = percent
                    on_progress(percent)
        if last_percent < 100:
            on_progress(100)

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise TransportServerError(
                "Could not parse server response", response.status_code
            ) from e

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        message = f"HTTP {response.status_code}: {response.reason_phrase}"
        try:
            data = response.json()
        except ValueError:
            return message
        if isinstance(data, dict):
            return data.get("message") or data.get("error") or message
        return message
