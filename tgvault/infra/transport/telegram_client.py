"""Telegram Bot API blob transport.

Chunks are posted as documents to a private chat and fetched back through
``getFile``. Each call is a single attempt; failures are classified and
raised for the chunking adapter to retry or propagate.

The bot token is part of every request URL, so URLs never appear in error
messages.

Dependencies:
    - httpx
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx

from tgvault.domain.locator import ChunkHandle
from tgvault.infra.transport.client import (
    NotFoundError,
    PermanentTransportError,
    TransientTransportError,
)

if TYPE_CHECKING:
    from tgvault.common.config import Settings

# Bot API descriptions that mean the referenced file or message is gone
_NOT_FOUND_MARKERS = (
    "wrong file_id",
    "invalid file_id",
    "invalid file id",
    "file not found",
    "message to delete not found",
    "message can't be deleted",
)


class TelegramTransport:
    """Blob transport backed by a Telegram chat.

    Uses a shared ``httpx.Client``; safe to call from many threads.
    """

    def __init__(
        self,
        *,
        settings: "Settings",
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize the transport from settings.

        Args:
            settings: Application settings containing the bot configuration.
            http_client: Optional httpx.Client for dependency injection (testing).
        """
        self._chat_id = settings.TELEGRAM_CHAT_ID
        self._max_message_bytes = int(settings.TRANSPORT_CHUNK_SIZE_BYTES)
        api_root = settings.TELEGRAM_API_BASE_URL.rstrip("/")
        token = settings.TELEGRAM_BOT_TOKEN
        self._method_url = f"{api_root}/bot{token}"
        self._file_url = f"{api_root}/file/bot{token}"
        self._client = http_client or self._build_client(settings)

    @staticmethod
    def _build_client(settings: "Settings") -> httpx.Client:
        return httpx.Client(
            timeout=float(settings.TRANSPORT_TIMEOUT_SECONDS),
            headers={"User-Agent": "tgvault/1.0"},
        )

    @property
    def max_message_bytes(self) -> int:
        return self._max_message_bytes

    def close(self) -> None:
        self._client.close()

    def upload_chunk(self, data: bytes, *, filename: str) -> ChunkHandle:
        """Send a chunk as a document message."""
        if len(data) > self._max_message_bytes:
            raise PermanentTransportError(
                f"Chunk of {len(data)} bytes exceeds the {self._max_message_bytes} byte limit"
            )
        result = self._call(
            "sendDocument",
            data={"chat_id": str(self._chat_id)},
            files={"document": (filename, data, "application/octet-stream")},
        )
        document = result.get("document") if isinstance(result, dict) else None
        message_id = result.get("message_id") if isinstance(result, dict) else None
        if not isinstance(document, dict) or not document.get("file_id"):
            raise PermanentTransportError("sendDocument response has no document")
        if not isinstance(message_id, int):
            raise PermanentTransportError("sendDocument response has no message_id")
        return ChunkHandle(file_id=str(document["file_id"]), message_id=message_id)

    def download_chunk(self, handle: ChunkHandle) -> bytes:
        """Resolve a file_id to a path, then download its bytes."""
        result = self._call("getFile", data={"file_id": handle.file_id}, handle=handle)
        file_path = result.get("file_path") if isinstance(result, dict) else None
        if not file_path:
            raise NotFoundError("getFile response has no file_path", handle=handle)

        try:
            response = self._client.get(f"{self._file_url}/{file_path}")
        except httpx.TransportError as exc:
            raise TransientTransportError(
                f"File download failed: {type(exc).__name__}", handle=handle
            ) from exc
        if response.status_code != 200:
            raise self._classify(response, handle=handle, operation="file download")
        return response.content

    def delete_chunk(self, handle: ChunkHandle) -> None:
        self._call(
            "deleteMessage",
            data={"chat_id": str(self._chat_id), "message_id": str(handle.message_id)},
            handle=handle,
        )

    def ping(self) -> None:
        self._call("getMe")

    def _call(
        self,
        method: str,
        *,
        data: dict[str, str] | None = None,
        files: dict[str, Any] | None = None,
        handle: ChunkHandle | None = None,
    ) -> Any:
        """Execute one Bot API method and return its ``result``.

        Raises:
            TransientTransportError: On network errors, 429, or 5xx.
            NotFoundError: If the API reports a missing file or message.
            PermanentTransportError: On any other rejection.
        """
        try:
            response = self._client.post(
                f"{self._method_url}/{method}", data=data, files=files
            )
        except httpx.TransportError as exc:
            raise TransientTransportError(
                f"{method} failed: {type(exc).__name__}", handle=handle
            ) from exc

        if response.status_code != 200:
            raise self._classify(response, handle=handle, operation=method)

        try:
            payload = response.json()
        except ValueError as exc:
            raise PermanentTransportError(
                f"{method} returned invalid JSON", handle=handle
            ) from exc
        if not isinstance(payload, dict) or not payload.get("ok"):
            description = payload.get("description") if isinstance(payload, dict) else None
            raise PermanentTransportError(
                f"{method} rejected: {description or 'no description'}", handle=handle
            )
        return payload.get("result")

    @staticmethod
    def _classify(
        response: httpx.Response,
        *,
        handle: ChunkHandle | None,
        operation: str,
    ) -> PermanentTransportError | TransientTransportError:
        status = response.status_code
        description = ""
        retry_after: float | None = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            description = str(body.get("description") or "")
            parameters = body.get("parameters")
            if isinstance(parameters, dict) and parameters.get("retry_after") is not None:
                try:
                    retry_after = float(parameters["retry_after"])
                except (TypeError, ValueError):
                    retry_after = None
        if retry_after is None and response.headers.get("Retry-After"):
            try:
                retry_after = float(response.headers["Retry-After"])
            except ValueError:
                retry_after = None

        message = f"{operation} failed with HTTP {status}"
        if description:
            message = f"{message}: {description}"

        if status == 429 or status >= 500:
            return TransientTransportError(
                message, handle=handle, retry_after=retry_after
            )
        if status == 404 and handle is not None:
            return NotFoundError(message, handle=handle)
        lowered = description.lower()
        if status == 400 and handle is not None and any(
            marker in lowered for marker in _NOT_FOUND_MARKERS
        ):
            return NotFoundError(message, handle=handle)
        return PermanentTransportError(message, handle=handle)
