"""ATXP MCP tool clients over HTTP.

Tools are invoked with a JSON-RPC 2.0 `tools/call` request and answer with a
list of content blocks; the first text block carries the tool's JSON result.
Charges made on behalf of the account are reported by the server under
`result._meta.payments` and forwarded to the `on_payment` callback.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from itertools import count
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from src.clients.base import ClientFactory, FileStoreClient, ImageJobClient, JobState, JobStatus, StoredFile
from src.core.credentials import AtxpAccount
from src.core.errors import ToolCallError
from src.models.events import PaymentEvent

log = structlog.get_logger(__name__)

PaymentCallback = Callable[[PaymentEvent], object]

CREATE_IMAGE_TOOL = "image_create_image_async"
GET_IMAGE_TOOL = "image_get_image_async"
FILESTORE_WRITE_TOOL = "filestore_write"


def _extract_text(result: dict[str, Any]) -> str:
    """Return the first text content block of a tool result."""
    for block in result.get("content") or []:
        if isinstance(block, dict) and block.get("type") == "text":
            return str(block.get("text", ""))
    return ""


def _parse_json_text(text: str, *, tool: str) -> dict[str, Any]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ToolCallError(f"{tool} returned non-JSON content", tool=tool, retryable=False) from e
    if not isinstance(data, dict):
        raise ToolCallError(f"{tool} returned unexpected content", tool=tool, retryable=False)
    return data


class McpToolClient:
    """Calls tools on a single MCP server on behalf of one ATXP account."""

    def __init__(
        self,
        server_url: str,
        account: AtxpAccount,
        *,
        http: httpx.AsyncClient,
        on_payment: PaymentCallback | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self._account = account
        self._http = http
        self._on_payment = on_payment
        self._ids = count(1)

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "tools/call",
            "params": {"name": name, "arguments": arguments},
        }
        headers = {
            "Authorization": f"Bearer {self._account.connection_token}",
            "Accept": "application/json",
        }
        try:
            response = await self._http.post(self.server_url, json=payload, headers=headers)
        except (httpx.HTTPError, TimeoutError, OSError) as e:
            raise ToolCallError(f"{name} request failed: {e}", tool=name) from e

        if response.status_code >= 400:
            # 4xx other than throttling will not fix itself on retry.
            retryable = response.status_code >= 500 or response.status_code == 429
            raise ToolCallError(
                f"{name} returned HTTP {response.status_code}", tool=name, retryable=retryable
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ToolCallError(f"{name} returned an invalid JSON-RPC body", tool=name) from e

        if not isinstance(body, dict):
            raise ToolCallError(f"{name} returned an invalid JSON-RPC body", tool=name)
        if body.get("error"):
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ToolCallError(f"{name} failed: {message}", tool=name, retryable=False)

        result = body.get("result") or {}
        if not isinstance(result, dict) or not isinstance(result.get("_meta") or {}, dict):
            raise ToolCallError(f"{name} returned a malformed tool result", tool=name, retryable=False)
        self._report_payments(result)
        text = _extract_text(result)
        if result.get("isError"):
            raise ToolCallError(f"{name} reported an error: {text or 'no details'}", tool=name, retryable=False)
        return text

    def _report_payments(self, result: dict[str, Any]) -> None:
        if self._on_payment is None:
            return
        meta = result.get("_meta") or {}
        for raw in meta.get("payments") or []:
            if not isinstance(raw, dict):
                continue
            try:
                event = PaymentEvent(
                    account_id=str(raw.get("accountId") or self._account.account_id or ""),
                    resource_url=str(raw.get("resourceUrl") or self.server_url),
                    resource_name=str(raw.get("resourceName") or ""),
                    network=str(raw.get("network") or self._account.network),
                    currency=str(raw.get("currency") or ""),
                    amount=str(raw.get("amount") or "0"),
                    iss=str(raw.get("iss") or ""),
                )
            except ValidationError as e:
                log.warning("payment_event_invalid", server=self.server_url, error=str(e))
                continue
            self._on_payment(event)


class AtxpImageClient(ImageJobClient):
    def __init__(self, tools: McpToolClient) -> None:
        self._tools = tools

    async def create_job(self, prompt: str) -> str:
        text = await self._tools.call_tool(CREATE_IMAGE_TOOL, {"prompt": prompt})
        data = _parse_json_text(text, tool=CREATE_IMAGE_TOOL)
        task_id = data.get("taskId") or data.get("task_id")
        if not task_id:
            raise ToolCallError(f"{CREATE_IMAGE_TOOL} returned no taskId", tool=CREATE_IMAGE_TOOL, retryable=False)
        return str(task_id)

    async def get_job_status(self, external_task_id: str) -> JobStatus:
        text = await self._tools.call_tool(GET_IMAGE_TOOL, {"taskId": external_task_id})
        data = _parse_json_text(text, tool=GET_IMAGE_TOOL)
        return JobStatus(
            status=JobState.parse(data.get("status")),
            url=data.get("url") or None,
            error=data.get("error") or None,
        )


class AtxpFileStoreClient(FileStoreClient):
    def __init__(self, tools: McpToolClient) -> None:
        self._tools = tools

    async def store(self, url: str) -> StoredFile:
        text = await self._tools.call_tool(FILESTORE_WRITE_TOOL, {"sourceUrl": url, "makePublic": True})
        data = _parse_json_text(text, tool=FILESTORE_WRITE_TOOL)
        locator = data.get("url")
        name = data.get("filename") or data.get("fileName")
        if not locator or not name:
            raise ToolCallError(f"{FILESTORE_WRITE_TOOL} returned no file location", tool=FILESTORE_WRITE_TOOL)
        return StoredFile(locator=str(locator), name=str(name))


class AtxpClientFactory(ClientFactory):
    """Builds image + filestore clients that share one pooled HTTP client."""

    def __init__(
        self,
        *,
        image_url: str,
        filestore_url: str,
        timeout_s: float = 30.0,
        on_payment: PaymentCallback | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._image_url = image_url
        self._filestore_url = filestore_url
        self._on_payment = on_payment
        self._http = http or httpx.AsyncClient(timeout=timeout_s)

    def for_connection(self, connection_string: str) -> tuple[AtxpImageClient, AtxpFileStoreClient]:
        account = AtxpAccount.from_connection_string(connection_string)
        image = McpToolClient(self._image_url, account, http=self._http, on_payment=self._on_payment)
        filestore = McpToolClient(self._filestore_url, account, http=self._http, on_payment=self._on_payment)
        return AtxpImageClient(image), AtxpFileStoreClient(filestore)

    async def aclose(self) -> None:
        await self._http.aclose()
