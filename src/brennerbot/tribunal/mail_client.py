"""
Agent Mail client.

Thin async wrapper over the Agent Mail JSON-RPC endpoint. Every operation
is a ``tools/call`` request; results are parsed into pydantic models.
"""

import json
import logging
from typing import Any
from urllib.parse import quote, urlencode
from uuid import uuid4

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class AgentMailError(RuntimeError):
    """Raised when Agent Mail is unreachable or a tool call fails."""

    def __init__(self, message: str, code: str = "SERVER_ERROR") -> None:
        super().__init__(message)
        self.code = code


class AgentMailMessage(BaseModel):
    """A message as returned by Agent Mail."""

    model_config = ConfigDict(populate_by_name=True)

    id: int
    thread_id: str | None = None
    subject: str = ""
    body_md: str = ""
    sender: str | None = Field(default=None, alias="from")
    reply_to: int | None = None
    created_ts: str | None = None


class AgentMailThread(BaseModel):
    """All messages of a thread, oldest first."""

    project: str = ""
    thread_id: str
    messages: list[AgentMailMessage] = Field(default_factory=list)


class SendResult(BaseModel):
    """Outcome of ``send_message``: one delivery per recipient."""

    message_ids: list[int] = Field(default_factory=list)

    @property
    def message_id(self) -> int | None:
        return self.message_ids[0] if self.message_ids else None


class AgentMailClient:
    """
    Client for the Agent Mail messaging service.

    Only the mailbox surface is used: sending a message, reading a thread
    and reading an inbox.
    """

    def __init__(
        self,
        endpoint: str,
        token: str = "",
        timeout: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            endpoint: JSON-RPC endpoint URL.
            token: Bearer token; empty disables the Authorization header.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self._endpoint = endpoint
        self._token = token
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self._token:
                headers["Authorization"] = f"Bearer {self._token}"
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "AgentMailClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _rpc(self, method: str, params: dict[str, Any], label: str) -> Any:
        """
        Send one JSON-RPC request and return its ``result`` member.

        Raises:
            AgentMailError: On transport failures, HTTP errors or RPC errors.
        """
        client = await self._get_client()
        payload = {
            "jsonrpc": "2.0",
            "id": uuid4().hex,
            "method": method,
            "params": params,
        }
        logger.debug(f"Agent Mail {method}: {label}")

        try:
            response = await client.post(self._endpoint, json=payload)
        except httpx.HTTPError as e:
            logger.warning(f"Agent Mail request failed ({label}): {e}")
            raise AgentMailError(f"Agent Mail unreachable: {e}", code="NETWORK_ERROR") from e

        if response.status_code >= 400:
            logger.warning(f"Agent Mail returned HTTP {response.status_code} ({label})")
            raise AgentMailError(f"Agent Mail HTTP {response.status_code} for {label}")

        try:
            body = response.json()
        except ValueError as e:
            raise AgentMailError(f"Agent Mail returned invalid JSON for {label}") from e

        if body.get("error"):
            error = body["error"]
            message = error.get("message", "unknown error") if isinstance(error, dict) else str(error)
            raise AgentMailError(f"Tool error in {label}: {message}", code="TOOL_ERROR")

        return body.get("result")

    @staticmethod
    def _decode_text(text: str) -> Any:
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        """
        Invoke an Agent Mail tool.

        Args:
            name: Tool name (e.g. ``send_message``).
            arguments: Tool arguments.

        Returns:
            The decoded tool result.

        Raises:
            AgentMailError: On transport failures, HTTP errors or tool errors.
        """
        result = await self._rpc("tools/call", {"name": name, "arguments": arguments}, name)
        if not isinstance(result, dict):
            return result
        if result.get("isError"):
            raise AgentMailError(f"Tool error in {name}: {result.get('content')}", code="TOOL_ERROR")
        if "structuredContent" in result:
            return result["structuredContent"]
        for block in result.get("content") or []:
            if isinstance(block, dict) and block.get("type") == "text":
                return self._decode_text(block.get("text", ""))
        return result

    async def read_resource(self, uri: str) -> Any:
        """Read an Agent Mail resource and decode its first text content."""
        result = await self._rpc("resources/read", {"uri": uri}, uri)
        if not isinstance(result, dict):
            return result
        for block in result.get("contents") or []:
            if isinstance(block, dict) and "text" in block:
                return self._decode_text(block["text"])
        return result

    async def send_message(
        self,
        *,
        project_key: str,
        sender_name: str,
        to: list[str],
        subject: str,
        body_md: str,
        thread_id: str | None = None,
    ) -> SendResult:
        """
        Send a message to one or more agents.

        Returns:
            The ids of the delivered messages.
        """
        if not to:
            raise AgentMailError("send_message requires at least one recipient", code="VALIDATION_ERROR")
        arguments: dict[str, Any] = {
            "project_key": project_key,
            "sender_name": sender_name,
            "to": to,
            "subject": subject,
            "body_md": body_md,
        }
        if thread_id:
            arguments["thread_id"] = thread_id

        result = await self.call_tool("send_message", arguments)
        deliveries = result.get("deliveries", []) if isinstance(result, dict) else []
        message_ids = [
            d["payload"]["id"]
            for d in deliveries
            if isinstance(d, dict) and isinstance(d.get("payload"), dict) and "id" in d["payload"]
        ]
        return SendResult(message_ids=message_ids)

    async def read_thread(self, *, project_key: str, thread_id: str) -> AgentMailThread:
        """Read every message of a thread, bodies included."""
        query = urlencode({"project": project_key, "include_bodies": "true"})
        result = await self.read_resource(f"resource://thread/{quote(thread_id, safe='')}?{query}")
        if not isinstance(result, dict):
            raise AgentMailError(f"Malformed thread {thread_id!r}: expected an object", code="TOOL_ERROR")
        try:
            return AgentMailThread.model_validate({"project": project_key, "thread_id": thread_id, **result})
        except ValidationError as e:
            raise AgentMailError(f"Malformed thread {thread_id!r}: {e}", code="TOOL_ERROR") from e

    async def fetch_inbox(
        self,
        *,
        project_key: str,
        agent_name: str,
        limit: int = 20,
        include_bodies: bool = True,
    ) -> list[AgentMailMessage]:
        """Fetch recent messages addressed to ``agent_name``."""
        result = await self.call_tool(
            "fetch_inbox",
            {
                "project_key": project_key,
                "agent_name": agent_name,
                "limit": limit,
                "include_bodies": include_bodies,
            },
        )
        if isinstance(result, dict):
            items = result.get("messages", result.get("result", []))
        else:
            items = result or []
        try:
            return [AgentMailMessage.model_validate(item) for item in items]
        except ValidationError as e:
            raise AgentMailError(f"Malformed inbox for {agent_name!r}: {e}", code="TOOL_ERROR") from e
