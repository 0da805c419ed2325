"""Gmail adapter — wraps the workspace-mcp Gmail tools behind the RemoteProvider API."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from email.utils import parsedate_to_datetime
from typing import Any

from mcp import ClientSession
from mcp.client.stdio import StdioServerParameters, stdio_client
from mcp.shared.exceptions import MCPError as MCPProtocolError
from mcp.types import TextContent

from mailsync.errors import InvalidError, NotFoundError, UpstreamError
from mailsync.providers.registry import ProviderFactory
from mailsync.providers.types import (
    BodyPart,
    Capabilities,
    Credential,
    ProviderLink,
    RemoteMessage,
)

logger = logging.getLogger(__name__)

#: What the Gmail adapter can do beyond list/get.
GMAIL_CAPABILITIES = Capabilities(
    supports_search=True,
    supports_labels=True,
    supports_threading=True,
)

_DEFAULT_LIST_QUERY = "in:inbox"

# JSON-decoded value from an MCP tool response
_JsonValue = dict[str, Any] | list[Any] | str | None

_NOT_FOUND_PATTERN = re.compile(r"\b404\b|not found|notFound", re.IGNORECASE)


class MCPError(UpstreamError):
    """Raised when a workspace-mcp tool call returns an error."""


class GmailProvider:
    """Thin async Gmail adapter over a long-lived MCP session.

    ``list`` pages ids with ``search_gmail_messages``; ``get`` fetches one
    message with ``get_gmail_message_content``.  Responses may be Gmail-API
    shaped JSON (``payload`` with base64url parts), flat JSON, or the
    server's formatted text blocks; all three map to ``RemoteMessage``.
    Use ``gmail_client()`` to construct and tear down the session.
    """

    def __init__(
        self,
        session: ClientSession,
        user_email: str,
        query: str = _DEFAULT_LIST_QUERY,
    ) -> None:
        self._session = session
        self._user_email = user_email
        self._query = query

    @property
    def session(self) -> ClientSession:
        """The MCP session this adapter calls tools on."""
        return self._session

    # ── RemoteProvider API ─────────────────────────────────────────────────────

    async def get(self, message_id: str) -> RemoteMessage:
        """Return a single message with headers and body parts."""
        try:
            raw = await self._call(
                "get_gmail_message_content",
                {"message_id": message_id, "user_google_email": self._user_email},
            )
        except MCPError as exc:
            if _NOT_FOUND_PATTERN.search(str(exc)):
                raise NotFoundError(f"Gmail message {message_id} not found") from exc
            raise

        if isinstance(raw, dict):
            if "payload" in raw:
                return self._parse_api_message(raw)
            return self._parse_flat_message(raw)
        if isinstance(raw, str):
            messages = self._parse_text_messages(raw)
            if messages:
                return messages[0]
            if _NOT_FOUND_PATTERN.search(raw):
                raise NotFoundError(f"Gmail message {message_id} not found")
            raise MCPError(f"Could not parse message {message_id} from response")
        raise MCPError(f"Unexpected response type for message {message_id}: {type(raw)}")

    async def list(self, page_size: int, continuation: str | None = None) -> list[str]:
        """Return up to page_size message ids, newest first.

        ``continuation`` is a Gmail page token from a previous listing.
        """
        arguments: dict[str, Any] = {
            "query": self._query,
            "page_size": page_size,
            "user_google_email": self._user_email,
        }
        if continuation:
            arguments["page_token"] = continuation
        raw = await self._call("search_gmail_messages", arguments)
        return self._parse_search_ids(raw)[:page_size]

    # ── Internal helpers ───────────────────────────────────────────────────────

    async def _call(self, tool_name: str, arguments: dict[str, Any]) -> _JsonValue:
        """Call a workspace-mcp tool and return the parsed JSON result.

        Raises MCPError if the tool returns an error or the transport fails.
        Plain-string responses are returned as-is.
        """
        logger.debug("MCP → %s %s", tool_name, arguments)
        try:
            result = await self._session.call_tool(tool_name, arguments)
        except MCPProtocolError as exc:
            # JSON-RPC errors and request timeouts raised by the SDK itself.
            raise MCPError(f"Tool {tool_name!r} failed: {exc} (code {exc.code})") from exc
        except (OSError, RuntimeError, asyncio.TimeoutError) as exc:
            raise MCPError(f"Tool {tool_name!r} transport failure: {exc}") from exc

        # Extract text from the first TextContent block
        text: str | None = None
        for item in result.content or []:
            if isinstance(item, TextContent):
                text = item.text
                break

        if result.is_error:
            raise MCPError(f"Tool {tool_name!r} returned error: {text or result.content}")

        if text is None:
            return None

        try:
            parsed: _JsonValue = json.loads(text)
            return parsed
        except json.JSONDecodeError:
            return text  # the server formats most replies as text

    @staticmethod
    def _parse_search_ids(raw: _JsonValue) -> list[str]:
        """Extract message IDs from a search response (text or JSON)."""
        if isinstance(raw, dict):
            raw = raw.get("messages", [])
        if isinstance(raw, list):
            return [
                str(m.get("message_id") or m.get("id"))
                for m in raw
                if isinstance(m, dict) and (m.get("message_id") or m.get("id"))
            ]
        if isinstance(raw, str):
            return re.findall(r"Message ID:\s*(\S+)", raw)
        return []

    @staticmethod
    def _parse_api_message(data: dict[str, Any]) -> RemoteMessage:
        """Map a Gmail API ``users.messages.get`` resource to a RemoteMessage."""
        payload = data.get("payload") or {}
        headers = [
            (str(h.get("name", "")), str(h.get("value", "")))
            for h in payload.get("headers", [])
            if isinstance(h, dict)
        ]
        parts: list[BodyPart] = []
        _collect_parts(payload, parts)
        return RemoteMessage(
            id=str(data.get("id", "")),
            thread_id=str(data.get("threadId", "")),
            headers=headers,
            snippet=str(data.get("snippet", "")),
            body_parts=parts,
            internal_date=_to_int(data.get("internalDate")),
            revision=str(data.get("historyId", "")),
            raw_payload=data,
        )

    @staticmethod
    def _parse_flat_message(data: dict[str, Any]) -> RemoteMessage:
        """Map a flat MCP message dict (legacy JSON) to a RemoteMessage."""
        headers = [
            (name, str(data[key]))
            for name, key in (("Subject", "subject"), ("From", "from"), ("To", "to"), ("Date", "date"))
            if data.get(key)
        ]
        body = str(data.get("body") or "")
        internal_date = _to_int(data.get("internal_date")) or _date_header_to_ms(
            str(data.get("date", ""))
        )
        return RemoteMessage(
            id=str(data.get("message_id", data.get("id", ""))),
            thread_id=str(data.get("thread_id", "")),
            headers=headers,
            snippet=str(data.get("snippet", "")),
            body_parts=[BodyPart("text/plain", body)] if body else [],
            internal_date=internal_date,
            revision=str(data.get("history_id", "")),
            raw_payload=data,
        )

    @staticmethod
    def _parse_text_messages(raw: str) -> list[RemoteMessage]:
        """Parse one or more messages from the server's text format.

        workspace-mcp returns text blocks like::

            Message ID: abc123
            Subject: Hello
            From: alice@example.com
            Date: Mon, 1 Jan 2026 12:00:00 +0000
            To: <bob@example.com>

            Body text follows after a blank line...

        The text form has no internalDate, so it is derived from Date.
        """
        messages: list[RemoteMessage] = []
        blocks = re.split(r"(?=^Message ID:)", raw, flags=re.MULTILINE)
        for block in blocks:
            block = block.strip()
            if not block.startswith("Message ID:"):
                continue

            def _header(name: str) -> str:
                m = re.search(rf"^{name}:\s*(.+)$", block, re.MULTILINE)
                return m.group(1).strip() if m else ""

            body = ""
            header_end = re.search(r"\n\s*\n", block)
            if header_end:
                body = block[header_end.end():].strip()

            date = _header("Date")
            to_raw = _header("To")
            headers = [
                ("Subject", _header("Subject")),
                ("From", _header("From")),
                ("To", re.sub(r"^<|>$", "", to_raw) if to_raw else ""),
                ("Date", date),
            ]
            messages.append(RemoteMessage(
                id=_header("Message ID"),
                thread_id=_header("Thread ID"),
                headers=[(k, v) for k, v in headers if v],
                snippet=body[:200],
                body_parts=[BodyPart("text/plain", body)] if body else [],
                internal_date=_date_header_to_ms(date),
                raw_payload={"text": block},
            ))
        return messages


def _collect_parts(part: dict[str, Any], out: list[BodyPart]) -> None:
    """Depth-first walk of a Gmail MIME tree, keeping inline text parts."""
    mime_type = str(part.get("mimeType", ""))
    data = (part.get("body") or {}).get("data")
    if mime_type in ("text/plain", "text/html") and data:
        out.append(BodyPart(mime_type, str(data), "base64url"))
    for child in part.get("parts") or []:
        if isinstance(child, dict):
            _collect_parts(child, out)


def _to_int(value: object) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0


def _date_header_to_ms(date: str) -> int:
    """RFC 2822 Date header → epoch ms; 0 when missing or unparseable."""
    if not date:
        return 0
    try:
        return int(parsedate_to_datetime(date).timestamp() * 1000)
    except (TypeError, ValueError):
        logger.debug("Unparseable Date header %r", date)
        return 0


def gmail_provider_factory(session: ClientSession) -> ProviderFactory:
    """Registry factory building a GmailProvider per linked account.

    The MCP server owns the OAuth exchange, so the credential only gates
    whether the caller may sync at all; the account email comes from the
    link config.
    """

    def _factory(link: ProviderLink, credential: Credential) -> GmailProvider:
        email = str(link.config.get("email", ""))
        if not email:
            raise InvalidError(f"Gmail link for user {link.user_id} has no 'email' config")
        return GmailProvider(session, email)

    return _factory


_MCP_CONNECT_RETRIES = 5
_MCP_RETRY_DELAY_SECONDS = 3


@asynccontextmanager
async def gmail_client(
    *,
    user_email: str | None = None,
    server_command: str | None = None,
) -> AsyncIterator[GmailProvider]:
    """Async context manager that yields a connected GmailProvider.

    Spawns ``workspace-mcp`` as a subprocess via the MCP stdio transport,
    initialises the session, and tears everything down cleanly on exit.
    Retries startup because ``workspace-mcp`` binds a port for its internal
    OAuth server and crashes if a previous instance still holds it.

    Args:
        user_email: Google account email. Falls back to USER_GOOGLE_EMAIL env var.
        server_command: Command used to launch the MCP server.
                        Defaults to GMAIL_MCP_SERVER_PATH env var (or "uvx").

    Example::

        async with gmail_client() as gmail:
            ids = await gmail.list(20)
    """
    email = user_email or os.environ.get("USER_GOOGLE_EMAIL", "")
    if not email:
        raise ValueError(
            "user_email must be provided or USER_GOOGLE_EMAIL env var must be set"
        )

    cmd = server_command or os.environ.get("GMAIL_MCP_SERVER_PATH", "uvx")
    _cmd_basename = os.path.basename(cmd).lower().replace(".exe", "")
    args = ["workspace-mcp", "--tools", "gmail"] if _cmd_basename == "uvx" else []

    server_params = StdioServerParameters(
        command=cmd,
        args=args,
        env={
            **os.environ,
            "USER_GOOGLE_EMAIL": email,
            "MCP_SINGLE_USER_MODE": "1",
            "WORKSPACE_MCP_PORT": os.environ.get("WORKSPACE_MCP_PORT", "18741"),
            "PYTHONUTF8": "1",
        },
    )

    last_err: BaseException | None = None
    connected = False
    for attempt in range(1, _MCP_CONNECT_RETRIES + 1):
        try:
            async with stdio_client(server_params) as (read, write):
                async with ClientSession(read, write) as session:
                    await session.initialize()
                    connected = True
                    logger.info("Gmail MCP client connected (%s)", email)
                    yield GmailProvider(session, email)
                    return
        except (BaseExceptionGroup, OSError, MCPProtocolError) as exc:
            last_err = exc
            # Errors raised by the caller after connecting are not retried.
            if connected or attempt == _MCP_CONNECT_RETRIES:
                raise
            logger.warning(
                "MCP server connection failed (attempt %d/%d) — retrying in %ds",
                attempt,
                _MCP_CONNECT_RETRIES,
                _MCP_RETRY_DELAY_SECONDS,
            )
            await asyncio.sleep(_MCP_RETRY_DELAY_SECONDS)

    raise MCPError(f"Failed to connect after {_MCP_CONNECT_RETRIES} attempts") from last_err
