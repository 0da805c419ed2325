"""Tests for GmailProvider — all MCP calls are mocked."""

import base64
import json
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from mcp.shared.exceptions import MCPError as MCPProtocolError

from mailsync.errors import InvalidError, NotFoundError, UpstreamError
from mailsync.providers.gmail_client import (
    GmailProvider,
    MCPError,
    gmail_provider_factory,
)
from mailsync.providers.types import Credential, ProviderLink, ProviderType, RemoteProvider


# ── Helpers ────────────────────────────────────────────────────────────────────


def _tool_result(data: Any, *, is_error: bool = False) -> MagicMock:
    """Build a mock MCP CallToolResult whose first content block contains data."""
    content_block = MagicMock()
    # Simulate a TextContent block
    from mcp.types import TextContent

    content_block.__class__ = TextContent
    content_block.text = json.dumps(data) if not isinstance(data, str) else data

    result = MagicMock()
    result.is_error = is_error
    result.content = [content_block]
    return result


def _b64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


API_MESSAGE = {
    "id": "18c2f0a",
    "threadId": "18c2f00",
    "snippet": "Quarterly numbers...",
    "historyId": "98765",
    "internalDate": "1772355600000",
    "payload": {
        "mimeType": "multipart/alternative",
        "headers": [
            {"name": "Subject", "value": "Q1 budget"},
            {"name": "From", "value": "alice@example.com"},
            {"name": "To", "value": "bob@example.com"},
            {"name": "Date", "value": "Sun, 1 Mar 2026 09:00:00 +0000"},
        ],
        "parts": [
            {"mimeType": "text/plain", "body": {"data": _b64url("Plain body")}},
            {
                "mimeType": "multipart/related",
                "parts": [{"mimeType": "text/html", "body": {"data": _b64url("<b>Html</b>")}}],
            },
            {"mimeType": "application/pdf", "body": {"attachmentId": "att_1"}},
        ],
    },
}

TEXT_MESSAGE = """Message ID: txt_001
Subject: Hello
From: alice@example.com
Date: Sun, 1 Mar 2026 09:00:00 +0000
To: <bob@example.com>

Body text follows after a blank line."""


# ── Fixtures ───────────────────────────────────────────────────────────────────


@pytest.fixture
def session() -> MagicMock:
    s = MagicMock()
    s.call_tool = AsyncMock()
    return s


@pytest.fixture
def gmail(session: MagicMock) -> GmailProvider:
    return GmailProvider(session, "test@example.com")


# ── get ────────────────────────────────────────────────────────────────────────


class TestGet:
    def test_satisfies_remote_provider(self, gmail: GmailProvider) -> None:
        assert isinstance(gmail, RemoteProvider)

    async def test_api_shaped_response(self, gmail: GmailProvider, session: MagicMock) -> None:
        session.call_tool.return_value = _tool_result(API_MESSAGE)

        msg = await gmail.get("18c2f0a")

        assert msg.id == "18c2f0a"
        assert msg.thread_id == "18c2f00"
        assert msg.header("subject") == "Q1 budget"
        assert msg.internal_date == 1_772_355_600_000
        assert msg.revision == "98765"
        assert [(p.mime_type, p.encoding) for p in msg.body_parts] == [
            ("text/plain", "base64url"),
            ("text/html", "base64url"),
        ]
        assert msg.raw_payload == API_MESSAGE
        session.call_tool.assert_awaited_once_with(
            "get_gmail_message_content",
            {"message_id": "18c2f0a", "user_google_email": "test@example.com"},
        )

    async def test_flat_json_response(self, gmail: GmailProvider, session: MagicMock) -> None:
        session.call_tool.return_value = _tool_result({
            "message_id": "msg_001",
            "thread_id": "thread_001",
            "from": "alice@example.com",
            "subject": "Budget review",
            "body": "Please review.",
            "internal_date": 1234,
        })

        msg = await gmail.get("msg_001")

        assert msg.id == "msg_001"
        assert msg.header("From") == "alice@example.com"
        assert msg.header("To") == ""
        assert msg.internal_date == 1234
        assert msg.body_parts[0].data == "Please review."
        assert msg.body_parts[0].encoding is None

    async def test_text_response(self, gmail: GmailProvider, session: MagicMock) -> None:
        session.call_tool.return_value = _tool_result(TEXT_MESSAGE)

        msg = await gmail.get("txt_001")

        expected_ms = int(datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc).timestamp() * 1000)
        assert msg.id == "txt_001"
        assert msg.header("To") == "bob@example.com"
        assert msg.internal_date == expected_ms
        assert msg.body_parts[0].data == "Body text follows after a blank line."

    async def test_error_reply_with_404_is_not_found(
        self, gmail: GmailProvider, session: MagicMock
    ) -> None:
        session.call_tool.return_value = _tool_result("HttpError 404: Requested entity was not found", is_error=True)

        with pytest.raises(NotFoundError):
            await gmail.get("gone")

    async def test_other_error_reply_is_upstream(
        self, gmail: GmailProvider, session: MagicMock
    ) -> None:
        session.call_tool.return_value = _tool_result("HttpError 500: backend", is_error=True)

        with pytest.raises(MCPError) as exc_info:
            await gmail.get("m")
        assert isinstance(exc_info.value, UpstreamError)
        assert not isinstance(exc_info.value, NotFoundError)

    async def test_transport_failure_is_upstream(
        self, gmail: GmailProvider, session: MagicMock
    ) -> None:
        session.call_tool.side_effect = OSError("pipe closed")

        with pytest.raises(MCPError):
            await gmail.get("m")

    async def test_sdk_protocol_error_is_upstream(
        self, gmail: GmailProvider, session: MagicMock
    ) -> None:
        session.call_tool.side_effect = MCPProtocolError(408, "Timed out")

        with pytest.raises(MCPError) as exc_info:
            await gmail.get("abc")
        assert isinstance(exc_info.value, UpstreamError)
        assert isinstance(exc_info.value.__cause__, MCPProtocolError)

    async def test_sdk_protocol_error_not_found(
        self, gmail: GmailProvider, session: MagicMock
    ) -> None:
        session.call_tool.side_effect = MCPProtocolError(-32603, "Requested entity was not found")

        with pytest.raises(NotFoundError):
            await gmail.get("gone")

    async def test_unparseable_text_raises(self, gmail: GmailProvider, session: MagicMock) -> None:
        session.call_tool.return_value = _tool_result("something unexpected")

        with pytest.raises(MCPError):
            await gmail.get("m")


# ── list ───────────────────────────────────────────────────────────────────────


class TestList:
    async def test_json_list_of_ids(self, gmail: GmailProvider, session: MagicMock) -> None:
        session.call_tool.return_value = _tool_result([
            {"message_id": "id_1"},
            {"id": "id_2"},
            {"subject": "no id"},
        ])

        assert await gmail.list(10) == ["id_1", "id_2"]

    async def test_dict_with_messages(self, gmail: GmailProvider, session: MagicMock) -> None:
        session.call_tool.return_value = _tool_result({"messages": [{"id": "a"}, {"id": "b"}]})
        assert await gmail.list(10) == ["a", "b"]

    async def test_text_listing(self, gmail: GmailProvider, session: MagicMock) -> None:
        session.call_tool.return_value = _tool_result(
            "Found 2 messages:\nMessage ID: abc\nSubject: x\n\nMessage ID: def\nSubject: y"
        )
        assert await gmail.list(10) == ["abc", "def"]

    async def test_truncates_to_page_size(self, gmail: GmailProvider, session: MagicMock) -> None:
        session.call_tool.return_value = _tool_result([{"id": str(i)} for i in range(5)])
        assert await gmail.list(3) == ["0", "1", "2"]

    async def test_sends_query_and_page_token(self, gmail: GmailProvider, session: MagicMock) -> None:
        session.call_tool.return_value = _tool_result([])

        await gmail.list(25, "next_tok")

        session.call_tool.assert_awaited_once_with(
            "search_gmail_messages",
            {
                "query": "in:inbox",
                "page_size": 25,
                "user_google_email": "test@example.com",
                "page_token": "next_tok",
            },
        )

    async def test_empty_content_is_empty_list(self, gmail: GmailProvider, session: MagicMock) -> None:
        result = MagicMock()
        result.is_error = False
        result.content = []
        session.call_tool.return_value = result

        assert await gmail.list(10) == []


# ── Factory ────────────────────────────────────────────────────────────────────


class TestFactory:
    def test_builds_provider_for_link_email(self, session: MagicMock) -> None:
        factory = gmail_provider_factory(session)
        link = ProviderLink("u1", ProviderType.GMAIL, {"email": "me@example.com"})

        provider = factory(link, Credential("tok"))

        assert isinstance(provider, GmailProvider)
        assert provider._user_email == "me@example.com"

    def test_link_without_email_raises(self, session: MagicMock) -> None:
        factory = gmail_provider_factory(session)
        with pytest.raises(InvalidError):
            factory(ProviderLink("u1", ProviderType.GMAIL), Credential("tok"))
