"""
Tests for the Command Injection Gateway
=======================================
"""

import pytest

from termwarden.injection import CommandInjectionGateway, normalize_handle


class TestNormalizeHandle:
    @pytest.mark.parametrize("raw, expected", [
        ("tw-a", "tw-a"),
        ("  tw-a\n", "tw-a"),
        ("=tw-a", "tw-a"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_handle(raw) == expected


class TestInjectCommand:
    @pytest.mark.asyncio
    async def test_success_sends_literal_keys_and_enter(self, gateway, transport):
        result = await gateway.inject_command("tw-a", "npm test")

        assert result.success is True
        assert result.error is None
        assert result.session_id == "tw-a"
        assert result.correlation_id
        assert transport.sent == [("tw-a", "npm test", True, True)]

    @pytest.mark.asyncio
    async def test_without_enter(self, gateway, transport):
        await gateway.inject_command("tw-a", "partial", press_enter=False)
        assert transport.sent == [("tw-a", "partial", False, True)]

    @pytest.mark.asyncio
    async def test_uses_given_correlation_id(self, gateway):
        result = await gateway.inject_command("tw-a", "ls", correlation_id="audit-1")
        assert result.correlation_id == "audit-1"

    @pytest.mark.asyncio
    async def test_generates_fresh_correlation_ids(self, gateway):
        first = await gateway.inject_command("tw-a", "ls")
        second = await gateway.inject_command("tw-a", "ls")
        assert first.correlation_id != second.correlation_id

    @pytest.mark.asyncio
    async def test_dead_session_returns_failure(self, gateway, transport):
        result = await gateway.inject_command("tw-gone", "ls")

        assert result.success is False
        assert "tw-gone" in result.error
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_unreachable_transport_returns_failure(self, gateway, transport):
        transport.unreachable.add("tw-a")

        result = await gateway.inject_command("tw-a", "ls")

        assert result.success is False
        assert result.error

    @pytest.mark.asyncio
    async def test_normalizes_handle(self, gateway, transport):
        result = await gateway.inject_command(" =tw-a ", "ls")
        assert result.session_id == "tw-a"
        assert transport.sent[0][0] == "tw-a"

    def test_result_to_dict(self):
        from termwarden.injection import InjectionResult

        data = InjectionResult(success=True, session_id="s", correlation_id="c").to_dict()
        assert data["success"] is True
        assert data["error"] is None
        assert "timestamp" in data


class TestControlChars:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("spelling, key", [
        ("C-c", "C-c"),
        ("Ctrl-C", "C-c"),
        ("ctrl+d", "C-d"),
        ("^Z", "C-z"),
    ])
    async def test_supported_spellings(self, gateway, transport, spelling, key):
        assert await gateway.send_control_char("tw-a", spelling) is True
        assert transport.sent == [("tw-a", key, False, False)]

    @pytest.mark.asyncio
    async def test_unsupported_character_is_refused(self, gateway, transport):
        assert await gateway.send_control_char("tw-a", "C-x") is False
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_dead_session_returns_false(self, gateway):
        assert await gateway.send_control_char("tw-gone", "C-c") is False

    @pytest.mark.asyncio
    async def test_transport_error_returns_false(self, gateway, transport):
        transport.unreachable.add("tw-a")
        assert await gateway.send_control_char("tw-a", "C-c") is False


class TestProbes:
    @pytest.mark.asyncio
    async def test_is_session_ready(self, gateway, transport):
        assert await gateway.is_session_ready("tw-a") is True
        assert await gateway.is_session_ready("tw-gone") is False
        transport.unreachable.add("tw-b")
        assert await gateway.is_session_ready("tw-b") is False

    @pytest.mark.asyncio
    async def test_get_current_pane_content(self, gateway, transport):
        transport.add_session("tw-a", "line 1\nline 2")
        assert await gateway.get_current_pane_content("tw-a") == "line 1\nline 2"
        assert await gateway.get_current_pane_content("tw-gone") is None

    def test_validate_command_uses_configured_ceiling(self, transport):
        gateway = CommandInjectionGateway(transport, max_command_length=4)
        assert gateway.validate_command("ls").valid is True
        assert gateway.validate_command("ls -la").valid is False
