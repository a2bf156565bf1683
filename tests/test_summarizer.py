"""
Tests for the conversational summarizer.

The LLM path is exercised with an AsyncMock client; every failure mode
must fall back to the template message.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from linksy.search.summarizer import (
    no_needs_message,
    no_providers_message,
    summarize,
    template_message,
)

HOUSING = [{"id": "n1", "name": "Housing Assistance"}]


def _client(content=None, error=None):
    client = MagicMock()
    if error is not None:
        client.chat.completions.create = AsyncMock(side_effect=error)
    else:
        client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        ))
    return client


def _providers(n, card=None):
    return [{"id": str(i), "name": f"P{i}", "llm_context_card": card} for i in range(n)]


class TestDeterministicMessages:
    def test_no_needs_message_contains_query(self):
        assert '"pay my rent"' in no_needs_message("pay my rent")

    def test_no_providers_with_location(self):
        message = no_providers_message("rent", has_location=True)
        assert "near your location" in message
        assert "211" in message

    def test_no_providers_without_location(self):
        message = no_providers_message("rent", has_location=False)
        assert "near your location" not in message
        assert "describing your need differently" in message

    def test_template_no_location(self):
        assert template_message(HOUSING, 2, False, None) == (
            "I found 2 organizations that can help with Housing Assistance. "
            "Here are some options (add your location to see results sorted by distance):"
        )

    def test_template_singular_with_radius(self):
        assert template_message(HOUSING, 1, True, 25) == (
            "I found 1 organization that can help with Housing Assistance. "
            "Showing the closest results within 25 miles:"
        )

    def test_template_location_without_radius(self):
        assert template_message(HOUSING, 3, True, None).endswith(
            "No providers were found nearby, so here are the closest matches from a wider area:"
        )

    def test_template_names_at_most_three_needs(self):
        needs = [{"name": n} for n in ("A", "B", "C", "D")]
        assert "help with A, B, C." in template_message(needs, 1, False, None)


class TestSummarize:
    @pytest.mark.asyncio
    async def test_zero_providers_never_calls_llm(self):
        client = _client("unused")
        message = await summarize("rent", HOUSING, [], False, None, client)
        assert message.startswith("I couldn't find any providers")
        client.chat.completions.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_context_cards_uses_template(self):
        client = _client("unused")
        message = await summarize("rent", HOUSING, _providers(2), False, None, client)
        assert message.startswith("I found 2 organizations")
        client.chat.completions.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_llm_message_used(self):
        client = _client("  Here is some help with rent.  ")
        message = await summarize("rent", HOUSING, _providers(2, card="## P"), True, 10, client)
        assert message == "Here is some help with rent."

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["max_tokens"] == 150
        assert kwargs["temperature"] == 0.5
        user_msg = kwargs["messages"][1]["content"]
        assert "## P\n\n---\n\n## P" in user_msg
        assert "within 10 miles" in user_msg

    @pytest.mark.asyncio
    async def test_llm_error_falls_back(self):
        client = _client(error=RuntimeError("timeout"))
        message = await summarize("rent", HOUSING, _providers(1, card="## P"), False, None, client)
        assert message.startswith("I found 1 organization that can help with Housing Assistance.")

    @pytest.mark.asyncio
    async def test_empty_llm_message_falls_back(self):
        client = _client("   ")
        message = await summarize("rent", HOUSING, _providers(1, card="## P"), False, None, client)
        assert message.startswith("I found 1 organization")

    @pytest.mark.asyncio
    async def test_no_client_falls_back(self):
        message = await summarize("rent", HOUSING, _providers(1, card="## P"), False, None, None)
        assert message.startswith("I found 1 organization")
