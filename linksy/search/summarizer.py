"""
Linksy Conversational Summarizer

Writes the short message shown above the provider cards.

With providers that carry context cards the LLM writes the message; if the
call fails or returns nothing, a deterministic template is used instead.
The zero-provider message never involves the LLM.

Never raises: summarization must not turn a successful search into an error.
"""

from typing import Any, Optional

import structlog
from openai import AsyncOpenAI

from linksy.config import settings

log = structlog.get_logger(__name__)

CONTEXT_CARD_SEPARATOR = "\n\n---\n\n"

SYSTEM_PROMPT = (
    "You are a helpful community resource navigator. Based on the user's query "
    "and the available providers shown below, write a brief, warm conversational "
    "response (2-3 sentences max). Do NOT list the providers, they are shown in "
    "cards below your message. Focus on acknowledging what the user needs and "
    "noting what types of help are available."
)


def no_providers_message(query: str, has_location: bool) -> str:
    """Apology used when the search produced no providers."""
    if has_location:
        return (
            f'I couldn\'t find any providers for "{query}" near your location. '
            "Try expanding your search or contact 211 for additional resources."
        )
    return (
        f'I couldn\'t find any providers for "{query}". You might want to try '
        "describing your need differently, or contact 211 for additional resources."
    )


def no_needs_message(query: str) -> str:
    """Message used when no need matched the query."""
    return (
        f'I couldn\'t find any matching services for "{query}". '
        "Could you try describing your need in a different way?"
    )


def _location_note(has_location: bool, radius_miles: Optional[int]) -> str:
    if has_location and radius_miles:
        return f"Results are sorted by distance within {radius_miles} miles."
    if not has_location:
        return "Location not provided, so results are not sorted by distance."
    return ""


def template_message(
    needs: list[dict[str, Any]],
    provider_count: int,
    has_location: bool,
    radius_miles: Optional[int],
) -> str:
    """Deterministic summary naming up to three matched needs."""
    need_names = ", ".join(n["name"] for n in needs[:3])
    noun = "organization" if provider_count == 1 else "organizations"
    message = f"I found {provider_count} {noun} that can help with {need_names}. "

    if has_location and radius_miles:
        message += f"Showing the closest results within {radius_miles} miles:"
    elif has_location:
        message += "No providers were found nearby, so here are the closest matches from a wider area:"
    else:
        message += "Here are some options (add your location to see results sorted by distance):"
    return message


async def try_llm_message(
    query: str,
    providers: list[dict[str, Any]],
    has_location: bool,
    radius_miles: Optional[int],
    client: Optional[AsyncOpenAI],
) -> Optional[str]:
    """
    Ask the chat model for a summary over the providers' context cards.

    Returns
    -------
    Optional[str]
        The trimmed completion, or ``None`` when there are no context cards,
        no client, the call fails, or the model returns an empty message.
    """
    cards = [p["llm_context_card"] for p in providers if p.get("llm_context_card")]
    if not cards or client is None:
        return None

    user_msg = (
        f'User query: "{query}"\n\n'
        f"Available providers:\n\n{CONTEXT_CARD_SEPARATOR.join(cards)}\n\n"
        f"{_location_note(has_location, radius_miles)}"
    )

    try:
        response = await client.chat.completions.create(
            model=settings.SUMMARY_LLM_MODEL,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_msg},
            ],
            temperature=settings.SUMMARY_LLM_TEMPERATURE,
            max_tokens=settings.SUMMARY_LLM_MAX_TOKENS,
        )
        content = (response.choices[0].message.content or "").strip()
    except Exception as exc:
        log.warning("summary_llm_call_failed", error=str(exc))
        return None

    if not content:
        log.warning("summary_llm_empty_response")
        return None
    return content


async def summarize(
    query: str,
    needs: list[dict[str, Any]],
    providers: list[dict[str, Any]],
    has_location: bool,
    radius_miles: Optional[int],
    client: Optional[AsyncOpenAI],
) -> str:
    """Compose the conversational message for the top providers."""
    if not providers:
        return no_providers_message(query, has_location)

    message = await try_llm_message(query, providers, has_location, radius_miles, client)
    if message is not None:
        return message
    return template_message(needs, len(providers), has_location, radius_miles)
