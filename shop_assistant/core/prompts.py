"""Prompt assembly for retrieval-augmented replies."""

from typing import Dict, List, Sequence

from .catalog import CatalogItem
from .session import Role, Turn

SYSTEM_INSTRUCTIONS = """You are the shopping assistant of an online store that sells laptops, PCs and accessories.
- Answer in a friendly, professional tone.
- Use the product information provided to give accurate advice.
- When the customer asks about a specific need, recommend suitable products from the list.
- If no relevant product information is available, ask follow-up questions to understand the need.
- Always finish with a question that keeps the conversation going."""

NO_CONTEXT_TEXT = "No related products were found."

WELCOME_MESSAGE = (
    "Hello! I'm the store's AI assistant. I can help you find the right laptop or PC. "
    "What are you looking for?"
)

APOLOGY_MESSAGE = (
    "Sorry, I can't answer right now because the assistant service is unavailable. "
    "Please try sending your message again in a moment."
)

DESCRIPTION_PREVIEW_CHARS = 100


def format_price(minor_units: int) -> str:
    """Render an integer minor-unit price with thousands separators."""
    return f"{minor_units:,}"


def format_context(items: Sequence[CatalogItem]) -> str:
    """Serialize retrieved items into the context block of the prompt."""
    if not items:
        return NO_CONTEXT_TEXT
    lines = []
    for item in items:
        line = f"- [{item.id}] {item.name} ({item.brand}) - {item.category} - {format_price(item.price)}"
        if item.description:
            line += f" - {item.description[:DESCRIPTION_PREVIEW_CHARS]}"
        lines.append(line)
    return "\n".join(lines)


def build_messages(
    items: Sequence[CatalogItem],
    history: Sequence[Turn],
    system_instructions: str = SYSTEM_INSTRUCTIONS
) -> List[Dict[str, str]]:
    """Build chat messages: system instructions, product context, history.

    ``history`` is the session's retained window and already ends with
    the new user turn.
    """
    system = f"{system_instructions}\n\nRELATED PRODUCT INFORMATION:\n{format_context(items)}"
    messages = [{"role": "system", "content": system}]
    for turn in history:
        role = "user" if turn.role is Role.USER else "assistant"
        messages.append({"role": role, "content": turn.text})
    return messages
