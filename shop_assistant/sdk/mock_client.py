"""
Offline generation client.

Answers with canned, keyword-driven shop-assistant replies and synthetic
token counts. Lets the storefront run end to end without a provider key.
"""

from typing import Dict, List, Tuple

from ..core.retriever import normalize_terms
from ..core.token_counter import TokenUsage, estimate_prompt_tokens, estimate_text_tokens
from .base import Completion

MOCK_MODEL = "mock-assistant"

# Checked in order; the first intent whose keywords all appear wins.
INTENTS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("pc_gaming", ("pc", "gaming")),
    ("laptop_gaming", ("gaming",)),
    ("comparison", ("compare",)),
    ("comparison", ("vs",)),
    ("laptop_office", ("office",)),
    ("laptop_office", ("work",)),
    ("laptop_student", ("student",)),
    ("laptop_student", ("school",)),
    ("price_inquiry", ("budget",)),
    ("price_inquiry", ("price",)),
    ("price_inquiry", ("cheap",)),
)

RESPONSES: Dict[str, Tuple[str, ...]] = {
    "laptop_gaming": (
        "Great choice! For gaming laptops I'd look at models with an RTX 4060 or better. "
        "Which games do you play, and do you need to carry it around?",
        "There are several good gaming laptops in our catalog. "
        "Do you prefer a brand such as ASUS ROG, MSI or Dell Alienware?",
    ),
    "laptop_office": (
        "For office work, stable performance and long battery life matter most. "
        "Business lines like ThinkPad, Latitude or EliteBook are solid. Do you need a large screen?",
        "Dell, HP and Lenovo have good office options. "
        "Do you run heavy software like AutoCAD, or mostly office apps?",
    ),
    "laptop_student": (
        "Students usually want a light laptop with good battery life at a fair price. "
        "Acer Aspire, ASUS VivoBook or HP Pavilion are worth a look. What are you studying?",
        "A light machine with long battery life is key for school. "
        "Will you need to run any specialised software?",
    ),
    "pc_gaming": (
        "A gaming PC gives you more performance and easier upgrades than a laptop. "
        "Do you already have a monitor and peripherals?",
        "I can help you pick a gaming PC configuration. "
        "Do you play demanding AAA titles or mostly esports games?",
    ),
    "comparison": (
        "Both brands have their strengths depending on what you need. "
        "Which matters most to you: performance, build quality or price?",
        "Good question! Do you have specific models in mind that you'd like me to compare?",
    ),
    "price_inquiry": (
        "There are quite a few good options in most price ranges. "
        "Would you like me to introduce the top three products that fit your budget?",
        "Do you have any priorities such as brand, screen size or performance within that budget?",
    ),
    "default": (
        "To give you the best advice, could you tell me your budget and what you'll use it for?",
        "I can help you better with a few more details. Are you looking for a laptop or a PC, "
        "and roughly what budget?",
    ),
}


def classify_intent(text: str) -> str:
    """Pick the canned-response intent for a user message."""
    terms = normalize_terms(text)
    for intent, keywords in INTENTS:
        if all(keyword in terms for keyword in keywords):
            return intent
    return "default"


class MockGenerationClient:
    """Deterministic stand-in for a metered provider.

    Replies rotate through each intent's templates based on the number
    of messages in the prompt, so repeated runs give identical output.
    """

    def __init__(self, model: str = MOCK_MODEL):
        self.model = model
        self.calls = 0

    def complete(self, messages: List[Dict[str, str]], timeout: float) -> Completion:
        if not messages:
            raise ValueError("messages is required and cannot be empty")
        self.calls += 1

        last_user = next(
            (message["content"] for message in reversed(messages) if message["role"] == "user"),
            ""
        )
        templates = RESPONSES[classify_intent(last_user)]
        reply = templates[len(messages) % len(templates)]

        return Completion(
            text=reply,
            usage=TokenUsage(
                prompt_tokens=estimate_prompt_tokens(messages),
                completion_tokens=estimate_text_tokens(reply)
            ),
            request_id=f"mock-{self.calls}"
        )
