"""Greeting and acknowledgement detection with canned replies."""

from __future__ import annotations

import random
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Pattern, Sequence, Tuple


class Intent(str, Enum):
    THANKS = "thanks"
    GREETING = "greeting"
    NONE = "none"


_TRAILER = r"[\s!.,?]*$"

GREETING_PATTERNS: Tuple[str, ...] = (
    r"^(hi|hello|hey|hii+|helo+|greetings|good\s*(morning|afternoon|evening|day))" + _TRAILER,
    r"^(what'?s?\s*up|howdy|yo|sup)" + _TRAILER,
    r"^(namaste|hola|bonjour)" + _TRAILER,
)

THANKS_PATTERNS: Tuple[str, ...] = (
    r"^(ok(ay)?|alright|got it|understood|i see|makes sense)" + _TRAILER,
    r"^(thanks?|thank you|thanx|thx|ty|thank u)" + _TRAILER,
    r"^(ok(ay)?\s*(thanks?|thank you|thanx)|thanks?\s*ok(ay)?)" + _TRAILER,
    r"^(great|awesome|perfect|cool|nice|good)" + _TRAILER,
    r"^(that('s| is)?\s*(helpful|great|good|nice|perfect))" + _TRAILER,
    r"^(appreciate it|much appreciated)" + _TRAILER,
)

GREETING_RESPONSES: Tuple[str, ...] = (
    "Hello! 👋 I'm your Knowledge Base Assistant. How can I help you today? "
    "Feel free to ask me any questions about your uploaded documents!",
    "Hi there! 😊 Welcome! I'm here to help you find information from your knowledge base. "
    "What would you like to know?",
    "Hey! 👋 Great to see you! I can answer questions based on your uploaded documents. What can I help you with?",
    "Hello! I'm your AI assistant ready to help! Ask me anything about your documents and I'll do my best to assist you.",
    "Greetings! 🌟 I'm here to help you explore your knowledge base. What questions do you have for me today?",
)

THANKS_RESPONSES: Tuple[str, ...] = (
    "You're welcome! 😊 Is there anything else you'd like to know?",
    "Happy to help! 👍 Feel free to ask if you have more questions!",
    "Glad I could assist! Let me know if you need anything else.",
    "No problem! 🌟 I'm here if you have any other questions.",
    "Anytime! Feel free to ask me more questions about your knowledge base.",
    "You're welcome! I'm always here to help you find information. 😊",
)


@dataclass(frozen=True)
class IntentCatalog:
    """Patterns and reply pools per intent; order of ``priority`` decides ties."""

    patterns: Mapping[Intent, Sequence[str]] = field(
        default_factory=lambda: {Intent.THANKS: THANKS_PATTERNS, Intent.GREETING: GREETING_PATTERNS},
    )
    responses: Mapping[Intent, Sequence[str]] = field(
        default_factory=lambda: {Intent.THANKS: THANKS_RESPONSES, Intent.GREETING: GREETING_RESPONSES},
    )
    priority: Tuple[Intent, ...] = (Intent.THANKS, Intent.GREETING)

    def compiled(self) -> Tuple[Tuple[Intent, Tuple[Pattern[str], ...]], ...]:
        return tuple(
            (intent, tuple(re.compile(pattern, re.IGNORECASE) for pattern in self.patterns.get(intent, ())))
            for intent in self.priority
        )


DEFAULT_CATALOG = IntentCatalog()


def pick_response(intent: Intent, rng: random.Random, catalog: IntentCatalog = DEFAULT_CATALOG) -> str:
    """Choose a canned reply for ``intent`` using the supplied random source."""

    pool = catalog.responses.get(intent)
    if not pool:
        raise ValueError(f"No canned responses for intent {intent.value!r}")
    return pool[rng.randrange(len(pool))]


class IntentClassifier:
    """Matches trimmed, lower-cased input against the catalog patterns."""

    def __init__(self, catalog: IntentCatalog | None = None, *, seed: int | None = None) -> None:
        self._catalog = catalog or DEFAULT_CATALOG
        self._compiled = self._catalog.compiled()
        self._rng = random.Random(seed)

    def classify(self, text: str) -> Intent:
        normalized = text.strip().lower()
        for intent, patterns in self._compiled:
            if any(pattern.search(normalized) for pattern in patterns):
                return intent
        return Intent.NONE

    def respond(self, intent: Intent) -> str:
        return pick_response(intent, self._rng, self._catalog)
