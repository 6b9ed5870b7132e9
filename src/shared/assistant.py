"""Generative-text helpers for the editor: photo descriptions and FAQ chat.

Uses Google Gemini via the google-genai SDK.  Falls back gracefully when
the optional dependency is not installed or the API key is not
configured: callers always get a string back.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence

from villacms.content.models import FAQ

logger = logging.getLogger(__name__)

# Optional dependency
try:
    from google import genai
    from google.genai import types

    _HAS_GENAI = True
except ImportError:
    genai = None  # type: ignore[assignment]
    types = None  # type: ignore[assignment]
    _HAS_GENAI = False

DEFAULT_MODEL = "gemini-2.5-flash"

DESCRIPTION_PROMPT = (
    "You are a luxury real estate agent writing a listing for a high-end Spanish villa. "
    "Write a short, evocative, and appealing description for this photo. "
    "Focus on the feeling, materials, lifestyle, and unique details shown. "
    "Keep it under 50 words. Do not use bullet points or lists."
)

CHAT_PROMPT = """You are a helpful and friendly chatbot for a luxury villa listing called "Villa Luar".
Your goal is to answer potential buyer questions based ONLY on the provided Frequently Asked Questions.
Do not make up information.
If the user's question cannot be answered from the FAQs, politely say you don't have that information and suggest they contact an agent.

Here are the available FAQs:
---
{faqs}
---

User's question: "{question}"

Your answer:"""

NOT_CONFIGURED_DESCRIPTION = "Error: API Key missing."
FAILED_DESCRIPTION = "Error: Could not generate description."
EMPTY_DESCRIPTION = "Description could not be generated."
NOT_CONFIGURED_ANSWER = "I'm sorry, I'm not correctly configured right now (Missing API Key)."
FAILED_ANSWER = "I'm sorry, something went wrong. Please try again or contact an agent."
NO_FAQS_ANSWER = (
    "Thank you for your question. We are currently updating our information. "
    "Please contact an agent for more details about Villa Luar."
)


class Assistant:
    """Thin text-in, text-out adapter over the Gemini API."""

    def __init__(self, model: str | None = None, api_key: str | None = None) -> None:
        self.model = model or os.environ.get("VILLACMS_ASSISTANT_MODEL", DEFAULT_MODEL)
        self.api_key = api_key if api_key is not None else os.environ.get("GOOGLE_AI_API_KEY", "")
        self._client: object | None = None

    def is_configured(self) -> bool:
        """Check whether the SDK is installed and an API key is set."""
        return _HAS_GENAI and bool(self.api_key)

    def _get_client(self) -> object:
        """Lazy-create and cache the genai Client."""
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)  # type: ignore[union-attr]
        return self._client

    def describe_photo(self, image: bytes, mime_type: str) -> str:
        """Write a short listing description for an image."""
        if not self.is_configured():
            logger.warning("Assistant not configured, skipping photo description")
            return NOT_CONFIGURED_DESCRIPTION
        try:
            client = self._get_client()
            response = client.models.generate_content(  # type: ignore[union-attr]
                model=self.model,
                contents=[
                    types.Part.from_bytes(data=image, mime_type=mime_type),  # type: ignore[union-attr]
                    DESCRIPTION_PROMPT,
                ],
            )
        except Exception:
            logger.warning("Photo description failed", exc_info=True)
            return FAILED_DESCRIPTION
        text = (response.text or "").strip()
        return text or EMPTY_DESCRIPTION

    def answer_question(self, question: str, faqs: Sequence[FAQ]) -> str:
        """Answer a visitor question using only the FAQ entries."""
        if not question.strip():
            return "Please ask a question."
        if not self.is_configured():
            return NOT_CONFIGURED_ANSWER
        if not faqs:
            return NO_FAQS_ANSWER

        faq_text = "\n\n".join(f"Q: {f.question}\nA: {f.answer}" for f in faqs)
        prompt = CHAT_PROMPT.format(faqs=faq_text, question=question)
        try:
            client = self._get_client()
            response = client.models.generate_content(  # type: ignore[union-attr]
                model=self.model,
                contents=prompt,
            )
        except Exception:
            logger.warning("FAQ chat failed for question: %s", question[:80], exc_info=True)
            return FAILED_ANSWER
        return (response.text or "").strip() or FAILED_ANSWER
