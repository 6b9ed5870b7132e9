"""Tests for the Gemini-backed editor assistant."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from villacms.content.models import FAQ
from villacms.shared.assistant import (
    EMPTY_DESCRIPTION,
    FAILED_ANSWER,
    FAILED_DESCRIPTION,
    NO_FAQS_ANSWER,
    NOT_CONFIGURED_ANSWER,
    NOT_CONFIGURED_DESCRIPTION,
    Assistant,
)

FAQS = [
    FAQ(id="f1", question="Is there parking?", answer="Yes, two spaces."),
    FAQ(id="f2", question="Pets allowed?", answer="Small dogs only."),
]


def _client_returning(text: str | None) -> MagicMock:
    mock_response = MagicMock()
    mock_response.text = text
    mock_client = MagicMock()
    mock_client.models.generate_content.return_value = mock_response
    return mock_client


class TestIsConfigured:
    def test_returns_false_without_package(self):
        with patch("villacms.shared.assistant._HAS_GENAI", False):
            assert Assistant(api_key="test-key").is_configured() is False

    def test_returns_false_without_api_key(self):
        with patch("villacms.shared.assistant._HAS_GENAI", True), patch.dict("os.environ", {}, clear=True):
            assert Assistant().is_configured() is False

    def test_returns_true_with_both(self):
        with (
            patch("villacms.shared.assistant._HAS_GENAI", True),
            patch.dict("os.environ", {"GOOGLE_AI_API_KEY": "test-key"}),
        ):
            assert Assistant().is_configured() is True

    def test_model_from_env(self):
        with patch.dict("os.environ", {"VILLACMS_ASSISTANT_MODEL": "gemini-2.5-pro"}):
            assert Assistant().model == "gemini-2.5-pro"


class TestDescribePhoto:
    def test_not_configured(self):
        with patch("villacms.shared.assistant._HAS_GENAI", False):
            assert Assistant().describe_photo(b"img", "image/jpeg") == NOT_CONFIGURED_DESCRIPTION

    def test_returns_model_text(self):
        mock_client = _client_returning("  Sunlit terrace with sea views.  ")
        mock_types = MagicMock()

        with (
            patch("villacms.shared.assistant._HAS_GENAI", True),
            patch("villacms.shared.assistant.genai") as mock_genai,
            patch("villacms.shared.assistant.types", mock_types),
        ):
            mock_genai.Client.return_value = mock_client
            result = Assistant(api_key="test-key").describe_photo(b"img", "image/jpeg")

        assert result == "Sunlit terrace with sea views."
        mock_types.Part.from_bytes.assert_called_once_with(data=b"img", mime_type="image/jpeg")
        mock_genai.Client.assert_called_once_with(api_key="test-key")

    def test_empty_response(self):
        with (
            patch("villacms.shared.assistant._HAS_GENAI", True),
            patch("villacms.shared.assistant.genai") as mock_genai,
            patch("villacms.shared.assistant.types", MagicMock()),
        ):
            mock_genai.Client.return_value = _client_returning(None)
            result = Assistant(api_key="test-key").describe_photo(b"img", "image/png")

        assert result == EMPTY_DESCRIPTION

    def test_returns_error_text_on_failure(self):
        mock_client = MagicMock()
        mock_client.models.generate_content.side_effect = RuntimeError("API error")

        with (
            patch("villacms.shared.assistant._HAS_GENAI", True),
            patch("villacms.shared.assistant.genai") as mock_genai,
            patch("villacms.shared.assistant.types", MagicMock()),
        ):
            mock_genai.Client.return_value = mock_client
            result = Assistant(api_key="test-key").describe_photo(b"img", "image/png")

        assert result == FAILED_DESCRIPTION


class TestAnswerQuestion:
    def test_blank_question(self):
        assert Assistant(api_key="test-key").answer_question("   ", FAQS) == "Please ask a question."

    def test_not_configured(self):
        with patch("villacms.shared.assistant._HAS_GENAI", False):
            assert Assistant().answer_question("Parking?", FAQS) == NOT_CONFIGURED_ANSWER

    def test_no_faqs(self):
        with patch("villacms.shared.assistant._HAS_GENAI", True):
            assert Assistant(api_key="test-key").answer_question("Parking?", []) == NO_FAQS_ANSWER

    def test_prompt_contains_faqs_and_question(self):
        mock_client = _client_returning("Yes, there are two spaces.")

        with (
            patch("villacms.shared.assistant._HAS_GENAI", True),
            patch("villacms.shared.assistant.genai") as mock_genai,
        ):
            mock_genai.Client.return_value = mock_client
            answer = Assistant(api_key="test-key").answer_question("Can I park?", FAQS)

        assert answer == "Yes, there are two spaces."
        prompt = mock_client.models.generate_content.call_args.kwargs["contents"]
        assert "Q: Is there parking?\nA: Yes, two spaces." in prompt
        assert "Q: Pets allowed?" in prompt
        assert 'User\'s question: "Can I park?"' in prompt

    def test_failure(self):
        mock_client = MagicMock()
        mock_client.models.generate_content.side_effect = RuntimeError("quota")

        with (
            patch("villacms.shared.assistant._HAS_GENAI", True),
            patch("villacms.shared.assistant.genai") as mock_genai,
        ):
            mock_genai.Client.return_value = mock_client
            answer = Assistant(api_key="test-key").answer_question("Parking?", FAQS)

        assert answer == FAILED_ANSWER

    def test_client_is_reused(self):
        mock_client = _client_returning("ok")

        with (
            patch("villacms.shared.assistant._HAS_GENAI", True),
            patch("villacms.shared.assistant.genai") as mock_genai,
        ):
            mock_genai.Client.return_value = mock_client
            assistant = Assistant(api_key="test-key")
            assistant.answer_question("a?", FAQS)
            assistant.answer_question("b?", FAQS)

        assert mock_genai.Client.call_count == 1
