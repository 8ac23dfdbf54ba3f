"""Tests for the Ollama fixer backend."""

import json

import httpx
import pytest

from diffwarden.errors import ExternalToolError, ExternalToolTimeout
from diffwarden.git.models import FixRequest, Language, Severity, Violation
from diffwarden.llm.ollama_client import OllamaClient, extract_code


def make_request():
    violation = Violation(
        rule_id="unwrap_in_production",
        file_path="src/main.rs",
        line_number=4,
        matched_text=".unwrap()",
        severity=Severity.CRITICAL,
        fix_suggestion="Propagate the error with ?",
        ai_fixable=True,
        rule_name="Using .unwrap() in Production",
        language=Language.RUST,
        line_content="let v = data.unwrap();",
    )
    return FixRequest(violation=violation, context_before=["fn load() -> Result<()> {"],
                      context_after=["}"], language=Language.RUST)


def client_for(handler):
    return OllamaClient(model="test-model", host="http://ollama.test", transport=httpx.MockTransport(handler))


class TestExtractCode:
    """Tests for extract_code."""

    def test_fenced_block(self):
        response = "Here you go:\n```rust\nlet v = data?;\n```\nThis propagates the error."

        assert extract_code(response) == "let v = data?;"

    def test_plain_response(self):
        assert extract_code("\nlet v = data?;\n") == "let v = data?;"


class TestOllamaClient:
    """Tests for OllamaClient."""

    def test_generate_fix_scores_result(self):
        """A bare code answer is scored as high confidence."""
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["payload"] = json.loads(request.content)
            return httpx.Response(200, json={"response": "let v = data?;\n"})

        result = client_for(handler).generate_fix(make_request())

        assert seen["url"] == "http://ollama.test/api/generate"
        assert seen["payload"]["model"] == "test-model"
        assert seen["payload"]["stream"] is False
        assert "let v = data.unwrap();" in seen["payload"]["prompt"]
        assert result.fixed_text == "let v = data?;"
        assert result.original_text == "let v = data.unwrap();"
        assert result.structurally_valid
        assert result.is_high_confidence

    def test_chatty_fenced_answer_is_penalized(self):
        """Prose around a fenced block lowers confidence even though the code is clean."""
        response = (
            "Here is the fixed code:\n"
            "```rust\n"
            "let v = data?;\n"
            "```\n"
            "Note: the error is now propagated to the caller."
        )

        def handler(request):
            return httpx.Response(200, json={"response": response})

        result = client_for(handler).generate_fix(make_request())

        assert result.fixed_text == "let v = data?;"
        assert result.structurally_valid
        assert result.confidence == pytest.approx(0.6)
        assert not result.is_high_confidence

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ExternalToolTimeout):
            client_for(handler).generate_fix(make_request())

    def test_http_error(self):
        def handler(request):
            return httpx.Response(500, json={"error": "model not loaded"})

        with pytest.raises(ExternalToolError, match="HTTP 500"):
            client_for(handler).generate("prompt")

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ExternalToolError):
            client_for(handler).generate("prompt")

    def test_empty_fix_is_an_error(self):
        def handler(request):
            return httpx.Response(200, json={"response": "   "})

        with pytest.raises(ExternalToolError, match="empty fix"):
            client_for(handler).generate_fix(make_request())

    def test_is_available(self):
        def handler(request):
            return httpx.Response(200 if request.url.path == "/api/tags" else 404, json={})

        assert client_for(handler).is_available()

    def test_unavailable_server(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert not client_for(handler).is_available()

    def test_client_is_callable_as_fixer(self):
        def handler(request):
            return httpx.Response(200, json={"response": "let v = data?;"})

        with client_for(handler) as client:
            assert client(make_request()).fixed_text == "let v = data?;"
