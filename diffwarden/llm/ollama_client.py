"""Ollama LLM client used as the AI fixer backend."""

import os
import re
import logging
from typing import Optional

import httpx

from diffwarden.analysis.fix_scorer import FixConfidenceScorer
from diffwarden.errors import ExternalToolError, ExternalToolTimeout
from diffwarden.git.models import FixRequest, FixResult

logger = logging.getLogger(__name__)

CODE_BLOCK_PATTERN = re.compile(r"```[\w+-]*[ \t]*\n(.*?)\n?```", re.DOTALL)

FIX_SYSTEM_PROMPT = """You are an expert code fixer. You rewrite a single offending line so that it
no longer exhibits the reported anti-pattern while preserving behavior.
Return ONLY the fixed code. No explanations, no markdown, no surrounding lines."""


def extract_code(response: str) -> str:
    """Pull the code out of an LLM response, unwrapping a fenced block if present."""
    block = CODE_BLOCK_PATTERN.search(response)
    if block:
        return block.group(1).strip("\n")
    return response.strip("\n")


class OllamaClient:
    """Client for interacting with Ollama API."""

    DEFAULT_MODEL = "codellama:7b"
    DEFAULT_HOST = "http://localhost:11434"

    def __init__(
        self,
        model: Optional[str] = None,
        host: Optional[str] = None,
        timeout: float = 30.0,
        scorer: Optional[FixConfidenceScorer] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize Ollama client.

        Args:
            model: Model name. Defaults to OLLAMA_MODEL env var or codellama:7b.
            host: Ollama server URL. Defaults to OLLAMA_HOST env var or localhost:11434.
            timeout: Request timeout in seconds.
            scorer: Confidence scorer applied to every returned fix.
            transport: Optional httpx transport, used to stub the server.
        """
        self.model = model or os.environ.get("OLLAMA_MODEL", self.DEFAULT_MODEL)
        self.host = (host or os.environ.get("OLLAMA_HOST", self.DEFAULT_HOST)).rstrip("/")
        self.timeout = timeout
        self.scorer = scorer or FixConfidenceScorer()

        self._client = httpx.Client(timeout=timeout, transport=transport)
        logger.info(f"Initialized Ollama client with model={self.model}, host={self.host}")

    def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: int = 512,
    ) -> str:
        """
        Generate a response from the LLM.

        Raises:
            ExternalToolTimeout: If the server does not answer in time.
            ExternalToolError: On any other transport or HTTP failure.
        """
        url = f"{self.host}/api/generate"

        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
            },
        }

        if system:
            payload["system"] = system

        try:
            response = self._client.post(url, json=payload)
            response.raise_for_status()
            generated_text = response.json().get("response", "")
        except httpx.TimeoutException as e:
            logger.error(f"Ollama request timed out after {self.timeout}s")
            raise ExternalToolTimeout(f"Ollama did not respond within {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            logger.error(f"Ollama HTTP error: {e}")
            raise ExternalToolError(f"Ollama returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Ollama request error: {e}")
            raise ExternalToolError(f"Ollama request failed: {e}") from e
        except ValueError as e:
            raise ExternalToolError(f"Ollama returned invalid JSON: {e}") from e

        logger.debug(f"Generated {len(generated_text)} chars")
        return generated_text

    def build_fix_prompt(self, request: FixRequest) -> str:
        violation = request.violation
        language = request.language.value if request.language else "code"
        context = "\n".join(request.context_before + ["<<< FIX THIS LINE >>>"] + request.context_after)
        return f"""Fix this {language} anti-pattern.

Rule: {violation.rule_name or violation.rule_id} ({violation.severity.value})
Problem: {request.description or violation.fix_suggestion}
Suggested approach: {violation.fix_suggestion}
File: {violation.file_path}, line {violation.line_number}

Surrounding code:
{context}

Line to fix:
{violation.line_content}

Return ONLY the fixed code for that line."""

    def generate_fix(self, request: FixRequest) -> FixResult:
        """
        Ask the model for a fix and score it.

        Matches the fixer callable expected by FixAgent.
        """
        response = self.generate(self.build_fix_prompt(request), system=FIX_SYSTEM_PROMPT)
        fixed_text = extract_code(response)
        if not fixed_text.strip():
            raise ExternalToolError("Ollama returned an empty fix")
        return self.scorer.score(request.original_text, fixed_text, request.language, raw_text=response)

    __call__ = generate_fix

    def is_available(self) -> bool:
        """Check if Ollama server is available."""
        try:
            response = self._client.get(f"{self.host}/api/tags")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def close(self):
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
