"""
Async LLM client.

Design constraints:
- No vendor SDKs: plain httpx against an OpenAI-compatible /chat/completions API
- The LLM is control-plane only (structuring, naming, label picking);
  retrieval, filtering and ranking stay deterministic
- Every call goes through a circuit breaker and is metered

Environment configuration (see toolfinder.core.config):
- LLM_API_BASE: Base URL (default: https://api.openai.com/v1)
- LLM_API_KEY: Bearer token; when unset every call raises and callers fall back
- LLM_MODEL: Model name
- LLM_TIMEOUT_SECONDS: Per-request timeout
- LLM_COST_PER_1K_TOKENS: Optional cost hint for metrics (USD)
"""
import time
from typing import Any, Dict, List, Optional

import httpx

from toolfinder.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from toolfinder.core.config import get_settings
from toolfinder.core.logging import get_logger
from toolfinder.core.metrics import (
    record_llm_error,
    record_llm_request,
    record_llm_tokens_and_cost,
)

logger = get_logger(__name__)


class LLMUnavailableError(RuntimeError):
    """The LLM is not configured (no API key) or returned no content."""


class LLMClient:
    """Async HTTP client implementing the LLM capability."""

    def __init__(
        self,
        api_base: str,
        api_key: Optional[str],
        model: str,
        timeout_seconds: float = 5.0,
        cost_per_1k_tokens: float = 0.0,
    ):
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.cost_per_1k_tokens = cost_per_1k_tokens

        self.circuit_breaker = CircuitBreaker(
            name="llm",
            failure_threshold=0.5,
            time_window_seconds=60,
            open_duration_seconds=30,
            half_open_test_percentage=0.1,
        )

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def _post(self, path: str, json_payload: Dict[str, Any]) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(
                f"{self.api_base}{path}", headers=headers, json=json_payload
            )
        # 5xx counts against the breaker; raise inside the protected call.
        response.raise_for_status()
        return response

    async def chat(
        self,
        agent: str,
        messages: List[Dict[str, str]],
        max_tokens: int = 256,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Call the chat completion endpoint.

        Args:
            agent: Logical caller name used as a metrics label
                   ("structuring", "reference", "ner", "zero_shot", "planner")
            messages: OpenAI-style chat messages
            max_tokens: Completion token cap
            response_format: Optional response_format (JSON mode)

        Returns:
            Raw JSON response.

        Raises:
            LLMUnavailableError, CircuitBreakerOpenError, httpx errors.
            Callers catch and fall back to deterministic behavior.
        """
        if not self.api_key:
            record_llm_error(agent, "missing_api_key")
            raise LLMUnavailableError("LLM API key not configured")

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": 0.0,
            "max_tokens": max_tokens,
        }
        if response_format:
            payload["response_format"] = response_format

        start = time.time()
        try:
            response: httpx.Response = await self.circuit_breaker.call_async(
                self._post,
                "/chat/completions",
                json_payload=payload,
            )
        except CircuitBreakerOpenError:
            record_llm_error(agent, "circuit_open")
            logger.warning("llm_circuit_open", agent=agent)
            raise
        except httpx.TimeoutException as exc:
            record_llm_error(agent, "timeout")
            logger.warning(
                "llm_timeout",
                agent=agent,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        except httpx.HTTPError as exc:
            record_llm_error(agent, "http_error")
            logger.warning(
                "llm_http_error",
                agent=agent,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        finally:
            record_llm_request(agent, self.model, (time.time() - start) * 1000.0)

        data = response.json()

        usage = data.get("usage") or {}
        input_tokens = int(usage.get("prompt_tokens") or 0)
        output_tokens = int(usage.get("completion_tokens") or 0)
        total_tokens = input_tokens + output_tokens
        cost_usd = 0.0
        if self.cost_per_1k_tokens > 0 and total_tokens > 0:
            cost_usd = (total_tokens / 1000.0) * self.cost_per_1k_tokens
        record_llm_tokens_and_cost(
            agent=agent,
            model=self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost_usd,
        )
        return data

    async def invoke(self, prompt: str, *, agent: str = "pipeline") -> str:
        """Single-prompt call returning the completion text."""
        data = await self.chat(
            agent=agent,
            messages=[{"role": "user", "content": prompt}],
        )
        content = extract_content(data)
        if content is None:
            record_llm_error(agent, "empty_response")
            raise LLMUnavailableError("LLM returned no message content")
        return content


def extract_content(response: Dict[str, Any]) -> Optional[str]:
    """choices[0].message.content of an OpenAI-shaped response, if present."""
    try:
        content = response.get("choices", [{}])[0].get("message", {}).get("content")
    except (AttributeError, IndexError, TypeError):
        return None
    return content if isinstance(content, str) else None


_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Global LLM client built from settings."""
    global _llm_client
    if _llm_client is None:
        settings = get_settings()
        _llm_client = LLMClient(
            api_base=settings.llm_api_base,
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            timeout_seconds=settings.llm_timeout_seconds,
            cost_per_1k_tokens=settings.llm_cost_per_1k_tokens,
        )
    return _llm_client
