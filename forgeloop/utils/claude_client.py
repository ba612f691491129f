from anthropic import AsyncAnthropic, APIStatusError, APIError, APIConnectionError, APITimeoutError
from typing import Optional, Dict, List, Any
import asyncio
import random
import httpx
from forgeloop.core.config import settings
from forgeloop.core.logging_config import logger

RETRYABLE_ERRORS = ['overloaded_error', 'rate_limit_error', 'api_error']


class ClaudeClient:
    """Claude API client wrapper used by the planner, generator and fixer"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_retries: Optional[int] = None
    ):
        client_kwargs = {"api_key": api_key or settings.ANTHROPIC_API_KEY}

        # Only set base_url if it's a non-empty string with actual content
        if settings.ANTHROPIC_BASE_URL and settings.ANTHROPIC_BASE_URL.strip():
            client_kwargs["base_url"] = settings.ANTHROPIC_BASE_URL.strip()
            logger.info(f"Using custom Claude API base URL: {settings.ANTHROPIC_BASE_URL}")

        client_kwargs["timeout"] = httpx.Timeout(
            connect=float(settings.CLAUDE_CONNECT_TIMEOUT),
            read=float(settings.CLAUDE_REQUEST_TIMEOUT),
            write=float(settings.CLAUDE_REQUEST_TIMEOUT),
            pool=float(settings.CLAUDE_REQUEST_TIMEOUT)
        )

        self.async_client = AsyncAnthropic(**client_kwargs)
        self.model = model or settings.CLAUDE_MODEL
        self.max_retries = settings.CLAUDE_MAX_RETRIES if max_retries is None else max_retries

        logger.debug(f"Claude client initialized: model={self.model}, timeout={settings.CLAUDE_REQUEST_TIMEOUT}s")

    def _is_retryable_error(self, error: Exception) -> bool:
        """Check if an error is retryable (overload, rate limit, network issues, etc.)"""
        error_str = str(error).lower()

        if isinstance(error, (APIConnectionError, APITimeoutError)):
            logger.warning(f"Network error detected (retryable): {type(error).__name__}")
            return True

        if isinstance(error, (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError)):
            logger.warning(f"HTTPX network error detected (retryable): {type(error).__name__}")
            return True

        if isinstance(error, (APIStatusError, APIError)):
            if hasattr(error, 'body') and isinstance(error.body, dict):
                error_type = error.body.get('error', {}).get('type', '')
                if error_type:
                    return error_type in RETRYABLE_ERRORS
            if hasattr(error, 'status_code'):
                return error.status_code in [429, 500, 502, 503, 529]

        network_errors = ['overload', 'rate_limit', '529', '503', 'capacity',
                          'connection', 'timeout', 'network']
        return any(err in error_str for err in network_errors)

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay with exponential backoff and jitter"""
        delay = min(settings.CLAUDE_RETRY_BASE_DELAY * (2 ** attempt), settings.CLAUDE_RETRY_MAX_DELAY)
        # Add jitter (0-25% of delay)
        jitter = delay * random.uniform(0, 0.25)
        return delay + jitter

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = None,
        temperature: float = None,
        messages: Optional[List[Dict[str, str]]] = None
    ) -> Dict[str, Any]:
        """
        Generate response from Claude (non-streaming)

        Args:
            prompt: User prompt
            system_prompt: System prompt
            max_tokens: Maximum tokens to generate
            temperature: Temperature for generation
            messages: Optional list of previous messages for conversation

        Returns:
            Dict with content and token usage
        """
        messages = list(messages or [])
        messages.append({"role": "user", "content": prompt})

        if max_tokens is None:
            max_tokens = settings.CLAUDE_MAX_TOKENS
        if temperature is None:
            temperature = settings.CLAUDE_TEMPERATURE

        logger.info(f"Claude API: model={self.model}, max_tokens={max_tokens}, prompt_len={len(prompt)}")

        last_error = None
        for attempt in range(self.max_retries + 1):
            try:
                response = await self.async_client.messages.create(
                    model=self.model,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    system=system_prompt if system_prompt else "",
                    messages=messages
                )

                content = "".join(
                    block.text for block in response.content if getattr(block, "type", "") == "text"
                )

                result = {
                    "content": content,
                    "model": self.model,
                    "input_tokens": response.usage.input_tokens,
                    "output_tokens": response.usage.output_tokens,
                    "total_tokens": response.usage.input_tokens + response.usage.output_tokens,
                    "stop_reason": response.stop_reason,
                    "id": response.id
                }

                logger.info(f"Claude API response: id={response.id}, tokens={result['total_tokens']}, stop={response.stop_reason}")
                return result

            except Exception as e:
                last_error = e
                error_type = type(e).__name__
                if self._is_retryable_error(e) and attempt < self.max_retries:
                    delay = self._calculate_retry_delay(attempt)
                    logger.warning(
                        f"Claude API error [{error_type}] (attempt {attempt + 1}/{self.max_retries + 1}), retrying in {delay:.1f}s...",
                        extra={
                            "event_type": "claude_api_retry",
                            "error_type": error_type,
                            "attempt": attempt + 1,
                            "retry_delay": delay
                        }
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        f"Claude API error (non-retryable or max retries exceeded): {error_type}: {e}",
                        extra={
                            "event_type": "claude_api_error",
                            "error_type": error_type,
                            "attempt": attempt + 1
                        }
                    )
                    raise

        raise last_error


_claude_client: Optional[ClaudeClient] = None


def get_claude_client() -> ClaudeClient:
    """Shared client, created on first use so importing needs no API key"""
    global _claude_client
    if _claude_client is None:
        _claude_client = ClaudeClient()
    return _claude_client
