"""
LLM client for the OpenAI / Azure OpenAI chat completions API.
"""

import asyncio
import math
import time
from typing import Any, Awaitable, Dict, List, Optional, Tuple

import openai
import tiktoken
from openai import AsyncAzureOpenAI, AsyncOpenAI
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from loguru import logger

from meeting_analysis.config import LLMConfig, get_config
from meeting_analysis.errors import (
    AnalysisCancelledError,
    ConfigurationError,
    ContentFilteredError,
    EmptyCompletionError,
    GenerationError,
    ResponseTruncatedError,
    RetriesExhaustedError,
    RetryableGenerationError,
    TokenBudgetExceededError,
    TransportError,
)
from meeting_analysis.models import FinishReason, Generation, TokenUsage
from meeting_analysis.utils.json_response import parse_json_object


_FINISH_REASONS = {
    "stop": FinishReason.OK,
    "content_filter": FinishReason.CONTENT_FILTERED,
    "length": FinishReason.LENGTH_TRUNCATED,
}

# Provider errors worth another attempt; APITimeoutError subclasses APIConnectionError
_TRANSIENT_API_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)

DEFAULT_TRUNCATION_HINT = "Try a shorter transcript or a template with fewer sections."


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class LLMClient:
    """Client for one-request-at-a-time JSON generation."""

    def __init__(self, config: Optional[LLMConfig] = None, async_client: Optional[Any] = None):
        """
        Initialize the LLM client.

        Args:
            config: LLM settings; defaults to the global configuration
            async_client: Pre-built client exposing `chat.completions.create`.
                Built lazily from `config` when omitted, once per event loop.
        """
        self.config = config or get_config().llm
        self.async_client = async_client
        self._client: Optional[Any] = None
        self._client_loop: Optional[asyncio.AbstractEventLoop] = None

        # Initialize tokenizer (optional; encodings may need a download)
        self.encoding = None
        try:
            self.encoding = tiktoken.encoding_for_model(self.config.model)
        except Exception:
            if self.config.encoding_name:
                try:
                    self.encoding = tiktoken.get_encoding(self.config.encoding_name)
                except Exception:
                    self.encoding = None

        logger.info(f"Initialized LLM client with model: {self.config.model} ({self.config.provider})")

    def _get_async_client(self) -> Any:
        if self.async_client is not None:
            return self.async_client
        # The SDK's connection pool is bound to the loop it first ran on; each
        # asyncio.run() (one per Flask request) gets its own client.
        loop = _running_loop()
        if self._client is not None and self._client_loop is loop:
            return self._client
        if self._client is not None:
            logger.debug(f"Event loop changed; rebuilding {self.config.provider} client")
        if not self.config.api_key:
            raise ConfigurationError(
                "No API key configured. Set OPENAI_API_KEY (or AZURE_OPENAI_API_KEY for Azure)."
            )
        if self.config.provider == "azure":
            if not self.config.api_base:
                raise ConfigurationError("Azure provider requires AZURE_OPENAI_ENDPOINT / llm.api_base")
            self._client = AsyncAzureOpenAI(
                api_key=self.config.api_key,
                azure_endpoint=self.config.api_base,
                api_version=self.config.api_version,
                timeout=self.config.timeout,
                max_retries=0,
            )
        else:
            self._client = AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.api_base or None,
                timeout=self.config.timeout,
                max_retries=0,
            )
        self._client_loop = loop
        return self._client

    def count_tokens(self, text: str) -> int:
        """Count tokens; fall back to heuristic if tokenizer unavailable."""
        if not text:
            return 0
        if self.encoding is not None:
            try:
                return len(self.encoding.encode(text, disallowed_special=()))
            except Exception:
                pass
        # Heuristic: ~4 chars/token
        return max(1, math.ceil(len(text) / 4))

    def estimate_tokens(self, messages: List[Dict[str, str]]) -> int:
        """Estimate token count for a list of messages."""
        token_count = 0
        for message in messages:
            token_count += 4  # Message overhead
            for value in message.values():
                token_count += self.count_tokens(str(value))
        token_count += 2  # Reply overhead
        return token_count

    def check_token_budget(self, prompt: str, transcript: str = "", label: str = "analysis") -> int:
        """
        Estimate prompt + transcript tokens against the configured thresholds.

        Returns:
            The estimate, when it is within the hard limit

        Raises:
            TokenBudgetExceededError: above `token_hard_limit`
        """
        estimated = self.count_tokens(prompt) + self.count_tokens(transcript)
        if estimated > self.config.token_hard_limit:
            logger.error(
                f"{label}: estimated {estimated} tokens exceeds hard limit of {self.config.token_hard_limit}"
            )
            raise TokenBudgetExceededError(
                f"Input for {label} is too large: ~{estimated} tokens exceeds the "
                f"{self.config.token_hard_limit} token limit",
                label,
                estimated_tokens=estimated,
                limit=self.config.token_hard_limit,
            )
        if estimated > self.config.token_warning_threshold:
            logger.warning(
                f"{label}: estimated {estimated} tokens, above warning threshold of "
                f"{self.config.token_warning_threshold}"
            )
        return estimated

    async def _make_api_call_async(self, messages: List[Dict[str, str]], label: str, **kwargs) -> Any:
        """Make one chat completions request, mapping provider errors."""
        call_params: Dict[str, Any] = {
            'model': kwargs.get('model', self.config.model),
            'messages': messages,
            'max_completion_tokens': kwargs.get('max_tokens') or self.config.max_completion_tokens,
        }
        if kwargs.get('temperature') is not None:
            call_params['temperature'] = kwargs['temperature']
        if kwargs.get('json_only', True):
            call_params['response_format'] = {"type": "json_object"}

        client = self._get_async_client()
        try:
            return await client.chat.completions.create(**call_params)
        except _TRANSIENT_API_ERRORS as e:
            logger.warning(f"Transient API error for {label}: {e}")
            raise TransportError(f"Transport failure for {label}: {e}", label) from e
        except openai.OpenAIError as e:
            logger.error(f"API call failed for {label}: {e}")
            raise GenerationError(f"Generation request for {label} was rejected: {e}", label) from e

    async def generate(
        self,
        system_prompt: str,
        prompt: str,
        max_tokens: Optional[int] = None,
        json_only: bool = True,
        temperature: Optional[float] = None,
        label: str = "analysis",
    ) -> Generation:
        """Issue exactly one generation request; no retries, no validation."""
        start_time = time.time()
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ]
        response = await self._make_api_call_async(
            messages, label, max_tokens=max_tokens, json_only=json_only, temperature=temperature
        )

        choices = getattr(response, "choices", None) or []
        choice = choices[0] if choices else None
        message = getattr(choice, "message", None)
        text = (getattr(message, "content", None) or "") if message is not None else ""
        finish_reason = _FINISH_REASONS.get(getattr(choice, "finish_reason", None), FinishReason.OK)

        usage = getattr(response, "usage", None)
        if usage is not None:
            token_usage = TokenUsage(
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=usage.total_tokens,
            )
        else:
            # Estimate if usage not provided
            prompt_tokens = self.estimate_tokens(messages)
            completion_tokens = self.count_tokens(text)
            token_usage = TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            )
        token_usage.max_tokens = max_tokens or self.config.max_completion_tokens

        elapsed_time = time.time() - start_time
        logger.info({
            "evt": "generation_call",
            "label": label,
            "finish_reason": finish_reason.value,
            "elapsed_s": round(elapsed_time, 2),
            "total_tokens": token_usage.total_tokens,
        })
        return Generation(text=text, finish_reason=finish_reason, token_usage=token_usage)

    async def _run_cancellable(self, call: Awaitable[Generation], cancel_event: Optional[asyncio.Event],
                               label: str) -> Generation:
        """Await `call`, aborting it if `cancel_event` fires first."""
        if cancel_event is None:
            return await call
        if cancel_event.is_set():
            if asyncio.iscoroutine(call):
                call.close()
            raise AnalysisCancelledError(f"Analysis cancelled before {label}")

        task = asyncio.ensure_future(call)
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise
        waiter.cancel()
        await asyncio.gather(waiter, return_exceptions=True)
        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.warning(f"Cancelled in-flight request for {label}")
        raise AnalysisCancelledError(f"Analysis cancelled during {label}")

    async def _generate_checked(self, system_prompt: str, prompt: str, label: str, json_only: bool,
                                temperature: Optional[float], max_tokens: Optional[int],
                                cancel_event: Optional[asyncio.Event], truncation_hint: str) -> Generation:
        generation = await self._run_cancellable(
            self.generate(system_prompt, prompt, max_tokens=max_tokens, json_only=json_only,
                          temperature=temperature, label=label),
            cancel_event,
            label,
        )
        if generation.finish_reason is FinishReason.CONTENT_FILTERED:
            logger.warning(f"Content filter triggered for {label} (likely false positive)")
            raise ContentFilteredError(f"Response for {label} was blocked by the content filter", label)
        if generation.finish_reason is FinishReason.LENGTH_TRUNCATED:
            limit = max_tokens or self.config.max_completion_tokens
            logger.error(f"Response for {label} truncated at {limit} output tokens")
            raise ResponseTruncatedError(
                f"Response for {label} was truncated at the {limit} token output limit. {truncation_hint}",
                label,
            )
        if not generation.text.strip():
            logger.warning(f"Empty completion for {label}")
            raise EmptyCompletionError(f"Empty response for {label}", label)
        return generation

    async def _generate_with_retry(self, system_prompt: str, prompt: str, label: str, json_only: bool,
                                   temperature: Optional[float], max_tokens: Optional[int],
                                   cancel_event: Optional[asyncio.Event],
                                   truncation_hint: Optional[str]) -> Generation:
        attempts = self.config.max_retries

        def _log_retry(retry_state) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(f"Attempt {retry_state.attempt_number}/{attempts} for {label} failed: {exc}; retrying")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=self.config.retry_delay, min=0, max=60),
            retry=retry_if_exception_type(RetryableGenerationError),
            before_sleep=_log_retry,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    generation = await self._generate_checked(
                        system_prompt, prompt, label, json_only, temperature, max_tokens,
                        cancel_event, truncation_hint or DEFAULT_TRUNCATION_HINT,
                    )
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.error(f"Generation for {label} failed after {attempts} attempts: {last_error}")
            raise RetriesExhaustedError(
                f"Generation for {label} failed after {attempts} attempts: {last_error}",
                label,
                attempts=attempts,
                last_error=last_error,
            ) from last_error
        return generation

    async def complete_json(
        self,
        prompt: str,
        system_prompt: str,
        label: str,
        transcript: str = "",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
        truncation_hint: Optional[str] = None,
    ) -> Tuple[Dict[str, Any], TokenUsage]:
        """
        Generate and parse one JSON object.

        Returns:
            Tuple of (parsed_object, token_usage)
        """
        self.check_token_budget(prompt, transcript, label)
        generation = await self._generate_with_retry(
            system_prompt, prompt, label, True, temperature, max_tokens, cancel_event, truncation_hint
        )
        return parse_json_object(generation.text, label), generation.token_usage

    async def complete_text(
        self,
        prompt: str,
        system_prompt: str,
        label: str,
        transcript: str = "",
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Tuple[str, TokenUsage]:
        """
        Generate free text (no JSON constraint).

        Returns:
            Tuple of (response_text, token_usage)
        """
        self.check_token_budget(prompt, transcript, label)
        generation = await self._generate_with_retry(
            system_prompt, prompt, label, False, temperature, max_tokens, cancel_event, None
        )
        return generation.text.strip(), generation.token_usage


# Global client instance
_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Get the global LLM client instance."""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient(get_config().llm)
    return _llm_client


def reset_llm_client() -> None:
    """Reset the global LLM client instance."""
    global _llm_client
    _llm_client = None
