import json
import asyncio
from typing import Dict, Any, List, Optional, Tuple, Type, TypeVar
import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from seo_writer.config import settings
from seo_writer.agents.cache_optimizer import CacheOptimizer, strip_cache_tags
from seo_writer.agents.errors import ProviderError, ProviderTimeout, SchemaValidationFailure
from seo_writer.agents.schemas import CacheMetrics, LLMResponse
from seo_writer.utils.logger import logger

T = TypeVar("T", bound=BaseModel)


class LLMProvider:
    """Text and structured generation against one model backend.

    Subclasses implement ``_complete``. Structured generation parses the
    completion as JSON and validates it with the requested pydantic model.
    """

    name = "base"

    async def _complete(self, messages: List[Dict[str, Any]], model: str,
                        temperature: Optional[float], json_mode: bool,
                        purpose: str) -> LLMResponse:
        raise NotImplementedError

    async def generate_text(self, messages: List[Dict[str, Any]], model: str,
                            temperature: Optional[float] = None,
                            timeout: Optional[float] = None,
                            purpose: str = "text") -> LLMResponse:
        return await self._with_timeout(
            self._complete(messages, model, temperature, False, purpose), timeout, purpose
        )

    async def generate_object(self, messages: List[Dict[str, Any]], schema: Type[T], model: str,
                              temperature: Optional[float] = None,
                              timeout: Optional[float] = None,
                              purpose: str = "structured") -> Tuple[T, LLMResponse]:
        response = await self._with_timeout(
            self._complete(messages, model, temperature, True, purpose), timeout, purpose
        )
        try:
            data = json.loads(response.text)
        except json.JSONDecodeError as e:
            raise SchemaValidationFailure(f"{purpose}: response is not valid JSON ({e.msg})") from e
        try:
            return schema.model_validate(data), response
        except ValidationError as e:
            raise SchemaValidationFailure(
                f"{purpose}: response failed {schema.__name__} validation with {e.error_count()} error(s)"
            ) from e

    @staticmethod
    async def _with_timeout(call, timeout: Optional[float], purpose: str) -> LLMResponse:
        if timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout)
        except asyncio.TimeoutError as e:
            raise ProviderTimeout(f"{purpose}: no response within {timeout}s") from e


class OpenAIProvider(LLMProvider):
    """Chat-completions backend. Cache hints are stripped; OpenAI caches
    identical prompt prefixes on its own and reports them as cached tokens."""

    name = "openai"

    def __init__(self, client: Optional[AsyncOpenAI] = None, api_key: Optional[str] = None):
        self.client = client or AsyncOpenAI(api_key=api_key or settings.OPENAI_API_KEY)

    async def _complete(self, messages: List[Dict[str, Any]], model: str,
                        temperature: Optional[float], json_mode: bool,
                        purpose: str) -> LLMResponse:
        kwargs: Dict[str, Any] = {"model": model, "messages": strip_cache_tags(messages)}
        if temperature is not None:
            kwargs["temperature"] = temperature
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.chat.completions.create(**kwargs)
        except openai.APITimeoutError as e:
            raise ProviderTimeout(f"{purpose}: {e}") from e
        except openai.APIError as e:
            logger.error(f"OpenAI error during {purpose}: {str(e)}")
            raise ProviderError(f"{purpose}: {e}") from e

        text = response.choices[0].message.content or ""
        metadata = self.usage_metadata(response.usage)
        logger.log_api_call(model, purpose, metadata.get("output_tokens"))
        return LLMResponse(text=text, model=model, metadata=metadata)

    @staticmethod
    def usage_metadata(usage: Any) -> Dict[str, Any]:
        if usage is None:
            return {"provider": "openai"}
        details = getattr(usage, "prompt_tokens_details", None)
        return {
            "provider": "openai",
            "input_tokens": getattr(usage, "prompt_tokens", 0) or 0,
            "output_tokens": getattr(usage, "completion_tokens", 0) or 0,
            "cached_tokens": (getattr(details, "cached_tokens", 0) or 0) if details else 0,
        }


class MeteredProvider(LLMProvider):
    """Delegates to another provider and folds every call's usage into ``metrics``."""

    def __init__(self, inner: LLMProvider, metrics: Optional[CacheMetrics] = None):
        self.inner = inner
        self.name = inner.name
        self.metrics = metrics or CacheMetrics()

    async def _complete(self, messages: List[Dict[str, Any]], model: str,
                        temperature: Optional[float], json_mode: bool,
                        purpose: str) -> LLMResponse:
        response = await self.inner._complete(messages, model, temperature, json_mode, purpose)
        self.metrics = CacheOptimizer.record(self.metrics, response.metadata)
        return response


def build_default_provider() -> LLMProvider:
    return OpenAIProvider()
