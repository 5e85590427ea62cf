"""OpenAI chat wrapper.

invoke() returns the raw assistant text; run_json() additionally extracts and
validates a JSON payload. Transport failures are retried here; unusable model
output is not (that retry policy belongs to the caller).
"""

from typing import Optional, Type, TypeVar

from openai import AsyncOpenAI, APIConnectionError, APITimeoutError, RateLimitError
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from ..config import get_settings
from ..errors import ModelOutputError
from ..log import get_logger
from ..mlops.tracing import tracer
from .json_extract import parse_model_json

logger = get_logger("llm")

T = TypeVar("T", bound=BaseModel)


class LLMClient:
    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=get_settings().OPENAI_API_KEY)
        return self._client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, max=8),
        retry=retry_if_exception_type((APIConnectionError, APITimeoutError, RateLimitError)),
        reraise=True,
    )
    async def invoke(
        self,
        model: str,
        system: str,
        user: str,
        max_tokens: int = 2000,
        temperature: float = 0.2,
    ) -> str:
        response = await self.client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            max_tokens=max_tokens,
            temperature=temperature,
        )
        choice = response.choices[0]
        text = choice.message.content or ""
        if choice.finish_reason == "length":
            logger.warning(f"Model output hit max_tokens={max_tokens}; response may be truncated")
        tracer.trace_llm_call(model=model, prompt=user, response=text)
        return text

    async def run_json(
        self,
        model: str,
        system: str,
        user: str,
        schema: Type[T],
        max_tokens: int = 2000,
        temperature: float = 0.2,
    ) -> T:
        with tracer.span("llm.run_json", span_type="LLM", attributes={"model": model, "schema": schema.__name__}):
            raw = await self.invoke(model, system, user, max_tokens=max_tokens, temperature=temperature)
            try:
                return parse_model_json(raw, schema)
            except ModelOutputError as e:
                logger.error(f"Unusable {schema.__name__} output from {model} ({e.reason})")
                raise
