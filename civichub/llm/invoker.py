"""Primary/fallback model invocation with usage accounting.

:meth:`ModelInvoker.generate` tries the preferred model first and, on a
timeout or provider error, exactly one fallback model. Each attempt is
recorded as an :class:`InvocationAttempt` with token usage, latency and cost.
Failed attempts carry an estimate of the prompt tokens sent, because providers
bill for input even when the call never returns. When every model fails,
:class:`ModelUnavailable` carries those attempts so callers can still account
for them.

Provider SDKs are blocking; calls run in a worker thread under an
``asyncio.wait_for`` deadline. A call that overruns keeps its thread until the
SDK's own timeout fires, but its result is discarded.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from ..errors import FormatError, ModelUnavailable, UpstreamTimeout
from .parsing import parse_model_output
from .prompts import PromptTemplateStore
from .providers import Completion, CompletionRequest, ModelProvider, ProviderError
from .responses import ResponseParameterStore
from .schemas import (
    GenerationResult,
    Intent,
    InvocationAttempt,
    ModelOutput,
    TokenUsage,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelPreference:
    primary: str
    fallback: str | None = None

    def chain(self) -> list[str]:
        models = [self.primary]
        if self.fallback and self.fallback != self.primary:
            models.append(self.fallback)
        return models


def estimate_tokens(messages: Sequence[Mapping[str, str]]) -> int:
    """Rough token estimate (four characters per token)."""

    return max(1, sum(len(m.get("content", "")) for m in messages) // 4)


class ModelInvoker:
    """Call language models with a single fallback hop."""

    def __init__(
        self,
        provider: ModelProvider,
        *,
        timeout: float = 30.0,
        pricing: Mapping[str, tuple[float, float]] | None = None,
        prompt_store: PromptTemplateStore | None = None,
        parameter_store: ResponseParameterStore | None = None,
    ) -> None:
        self._provider = provider
        self._timeout = timeout
        self._pricing = dict(pricing or {})
        self._prompts = prompt_store or PromptTemplateStore()
        self._parameters = parameter_store or ResponseParameterStore()

    async def generate(
        self,
        prompt: str,
        context: str,
        conversation_history: Sequence[Mapping[str, str]],
        model_preference: ModelPreference,
        *,
        channel: str = "default",
        trace_id: str | None = None,
    ) -> GenerationResult:
        messages = self._prompts.build_messages(
            prompt, context, conversation_history, channel=channel
        )
        started = time.perf_counter()
        attempts: list[InvocationAttempt] = []
        last_kind = "error"
        for index, model in enumerate(model_preference.chain()):
            attempt_started = time.perf_counter()
            try:
                completion = await self._call(model, messages)
                if not completion.text:
                    raise ProviderError(f"{model} returned an empty response")
            except (UpstreamTimeout, asyncio.TimeoutError) as exc:
                last_kind = "timeout"
                attempts.append(self._failed_attempt(model, messages, attempt_started, exc))
                logger.warning("Model %s timed out", model)
                continue
            except ProviderError as exc:
                last_kind = exc.kind
                attempts.append(self._failed_attempt(model, messages, attempt_started, exc))
                logger.warning("Model %s failed (%s): %s", model, exc.kind, exc)
                continue
            except Exception as exc:
                last_kind = "error"
                attempts.append(self._failed_attempt(model, messages, attempt_started, exc))
                logger.exception("Model %s raised an unexpected error", model)
                continue

            attempt = self._succeeded_attempt(model, completion, attempt_started)
            attempts.append(attempt)
            output, degraded = self._parse(completion.text)
            usage = sum((a.usage for a in attempts), TokenUsage())
            return GenerationResult(
                response_text=output.reply_text,
                guidance_text=output.guidance_text,
                intent=output.intent,
                fields=output.fields,
                contacts=tuple(output.contacts),
                confidence=output.confidence,
                sentiment=output.sentiment,
                language=output.language,
                model=model,
                usage=usage,
                cost_usd=round(sum(a.cost_usd for a in attempts), 6),
                latency_ms=round((time.perf_counter() - started) * 1000, 2),
                trace_id=trace_id,
                attempts=tuple(attempts),
                fallback_used=index > 0,
                format_degraded=degraded,
            )

        raise ModelUnavailable(
            f"all models failed: {', '.join(model_preference.chain())}",
            attempts=attempts,
            kind=last_kind,
        )

    # ------------------------------------------------------------------
    # Helpers

    async def _call(self, model: str, messages: list[dict[str, str]]) -> Completion:
        request = CompletionRequest(
            model=model,
            messages=messages,
            parameters=self._parameters.merge(model),
            timeout=self._timeout,
        )
        return await asyncio.wait_for(
            asyncio.to_thread(self._provider.complete, request), timeout=self._timeout
        )

    def _cost(self, model: str, usage: TokenUsage) -> float:
        input_price, output_price = self._pricing.get(model, (0.0, 0.0))
        return (usage.input_tokens * input_price + usage.output_tokens * output_price) / 1_000_000

    def _failed_attempt(
        self,
        model: str,
        messages: Sequence[Mapping[str, str]],
        started: float,
        error: object,
    ) -> InvocationAttempt:
        usage = TokenUsage(input_tokens=estimate_tokens(messages))
        return InvocationAttempt(
            model=model,
            success=False,
            usage=usage,
            latency_ms=round((time.perf_counter() - started) * 1000, 2),
            cost_usd=self._cost(model, usage),
            estimated_usage=True,
            error=str(error) or type(error).__name__,
        )

    def _succeeded_attempt(self, model: str, completion: Completion, started: float) -> InvocationAttempt:
        usage = TokenUsage(
            input_tokens=completion.input_tokens, output_tokens=completion.output_tokens
        )
        return InvocationAttempt(
            model=model,
            success=True,
            usage=usage,
            latency_ms=round((time.perf_counter() - started) * 1000, 2),
            cost_usd=self._cost(model, usage),
        )

    @staticmethod
    def _parse(text: str) -> tuple[ModelOutput, bool]:
        try:
            return parse_model_output(text), False
        except FormatError as exc:
            logger.warning("Falling back to plain-text reply: %s", exc)
            return ModelOutput(intent=Intent.UNKNOWN, reply_text=text.strip()), True


__all__ = ["ModelInvoker", "ModelPreference", "estimate_tokens"]
