"""Language-model provider adapters and credential resolution."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import openai
from openai import OpenAI

from ..errors import UpstreamTimeout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderCredentials:
    """Container for credentials resolved for a provider."""

    provider: str
    api_key: str | None
    extras: dict[str, str]


class ProviderRegistry:
    """Resolve provider credentials from environment or explicit overrides."""

    _DEFAULT_ENV_MAP: Mapping[str, str] = {
        "openai": "OPENAI_API_KEY",
    }

    def __init__(self, overrides: Mapping[str, Mapping[str, str]] | None = None):
        self._overrides = {k.lower(): dict(v) for k, v in (overrides or {}).items()}

    def get_credentials(self, provider: str) -> ProviderCredentials:
        """Return credentials for ``provider``.

        Explicit overrides win; otherwise the key comes from the environment
        variable listed in ``_DEFAULT_ENV_MAP``.
        """

        key = provider.lower()
        if key in self._overrides:
            override = self._overrides[key]
            return ProviderCredentials(
                provider=provider,
                api_key=override.get("api_key"),
                extras={k: v for k, v in override.items() if k != "api_key"},
            )
        env_var = self._DEFAULT_ENV_MAP.get(key)
        api_key = os.getenv(env_var) if env_var else None
        extras: dict[str, str] = {}
        base_url = os.getenv("OPENAI_BASE_URL")
        if key == "openai" and base_url:
            extras["base_url"] = base_url
        return ProviderCredentials(provider=provider, api_key=api_key, extras=extras)


@dataclass(frozen=True)
class CompletionRequest:
    model: str
    messages: Sequence[Mapping[str, str]]
    parameters: Mapping[str, Any] = field(default_factory=dict)
    timeout: float = 30.0


@dataclass(frozen=True)
class Completion:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0


class ProviderError(RuntimeError):
    """A provider call failed; ``kind`` is ``rate_limit``, ``service_down`` or ``error``."""

    def __init__(self, message: str, *, kind: str = "error") -> None:
        super().__init__(message)
        self.kind = kind


class ModelProvider(Protocol):
    """Blocking completion call against one vendor."""

    name: str

    def complete(self, request: CompletionRequest) -> Completion: ...


class OpenAIChatProvider:
    """Chat-completions provider asking for JSON object output."""

    name = "openai"

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        *,
        client: Any | None = None,
    ) -> None:
        self._registry = registry or ProviderRegistry()
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            credentials = self._registry.get_credentials(self.name)
            if not credentials.api_key:
                raise ProviderError("OPENAI_API_KEY is not configured", kind="service_down")
            self._client = OpenAI(
                api_key=credentials.api_key,
                base_url=credentials.extras.get("base_url"),
                max_retries=0,
            )
        return self._client

    def complete(self, request: CompletionRequest) -> Completion:
        client = self._get_client()
        try:
            completion = client.chat.completions.create(
                model=request.model,
                messages=list(request.messages),
                response_format={"type": "json_object"},
                timeout=request.timeout,
                **dict(request.parameters),
            )
        except openai.APITimeoutError as exc:
            raise UpstreamTimeout(f"{request.model} timed out") from exc
        except openai.RateLimitError as exc:
            raise ProviderError(str(exc), kind="rate_limit") from exc
        except (openai.APIConnectionError, openai.InternalServerError) as exc:
            raise ProviderError(str(exc), kind="service_down") from exc
        except openai.OpenAIError as exc:
            raise ProviderError(str(exc)) from exc

        content: Any = completion.choices[0].message.content if completion.choices else ""
        if isinstance(content, Sequence) and not isinstance(content, str):
            content = "".join(
                part.get("text", "") for part in content if isinstance(part, dict)
            )
        usage = getattr(completion, "usage", None)
        return Completion(
            text=(content or "").strip(),
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )


def create_provider(name: str, registry: ProviderRegistry | None = None) -> ModelProvider:
    """Instantiate the provider configured by ``AI_PROVIDER``."""

    normalized = name.lower()
    if normalized == "openai":
        return OpenAIChatProvider(registry)
    raise KeyError(f"Model provider '{name}' is not supported")
