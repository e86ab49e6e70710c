"""Language-model invocation: providers, prompts, parsing and fallback."""

from .invoker import ModelInvoker, ModelPreference
from .parsing import parse_model_output, repair_truncated_json
from .prompts import PromptTemplateStore
from .providers import (
    Completion,
    CompletionRequest,
    ModelProvider,
    OpenAIChatProvider,
    ProviderError,
    ProviderRegistry,
    create_provider,
)
from .responses import ResponseParameterStore
from .schemas import (
    ContactInfo,
    ExtractedFields,
    GenerationResult,
    Intent,
    InvocationAttempt,
    ModelOutput,
    TokenUsage,
)

__all__ = [
    "Completion",
    "CompletionRequest",
    "ContactInfo",
    "ExtractedFields",
    "GenerationResult",
    "Intent",
    "InvocationAttempt",
    "ModelInvoker",
    "ModelOutput",
    "ModelPreference",
    "ModelProvider",
    "OpenAIChatProvider",
    "PromptTemplateStore",
    "ProviderError",
    "ProviderRegistry",
    "ResponseParameterStore",
    "TokenUsage",
    "create_provider",
    "parse_model_output",
    "repair_truncated_json",
]
