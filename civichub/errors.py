"""Failure taxonomy shared by the message pipeline.

Only a subset of these ever crosses a component boundary as an exception:

- ``KnowledgeUnavailable`` and ``UpstreamTimeout`` are raised by retrieval
  transports and absorbed by the retriever (empty, degraded result).
- ``ModelUnavailable`` is raised by the model invoker once the fallback model
  has also failed; the orchestrator turns it into ``success=False``.
- ``FormatError`` is raised while building structured channel payloads and is
  absorbed by the formatter, which degrades to plain text.
- ``RateLimited`` and ``Blacklisted`` describe guard rejections. The guard
  returns decisions rather than raising; these classes exist so rejections are
  logged with the same vocabulary as real failures.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any


class PipelineError(RuntimeError):
    """Base class for message pipeline failures."""


class RateLimited(PipelineError):
    """A sender exceeded its message allowance or is cooling down."""


class Blacklisted(PipelineError):
    """A sender is on the tenant blacklist."""


class KnowledgeUnavailable(PipelineError):
    """The knowledge search service failed or returned an unusable payload."""


class UpstreamTimeout(PipelineError):
    """An external call exceeded its deadline."""


class FormatError(PipelineError):
    """Generation output could not be turned into a structured payload."""


class ModelUnavailable(PipelineError):
    """Both the primary and the fallback model failed.

    ``attempts`` keeps the per-model usage records so token consumption can be
    accounted for even though no reply was produced. ``kind`` classifies the
    last failure (``timeout``, ``rate_limit``, ``service_down`` or ``error``)
    and drives the choice of the citizen-facing fallback message.
    """

    def __init__(
        self,
        message: str,
        *,
        attempts: Iterable[Any] = (),
        kind: str = "error",
    ) -> None:
        super().__init__(message)
        self.attempts = list(attempts)
        self.kind = kind


__all__ = [
    "Blacklisted",
    "FormatError",
    "KnowledgeUnavailable",
    "ModelUnavailable",
    "PipelineError",
    "RateLimited",
    "UpstreamTimeout",
]
