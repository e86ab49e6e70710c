"""Generation parameter defaults per model family."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class ResponseParameterStore:
    """Maintain model specific generation parameter defaults."""

    _DEFAULTS: Mapping[str, dict[str, Any]] = {
        "gpt-4o": {"temperature": 0.3, "max_tokens": 1024},
        "gpt-4o-mini": {"temperature": 0.3, "max_tokens": 1024},
        "gpt-3.5-turbo": {"temperature": 0.2, "max_tokens": 800},
    }

    def __init__(self, overrides: Mapping[str, Mapping[str, Any]] | None = None):
        self._defaults: dict[str, dict[str, Any]] = {
            model: dict(params) for model, params in self._DEFAULTS.items()
        }
        if overrides:
            for model, params in overrides.items():
                merged = self._defaults.setdefault(model.lower(), {})
                merged.update(params)

    def defaults_for_model(self, model: str) -> dict[str, Any]:
        """Return defaults for ``model``, falling back to its family prefix."""

        key = model.lower()
        if key in self._defaults:
            return dict(self._defaults[key])
        for known in sorted(self._defaults, key=len, reverse=True):
            if key.startswith(known):
                return dict(self._defaults[known])
        return {"temperature": 0.3}

    def merge(self, model: str, *overrides: dict[str, Any] | None) -> dict[str, Any]:
        """Merge multiple overrides on top of model defaults."""

        params = self.defaults_for_model(model)
        for override in overrides:
            if override:
                params.update(override)
        return params
