"""OpenAI chat completions adapter."""

from __future__ import annotations

from .client import OpenAIMatchClassifier

__all__ = ["OpenAIMatchClassifier"]
