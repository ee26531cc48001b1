"""Port for the language-model classifier used by heuristic matching."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


class ClassifierError(RuntimeError):
    """Raised when the classifier could not produce a reply."""


@dataclass(frozen=True, slots=True)
class ClassifierReply:
    content: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None


@runtime_checkable
class MatchClassifier(Protocol):
    async def classify(self, *, system_prompt: str, user_prompt: str) -> ClassifierReply: ...
