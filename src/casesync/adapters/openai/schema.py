"""Pydantic models for the parts of the chat completions API we use."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class OpenAIBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ChatMessage(OpenAIBaseModel):
    role: str = "assistant"
    content: str | None = None


class ChatChoice(OpenAIBaseModel):
    index: int = 0
    message: ChatMessage
    finish_reason: str | None = None


class Usage(OpenAIBaseModel):
    prompt_tokens: int | None = None
    completion_tokens: int | None = None


class ChatCompletionResponse(OpenAIBaseModel):
    id: str | None = None
    model: str | None = None
    choices: list[ChatChoice] = Field(default_factory=list)
    usage: Usage | None = None


class ErrorDetail(OpenAIBaseModel):
    message: str = ""
    type: str | None = None
    code: str | None = None


class ErrorResponse(OpenAIBaseModel):
    error: ErrorDetail
