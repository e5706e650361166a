"""Pydantic request/response models for the OpenAI-compatible API."""

import time
import uuid
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from synapforge.generation.config import MAX_SEED


def make_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


def now() -> int:
    return int(time.time())


class SamplingParams(BaseModel):
    """Sampling fields shared by completion and chat requests. Unset fields use the server defaults."""

    model: str | None = Field(None, description="Model id. Informational; the loaded model always serves.")
    max_tokens: int | None = Field(None, ge=1, description="Maximum number of tokens to generate.")
    temperature: float | None = Field(None, ge=0.0, description="Controls randomness. 0 for ArgMax decoding.")
    top_k: int | None = Field(None, ge=1, description="Top-k sampling parameter. None to disable.")
    top_p: float | None = Field(None, gt=0.0, le=1.0, description="Nucleus sampling (top-p) parameter.")
    repeat_penalty: float | None = Field(None, ge=1.0, description="Repeat penalty. 1.0 means no penalty.")
    repeat_last_n: int | None = Field(None, ge=0, description="Number of trailing tokens the penalty looks at.")
    seed: int | None = Field(None, ge=0, le=MAX_SEED, description="Seed of the sampling random generator.")
    stream: bool = Field(False, description="Streaming responses are not supported; must be false.")
    user: str | None = None


class CompletionRequest(SamplingParams):
    prompt: str = Field(..., description="Input prompt text.")


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatCompletionRequest(SamplingParams):
    messages: list[ChatMessage] = Field(..., min_length=1)


class UsageInfo(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class CompletionChoice(BaseModel):
    index: int = 0
    text: str = ""
    logprobs: None = None
    finish_reason: str | None = None


class CompletionResponse(BaseModel):
    id: str = Field(default_factory=lambda: make_id("cmpl"))
    object: Literal["text_completion"] = "text_completion"
    created: int = Field(default_factory=now)
    model: str
    choices: list[CompletionChoice]
    usage: UsageInfo


class ChatChoice(BaseModel):
    index: int = 0
    message: ChatMessage
    finish_reason: str | None = None


class ChatCompletionResponse(BaseModel):
    id: str = Field(default_factory=lambda: make_id("chatcmpl"))
    object: Literal["chat.completion"] = "chat.completion"
    created: int = Field(default_factory=now)
    model: str
    choices: list[ChatChoice]
    usage: UsageInfo


class EmbeddingRequest(BaseModel):
    model: str | None = None
    input: str | list[str]

    @field_validator("input")
    @classmethod
    def _check_input(cls, v: str | list[str]) -> list[str]:
        texts = [v] if isinstance(v, str) else v
        if not texts or any(not t for t in texts):
            raise ValueError("input must be a non-empty string or a list of non-empty strings")
        return texts


class EmbeddingData(BaseModel):
    object: Literal["embedding"] = "embedding"
    embedding: list[float]
    index: int


class EmbeddingUsage(BaseModel):
    prompt_tokens: int = 0
    total_tokens: int = 0


class EmbeddingResponse(BaseModel):
    object: Literal["list"] = "list"
    data: list[EmbeddingData]
    model: str
    usage: EmbeddingUsage


class ModelInfo(BaseModel):
    id: str
    object: Literal["model"] = "model"
    created: int
    owned_by: str = "synapforge"


class ModelListResponse(BaseModel):
    object: Literal["list"] = "list"
    data: list[ModelInfo]


class DeleteModelResponse(BaseModel):
    id: str
    object: Literal["model"] = "model"
    deleted: bool
