"""
Defines the core Pydantic data models for the application.

These models serve as the formal, validated data contract between the adapters,
the vault, the store and the orchestrator.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# --- Constants ---
USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
SYSTEM_ROLE = "system"
Role = Literal[USER_ROLE, ASSISTANT_ROLE, SYSTEM_ROLE]

TEXT_GENERATION = "text_generation"
IMAGE_GENERATION = "image_generation"
STREAMING = "streaming"
Capability = Literal[TEXT_GENERATION, IMAGE_GENERATION, STREAMING]

SECRET_SCHEME_VERSION = 1


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def split_target_key(target_key: str) -> tuple:
    """Split ``"provider:model"`` on the first colon.

    Model ids may contain colons themselves (``llama3.2:latest``).
    """
    provider_id, sep, model = target_key.partition(":")
    if not sep or not provider_id or not model:
        raise ValueError(
            f"Invalid target key {target_key!r}; expected 'provider:model'"
        )
    return provider_id, model


# --- Model catalog ---
class ModelCapabilities(BaseModel):
    model_config = ConfigDict(frozen=True)

    text_generation: bool = True
    image_generation: bool = False
    streaming: bool = True
    context_length: Optional[int] = None


class ModelPricing(BaseModel):
    model_config = ConfigDict(frozen=True)

    input_cost_per_1k_tokens: Optional[float] = None
    output_cost_per_1k_tokens: Optional[float] = None


class ModelInfo(BaseModel):
    """A provider-owned, immutable description of one model."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str
    description: Optional[str] = None
    capabilities: ModelCapabilities = Field(default_factory=ModelCapabilities)
    pricing: Optional[ModelPricing] = None


# --- Requests ---
class ProviderConfig(BaseModel):
    """Provider tunables.

    Each adapter declares a subclass with its own bounds as ``config_schema``;
    values are validated against it before a call is issued.
    """

    model_config = ConfigDict(extra="ignore")

    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    top_p: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    top_k: Optional[int] = Field(default=None, ge=1)
    frequency_penalty: Optional[float] = Field(default=None, ge=-2.0, le=2.0)
    presence_penalty: Optional[float] = Field(default=None, ge=-2.0, le=2.0)
    stop: Optional[List[str]] = None


class GenerationOptions(BaseModel):
    """Per-call generation options passed to an adapter."""

    model_config = ConfigDict(frozen=True)

    model: str = Field(min_length=1)
    stream: bool = False
    system_prompt: Optional[str] = None
    context: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    stop: Optional[List[str]] = None

    def provider_config(self) -> Dict[str, Any]:
        """Returns only the tunables that were explicitly set."""
        return self.model_dump(
            include=set(ProviderConfig.model_fields), exclude_none=True
        )


class GenerationRequest(GenerationOptions):
    """Options plus the prompt; built fresh for every dispatched target."""

    prompt: str


class ImageGenerationOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: str = Field(min_length=1)
    size: Optional[str] = None
    quality: Optional[str] = None
    style: Optional[str] = None
    num_images: int = Field(default=1, ge=1, le=10)


# --- Responses ---
class Usage(BaseModel):
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class ChunkMetadata(BaseModel):
    model: str
    usage: Optional[Usage] = None
    finish_reason: Optional[str] = None


class ResponseChunk(BaseModel):
    """One unit of a normalized streaming response."""

    model_config = ConfigDict(frozen=True)

    content: str
    is_complete: bool
    metadata: Optional[ChunkMetadata] = None


class TextResponse(BaseModel):
    content: str
    metadata: Optional[ChunkMetadata] = None


class ImageResponse(BaseModel):
    url: Optional[str] = None
    b64_json: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


# --- Conversations ---
class ResponseStatus(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ResponseStatus.SUCCESS,
            ResponseStatus.ERROR,
            ResponseStatus.CANCELLED,
        )


class ResponseRecord(BaseModel):
    """One response to one prompt on one (provider, model) target."""

    id: str = Field(default_factory=_new_id)
    conversation_id: str
    provider_id: str
    model: str
    prompt: str
    response: str = ""
    status: ResponseStatus = ResponseStatus.PENDING
    timestamp: datetime = Field(default_factory=_now)
    duration: Optional[float] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    usage: Optional[Usage] = None
    finish_reason: Optional[str] = None

    @property
    def target_key(self) -> str:
        return f"{self.provider_id}:{self.model}"

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class ConversationEntry(BaseModel):
    """An originating prompt, its targets, and every response across turns."""

    id: str = Field(default_factory=_new_id, min_length=1)
    prompt: str
    providers: List[str] = Field(default_factory=list)
    models: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=_now)
    status: Literal["pending", "completed"] = "pending"
    responses: List[ResponseRecord] = Field(default_factory=list)

    def responses_for(self, target_key: str) -> List[ResponseRecord]:
        """Returns this target's records in chronological order."""
        records = [r for r in self.responses if r.target_key == target_key]
        return sorted(records, key=lambda r: r.timestamp)

    def find_response(self, response_id: str) -> Optional[ResponseRecord]:
        return next((r for r in self.responses if r.id == response_id), None)


# --- Secrets ---
class EncryptedSecret(BaseModel):
    """An API key encrypted at rest. Binary fields are base64 text."""

    provider_name: str = Field(min_length=1)
    encrypted_data: str
    iv: str
    salt: Optional[str] = None
    key_id: str
    scheme_version: int = SECRET_SCHEME_VERSION
    name: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    last_used: Optional[datetime] = None


class KeySummary(BaseModel):
    """Display-safe view of a stored key."""

    provider_name: str
    name: Optional[str] = None
    masked_key: str
    created_at: datetime
    last_used: Optional[datetime] = None
    decryption_failed: bool = False


class CustomModel(BaseModel):
    """A user-defined OpenAI- or Anthropic-compatible endpoint."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:8], min_length=1)
    name: str = Field(min_length=1)
    base_url: str = Field(min_length=1)
    provider_type: Literal["openai", "anthropic"] = "openai"
    created_at: datetime = Field(default_factory=_now)
    updated_at: Optional[datetime] = None

    @property
    def model_id(self) -> str:
        return f"custom:{self.id}"

    @property
    def secret_name(self) -> str:
        """Provider name the endpoint's key is stored under in the vault."""
        return f"custom:{self.id}"
