"""Concrete implementations for LLM providers."""

import asyncio
import inspect
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional, Type, Union

from pydantic import Field, ValidationError

from .catalog import (
    ANTHROPIC_MODELS,
    ECHO_MODELS,
    GEMINI_MODELS,
    OLLAMA_DEFAULT_MODELS,
    OPENAI_MODELS,
    ModelCatalog,
    describe_ollama_model,
)
from .errors import ErrorCode, LLMAdapterError, normalize_error
from .models import (
    ASSISTANT_ROLE,
    IMAGE_GENERATION,
    STREAMING,
    SYSTEM_ROLE,
    TEXT_GENERATION,
    USER_ROLE,
    Capability,
    ChunkMetadata,
    CustomModel,
    GenerationOptions,
    ImageGenerationOptions,
    ImageResponse,
    ModelCapabilities,
    ModelInfo,
    ModelPricing,
    ProviderConfig,
    TextResponse,
    Usage,
)
from .streaming import ChunkStream, StreamState

logger = logging.getLogger(__name__)

Messages = List[Dict[str, str]]


async def _close(resource: Any) -> None:
    close = getattr(resource, "aclose", None) or getattr(resource, "close", None)
    if close is None:
        return
    result = close()
    if inspect.isawaitable(result):
        await result


class LLM(ABC):
    """Abstract Base Class for all LLM providers.

    Subclasses declare their identity, catalog and config schema as class
    attributes and implement ``_complete`` and ``_open_stream``. Everything
    else (key checks, capability checks, config validation, message building
    and error normalization) happens here, once.
    """

    provider_id: str = ""
    provider_name: str = ""
    description: str = ""
    requires_api_key: bool = True
    supports_images: bool = False
    catalog: ModelCatalog = ModelCatalog()
    config_schema: Type[ProviderConfig] = ProviderConfig
    default_config: Dict[str, Any] = {"temperature": 0.7, "max_tokens": 2048}
    validation_model: Optional[str] = None

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    # --- Model registry ---
    def get_supported_models(self) -> List[ModelInfo]:
        return self.catalog.models()

    def get_model(self, model_id: str) -> Optional[ModelInfo]:
        return next((m for m in self.get_supported_models() if m.id == model_id), None)

    def supports_capability(self, model_id: str, capability: Capability) -> bool:
        model = self.get_model(model_id)
        if model is None:
            return False
        return bool(getattr(model.capabilities, capability, False))

    def get_context_length(self, model_id: str) -> Optional[int]:
        model = self.get_model(model_id)
        return model.capabilities.context_length if model else None

    def get_pricing(self, model_id: str) -> Optional[ModelPricing]:
        model = self.get_model(model_id)
        return model.pricing if model else None

    # --- Request preparation ---
    def validate_config(self, options: GenerationOptions) -> ProviderConfig:
        """Merges provider defaults with the caller's tunables and validates them.

        Raises
        ------
        LLMAdapterError
            With code ``INVALID_REQUEST`` when a value is outside the
            provider's bounds.
        """
        values = {**self.default_config, **options.provider_config()}
        try:
            return self.config_schema(**values)
        except ValidationError as exc:
            fields = ", ".join(
                ".".join(str(p) for p in err["loc"]) for err in exc.errors()
            )
            raise LLMAdapterError(
                f"Invalid configuration for {self.provider_name}: {fields}",
                ErrorCode.INVALID_REQUEST,
                original=exc,
            ) from exc

    def build_messages(self, prompt: str, options: GenerationOptions) -> Messages:
        """Orders system prompt, prior context (as assistant) and the user prompt."""
        messages = []
        if options.system_prompt:
            messages.append({"role": SYSTEM_ROLE, "content": options.system_prompt})
        if options.context:
            messages.append({"role": ASSISTANT_ROLE, "content": options.context})
        if prompt:
            messages.append({"role": USER_ROLE, "content": prompt})
        return messages

    def resolve_api_key(self, api_key: Optional[str]) -> Optional[str]:
        if self.requires_api_key and not api_key:
            raise LLMAdapterError(
                f"API key is required for {self.provider_name}",
                ErrorCode.MISSING_API_KEY,
                401,
            )
        return api_key

    def check_capability(self, model_id: str, capability: Capability) -> None:
        if not self.supports_capability(model_id, capability):
            label = capability.replace("_", " ")
            raise LLMAdapterError(
                f"Model {model_id} does not support {label}",
                ErrorCode.UNSUPPORTED_OPERATION,
            )

    def handle_error(self, error: BaseException) -> LLMAdapterError:
        return normalize_error(error, self.provider_name)

    async def prepare(self, model_id: str) -> None:
        """Runs before capability checks; dynamic catalogs refresh here."""

    # --- Operations ---
    async def validate_api_key(self, api_key: Optional[str]) -> bool:
        """Issues a minimal one-token request. Never raises."""
        if self.requires_api_key and not api_key:
            return False
        if self.validation_model is None:
            return True
        options = GenerationOptions(model=self.validation_model, max_tokens=1)
        try:
            messages = self.build_messages("Hello", options)
            await self._complete(messages, options, api_key)
        except Exception as exc:
            logger.info(
                "API key validation failed for %s: %s",
                self.provider_name,
                self.handle_error(exc).code.value,
            )
            return False
        return True

    async def generate_text(
        self, prompt: str, options: GenerationOptions, api_key: Optional[str] = None
    ) -> Union[TextResponse, ChunkStream]:
        """Generates text, either whole or as a ``ChunkStream``.

        Parameters
        ----------
        prompt : str
            The user prompt for this call.
        options : GenerationOptions
            Model id, stream flag, system prompt, context and tunables.
        api_key : str, optional
            Plaintext key; required unless the provider is keyless.

        Returns
        -------
        TextResponse or ChunkStream
            A ``ChunkStream`` when ``options.stream`` is set.

        Raises
        ------
        LLMAdapterError
            For every failure, already normalized.
        """
        try:
            api_key = self.resolve_api_key(api_key)
            await self.prepare(options.model)
            self.check_capability(options.model, TEXT_GENERATION)
            if options.stream:
                self.check_capability(options.model, STREAMING)
            config = self.validate_config(options)
            effective = options.model_copy(update=config.model_dump(exclude_none=True))
            messages = self.build_messages(prompt, effective)
            if not effective.stream:
                return await self._complete(messages, effective, api_key)
            state = StreamState()
            deltas = await self._open_stream(messages, effective, api_key, state)
            return ChunkStream(deltas, effective.model, self.provider_name, state=state)
        except LLMAdapterError:
            raise
        except Exception as exc:
            raise self.handle_error(exc) from exc

    async def generate_image(
        self,
        prompt: str,
        options: ImageGenerationOptions,
        api_key: Optional[str] = None,
    ) -> List[ImageResponse]:
        raise LLMAdapterError(
            f"{self.provider_name} does not support image generation",
            ErrorCode.UNSUPPORTED_OPERATION,
        )

    @abstractmethod
    async def _complete(
        self, messages: Messages, options: GenerationOptions, api_key: Optional[str]
    ) -> TextResponse:
        """Issues a non-streaming request and returns the whole response."""
        pass

    @abstractmethod
    async def _open_stream(
        self,
        messages: Messages,
        options: GenerationOptions,
        api_key: Optional[str],
        state: StreamState,
    ) -> AsyncIterator[str]:
        """Opens a streaming request and returns an iterator of text deltas.

        Provider errors raised while opening surface here; errors raised while
        iterating surface through the ``ChunkStream``. Usage and finish reason
        are recorded on ``state`` as they arrive.
        """
        pass


def _only_set(**params: Any) -> Dict[str, Any]:
    return {k: v for k, v in params.items() if v is not None}


def _split_system(messages: Messages) -> tuple:
    system = "\n\n".join(m["content"] for m in messages if m["role"] == SYSTEM_ROLE)
    return system or None, [m for m in messages if m["role"] != SYSTEM_ROLE]


# --- OpenAI ---
class OpenAI(LLM):
    provider_id = "openai"
    provider_name = "OpenAI"
    description = "GPT chat models and DALL-E / GPT Image generation"
    supports_images = True
    catalog = OPENAI_MODELS
    validation_model = "gpt-4.1-nano"

    REASONING_PREFIXES = ("o1", "o3", "o4")

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        super().__init__(timeout=timeout)
        self.base_url = base_url

    def _client(self, api_key: Optional[str]):
        from openai import AsyncOpenAI

        return AsyncOpenAI(
            **_only_set(api_key=api_key, base_url=self.base_url, timeout=self.timeout)
        )

    def _params(self, messages: Messages, options: GenerationOptions) -> Dict[str, Any]:
        params = {"model": options.model, "messages": messages}
        if options.model.startswith(self.REASONING_PREFIXES):
            # reasoning models reject sampling parameters
            params.update(
                _only_set(max_completion_tokens=options.max_tokens, stop=options.stop)
            )
            return params
        params.update(
            _only_set(
                temperature=options.temperature,
                max_tokens=options.max_tokens,
                top_p=options.top_p,
                frequency_penalty=options.frequency_penalty,
                presence_penalty=options.presence_penalty,
                stop=options.stop,
            )
        )
        return params

    async def _complete(self, messages, options, api_key):
        client = self._client(api_key)
        params = self._params(messages, options)
        response = await client.chat.completions.create(**params)
        choice = response.choices[0]
        usage = None
        if response.usage is not None:
            usage = Usage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )
        return TextResponse(
            content=choice.message.content or "",
            metadata=ChunkMetadata(
                model=options.model,
                usage=usage,
                finish_reason=choice.finish_reason or "stop",
            ),
        )

    async def _open_stream(self, messages, options, api_key, state):
        client = self._client(api_key)
        stream = await client.chat.completions.create(
            **self._params(messages, options),
            stream=True,
            stream_options={"include_usage": True},
        )
        return self._deltas(stream, state)

    async def _deltas(self, stream, state: StreamState) -> AsyncIterator[str]:
        try:
            async for chunk in stream:
                if getattr(chunk, "usage", None) is not None:
                    state.set_usage(
                        chunk.usage.prompt_tokens,
                        chunk.usage.completion_tokens,
                        chunk.usage.total_tokens,
                    )
                for choice in chunk.choices:
                    if choice.finish_reason:
                        state.finish_reason = choice.finish_reason
                    if choice.delta is not None and choice.delta.content:
                        yield choice.delta.content
        finally:
            await _close(stream)

    async def generate_image(self, prompt, options, api_key=None):
        try:
            api_key = self.resolve_api_key(api_key)
            self.check_capability(options.model, IMAGE_GENERATION)
            params = _only_set(
                model=options.model,
                prompt=prompt,
                n=options.num_images,
                size=options.size,
                quality=options.quality,
                style=options.style if options.model == "dall-e-3" else None,
            )
            response = await self._client(api_key).images.generate(**params)
        except LLMAdapterError:
            raise
        except Exception as exc:
            raise self.handle_error(exc) from exc
        return [
            ImageResponse(
                url=getattr(image, "url", None),
                b64_json=getattr(image, "b64_json", None),
                metadata=_only_set(
                    model=options.model,
                    revised_prompt=getattr(image, "revised_prompt", None),
                ),
            )
            for image in response.data
        ]


# --- Anthropic ---
class AnthropicConfig(ProviderConfig):
    temperature: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_tokens: Optional[int] = Field(default=None, ge=1, le=8192)
    top_k: Optional[int] = Field(default=None, ge=1, le=200)
    stop: Optional[List[str]] = Field(default=None, max_length=4)


class Anthropic(LLM):
    provider_id = "anthropic"
    provider_name = "Anthropic Claude"
    description = "Claude models from Anthropic"
    catalog = ANTHROPIC_MODELS
    config_schema = AnthropicConfig
    validation_model = "claude-3-5-haiku-20241022"

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        super().__init__(timeout=timeout)
        self.base_url = base_url

    def _client(self, api_key: Optional[str]):
        from anthropic import AsyncAnthropic

        return AsyncAnthropic(
            **_only_set(api_key=api_key, base_url=self.base_url, timeout=self.timeout)
        )

    def _params(self, messages: Messages, options: GenerationOptions) -> Dict[str, Any]:
        system, chat = _split_system(messages)
        params = {
            "model": options.model,
            "messages": chat,
            # required by the Messages API
            "max_tokens": options.max_tokens or self.default_config["max_tokens"],
        }
        params.update(
            _only_set(
                system=system,
                temperature=options.temperature,
                top_p=options.top_p,
                top_k=options.top_k,
                stop_sequences=options.stop,
            )
        )
        return params

    async def _complete(self, messages, options, api_key):
        client = self._client(api_key)
        response = await client.messages.create(**self._params(messages, options))
        content = "".join(
            block.text
            for block in response.content
            if getattr(block, "type", None) == "text"
        )
        usage = Usage(
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
            total_tokens=response.usage.input_tokens + response.usage.output_tokens,
        )
        return TextResponse(
            content=content,
            metadata=ChunkMetadata(
                model=options.model,
                usage=usage,
                finish_reason=response.stop_reason or "stop",
            ),
        )

    async def _open_stream(self, messages, options, api_key, state):
        stream = await self._client(api_key).messages.create(
            **self._params(messages, options), stream=True
        )
        return self._deltas(stream, state)

    async def _deltas(self, stream, state: StreamState) -> AsyncIterator[str]:
        try:
            async for event in stream:
                if event.type == "message_start":
                    state.set_usage(prompt_tokens=event.message.usage.input_tokens)
                elif event.type == "content_block_delta":
                    text = getattr(event.delta, "text", None)
                    if text:
                        yield text
                elif event.type == "message_delta":
                    if event.delta.stop_reason:
                        state.finish_reason = event.delta.stop_reason
                    if event.usage is not None:
                        state.set_usage(completion_tokens=event.usage.output_tokens)
        finally:
            await _close(stream)


# --- Google Gemini ---
class Gemini(LLM):
    provider_id = "google"
    provider_name = "Google Gemini"
    description = "Gemini models from Google AI Studio"
    catalog = GEMINI_MODELS
    validation_model = "gemini-1.5-flash"

    def _client(self, api_key: Optional[str]):
        from google import genai

        if self.timeout is not None:
            from google.genai import types

            # HttpOptions.timeout is in milliseconds
            return genai.Client(
                api_key=api_key,
                http_options=types.HttpOptions(timeout=int(self.timeout * 1000)),
            )
        return genai.Client(api_key=api_key)

    def _request(
        self, messages: Messages, options: GenerationOptions
    ) -> Dict[str, Any]:
        from google.genai import types

        system, chat = _split_system(messages)
        contents = [
            types.Content(
                role="model" if m["role"] == ASSISTANT_ROLE else "user",
                parts=[types.Part(text=m["content"])],
            )
            for m in chat
        ]
        config = types.GenerateContentConfig(
            **_only_set(
                system_instruction=system,
                temperature=options.temperature,
                max_output_tokens=options.max_tokens,
                top_p=options.top_p,
                top_k=options.top_k,
                stop_sequences=options.stop,
            )
        )
        return {"model": options.model, "contents": contents, "config": config}

    @staticmethod
    def _record_usage(response: Any, state: StreamState) -> None:
        meta = getattr(response, "usage_metadata", None)
        if meta is not None:
            state.set_usage(
                meta.prompt_token_count,
                meta.candidates_token_count,
                meta.total_token_count,
            )
        for candidate in getattr(response, "candidates", None) or []:
            reason = getattr(candidate, "finish_reason", None)
            if reason:
                state.finish_reason = str(getattr(reason, "value", reason)).lower()

    async def _complete(self, messages, options, api_key):
        client = self._client(api_key)
        request = self._request(messages, options)
        response = await client.aio.models.generate_content(**request)
        state = StreamState()
        self._record_usage(response, state)
        return TextResponse(
            content=response.text or "",
            metadata=ChunkMetadata(
                model=options.model,
                usage=state.usage,
                finish_reason=state.finish_reason or "stop",
            ),
        )

    async def _open_stream(self, messages, options, api_key, state):
        client = self._client(api_key)
        stream = await client.aio.models.generate_content_stream(
            **self._request(messages, options)
        )
        return self._deltas(stream, state)

    async def _deltas(self, stream, state: StreamState) -> AsyncIterator[str]:
        try:
            async for response in stream:
                self._record_usage(response, state)
                if response.text:
                    yield response.text
        finally:
            await _close(stream)


# --- Ollama ---
class Ollama(LLM):
    provider_id = "ollama"
    provider_name = "Ollama"
    description = "Local Ollama models for text generation and chat"
    requires_api_key = False
    catalog = OLLAMA_DEFAULT_MODELS

    def __init__(
        self,
        host: str = "http://localhost:11434",
        timeout: Optional[float] = None,
        discover_models: bool = True,
        refresh_interval: float = 300.0,
    ):
        super().__init__(timeout=timeout)
        self.host = host
        self.discover_models = discover_models
        self.refresh_interval = refresh_interval
        self._discovered: Optional[ModelCatalog] = None
        self._refreshed_at: Optional[float] = None

    def _client(self):
        from ollama import AsyncClient

        return AsyncClient(**_only_set(host=self.host, timeout=self.timeout))

    def get_supported_models(self) -> List[ModelInfo]:
        return (self._discovered or self.catalog).models()

    async def refresh_models(self) -> List[ModelInfo]:
        """Replaces the catalog with the models installed on the server."""
        response = await self._client().list()
        found = [
            describe_ollama_model(m.model, m.size or 0, m.modified_at)
            for m in response.models
        ]
        self._refreshed_at = time.monotonic()
        if found:
            self._discovered = ModelCatalog(found)
            logger.info("Discovered %d Ollama models at %s", len(found), self.host)
        return self.get_supported_models()

    def _is_stale(self) -> bool:
        if not self.discover_models:
            return False
        if self._refreshed_at is None:
            return True
        return time.monotonic() - self._refreshed_at > self.refresh_interval

    async def prepare(self, model_id: str) -> None:
        await self.ensure_model_available(model_id)

    async def ensure_model_available(self, model_id: str) -> None:
        if self._is_stale():
            await self.refresh_models()
        if self.get_model(model_id) is None:
            available = ", ".join(m.id for m in self.get_supported_models())
            raise LLMAdapterError(
                f"Model {model_id} is not available in Ollama. "
                f"Available models: {available}",
                ErrorCode.MODEL_NOT_FOUND,
            )

    async def validate_api_key(self, api_key: Optional[str] = None) -> bool:
        """Ollama is keyless; reports whether the server answers ``/api/tags``."""
        try:
            await self.refresh_models()
        except Exception as exc:
            logger.info("Ollama server at %s unreachable: %s", self.host, exc)
            return False
        return True

    @staticmethod
    def _options(options: GenerationOptions) -> Dict[str, Any]:
        return _only_set(
            temperature=options.temperature,
            num_predict=options.max_tokens,
            top_p=options.top_p,
            top_k=options.top_k,
            frequency_penalty=options.frequency_penalty,
            presence_penalty=options.presence_penalty,
            stop=options.stop,
        )

    @staticmethod
    def _record(part: Any, state: StreamState) -> None:
        if getattr(part, "done", False):
            state.finish_reason = getattr(part, "done_reason", None) or "stop"
            state.set_usage(
                getattr(part, "prompt_eval_count", None),
                getattr(part, "eval_count", None),
            )

    async def _complete(self, messages, options, api_key):
        response = await self._client().chat(
            model=options.model, messages=messages, options=self._options(options)
        )
        state = StreamState()
        self._record(response, state)
        return TextResponse(
            content=response.message.content or "",
            metadata=ChunkMetadata(
                model=options.model,
                usage=state.usage,
                finish_reason=state.finish_reason or "stop",
            ),
        )

    async def _open_stream(self, messages, options, api_key, state):
        stream = await self._client().chat(
            model=options.model,
            messages=messages,
            options=self._options(options),
            stream=True,
        )
        return self._deltas(stream, state)

    async def _deltas(self, stream, state: StreamState) -> AsyncIterator[str]:
        try:
            async for part in stream:
                self._record(part, state)
                if part.message is not None and part.message.content:
                    yield part.message.content
        finally:
            await _close(stream)


# --- Custom endpoints ---
class CustomConfig(ProviderConfig):
    max_tokens: Optional[int] = Field(default=None, ge=1, le=100000)


class Custom(LLM):
    """An OpenAI- or Anthropic-compatible endpoint defined by the user.

    The request format follows ``provider_type``; the upstream model name is
    the endpoint's ``name``. The adapter exposes a single model whose id is
    ``custom:<id>``.
    """

    provider_id = "custom"
    provider_name = "Custom Models"
    description = "User-defined custom models with configurable provider types"
    config_schema = CustomConfig
    default_config = {
        "temperature": 0.7,
        "max_tokens": 4000,
        "top_p": 1.0,
        "frequency_penalty": 0.0,
        "presence_penalty": 0.0,
    }

    DELEGATES = {"openai": OpenAI, "anthropic": Anthropic}

    def __init__(
        self,
        model: CustomModel,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(timeout=timeout)
        delegate_cls = self.DELEGATES.get(model.provider_type)
        if delegate_cls is None:
            raise LLMAdapterError(
                f"Unsupported provider type: {model.provider_type}",
                ErrorCode.INVALID_REQUEST,
            )
        self.model = model
        self.api_key = api_key
        self.delegate = delegate_cls(base_url=model.base_url, timeout=timeout)
        self.validation_model = model.model_id
        self.catalog = ModelCatalog(
            [
                ModelInfo(
                    id=model.model_id,
                    name=model.name,
                    description=(
                        f"Custom model: {model.name} ({model.provider_type} format)"
                    ),
                    capabilities=ModelCapabilities(context_length=128000),
                    pricing=ModelPricing(
                        input_cost_per_1k_tokens=0, output_cost_per_1k_tokens=0
                    ),
                )
            ]
        )

    def normalize_model_id(self, model_id: str) -> str:
        return model_id if ":" in model_id else f"custom:{model_id}"

    def resolve_api_key(self, api_key: Optional[str]) -> Optional[str]:
        return super().resolve_api_key(api_key or self.api_key)

    async def validate_api_key(self, api_key: Optional[str] = None) -> bool:
        return await super().validate_api_key(api_key or self.api_key)

    async def generate_text(self, prompt, options, api_key=None):
        model_id = self.normalize_model_id(options.model)
        if model_id != options.model:
            options = options.model_copy(update={"model": model_id})
        return await super().generate_text(prompt, options, api_key)

    def _upstream(self, options: GenerationOptions) -> GenerationOptions:
        return options.model_copy(update={"model": self.model.name})

    async def _complete(self, messages, options, api_key):
        upstream = self._upstream(options)
        response = await self.delegate._complete(messages, upstream, api_key)
        if response.metadata is not None:
            response.metadata.model = options.model
        return response

    async def _open_stream(self, messages, options, api_key, state):
        upstream = self._upstream(options)
        return await self.delegate._open_stream(messages, upstream, api_key, state)

    async def generate_image(self, prompt, options, api_key=None):
        raise LLMAdapterError(
            "Image generation is not supported for custom models",
            ErrorCode.UNSUPPORTED_OPERATION,
        )


# --- Echo ---
class Echo(LLM):
    """Keyless local adapter that streams the prompt back; for development and tests."""

    provider_id = "echo"
    provider_name = "Echo"
    description = "Deterministic local adapter that repeats the prompt"
    requires_api_key = False
    catalog = ECHO_MODELS
    validation_model = "echo-v1"

    def __init__(self, delay: float = 0.0, chunk_size: int = 10):
        super().__init__()
        self.delay = delay
        self.chunk_size = chunk_size

    @staticmethod
    def _reply(messages: Messages) -> str:
        prompt = messages[-1]["content"] if messages else "No message provided"
        return f"Echo: {prompt}"

    @staticmethod
    def _usage(messages: Messages, reply: str) -> Usage:
        prompt_tokens = sum(len(m["content"].split()) for m in messages)
        completion_tokens = len(reply.split())
        return Usage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )

    async def _complete(self, messages, options, api_key):
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self._reply(messages)
        return TextResponse(
            content=reply,
            metadata=ChunkMetadata(
                model=options.model,
                usage=self._usage(messages, reply),
                finish_reason="stop",
            ),
        )

    async def _open_stream(self, messages, options, api_key, state):
        return self._deltas(self._reply(messages), messages, state)

    async def _deltas(self, reply: str, messages: Messages, state: StreamState):
        for start in range(0, len(reply), self.chunk_size):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield reply[start : start + self.chunk_size]
        usage = self._usage(messages, reply)
        state.set_usage(
            usage.prompt_tokens, usage.completion_tokens, usage.total_tokens
        )
        state.finish_reason = "stop"
