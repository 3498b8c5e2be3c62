"""Static model catalogs for the built-in providers.

Pricing is in USD per 1K tokens. Context lengths are in tokens.
"""

from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional

from .models import ModelCapabilities, ModelInfo, ModelPricing


class ModelCatalog:
    """An ordered, id-unique collection of ``ModelInfo``."""

    def __init__(self, models: Iterable[ModelInfo] = ()):
        self._models: Dict[str, ModelInfo] = {}
        for model in models:
            if model.id in self._models:
                raise ValueError(f"Duplicate model id in catalog: {model.id}")
            self._models[model.id] = model

    def get(self, model_id: str) -> Optional[ModelInfo]:
        return self._models.get(model_id)

    def ids(self) -> List[str]:
        return list(self._models)

    def models(self) -> List[ModelInfo]:
        return list(self._models.values())

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def __iter__(self) -> Iterator[ModelInfo]:
        return iter(self._models.values())

    def __len__(self) -> int:
        return len(self._models)


def _model(
    model_id: str,
    name: str,
    description: str,
    context_length: int,
    input_cost: float,
    output_cost: float,
    text: bool = True,
    image: bool = False,
    streaming: bool = True,
) -> ModelInfo:
    return ModelInfo(
        id=model_id,
        name=name,
        description=description,
        capabilities=ModelCapabilities(
            text_generation=text,
            image_generation=image,
            streaming=streaming,
            context_length=context_length,
        ),
        pricing=ModelPricing(
            input_cost_per_1k_tokens=input_cost,
            output_cost_per_1k_tokens=output_cost,
        ),
    )


OPENAI_MODELS = ModelCatalog(
    [
        _model(
            "gpt-4.1",
            "GPT-4.1",
            "Flagship model for coding, instruction following and long context",
            1000000,
            0.002,
            0.008,
        ),
        _model(
            "gpt-4.1-mini",
            "GPT-4.1 Mini",
            "Balanced speed and intelligence at lower cost",
            1000000,
            0.0004,
            0.0016,
        ),
        _model(
            "gpt-4.1-nano",
            "GPT-4.1 Nano",
            "Fastest and cheapest model for low-latency tasks",
            1000000,
            0.0001,
            0.0004,
        ),
        _model(
            "o3",
            "OpenAI o3",
            "Strongest reasoning model for code, math and science",
            1000000,
            0.01,
            0.04,
        ),
        _model(
            "o4-mini",
            "OpenAI o4-mini",
            "Fast, cost-efficient reasoning model",
            1000000,
            0.0011,
            0.0044,
        ),
        _model("gpt-4o", "GPT-4o", "Multimodal model with vision", 128000, 0.005, 0.02),
        _model(
            "gpt-4o-mini",
            "GPT-4o Mini",
            "Affordable small model",
            128000,
            0.0006,
            0.0024,
        ),
        _model(
            "gpt-image-1",
            "GPT Image 1",
            "High fidelity image generation and editing",
            128000,
            0.005,
            0.04,
            text=False,
            image=True,
            streaming=False,
        ),
        _model(
            "dall-e-3",
            "DALL-E 3",
            "Image generation model",
            4000,
            0.04,
            0.04,
            text=False,
            image=True,
            streaming=False,
        ),
        _model(
            "dall-e-2",
            "DALL-E 2",
            "Previous generation image model",
            1000,
            0.02,
            0.02,
            text=False,
            image=True,
            streaming=False,
        ),
        _model(
            "gpt-4-turbo",
            "GPT-4 Turbo",
            "Previous high-intelligence model for multi-step tasks",
            128000,
            0.01,
            0.03,
        ),
    ]
)

ANTHROPIC_MODELS = ModelCatalog(
    [
        _model(
            "claude-opus-4-20250514",
            "Claude 4 Opus",
            "Most capable model for complex reasoning and coding",
            200000,
            0.015,
            0.075,
        ),
        _model(
            "claude-sonnet-4-20250514",
            "Claude 4 Sonnet",
            "High performance with balanced cost",
            200000,
            0.003,
            0.015,
        ),
        _model(
            "claude-3-7-sonnet-20250219",
            "Claude 3.7 Sonnet",
            "Extended thinking for hard problems",
            200000,
            0.003,
            0.015,
        ),
        _model(
            "claude-3-5-sonnet-20241022",
            "Claude 3.5 Sonnet",
            "Strong general model for most tasks",
            200000,
            0.003,
            0.015,
        ),
        _model(
            "claude-3-5-haiku-20241022",
            "Claude 3.5 Haiku",
            "Fastest, most cost-effective model for everyday tasks",
            200000,
            0.0008,
            0.004,
        ),
        _model(
            "claude-3-opus-20240229",
            "Claude 3 Opus (Legacy)",
            "Powerful model for highly complex tasks (legacy)",
            200000,
            0.015,
            0.075,
        ),
        _model(
            "claude-3-sonnet-20240229",
            "Claude 3 Sonnet (Legacy)",
            "Balanced intelligence and speed (legacy)",
            200000,
            0.003,
            0.015,
        ),
        _model(
            "claude-3-haiku-20240307",
            "Claude 3 Haiku (Legacy)",
            "Fastest Claude 3 model for light tasks (legacy)",
            200000,
            0.00025,
            0.00125,
        ),
    ]
)

GEMINI_MODELS = ModelCatalog(
    [
        _model(
            "gemini-2.5-flash-preview-05-20",
            "Gemini 2.5 Flash Preview",
            "Best price-performance with adaptive thinking",
            1048576,
            0.00015,
            0.0006,
        ),
        _model(
            "gemini-2.5-pro-preview-05-06",
            "Gemini 2.5 Pro Preview",
            "Most advanced reasoning model",
            1048576,
            0.00125,
            0.01,
        ),
        _model(
            "gemini-2.0-flash",
            "Gemini 2.0 Flash",
            "Next generation features and speed",
            1048576,
            0.0001,
            0.0004,
        ),
        _model(
            "gemini-2.0-flash-lite",
            "Gemini 2.0 Flash-Lite",
            "Cost efficient and low latency model for high-frequency tasks",
            1048576,
            0.000075,
            0.0003,
        ),
        _model(
            "gemini-1.5-pro",
            "Gemini 1.5 Pro",
            "Mid-size multimodal model for wide-ranging reasoning",
            2097152,
            0.00125,
            0.005,
        ),
        _model(
            "gemini-1.5-flash",
            "Gemini 1.5 Flash",
            "Fast and versatile multimodal model",
            1048576,
            0.000075,
            0.0003,
        ),
        _model(
            "gemini-1.5-flash-8b",
            "Gemini 1.5 Flash-8B",
            "Small model for lower intelligence tasks",
            1048576,
            0.0000375,
            0.00015,
        ),
        _model(
            "text-embedding-004",
            "Text Embedding 004",
            "Text embeddings; no text generation",
            2048,
            0,
            0,
            text=False,
            streaming=False,
        ),
        _model(
            "gemini-pro",
            "Gemini Pro (Legacy)",
            "Legacy model - consider upgrading to newer versions",
            30720,
            0.0005,
            0.0015,
        ),
    ]
)

OLLAMA_DEFAULT_MODELS = ModelCatalog(
    [
        _model(
            "llama3.3:latest",
            "Llama 3.3",
            "Meta's latest Llama model for general purpose tasks",
            8192,
            0,
            0,
        ),
        _model(
            "llama3.2:latest",
            "Llama 3.2",
            "Meta's Llama 3.2 model for various text tasks",
            8192,
            0,
            0,
        ),
        _model(
            "codellama:latest",
            "Code Llama",
            "Specialized model for code generation and programming",
            16384,
            0,
            0,
        ),
        _model("gemma2:latest", "Gemma 2", "Google's Gemma 2 model", 8192, 0, 0),
        _model(
            "qwen2.5:latest",
            "Qwen 2.5",
            "Alibaba's Qwen 2.5 model with multilingual support",
            32768,
            0,
            0,
        ),
    ]
)

ECHO_MODELS = ModelCatalog(
    [
        _model(
            "echo-v1",
            "Echo",
            "Deterministic local adapter that repeats the prompt",
            8192,
            0,
            0,
        )
    ]
)


# --- Ollama discovery ---
_OLLAMA_NAMES = {
    "llama3.3": "Llama 3.3",
    "llama3.2": "Llama 3.2",
    "llama3.1": "Llama 3.1",
    "llama3": "Llama 3",
    "llama2": "Llama 2",
    "codellama": "Code Llama",
    "gemma2": "Gemma 2",
    "gemma": "Gemma",
    "qwen2.5": "Qwen 2.5",
    "qwen2": "Qwen 2",
    "qwen": "Qwen",
    "mistral": "Mistral",
    "phi3": "Phi-3",
    "dolphin": "Dolphin",
    "neural-chat": "Neural Chat",
}

# checked in order; first substring match wins
_OLLAMA_FAMILIES = [
    ("llama", "Meta's Llama model for general purpose text generation"),
    ("code", "Specialized model for code generation and programming tasks"),
    ("gemma", "Google's Gemma model for various language tasks"),
    ("qwen", "Alibaba's Qwen model with multilingual capabilities"),
    ("mistral", "Mistral AI's high-performance language model"),
    ("phi", "Microsoft's compact and efficient Phi model"),
]

LARGE_MODEL_BYTES = 7_000_000_000


def ollama_display_name(model_id: str) -> str:
    base = model_id.split(":")[0]
    return _OLLAMA_NAMES.get(base, base[:1].upper() + base[1:])


def estimate_ollama_context(model_id: str, size: int = 0) -> int:
    name = model_id.lower()
    if "llama3.3" in name or "llama3.2" in name:
        return 128000
    if "qwen2.5" in name:
        return 32768
    if "codellama" in name:
        return 16384
    if "gemma2" in name:
        return 8192
    return 8192 if size > LARGE_MODEL_BYTES else 4096


def describe_ollama_model(
    model_id: str, size: int = 0, modified_at: Optional[datetime] = None
) -> ModelInfo:
    """Builds a ``ModelInfo`` for a model reported by a local Ollama server."""
    base = model_id.split(":")[0].lower()
    summary = next(
        (text for family, text in _OLLAMA_FAMILIES if family in base),
        "Local Ollama model for text generation",
    )
    size_text = f"{size / 1024 ** 3:.1f}GB" if size else "Unknown size"
    if modified_at is not None:
        size_text += f", updated {modified_at.date().isoformat()}"
    return _model(
        model_id,
        ollama_display_name(model_id),
        f"{summary} ({size_text})",
        estimate_ollama_context(model_id, size),
        0,
        0,
    )
