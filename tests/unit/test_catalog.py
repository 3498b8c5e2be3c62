"""
Tests for the static model catalogs and Ollama model discovery helpers.
"""

from datetime import datetime

import pytest
from promptforge.catalog import (
    ANTHROPIC_MODELS,
    ECHO_MODELS,
    GEMINI_MODELS,
    OLLAMA_DEFAULT_MODELS,
    OPENAI_MODELS,
    ModelCatalog,
    describe_ollama_model,
    estimate_ollama_context,
    ollama_display_name,
)
from promptforge.models import ModelInfo


class TestModelCatalog:
    def test_preserves_order(self):
        catalog = ModelCatalog(
            [ModelInfo(id="b", name="B"), ModelInfo(id="a", name="A")]
        )
        assert catalog.ids() == ["b", "a"]
        assert [m.id for m in catalog] == ["b", "a"]
        assert len(catalog) == 2

    def test_lookup(self):
        catalog = ModelCatalog([ModelInfo(id="a", name="A")])
        assert catalog.get("a").name == "A"
        assert catalog.get("missing") is None
        assert "a" in catalog
        assert "missing" not in catalog

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValueError, match="Duplicate"):
            ModelCatalog([ModelInfo(id="a", name="A"), ModelInfo(id="a", name="Again")])


class TestBuiltInCatalogs:
    def test_openai(self):
        assert len(OPENAI_MODELS) == 11
        gpt4o = OPENAI_MODELS.get("gpt-4o")
        assert gpt4o.capabilities.context_length == 128000
        assert gpt4o.pricing.input_cost_per_1k_tokens == 0.005
        dalle = OPENAI_MODELS.get("dall-e-3")
        assert dalle.capabilities.image_generation
        assert not dalle.capabilities.text_generation

    def test_anthropic_context(self):
        assert len(ANTHROPIC_MODELS) == 8
        assert all(m.capabilities.context_length == 200000 for m in ANTHROPIC_MODELS)

    def test_gemini_embedding_is_not_a_text_model(self):
        assert len(GEMINI_MODELS) == 9
        assert not GEMINI_MODELS.get("text-embedding-004").capabilities.text_generation
        pro = GEMINI_MODELS.get("gemini-1.5-pro")
        assert pro.capabilities.context_length == 2097152

    def test_ollama_defaults_are_free(self):
        assert len(OLLAMA_DEFAULT_MODELS) == 5
        assert all(
            m.pricing.input_cost_per_1k_tokens == 0 for m in OLLAMA_DEFAULT_MODELS
        )
        qwen = OLLAMA_DEFAULT_MODELS.get("qwen2.5:latest")
        assert qwen.capabilities.context_length == 32768

    def test_echo(self):
        assert ECHO_MODELS.ids() == ["echo-v1"]


class TestOllamaDiscovery:
    @pytest.mark.parametrize(
        "model_id,name",
        [
            ("llama3.2:latest", "Llama 3.2"),
            ("codellama:7b", "Code Llama"),
            ("starcoder2:3b", "Starcoder2"),
        ],
    )
    def test_display_name(self, model_id, name):
        assert ollama_display_name(model_id) == name

    @pytest.mark.parametrize(
        "model_id,size,context",
        [
            ("llama3.3:70b", 0, 128000),
            ("qwen2.5:7b", 0, 32768),
            ("codellama:13b", 0, 16384),
            ("gemma2:9b", 0, 8192),
            ("mystery:big", 8_000_000_000, 8192),
            ("mystery:small", 1_000_000_000, 4096),
        ],
    )
    def test_context_estimate(self, model_id, size, context):
        assert estimate_ollama_context(model_id, size) == context

    def test_describe(self):
        info = describe_ollama_model(
            "mistral:7b", size=4 * 1024**3, modified_at=datetime(2024, 5, 1, 12, 0)
        )
        assert info.id == "mistral:7b"
        assert info.name == "Mistral"
        assert info.description == (
            "Mistral AI's high-performance language model (4.0GB, updated 2024-05-01)"
        )
        assert info.pricing.output_cost_per_1k_tokens == 0

    def test_describe_unknown_family(self):
        info = describe_ollama_model("yi:6b")
        assert info.description == (
            "Local Ollama model for text generation (Unknown size)"
        )
        assert info.capabilities.context_length == 4096
