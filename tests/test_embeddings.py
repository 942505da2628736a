"""Tests for embedding providers and the provider factory."""

import io
import json
import math
import urllib.error

import pytest

from context_curator.embeddings import (
    EMBEDDING_MODELS,
    STATUS_READY,
    STATUS_UNAVAILABLE,
    HashEmbeddingModel,
    OllamaEmbedder,
    OpenAIEmbedder,
    cosine_similarity,
    get_embedder,
    provider_identity,
)


class TestHashEmbeddingModel:
    def test_deterministic_unit_vectors(self):
        model = HashEmbeddingModel(dim=64)
        first = model.embed_text("def login(user): pass")
        second = model.embed_text("def login(user): pass")
        assert first == second
        assert len(first) == 64
        assert math.isclose(math.sqrt(sum(v * v for v in first)), 1.0, rel_tol=1e-9)

    def test_camel_case_parts_overlap_with_words(self):
        model = HashEmbeddingModel()
        code = model.embed_text("function getUserProfile() {}")
        related = model.embed_text("user profile")
        unrelated = model.embed_text("matrix determinant")
        assert cosine_similarity(code, related) > cosine_similarity(code, unrelated)

    def test_empty_text_gives_zero_vector(self):
        vec = HashEmbeddingModel(dim=8).embed_text("")
        assert vec == [0.0] * 8

    def test_embed_many(self):
        model = HashEmbeddingModel(dim=16)
        assert model.embed_many(["a b", "c d"]) == [model.embed_text("a b"), model.embed_text("c d")]


class TestCosine:
    def test_identical_and_opposite(self):
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_degenerate_inputs(self):
        assert cosine_similarity([], [1.0]) == 0.0
        assert cosine_similarity([1.0, 2.0], [1.0]) == 0.0
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


class TestFactory:
    def test_hash(self):
        assert isinstance(get_embedder("hash"), HashEmbeddingModel)

    def test_unknown_key_falls_back_to_hash(self):
        assert isinstance(get_embedder("no-such-model"), HashEmbeddingModel)

    def test_http_providers(self):
        ollama = get_embedder("ollama", model_name="all-minilm")
        assert isinstance(ollama, OllamaEmbedder)
        assert ollama.model == "all-minilm"
        openai = get_embedder("openai")
        assert isinstance(openai, OpenAIEmbedder)
        assert openai.model == EMBEDDING_MODELS["openai"]["default_model"]

    def test_reads_config_when_no_key_given(self, temp_home):
        from context_curator.config_manager import save_embedding_config

        assert isinstance(get_embedder(), HashEmbeddingModel)
        save_embedding_config("ollama", endpoint="http://box:11434/api/embeddings")
        embedder = get_embedder()
        assert isinstance(embedder, OllamaEmbedder)
        assert embedder.endpoint == "http://box:11434/api/embeddings"


class _FakeResponse(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class TestOllamaEmbedder:
    def test_posts_prompt_and_reads_embedding(self, monkeypatch):
        seen = {}

        def fake_urlopen(req, timeout=None):
            seen["url"] = req.full_url
            seen["body"] = json.loads(req.data.decode("utf-8"))
            return _FakeResponse(json.dumps({"embedding": [0.1, 0.2, 0.3]}).encode("utf-8"))

        monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
        embedder = OllamaEmbedder(model="nomic-embed-text")

        assert embedder.embed_text("hello") == [0.1, 0.2, 0.3]
        assert seen["url"].endswith("/api/embeddings")
        assert seen["body"] == {"model": "nomic-embed-text", "prompt": "hello"}

    def test_connection_error_raises_runtime_error(self, monkeypatch):
        def refuse(req, timeout=None):
            raise urllib.error.URLError("connection refused")

        monkeypatch.setattr("urllib.request.urlopen", refuse)
        with pytest.raises(RuntimeError, match="Ollama"):
            OllamaEmbedder().embed_text("hello")

    def test_missing_embedding_raises(self, monkeypatch):
        monkeypatch.setattr(
            "urllib.request.urlopen",
            lambda req, timeout=None: _FakeResponse(b"{}"),
        )
        with pytest.raises(RuntimeError):
            OllamaEmbedder().embed_text("hello")


class TestOpenAIEmbedder:
    def test_unavailable_without_key(self):
        embedder = OpenAIEmbedder()
        assert embedder.status == STATUS_UNAVAILABLE
        with pytest.raises(RuntimeError):
            embedder.embed_text("hello")

    def test_reads_first_embedding(self, monkeypatch):
        class FakeResponse:
            def raise_for_status(self):
                pass

            def json(self):
                return {"data": [{"embedding": [1, 0]}]}

        calls = []

        def fake_post(url, headers=None, json=None, timeout=None):
            calls.append((url, headers, json))
            return FakeResponse()

        monkeypatch.setattr("requests.post", fake_post)
        embedder = OpenAIEmbedder(api_key="sk-test")

        assert embedder.status == STATUS_READY
        assert embedder.embed_text("hello") == [1.0, 0.0]
        url, headers, body = calls[0]
        assert headers["Authorization"] == "Bearer sk-test"
        assert body == {"model": "text-embedding-3-small", "input": "hello"}


class TestProviderIdentity:
    def test_identity_names_model_and_dimension(self):
        assert provider_identity(HashEmbeddingModel()) == "hash:256"
        assert provider_identity(HashEmbeddingModel(dim=64)) == "hash:64"
        assert provider_identity(OllamaEmbedder(model="mxbai-embed-large")) == "ollama:mxbai-embed-large"
        assert provider_identity(OpenAIEmbedder(model="text-embedding-3-large", api_key="k")) == "openai:text-embedding-3-large"

    def test_objects_without_identity_use_class_name(self):
        class PlainEmbedder:
            def embed_text(self, text):
                return [1.0]

        assert provider_identity(PlainEmbedder()) == "PlainEmbedder"
