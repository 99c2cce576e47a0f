"""
Unit tests for workstore.embeddings.providers
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import numpy as np
import pytest


class TestHashingProvider:

    def test_deterministic_and_normalised(self):
        from workstore.embeddings.providers import HashingEmbeddingProvider
        p = HashingEmbeddingProvider(dimensions=64)
        a = p.embed("emails must be validated")
        b = p.embed("emails must be validated")
        assert a == b
        assert len(a) == 64
        assert np.isclose(np.linalg.norm(a), 1.0)

    def test_shared_words_score_higher(self):
        from workstore.embeddings.providers import HashingEmbeddingProvider
        p = HashingEmbeddingProvider(dimensions=256)
        base = np.array(p.embed("database backup schedule nightly"))
        near = np.array(p.embed("nightly database backup"))
        far = np.array(p.embed("button colour palette"))
        assert base @ near > base @ far

    def test_empty_text_still_embeds(self):
        from workstore.embeddings.providers import HashingEmbeddingProvider
        vec = HashingEmbeddingProvider(dimensions=8).embed("")
        assert vec[0] == 1.0

    def test_invalid_dimensions(self):
        from workstore.embeddings.providers import HashingEmbeddingProvider
        with pytest.raises(ValueError):
            HashingEmbeddingProvider(dimensions=0)


class TestOllamaProvider:

    def _response(self, payload):
        resp = MagicMock()
        resp.json.return_value = payload
        resp.raise_for_status.return_value = None
        return resp

    def test_posts_to_embed_endpoint(self):
        from workstore.embeddings.providers import OllamaEmbeddingProvider
        p = OllamaEmbeddingProvider("http://localhost:11434/", "nomic-embed-text",
                                    timeout=5.0)
        with patch("workstore.embeddings.providers.requests.post",
                   return_value=self._response({"embeddings": [[0.1, 0.2, 0.3]]})) as post:
            vec = p.embed("hello")

        assert vec == [0.1, 0.2, 0.3]
        assert p.dimensions == 3
        args, kwargs = post.call_args
        assert args[0] == "http://localhost:11434/api/embed"
        assert kwargs["json"] == {"model": "nomic-embed-text", "input": "hello"}
        assert kwargs["timeout"] == (10, 5.0)

    def test_accepts_full_endpoint_url(self):
        from workstore.embeddings.providers import OllamaEmbeddingProvider
        p = OllamaEmbeddingProvider("http://host:1/api/embeddings", "m")
        with patch("workstore.embeddings.providers.requests.post",
                   return_value=self._response({"embeddings": [[1.0]]})) as post:
            p.embed("x")
        assert post.call_args[0][0] == "http://host:1/api/embed"

    def test_retries_then_raises_embedding_error(self):
        import requests
        from workstore.embeddings.providers import OllamaEmbeddingProvider
        from workstore.errors import EmbeddingError
        p = OllamaEmbeddingProvider("http://localhost:11434", "m",
                                    max_retries=3, retry_delay=0.0)
        with patch("workstore.embeddings.providers.requests.post",
                   side_effect=requests.ConnectionError("refused")) as post:
            with pytest.raises(EmbeddingError):
                p.embed("hello")
        assert post.call_count == 3

    def test_empty_vector_is_error(self):
        from workstore.embeddings.providers import OllamaEmbeddingProvider
        from workstore.errors import EmbeddingError
        p = OllamaEmbeddingProvider("http://localhost:11434", "m",
                                    max_retries=1, retry_delay=0.0)
        with patch("workstore.embeddings.providers.requests.post",
                   return_value=self._response({"embeddings": []})):
            with pytest.raises(EmbeddingError):
                p.embed("hello")


    def test_empty_vector_not_retried(self):
        from workstore.embeddings.providers import OllamaEmbeddingProvider
        from workstore.errors import EmbeddingError
        p = OllamaEmbeddingProvider("http://localhost:11434", "m",
                                    max_retries=3, retry_delay=0.0)
        with patch("workstore.embeddings.providers.requests.post",
                   return_value=self._response({"embeddings": []})) as post:
            with pytest.raises(EmbeddingError):
                p.embed("hello")
        assert post.call_count == 1


class TestOpenAIProvider:

    def test_missing_key_fails_without_backoff(self, monkeypatch):
        from workstore.embeddings.providers import OpenAIEmbeddingProvider
        from workstore.errors import EmbeddingError
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        p = OpenAIEmbeddingProvider(api_key="", max_retries=3, retry_delay=5.0)
        with patch("workstore.embeddings.providers.time.sleep") as sleep:
            with pytest.raises(EmbeddingError):
                p.embed("hello")
        sleep.assert_not_called()


class TestFactory:

    @pytest.mark.parametrize("name,cls_name", [
        ("ollama", "OllamaEmbeddingProvider"),
        ("openai", "OpenAIEmbeddingProvider"),
        ("hashing", "HashingEmbeddingProvider"),
    ])
    def test_builds_named_provider(self, name, cls_name):
        from workstore.config import Config
        from workstore.embeddings import providers
        cfg = Config({"embedding_provider": name})
        cfg.EMBEDDING_PROVIDER = name
        provider = providers.create_embedding_provider(cfg)
        assert type(provider).__name__ == cls_name

    def test_unknown_provider(self):
        from workstore.config import Config
        from workstore.embeddings.providers import create_embedding_provider
        cfg = Config({})
        cfg.EMBEDDING_PROVIDER = "word2vec"
        with pytest.raises(ValueError):
            create_embedding_provider(cfg)
