"""
Shared fixtures: temporary databases and offline embedding providers.

``ConceptEmbedder`` maps words onto a handful of concept axes so that
related phrasings ("validated" / "verification") land close together
without a real model.
"""

from __future__ import annotations

import re

import pytest

from workstore.embeddings.providers import EmbeddingProvider

_WORD_RE = re.compile(r"[a-z]+")

_CONCEPTS = [
    {"email", "emails"},
    {"validation", "validated", "verification", "validate", "verify"},
    {"rule", "rules", "requirement", "requirements", "must"},
    {"database", "databases"},
    {"backup", "backups"},
    {"schedule", "scheduled"},
    {"payment", "payments", "invoice", "invoices"},
    {"login", "auth", "authentication"},
]


class ConceptEmbedder(EmbeddingProvider):
    """Counts concept words; records how often it was called."""

    def __init__(self) -> None:
        super().__init__("concept-test", dimensions=len(_CONCEPTS),
                         max_retries=1, retry_delay=0.0)
        self.calls: list[str] = []

    def _embed(self, text: str) -> list[float]:
        self.calls.append(text)
        vec = [0.0] * len(_CONCEPTS)
        for word in _WORD_RE.findall(text.lower()):
            for axis, words in enumerate(_CONCEPTS):
                if word in words:
                    vec[axis] += 1.0
        return vec


class FailingEmbedder(EmbeddingProvider):
    """Always fails, like an unreachable model server."""

    def __init__(self) -> None:
        super().__init__("failing-test", max_retries=2, retry_delay=0.0)
        self.attempts = 0

    def _embed(self, text: str) -> list[float]:
        self.attempts += 1
        raise RuntimeError("model server unreachable")


@pytest.fixture
def concept_embedder():
    return ConceptEmbedder()


@pytest.fixture
def failing_embedder():
    return FailingEmbedder()


@pytest.fixture
def db(tmp_path):
    from workstore.storage.database import Database
    return Database(str(tmp_path / "workstore.db"))


@pytest.fixture
def scopes(db):
    from workstore.storage.scopes import ScopeRepository
    return ScopeRepository(db)


@pytest.fixture
def repo(scopes):
    return scopes.create_repo("shop", "Online shop")


@pytest.fixture
def project(scopes, repo):
    return scopes.create_project(repo.id, "checkout")


@pytest.fixture
def test_config():
    from workstore.config import Config
    return Config({
        "chunk_max_size": 200,
        "chunk_overlap": 20,
        "search_top_k": 5,
        "search_min_similarity": 0.3,
    })


@pytest.fixture
def workstore(db, concept_embedder, test_config):
    from workstore.api import Workstore
    return Workstore(db, concept_embedder, test_config)
