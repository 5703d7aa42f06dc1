"""Shared fakes and fixtures for the answering pipeline tests."""

import threading
from typing import List, Optional

import pytest

from civic_answers.core.cache import EmbeddingCache
from civic_answers.core.embedder import Embedder, fallback_embedding
from civic_answers.core.errors import ProviderUnavailable
from civic_answers.core.generator import AnswerGenerator
from civic_answers.core.language import LanguagePipeline
from civic_answers.core.models import ContentItem
from civic_answers.core.query import AnswerPipeline
from civic_answers.core.retriever import InMemoryCorpus

DIM = 64


class FakeEmbeddingProvider:
    """Returns a scripted vector per text, or the hash embedding when unscripted."""

    def __init__(self, vectors: Optional[dict] = None, dim: int = DIM):
        self.vectors = vectors or {}
        self.dim = dim
        self.calls: List[str] = []

    def embed(self, text, timeout):
        self.calls.append(text)
        if text in self.vectors:
            return list(self.vectors[text])
        return fallback_embedding(text, self.dim)


class FailingEmbeddingProvider:
    def __init__(self):
        self.calls = 0

    def embed(self, text, timeout):
        self.calls += 1
        raise ProviderUnavailable("fake-embed", "forced failure")


class FakeTextProvider:
    """Answers every prompt with `reply`, recording prompts and sampling options."""

    def __init__(self, reply: str = "Call 311 to report it", translation: Optional[str] = None):
        self.reply = reply
        self.translation = translation
        self.prompts: List[str] = []
        self.options: List[dict] = []

    def complete(self, prompt, timeout, max_tokens, temperature=0.7, top_p=0.9):
        self.prompts.append(prompt)
        self.options.append({"timeout": timeout, "max_tokens": max_tokens, "temperature": temperature, "top_p": top_p})
        if prompt.startswith("Translate") and self.translation is not None:
            return self.translation
        return self.reply


class FailingTextProvider:
    def __init__(self):
        self.prompts: List[str] = []

    def complete(self, prompt, timeout, max_tokens, temperature=0.7, top_p=0.9):
        self.prompts.append(prompt)
        raise ProviderUnavailable("fake-text", "forced failure")


class SlowTextProvider:
    """Blocks until released (or `delay` seconds pass), then replies."""

    def __init__(self, delay: float = 5.0, reply: str = "Too late"):
        self.delay = delay
        self.reply = reply
        self.release = threading.Event()
        self.calls = 0

    def complete(self, prompt, timeout, max_tokens, temperature=0.7, top_p=0.9):
        self.calls += 1
        self.release.wait(self.delay)
        return self.reply


def make_item(item_id, title, vector=None, url=None, body=""):
    return ContentItem(
        id=item_id,
        source_url=url or f"https://city.example.gov/{item_id}",
        title=title,
        body_text=body,
        embedding=vector,
    )


@pytest.fixture
def demo_items():
    """Three pages embedded with the hash embedding of their titles."""
    titles = ["Pothole Reporting Guide", "Garbage Collection Schedule", "Water Bill Payment"]
    return [make_item(i + 1, t, fallback_embedding(t, DIM)) for i, t in enumerate(titles)]


@pytest.fixture
def build_pipeline():
    """Factory for AnswerPipeline with fakes; shuts every executor down afterwards."""
    created = []

    def _build(embed_provider=None, text_provider=None, items=None, deadline_sec=5.0, top_k=5, audit=None, executor=None):
        text_provider = text_provider or FakeTextProvider()
        pipeline = AnswerPipeline(
            embedder=Embedder(embed_provider or FakeEmbeddingProvider(), EmbeddingCache(max_entries=100), dim=DIM),
            corpus=InMemoryCorpus(items or []),
            language=LanguagePipeline(text_provider, timeout_sec=2.0),
            generator=AnswerGenerator(text_provider, timeout_sec=2.0),
            deadline_sec=deadline_sec,
            top_k=top_k,
            audit=audit,
            executor=executor,
        )
        created.append(pipeline)
        return pipeline

    yield _build
    for p in created:
        p.shutdown(wait=False)
