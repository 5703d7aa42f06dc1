"""Tests for the answering pipeline orchestrator and the Lambda handler."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from civic_answers.core import query
from civic_answers.core.embedder import fallback_embedding
from civic_answers.core.errors import CorpusUnavailable
from civic_answers.core.fallbacks import TOPIC_RULES
from civic_answers.core.language import localized
from civic_answers.core.query import confidence_from, handler
from civic_answers.core.models import RankedMatch

from conftest import (
    DIM,
    FailingEmbeddingProvider,
    FailingTextProvider,
    FakeEmbeddingProvider,
    FakeTextProvider,
    SlowTextProvider,
    make_item,
)

POTHOLE_Q = "How do I report a pothole?"
SPANISH_Q = "¿Cómo puedo reportar un bache en mi calle?"


class TestAnswerScenarios:
    def test_pothole_guide_is_top_match(self, build_pipeline, demo_items):
        """A query embedding close to the guide ranks it first and drives confidence."""
        # Arrange
        embed = FakeEmbeddingProvider(vectors={POTHOLE_Q: fallback_embedding("Pothole Reporting Guide", DIM)})
        pipeline = build_pipeline(embed_provider=embed, items=demo_items)

        # Act
        result = pipeline.answer(POTHOLE_Q)

        # Assert
        assert result.resolution == "answer"
        assert result.matches[0].item.title == "Pothole Reporting Guide"
        assert result.confidence == pytest.approx(1.0)
        assert result.confidence == result.matches[0].similarity
        assert result.answer_text == "Call 311 to report it."
        assert result.answer_source == "provider"
        assert result.language_code == "en"
        assert result.language_name == "English"

    def test_prompt_carries_top_titles(self, build_pipeline, demo_items):
        text = FakeTextProvider()
        embed = FakeEmbeddingProvider(vectors={POTHOLE_Q: fallback_embedding("Pothole Reporting Guide", DIM)})
        pipeline = build_pipeline(embed_provider=embed, text_provider=text, items=demo_items)

        pipeline.answer(POTHOLE_Q)

        assert "Relevant information: Pothole Reporting Guide" in text.prompts[-1]

    def test_all_providers_down_uses_pothole_fallback(self, build_pipeline, demo_items):
        """Keyword table answers with the pothole response, not the generic one."""
        # Arrange
        pipeline = build_pipeline(
            embed_provider=FailingEmbeddingProvider(),
            text_provider=FailingTextProvider(),
            items=demo_items,
        )

        # Act
        result = pipeline.answer(POTHOLE_Q)

        # Assert
        assert result.resolution == "answer"
        assert result.answer_text == TOPIC_RULES[0].render()
        assert result.answer_source == "fallback:pothole"
        assert not result.translation_degraded

    def test_spanish_with_translation_down_is_well_formed(self, build_pipeline, demo_items):
        """Degraded, not corrupt: answer comes back in whatever language generation produced."""
        # Arrange
        pipeline = build_pipeline(
            embed_provider=FailingEmbeddingProvider(),
            text_provider=FailingTextProvider(),
            items=demo_items,
        )

        # Act
        result = pipeline.answer(SPANISH_Q)
        payload = result.to_dict()

        # Assert
        assert result.resolution == "answer"
        assert result.language_code == "es"
        assert payload["detectedLanguageName"] == "Spanish"
        assert payload["translationDegraded"] is True
        assert payload["answerText"] == TOPIC_RULES[0].render()
        assert "error" not in payload

    def test_spanish_round_trip(self, build_pipeline, demo_items):
        text = FakeTextProvider(reply="Call 311", translation="Llame al 311.")
        pipeline = build_pipeline(text_provider=text, items=demo_items)

        result = pipeline.answer(SPANISH_Q)

        assert result.answer_text == "Llame al 311."
        assert not result.translation_degraded
        assert 'Question: "Llame al 311."' in text.prompts[1]

    def test_preferred_language_overrides_detection(self, build_pipeline, demo_items):
        text = FakeTextProvider(translation="Llame al 311.")
        pipeline = build_pipeline(text_provider=text, items=demo_items)

        result = pipeline.answer(POTHOLE_Q, preferred_language="es")

        assert result.language_code == "es"
        assert result.answer_text == "Llame al 311."

    def test_question_style_in_contract(self, build_pipeline, demo_items):
        pipeline = build_pipeline(items=demo_items)

        payload = pipeline.answer(POTHOLE_Q).to_dict()

        assert payload["questionStyle"] == "technical"
        assert payload["isFollowUp"] is False

    def test_follow_up_marker_read_from_untranslated_question(self, build_pipeline, demo_items):
        """Spanish follow-up markers count even though the pivot text has none."""
        # Arrange
        text = FakeTextProvider(reply="Call 311", translation="Llame al 311.")
        pipeline = build_pipeline(text_provider=text, items=demo_items)

        # Act
        payload = pipeline.answer("Además, ¿cómo puedo reportar un bache en mi calle?").to_dict()

        # Assert
        assert payload["languageCode"] == "es"
        assert payload["isFollowUp"] is True
        assert payload["questionStyle"] == "technical"
        assert "Tone: thorough and precise" in text.prompts[1]

    def test_no_matches_means_zero_confidence(self, build_pipeline):
        pipeline = build_pipeline(items=[])

        result = pipeline.answer(POTHOLE_Q)

        assert result.resolution == "answer"
        assert result.confidence == 0.0
        assert result.to_dict()["sources"] == []

    def test_negative_similarity_clamps_confidence(self, build_pipeline, demo_items):
        opposite = [-v for v in fallback_embedding("Pothole Reporting Guide", DIM)]
        pipeline = build_pipeline(embed_provider=FakeEmbeddingProvider(vectors={POTHOLE_Q: opposite}), items=demo_items)

        result = pipeline.answer(POTHOLE_Q)

        assert result.matches[0].similarity <= 0.0
        assert result.confidence == 0.0

    def test_corpus_down_is_treated_as_no_matches(self, build_pipeline):
        pipeline = build_pipeline(text_provider=FailingTextProvider())
        pipeline.corpus = MagicMock()
        pipeline.corpus.items.side_effect = CorpusUnavailable("pg_connect_failed")

        result = pipeline.answer(POTHOLE_Q)

        assert result.resolution == "answer"
        assert result.matches == []
        assert result.answer_source == "fallback:pothole"


class TestNonAnswerResults:
    @pytest.mark.parametrize("question", ["", "   ", None])
    def test_blank_question_is_invalid_request(self, build_pipeline, question):
        embed = FakeEmbeddingProvider()
        pipeline = build_pipeline(embed_provider=embed)

        result = pipeline.answer(question)

        assert result.resolution == "invalid_request"
        assert embed.calls == []

    def test_deadline_elapses_gives_timeout_result(self, build_pipeline, demo_items):
        """A stalled provider yields the distinct timeout result, not a hang."""
        # Arrange
        slow = SlowTextProvider(delay=5.0)
        pipeline = build_pipeline(text_provider=slow, items=demo_items, deadline_sec=0.3)

        # Act
        t0 = time.monotonic()
        result = pipeline.answer(POTHOLE_Q)
        elapsed = time.monotonic() - t0
        slow.release.set()

        # Assert
        assert result.resolution == "timeout"
        assert result.is_timeout
        assert result.answer_text == localized("en", "timeout")
        assert result.matches == []
        assert result.to_dict()["error"] == "timeout"
        assert result.to_dict()["questionStyle"] is None
        assert elapsed < 3.0

    def test_timed_out_request_stops_issuing_provider_calls(self, build_pipeline, demo_items):
        """After the deadline fires, later stages never reach the provider."""
        # Arrange
        slow = SlowTextProvider(delay=5.0)
        pipeline = build_pipeline(text_provider=slow, items=demo_items, deadline_sec=0.3)

        # Act
        result = pipeline.answer(SPANISH_Q)
        slow.release.set()
        pipeline.shutdown(wait=True)

        # Assert
        assert result.resolution == "timeout"
        assert result.language_code == "es"
        assert slow.calls <= 1

    def test_unexpected_error_gives_error_result(self, build_pipeline):
        text = MagicMock()
        text.complete.side_effect = RuntimeError("boom")
        pipeline = build_pipeline(text_provider=text)

        result = pipeline.answer(POTHOLE_Q)

        assert result.resolution == "error"
        assert localized("en", "service_reminder") in result.answer_text
        assert result.to_dict()["error"] == "internal_error"


class TestAudit:
    def test_audit_record_submitted(self, build_pipeline, demo_items):
        # Arrange
        audit = MagicMock(return_value=True)
        pipeline = build_pipeline(items=demo_items, audit=audit)

        # Act
        result = pipeline.answer(POTHOLE_Q)
        pipeline.shutdown(wait=True)

        # Assert
        audit.assert_called_once()
        record = audit.call_args[0][0]
        assert record["request_id"] == result.request_id
        assert record["resolution"] == "answer"
        assert record["answer_source"] == "provider"
        assert len(record["source_urls"]) == len(demo_items)

    def test_stalled_audit_writes_do_not_starve_answers(self, build_pipeline, demo_items):
        """Hung audit writes never occupy the workers that run pipeline requests."""
        # Arrange
        release = threading.Event()
        audit = MagicMock(side_effect=lambda record: release.wait(10))
        pipeline = build_pipeline(items=demo_items, audit=audit, deadline_sec=2.0, executor=ThreadPoolExecutor(max_workers=2))

        # Act
        try:
            results = [pipeline.answer(POTHOLE_Q) for _ in range(5)]
        finally:
            release.set()
            pipeline.shutdown(wait=True)

        # Assert
        assert [r.resolution for r in results] == ["answer"] * 5
        assert audit.call_count == 5

    def test_audit_runs_on_its_own_executor(self, build_pipeline):
        pipeline = build_pipeline(audit=MagicMock())

        assert pipeline._audit_executor is not None
        assert pipeline._audit_executor is not pipeline._executor

    def test_no_audit_means_no_audit_executor(self, build_pipeline):
        pipeline = build_pipeline(audit=None)

        assert pipeline._audit_executor is None


class TestDefaultPipeline:
    def test_concurrent_first_calls_build_one_pipeline(self, monkeypatch):
        """Cold-start callers racing get_pipeline share a single instance."""
        # Arrange
        built = []

        def slow_build():
            time.sleep(0.05)
            pipe = MagicMock()
            built.append(pipe)
            return pipe

        monkeypatch.setattr(query, "_default_pipeline", None)
        monkeypatch.setattr(query, "build_default_pipeline", slow_build)
        start = threading.Barrier(6)

        def call():
            start.wait()
            return query.get_pipeline()

        # Act
        with ThreadPoolExecutor(max_workers=6) as pool:
            got = [f.result() for f in [pool.submit(call) for _ in range(6)]]

        # Assert
        assert len(built) == 1
        assert all(p is built[0] for p in got)


class TestConfidence:
    def test_top_one_similarity(self):
        matches = [RankedMatch(make_item(1, "a", [1.0]), 0.42), RankedMatch(make_item(2, "b", [1.0]), 0.40)]

        assert confidence_from(matches) == 0.42

    def test_empty(self):
        assert confidence_from([]) == 0.0


class TestHandler:
    def test_contract_keys(self, build_pipeline, demo_items):
        pipeline = build_pipeline(items=demo_items)

        out = handler({"request_id": "req-1", "question": POTHOLE_Q}, None, pipeline=pipeline)

        assert out["requestId"] == "req-1"
        assert out["resolution"] == "answer"
        for key in ("answerText", "detectedLanguageName", "languageCode", "confidence", "sources", "translationDegraded", "answerSource"):
            assert key in out
        assert set(out["sources"][0]) == {"title", "url", "similarity"}

    def test_accepts_query_key_and_language(self, build_pipeline, demo_items):
        pipeline = build_pipeline(text_provider=FakeTextProvider(translation="Llame al 311."), items=demo_items)

        out = handler({"query": POTHOLE_Q, "language": "es"}, None, pipeline=pipeline)

        assert out["languageCode"] == "es"
        assert out["requestId"].startswith("r-")

    def test_non_dict_event_is_invalid_request(self, build_pipeline):
        pipeline = build_pipeline()

        out = handler("not an event", None, pipeline=pipeline)

        assert out["resolution"] == "invalid_request"

    def test_never_raises(self):
        pipeline = MagicMock()
        pipeline.answer.side_effect = RuntimeError("wiring broke")

        out = handler({"question": POTHOLE_Q}, None, pipeline=pipeline)

        assert out["resolution"] == "error"
        assert out["error"] == "handler_exception"
