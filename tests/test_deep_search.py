"""Tests for the deep search pipeline."""

import threading
import time
from unittest.mock import patch

import pytest

from nexusrag.cancellation import CancellationToken, OperationCancelled
from nexusrag.components.rerank_service import RerankService
from nexusrag.config import Config
from nexusrag.models import CandidateResult, RerankResponse
from nexusrag.pipelines.deep_search import (
    DeepSearchPipeline,
    content_fingerprint,
    deduplicate,
)
from tests.fakes.fake_services import (
    FailingRerankBackend,
    KeywordRerankBackend,
    ScriptedChatModel,
    SlowRerankBackend,
)

EXPANSIONS = '["roadmap milestones", "quarterly goals", "product planning"]'


def expanding_model():
    return ScriptedChatModel(responder=lambda messages, options: EXPANSIONS)


# --- deduplication ---


def test_content_fingerprint_normalizes_whitespace():
    assert content_fingerprint("a  b\n c") == content_fingerprint("a b c")
    assert len(content_fingerprint("x" * 200)) == 50


def test_deduplicate_keeps_first_occurrence():
    candidates = [
        CandidateResult(id="1", content="Same prefix " + "x" * 60 + " tail one", similarity=0.2),
        CandidateResult(id="2", content="Other content", similarity=0.9),
        CandidateResult(id="3", content="Same prefix " + "x" * 60 + " tail two", similarity=0.8),
    ]
    unique = deduplicate(candidates)
    assert [c.id for c in unique] == ["1", "2"]
    assert deduplicate(unique) == unique


# --- run ---


def test_deep_search_reranked_results(config, embedder, store):
    backend = KeywordRerankBackend()
    with RerankService(backend, timeout=5.0) as service:
        pipeline = DeepSearchPipeline(
            config=config,
            embedder=embedder,
            vector_store=store,
            generator=expanding_model(),
            rerank_service=service,
        )
        result = pipeline.run("roadmap basics")

    assert result.reranked is True
    assert result.queries[0] == "roadmap basics"
    assert len(result.queries) == 4
    assert 0 < len(result.results) <= 5
    scores = [r.rerank_score for r in result.results]
    assert all(s is not None for s in scores)
    assert scores == sorted(scores, reverse=True)
    assert [r.rank for r in result.results] == list(range(1, len(result.results) + 1))
    # reranked against the original query, with the full unique set
    assert backend.calls[0]["query"] == "roadmap basics"
    assert len(backend.calls[0]["passages"]) == result.n_unique


def test_deep_search_is_idempotent(config, embedder, store):
    backend = KeywordRerankBackend()
    with RerankService(backend) as service:
        pipeline = DeepSearchPipeline(
            config=config,
            embedder=embedder,
            vector_store=store,
            generator=expanding_model(),
            rerank_service=service,
        )
        first = pipeline.run("roadmap basics")
        second = pipeline.run("roadmap basics")

    assert first.model_dump() == second.model_dump()
    contents = [r.content for r in first.results]
    assert len(set(contents)) == len(contents)


def test_deep_search_zero_expansions_still_searches(config, embedder, store, no_expansion_model):
    pipeline = DeepSearchPipeline(
        config=config, embedder=embedder, vector_store=store, generator=no_expansion_model
    )
    result = pipeline.run("roadmap basics")

    assert result.queries == ["roadmap basics"]
    assert store.searches == 1
    assert result.results


def test_deep_search_expansion_error_still_searches(config, embedder, store):
    def responder(messages, options):
        raise ConnectionError("generation service unreachable")

    pipeline = DeepSearchPipeline(
        config=config,
        embedder=embedder,
        vector_store=store,
        generator=ScriptedChatModel(responder=responder),
    )
    result = pipeline.run("roadmap basics")
    assert result.queries == ["roadmap basics"]
    assert result.results


def test_roadmap_basics_ranks_roadmap_first_without_reranker(
    config, embedder, store, no_expansion_model
):
    pipeline = DeepSearchPipeline(
        config=config, embedder=embedder, vector_store=store, generator=no_expansion_model
    )
    result = pipeline.run("roadmap basics")

    assert result.reranked is False
    assert result.results[0].document_id == "roadmap"
    assert result.results[0].content.startswith("Roadmap basics")
    similarities = [r.similarity for r in result.results]
    assert similarities == sorted(similarities, reverse=True)


def test_fan_out_runs_queries_concurrently(embedder, store):
    config = Config(use_reranker=False, max_concurrent_searches=4)
    # four queries can only pass the barrier if they embed at the same time
    embedder.barrier = threading.Barrier(4)
    embedder.barrier_timeout = 10.0
    pipeline = DeepSearchPipeline(
        config=config, embedder=embedder, vector_store=store, generator=expanding_model()
    )
    result = pipeline.run("roadmap basics")

    assert len(result.queries) == 4
    assert store.searches == 4
    assert result.n_candidates == 4 * config.retrieval_top_k
    assert result.n_unique < result.n_candidates


def test_failing_sub_query_contributes_nothing(config, embedder, store):
    embedder.fail_on = {"quarterly goals"}
    pipeline = DeepSearchPipeline(
        config=config, embedder=embedder, vector_store=store, generator=expanding_model()
    )
    result = pipeline.run("roadmap basics")

    assert store.searches == 3
    assert result.n_candidates == 3 * config.retrieval_top_k
    assert result.results


def test_total_failure_yields_empty_result(config, embedder, store, no_expansion_model):
    embedder.fail_on = {"roadmap basics"}
    pipeline = DeepSearchPipeline(
        config=config, embedder=embedder, vector_store=store, generator=no_expansion_model
    )
    result = pipeline.run("roadmap basics")
    assert result.results == []
    assert result.n_candidates == 0


def test_cancelled_token_raises(config, embedder, store):
    token = CancellationToken()
    token.cancel("user pressed stop")
    pipeline = DeepSearchPipeline(
        config=config, embedder=embedder, vector_store=store, generator=expanding_model()
    )
    with pytest.raises(OperationCancelled):
        pipeline.run("roadmap basics", cancel_token=token)
    assert store.searches == 0


def test_empty_query_rejected(config, embedder, store, no_expansion_model):
    pipeline = DeepSearchPipeline(
        config=config, embedder=embedder, vector_store=store, generator=no_expansion_model
    )
    with pytest.raises(ValueError):
        pipeline.run("   ")


# --- rerank fallbacks ---


def test_rerank_failure_falls_back_to_similarity(config, embedder, store, no_expansion_model):
    with RerankService(FailingRerankBackend()) as service:
        pipeline = DeepSearchPipeline(
            config=config,
            embedder=embedder,
            vector_store=store,
            generator=no_expansion_model,
            rerank_service=service,
        )
        result = pipeline.run("roadmap basics")

    assert result.reranked is False
    assert all(r.rerank_score is None for r in result.results)
    assert result.results[0].document_id == "roadmap"


def test_rerank_timeout_falls_back_to_similarity(embedder, store, no_expansion_model):
    config = Config(use_reranker=False, rerank_timeout=0.2)
    service = RerankService(SlowRerankBackend(delay=1.0)).start()
    try:
        pipeline = DeepSearchPipeline(
            config=config,
            embedder=embedder,
            vector_store=store,
            generator=no_expansion_model,
            rerank_service=service,
        )
        result = pipeline.run("roadmap basics")
    finally:
        service.stop(timeout=2.0)

    assert result.reranked is False
    assert result.results[0].document_id == "roadmap"


class PartialRerankService:
    """Answers with a score for the first candidate only."""

    def rerank(self, request, timeout=None, cancel_token=None):
        first = request.candidates[0].model_copy(update={"rerank_score": 0.99})
        return RerankResponse(request_id=request.request_id, results=[first])


def test_rerank_missing_candidate_falls_back(config, embedder, store, no_expansion_model):
    pipeline = DeepSearchPipeline(
        config=config,
        embedder=embedder,
        vector_store=store,
        generator=no_expansion_model,
        rerank_service=PartialRerankService(),
    )
    result = pipeline.run("roadmap basics")
    assert result.reranked is False
    assert all(r.rerank_score is None for r in result.results)


# --- quick_search ---


def test_quick_search_single_lookup(config, embedder, store):
    model = expanding_model()
    pipeline = DeepSearchPipeline(
        config=config, embedder=embedder, vector_store=store, generator=model
    )
    results = pipeline.quick_search("roadmap basics")

    assert model.calls == []
    assert store.searches == 1
    assert len(results) == config.retrieval_top_k
    assert results[0].document_id == "roadmap"
    assert results[0].rank == 1


def test_reranker_load_failure_falls_back_once(embedder, store, no_expansion_model):
    config = Config(use_reranker=True)
    with patch(
        "nexusrag.components.reranking.CrossEncoderReranker",
        side_effect=ValueError("Failed to load tokenizer: offline"),
    ) as reranker_cls:
        pipeline = DeepSearchPipeline(
            config=config, embedder=embedder, vector_store=store, generator=no_expansion_model
        )
        first = pipeline.run("roadmap basics")
        second = pipeline.run("roadmap basics")

    assert first.reranked is False
    assert first.results[0].document_id == "roadmap"
    assert second.model_dump() == first.model_dump()
    # the model is not reloaded on every search
    assert reranker_cls.call_count == 1


# --- cancellation ---


class BlockingEmbedder:
    """Embedder that blocks until released (or a few seconds pass)."""

    def __init__(self, inner):
        self.inner = inner
        self.release = threading.Event()

    def embed_query(self, query):
        self.release.wait(3.0)
        return self.inner.embed_query(query)


def test_cancellation_does_not_wait_for_running_lookups(config, embedder, store, no_expansion_model):
    blocking = BlockingEmbedder(embedder)
    pipeline = DeepSearchPipeline(
        config=config, embedder=blocking, vector_store=store, generator=no_expansion_model
    )
    token = CancellationToken()
    timer = threading.Timer(0.2, token.cancel)

    start = time.monotonic()
    timer.start()
    try:
        with pytest.raises(OperationCancelled):
            pipeline.run("roadmap basics", cancel_token=token)
        elapsed = time.monotonic() - start
    finally:
        timer.cancel()
        blocking.release.set()

    assert elapsed < 1.0
    # the abandoned worker stops before its vector lookup
    time.sleep(0.2)
    assert store.searches == 0
