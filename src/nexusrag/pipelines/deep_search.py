"""
Deep Search Pipeline for NexusRAG.

Flow:
1. Expand the query into up to 3 alternatives (original always searched)
2. Embed + search every query in parallel (bounded thread pool)
3. Union candidates in query order and deduplicate by content prefix
4. Rerank the unique set against the original query on the rerank worker
5. Sort by rerank score (similarity when reranking is unavailable), keep top_k
"""

import logging
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import List, Optional, Sequence, Tuple

from nexusrag.cancellation import CancellationToken, OperationCancelled
from nexusrag.components.expansion import QueryExpander
from nexusrag.components.rerank_service import RerankService
from nexusrag.models import (
    CandidateResult,
    DeepSearchResult,
    RankedResult,
    RerankRequest,
)
from nexusrag.pipelines.base import BasePipeline

logger = logging.getLogger(__name__)

# How often the fan-out join re-checks the cancellation token
JOIN_POLL_INTERVAL = 0.1


def content_fingerprint(content: str, prefix_chars: int = 50) -> str:
    """Deduplication key: leading characters of whitespace-normalized content."""
    return " ".join((content or "").split())[:prefix_chars]


def deduplicate(
    candidates: Sequence[CandidateResult], prefix_chars: int = 50
) -> List[CandidateResult]:
    """Keep the first candidate for every content fingerprint, preserving order."""
    seen = set()
    unique = []
    for candidate in candidates:
        key = content_fingerprint(candidate.content, prefix_chars)
        if key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return unique


def rank_candidates(
    candidates: Sequence[CandidateResult], top_k: int, use_rerank: bool
) -> List[RankedResult]:
    """Stable sort by rerank score (or similarity) and assign 1-based ranks."""
    if use_rerank:
        ordered = sorted(candidates, key=lambda c: c.rerank_score, reverse=True)
    else:
        ordered = sorted(candidates, key=lambda c: c.similarity, reverse=True)
    return [
        RankedResult(**candidate.model_dump(), rank=rank)
        for rank, candidate in enumerate(ordered[:top_k], start=1)
    ]


class DeepSearchPipeline(BasePipeline):
    """
    Expansion + parallel retrieval + cross-encoder rerank.

    Collaborators not passed in are built lazily from the Config.
    """

    def __init__(
        self,
        config=None,
        embedder=None,
        vector_store=None,
        generator=None,
        rerank_service: Optional[RerankService] = None,
        expander: Optional[QueryExpander] = None,
        verbose: bool = False,
    ):
        super().__init__(
            config=config,
            embedder=embedder,
            vector_store=vector_store,
            generator=generator,
            rerank_service=rerank_service,
            verbose=verbose,
        )
        self._expander = expander
        self._rerank_unavailable = False

    @property
    def expander(self) -> QueryExpander:
        """Lazy build the query expander on the shared generator."""
        if self._expander is None:
            self._expander = QueryExpander(
                self.generator, max_expansions=self.config.max_expansions
            )
        return self._expander

    def _search_one(
        self, query: str, k: int, cancel_token: CancellationToken
    ) -> List[CandidateResult]:
        """Embed one query and look it up in the vector store."""
        cancel_token.raise_if_cancelled("embedding")
        embedding = self.embedder.embed_query(query)
        cancel_token.raise_if_cancelled("vector search")
        results = self.vector_store.search(embedding, k, cancel_token=cancel_token)
        return [r.model_copy(update={"source_query": query}) for r in results]

    def _fan_out(
        self, queries: List[str], cancel_token: CancellationToken
    ) -> List[List[CandidateResult]]:
        """
        Run ``_search_one`` for every query concurrently.

        Returns one candidate list per query, in query order. A failing query
        yields an empty list; cancellation cancels pending work and raises.
        """
        k = self.config.retrieval_top_k
        max_workers = max(1, min(self.config.max_concurrent_searches, len(queries)))
        per_query: List[List[CandidateResult]] = [[] for _ in queries]

        executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="nexusrag-search"
        )
        try:
            futures = [
                executor.submit(self._search_one, q, k, cancel_token) for q in queries
            ]

            pending = set(futures)
            while pending:
                done, pending = wait(
                    pending, timeout=JOIN_POLL_INTERVAL, return_when=FIRST_EXCEPTION
                )
                cancel_token.raise_if_cancelled("deep search join")

            for i, future in enumerate(futures):
                try:
                    per_query[i] = future.result()
                except OperationCancelled:
                    raise
                except Exception as e:
                    logger.warning(f"Search failed for query {i + 1} '{queries[i][:50]}': {e}")
                    if self.verbose:
                        print(f"  ERROR: Query {i + 1} search failed - {e}")
        except BaseException:
            # in-flight lookups are abandoned, not awaited
            executor.shutdown(wait=False, cancel_futures=True)
            raise

        executor.shutdown(wait=True)
        return per_query

    def _rerank(
        self,
        query: str,
        candidates: List[CandidateResult],
        cancel_token: CancellationToken,
    ) -> Tuple[List[CandidateResult], bool]:
        """
        Score candidates against the original query.

        Returns (candidates, reranked). ``reranked`` is False when the service
        is disabled, fails, times out or leaves a candidate unscored; the
        input list is then returned unchanged.
        """
        if self._rerank_unavailable or not candidates:
            return candidates, False
        try:
            service = self.rerank_service
        except Exception as e:
            # not retried on later searches
            logger.warning(f"Reranker failed to load, using similarity order: {e}")
            self._rerank_unavailable = True
            return candidates, False
        if service is None:
            return candidates, False

        request = RerankRequest(query=query, candidates=candidates)
        try:
            response = service.rerank(
                request, timeout=self.config.rerank_timeout, cancel_token=cancel_token
            )
        except OperationCancelled:
            raise
        except Exception as e:
            logger.warning(f"Reranking unavailable, using similarity order: {e}")
            return candidates, False

        if response.error:
            logger.warning(f"Reranking failed, using similarity order: {response.error}")
            return candidates, False

        scores = {r.id: r.rerank_score for r in response.results}
        if any(scores.get(c.id) is None for c in candidates):
            logger.warning("Rerank response is missing candidates, using similarity order")
            return candidates, False

        return [c.model_copy(update={"rerank_score": scores[c.id]}) for c in candidates], True

    def quick_search(
        self,
        query: str,
        k: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[RankedResult]:
        """Single non-expanded lookup ranked by similarity."""
        if not query or not query.strip():
            raise ValueError("query cannot be empty")
        cancel_token = cancel_token or CancellationToken()
        k = k or self.config.retrieval_top_k
        results = self._search_one(query.strip(), k, cancel_token)
        return rank_candidates(results, k, use_rerank=False)

    def run(
        self,
        query: str,
        top_k: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> DeepSearchResult:
        """
        Run deep search.

        Args:
            query: Search query
            top_k: Override number of final results
            cancel_token: Token checked at every step

        Returns:
            DeepSearchResult with at most ``top_k`` ranked results
        """
        if not query or not query.strip():
            raise ValueError("query cannot be empty")
        query = query.strip()
        top_k = top_k or self.config.rerank_top_k
        cancel_token = cancel_token or CancellationToken()
        cancel_token.raise_if_cancelled("deep search")

        if self.verbose:
            print(f"\n{'='*80}")
            print("DEEP SEARCH")
            print(f"{'='*80}")
            print(f"Query: {query}")

        # Step 1: Expand
        step_start = time.time()
        expansions = self.expander.expand(query, cancel_token=cancel_token)
        queries = [query] + expansions[: self.config.max_expansions]
        logger.info(f"Deep search over {len(queries)} queries for: {query[:50]}")
        if self.verbose:
            print(f"\n[Step 1] Expanded into {len(queries)} queries ({time.time() - step_start:.2f}s)")
            for i, q in enumerate(queries, 1):
                print(f"  {i}. {q}")

        # Step 2: Parallel embed + search
        step_start = time.time()
        per_query = self._fan_out(queries, cancel_token)
        all_candidates = [c for results in per_query for c in results]
        if self.verbose:
            print(
                f"\n[Step 2] Retrieved {len(all_candidates)} candidates "
                f"({time.time() - step_start:.2f}s)"
            )

        # Step 3: Deduplicate after the join, in query order
        unique = deduplicate(all_candidates, self.config.dedup_prefix_chars)
        logger.debug(f"Deduplicated {len(all_candidates)} candidates to {len(unique)}")

        # Step 4: Rerank against the original query
        step_start = time.time()
        scored, reranked = self._rerank(query, unique, cancel_token)
        if self.verbose:
            mode = "cross-encoder" if reranked else "similarity"
            print(
                f"\n[Step 3] Ranked {len(unique)} unique candidates by {mode} "
                f"({time.time() - step_start:.2f}s)"
            )

        # Step 5: Sort and truncate
        results = rank_candidates(scored, top_k, use_rerank=reranked)
        logger.info(f"Deep search returned {len(results)} results (reranked={reranked})")

        return DeepSearchResult(
            query=query,
            queries=queries,
            n_candidates=len(all_candidates),
            n_unique=len(unique),
            reranked=reranked,
            results=results,
        )
