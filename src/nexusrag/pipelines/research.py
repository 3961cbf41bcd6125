"""
Research Pipeline for NexusRAG.
Multi-hop research: Topic → Sub-questions → Deep search each → Brief
"""

import logging
import time
from typing import Any, Optional

from nexusrag.cancellation import CancellationToken, OperationCancelled
from nexusrag.components.decomposition import ResearchDecomposer, clamp_depth
from nexusrag.models import Finding, ResearchBrief
from nexusrag.pipelines.base import BasePipeline
from nexusrag.pipelines.deep_search import DeepSearchPipeline

logger = logging.getLogger(__name__)


class ResearchPipeline(BasePipeline):
    """
    Decomposes a topic and deep-searches each sub-question in turn.

    Sub-questions run sequentially; each deep search already fans out.
    """

    def __init__(
        self,
        config=None,
        deep_search: Optional[DeepSearchPipeline] = None,
        decomposer: Optional[ResearchDecomposer] = None,
        generator=None,
        verbose: bool = False,
    ):
        super().__init__(config=config, generator=generator, verbose=verbose)
        self._deep_search = deep_search
        self._decomposer = decomposer

    @property
    def deep_search(self) -> DeepSearchPipeline:
        if self._deep_search is None:
            self._deep_search = DeepSearchPipeline(
                config=self.config, generator=self.generator, verbose=self.verbose
            )
        return self._deep_search

    @property
    def decomposer(self) -> ResearchDecomposer:
        if self._decomposer is None:
            self._decomposer = ResearchDecomposer(
                self.generator, max_depth=self.config.max_research_depth
            )
        return self._decomposer

    def close(self) -> None:
        if self._deep_search is not None:
            self._deep_search.close()
        super().close()

    def run(
        self,
        topic: str,
        depth: Any = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ResearchBrief:
        """
        Research a topic.

        Args:
            topic: Research topic or question
            depth: Number of sub-questions (clamped to 1-5, default from config)
            cancel_token: Token checked before every sub-question

        Returns:
            ResearchBrief with one Finding per sub-question
        """
        if not topic or not topic.strip():
            raise ValueError("topic cannot be empty")
        topic = topic.strip()
        cancel_token = cancel_token or CancellationToken()
        depth = clamp_depth(
            depth,
            default=self.config.research_depth,
            maximum=self.config.max_research_depth,
        )

        start_time = time.time()
        if self.verbose:
            print(f"\n{'='*80}")
            print("RESEARCH")
            print(f"{'='*80}")
            print(f"Topic: {topic}")
            print(f"Depth: {depth}")

        # Step 1: Decompose
        questions = self.decomposer.decompose(topic, depth, cancel_token=cancel_token)
        logger.info(f"Researching {len(questions)} sub-questions for: {topic[:50]}")
        if self.verbose:
            print(f"\n[Step 1] Decomposed into {len(questions)} sub-questions:")
            for i, q in enumerate(questions, 1):
                print(f"  {i}. {q}")

        # Step 2: Deep search each sub-question in order
        findings = []
        for i, question in enumerate(questions, 1):
            cancel_token.raise_if_cancelled(f"sub-question {i}")
            if self.verbose:
                print(f"\n[Step 2.{i}] Researching ({i}/{len(questions)}): {question[:40]}...")
            try:
                result = self.deep_search.run(question, cancel_token=cancel_token)
                evidence = [r.content for r in result.results]
            except OperationCancelled:
                raise
            except Exception as e:
                logger.warning(f"Deep search failed for sub-question '{question[:50]}': {e}")
                evidence = []
            findings.append(Finding(question=question, evidence=evidence))

        brief = ResearchBrief(topic=topic, findings=findings)
        logger.info(f"Research brief compiled in {time.time() - start_time:.2f}s")
        return brief
