#!/usr/bin/env python3
"""
CLI for running NexusRAG against a local Qdrant + Ollama setup.

Usage:
    nexusrag search --query "roadmap basics"
    nexusrag deep_search --query "How do we plan the roadmap?"
    nexusrag research --topic "Project roadmap" --depth 3
    nexusrag ask --query "What do my notes say about the roadmap?"
    nexusrag index --path notes/roadmap.md
"""

import os

# vLLM workers must be spawned, set before torch is imported
os.environ.setdefault("VLLM_WORKER_MULTIPROC_METHOD", "spawn")

import json
import logging
import sys
import traceback
from pathlib import Path
from typing import Callable, Optional

import fire

from nexusrag.config import Config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def _setup(env_file: Optional[str], debug: bool, **overrides) -> Config:
    """Configure logging and load config with CLI overrides applied."""
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.getLogger("nexusrag").setLevel(logging.DEBUG)
        logger.debug("Debug logging enabled")

    config = Config.from_env(env_file)
    updates = {k: v for k, v in overrides.items() if v is not None}
    if updates:
        config = Config(**{**config.model_dump(), **updates})
    return config


def _guarded(action: Callable[[], dict]) -> dict:
    """Run a command, turning collaborator failures into exit codes."""
    try:
        return action()

    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        print(f"\nERROR: {e}")
        print("\nCheck your configuration:")
        print("  - Verify model names are correct (ollama list)")
        print("  - Check the collection exists in Qdrant (run `nexusrag index` first)")
        sys.exit(1)

    except ConnectionError as e:
        logger.error(f"Connection error: {e}")
        print(f"\nERROR: {e}")
        print("\nCheck your connections:")
        print("  - Is Qdrant server running? (QDRANT_URL)")
        print("  - Is Ollama running? (OLLAMA_BASE_URL)")
        sys.exit(1)

    except MemoryError as e:
        logger.error(f"Memory error: {e}")
        print(f"\nERROR: GPU out of memory")
        print("\nTry:")
        print("  - Set NEXUS_RERANKER_DEVICE=cpu")
        print("  - Disable reranking with --use_reranker=False")
        sys.exit(1)

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        print("\nInterrupted by user")
        sys.exit(130)

    except Exception as e:
        logger.error(f"Command failed: {type(e).__name__}: {e}")
        logger.debug(traceback.format_exc())
        print(f"\nERROR: Command failed: {e}")
        print("\nFor more details, run with --debug.")
        sys.exit(1)


def _save(result_dict: dict, output_json: Optional[str]) -> None:
    if not output_json:
        return
    try:
        os.makedirs(os.path.dirname(output_json) or ".", exist_ok=True)
        with open(output_json, "w", encoding="utf-8") as f:
            json.dump(result_dict, f, indent=2, ensure_ascii=False)
        print(f"\nResults saved to: {output_json}")
    except OSError as e:
        logger.warning(f"Failed to save output JSON: {e}")
        print(f"\nWarning: Failed to save results to {output_json}: {e}")


def _print_results(results) -> None:
    for r in results:
        print(f"\n[{r.rank}] score={r.score:.3f} id={r.id} document={r.document_id}")
        print(f"    {r.content[:300]}")


def build_agent(config: Config, verbose: bool = False):
    """Assemble an AgentLoop with Qdrant, Ollama and an in-memory task store."""
    from nexusrag.agent import AgentLoop, ToolExecutor
    from nexusrag.components.tasks import InMemoryTaskStore
    from nexusrag.pipelines import DeepSearchPipeline, ResearchPipeline

    deep_search = DeepSearchPipeline(config=config, verbose=verbose)
    research = ResearchPipeline(
        config=config,
        deep_search=deep_search,
        generator=deep_search.generator,
        verbose=verbose,
    )
    executor = ToolExecutor(
        deep_search=deep_search,
        research=research,
        task_store=InMemoryTaskStore(),
        generator=deep_search.generator,
        document_store=deep_search.vector_store,
        workspace_id=config.workspace_id,
        summary_char_budget=config.summary_char_budget,
        compress_results=config.compress_results,
    )
    loop = AgentLoop(
        deep_search.generator,
        executor,
        turn_budget=config.turn_budget,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
    )
    return loop, deep_search


def search(
    query: str,
    top_k: int = None,
    collection_name: str = None,
    output_json: str = None,
    env_file: str = None,
    debug: bool = False,
):
    """
    Single vector lookup without expansion or reranking.

    Args:
        query: Search query (required)
        top_k: Number of results
        collection_name: Qdrant collection name
        output_json: Save results to JSON
        env_file: Path to .env file
        debug: Enable debug logging
    """
    if not query or not str(query).strip():
        print("ERROR: --query is required and cannot be empty")
        sys.exit(1)
    config = _setup(env_file, debug, collection_name=collection_name)

    def action() -> dict:
        from nexusrag.pipelines import DeepSearchPipeline

        with DeepSearchPipeline(config=config) as pipeline:
            results = pipeline.quick_search(str(query), k=top_k)
        _print_results(results)
        return {"query": query, "results": [r.model_dump(mode="json") for r in results]}

    result_dict = _guarded(action)
    _save(result_dict, output_json)
    return result_dict


def deep_search(
    query: str,
    top_k: int = None,
    collection_name: str = None,
    use_reranker: bool = None,
    output_json: str = None,
    env_file: str = None,
    debug: bool = False,
):
    """
    Run Deep Search: Expand → Parallel Embed+Search → Dedup → Rerank

    Args:
        query: Search query (required)
        top_k: Number of final results
        collection_name: Qdrant collection name
        use_reranker: Enable the cross-encoder rerank step
        output_json: Save results to JSON
        env_file: Path to .env file
        debug: Enable debug logging
    """
    if not query or not str(query).strip():
        print("ERROR: --query is required and cannot be empty")
        sys.exit(1)
    config = _setup(
        env_file, debug, collection_name=collection_name, use_reranker=use_reranker
    )

    def action() -> dict:
        from nexusrag.pipelines import DeepSearchPipeline

        with DeepSearchPipeline(config=config, verbose=True) as pipeline:
            result = pipeline.run(str(query), top_k=top_k)
        print(f"\n{'='*80}")
        print("RESULTS")
        print(f"{'='*80}")
        _print_results(result.results)
        return result.model_dump(mode="json")

    result_dict = _guarded(action)
    _save(result_dict, output_json)
    return result_dict


def research(
    topic: str,
    depth: int = 3,
    collection_name: str = None,
    use_reranker: bool = None,
    output_json: str = None,
    env_file: str = None,
    debug: bool = False,
):
    """
    Run multi-hop research and print the brief.

    Args:
        topic: Research topic (required)
        depth: Number of sub-questions (1-5)
        collection_name: Qdrant collection name
        use_reranker: Enable the cross-encoder rerank step
        output_json: Save results to JSON
        env_file: Path to .env file
        debug: Enable debug logging
    """
    if not topic or not str(topic).strip():
        print("ERROR: --topic is required and cannot be empty")
        sys.exit(1)
    config = _setup(
        env_file, debug, collection_name=collection_name, use_reranker=use_reranker
    )

    def action() -> dict:
        from nexusrag.pipelines import ResearchPipeline

        with ResearchPipeline(config=config, verbose=True) as pipeline:
            brief = pipeline.run(str(topic), depth=depth)
        print(f"\n{'='*80}")
        print(brief.render())
        return brief.model_dump(mode="json")

    result_dict = _guarded(action)
    _save(result_dict, output_json)
    return result_dict


def ask(
    query: str,
    turn_budget: int = None,
    timeout: float = None,
    workspace_id: str = None,
    use_reranker: bool = None,
    output_json: str = None,
    env_file: str = None,
    debug: bool = False,
):
    """
    Ask the agent; it calls tools until it can answer.

    Args:
        query: User query (required)
        turn_budget: Maximum model turns
        timeout: Overall deadline in seconds
        workspace_id: Workspace for created tasks
        use_reranker: Enable the cross-encoder rerank step
        output_json: Save the conversation to JSON
        env_file: Path to .env file
        debug: Enable debug logging
    """
    if not query or not str(query).strip():
        print("ERROR: --query is required and cannot be empty")
        sys.exit(1)
    config = _setup(
        env_file,
        debug,
        turn_budget=turn_budget,
        workspace_id=workspace_id,
        use_reranker=use_reranker,
    )

    def action() -> dict:
        from nexusrag.cancellation import CancellationToken

        loop, pipeline = build_agent(config)
        try:
            result = loop.run(str(query), cancel_token=CancellationToken(timeout))
        finally:
            pipeline.close()
        print(f"\n{'='*80}")
        print(f"ANSWER ({result.state.value}, {result.turns} turns)")
        print(f"{'='*80}")
        print(result.answer)
        return result.model_dump(mode="json")

    result_dict = _guarded(action)
    _save(result_dict, output_json)
    return result_dict


def index(
    path: str,
    document_id: str = None,
    title: str = None,
    collection_name: str = None,
    env_file: str = None,
    debug: bool = False,
):
    """
    Chunk, embed and store one text or markdown file.

    Args:
        path: File to index (required)
        document_id: Knowledge item id (defaults to the file stem)
        title: Document title (defaults to the file name)
        collection_name: Qdrant collection name
        env_file: Path to .env file
        debug: Enable debug logging
    """
    file_path = Path(str(path))
    if not file_path.is_file():
        print(f"ERROR: File not found: {path}")
        sys.exit(1)
    config = _setup(env_file, debug, collection_name=collection_name)

    def action() -> dict:
        from nexusrag.components.indexing import DocumentIndexer
        from nexusrag.pipelines import DeepSearchPipeline

        pipeline = DeepSearchPipeline(config=config)
        indexer = DocumentIndexer(pipeline.embedder, pipeline.vector_store)
        doc_id = str(document_id or file_path.stem)
        stored = indexer.index_document(
            doc_id, file_path.read_text(encoding="utf-8"), title=title or file_path.name
        )
        print(f"Indexed {file_path} as '{doc_id}': {stored} chunks")
        return {"document_id": doc_id, "chunks": stored}

    return _guarded(action)


def main():
    """Main entry point."""
    fire.Fire(
        {
            "search": search,
            "deep_search": deep_search,
            "research": research,
            "ask": ask,
            "index": index,
        }
    )


if __name__ == "__main__":
    main()
