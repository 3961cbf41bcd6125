#!/usr/bin/env python3
"""
Index a folder of notes into Qdrant.

Every .md / .txt file becomes one knowledge item: its text is split into
overlapping word windows, embedded, and upserted with stable point ids, so
re-running the script updates documents in place.

Usage:
    uv run tools/qdrant/index_documents.py --input_dir notes/
    uv run tools/qdrant/index_documents.py --input_dir notes/ --collection_name work --recreate
"""

import os
import sys
from pathlib import Path

import fire
from tqdm import tqdm

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from nexusrag.components.embedding import EmbeddingModel
from nexusrag.components.indexing import DocumentIndexer
from nexusrag.components.retrieval import VectorStore
from nexusrag.config import Config

SUFFIXES = (".md", ".markdown", ".txt")


def main(
    input_dir: str = None,
    collection_name: str = None,
    qdrant_url: str = None,
    qdrant_api_key: str = None,
    embedding_model: str = None,
    chunk_size: int = 500,
    overlap: int = 50,
    recreate: bool = False,
    env_file: str = None,
):
    """
    Index text and markdown files into a Qdrant collection.

    Args:
        input_dir: Folder scanned recursively for .md/.txt files
        collection_name: Qdrant collection name (or set NEXUS_COLLECTION)
        qdrant_url: Qdrant server URL (or set QDRANT_URL)
        qdrant_api_key: Qdrant API key (or set QDRANT_API_KEY)
        embedding_model: Embedding model name (or set NEXUS_EMBEDDING_MODEL)
        chunk_size: Words per chunk
        overlap: Words shared by consecutive chunks
        recreate: Delete the collection before indexing
        env_file: Path to .env file
    """
    if not input_dir or not os.path.isdir(input_dir):
        print("ERROR: --input_dir must be an existing directory")
        return

    config = Config.from_env(env_file)
    collection_name = collection_name or config.collection_name
    qdrant_url = qdrant_url or config.qdrant_url
    qdrant_api_key = qdrant_api_key or config.qdrant_api_key
    embedding_model = embedding_model or config.embedding_model

    files = sorted(
        p for p in Path(input_dir).rglob("*") if p.is_file() and p.suffix.lower() in SUFFIXES
    )
    if not files:
        print(f"No {', '.join(SUFFIXES)} files found in {input_dir}")
        return
    print(f"Found {len(files)} documents in {input_dir}")

    print(f"Connecting to Qdrant at: {qdrant_url}")
    store = VectorStore(
        collection_name=collection_name,
        url=qdrant_url,
        api_key=qdrant_api_key,
        timeout=config.qdrant_timeout,
    )
    if recreate:
        existing = [c.name for c in store.client.get_collections().collections]
        if collection_name in existing:
            print(f"Deleting existing collection: {collection_name}")
            store.client.delete_collection(collection_name)

    print(f"Loading embedding model: {embedding_model}")
    indexer = DocumentIndexer(
        EmbeddingModel(embedding_model), store, chunk_size=chunk_size, overlap=overlap
    )

    total_chunks = 0
    failed = []
    for path in tqdm(files, desc="Indexing"):
        document_id = str(path.relative_to(input_dir).with_suffix("")).replace(os.sep, "/")
        try:
            text = path.read_text(encoding="utf-8")
            total_chunks += indexer.index_document(document_id, text, title=path.name)
        except (OSError, UnicodeDecodeError, ValueError, RuntimeError) as e:
            failed.append(str(path))
            tqdm.write(f"Failed to index {path}: {e}")

    print(f"\nIndexed {len(files) - len(failed)} documents ({total_chunks} chunks) into '{collection_name}'")
    if failed:
        print(f"Failed: {len(failed)} documents")


if __name__ == "__main__":
    fire.Fire(main)
