"""Tests for the Qdrant vector store (client mocked)."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import numpy as np
import pytest

from nexusrag.cancellation import CancellationToken, OperationCancelled
from nexusrag.components.retrieval import VectorStore, chunk_point_id
from nexusrag.models import RetrievalConfig


def point(point_id, score=None, **payload):
    return SimpleNamespace(id=point_id, score=score, payload=payload)


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def store(client):
    return VectorStore("nexus_knowledge", top_k=5, retry_count=0, client=client)


# --- search ---


def test_search_maps_points_to_candidates(store, client):
    client.query_points.return_value = SimpleNamespace(
        points=[
            point(7, 0.91, content="Roadmap basics", document_id="roadmap"),
            point("abc", 0.42, text="Fallback text key"),
        ]
    )
    results = store.search(np.ones(4), k=2)

    assert [r.id for r in results] == ["7", "abc"]
    assert results[0].content == "Roadmap basics"
    assert results[0].document_id == "roadmap"
    assert results[0].similarity == pytest.approx(0.91)
    assert results[1].content == "Fallback text key"
    assert results[1].document_id is None
    kwargs = client.query_points.call_args.kwargs
    assert kwargs["limit"] == 2
    assert kwargs["collection_name"] == "nexus_knowledge"


def test_search_uses_default_top_k(store, client):
    client.query_points.return_value = SimpleNamespace(points=[])
    assert store.search(np.ones(4)) == []
    assert client.query_points.call_args.kwargs["limit"] == 5


def test_search_missing_collection(store, client):
    client.query_points.side_effect = Exception("Collection nexus_knowledge not found")
    with pytest.raises(ValueError, match="not found"):
        store.search(np.ones(4))


def test_search_connection_error(store, client):
    client.query_points.side_effect = Exception("Connection refused")
    with pytest.raises(ConnectionError):
        store.search(np.ones(4))


def test_search_rejects_empty_embedding(store):
    with pytest.raises(ValueError):
        store.search(np.array([]))


def test_config_object_accepted(client):
    store = VectorStore(RetrievalConfig(collection_name="notes", top_k=3), client=client)
    assert store.collection_name == "notes"
    assert store.top_k == 3


# --- documents ---


def test_get_document_chunks_sorted_by_chunk_index(store, client):
    client.scroll.side_effect = [
        ([point("b", chunk_index=1, content="second")], "next-page"),
        ([point("a", chunk_index=0, content="first")], None),
    ]
    assert store.get_document_chunks("roadmap") == ["first", "second"]
    assert client.scroll.call_count == 2
    assert client.scroll.call_args.kwargs["offset"] == "next-page"


def test_get_document_chunks_requires_id(store):
    with pytest.raises(ValueError):
        store.get_document_chunks("")


def test_upsert_chunks_uses_stable_ids(store, client):
    written = store.upsert_chunks(
        "roadmap", ["one", "two"], [np.ones(4), np.zeros(4)], title="Roadmap"
    )

    assert written == 2
    points = client.upsert.call_args.kwargs["points"]
    assert [p.id for p in points] == [chunk_point_id("roadmap", 0), chunk_point_id("roadmap", 1)]
    assert points[1].payload == {
        "document_id": "roadmap",
        "chunk_index": 1,
        "content": "two",
        "title": "Roadmap",
    }
    assert chunk_point_id("roadmap", 0) == chunk_point_id("roadmap", 0)


def test_upsert_chunks_length_mismatch(store):
    with pytest.raises(ValueError):
        store.upsert_chunks("roadmap", ["one"], [])


def test_ensure_collection(store, client):
    client.get_collections.return_value = SimpleNamespace(collections=[])
    assert store.ensure_collection(384) is True
    assert client.create_collection.call_args.kwargs["vectors_config"].size == 384

    client.get_collections.return_value = SimpleNamespace(
        collections=[SimpleNamespace(name="nexus_knowledge")]
    )
    assert store.ensure_collection(384) is False


def test_search_backoff_stops_on_cancellation(client):
    store = VectorStore("nexus_knowledge", retry_count=2, client=client)
    token = CancellationToken()

    def fail_and_cancel(**kwargs):
        token.cancel("user pressed stop")
        raise Exception("Connection refused")

    client.query_points.side_effect = fail_and_cancel
    with pytest.raises(OperationCancelled):
        store.search(np.ones(4), cancel_token=token)
    # no second attempt after the backoff was cut short
    assert client.query_points.call_count == 1


def test_search_skipped_when_already_cancelled(store, client):
    token = CancellationToken()
    token.cancel()
    with pytest.raises(OperationCancelled):
        store.search(np.ones(4), cancel_token=token)
    client.query_points.assert_not_called()
