"""Tests for retrieval utilities."""

from datetime import datetime, timedelta, timezone

import pytest

from localdex.models.entities import Chunk
from localdex.retrieval import KeywordIndex, VectorIndex, fuse, normalize_scores
from localdex.retrieval.hybrid import dedupe_by_document, paginate, rank_key


def _chunk(chunk_id: str, document_id: str, content: str = "", embedding=None) -> Chunk:
    return Chunk(id=chunk_id, document_id=document_id, content=content, position=0, embedding=embedding)


def test_vector_index_basic() -> None:
    index = VectorIndex(dim=3)
    index.upsert("s1", "d1", [_chunk("a", "d1", embedding=[1.0, 0.0, 0.0])])
    index.upsert("s2", "d2", [_chunk("b", "d2", embedding=[0.0, 2.0, 0.0])])

    results = index.search([1.0, 0.0, 0.0], top_k=1)
    assert [hit.chunk_id for hit in results] == ["a"]
    assert results[0].score == pytest.approx(1.0)
    assert [hit.chunk_id for hit in index.search([1.0, 0.0, 0.0], source_ids=["s2"])] == ["b"]

    with pytest.raises(ValueError):
        index.upsert("s1", "d3", [_chunk("c", "d3", embedding=[1.0, 0.0])])
    index.remove_source("s1")
    assert index.size == 1


def test_keyword_index_requires_term_overlap() -> None:
    index = KeywordIndex()
    index.upsert("s1", "d1", [_chunk("c1", "d1", "quarterly tax report")])
    index.upsert("s1", "d2", [_chunk("c2", "d2", "garden planting notes")])

    hits = index.search(["tax"])
    assert [hit.chunk_id for hit in hits] == ["c1"]
    assert hits[0].matched_terms == {"tax"}

    multi = index.search(["tax", "garden"])
    assert {hit.chunk_id for hit in multi} == {"c1", "c2"}
    assert index.search(["   "]) == []

    index.remove_document("d1")
    assert index.search(["tax"]) == []
    assert index.size == 1


def test_fused_score_tracks_both_signals() -> None:
    fused = fuse({"ref": 10.0, "kw": 5.0}, {"ref": 0.8, "sem": 0.4})

    assert fused["ref"].score == pytest.approx(2.0)
    assert fused["kw"].score == pytest.approx(0.5)
    assert fused["kw"].semantic == 0.0
    assert fused["sem"].score == pytest.approx(0.5)


def test_fusion_weights() -> None:
    keyword_heavy = fuse({"a": 3.0, "b": 1.5}, {"a": 0.9, "c": 0.3}, keyword_weight=2.0, semantic_weight=1.0)
    assert keyword_heavy["a"].score == pytest.approx(3.0)
    assert keyword_heavy["b"].score == pytest.approx(1.0)
    assert keyword_heavy["c"].score == pytest.approx(1.0 / 3.0)

    semantic_heavy = fuse({"a": 3.0}, {"a": 0.9, "c": 0.9}, keyword_weight=1.0, semantic_weight=3.0)
    assert semantic_heavy["c"].score == pytest.approx(3.0)

    for weight in (-0.1, 0.0, 0.5):
        with pytest.raises(ValueError):
            fuse({"a": 1.0}, {}, keyword_weight=weight)
        with pytest.raises(ValueError):
            fuse({"a": 1.0}, {}, semantic_weight=weight)


@pytest.mark.parametrize("weights", [(1.0, 1.0), (2.0, 1.0), (1.0, 4.5)])
def test_two_signal_score_never_below_either_signal(weights) -> None:
    keyword = {"a": 8.0, "b": 3.0, "c": 0.5, "d": 0.0}
    semantic = {"a": 0.1, "b": 0.9, "c": 0.45, "d": 0.3}
    fused = fuse(keyword, semantic, *weights)

    for score in fused.values():
        assert score.score >= score.keyword
        assert score.score >= score.semantic


def test_normalize_scores_clamps() -> None:
    assert normalize_scores({}) == {}
    assert normalize_scores({"a": -1.0, "b": 0.0}) == {"a": 0.0, "b": 0.0}
    assert normalize_scores({"a": 4.0, "b": 2.0, "c": -1.0}) == {"a": 1.0, "b": 0.5, "c": 0.0}


def test_ranking_helpers() -> None:
    now = datetime.now(timezone.utc)
    rows = [
        ("old", 0.9, now - timedelta(days=1), 0),
        ("new", 0.9, now, 1),
        ("new", 0.9, now, 0),
        ("best", 1.5, now - timedelta(days=9), 0),
    ]
    rows.sort(key=lambda row: rank_key(row[1], row[2], row[0], row[3]))

    assert [(row[0], row[3]) for row in rows] == [("best", 0), ("new", 0), ("new", 1), ("old", 0)]
    unique = dedupe_by_document(rows, lambda row: row[0])
    assert [row[0] for row in unique] == ["best", "new", "old"]
    assert paginate(unique, 1, 5) == unique[1:]
