"""
Tests for need matching and need embedding text.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from linksy.search.embeddings import build_need_embedding_text, embed_query, embed_texts
from linksy.search.needs import match_needs


def _row(need_id, cosine_distance, name="Need", category_name="Housing", synonyms=None):
    return SimpleNamespace(
        id=need_id,
        name=name,
        synonyms=synonyms,
        category_name=category_name,
        cosine_distance=cosine_distance,
    )


def _mock_db(rows):
    db = MagicMock()
    db.execute.return_value.all.return_value = rows
    return db


class TestMatchNeeds:
    def test_sorted_by_similarity_descending(self):
        db = _mock_db([_row("b", 0.3), _row("a", 0.1), _row("c", 0.2)])
        results = match_needs([0.0] * 3, db=db)
        assert [r["id"] for r in results] == ["a", "c", "b"]
        assert results[0]["similarity"] == pytest.approx(0.9)

    def test_threshold_is_inclusive(self):
        db = _mock_db([_row("edge", 0.5), _row("below", 0.5001)])
        results = match_needs([0.0], db=db, threshold=0.5)
        assert [r["id"] for r in results] == ["edge"]

    def test_limit_applied(self):
        rows = [_row(str(i), 0.1 + i * 0.01) for i in range(8)]
        results = match_needs([0.0], db=_mock_db(rows), limit=5)
        assert len(results) == 5

    def test_ties_broken_by_id(self):
        db = _mock_db([_row("b", 0.2), _row("a", 0.2)])
        results = match_needs([0.0], db=db)
        assert [r["id"] for r in results] == ["a", "b"]

    def test_empty_when_nothing_matches(self):
        assert match_needs([0.0], db=_mock_db([])) == []

    def test_result_shape(self):
        db = _mock_db([_row("a", 0.2, name="Housing Assistance", synonyms=["rent help"])])
        result = match_needs([0.0], db=db)[0]
        assert result == {
            "id": "a",
            "name": "Housing Assistance",
            "category": "Housing",
            "synonyms": ["rent help"],
            "similarity": 0.8,
        }

    def test_database_error_propagates(self):
        db = MagicMock()
        db.execute.side_effect = RuntimeError("connection reset")
        with pytest.raises(RuntimeError):
            match_needs([0.0], db=db)


class TestNeedEmbeddingText:
    def test_name_and_synonyms(self):
        text = build_need_embedding_text({"name": "Rent Assistance", "synonyms": ["rent help", "eviction"]})
        assert text == "Rent Assistance. rent help. eviction"

    def test_name_only(self):
        assert build_need_embedding_text({"name": "Food Pantry", "synonyms": None}) == "Food Pantry"


class TestEmbedTexts:
    @patch("linksy.search.embeddings.settings")
    def test_batches_requests(self, mock_settings):
        mock_settings.EMBEDDING_BATCH_SIZE = 2
        mock_settings.EMBEDDING_MODEL = "text-embedding-3-small"
        client = MagicMock()
        client.embeddings.create.side_effect = lambda input, model: SimpleNamespace(
            data=[SimpleNamespace(embedding=[float(len(t))]) for t in input],
            usage=SimpleNamespace(total_tokens=len(input)),
        )

        vectors = embed_texts(["a", "bb", "ccc"], client)

        assert vectors == [[1.0], [2.0], [3.0]]
        assert client.embeddings.create.call_count == 2

    def test_empty_input_makes_no_call(self):
        client = MagicMock()
        assert embed_texts([], client) == []
        client.embeddings.create.assert_not_called()


class TestEmbedQuery:
    @pytest.mark.asyncio
    async def test_returns_vector_and_tokens(self):
        client = MagicMock()
        client.embeddings.create = AsyncMock(return_value=SimpleNamespace(
            data=[SimpleNamespace(embedding=[0.1, 0.2])],
            usage=SimpleNamespace(total_tokens=7),
        ))
        vector, tokens = await embed_query("rent", client)
        assert vector == [0.1, 0.2]
        assert tokens == 7

    @pytest.mark.asyncio
    async def test_missing_usage_counts_zero(self):
        client = MagicMock()
        client.embeddings.create = AsyncMock(return_value=SimpleNamespace(
            data=[SimpleNamespace(embedding=[0.1])],
            usage=None,
        ))
        _, tokens = await embed_query("rent", client)
        assert tokens == 0
