import numpy as np
import pytest

from ctxindex.indexer import Indexer
from ctxindex.models import ChunkType, CodeChunk, SearchOptions
from ctxindex.retrieval import (SNIPPETS_HEADER, EmbeddingScorer, KeywordScorer,
                                RetrievalService, query_keywords)
from ctxindex.storage import ChunkStore

TWO_FUNCTIONS = "function add(a,b){return a+b;} function sub(a,b){return a-b;}"


def _chunk(content, file_path="a.py", language="python"):
    return CodeChunk(
        content=content,
        file_path=file_path,
        language=language,
        chunk_type=ChunkType.FUNCTION,
    )


class FixedScorer:
    def __init__(self, scores):
        self.scores = scores

    def score(self, query, chunk):
        return self.scores.get(chunk.content, 0.0)


@pytest.fixture
def math_index(temp_dir):
    root = temp_dir / "ws"
    root.mkdir()
    (root / "math.js").write_text(TWO_FUNCTIONS)
    store = ChunkStore()
    Indexer(store, [root]).index_file("math.js")
    return store


class TestKeywordScorer:
    def test_keywords_drop_short_tokens(self):
        assert query_keywords("an Add to ListItems") == ["add", "listitems"]

    def test_score_is_length_weighted_and_size_normalized(self):
        scorer = KeywordScorer()
        assert scorer.score("add", _chunk("function add(a,b){return a+b;}")) == pytest.approx(1.0)
        assert scorer.score("add", _chunk(TWO_FUNCTIONS)) == pytest.approx(0.3 / 0.61)
        assert scorer.score("add", _chunk("function sub(a,b){return a-b;}")) == 0.0

    def test_score_is_capped(self):
        assert KeywordScorer().score("needle", _chunk("needle needle")) == 1.0

    def test_case_insensitive(self):
        assert KeywordScorer().score("CART", _chunk("class Cart {}")) > 0

    def test_empty_content(self):
        assert KeywordScorer().score("anything", _chunk("")) == 0.0


class TestSearch:
    def test_end_to_end_two_functions(self, math_index):
        assert math_index.count() == 3
        service = RetrievalService(math_index)

        results = service.search("add", SearchOptions(threshold=0.01))
        names = [r.chunk.metadata.get("name") for r in results]
        assert names[0] == "add"
        assert results[0].score == pytest.approx(1.0)
        assert "sub" not in names
        whole = next(r for r in results if r.chunk.chunk_type == ChunkType.OTHER)
        assert whole.score < results[0].score

    def test_ordering_limit_and_threshold(self):
        store = ChunkStore()
        for content in ("A", "B", "C"):
            store.put(_chunk(content))
        service = RetrievalService(store, FixedScorer({"A": 0.9, "B": 0.3, "C": 0.1}))

        results = service.search("q", SearchOptions(limit=5, threshold=0.2))
        assert [r.chunk.content for r in results] == ["A", "B"]

        results = service.search("q", SearchOptions(limit=1, threshold=0.2))
        assert [r.chunk.content for r in results] == ["A"]

        results = service.search("q", SearchOptions(limit=5, threshold=0.5))
        assert [r.chunk.content for r in results] == ["A"]

    def test_zero_scores_never_match(self):
        store = ChunkStore()
        store.put(_chunk("unrelated"))
        service = RetrievalService(store)
        assert service.search("missing", SearchOptions(threshold=0.0)) == []

    def test_short_query_returns_nothing(self, math_index):
        assert RetrievalService(math_index).search("a b", SearchOptions(threshold=0.0)) == []

    def test_filter(self):
        store = ChunkStore()
        store.put(_chunk("parse input", file_path="a.py", language="python"))
        store.put(_chunk("parse input", file_path="a.js", language="javascript"))
        service = RetrievalService(store)

        options = SearchOptions(threshold=0.0, filter=lambda c: c.language == "javascript")
        results = service.search("parse", options)
        assert [r.chunk.file_path for r in results] == ["a.js"]

    def test_relevant_snippets_by_language(self, math_index):
        service = RetrievalService(math_index)
        assert service.relevant_snippets("add", language="python") == []
        assert len(service.relevant_snippets("add", language="javascript")) == 2


class TestAugmentPrompt:
    def test_no_results_leaves_prompt_unchanged(self, math_index):
        service = RetrievalService(math_index)
        assert service.augment_prompt("Explain this", "nonexistent") == "Explain this"

    def test_appends_snippets(self, math_index):
        service = RetrievalService(math_index)
        out = service.augment_prompt("Explain this", "add")

        assert out.startswith("Explain this\n")
        assert SNIPPETS_HEADER in out
        assert "Snippet 1 (relevance: 100%):\nFile: math.js\n```javascript\n" in out
        assert "function add(a,b){return a+b;}" in out
        assert "Snippet 2 (relevance: 49%)" in out
        assert "Snippet 3" not in out

    def test_limit(self, math_index):
        out = RetrievalService(math_index).augment_prompt("p", "add", limit=1)
        assert "Snippet 2" not in out

    def test_search_failure_returns_prompt(self):
        class Broken:
            def score(self, query, chunk):
                raise RuntimeError("scorer down")

        store = ChunkStore()
        store.put(_chunk("content"))
        assert RetrievalService(store, Broken()).augment_prompt("p", "content") == "p"


class TestEmbeddingScorer:
    VOCAB = {"alpha": 0, "beta": 1, "gamma": 2, "delta": 3}

    def _embed(self, texts):
        out = np.zeros((len(texts), len(self.VOCAB)), dtype="float32")
        for i, text in enumerate(texts):
            for word in text.split():
                if word in self.VOCAB:
                    out[i, self.VOCAB[word]] += 1.0
        return out

    def test_cosine_ranking(self):
        store = ChunkStore()
        store.put(_chunk("alpha beta"))
        store.put(_chunk("alpha gamma"))
        store.put(_chunk("delta"))
        service = RetrievalService(store, EmbeddingScorer(self._embed))

        results = service.search("alpha beta", SearchOptions(threshold=0.1))
        assert [r.chunk.content for r in results] == ["alpha beta", "alpha gamma"]
        assert results[0].score == pytest.approx(1.0, abs=1e-5)
        assert results[1].score == pytest.approx(0.5, abs=1e-5)

    def test_chunk_embeddings_are_cached(self, dummy_embed_fn):
        calls = []

        def counting(texts):
            calls.append(list(texts))
            return dummy_embed_fn(texts)

        scorer = EmbeddingScorer(counting)
        chunk = _chunk("some code here")
        scorer.score("query text", chunk)
        scorer.score("query text", chunk)
        assert len(calls) == 2  # one query, one chunk

        scorer.forget([chunk.id])
        scorer.score("query text", chunk)
        assert len(calls) == 3

    def test_cache_evicts_least_recently_used(self, dummy_embed_fn):
        calls = []

        def counting(texts):
            calls.extend(texts)
            return dummy_embed_fn(texts)

        scorer = EmbeddingScorer(counting, max_cached=2)
        first, second, third = _chunk("first body"), _chunk("second body"), _chunk("third body")
        scorer.score("query", first)
        scorer.score("query", second)
        scorer.score("query", first)  # refresh first
        scorer.score("query", third)  # evicts second
        assert list(scorer._cache) == [first.id, third.id]

        calls.clear()
        scorer.score("query", first)
        assert calls == []
        scorer.score("query", second)
        assert calls == ["second body"]
