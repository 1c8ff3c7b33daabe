"""Tests for the file and memory vector stores."""

import asyncio

import numpy as np
import pytest

from conftest import unit
from jira_mcp_server.errors import CorruptPersistentStoreError
from jira_mcp_server.vector_store import (
    EmbeddingRecord,
    FileVectorStore,
    MemoryVectorStore,
    VectorStoreConfig,
    VectorStoreType,
    cosine_similarity,
    create_vector_store,
    format_record,
    parse_record,
)


def record(key, name, text, vector):
    return EmbeddingRecord(key=key, name=name, search_text=text, vector=np.asarray(vector, dtype=np.float32))


def sample_records():
    return [
        record("AITECH", "AI Tech", "AITECH", unit([1, 0, 0])),
        record("AITECH", "AI Tech", "айтеч", unit([1, 1, 0])),
        record("CRM", "Customer Relations", "CRM", unit([0, 1, 0])),
        record("BILLING", "Billing", "BILLING", unit([0, 0, 1])),
    ]


class TestRecordFormat:
    """Line serialization."""

    def test_format_record(self):
        line = format_record(record("K", "Name", "text", [0.5, 1.0]))
        assert line == "K|Name|text|[0.5, 1.0]"

    def test_parse_record(self):
        parsed = parse_record("K|Name|text|[0.5, 1.0]")
        assert parsed.key == "K"
        assert parsed.name == "Name"
        assert parsed.search_text == "text"
        assert parsed.vector.dtype == np.float32
        assert parsed.vector.tolist() == [0.5, 1.0]

    @pytest.mark.parametrize("line", [
        "K|Name|text",
        "K|Name|text|[1.0]|extra",
        "|Name|text|[1.0]",
        "K|Name|text|not json",
        "K|Name|text|[]",
        "K|Name|text|{\"a\": 1}",
        "K|Name|text|[[1.0], [2.0]]",
        "K|Name|text|[{}, 1.0]",
        "K|Name|text|[\"x\", 1.0]",
    ])
    def test_parse_malformed(self, line):
        with pytest.raises(ValueError):
            parse_record(line)


class TestCosineSimilarity:
    """Cosine helper."""

    def test_identical(self):
        assert cosine_similarity(unit([1, 2]), unit([1, 2])) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity(unit([1, 0]), unit([0, 1])) == pytest.approx(0.0)

    def test_zero_and_mismatched(self):
        assert cosine_similarity(np.zeros(2), unit([1, 0])) == 0.0
        assert cosine_similarity(unit([1, 0, 0]), unit([1, 0])) == 0.0


class TestMemoryVectorStore:
    """Search, upsert and delete semantics."""

    def make_store(self):
        store = MemoryVectorStore(VectorStoreConfig(store_type=VectorStoreType.MEMORY))
        asyncio.run(store.initialize())
        return store

    def test_search_best_match_per_project(self):
        store = self.make_store()

        async def scenario():
            await store.upsert(sample_records())
            return await store.search(unit([1, 0, 0]), limit=10, max_distance=0.7)

        results = asyncio.run(scenario())
        assert [r.key for r in results] == ["AITECH"]
        assert results[0].score == pytest.approx(1.0)
        assert results[0].source == "semantic"

    def test_search_score_and_order(self):
        store = self.make_store()

        async def scenario():
            await store.upsert(sample_records())
            return await store.search(unit([1, 1, 1]), limit=10, max_distance=1.0)

        results = asyncio.run(scenario())
        # distance 1 - cos, score = 1 - distance / 2
        best = 1.0 - (1.0 - float(np.dot(unit([1, 1, 1]), unit([1, 1, 0])))) / 2.0
        assert [r.key for r in results] == ["AITECH", "BILLING", "CRM"]
        assert results[0].score == pytest.approx(best, abs=1e-6)
        assert results[1].score == pytest.approx(results[2].score)

    def test_search_respects_limit(self):
        store = self.make_store()

        async def scenario():
            await store.upsert(sample_records())
            return await store.search(unit([1, 1, 1]), limit=1, max_distance=1.0)

        assert len(asyncio.run(scenario())) == 1

    def test_search_empty_store(self):
        store = self.make_store()
        assert asyncio.run(store.search(unit([1, 0, 0]), limit=5, max_distance=1.0)) == []

    def test_upsert_replaces_same_search_text(self):
        store = self.make_store()

        async def scenario():
            await store.upsert([record("CRM", "Old", "CRM", unit([0, 1, 0]))])
            await store.upsert([record("CRM", "New", "CRM", unit([1, 0, 0]))])
            return await store.get_project_names()

        assert asyncio.run(scenario()) == {"CRM": "New"}
        assert len(store.records["CRM"]) == 1

    def test_upsert_skips_records_without_vector(self):
        store = self.make_store()
        asyncio.run(store.upsert([EmbeddingRecord(key="X", name="X", search_text="x")]))
        assert store.records == {}

    def test_upsert_rejects_dimension_mismatch(self):
        store = self.make_store()

        async def scenario():
            await store.upsert([record("A", "A", "a", unit([1, 0, 0]))])
            await store.upsert([record("B", "B", "b", unit([1, 0]))])

        with pytest.raises(ValueError):
            asyncio.run(scenario())
        assert store.dimension == 3

    def test_delete_by_keys(self):
        store = self.make_store()

        async def scenario():
            await store.upsert(sample_records())
            await store.delete_by_keys(["AITECH", "MISSING"])
            return await store.get_all_keys()

        assert sorted(asyncio.run(scenario())) == ["BILLING", "CRM"]

    def test_stats(self):
        store = self.make_store()
        asyncio.run(store.upsert(sample_records()))
        stats = asyncio.run(store.get_stats())
        assert stats == {
            "store_type": "memory",
            "project_count": 3,
            "record_count": 4,
            "embedding_dimension": 3,
        }


class TestFileVectorStore:
    """Persistence and recovery."""

    def make_store(self, path, dimension=None):
        store = create_vector_store("file", persist_path=str(path), embedding_dimension=dimension)
        asyncio.run(store.initialize())
        return store

    def test_round_trip(self, tmp_path):
        path = tmp_path / "vectors.txt"
        store = self.make_store(path)
        asyncio.run(store.upsert(sample_records()))

        reloaded = self.make_store(path)
        assert asyncio.run(reloaded.get_project_names()) == {
            "AITECH": "AI Tech",
            "CRM": "Customer Relations",
            "BILLING": "Billing",
        }
        assert reloaded.dimension == 3
        assert len(path.read_text(encoding="utf-8").splitlines()) == 4

    def test_missing_file_starts_empty(self, tmp_path):
        store = self.make_store(tmp_path / "nested" / "vectors.txt")
        assert store.records == {}
        assert store.is_initialized

    def test_malformed_lines_skipped(self, tmp_path):
        path = tmp_path / "vectors.txt"
        path.write_text(
            "CRM|Customer Relations|CRM|[0.0, 1.0]\n"
            "garbage line\n"
            "BAD|Bad|bad|[1.0, 2.0, 3.0]\n"
            "AITECH|AI Tech|AITECH|[1.0, 0.0]\n",
            encoding="utf-8",
        )
        store = self.make_store(path)
        assert sorted(asyncio.run(store.get_all_keys())) == ["AITECH", "CRM"]

    def test_non_numeric_vector_skipped(self, tmp_path):
        path = tmp_path / "vectors.txt"
        path.write_text("A|Alpha|alpha|[1.0, 0.0]\nB|Beta|beta|[{}, 1.0]\n", encoding="utf-8")
        store = self.make_store(path)
        assert store.is_initialized
        assert asyncio.run(store.get_all_keys()) == ["A"]

    def test_corrupt_file_deleted(self, tmp_path):
        path = tmp_path / "vectors.txt"
        path.write_text("nothing|useful\nhere\n", encoding="utf-8")
        store = self.make_store(path)
        assert store.records == {}
        assert not path.exists()

    def test_read_file_raises_on_corrupt(self, tmp_path):
        path = tmp_path / "vectors.txt"
        path.write_bytes(b"\xff\xfe\x00garbage")
        store = FileVectorStore(VectorStoreConfig(persist_path=str(path)))
        with pytest.raises(CorruptPersistentStoreError):
            store._read_file()

    def test_dimension_mismatch_discards_store(self, tmp_path):
        path = tmp_path / "vectors.txt"
        store = self.make_store(path)
        asyncio.run(store.upsert(sample_records()))
        assert path.exists()

        store = self.make_store(path, dimension=1536)
        assert store.records == {}
        assert not path.exists()

    def test_delete_persists(self, tmp_path):
        path = tmp_path / "vectors.txt"
        store = self.make_store(path)

        async def scenario():
            await store.upsert(sample_records())
            await store.delete_by_keys(["CRM"])

        asyncio.run(scenario())
        reloaded = self.make_store(path)
        assert "CRM" not in asyncio.run(reloaded.get_all_keys())

    def test_clear_removes_file(self, tmp_path):
        path = tmp_path / "vectors.txt"
        store = self.make_store(path)

        async def scenario():
            await store.upsert(sample_records())
            await store.clear()

        asyncio.run(scenario())
        assert not path.exists()
        assert store.records == {}

    def test_no_temp_file_left(self, tmp_path):
        path = tmp_path / "vectors.txt"
        store = self.make_store(path)
        asyncio.run(store.upsert(sample_records()))
        assert [p.name for p in tmp_path.iterdir()] == ["vectors.txt"]

    def test_requires_path(self):
        with pytest.raises(ValueError):
            create_vector_store("file", persist_path=None)


class TestCreateVectorStore:
    """Factory."""

    def test_memory(self):
        assert isinstance(create_vector_store("memory"), MemoryVectorStore)
        assert not isinstance(create_vector_store("memory"), FileVectorStore)

    def test_file(self, tmp_path):
        assert isinstance(create_vector_store(VectorStoreType.FILE, str(tmp_path / "v.txt")), FileVectorStore)

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            create_vector_store("chroma")
