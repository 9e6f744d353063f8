"""Tests for the JSONL Graph Store."""

import json

import pytest

from stc_kernel.errors import GraphStoreError
from stc_kernel.graph_store.store import GraphStore
from stc_kernel.models.graph import Entity, EntityMetadata, KnowledgeGraph, Relation


def _make_graph() -> KnowledgeGraph:
    return KnowledgeGraph(
        entities=[
            Entity(
                name="chart_1_chart",
                entity_type="structural_tension_chart",
                observations=["Chart created on 2025-01-01T12:00:00.000Z"],
                metadata=EntityMetadata(
                    chart_id="chart_1", due_date="2025-04-01T12:00:00.000Z", level=0,
                ),
            ),
            Entity(
                name="chart_1_desired_outcome",
                entity_type="desired_outcome",
                observations=["Learn Django web development"],
                metadata=EntityMetadata(chart_id="chart_1"),
            ),
            Entity(name="Alice", entity_type="person", observations=["Enjoys hiking"]),
        ],
        relations=[
            Relation(
                from_="chart_1_chart", to="chart_1_desired_outcome",
                relation_type="contains", metadata={"createdAt": "2025-01-01T12:00:00.000Z"},
            ),
            Relation(from_="Alice", to="chart_1_chart", relation_type="owns"),
        ],
    )


def _records(graph: KnowledgeGraph) -> set:
    return {
        json.dumps(item.to_record(), sort_keys=True)
        for item in list(graph.entities) + list(graph.relations)
    }


class TestGraphStore:
    @pytest.fixture(autouse=True)
    def _store(self, tmp_path):
        self.path = tmp_path / "memory.jsonl"
        self.store = GraphStore(self.path)

    def test_missing_file_is_empty_graph(self):
        graph = self.store.load()
        assert graph.entities == []
        assert graph.relations == []

    def test_round_trip(self):
        original = _make_graph()
        self.store.save(original)
        assert _records(self.store.load()) == _records(original)

    def test_line_format(self):
        self.store.save(_make_graph())
        lines = self.path.read_text(encoding="utf-8").split("\n")
        assert len(lines) == 5
        first = json.loads(lines[0])
        assert first["type"] == "entity"
        assert first["entityType"] == "structural_tension_chart"
        assert first["metadata"]["chartId"] == "chart_1"
        last = json.loads(lines[-1])
        assert last == {"type": "relation", "from": "Alice", "to": "chart_1_chart", "relationType": "owns"}

    def test_blank_lines_skipped(self):
        self.path.write_text(
            '\n{"type":"entity","name":"Bob","entityType":"person","observations":[]}\n\n',
            encoding="utf-8",
        )
        assert [e.name for e in self.store.load().entities] == ["Bob"]

    def test_unknown_record_type_skipped(self):
        self.path.write_text(
            '{"type":"mystery","name":"x"}\n'
            '{"type":"entity","name":"Bob","entityType":"person","observations":[]}',
            encoding="utf-8",
        )
        graph = self.store.load()
        assert [e.name for e in graph.entities] == ["Bob"]

    def test_legacy_narrative_beat_normalized(self):
        legacy = {
            "type": "narrative_beat",
            "name": "chart_1_beat_1",
            "observations": ["Act 1 Setup"],
            "metadata": {"chartId": "chart_1", "act": 1},
            "narrative": {"description": "d", "prose": "p", "lessons": ["l"]},
            "relational_alignment": {"assessed": False},
            "four_directions": {"north_vision": None},
        }
        self.path.write_text(json.dumps(legacy), encoding="utf-8")

        beat = self.store.load().entities[0]
        assert beat.entity_type == "narrative_beat"
        assert beat.chart_id == "chart_1"
        assert beat.metadata.narrative["lessons"] == ["l"]
        assert beat.metadata.relational_alignment == {"assessed": False}
        assert beat.metadata.four_directions == {"north_vision": None}

    def test_malformed_line_raises(self):
        self.path.write_text('{"type":"entity","name":', encoding="utf-8")
        with pytest.raises(GraphStoreError) as exc:
            self.store.load()
        assert "line 1" in exc.value.message

    def test_unknown_metadata_survives_round_trip(self):
        self.path.write_text(
            json.dumps({
                "type": "entity", "name": "n", "entityType": "note", "observations": [],
                "metadata": {"chartId": "chart_1", "phase": "germination", "mood": "calm"},
            }),
            encoding="utf-8",
        )
        self.store.save(self.store.load())
        saved = json.loads(self.path.read_text(encoding="utf-8"))
        assert saved["metadata"] == {"chartId": "chart_1", "phase": "germination", "mood": "calm"}

    def test_save_creates_parent_directories(self, tmp_path):
        store = GraphStore(tmp_path / "nested" / "dir" / "memory.jsonl")
        store.save(_make_graph())
        assert len(store.load().entities) == 3

    def test_transaction_saves_on_success(self):
        with self.store.transaction() as graph:
            graph.entities.append(Entity(name="Bob", entity_type="person"))
        assert [e.name for e in self.store.load().entities] == ["Bob"]

    def test_transaction_discards_on_error(self):
        self.store.save(_make_graph())
        before = self.path.read_text(encoding="utf-8")

        with pytest.raises(RuntimeError):
            with self.store.transaction() as graph:
                graph.entities.clear()
                raise RuntimeError("boom")

        assert self.path.read_text(encoding="utf-8") == before

    def test_snapshot_never_writes(self):
        with self.store.snapshot() as graph:
            graph.entities.append(Entity(name="Bob", entity_type="person"))
        assert not self.path.exists()

    def test_unreadable_path_raises(self, tmp_path):
        directory = tmp_path / "a_directory"
        directory.mkdir()
        with pytest.raises(GraphStoreError):
            GraphStore(directory).load()

    def test_non_utf8_file_raises(self):
        self.path.write_bytes(b"\xff\xfe\n")
        with pytest.raises(GraphStoreError) as exc:
            self.store.load()
        assert "not valid UTF-8" in exc.value.message
