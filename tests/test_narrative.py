"""Tests for Narrative Beats."""

from datetime import datetime, timedelta, timezone

import pytest

from stc_kernel.charts.dates import to_iso
from stc_kernel.charts.engine import ChartEngine
from stc_kernel.errors import InputValidationError, NotFoundError
from stc_kernel.graph_store.store import GraphStore
from stc_kernel.narrative.beats import NarrativeBeatService, SubBeat
from stc_kernel.repository.repository import EntityRelationRepository

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
NOW_MS = int(NOW.timestamp() * 1000)


def _make_beat(beats: NarrativeBeatService, parent: str, act: int = 1):
    return beats.create_beat(
        parent,
        "The first build fails",
        act,
        "Crisis/Antagonist Force",
        ["engineer-world", "ceremony-world"],
        "The deploy pipeline rejects the build",
        "Night falls over a red dashboard.",
        ["Pin dependency versions"],
    )


class TestNarrativeBeatService:
    @pytest.fixture(autouse=True)
    def _services(self, tmp_path):
        self.repository = EntityRelationRepository(GraphStore(tmp_path / "memory.jsonl"))
        self.engine = ChartEngine(self.repository, clock=lambda: NOW)
        self.beats = NarrativeBeatService(self.repository, clock=lambda: NOW)
        self.chart = self.engine.create_chart(
            "Learn Django web development", "Never used Django, familiar with Python basics",
            to_iso(NOW + timedelta(days=90)), ["Complete the tutorial"],
        ).chart_id

    def test_create_beat(self):
        beat = _make_beat(self.beats, self.chart)

        assert beat.name == f"{self.chart}_beat_{NOW_MS}"
        assert beat.entity_type == "narrative_beat"
        assert beat.observations == [
            "Act 1 Crisis/Antagonist Force",
            "Timestamp: 2025-01-01T12:00:00.000Z",
            "Universe: engineer-world, ceremony-world",
        ]
        assert beat.metadata.chart_id == self.chart
        assert beat.metadata.narrative["lessons"] == ["Pin dependency versions"]
        assert beat.metadata.relational_alignment["assessed"] is False

    def test_beat_documents_chart_outcome(self):
        beat = _make_beat(self.beats, self.chart)
        keys = {r.key for r in self.repository.read_graph().relations}
        assert (beat.name, f"{self.chart}_desired_outcome", "documents") in keys

    def test_beat_leaves_chart_entities_untouched(self):
        before = [e for e in self.repository.read_graph().entities]
        _make_beat(self.beats, self.chart)
        after = self.repository.read_graph().entities
        assert after[: len(before)] == before

    def test_beat_without_chart_has_no_relation(self):
        beat = _make_beat(self.beats, "chart_1")
        graph = self.repository.read_graph()
        assert graph.find_entity(beat.name) is not None
        assert not any(r.touches([beat.name]) for r in graph.relations)

    def test_same_instant_beats_get_distinct_names(self):
        first = _make_beat(self.beats, self.chart)
        second = _make_beat(self.beats, self.chart, act=2)
        assert first.name != second.name

    def test_act_must_be_positive(self):
        with pytest.raises(InputValidationError):
            _make_beat(self.beats, self.chart, act=0)

    def test_list_beats_filters_by_chart(self):
        _make_beat(self.beats, self.chart)
        _make_beat(self.beats, "chart_1")
        assert len(self.beats.list_beats()) == 2
        assert [b.chart_id for b in self.beats.list_beats(self.chart)] == [self.chart]

    def test_telescope_beat(self):
        parent = _make_beat(self.beats, self.chart)
        result = self.beats.telescope_beat(
            parent.name,
            "Pipeline green again after pinning",
            [
                SubBeat(title="Diagnose", type_dramatic="Setup", description="d", prose="p"),
                SubBeat(title="Repair", type_dramatic="Turning Point", description="d", prose="p",
                        lessons=["Read the changelog"]),
            ],
        )

        assert result.parent_beat.observations[-1] == "Telescoped: Pipeline green again after pinning"
        assert [b.metadata.act for b in result.sub_beats] == [1, 2]
        assert all(b.chart_id == parent.name for b in result.sub_beats)
        assert result.sub_beats[0].metadata.universes == ["engineer-world", "ceremony-world"]
        assert len(self.beats.list_beats(parent.name)) == 2

    def test_telescope_unknown_beat(self):
        with pytest.raises(NotFoundError):
            self.beats.telescope_beat("chart_1_beat_1", "Anything")
