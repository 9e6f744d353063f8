"""Tests for the Query Service."""

from datetime import datetime, timedelta, timezone

import pytest

from stc_kernel.charts.dates import to_iso
from stc_kernel.charts.engine import ChartEngine
from stc_kernel.graph_store.store import GraphStore
from stc_kernel.narrative.beats import NarrativeBeatService
from stc_kernel.query.service import QueryService
from stc_kernel.repository.repository import EntityRelationRepository

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def _make_services(tmp_path):
    repository = EntityRelationRepository(GraphStore(tmp_path / "memory.jsonl"))
    engine = ChartEngine(repository, clock=lambda: NOW)
    return engine, QueryService(repository), repository


class TestQueryService:
    @pytest.fixture(autouse=True)
    def _services(self, tmp_path):
        self.engine, self.query, self.repository = _make_services(tmp_path)
        self.late = self.engine.create_chart(
            "Publish a cookbook", "Twelve recipes drafted",
            to_iso(NOW + timedelta(days=200)), ["Draft chapter one"],
        ).chart_id
        self.early = self.engine.create_chart(
            "Learn Django web development", "Never used Django, familiar with Python basics",
            to_iso(NOW + timedelta(days=90)), ["Complete the tutorial", "Build a blog"],
        ).chart_id
        self.step = self.engine.add_action_step(
            self.early, "Learn Django forms", current_reality="Never built a form"
        )

    def test_list_orders_by_level_then_due_date(self):
        charts = self.query.list_charts()
        assert [c.chart_id for c in charts] == [self.early, self.late, self.step.chart_id]
        assert charts[2].level == 1
        assert charts[2].parent_chart == self.early
        assert charts[0].desired_outcome == "Learn Django web development"
        assert charts[0].total_actions == 2

    def test_undated_chart_sorts_last_in_level(self):
        with self.repository.transaction() as graph:
            graph.chart_entity(self.early).metadata.due_date = None
        charts = self.query.list_charts()
        assert [c.chart_id for c in charts if c.level == 0] == [self.late, self.early]

    def test_chart_details(self):
        details = self.query.chart_details(self.early)
        assert len(details.entities) == 5
        assert all(e.chart_id == self.early for e in details.entities)
        assert len(details.relations) == 7

    def test_chart_details_unknown(self):
        assert self.query.chart_details("chart_1") is None

    def test_action_step_details_match_chart_details(self):
        by_step = self.query.action_step_details(self.step.action_step_name)
        by_chart = self.query.chart_details(self.step.chart_id)
        assert by_step == by_chart
        assert len(by_step.entities) == 3
        assert len(by_step.relations) == 3

    def test_legacy_action_step_details(self):
        details = self.query.action_step_details(f"{self.early}_action_1")
        assert details == self.query.chart_details(self.early)

    def test_action_step_details_unknown(self):
        assert self.query.action_step_details("chart_1_action_1") is None

    def test_search_and_open_nodes(self):
        found = self.query.search("cookbook")
        assert [e.name for e in found.entities] == [f"{self.late}_desired_outcome"]
        opened = self.query.open_nodes([f"{self.late}_chart", f"{self.late}_desired_outcome"])
        assert len(opened.relations) == 1

    def test_stats(self, tmp_path):
        self.engine.mark_complete(f"{self.early}_action_1")
        NarrativeBeatService(self.repository, clock=lambda: NOW).create_beat(
            self.early, "First steps", 1, "Setup", ["engineer-world"], "d", "p", [],
        )

        stats = self.query.stats(NOW + timedelta(days=100))
        assert stats.total_charts == 3
        assert stats.master_charts == 2
        assert stats.telescoped_charts == 1
        assert stats.narrative_beats == 1
        assert stats.total_actions == 3
        assert stats.completed_actions == 1
        assert stats.overall_progress == pytest.approx(1 / 3)
        # The Django master is flagged complete by its legacy step; the
        # 45-day telescoped step is still open and past due.
        assert stats.overdue_charts == 1

    def test_stats_empty(self, tmp_path):
        _, query, _ = _make_services(tmp_path / "empty")
        stats = query.stats(NOW)
        assert stats.total_charts == 0
        assert stats.overall_progress == 0.0
