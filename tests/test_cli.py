"""Tests for the command-line interface."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from stc_kernel.charts.dates import to_iso
from stc_kernel.charts.engine import ChartEngine
from stc_kernel.cli import main
from stc_kernel.graph_store.store import GraphStore
from stc_kernel.repository.repository import EntityRelationRepository


def _seed_chart(path) -> str:
    engine = ChartEngine(EntityRelationRepository(GraphStore(path)))
    now = datetime.now(timezone.utc)
    return engine.create_chart(
        "Learn Django web development",
        "Never used Django, familiar with Python basics",
        to_iso(now + timedelta(days=90)),
        ["Complete the tutorial", "Build a blog"],
    ).chart_id


class TestCli:
    @pytest.fixture(autouse=True)
    def _memory(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("COAIA_MEMORY_PATH", raising=False)
        self.path = tmp_path / "memory.jsonl"
        self.chart_id = _seed_chart(self.path)
        self.base = ["--memory-path", str(self.path)]

    def test_list(self, capsys):
        assert main(self.base + ["list"]) == 0
        charts = json.loads(capsys.readouterr().out)
        assert [c["chart_id"] for c in charts] == [self.chart_id]
        assert charts[0]["total_actions"] == 2

    def test_show(self, capsys):
        assert main(self.base + ["show", self.chart_id]) == 0
        details = json.loads(capsys.readouterr().out)
        assert len(details["entities"]) == 5

    def test_show_unknown_chart_exits_nonzero(self, capsys):
        assert main(self.base + ["show", "chart_1"]) == 1
        assert "Chart with ID chart_1 not found" in capsys.readouterr().err

    def test_complete_and_progress(self, capsys):
        assert main(self.base + ["complete", f"{self.chart_id}_action_1"]) == 0
        capsys.readouterr()
        assert main(self.base + ["progress", self.chart_id]) == 0
        progress = json.loads(capsys.readouterr().out)
        assert progress["completed_actions"] == 1
        assert progress["progress"] == 0.5

    def test_complete_unknown(self, capsys):
        assert main(self.base + ["complete", "chart_1_action_1"]) == 1
        assert "Error:" in capsys.readouterr().err

    def test_set_date(self, capsys):
        assert main(self.base + ["set-date", self.chart_id, "2030-05-01"]) == 0
        assert "2030-05-01T00:00:00.000Z" in capsys.readouterr().out
        graph = GraphStore(self.path).load()
        assert graph.chart_entity(self.chart_id).metadata.due_date == "2030-05-01T00:00:00.000Z"

    def test_set_date_rejects_garbage(self, capsys):
        assert main(self.base + ["set-date", self.chart_id, "soon"]) == 1
        assert "valid ISO date" in capsys.readouterr().err

    def test_stats(self, capsys):
        assert main(self.base + ["stats"]) == 0
        stats = json.loads(capsys.readouterr().out)
        assert stats["total_charts"] == 1
        assert stats["total_actions"] == 2
        assert stats["overdue_charts"] == 0

    def test_memory_path_from_environment(self, capsys, monkeypatch):
        monkeypatch.setenv("COAIA_MEMORY_PATH", str(self.path))
        assert main(["list"]) == 0
        assert len(json.loads(capsys.readouterr().out)) == 1

    def test_non_utf8_memory_file_exits_nonzero(self, capsys):
        self.path.write_bytes(b"\xff\xfe\n")
        assert main(self.base + ["list"]) == 1
        assert "not valid UTF-8" in capsys.readouterr().err

    def test_command_required(self):
        with pytest.raises(SystemExit):
            main(self.base)
