"""
Query Service — read-only views over charts.

Behavioral Contract:
- Never writes; every call reads the current file
- Chart listings are ordered by level, then due date (undated last)
- action_step_details(name) is chart_details() of the step's own chart,
  so both return identical subgraphs
"""

from datetime import datetime
from typing import List, Optional

from stc_kernel.charts.dates import try_parse_iso, utc_now
from stc_kernel.charts.engine import compute_progress
from stc_kernel.models.chart import ChartStats, ChartSummary, build_chart_index
from stc_kernel.models.graph import EntityType, KnowledgeGraph
from stc_kernel.repository.repository import EntityRelationRepository


def _details(graph: KnowledgeGraph, chart_id: str) -> Optional[KnowledgeGraph]:
    members = graph.entities_for_chart(chart_id)
    if not members:
        return None
    return graph.subgraph(members)


class QueryService:
    """Chart listings, details and statistics."""

    def __init__(self, repository: EntityRelationRepository):
        self.repository = repository

    def list_charts(self) -> List[ChartSummary]:
        graph = self.repository.read_graph()
        summaries = []
        for chart in build_chart_index(graph).values():
            outcome = graph.outcome_entity(chart.chart_id)
            progress = compute_progress(graph, chart.chart_id)
            summaries.append(ChartSummary(
                chart_id=chart.chart_id,
                desired_outcome=outcome.headline if outcome else "Unknown",
                due_date=chart.due_date,
                progress=progress.progress,
                completed_actions=progress.completed_actions,
                total_actions=progress.total_actions,
                level=chart.level,
                parent_chart=chart.parent_chart,
            ))

        def sort_key(summary: ChartSummary):
            due = try_parse_iso(summary.due_date)
            return (summary.level, due is None, due.timestamp() if due else 0.0)

        summaries.sort(key=sort_key)
        return summaries

    def chart_details(self, chart_id: str) -> Optional[KnowledgeGraph]:
        """Every entity of the chart and the relations among them; None if unknown."""
        return _details(self.repository.read_graph(), chart_id)

    def action_step_details(self, action_step_name: str) -> Optional[KnowledgeGraph]:
        graph = self.repository.read_graph()
        step = graph.find_entity(
            action_step_name,
            [EntityType.ACTION_STEP.value, EntityType.DESIRED_OUTCOME.value],
        )
        if step is None or not step.chart_id:
            return None
        return _details(graph, step.chart_id)

    def search(self, query: str) -> KnowledgeGraph:
        return self.repository.search(query)

    def open_nodes(self, names: List[str]) -> KnowledgeGraph:
        return self.repository.open_nodes(names)

    def read_graph(self) -> KnowledgeGraph:
        return self.repository.read_graph()

    def stats(self, now: Optional[datetime] = None) -> ChartStats:
        """
        Whole-memory statistics.

        A chart is overdue when it is not complete and its due date is
        before `now`. Overall progress is completed over total action steps.
        """
        now = now or utc_now()
        graph = self.repository.read_graph()
        charts = build_chart_index(graph)

        steps = graph.entities_of_type(EntityType.ACTION_STEP.value)
        completed = sum(1 for s in steps if s.is_complete())

        overdue = 0
        for chart in charts.values():
            due = try_parse_iso(chart.due_date)
            if due is not None and not chart.complete and due < now:
                overdue += 1

        return ChartStats(
            total_charts=len(charts),
            master_charts=sum(1 for c in charts.values() if c.level == 0),
            telescoped_charts=sum(1 for c in charts.values() if c.level > 0),
            narrative_beats=len(graph.entities_of_type(EntityType.NARRATIVE_BEAT.value)),
            total_actions=len(steps),
            completed_actions=completed,
            overdue_charts=overdue,
            overall_progress=(completed / len(steps)) if steps else 0.0,
        )
