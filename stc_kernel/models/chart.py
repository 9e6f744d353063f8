"""Chart aggregate, chart references, and engine result records."""

import re
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel

from stc_kernel.models.graph import Entity, EntityType, KnowledgeGraph, Relation


class Chart(BaseModel):
    """
    One structural tension chart, assembled from the flat graph.

    Parent/child links are chart ids, not nested charts, so the hierarchy
    is an arena keyed by `chart_id`.
    """

    chart_id: str
    chart_name: str
    outcome_name: str
    reality_name: str
    level: int = 0
    parent_chart: Optional[str] = None
    due_date: Optional[str] = None
    complete: bool = False
    action_step_names: List[str] = []
    child_chart_ids: List[str] = []


def build_chart_index(graph: KnowledgeGraph) -> Dict[str, Chart]:
    """Index every chart in the graph by id, wiring child ids from parentChart."""
    charts: Dict[str, Chart] = {}
    for entity in graph.entities_of_type(EntityType.STRUCTURAL_TENSION_CHART.value):
        chart_id = entity.chart_id or entity.name.replace("_chart", "")
        meta = entity.metadata
        charts[chart_id] = Chart(
            chart_id=chart_id,
            chart_name=entity.name,
            outcome_name=f"{chart_id}_desired_outcome",
            reality_name=f"{chart_id}_current_reality",
            level=(meta.level if meta and meta.level is not None else 0),
            parent_chart=meta.parent_chart if meta else None,
            due_date=meta.due_date if meta else None,
            complete=entity.is_complete(),
        )

    for entity in graph.entities_of_type(EntityType.ACTION_STEP.value):
        chart = charts.get(entity.chart_id or "")
        if chart is not None:
            chart.action_step_names.append(entity.name)

    for chart in charts.values():
        parent = charts.get(chart.parent_chart or "")
        if parent is not None:
            parent.child_chart_ids.append(chart.chart_id)
    return charts


def descendant_chart_ids(charts: Dict[str, Chart], chart_id: str) -> List[str]:
    """`chart_id` followed by every chart telescoped beneath it, depth first."""
    ordered: List[str] = []
    pending = [chart_id]
    seen = set()
    while pending:
        current = pending.pop()
        if current in seen:
            continue
        seen.add(current)
        ordered.append(current)
        chart = charts.get(current)
        if chart is not None:
            pending.extend(reversed(chart.child_chart_ids))
    return ordered


# --- Chart references ---

CHART_ID_PATTERN = re.compile(r"^chart_\d+$")
ACTION_STEP_PATTERN = re.compile(r"^(chart_\d+)_action_\d+$")
DESIRED_OUTCOME_PATTERN = re.compile(r"^(chart_\d+)_desired_outcome$")


class ChartRef(BaseModel):
    kind: Literal["chart"] = "chart"
    chart_id: str


class ActionStepRef(BaseModel):
    kind: Literal["action_step"] = "action_step"
    entity_name: str
    chart_id: str


class OutcomeRef(BaseModel):
    kind: Literal["desired_outcome"] = "desired_outcome"
    entity_name: str
    chart_id: str


class InvalidRef(BaseModel):
    kind: Literal["invalid"] = "invalid"
    raw: str


ChartReference = Union[ChartRef, ActionStepRef, OutcomeRef, InvalidRef]


def parse_reference(text: str) -> ChartReference:
    """Classify a parent reference by its shape."""
    text = text.strip()
    if CHART_ID_PATTERN.match(text):
        return ChartRef(chart_id=text)
    match = ACTION_STEP_PATTERN.match(text)
    if match:
        return ActionStepRef(entity_name=text, chart_id=match.group(1))
    match = DESIRED_OUTCOME_PATTERN.match(text)
    if match:
        return OutcomeRef(entity_name=text, chart_id=match.group(1))
    return InvalidRef(raw=text)


# --- Engine results ---

class ChartCreationResult(BaseModel):
    chart_id: str
    entities: List[Entity]
    relations: List[Relation]


class ActionStepResult(BaseModel):
    """`action_step_name` is the handle used to complete or telescope the step."""

    chart_id: str
    action_step_name: str


class TelescopeResult(BaseModel):
    chart_id: str
    parent_chart: str


class ChartProgress(BaseModel):
    chart_id: str
    progress: float
    completed_actions: int
    total_actions: int
    next_action: Optional[str] = None
    due_date: Optional[str] = None


class ChartSummary(BaseModel):
    chart_id: str
    desired_outcome: str
    due_date: Optional[str] = None
    progress: float
    completed_actions: int
    total_actions: int
    level: int
    parent_chart: Optional[str] = None


class ChartStats(BaseModel):
    total_charts: int
    master_charts: int
    telescoped_charts: int
    narrative_beats: int
    total_actions: int
    completed_actions: int
    overdue_charts: int
    overall_progress: float
