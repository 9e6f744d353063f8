"""
Tool Router — named tool calls over the chart kernel.

Exposes the kernel's functionality as tools taking JSON-style arguments:
- Knowledge graph CRUD and search
- Structural tension chart lifecycle
- Chart progress and listings
- Narrative beats

Behavioral Contract:
- call() never raises; every outcome is a ToolResult
- Arguments are validated by request models before the kernel is touched;
  argument names are the camelCase names of the persisted format
- Validation failures read "Error: <detail>", kernel failures read
  "Error executing tool: <message>", with the kernel message verbatim
- Only enabled tools can be called
"""

import json
import logging
from typing import Annotated, Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from stc_kernel.charts.dates import try_parse_iso
from stc_kernel.charts.engine import ChartEngine
from stc_kernel.models.chart import ChartSummary
from stc_kernel.models.graph import Entity, KnowledgeGraph, Relation
from stc_kernel.narrative.beats import NarrativeBeatService, SubBeat
from stc_kernel.query.service import QueryService
from stc_kernel.repository.repository import EntityRelationRepository

logger = logging.getLogger(__name__)

NonEmptyStr = Annotated[str, Field(min_length=1)]


# --- Tool groups ---

TOOL_GROUPS: Dict[str, List[str]] = {
    "STC_TOOLS": [
        "create_structural_tension_chart",
        "telescope_action_step",
        "add_action_step",
        "manage_action_step",
        "remove_action_step",
        "mark_action_complete",
        "get_chart_progress",
        "list_active_charts",
        "get_chart",
        "get_action_step",
        "update_action_progress",
        "update_current_reality",
        "update_desired_outcome",
    ],
    "NARRATIVE_TOOLS": [
        "create_narrative_beat",
        "telescope_narrative_beat",
        "list_narrative_beats",
    ],
    "KG_TOOLS": [
        "create_entities",
        "create_relations",
        "add_observations",
        "delete_entities",
        "delete_observations",
        "delete_relations",
        "search_nodes",
        "open_nodes",
        "read_graph",
    ],
    "CORE_TOOLS": [
        "list_active_charts",
        "create_structural_tension_chart",
        "add_action_step",
        "mark_action_complete",
    ],
}


def resolve_enabled_tools(groups: Iterable[str], disabled: Iterable[str] = ()) -> Set[str]:
    """Expand group names to tools; other names are taken as single tools."""
    enabled: Set[str] = set()
    for group in groups:
        enabled.update(TOOL_GROUPS.get(group, [group]))
    return enabled - set(disabled)


# --- Request Models ---

class ToolRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _check_iso_date(value: Optional[str]) -> Optional[str]:
    if value is not None and try_parse_iso(value) is None:
        raise ValueError("must be a valid ISO date string")
    return value


class EmptyRequest(ToolRequest):
    pass


class CreateEntitiesRequest(ToolRequest):
    entities: List[Entity]


class RelationsRequest(ToolRequest):
    relations: List[Relation]


class ObservationAddition(ToolRequest):
    entity_name: NonEmptyStr = Field(alias="entityName")
    contents: List[str]


class AddObservationsRequest(ToolRequest):
    observations: List[ObservationAddition]


class DeleteEntitiesRequest(ToolRequest):
    entity_names: List[str] = Field(alias="entityNames")


class ObservationDeletion(ToolRequest):
    entity_name: NonEmptyStr = Field(alias="entityName")
    observations: List[str]


class DeleteObservationsRequest(ToolRequest):
    deletions: List[ObservationDeletion]


class SearchNodesRequest(ToolRequest):
    query: NonEmptyStr


class OpenNodesRequest(ToolRequest):
    names: List[str] = Field(min_length=1)


class CreateChartRequest(ToolRequest):
    desired_outcome: NonEmptyStr = Field(alias="desiredOutcome")
    current_reality: NonEmptyStr = Field(alias="currentReality")
    due_date: NonEmptyStr = Field(alias="dueDate")
    action_steps: List[str] = Field(default=[], alias="actionSteps")

    @field_validator("due_date")
    @classmethod
    def due_date_is_iso(cls, value):
        return _check_iso_date(value)


class TelescopeActionStepRequest(ToolRequest):
    action_step_name: NonEmptyStr = Field(alias="actionStepName")
    new_current_reality: NonEmptyStr = Field(alias="newCurrentReality")
    initial_action_steps: List[str] = Field(default=[], alias="initialActionSteps")


class ActionStepNameRequest(ToolRequest):
    action_step_name: NonEmptyStr = Field(alias="actionStepName")


class ChartIdRequest(ToolRequest):
    chart_id: NonEmptyStr = Field(alias="chartId")


class UpdateProgressRequest(ToolRequest):
    action_step_name: NonEmptyStr = Field(alias="actionStepName")
    progress_observation: NonEmptyStr = Field(alias="progressObservation")
    update_current_reality: bool = Field(default=False, alias="updateCurrentReality")


class UpdateCurrentRealityRequest(ToolRequest):
    chart_id: NonEmptyStr = Field(alias="chartId")
    new_observations: List[str] = Field(alias="newObservations", min_length=1)


class ManageActionStepRequest(ToolRequest):
    parent_reference: NonEmptyStr = Field(alias="parentReference")
    action_description: NonEmptyStr = Field(alias="actionDescription")
    current_reality: Optional[str] = Field(default=None, alias="currentReality")
    initial_action_steps: Optional[List[str]] = Field(default=None, alias="initialActionSteps")
    due_date: Optional[str] = Field(default=None, alias="dueDate")

    @field_validator("due_date")
    @classmethod
    def due_date_is_iso(cls, value):
        return _check_iso_date(value)


class AddActionStepRequest(ToolRequest):
    parent_chart_id: NonEmptyStr = Field(alias="parentChartId")
    action_step_title: NonEmptyStr = Field(alias="actionStepTitle")
    current_reality: Optional[str] = Field(default=None, alias="currentReality")
    due_date: Optional[str] = Field(default=None, alias="dueDate")

    @field_validator("due_date")
    @classmethod
    def due_date_is_iso(cls, value):
        return _check_iso_date(value)


class RemoveActionStepRequest(ToolRequest):
    parent_chart_id: NonEmptyStr = Field(alias="parentChartId")
    action_step_name: NonEmptyStr = Field(alias="actionStepName")


class UpdateDesiredOutcomeRequest(ToolRequest):
    chart_id: NonEmptyStr = Field(alias="chartId")
    new_desired_outcome: NonEmptyStr = Field(alias="newDesiredOutcome")


class CreateBeatRequest(ToolRequest):
    parent_chart_id: NonEmptyStr = Field(alias="parentChartId")
    title: NonEmptyStr
    act: int = Field(ge=1)
    type_dramatic: NonEmptyStr
    universes: List[str] = Field(min_length=1)
    description: NonEmptyStr
    prose: NonEmptyStr
    lessons: List[str]


class TelescopeBeatRequest(ToolRequest):
    parent_beat_name: NonEmptyStr = Field(alias="parentBeatName")
    new_current_reality: NonEmptyStr = Field(alias="newCurrentReality")
    initial_sub_beats: List[SubBeat] = Field(default=[], alias="initialSubBeats")


class ListBeatsRequest(ToolRequest):
    parent_chart_id: Optional[str] = Field(default=None, alias="parentChartId")


# --- Results ---

class ToolResult(BaseModel):
    text: str
    payload: Any = None
    is_error: bool = False


def _ok(text: str, payload: Any = None) -> ToolResult:
    return ToolResult(text=text, payload=payload)


def _ok_json(payload: Any) -> ToolResult:
    return ToolResult(text=json.dumps(payload, indent=2, ensure_ascii=False), payload=payload)


def _error(text: str) -> ToolResult:
    return ToolResult(text=text, is_error=True)


def _graph_payload(graph: KnowledgeGraph) -> dict:
    return {
        "entities": [e.to_record() for e in graph.entities],
        "relations": [r.to_record() for r in graph.relations],
    }


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for detail in error.errors():
        location = ".".join(str(p) for p in detail.get("loc", ()))
        parts.append(f"{location}: {detail['msg']}" if location else detail["msg"])
    return "; ".join(parts)


def _format_hierarchy(charts: List[ChartSummary]) -> str:
    """Master charts with their telescoped charts indented beneath."""
    if not charts:
        return (
            "## Structural Tension Charts Hierarchy\n\n"
            "No active structural tension charts found.\n\n"
            "💡 Create your first chart with: create_structural_tension_chart\n"
        )

    children: Dict[str, List[ChartSummary]] = {}
    for chart in charts:
        if chart.parent_chart:
            children.setdefault(chart.parent_chart, []).append(chart)

    lines = ["## Structural Tension Charts Hierarchy", ""]

    def render(chart: ChartSummary, depth: int) -> None:
        indent = "    " * depth
        progress = f" ({round(chart.progress * 100)}% complete)" if chart.progress > 0 else ""
        due = f" [Due: {chart.due_date[:10]}]" if chart.due_date else ""
        label = "📋" if depth == 0 else "🎯"
        kind = "Master Chart" if depth == 0 else "Action Step"
        lines.append(f"{indent}{label} **{chart.desired_outcome}** ({kind}){progress}{due}")
        lines.append(f"{indent}    ID: {chart.chart_id}")
        for child in children.get(chart.chart_id, []):
            render(child, depth + 1)

    for master in (c for c in charts if c.level == 0):
        render(master, 0)
        if master.chart_id not in children:
            lines.append("    └── (No action steps yet)")
        lines.append("")

    known = {c.chart_id for c in charts}
    orphans = [c for c in charts if c.level != 0 and c.parent_chart not in known]
    if orphans:
        lines.extend(["### Charts whose parent chart no longer exists", ""])
        for orphan in orphans:
            render(orphan, 1)
        lines.append("")
    return "\n".join(lines)


def _format_beats(beats: List[Entity]) -> str:
    if not beats:
        return "No narrative beats found."
    lines = ["## 📖 Narrative Beats", ""]
    for beat in beats:
        meta = beat.metadata
        narrative = (meta.narrative if meta else None) or {}
        lessons = narrative.get("lessons") or []
        lines.append(
            f"### Act {meta.act if meta and meta.act else '?'}: "
            f"{meta.type_dramatic if meta and meta.type_dramatic else 'Unknown'}"
        )
        lines.append(f"**Name**: {beat.name}")
        lines.append(
            f"**Universes**: {', '.join(meta.universes) if meta and meta.universes else 'Unknown'}"
        )
        lines.append(f"**Description**: {narrative.get('description') or 'N/A'}")
        if lessons:
            lines.append(f"**Lessons**: {', '.join(lessons)}")
        lines.append("")
    return "\n".join(lines)


# --- Router ---

Handler = Callable[[Any], ToolResult]


class ToolRouter:
    """
    Dispatches tool calls to the engine, query service, beats and repository.

    `enabled_tools=None` enables every tool.
    """

    def __init__(
        self,
        engine: ChartEngine,
        query: QueryService,
        beats: NarrativeBeatService,
        repository: EntityRelationRepository,
        enabled_tools: Optional[Set[str]] = None,
    ):
        self.engine = engine
        self.query = query
        self.beats = beats
        self.repository = repository

        self._tools: Dict[str, Tuple[Type[ToolRequest], Handler]] = {
            "create_entities": (CreateEntitiesRequest, self._create_entities),
            "create_relations": (RelationsRequest, self._create_relations),
            "add_observations": (AddObservationsRequest, self._add_observations),
            "delete_entities": (DeleteEntitiesRequest, self._delete_entities),
            "delete_observations": (DeleteObservationsRequest, self._delete_observations),
            "delete_relations": (RelationsRequest, self._delete_relations),
            "read_graph": (EmptyRequest, self._read_graph),
            "search_nodes": (SearchNodesRequest, self._search_nodes),
            "open_nodes": (OpenNodesRequest, self._open_nodes),
            "create_structural_tension_chart": (CreateChartRequest, self._create_chart),
            "telescope_action_step": (TelescopeActionStepRequest, self._telescope_action_step),
            "add_action_step": (AddActionStepRequest, self._add_action_step),
            "manage_action_step": (ManageActionStepRequest, self._manage_action_step),
            "remove_action_step": (RemoveActionStepRequest, self._remove_action_step),
            "mark_action_complete": (ActionStepNameRequest, self._mark_action_complete),
            "get_chart_progress": (ChartIdRequest, self._get_chart_progress),
            "list_active_charts": (EmptyRequest, self._list_active_charts),
            "get_chart": (ChartIdRequest, self._get_chart),
            "get_action_step": (ActionStepNameRequest, self._get_action_step),
            "update_action_progress": (UpdateProgressRequest, self._update_action_progress),
            "update_current_reality": (UpdateCurrentRealityRequest, self._update_current_reality),
            "update_desired_outcome": (UpdateDesiredOutcomeRequest, self._update_desired_outcome),
            "create_narrative_beat": (CreateBeatRequest, self._create_narrative_beat),
            "telescope_narrative_beat": (TelescopeBeatRequest, self._telescope_narrative_beat),
            "list_narrative_beats": (ListBeatsRequest, self._list_narrative_beats),
        }
        self.enabled_tools = (
            set(self._tools) if enabled_tools is None else set(enabled_tools) & set(self._tools)
        )

    def list_tools(self) -> List[str]:
        return [name for name in self._tools if name in self.enabled_tools]

    def call(self, name: Any, arguments: Any = None) -> ToolResult:
        """Validate and run one tool call."""
        if not name or not isinstance(name, str):
            return _error(f"Error: Invalid tool name: {name}")
        if arguments is not None and not isinstance(arguments, dict):
            return _error(
                f"Error: Tool arguments must be an object, received: {type(arguments).__name__}"
            )
        if name not in self._tools:
            return _error(f"Error: Unknown tool: {name}")
        if name not in self.enabled_tools:
            return _error(f"Error: Tool {name} is not enabled")

        request_model, handler = self._tools[name]
        try:
            request = request_model.model_validate(arguments or {})
        except ValidationError as e:
            logger.warning("Rejected arguments for %s: %s", name, e.error_count())
            return _error(f"Error: {_format_validation_error(e)}")

        try:
            return handler(request)
        except Exception as e:
            logger.warning("Tool %s failed: %s", name, type(e).__name__)
            return _error(f"Error executing tool: {getattr(e, 'message', None) or e}")

    # === KNOWLEDGE GRAPH ===

    def _create_entities(self, req: CreateEntitiesRequest) -> ToolResult:
        added = self.repository.create_entities(req.entities)
        return _ok_json([e.to_record() for e in added])

    def _create_relations(self, req: RelationsRequest) -> ToolResult:
        added = self.repository.create_relations(req.relations)
        return _ok_json([r.to_record() for r in added])

    def _add_observations(self, req: AddObservationsRequest) -> ToolResult:
        results = [
            {
                "entityName": item.entity_name,
                "addedObservations": self.repository.add_observations(
                    item.entity_name, item.contents
                ),
            }
            for item in req.observations
        ]
        return _ok_json(results)

    def _delete_entities(self, req: DeleteEntitiesRequest) -> ToolResult:
        removed = self.repository.delete_entities(req.entity_names)
        return _ok("Entities deleted successfully", {"deleted": removed})

    def _delete_observations(self, req: DeleteObservationsRequest) -> ToolResult:
        for item in req.deletions:
            self.repository.delete_observations(item.entity_name, item.observations)
        return _ok("Observations deleted successfully")

    def _delete_relations(self, req: RelationsRequest) -> ToolResult:
        self.repository.delete_relations(req.relations)
        return _ok("Relations deleted successfully")

    def _read_graph(self, req: EmptyRequest) -> ToolResult:
        return _ok_json(_graph_payload(self.query.read_graph()))

    def _search_nodes(self, req: SearchNodesRequest) -> ToolResult:
        return _ok_json(_graph_payload(self.query.search(req.query)))

    def _open_nodes(self, req: OpenNodesRequest) -> ToolResult:
        return _ok_json(_graph_payload(self.query.open_nodes(req.names)))

    # === CHARTS ===

    def _create_chart(self, req: CreateChartRequest) -> ToolResult:
        result = self.engine.create_chart(
            req.desired_outcome, req.current_reality, req.due_date, req.action_steps
        )
        return _ok_json({
            "chartId": result.chart_id,
            "entities": [e.to_record() for e in result.entities],
            "relations": [r.to_record() for r in result.relations],
        })

    def _telescope_action_step(self, req: TelescopeActionStepRequest) -> ToolResult:
        result = self.engine.telescope_action_step(
            req.action_step_name, req.new_current_reality, req.initial_action_steps
        )
        return _ok_json({"chartId": result.chart_id, "parentChart": result.parent_chart})

    def _add_action_step(self, req: AddActionStepRequest) -> ToolResult:
        result = self.engine.add_action_step(
            req.parent_chart_id, req.action_step_title, req.due_date, req.current_reality
        )
        return _ok(
            f"Action step '{req.action_step_title}' added to chart '{req.parent_chart_id}' "
            f"as telescoped chart '{result.chart_id}'",
            {"chartId": result.chart_id, "actionStepName": result.action_step_name},
        )

    def _manage_action_step(self, req: ManageActionStepRequest) -> ToolResult:
        result = self.engine.manage_action_step(
            req.parent_reference,
            req.action_description,
            req.current_reality,
            req.initial_action_steps,
            req.due_date,
        )
        payload = {"chartId": result.chart_id, "actionStepName": result.action_step_name}
        return _ok(
            f"Action step '{req.action_description}' managed for parent "
            f"'{req.parent_reference}'. Result: {json.dumps(payload, indent=2)}",
            payload,
        )

    def _remove_action_step(self, req: RemoveActionStepRequest) -> ToolResult:
        removed = self.engine.remove_action_step(req.parent_chart_id, req.action_step_name)
        return _ok(
            f"Action step '{req.action_step_name}' removed from chart '{req.parent_chart_id}'",
            {"removed": removed},
        )

    def _mark_action_complete(self, req: ActionStepNameRequest) -> ToolResult:
        self.engine.mark_complete(req.action_step_name)
        return _ok(
            f"Action step '{req.action_step_name}' marked as complete and current reality updated"
        )

    def _get_chart_progress(self, req: ChartIdRequest) -> ToolResult:
        progress = self.engine.progress(req.chart_id)
        return _ok_json({
            "chartId": progress.chart_id,
            "progress": progress.progress,
            "completedActions": progress.completed_actions,
            "totalActions": progress.total_actions,
            "nextAction": progress.next_action,
            "dueDate": progress.due_date,
        })

    def _list_active_charts(self, req: EmptyRequest) -> ToolResult:
        charts = self.query.list_charts()
        return _ok(
            _format_hierarchy(charts),
            [c.model_dump(mode="json") for c in charts],
        )

    def _get_chart(self, req: ChartIdRequest) -> ToolResult:
        details = self.query.chart_details(req.chart_id)
        if details is None:
            return _error(f"Error: Chart with ID {req.chart_id} not found")
        return _ok_json(_graph_payload(details))

    def _get_action_step(self, req: ActionStepNameRequest) -> ToolResult:
        details = self.query.action_step_details(req.action_step_name)
        if details is None:
            return _error(f"Error: Action step with name {req.action_step_name} not found")
        return _ok_json(_graph_payload(details))

    def _update_action_progress(self, req: UpdateProgressRequest) -> ToolResult:
        self.engine.update_progress(
            req.action_step_name, req.progress_observation, req.update_current_reality
        )
        return _ok(f"Action step '{req.action_step_name}' progress updated")

    def _update_current_reality(self, req: UpdateCurrentRealityRequest) -> ToolResult:
        added = self.engine.update_current_reality(req.chart_id, req.new_observations)
        return _ok(f"Current reality updated for chart '{req.chart_id}'", {"added": added})

    def _update_desired_outcome(self, req: UpdateDesiredOutcomeRequest) -> ToolResult:
        self.engine.update_desired_outcome(req.chart_id, req.new_desired_outcome)
        return _ok(f"Desired outcome updated for chart '{req.chart_id}'")

    # === NARRATIVE ===

    def _create_narrative_beat(self, req: CreateBeatRequest) -> ToolResult:
        beat = self.beats.create_beat(
            req.parent_chart_id,
            req.title,
            req.act,
            req.type_dramatic,
            req.universes,
            req.description,
            req.prose,
            req.lessons,
        )
        return _ok_json({"entity": beat.to_record(), "beatName": beat.name})

    def _telescope_narrative_beat(self, req: TelescopeBeatRequest) -> ToolResult:
        result = self.beats.telescope_beat(
            req.parent_beat_name, req.new_current_reality, req.initial_sub_beats
        )
        return _ok_json({
            "parentBeat": result.parent_beat.to_record(),
            "subBeats": [b.to_record() for b in result.sub_beats],
        })

    def _list_narrative_beats(self, req: ListBeatsRequest) -> ToolResult:
        beats = self.beats.list_beats(req.parent_chart_id)
        return _ok(_format_beats(beats), [b.to_record() for b in beats])
