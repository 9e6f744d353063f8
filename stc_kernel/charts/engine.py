"""
Chart Engine — lifecycle of structural tension charts.

Creates charts, adds and telescopes action steps, propagates completion
upward ("advancing patterns") and computes progress.

Behavioral Contract:
- Every outcome/reality proposal passes the Validation Engine before any
  entity is created or mutated
- Every public operation is a single load → mutate → save transaction;
  a failure anywhere leaves the file untouched
- An action step added to a chart is itself a full chart one level deeper;
  its desired-outcome entity is the handle used to complete or telescope it
- Completing a telescoped chart appends "Completed: <outcome>" to the parent
  chart's current reality exactly once
- Telescoping depth is unbounded
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Union

from stc_kernel.charts.dates import (
    as_utc,
    default_telescope_due_date,
    distribute_action_step_dates,
    midpoint,
    parse_iso,
    to_iso,
    try_parse_iso,
    utc_now,
)
from stc_kernel.errors import HierarchyError, InputValidationError, NotFoundError
from stc_kernel.models.chart import (
    ActionStepRef,
    ActionStepResult,
    ChartCreationResult,
    ChartProgress,
    ChartRef,
    OutcomeRef,
    TelescopeResult,
    build_chart_index,
    descendant_chart_ids,
    parse_reference,
)
from stc_kernel.models.graph import (
    Entity,
    EntityMetadata,
    EntityType,
    KnowledgeGraph,
    Relation,
    RelationType,
)
from stc_kernel.principles.validator import ValidationEngine
from stc_kernel.repository.repository import (
    EntityRelationRepository,
    append_new_entities,
    append_new_relations,
)

logger = logging.getLogger(__name__)

DateInput = Union[str, datetime]

STEP_TYPES = [EntityType.ACTION_STEP.value, EntityType.DESIRED_OUTCOME.value]

EXPAND_ACTION_STEP_REALITY = "Expanding action step into detailed sub-chart"
EXPAND_OUTCOME_REALITY = "Expanding desired outcome into detailed sub-chart"


def _due_sort_key(entity: Entity) -> tuple:
    """Earliest due first; steps without a usable due date go last."""
    due = try_parse_iso(entity.metadata.due_date if entity.metadata else None)
    return (due is None, due.timestamp() if due else 0.0)


def compute_progress(graph: KnowledgeGraph, chart_id: str) -> ChartProgress:
    """Completed/total over the chart's direct action steps, plus the next one due."""
    steps = [
        e for e in graph.entities
        if e.entity_type == EntityType.ACTION_STEP.value and e.chart_id == chart_id
    ]
    completed = sum(1 for s in steps if s.is_complete())
    total = len(steps)

    incomplete = sorted((s for s in steps if not s.is_complete()), key=_due_sort_key)

    chart = graph.chart_entity(chart_id)
    return ChartProgress(
        chart_id=chart_id,
        progress=(completed / total) if total > 0 else 0.0,
        completed_actions=completed,
        total_actions=total,
        next_action=incomplete[0].name if incomplete else None,
        due_date=chart.metadata.due_date if chart and chart.metadata else None,
    )


def _touch(entity: Entity, stamp: str) -> EntityMetadata:
    if entity.metadata is None:
        entity.metadata = EntityMetadata()
    entity.metadata.updated_at = stamp
    return entity.metadata


def _append_once(entity: Entity, line: str, stamp: str) -> bool:
    """Append `line` unless already present; True when appended."""
    if line in entity.observations:
        return False
    entity.observations.append(line)
    _touch(entity, stamp)
    return True


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not isinstance(value, str) or not value.strip():
        raise InputValidationError(f"{field} must be a non-empty string")
    return value


def _format_available_charts(graph: KnowledgeGraph) -> str:
    lines = []
    for chart in graph.entities_of_type(EntityType.STRUCTURAL_TENSION_CHART.value):
        outcome = graph.outcome_entity(chart.chart_id or "")
        text = outcome.headline if outcome else "Unknown"
        lines.append(f'- {chart.chart_id}: "{text}"')
    return "\n".join(lines) if lines else "(none found)"


def _format_available_steps(graph: KnowledgeGraph, entity_type: str) -> str:
    lines = [
        f'- {e.name}: "{e.headline}"'
        for e in graph.entities_of_type(entity_type)
    ]
    return "\n".join(lines) if lines else "(none found)"


def _chart_not_found_message(graph: KnowledgeGraph, reference: str) -> str:
    return f"""🔍 PARENT CHART NOT FOUND

Received: "{reference}"
Expected: Valid chart ID (e.g., "chart_123")

Available charts in memory:
{_format_available_charts(graph)}

Tip: Use 'list_active_charts' to see all available charts."""


def _step_not_found_message(graph: KnowledgeGraph, reference: str) -> str:
    return f"""🔍 ACTION STEP ENTITY NOT FOUND

Received: "{reference}"
Expected: Valid action_step entity name (e.g., "chart_123_action_1")

Available action steps in memory:
{_format_available_steps(graph, EntityType.ACTION_STEP.value)}

Tip: If creating a new action step, use the parent chart ID instead."""


def _outcome_not_found_message(graph: KnowledgeGraph, reference: str) -> str:
    return f"""🔍 DESIRED OUTCOME ENTITY NOT FOUND

Received: "{reference}"
Expected: Valid desired_outcome entity name (e.g., "chart_123_desired_outcome")

Available desired outcomes in memory:
{_format_available_steps(graph, EntityType.DESIRED_OUTCOME.value)}

Tip: If creating a new action step, use the parent chart ID instead."""


def _invalid_reference_message(graph: KnowledgeGraph, reference: str) -> str:
    return f"""🚨 INVALID PARENT REFERENCE FORMAT

Received: "{reference}"

Valid formats:
1. Chart ID: "chart_123" → Creates new action step
2. Action entity: "chart_123_action_1" → Expands existing legacy action step
3. Desired outcome: "chart_123_desired_outcome" → Expands existing modern action step

Available charts in memory:
{_format_available_charts(graph)}

💡 **Tip**: Use 'list_active_charts' to see available charts and their IDs."""


class ChartEngine:
    """
    Chart lifecycle over the entity/relation repository.

    `clock` returns the current aware datetime; tests inject a fixed one.
    """

    def __init__(
        self,
        repository: EntityRelationRepository,
        validator: Optional[ValidationEngine] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.validator = validator or ValidationEngine()
        self._clock = clock or utc_now

    def now(self) -> datetime:
        return self._clock()

    # === CREATION ===

    def create_chart(
        self,
        desired_outcome: str,
        current_reality: str,
        due_date: DateInput,
        action_steps: Optional[List[str]] = None,
    ) -> ChartCreationResult:
        """Create a master chart (level 0), optionally with dated action steps."""
        with self.repository.transaction() as graph:
            result = self._build_chart(
                graph, desired_outcome, current_reality, due_date, action_steps, self.now()
            )
        logger.info(
            "Created chart %s with %d action steps",
            result.chart_id, len(action_steps or []),
        )
        return result

    def add_action_step(
        self,
        parent_chart_id: str,
        title: str,
        due_date: Optional[DateInput] = None,
        current_reality: Optional[str] = None,
    ) -> ActionStepResult:
        """
        Add an action step to a chart as a telescoped chart of its own.

        The step's current reality is required; its absence is a delayed
        resolution violation. Without a due date the step is due halfway
        between now and the parent's due date.
        """
        self.validator.enforce(
            self.validator.check_current_reality_present(title, current_reality)
        )

        with self.repository.transaction() as graph:
            now = self.now()
            parent = graph.chart_entity(parent_chart_id)
            if parent is None:
                raise NotFoundError(_chart_not_found_message(graph, parent_chart_id))

            parent_due = parent.metadata.due_date if parent.metadata else None
            if not parent_due:
                raise InputValidationError(f"Parent chart {parent_chart_id} has no due date")

            if due_date is None or due_date == "":
                step_due: DateInput = midpoint(now, parse_iso(parent_due, "parent dueDate"))
            else:
                step_due = due_date

            created = self._build_chart(graph, title, current_reality, step_due, None, now)
            self._attach_to_parent(graph, created.chart_id, parent, now)

        logger.info("Added action step %s under chart %s", created.chart_id, parent_chart_id)
        return ActionStepResult(
            chart_id=created.chart_id,
            action_step_name=f"{created.chart_id}_desired_outcome",
        )

    def telescope_action_step(
        self,
        action_step_name: str,
        new_current_reality: str,
        initial_action_steps: Optional[List[str]] = None,
    ) -> TelescopeResult:
        """
        Expand an existing step into its own chart.

        The step's text becomes the new outcome and its due date is inherited.
        The new chart hangs under the chart that owned the step.
        """
        with self.repository.transaction() as graph:
            now = self.now()
            step = graph.find_entity(action_step_name, STEP_TYPES)
            if step is None or not step.chart_id:
                raise NotFoundError(_step_not_found_message(graph, action_step_name))

            owner = graph.chart_entity(step.chart_id)
            if owner is None:
                raise NotFoundError(
                    f"Chart {step.chart_id} owning action step {action_step_name} not found"
                )

            inherited_due = (
                step.metadata.due_date if step.metadata and step.metadata.due_date
                else default_telescope_due_date(now)
            )
            created = self._build_chart(
                graph,
                step.headline,
                new_current_reality,
                inherited_due,
                initial_action_steps,
                now,
            )
            self._attach_to_parent(
                graph, created.chart_id, owner, now, parent_action_step=action_step_name
            )

        logger.info("Telescoped %s into chart %s", action_step_name, created.chart_id)
        return TelescopeResult(chart_id=created.chart_id, parent_chart=owner.chart_id)

    def manage_action_step(
        self,
        parent_reference: str,
        description: str,
        current_reality: Optional[str] = None,
        initial_action_steps: Optional[List[str]] = None,
        due_date: Optional[DateInput] = None,
    ) -> ActionStepResult:
        """
        Create or expand an action step depending on what the reference names.

        - chart id: new action step `description` under that chart (reality required)
        - action step / desired outcome entity: telescope that step; the
          existing step text stays the outcome and `description` is not used
        """
        reference = parse_reference(parent_reference)
        graph = self.repository.read_graph()

        if isinstance(reference, ChartRef):
            if graph.chart_entity(reference.chart_id) is None:
                raise NotFoundError(_chart_not_found_message(graph, parent_reference))
            self.validator.enforce(
                self.validator.check_current_reality_present(
                    description, current_reality, parent_reference=reference.chart_id
                )
            )
            return self.add_action_step(
                reference.chart_id, description, due_date, current_reality
            )

        if isinstance(reference, ActionStepRef):
            if graph.find_entity(reference.entity_name, [EntityType.ACTION_STEP.value]) is None:
                raise NotFoundError(_step_not_found_message(graph, parent_reference))
            reality = current_reality or EXPAND_ACTION_STEP_REALITY
        elif isinstance(reference, OutcomeRef):
            outcome = graph.find_entity(
                reference.entity_name, [EntityType.DESIRED_OUTCOME.value]
            )
            if outcome is None or not outcome.chart_id:
                raise NotFoundError(_outcome_not_found_message(graph, parent_reference))
            reality = current_reality or EXPAND_OUTCOME_REALITY
        else:
            raise InputValidationError(_invalid_reference_message(graph, parent_reference))

        telescoped = self.telescope_action_step(
            reference.entity_name, reality, initial_action_steps
        )
        return ActionStepResult(
            chart_id=telescoped.chart_id,
            action_step_name=f"{telescoped.chart_id}_desired_outcome",
        )

    # === COMPLETION & PROGRESS ===

    def mark_complete(self, action_step_name: str) -> None:
        """
        Complete an action step or telescoped outcome and flow it upward.

        The entity and its chart are flagged complete. If that chart was
        telescoped from a parent, "Completed: <outcome>" is appended to the
        parent's current reality, once.
        """
        with self.repository.transaction() as graph:
            stamp = to_iso(self.now())
            step = graph.find_entity(action_step_name, STEP_TYPES)
            if step is None:
                raise NotFoundError(f"Action step {action_step_name} not found")
            chart_id = step.chart_id
            if not chart_id:
                raise NotFoundError(f"Chart ID not found for action step {action_step_name}")

            _touch(step, stamp).completion_status = True

            chart = graph.chart_entity(chart_id)
            parent_chart_id = None
            if chart is not None:
                meta = _touch(chart, stamp)
                meta.completion_status = True
                parent_chart_id = meta.parent_chart

            if parent_chart_id:
                parent_reality = graph.reality_entity(parent_chart_id)
                if parent_reality is not None:
                    _append_once(parent_reality, f"Completed: {step.headline}", stamp)

        logger.info("Marked %s complete", action_step_name)

    def update_progress(
        self,
        action_step_name: str,
        note: str,
        update_current_reality: bool = False,
    ) -> None:
        """
        Record progress on a step without completing it.

        With `update_current_reality`, "Progress on <outcome>: <note>" is also
        appended (once) to the reality of the chart containing the step.
        """
        _require_text(note, "progressObservation")
        if update_current_reality:
            self.validator.enforce(self.validator.check_delayed_resolution(note))

        with self.repository.transaction() as graph:
            stamp = to_iso(self.now())
            step = graph.find_entity(action_step_name, STEP_TYPES)
            if step is None:
                raise NotFoundError(f"Action step {action_step_name} not found")

            step.observations.append(note)
            _touch(step, stamp)

            if update_current_reality and step.chart_id:
                chart = graph.chart_entity(step.chart_id)
                parent_chart_id = chart.metadata.parent_chart if chart and chart.metadata else None
                target = graph.reality_entity(parent_chart_id or step.chart_id)
                if target is not None:
                    _append_once(target, f"Progress on {step.headline}: {note}", stamp)

    def progress(self, chart_id: str) -> ChartProgress:
        return compute_progress(self.repository.read_graph(), chart_id)

    # === CHART EDITS ===

    def update_current_reality(self, chart_id: str, observations: List[str]) -> List[str]:
        """Append new facts to a chart's current reality; returns those added."""
        for observation in observations:
            _require_text(observation, "newObservations item")
            self.validator.enforce(self.validator.check_delayed_resolution(observation))

        with self.repository.transaction() as graph:
            reality = graph.reality_entity(chart_id)
            if reality is None:
                raise NotFoundError(f"Chart {chart_id} not found or missing current reality")
            stamp = to_iso(self.now())
            added = [o for o in observations if _append_once(reality, o, stamp)]
        return added

    def update_desired_outcome(self, chart_id: str, new_outcome: str) -> None:
        """Replace the outcome text (first observation) of a chart."""
        _require_text(new_outcome, "newDesiredOutcome")
        self.validator.enforce(self.validator.check_creative_orientation(new_outcome))

        with self.repository.transaction() as graph:
            outcome = graph.outcome_entity(chart_id)
            if outcome is None:
                raise NotFoundError(f"Chart {chart_id} desired outcome not found")
            if outcome.observations:
                outcome.observations[0] = new_outcome
            else:
                outcome.observations.append(new_outcome)
            _touch(outcome, to_iso(self.now()))

    def update_due_date(self, chart_id: str, due_date: DateInput) -> str:
        """Move a chart's due date; returns the stored ISO value."""
        stored = self._normalize_due_date(due_date)
        with self.repository.transaction() as graph:
            chart = graph.chart_entity(chart_id)
            if chart is None:
                raise NotFoundError(_chart_not_found_message(graph, chart_id))
            stamp = to_iso(self.now())
            _touch(chart, stamp).due_date = stored
            outcome = graph.outcome_entity(chart_id)
            if outcome is not None:
                _touch(outcome, stamp).due_date = stored
        return stored

    # === REMOVAL ===

    def remove_action_step(self, parent_chart_id: str, action_step_name: str) -> List[str]:
        """
        Delete an action step that belongs to `parent_chart_id`.

        For a telescoped step (addressed by its desired outcome) the whole
        step chart goes, together with every chart telescoped beneath it.
        A plain action_step entity of the parent goes alone, along with any
        charts telescoped from it. Returns the removed entity names.
        """
        with self.repository.transaction() as graph:
            step = graph.find_entity(action_step_name)
            if step is None or not step.chart_id:
                raise NotFoundError(f"Action step {action_step_name} not found")

            charts = build_chart_index(graph)

            if (
                step.entity_type == EntityType.ACTION_STEP.value
                and step.chart_id == parent_chart_id
            ):
                roots = [
                    c.chart_id for c in charts.values()
                    if self._telescoped_from(graph, c.chart_name, action_step_name)
                ]
                doomed_names = {action_step_name}
            else:
                own = charts.get(step.chart_id)
                if own is None or own.parent_chart != parent_chart_id:
                    raise HierarchyError(
                        f"Action step {action_step_name} does not belong to chart {parent_chart_id}"
                    )
                roots = [own.chart_id]
                doomed_names = set()

            doomed_ids = set()
            for root in roots:
                doomed_ids.update(descendant_chart_ids(charts, root))
            doomed_names.update(e.name for e in graph.entities if e.chart_id in doomed_ids)

            removed = [e.name for e in graph.entities if e.name in doomed_names]
            graph.remove_entities(doomed_names)

        logger.info(
            "Removed action step %s from chart %s (%d entities)",
            action_step_name, parent_chart_id, len(removed),
        )
        return removed

    # === INTERNALS ===

    @staticmethod
    def _telescoped_from(graph: KnowledgeGraph, chart_name: str, step_name: str) -> bool:
        chart = graph.find_entity(chart_name)
        return bool(chart and chart.metadata and chart.metadata.parent_action_step == step_name)

    def _normalize_due_date(self, due_date: DateInput) -> str:
        if isinstance(due_date, datetime):
            return to_iso(due_date)
        return to_iso(parse_iso(due_date, "dueDate"))

    def _new_chart_id(self, graph: KnowledgeGraph, now: datetime) -> str:
        """chart_<epoch ms>, bumped until no entity uses it."""
        candidate = int(now.timestamp() * 1000)
        taken = {e.chart_id for e in graph.entities if e.chart_id}
        taken.update(e.name for e in graph.entities)
        while f"chart_{candidate}" in taken or f"chart_{candidate}_chart" in taken:
            candidate += 1
        return f"chart_{candidate}"

    def _build_chart(
        self,
        graph: KnowledgeGraph,
        desired_outcome: str,
        current_reality: Optional[str],
        due_date: DateInput,
        action_steps: Optional[List[str]],
        now: datetime,
    ) -> ChartCreationResult:
        """Validate, then append one chart's entities and relations to `graph`."""
        _require_text(desired_outcome, "desiredOutcome")
        _require_text(current_reality, "currentReality")
        self.validator.validate_chart_inputs(desired_outcome, current_reality)
        for step in action_steps or []:
            _require_text(step, "actionSteps item")

        due = parse_iso(due_date, "dueDate") if isinstance(due_date, str) else as_utc(due_date)
        if due <= now:
            if action_steps:
                raise InputValidationError(
                    f"dueDate {to_iso(due)} must be in the future to schedule action steps"
                )
            logger.warning("Chart due date %s is not in the future", to_iso(due))
        due_iso = to_iso(due)
        chart_id = self._new_chart_id(graph, now)
        stamp = to_iso(now)

        chart_name = f"{chart_id}_chart"
        outcome_name = f"{chart_id}_desired_outcome"
        reality_name = f"{chart_id}_current_reality"

        entities = [
            Entity(
                name=chart_name,
                entity_type=EntityType.STRUCTURAL_TENSION_CHART.value,
                observations=[f"Chart created on {stamp}"],
                metadata=EntityMetadata(
                    chart_id=chart_id, due_date=due_iso, level=0,
                    created_at=stamp, updated_at=stamp,
                ),
            ),
            Entity(
                name=outcome_name,
                entity_type=EntityType.DESIRED_OUTCOME.value,
                observations=[desired_outcome],
                metadata=EntityMetadata(
                    chart_id=chart_id, due_date=due_iso,
                    created_at=stamp, updated_at=stamp,
                ),
            ),
            Entity(
                name=reality_name,
                entity_type=EntityType.CURRENT_REALITY.value,
                observations=[current_reality],
                metadata=EntityMetadata(
                    chart_id=chart_id, created_at=stamp, updated_at=stamp,
                ),
            ),
        ]
        created_meta = {"createdAt": stamp}
        relations = [
            Relation(from_=chart_name, to=outcome_name,
                     relation_type=RelationType.CONTAINS.value, metadata=dict(created_meta)),
            Relation(from_=chart_name, to=reality_name,
                     relation_type=RelationType.CONTAINS.value, metadata=dict(created_meta)),
            Relation(from_=reality_name, to=outcome_name,
                     relation_type=RelationType.CREATES_TENSION_WITH.value,
                     metadata=dict(created_meta)),
        ]

        steps = action_steps or []
        step_dates = distribute_action_step_dates(now, due, len(steps))
        for index, (title, step_due) in enumerate(zip(steps, step_dates), start=1):
            action_name = f"{chart_id}_action_{index}"
            entities.append(Entity(
                name=action_name,
                entity_type=EntityType.ACTION_STEP.value,
                observations=[title],
                metadata=EntityMetadata(
                    chart_id=chart_id, due_date=to_iso(step_due), completion_status=False,
                    created_at=stamp, updated_at=stamp,
                ),
            ))
            relations.append(Relation(
                from_=chart_name, to=action_name,
                relation_type=RelationType.CONTAINS.value, metadata=dict(created_meta),
            ))
            relations.append(Relation(
                from_=action_name, to=outcome_name,
                relation_type=RelationType.ADVANCES_TOWARD.value, metadata=dict(created_meta),
            ))

        append_new_entities(graph, entities)
        append_new_relations(graph, relations)
        return ChartCreationResult(chart_id=chart_id, entities=entities, relations=relations)

    def _attach_to_parent(
        self,
        graph: KnowledgeGraph,
        child_chart_id: str,
        parent: Entity,
        now: datetime,
        parent_action_step: Optional[str] = None,
    ) -> None:
        """Reparent a freshly built chart one level below `parent`."""
        parent_chart_id = parent.chart_id
        parent_level = parent.metadata.level if parent.metadata and parent.metadata.level else 0
        stamp = to_iso(now)

        child = graph.chart_entity(child_chart_id)
        meta = _touch(child, stamp)
        meta.parent_chart = parent_chart_id
        meta.level = parent_level + 1
        if parent_action_step:
            meta.parent_action_step = parent_action_step

        parent_outcome = graph.outcome_entity(parent_chart_id)
        if parent_outcome is not None:
            append_new_relations(graph, [Relation(
                from_=f"{child_chart_id}_desired_outcome",
                to=parent_outcome.name,
                relation_type=RelationType.ADVANCES_TOWARD.value,
                metadata={"createdAt": stamp},
            )])
