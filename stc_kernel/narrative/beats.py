"""
Narrative Beats — story annotations attached to charts.

A beat records one dramatic moment (act, dramatic type, universes, prose,
lessons) against a chart. Beats document charts; they never change chart,
outcome, reality or action step entities.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from pydantic import BaseModel

from stc_kernel.charts.dates import to_iso, utc_now
from stc_kernel.errors import InputValidationError, NotFoundError
from stc_kernel.models.graph import (
    Entity,
    EntityMetadata,
    EntityType,
    KnowledgeGraph,
    Relation,
    RelationType,
)
from stc_kernel.repository.repository import (
    EntityRelationRepository,
    append_new_entities,
    append_new_relations,
)

logger = logging.getLogger(__name__)

DEFAULT_UNIVERSES = ["engineer-world"]


class SubBeat(BaseModel):
    title: str
    type_dramatic: str
    description: str
    prose: str
    lessons: List[str] = []


class BeatTelescopeResult(BaseModel):
    parent_beat: Entity
    sub_beats: List[Entity]


def _new_beat_name(graph: KnowledgeGraph, parent_chart_id: str, now: datetime) -> str:
    stamp = int(now.timestamp() * 1000)
    while graph.has_entity(f"{parent_chart_id}_beat_{stamp}"):
        stamp += 1
    return f"{parent_chart_id}_beat_{stamp}"


class NarrativeBeatService:
    """Create, list and telescope narrative beats."""

    def __init__(
        self,
        repository: EntityRelationRepository,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self._clock = clock or utc_now

    def create_beat(
        self,
        parent_chart_id: str,
        title: str,
        act: int,
        type_dramatic: str,
        universes: List[str],
        description: str,
        prose: str,
        lessons: List[str],
    ) -> Entity:
        """Record a beat; linked to the chart's desired outcome when the chart exists."""
        with self.repository.transaction() as graph:
            beat = self._add_beat(
                graph, parent_chart_id, title, act, type_dramatic,
                universes, description, prose, lessons,
            )
        logger.info("Created narrative beat %s", beat.name)
        return beat

    def list_beats(self, parent_chart_id: Optional[str] = None) -> List[Entity]:
        beats = self.repository.read_graph().entities_of_type(EntityType.NARRATIVE_BEAT.value)
        if parent_chart_id is None:
            return beats
        return [b for b in beats if b.chart_id == parent_chart_id]

    def telescope_beat(
        self,
        parent_beat_name: str,
        new_current_reality: str,
        sub_beats: Optional[List[SubBeat]] = None,
    ) -> BeatTelescopeResult:
        """
        Break a beat into sub-beats.

        The parent beat gains "Telescoped: <reality>"; sub-beats are filed
        under the parent beat's name with sequential act numbers and the
        parent's universes.
        """
        with self.repository.transaction() as graph:
            parent = graph.find_entity(parent_beat_name, [EntityType.NARRATIVE_BEAT.value])
            if parent is None:
                raise NotFoundError(f"Parent narrative beat not found: {parent_beat_name}")

            now = self._clock()
            parent.observations.append(f"Telescoped: {new_current_reality}")
            if parent.metadata is not None:
                parent.metadata.updated_at = to_iso(now)

            universes = (
                parent.metadata.universes
                if parent.metadata and parent.metadata.universes
                else DEFAULT_UNIVERSES
            )
            created = [
                self._add_beat(
                    graph, parent_beat_name, sub.title, act, sub.type_dramatic,
                    universes, sub.description, sub.prose, sub.lessons,
                )
                for act, sub in enumerate(sub_beats or [], start=1)
            ]

        logger.info("Telescoped beat %s into %d sub-beats", parent_beat_name, len(created))
        return BeatTelescopeResult(parent_beat=parent, sub_beats=created)

    def _add_beat(
        self,
        graph: KnowledgeGraph,
        parent_chart_id: str,
        title: str,
        act: int,
        type_dramatic: str,
        universes: List[str],
        description: str,
        prose: str,
        lessons: List[str],
    ) -> Entity:
        if act < 1:
            raise InputValidationError("act must be at least 1")
        if not universes:
            raise InputValidationError("universes must name at least one universe")

        now = self._clock()
        stamp = to_iso(now)
        name = _new_beat_name(graph, parent_chart_id, now)
        beat = Entity(
            name=name,
            entity_type=EntityType.NARRATIVE_BEAT.value,
            observations=[
                f"Act {act} {type_dramatic}",
                f"Timestamp: {stamp}",
                f"Universe: {', '.join(universes)}",
            ],
            metadata=EntityMetadata(
                chart_id=parent_chart_id,
                act=act,
                type_dramatic=type_dramatic,
                universes=list(universes),
                timestamp=stamp,
                created_at=stamp,
                narrative={
                    "title": title,
                    "description": description,
                    "prose": prose,
                    "lessons": list(lessons),
                },
                relational_alignment={"assessed": False, "score": None, "principles": []},
                four_directions={
                    "north_vision": None,
                    "east_intention": None,
                    "south_emotion": None,
                    "west_introspection": None,
                },
            ),
        )
        append_new_entities(graph, [beat])

        outcome = graph.outcome_entity(parent_chart_id)
        if graph.chart_entity(parent_chart_id) is not None and outcome is not None:
            append_new_relations(graph, [Relation(
                from_=name,
                to=outcome.name,
                relation_type=RelationType.DOCUMENTS.value,
                metadata={
                    "createdAt": stamp,
                    "description": "Narrative beat documents chart progress",
                },
            )])
        return beat
