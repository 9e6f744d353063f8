"""Knowledge Graph — entities, relations and the in-memory graph they form."""

from enum import Enum
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class EntityType(str, Enum):
    STRUCTURAL_TENSION_CHART = "structural_tension_chart"
    DESIRED_OUTCOME = "desired_outcome"
    CURRENT_REALITY = "current_reality"
    ACTION_STEP = "action_step"
    NARRATIVE_BEAT = "narrative_beat"


class RelationType(str, Enum):
    CONTAINS = "contains"
    CREATES_TENSION_WITH = "creates_tension_with"
    ADVANCES_TOWARD = "advances_toward"
    DOCUMENTS = "documents"


class EntityMetadata(BaseModel):
    """
    Variant metadata keyed by entity type.

    Chart entities carry due date, level, parent chart and completion status.
    Narrative beats fold their act/universe/narrative blocks in here as well.
    Keys this model does not declare are kept as extras so that a load/save
    cycle never drops data written by another tool.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    chart_id: Optional[str] = Field(default=None, alias="chartId")
    due_date: Optional[str] = Field(default=None, alias="dueDate")
    level: Optional[int] = None
    parent_chart: Optional[str] = Field(default=None, alias="parentChart")
    parent_action_step: Optional[str] = Field(default=None, alias="parentActionStep")
    completion_status: Optional[bool] = Field(default=None, alias="completionStatus")
    phase: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    # Narrative beat fields
    act: Optional[int] = None
    type_dramatic: Optional[str] = None
    universes: Optional[List[str]] = None
    timestamp: Optional[str] = None
    narrative: Optional[dict] = None
    relational_alignment: Optional[dict] = Field(default=None, alias="relationalAlignment")
    four_directions: Optional[dict] = Field(default=None, alias="fourDirections")


class Entity(BaseModel):
    """A named record in the graph. `name` is globally unique."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    entity_type: str = Field(alias="entityType")
    observations: List[str] = []
    metadata: Optional[EntityMetadata] = None

    @property
    def chart_id(self) -> Optional[str]:
        return self.metadata.chart_id if self.metadata else None

    @property
    def headline(self) -> str:
        """First observation; for outcomes this is the outcome text."""
        return self.observations[0] if self.observations else ""

    def is_complete(self) -> bool:
        return bool(self.metadata and self.metadata.completion_status is True)

    def to_record(self) -> dict:
        """Serializable form using the persisted camelCase keys."""
        record = {
            "name": self.name,
            "entityType": self.entity_type,
            "observations": list(self.observations),
        }
        if self.metadata is not None:
            metadata = self.metadata.model_dump(
                mode="json", by_alias=True, exclude_unset=True
            )
            for key, value in (self.metadata.model_extra or {}).items():
                metadata.setdefault(key, value)
            record["metadata"] = metadata
        return record


class Relation(BaseModel):
    """Directed typed edge. Identity is the (from, to, relationType) triple."""

    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from")
    to: str
    relation_type: str = Field(alias="relationType")
    metadata: Optional[dict] = None

    @property
    def key(self) -> tuple:
        return (self.from_, self.to, self.relation_type)

    def touches(self, names: Iterable[str]) -> bool:
        names = set(names)
        return self.from_ in names or self.to in names

    def to_record(self) -> dict:
        record = {"from": self.from_, "to": self.to, "relationType": self.relation_type}
        if self.metadata is not None:
            record["metadata"] = self.metadata
        return record


class KnowledgeGraph(BaseModel):
    """Full entity/relation collection, in insertion order."""

    entities: List[Entity] = []
    relations: List[Relation] = []

    def find_entity(
        self, name: str, entity_types: Optional[Iterable[str]] = None
    ) -> Optional[Entity]:
        """Exact-name lookup, optionally restricted to some entity types."""
        allowed = set(entity_types) if entity_types is not None else None
        for entity in self.entities:
            if entity.name != name:
                continue
            if allowed is None or entity.entity_type in allowed:
                return entity
        return None

    def has_entity(self, name: str) -> bool:
        return any(e.name == name for e in self.entities)

    def has_relation(self, relation: Relation) -> bool:
        return any(r.key == relation.key for r in self.relations)

    def chart_entity(self, chart_id: str) -> Optional[Entity]:
        return next(
            (
                e for e in self.entities
                if e.entity_type == EntityType.STRUCTURAL_TENSION_CHART.value
                and e.chart_id == chart_id
            ),
            None,
        )

    def outcome_entity(self, chart_id: str) -> Optional[Entity]:
        return self.find_entity(
            f"{chart_id}_desired_outcome", [EntityType.DESIRED_OUTCOME.value]
        )

    def reality_entity(self, chart_id: str) -> Optional[Entity]:
        return self.find_entity(
            f"{chart_id}_current_reality", [EntityType.CURRENT_REALITY.value]
        )

    def entities_of_type(self, entity_type: str) -> List[Entity]:
        return [e for e in self.entities if e.entity_type == entity_type]

    def entities_for_chart(self, chart_id: str) -> List[Entity]:
        return [e for e in self.entities if e.chart_id == chart_id]

    def subgraph(self, entities: List[Entity]) -> "KnowledgeGraph":
        """Given entities plus only the relations with both endpoints among them."""
        names = {e.name for e in entities}
        return KnowledgeGraph(
            entities=list(entities),
            relations=[
                r for r in self.relations if r.from_ in names and r.to in names
            ],
        )

    def remove_entities(self, names: Iterable[str]) -> int:
        """Drop entities by name along with every relation touching them."""
        names = set(names)
        before = len(self.entities)
        self.entities = [e for e in self.entities if e.name not in names]
        self.relations = [r for r in self.relations if not r.touches(names)]
        return before - len(self.entities)

    def index_by_name(self) -> Dict[str, Entity]:
        return {e.name: e for e in self.entities}
