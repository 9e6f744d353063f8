"""STC Kernel data models."""

from stc_kernel.models.chart import (
    ActionStepRef,
    ActionStepResult,
    Chart,
    ChartCreationResult,
    ChartProgress,
    ChartRef,
    ChartReference,
    ChartStats,
    ChartSummary,
    InvalidRef,
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
from stc_kernel.models.principles import Principle, PrincipleCheck, PrincipleVerdict

__all__ = [
    "ActionStepRef",
    "ActionStepResult",
    "Chart",
    "ChartCreationResult",
    "ChartProgress",
    "ChartRef",
    "ChartReference",
    "ChartStats",
    "ChartSummary",
    "Entity",
    "EntityMetadata",
    "EntityType",
    "InvalidRef",
    "KnowledgeGraph",
    "OutcomeRef",
    "Principle",
    "PrincipleCheck",
    "PrincipleVerdict",
    "Relation",
    "RelationType",
    "TelescopeResult",
    "build_chart_index",
    "descendant_chart_ids",
    "parse_reference",
]
