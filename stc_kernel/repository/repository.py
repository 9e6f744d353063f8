"""
Entity/Relation Repository — deduplicated CRUD over the graph store.

Every write is one load → mutate → save cycle. Duplicate entity names and
duplicate relation triples are dropped silently, never merged or raised.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, List

from stc_kernel.errors import InputValidationError, NotFoundError
from stc_kernel.graph_store.store import GraphStore
from stc_kernel.models.graph import Entity, EntityType, KnowledgeGraph, Relation

logger = logging.getLogger(__name__)


def append_new_entities(graph: KnowledgeGraph, entities: List[Entity]) -> List[Entity]:
    """Append entities whose names are not yet taken; return the ones added."""
    taken = {e.name for e in graph.entities}
    added = []
    for entity in entities:
        if entity.name in taken:
            continue
        taken.add(entity.name)
        added.append(entity)
    graph.entities.extend(added)
    return added


def append_new_relations(graph: KnowledgeGraph, relations: List[Relation]) -> List[Relation]:
    """Append relations whose triple is not yet present; return the ones added."""
    present = {r.key for r in graph.relations}
    added = []
    for relation in relations:
        if relation.key in present:
            continue
        present.add(relation.key)
        added.append(relation)
    graph.relations.extend(added)
    return added


class EntityRelationRepository:
    """CRUD and lookup over entities and relations."""

    def __init__(self, store: GraphStore):
        self.store = store

    @contextmanager
    def transaction(self) -> Iterator[KnowledgeGraph]:
        with self.store.transaction() as graph:
            yield graph

    def read_graph(self) -> KnowledgeGraph:
        return self.store.load()

    def create_entities(self, entities: List[Entity]) -> List[Entity]:
        with self.store.transaction() as graph:
            added = append_new_entities(graph, entities)
        logger.debug("Created %d of %d entities", len(added), len(entities))
        return added

    def create_relations(self, relations: List[Relation]) -> List[Relation]:
        with self.store.transaction() as graph:
            added = append_new_relations(graph, relations)
        logger.debug("Created %d of %d relations", len(added), len(relations))
        return added

    def add_observations(self, entity_name: str, contents: List[str]) -> List[str]:
        """Append unseen observations to an entity; return those actually added."""
        with self.store.transaction() as graph:
            entity = graph.find_entity(entity_name)
            if entity is None:
                raise NotFoundError(f"Entity with name {entity_name} not found")
            added = []
            for content in contents:
                if content not in entity.observations and content not in added:
                    added.append(content)
            entity.observations.extend(added)
        return added

    def delete_entities(self, names: List[str]) -> int:
        """Remove entities and every relation touching them."""
        with self.store.transaction() as graph:
            removed = graph.remove_entities(names)
        logger.debug("Deleted %d entities", removed)
        return removed

    def delete_observations(self, entity_name: str, observations: List[str]) -> None:
        with self.store.transaction() as graph:
            entity = graph.find_entity(entity_name)
            if entity is None:
                return
            remaining = [o for o in entity.observations if o not in observations]
            if entity.entity_type == EntityType.DESIRED_OUTCOME.value and not remaining:
                raise InputValidationError(
                    f"Cannot remove every observation from {entity_name}: "
                    f"the first observation is the desired outcome text. "
                    f"Use update_desired_outcome to replace it."
                )
            entity.observations = remaining

    def delete_relations(self, relations: List[Relation]) -> None:
        keys = {r.key for r in relations}
        with self.store.transaction() as graph:
            graph.relations = [r for r in graph.relations if r.key not in keys]

    def search(self, query: str) -> KnowledgeGraph:
        """Case-insensitive substring match on name, type or any observation."""
        needle = query.lower()
        graph = self.store.load()
        matches = [
            e for e in graph.entities
            if needle in e.name.lower()
            or needle in e.entity_type.lower()
            or any(needle in o.lower() for o in e.observations)
        ]
        return graph.subgraph(matches)

    def open_nodes(self, names: List[str]) -> KnowledgeGraph:
        wanted = set(names)
        graph = self.store.load()
        return graph.subgraph([e for e in graph.entities if e.name in wanted])
