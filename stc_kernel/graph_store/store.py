"""
Graph Store — line-delimited JSON persistence for the whole knowledge graph.

Behavioral Contract:
- load() returns the full graph; a missing file is an empty graph, not an error
- save() rewrites the file wholesale: every entity, then every relation,
  one JSON object per line, tagged with a "type" discriminator
- Writes go to a sibling temp file that replaces the original, so a reader
  never sees a partial line
- Legacy "narrative_beat" lines are normalized into narrative_beat entities
- No cache: every call reads from disk, the file is the source of truth
"""

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

from pydantic import ValidationError

from stc_kernel.errors import GraphStoreError
from stc_kernel.models.graph import Entity, EntityType, KnowledgeGraph, Relation

logger = logging.getLogger(__name__)


def _normalize_narrative_beat(item: dict) -> dict:
    """Fold a legacy top-level narrative_beat record into entity shape."""
    metadata = dict(item.get("metadata") or {})
    if "narrative" in item:
        metadata["narrative"] = item["narrative"]
    if "relational_alignment" in item:
        metadata["relationalAlignment"] = item["relational_alignment"]
    if "four_directions" in item:
        metadata["fourDirections"] = item["four_directions"]
    return {
        "name": item["name"],
        "entityType": EntityType.NARRATIVE_BEAT.value,
        "observations": item.get("observations") or [],
        "metadata": metadata,
    }


class GraphStore:
    """
    File-backed graph store.

    One store guards one file. `transaction()` serializes load/mutate/save
    cycles within this process; separate processes are not coordinated and
    the last save wins.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.RLock()

    def load(self) -> KnowledgeGraph:
        """Read the whole graph from disk."""
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                lines = fh.read().split("\n")
        except FileNotFoundError:
            return KnowledgeGraph()
        except OSError as e:
            raise GraphStoreError(f"Cannot read graph file {self.path}: {e}") from e
        except UnicodeDecodeError as e:
            raise GraphStoreError(f"Graph file {self.path} is not valid UTF-8: {e}") from e

        graph = KnowledgeGraph()
        for lineno, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                item = json.loads(line)
                kind = item.get("type")
                if kind == "entity":
                    graph.entities.append(Entity.model_validate(item))
                elif kind == "relation":
                    graph.relations.append(Relation.model_validate(item))
                elif kind == "narrative_beat":
                    graph.entities.append(
                        Entity.model_validate(_normalize_narrative_beat(item))
                    )
                else:
                    logger.warning(
                        "Skipping line %d of %s: unknown record type %r",
                        lineno, self.path, kind,
                    )
            except (ValueError, KeyError, AttributeError, ValidationError) as e:
                raise GraphStoreError(
                    f"Malformed record on line {lineno} of {self.path}: {e}"
                ) from e

        logger.debug(
            "Loaded %d entities and %d relations from %s",
            len(graph.entities), len(graph.relations), self.path,
        )
        return graph

    def save(self, graph: KnowledgeGraph) -> None:
        """Rewrite the file with the given graph."""
        lines = [
            json.dumps({"type": "entity", **e.to_record()}, ensure_ascii=False)
            for e in graph.entities
        ]
        lines.extend(
            json.dumps({"type": "relation", **r.to_record()}, ensure_ascii=False)
            for r in graph.relations
        )
        payload = "\n".join(lines)

        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise GraphStoreError(f"Cannot write graph file {self.path}: {e}") from e

        logger.debug(
            "Saved %d entities and %d relations to %s",
            len(graph.entities), len(graph.relations), self.path,
        )

    @contextmanager
    def transaction(self) -> Iterator[KnowledgeGraph]:
        """
        Load the graph, hand it to the caller, save it if the block succeeds.

        An exception inside the block discards every in-memory change.
        """
        with self._lock:
            graph = self.load()
            yield graph
            self.save(graph)

    @contextmanager
    def snapshot(self) -> Iterator[KnowledgeGraph]:
        """Read-only variant of transaction(): nothing is written back."""
        with self._lock:
            yield self.load()
