"""
Configuration settings for the chart kernel.
Loads environment variables (and a local .env) and wires the components.
"""

import logging
import re
from pathlib import Path
from typing import Callable, List, Optional, Union

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

from stc_kernel.charts.engine import ChartEngine
from stc_kernel.graph_store.store import GraphStore
from stc_kernel.narrative.beats import NarrativeBeatService
from stc_kernel.principles.validator import ValidationEngine
from stc_kernel.query.service import QueryService
from stc_kernel.repository.repository import EntityRelationRepository
from stc_kernel.tools.router import ToolRouter, resolve_enabled_tools

logger = logging.getLogger(__name__)


def split_list(value: Optional[str]) -> List[str]:
    """Comma or whitespace separated names, blanks dropped."""
    if not value:
        return []
    return [part for part in re.split(r"[,\s]+", value) if part]


class Settings(BaseSettings):
    """Settings read from COAIA_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="COAIA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    memory_path: str = "./memory.jsonl"
    tools: str = "STC_TOOLS,NARRATIVE_TOOLS"
    disabled_tools: str = ""
    log_level: str = "WARNING"

    @property
    def tool_list(self) -> List[str]:
        return split_list(self.tools)

    @property
    def disabled_tool_list(self) -> List[str]:
        return split_list(self.disabled_tools)


def load_settings(env_file: Optional[Union[str, Path]] = None, **overrides) -> Settings:
    """Load .env into the process environment, then build Settings."""
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()
    return Settings(**overrides)


class Kernel:
    """Every component, wired over one backing file."""

    def __init__(
        self,
        settings: Settings,
        store: GraphStore,
        repository: EntityRelationRepository,
        engine: ChartEngine,
        query: QueryService,
        beats: NarrativeBeatService,
        router: ToolRouter,
    ):
        self.settings = settings
        self.store = store
        self.repository = repository
        self.engine = engine
        self.query = query
        self.beats = beats
        self.router = router


def build_kernel(settings: Optional[Settings] = None, clock: Optional[Callable] = None) -> Kernel:
    settings = settings or Settings()
    store = GraphStore(settings.memory_path)
    repository = EntityRelationRepository(store)
    engine = ChartEngine(repository, ValidationEngine(), clock=clock)
    query = QueryService(repository)
    beats = NarrativeBeatService(repository, clock=clock)
    enabled = resolve_enabled_tools(settings.tool_list, settings.disabled_tool_list)
    router = ToolRouter(engine, query, beats, repository, enabled_tools=enabled)
    logger.debug("Kernel over %s with %d tools enabled", settings.memory_path, len(enabled))
    return Kernel(settings, store, repository, engine, query, beats, router)
