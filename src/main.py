"""posterExtract composition root.

Wires the vision model, reference databases, knowledge base, phase
manager and optional session store into an :class:`IterativeProcessor`.
Configuration comes from ``.env`` / the environment (:class:`Settings`)
and ``config/config.yaml`` (:func:`load_config`).

``build_pipeline`` is the single factory used by the CLI and by scripts;
``run_pipeline`` is a convenience wrapper that builds and runs a batch.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

import structlog

from src.config.loader import load_config, load_iterative_config
from src.config.settings import Settings
from src.interfaces.knowledge_base_provider import IKnowledgeBaseProvider
from src.interfaces.llm_provider import ILLMProvider
from src.interfaces.reference_data_provider import IReferenceDataProvider
from src.models.processing import IterativeBatchResult, IterativeProcessingOptions
from src.pipeline.iterative_processor import IterativeProcessor
from src.pipeline.phase_manager import DEFAULT_CLEANUP_AGE_MS, PhaseManager
from src.pipeline.progress_tracker import ProgressListener, ProgressTracker
from src.providers.knowledge_base.memory_knowledge_base import InMemoryKnowledgeBase
from src.providers.llm.anthropic_provider import AnthropicLLMProvider
from src.providers.llm.ollama_provider import OllamaLLMProvider
from src.providers.llm.openai_provider import OpenAILLMProvider
from src.providers.music_db.discogs_api_provider import DiscogsAPIProvider
from src.providers.music_db.musicbrainz_provider import MusicBrainzProvider
from src.providers.session.sqlite_context_store import SQLiteContextStore
from src.providers.vision.llm_vision_provider import LLMVisionProvider
from src.services.artist_splitter import ArtistSplitter, ArtistSplitterConfig
from src.utils.errors import ConfigurationError
from src.utils.logging import get_logger

logger: structlog.BoundLogger = get_logger(__name__)

DEFAULT_LLM_PRIORITY = ("anthropic", "openai", "ollama")

_LLM_FACTORIES: dict[str, Callable[[Settings], ILLMProvider]] = {
    "anthropic": AnthropicLLMProvider,
    "openai": OpenAILLMProvider,
    "ollama": OllamaLLMProvider,
}


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _build_llm_provider(
    app_settings: Settings,
    priority: Sequence[str] = DEFAULT_LLM_PRIORITY,
) -> ILLMProvider:
    """Return the first configured, vision-capable LLM provider in *priority* order.

    Raises:
        ConfigurationError: No provider has credentials, or *priority*
            names an unknown provider.
    """
    configured = set(app_settings.get_available_llm_providers())
    for name in priority:
        factory = _LLM_FACTORIES.get(name)
        if factory is None:
            raise ConfigurationError(f"Unknown LLM provider in priority list: {name}")
        if name not in configured:
            continue
        provider = factory(app_settings)
        if provider.is_available() and provider.supports_vision():
            logger.info("llm_provider_selected", provider=provider.get_provider_name())
            return provider

    raise ConfigurationError(
        "No vision-capable LLM provider configured. "
        "Set ANTHROPIC_API_KEY, OPENAI_API_KEY or OLLAMA_BASE_URL."
    )


def _build_reference_providers(
    app_settings: Settings,
    config: dict[str, Any],
) -> tuple[IReferenceDataProvider | None, IReferenceDataProvider | None]:
    """MusicBrainz is always built; Discogs only with a user token."""
    interval = (config.get("music_db") or {}).get("request_interval_seconds")
    musicbrainz: IReferenceDataProvider | None = MusicBrainzProvider(
        app_settings, min_request_interval=interval
    )
    discogs: IReferenceDataProvider | None = None
    if app_settings.discogs_user_token:
        discogs = DiscogsAPIProvider(app_settings)
    logger.info(
        "reference_providers_built",
        musicbrainz=musicbrainz is not None,
        discogs=discogs is not None,
    )
    return musicbrainz, discogs


def _build_context_store(
    app_settings: Settings,
    session_config: dict[str, Any],
) -> SQLiteContextStore | None:
    if not session_config.get("persist"):
        return None
    store = SQLiteContextStore(
        db_path=app_settings.session_db_path,
        max_age_hours=int(session_config.get("max_age_hours", 72)),
    )
    store.initialize()
    logger.info("context_store_ready", db_path=app_settings.session_db_path)
    return store


# ---------------------------------------------------------------------------
# Pipeline factory
# ---------------------------------------------------------------------------


def build_pipeline(
    custom_settings: Settings | None = None,
    config: dict[str, Any] | None = None,
    knowledge_base: IKnowledgeBaseProvider | None = None,
    llm_provider: ILLMProvider | None = None,
) -> IterativeProcessor:
    """Construct a ready-to-run :class:`IterativeProcessor`.

    Parameters
    ----------
    custom_settings:
        Settings to use; read from the environment when omitted.
    config:
        Pre-loaded YAML config; loaded from ``settings.config_path`` when
        omitted.
    knowledge_base:
        Graph store for cross-checks and persistence; an empty in-memory
        graph is created when omitted.
    llm_provider:
        Explicit vision model, bypassing priority selection.
    """
    s = custom_settings or Settings()
    cfg = config if config is not None else load_config(settings=s)

    llm_priority = (cfg.get("llm") or {}).get("priority") or DEFAULT_LLM_PRIORITY
    llm = llm_provider or _build_llm_provider(s, llm_priority)
    vision = LLMVisionProvider(llm_provider=llm)

    musicbrainz, discogs = _build_reference_providers(s, cfg)
    splitter = ArtistSplitter(
        musicbrainz=musicbrainz,
        discogs=discogs,
        config=ArtistSplitterConfig.model_validate(cfg.get("artist_splitter") or {}),
    )

    session_cfg = cfg.get("session") or {}
    manager = PhaseManager(load_iterative_config(cfg))
    processor = IterativeProcessor(
        vision_provider=vision,
        phase_manager=manager,
        knowledge_base=knowledge_base if knowledge_base is not None else InMemoryKnowledgeBase(),
        artist_splitter=splitter,
        progress_tracker=ProgressTracker(),
        context_store=_build_context_store(s, session_cfg),
        cleanup_max_age_ms=int(session_cfg.get("cleanup_max_age_ms", DEFAULT_CLEANUP_AGE_MS)),
    )
    logger.info(
        "pipeline_built",
        llm=llm.get_provider_name(),
        on_low_confidence=manager.config.on_low_confidence.value,
        batch_size=manager.config.batch_size,
    )
    return processor


async def run_pipeline(
    image_paths: Sequence[str],
    options: IterativeProcessingOptions | None = None,
    concurrency: int | None = None,
    on_progress: ProgressListener | None = None,
    custom_settings: Settings | None = None,
) -> IterativeBatchResult:
    """Build a pipeline and process *image_paths* as one batch."""
    processor = build_pipeline(custom_settings)
    return await processor.process_batch(
        image_paths, options=options, concurrency=concurrency, on_progress=on_progress
    )
