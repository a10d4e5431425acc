"""Composition root: wires the orchestrator to concrete adapters."""

from adapters.storage.sql_store import SQLAlchemyStore
from handoff_patterns.config import AppConfig, get_extraction_model_config
from handoff_patterns.services.concern_extractor import ConcernExtractor, ExtractionConfig
from handoff_patterns.services.pattern_analysis import PatternAnalysisService


def build_service(
    config: AppConfig, store: SQLAlchemyStore | None = None
) -> PatternAnalysisService:
    """Orchestrator over the SQL store and the LLM extractor."""
    store = store or SQLAlchemyStore.from_config(config.database)
    extractor = ConcernExtractor(ExtractionConfig(**get_extraction_model_config(config)))
    return PatternAnalysisService(
        extractor=extractor,
        patients=store,
        entitlements=store,
        handoffs=store,
        events=store,
        repository=store,
        detection=config.detection,
        correlation=config.correlation,
        mention_batch_size=config.database.mention_batch_size,
    )
