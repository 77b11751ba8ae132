"""Job handlers: one per job kind."""

from lexspine.handlers.base import ChunkResult, HandlerRegistry, JobHandler, Materialized
from lexspine.handlers.corpus_annotation import CorpusAnnotationHandler
from lexspine.handlers.dictionary_import import DictionaryImportHandler


def default_registry(settings, client=None) -> HandlerRegistry:
    """Registry with both built-in handlers configured from ``settings``."""
    return HandlerRegistry(
        [
            DictionaryImportHandler(settings),
            CorpusAnnotationHandler(settings, client),
        ]
    )


__all__ = [
    "ChunkResult",
    "HandlerRegistry",
    "JobHandler",
    "Materialized",
    "CorpusAnnotationHandler",
    "DictionaryImportHandler",
    "default_registry",
]
