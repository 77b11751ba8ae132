"""Semantic resolution: the six-strategy cascade and annotation storage.

::

    WordContext ──► ResolutionCascade
                      ├── CacheResolver              (1)
                      ├── RegionalLexiconResolver    (2)
                      ├── SynonymPropagationResolver (3)
                      ├── PosLexiconResolver         (4)
                      ├── MorphologyResolver         (5)
                      └── GenerativeResolver         (6, batched)
                    ──► ResolutionResult | Unresolved ──► AnnotationStore
"""

from lexspine.resolution.annotations import AnnotationStore
from lexspine.resolution.cascade import ResolutionCascade
from lexspine.resolution.classifier import (
    ClassifierClient,
    ClassifierVerdict,
    HttpClassifierClient,
    parse_classifier_content,
)
from lexspine.resolution.generative import GenerativeBatch, GenerativeResolver, forget_cached
from lexspine.resolution.models import (
    CascadeStats,
    PriorResult,
    ResolutionResult,
    Strategy,
    Unresolved,
    WordContext,
)
from lexspine.resolution.strategies import (
    CacheResolver,
    MorphologyResolver,
    PosLexiconResolver,
    RegionalLexiconResolver,
    SynonymPropagationResolver,
    build_resolvers,
)

__all__ = [
    "AnnotationStore",
    "ResolutionCascade",
    "ClassifierClient",
    "ClassifierVerdict",
    "HttpClassifierClient",
    "parse_classifier_content",
    "GenerativeBatch",
    "GenerativeResolver",
    "forget_cached",
    "CascadeStats",
    "PriorResult",
    "ResolutionResult",
    "Strategy",
    "Unresolved",
    "WordContext",
    "CacheResolver",
    "MorphologyResolver",
    "PosLexiconResolver",
    "RegionalLexiconResolver",
    "SynonymPropagationResolver",
    "build_resolvers",
]
