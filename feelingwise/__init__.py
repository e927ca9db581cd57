"""
FeelingWise — Manipulation Detection and Neutralization Core

Classifies short text fragments from a live feed, scores how
manipulative they are, and obtains a calm rewrite from a language model,
caching results so identical content is never processed twice.

Public API:
  - fingerprint:          SHA-256 cache key for fragment text
  - detect:               Local technique detection (deterministic, zero API cost)
  - score:                Intensity + Centrality + Vulnerability severity
  - ResultCache:          TTL + bounded insertion-order cache
  - NeutralizationClient: LLM rewrite with timeout and local fallback
  - BatchScheduler:       Dedupe, queue, bounded batches, fault isolation
  - LLMProvider:          Abstract LLM interface for provider swapping

Usage:
    from feelingwise import BatchScheduler, Fragment, create_scheduler
    from feelingwise import detect, score
"""

__version__ = "1.0.0"

from feelingwise.fingerprint import fingerprint
from feelingwise.techniques import Technique, TechniqueMatch, normalize_technique
from feelingwise.detector import TechniqueDetector, technique_detector, detect, surface_signals
from feelingwise.scorer import ScoreResult, score
from feelingwise.cache import CacheRecord, ResultCache
from feelingwise.neutralizer import Neutralization, NeutralizationClient, local_fallback
from feelingwise.scheduler import (
    BatchScheduler,
    Fragment,
    FragmentResult,
    ProcessingState,
    create_scheduler,
)
from feelingwise.errors import (
    FeelingWiseError,
    InputRejected,
    ServiceUnavailable,
    ProcessingFailed,
)
from feelingwise.llm import LLMProvider
from feelingwise.llm.factory import get_provider

__all__ = [
    "fingerprint",
    "Technique",
    "TechniqueMatch",
    "normalize_technique",
    "TechniqueDetector",
    "technique_detector",
    "detect",
    "surface_signals",
    "ScoreResult",
    "score",
    "CacheRecord",
    "ResultCache",
    "Neutralization",
    "NeutralizationClient",
    "local_fallback",
    "BatchScheduler",
    "Fragment",
    "FragmentResult",
    "ProcessingState",
    "create_scheduler",
    "FeelingWiseError",
    "InputRejected",
    "ServiceUnavailable",
    "ProcessingFailed",
    "LLMProvider",
    "get_provider",
]
