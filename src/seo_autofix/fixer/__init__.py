"""Fix pipeline for SEO Autofix.

This module handles:
- Generating fixes per issue type (meta, content, alt text, titles, schema, H1, links,
  direct answers, FAQ sections)
- Reviewing fixes through the quality gate, with one revision pass
- Applying approved fixes with an append-only audit log and rollback
"""

from .applier import FixApplier, LockTimeout, ResourceLocks
from .generator import FixGenerationResult, FixGenerator
from .orchestrator import FixOrchestrator
from .reviewer import QualityGate, ReviewStats
from .strategies import STRATEGIES, UNSUPPORTED, FixStrategy, GenerationError, get_strategy

__all__ = [
    "FixApplier",
    "LockTimeout",
    "ResourceLocks",
    "FixGenerationResult",
    "FixGenerator",
    "FixOrchestrator",
    "QualityGate",
    "ReviewStats",
    "STRATEGIES",
    "UNSUPPORTED",
    "FixStrategy",
    "GenerationError",
    "get_strategy",
]
