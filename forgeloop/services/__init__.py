from forgeloop.services.fixes import Fix, FixType
from forgeloop.services.error_classifier import ClassifiedError, ErrorClassifier, ErrorType
from forgeloop.services.config_normalizer import ConfigNormalizer, config_normalizer
from forgeloop.services.quick_fixes import QuickFixEngine
from forgeloop.services.change_impact import ChangeImpact, ChangeImpactClassifier, FileChange

__all__ = [
    # Fix records
    "Fix",
    "FixType",
    # Deterministic repair
    "ClassifiedError",
    "ErrorClassifier",
    "ErrorType",
    "ConfigNormalizer",
    "config_normalizer",
    "QuickFixEngine",
    # Update routing
    "ChangeImpact",
    "ChangeImpactClassifier",
    "FileChange",
]
