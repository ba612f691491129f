"""
Error Classifier - Rule-based build error classification (NO AI)

Classifies build output BEFORE any fixer runs:
- Deterministic signatures are routed to the Quick-Fix Engine
- Everything else is labelled so the LLM fixer is told WHAT kind of
  error it is looking at, not asked to figure it out
"""

import re
from enum import Enum
from typing import Dict, List, Optional, Tuple, Any
from dataclasses import dataclass, field

from forgeloop.core.logging_config import logger


class ErrorType(str, Enum):
    """Error types with their fix route"""
    # Quick-fixable (deterministic, no LLM)
    CLIENT_DIRECTIVE = "client_directive"
    MISSING_PACKAGE = "missing_package"
    CONFIG_FORMAT = "config_format"
    STYLE_PIPELINE = "style_pipeline"

    # Routed to the LLM fixer
    TYPE_ERROR = "type_error"
    SYNTAX_ERROR = "syntax_error"
    IMPORT_ERROR = "import_error"
    UNDEFINED_VARIABLE = "undefined_variable"
    MISSING_FILE = "missing_file"

    UNKNOWN = "unknown"


QUICK_FIX_TYPES = {
    ErrorType.CLIENT_DIRECTIVE,
    ErrorType.MISSING_PACKAGE,
    ErrorType.CONFIG_FORMAT,
    ErrorType.STYLE_PIPELINE,
}


@dataclass
class ClassifiedError:
    """Result of error classification"""
    error_type: ErrorType
    is_quick_fixable: bool
    suggested_action: str
    confidence: float  # 0.0 to 1.0
    file_paths: List[str] = field(default_factory=list)
    packages: List[str] = field(default_factory=list)
    matched_text: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.error_type.value,
            "is_quick_fixable": self.is_quick_fixable,
            "suggested_action": self.suggested_action,
            "confidence": self.confidence,
            "file_paths": self.file_paths,
            "packages": self.packages,
        }


class ErrorClassifier:
    """
    Rule-based error classifier.

    Every signature is one row of SIGNATURES; adding a rule never touches
    the repair loop.
    """

    SIGNATURES: List[Tuple[str, ErrorType, str, float]] = [
        # Missing client-only directive
        (r'This React Hook only works in a Client Component|'
         r'needs? (?:useState|useEffect|useContext|useReducer|useRef|useCallback|useMemo|useLayoutEffect)|'
         r'Client Component|["\']use client["\']',
         ErrorType.CLIENT_DIRECTIVE,
         "Add the 'use client' directive", 0.95),

        # Unresolved packages
        (r'Can\'t resolve \'[^\'.@/][^\']*\'|Can\'t resolve \'@[^/\'][^\']*\'|'
         r'Cannot find module \'[^\'.@/][^\']*\'|Cannot find module \'@[^/\'][^\']*\'',
         ErrorType.MISSING_PACKAGE,
         "Install missing package", 0.9),

        # Unsupported config file format
        (r'next\.config\.ts[\'"]? is not supported|Configuring Next\.js via [\'"]next\.config\.ts[\'"] is not supported',
         ErrorType.CONFIG_FORMAT,
         "Convert next.config.ts to next.config.js", 0.95),

        # Styling pipeline / PostCSS misconfiguration
        (r'tailwindcss` directly as a PostCSS plugin|@tailwindcss/postcss|'
         r'Cannot apply unknown utility class|PostCSS plugin',
         ErrorType.STYLE_PIPELINE,
         "Regenerate PostCSS config for the installed Tailwind version", 0.9),

        # LLM-routed
        (r'Type error:|TS\d{4}:|is not assignable to',
         ErrorType.TYPE_ERROR,
         "Fix TypeScript type error", 0.85),
        (r'Unexpected token|Expression expected|SyntaxError:|Unterminated string|Parse error',
         ErrorType.SYNTAX_ERROR,
         "Fix syntax error", 0.85),
        (r'Attempted import error|export .* was not found|does not provide an export named|'
         r'has no exported member',
         ErrorType.IMPORT_ERROR,
         "Fix import/export mismatch", 0.85),
        (r'Cannot find name|is not defined',
         ErrorType.UNDEFINED_VARIABLE,
         "Define or import the missing identifier", 0.8),
        (r'Can\'t resolve \'(?:\.|@/)[^\']*\'|Cannot find module \'(?:\.|@/)[^\']*\'|ENOENT',
         ErrorType.MISSING_FILE,
         "Create the missing file or fix the import path", 0.8),
    ]

    # Paths of files a client-directive error points at
    CLIENT_FILE_PATTERNS = [
        re.compile(r'\./?(src/[^\s:\'"]+\.(?:tsx?|jsx?))'),
        re.compile(r',-\[[^\]]*/(src/[^:\]]+\.(?:tsx?|jsx?))'),
        re.compile(r'[^/\s]+/(src/[^\s:\'"]+\.(?:tsx?|jsx?))'),
    ]

    PACKAGE_PATTERNS = [
        re.compile(r'Can\'t resolve \'([^\']+)\''),
        re.compile(r'Cannot find module \'([^\']+)\''),
    ]

    @classmethod
    def classify(cls, output: str) -> List[ClassifiedError]:
        """
        Classify build output.

        Args:
            output: Combined build (or runtime probe) output

        Returns:
            One ClassifiedError per matched error type, quick-fixable first
        """
        results: Dict[ErrorType, ClassifiedError] = {}

        for pattern, error_type, action, confidence in cls.SIGNATURES:
            if error_type in results:
                continue
            match = re.search(pattern, output)
            if not match:
                continue

            classified = ClassifiedError(
                error_type=error_type,
                is_quick_fixable=error_type in QUICK_FIX_TYPES,
                suggested_action=action,
                confidence=confidence,
                matched_text=match.group(0),
            )
            if error_type == ErrorType.CLIENT_DIRECTIVE:
                classified.file_paths = cls.extract_client_files(output)
            elif error_type == ErrorType.MISSING_PACKAGE:
                classified.packages = cls.extract_packages(output)
            results[error_type] = classified

        # Tailwind and PostCSS mentioned together also means a broken pipeline
        lowered = output.lower()
        if ErrorType.STYLE_PIPELINE not in results and "tailwind" in lowered and "postcss" in lowered:
            results[ErrorType.STYLE_PIPELINE] = ClassifiedError(
                error_type=ErrorType.STYLE_PIPELINE,
                is_quick_fixable=True,
                suggested_action="Regenerate PostCSS config for the installed Tailwind version",
                confidence=0.7,
                matched_text="tailwind+postcss",
            )

        classified_errors = sorted(results.values(), key=lambda c: (not c.is_quick_fixable, -c.confidence))
        if classified_errors:
            logger.debug(
                f"[ErrorClassifier] {', '.join(c.error_type.value for c in classified_errors)}"
            )
        return classified_errors

    @classmethod
    def extract_client_files(cls, output: str) -> List[str]:
        """Project-relative files named near a client-directive error"""
        files: List[str] = []
        for pattern in cls.CLIENT_FILE_PATTERNS:
            for match in pattern.finditer(output):
                path = match.group(1)
                if path not in files:
                    files.append(path)
        return files

    @classmethod
    def extract_packages(cls, output: str) -> List[str]:
        """Installable package names from unresolved-module errors"""
        packages: List[str] = []
        for pattern in cls.PACKAGE_PATTERNS:
            for match in pattern.finditer(output):
                name = package_name(match.group(1))
                if name and name not in packages:
                    packages.append(name)
        return packages

    @classmethod
    def has_quick_fixable(cls, output: str) -> bool:
        return any(c.is_quick_fixable for c in cls.classify(output))

    @classmethod
    def describe(cls, output: str) -> str:
        """One line per classified type, for the LLM fixer prompt"""
        return "\n".join(
            f"- {c.error_type.value}: {c.suggested_action}" for c in cls.classify(output)
        )


def package_name(specifier: str) -> Optional[str]:
    """
    Reduce an import specifier to the package to install.

    'lodash/fp' -> 'lodash', '@scope/pkg/sub' -> '@scope/pkg'. Relative,
    absolute and '@/' alias imports are not packages.
    """
    if not specifier or specifier.startswith((".", "/", "@/", "~/")):
        return None
    parts = specifier.split("/")
    if specifier.startswith("@"):
        if len(parts) < 2 or not parts[1]:
            return None
        return "/".join(parts[:2])
    # Node built-ins are never installed
    if parts[0].startswith("node:"):
        return None
    return parts[0]
