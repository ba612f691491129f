"""
Change-Impact Classifier

Decides whether an update is small enough to trust the dev server's hot
reload instead of running the full Repair Loop. It is only an optimization:
anything uncertain routes to full validation.

Simple (skip validation):
    one file, fewer than SIMPLE_MAX_LINES changed lines, and none of the
    structural signals below

Structural signals (always rebuild):
    new files, package.json changes, new exports, new hook calls, new
    on<Event> handler props

Complex (always rebuild):
    COMPLEX_MIN_FILES or more files, or COMPLEX_MIN_LINES or more lines
"""

import difflib
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from forgeloop.core.logging_config import logger

# Thresholds were calibrated by observation; adjust freely
SIMPLE_MAX_FILES = 1
SIMPLE_MAX_LINES = 20
COMPLEX_MIN_FILES = 3
COMPLEX_MIN_LINES = 200
SKIP_CONFIDENCE_THRESHOLD = 0.8

SIMPLE_CONFIDENCE = 0.9
SIGNAL_CONFIDENCE = 0.9
COMPLEX_CONFIDENCE = 0.95
MODERATE_CONFIDENCE = 0.6

EXPORT_PATTERN = re.compile(r'^\s*export\s', re.MULTILINE)
HOOK_PATTERN = re.compile(r'\buse[A-Z]\w*\s*\(')
HANDLER_PATTERN = re.compile(r'\bon[A-Z]\w*\s*=')

MANIFEST_FILE = "package.json"


def _split_lines(content: Optional[str]) -> List[str]:
    if not content:
        return []
    return content.splitlines()


@dataclass(frozen=True)
class FileChange:
    """One file before and after an update (old_content None means new file)"""
    path: str
    old_content: Optional[str]
    new_content: str

    @property
    def is_new(self) -> bool:
        return self.old_content is None

    @property
    def lines_changed(self) -> int:
        """Added plus removed lines"""
        count = 0
        for diff in difflib.ndiff(_split_lines(self.old_content), _split_lines(self.new_content)):
            if diff.startswith('+ ') or diff.startswith('- '):
                count += 1
        return count

    def _gained(self, pattern: re.Pattern) -> bool:
        old = len(pattern.findall(self.old_content or ""))
        new = len(pattern.findall(self.new_content))
        return new > old

    def signals(self) -> List[str]:
        found = []
        if self.is_new:
            found.append(f"new file {self.path}")
        if self.path.rsplit("/", 1)[-1] == MANIFEST_FILE and self.old_content != self.new_content:
            found.append("package.json changed")
        if self._gained(EXPORT_PATTERN):
            found.append(f"new export in {self.path}")
        if self._gained(HOOK_PATTERN):
            found.append(f"new hook call in {self.path}")
        if self._gained(HANDLER_PATTERN):
            found.append(f"new event handler in {self.path}")
        return found


@dataclass
class ChangeImpact:
    """Verdict for one update"""
    needs_rebuild: bool
    confidence: float
    reasons: List[str] = field(default_factory=list)
    files_changed: int = 0
    lines_changed: int = 0

    @property
    def should_skip_validation(self) -> bool:
        return not self.needs_rebuild and self.confidence >= SKIP_CONFIDENCE_THRESHOLD

    def to_dict(self) -> Dict[str, Any]:
        return {
            "needs_rebuild": self.needs_rebuild,
            "confidence": self.confidence,
            "reasons": self.reasons,
            "files_changed": self.files_changed,
            "lines_changed": self.lines_changed,
            "skip_validation": self.should_skip_validation,
        }


def diff_snapshots(before: Dict[str, str], after: Dict[str, str]) -> List[FileChange]:
    """FileChanges for every path in `after` whose content differs from `before`"""
    changes = []
    for path, content in after.items():
        old = before.get(path)
        if old == content:
            continue
        changes.append(FileChange(path=path, old_content=old, new_content=content))
    return changes


class ChangeImpactClassifier:
    """Estimates whether an update can rely on hot reload"""

    @classmethod
    def classify(cls, changes: Iterable[FileChange]) -> ChangeImpact:
        changes = [c for c in changes if c.is_new or c.old_content != c.new_content]
        if not changes:
            return ChangeImpact(needs_rebuild=False, confidence=1.0, reasons=["no files changed"])

        files_changed = len(changes)
        lines_changed = sum(c.lines_changed for c in changes)
        signals = [signal for change in changes for signal in change.signals()]

        if files_changed >= COMPLEX_MIN_FILES or lines_changed >= COMPLEX_MIN_LINES:
            impact = ChangeImpact(
                needs_rebuild=True,
                confidence=COMPLEX_CONFIDENCE,
                reasons=[f"{files_changed} file(s), {lines_changed} line(s) changed"] + signals,
                files_changed=files_changed,
                lines_changed=lines_changed
            )
        elif signals:
            impact = ChangeImpact(
                needs_rebuild=True,
                confidence=SIGNAL_CONFIDENCE,
                reasons=signals,
                files_changed=files_changed,
                lines_changed=lines_changed
            )
        elif files_changed <= SIMPLE_MAX_FILES and lines_changed < SIMPLE_MAX_LINES:
            impact = ChangeImpact(
                needs_rebuild=False,
                confidence=SIMPLE_CONFIDENCE,
                reasons=[f"small edit to {changes[0].path} ({lines_changed} line(s))"],
                files_changed=files_changed,
                lines_changed=lines_changed
            )
        else:
            impact = ChangeImpact(
                needs_rebuild=True,
                confidence=MODERATE_CONFIDENCE,
                reasons=[f"moderate change: {files_changed} file(s), {lines_changed} line(s)"],
                files_changed=files_changed,
                lines_changed=lines_changed
            )

        logger.info(
            f"[ChangeImpact] rebuild={impact.needs_rebuild} confidence={impact.confidence} "
            f"files={files_changed} lines={lines_changed}"
        )
        return impact
