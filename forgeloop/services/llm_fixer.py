"""
LLM Fixer - model-guided repair for errors the Quick-Fix Engine cannot handle

Input:  capped error summary, requirement context, raw output excerpt,
        contents of the files the errors point at
Output: full-file replacements written to disk as Fix records

The response is untrusted text. Parsing goes through the tolerant
extractor; an unusable response raises LLMFixParseError, which the Repair
Loop treats as "this attempt produced no fix".
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Union

from forgeloop.core.exceptions import LLMFixParseError
from forgeloop.core.logging_config import logger
from forgeloop.modules.automation.build_validator import CompileError
from forgeloop.modules.automation.workspace import is_within
from forgeloop.services.error_classifier import ErrorClassifier
from forgeloop.services.fixes import Fix, FixType
from forgeloop.utils.response_parser import ParseError, parse_fix_response

# The shared stylesheet belongs to the project template
PROTECTED_PATH_FRAGMENTS = ["globals.css"]

MAX_CONTEXT_FILES = 5
MAX_FILE_CHARS = 8000
MAX_OUTPUT_EXCERPT = 3000
MAX_REQUIREMENT_CHARS = 4000


FIXER_SYSTEM_PROMPT = """You are an expert Next.js / React / TypeScript developer fixing build errors.

You will receive:
1. A numbered summary of build errors (file, line, message)
2. The error categories already detected
3. The current contents of the files the errors point at
4. The project requirements for context

Rules:
- Fix the root cause, not the symptom
- Return the COMPLETE content of every file you change
- Never modify globals.css
- Keep changes minimal and consistent with the existing code
- Add 'use client' to components that use hooks or event handlers

Respond with ONLY a JSON object:
{
  "files": [
    {"path": "src/components/Header.tsx", "content": "...full file...", "description": "what changed"}
  ],
  "summary": "one sentence"
}"""


@dataclass
class LLMFixResult:
    """Result of one LLM fixer call"""
    fixes: List[Fix] = field(default_factory=list)
    summary: str = ""
    skipped: List[str] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        return any(f.applied for f in self.fixes)


class LLMFixer:
    """Asks the model for file replacements and writes them"""

    def __init__(self, client: Any = None):
        if client is None:
            from forgeloop.utils.claude_client import get_claude_client
            client = get_claude_client()
        self.client = client

    def _context_files(self, project_path: Path, errors: List[CompileError]) -> List[str]:
        sections = []
        seen = set()
        for error in errors:
            if not error.file or error.file in seen or len(seen) >= MAX_CONTEXT_FILES:
                continue
            seen.add(error.file)
            if not is_within(project_path, error.file):
                continue
            path = project_path / error.file
            if not path.is_file():
                continue
            content = path.read_text(encoding="utf-8", errors="replace")
            if len(content) > MAX_FILE_CHARS:
                content = content[:MAX_FILE_CHARS] + "\n/* ...truncated... */"
            sections.append(f"--- {error.file} ---\n{content}")
        return sections

    def build_prompt(
        self,
        project_path: Path,
        error_summary: str,
        requirement: str,
        raw_output: str,
        errors: Optional[List[CompileError]] = None
    ) -> str:
        categories = ErrorClassifier.describe(raw_output) or "- unknown"
        excerpt = raw_output[-MAX_OUTPUT_EXCERPT:] if raw_output else ""
        files = self._context_files(project_path, errors or [])

        parts = [
            f"BUILD ERRORS:\n{error_summary or '(no structured errors extracted)'}",
            f"ERROR CATEGORIES:\n{categories}",
            f"RAW OUTPUT (tail):\n{excerpt}",
        ]
        if files:
            parts.append("FILES:\n" + "\n\n".join(files))
        if requirement:
            parts.append(f"PROJECT REQUIREMENTS:\n{requirement[:MAX_REQUIREMENT_CHARS]}")
        parts.append("Fix these errors. Respond with the JSON object only.")
        return "\n\n".join(parts)

    async def fix(
        self,
        project_path: Union[str, Path],
        error_summary: str,
        requirement: str = "",
        raw_output: str = "",
        errors: Optional[List[CompileError]] = None
    ) -> LLMFixResult:
        """
        Request and apply file replacements.

        Raises:
            LLMFixParseError: the response held no usable JSON
        """
        project_path = Path(project_path)
        prompt = self.build_prompt(project_path, error_summary, requirement, raw_output, errors)

        response = await self.client.generate(prompt=prompt, system_prompt=FIXER_SYSTEM_PROMPT)
        content = response.get("content", "") if isinstance(response, dict) else str(response)

        parsed = parse_fix_response(content)
        if isinstance(parsed, ParseError):
            raise LLMFixParseError(f"Fixer response unusable: {parsed.reason}", raw=parsed.raw)

        result = LLMFixResult(summary=parsed.data["summary"])
        for entry in parsed.data["files"]:
            relative = entry["path"]
            if any(fragment in relative for fragment in PROTECTED_PATH_FRAGMENTS):
                logger.info(f"[LLMFixer] Skipping protected file {relative}")
                result.skipped.append(relative)
                continue
            if not is_within(project_path, relative):
                logger.warning(f"[LLMFixer] Skipping path outside project: {relative}")
                result.skipped.append(relative)
                continue

            target = project_path / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(entry["content"], encoding="utf-8")
            result.fixes.append(Fix(
                type=FixType.LLM_PATCH,
                file=relative,
                description=entry["description"],
                applied=True
            ))

        logger.info(
            f"[LLMFixer] Applied {len(result.fixes)} file(s), skipped {len(result.skipped)}"
            + (f": {result.summary}" if result.summary else "")
        )
        return result
