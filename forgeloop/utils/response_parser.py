"""
LLM Response Parser
Tolerant extraction of JSON objects and generated files from model output.

Model output is treated as untrusted text: it may wrap JSON in markdown
fences, surround it with prose, or return file contents that are not
strings. Every parser here is a pure function returning a tagged result:

    ParseOk(data)      - a JSON object was recovered
    FilesOk(files)     - {path: content} with string contents
    ParseError(raw)    - nothing usable, with the reason
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from forgeloop.core.logging_config import logger

FENCE_PATTERN = re.compile(r'```[\w+-]*[ \t]*\n?(.*?)```', re.DOTALL)

# ```tsx
# // File: src/components/Header.tsx
# ...
# ```
FILE_BLOCK_PATTERN = re.compile(
    r'```[\w+-]*[ \t]*\n\s*(?://|#|/\*)\s*File:\s*([^\n*]+?)\s*(?:\*/)?\s*\n(.*?)```',
    re.DOTALL
)
FILE_TAG_PATTERN = re.compile(r'<file\s+path="([^"]+)"\s*>(.*?)</file>', re.DOTALL)


@dataclass
class ParseOk:
    data: Dict[str, Any]
    ok: bool = field(default=True, init=False)


@dataclass
class FilesOk:
    files: Dict[str, str]
    ok: bool = field(default=True, init=False)


@dataclass
class ParseError:
    raw: str
    reason: str
    ok: bool = field(default=False, init=False)


def strip_code_fences(text: str) -> str:
    """Return the first fenced block's body, or the text unchanged"""
    match = FENCE_PATTERN.search(text)
    return match.group(1).strip() if match else text.strip()


def _balanced_object_at(text: str, start: int) -> Optional[str]:
    """The balanced {...} starting at text[start], honouring JSON strings"""
    depth = 0
    in_string = False
    escaped = False

    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def find_json_object(text: str) -> Optional[Dict[str, Any]]:
    """First balanced JSON object in text that actually parses"""
    start = text.find("{")
    while start != -1:
        candidate = _balanced_object_at(text, start)
        if candidate is not None:
            try:
                data = json.loads(candidate)
                if isinstance(data, dict):
                    return data
            except json.JSONDecodeError:
                pass
        start = text.find("{", start + 1)
    return None


def extract_json(text: Optional[str]) -> Union[ParseOk, ParseError]:
    """
    Recover a JSON object from model output.

    Tries, in order: the whole text, the first fenced block, then the first
    balanced object anywhere in the text.
    """
    if not text or not text.strip():
        return ParseError(raw=text or "", reason="empty response")

    for candidate in (text.strip(), strip_code_fences(text)):
        try:
            data = json.loads(candidate)
            if isinstance(data, dict):
                return ParseOk(data)
        except json.JSONDecodeError:
            pass

    for match in FENCE_PATTERN.finditer(text):
        data = find_json_object(match.group(1))
        if data is not None:
            return ParseOk(data)

    data = find_json_object(text)
    if data is not None:
        return ParseOk(data)

    return ParseError(raw=text, reason="no JSON object found")


def coerce_content(value: Any) -> str:
    """File contents must be text; structured values are serialized"""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, indent=2)
    if value is None:
        return ""
    return str(value)


def _normalize_path(path: str) -> str:
    path = path.strip().strip("`'\"")
    while path.startswith("./"):
        path = path[2:]
    return path.lstrip("/")


def files_from_payload(files: Any) -> Dict[str, str]:
    """Accept {path: content} or [{path, content}] shapes"""
    result: Dict[str, str] = {}
    if isinstance(files, dict):
        for path, content in files.items():
            if isinstance(path, str) and path.strip():
                result[_normalize_path(path)] = coerce_content(content)
    elif isinstance(files, list):
        for entry in files:
            if isinstance(entry, dict) and isinstance(entry.get("path"), str) and entry["path"].strip():
                result[_normalize_path(entry["path"])] = coerce_content(entry.get("content"))
    return result


def parse_generated_files(text: Optional[str]) -> Union[FilesOk, ParseError]:
    """
    Parse a code-generation response into {path: content}.

    Accepted formats: fenced blocks whose first line is `// File: path`,
    `<file path="...">` tags, or a JSON object with a `files` key.
    """
    if not text or not text.strip():
        return ParseError(raw=text or "", reason="empty response")

    files: Dict[str, str] = {}
    for match in FILE_BLOCK_PATTERN.finditer(text):
        files[_normalize_path(match.group(1))] = match.group(2).rstrip() + "\n"
    for match in FILE_TAG_PATTERN.finditer(text):
        files[_normalize_path(match.group(1))] = match.group(2).strip("\n") + "\n"
    if files:
        return FilesOk(files)

    parsed = extract_json(text)
    if isinstance(parsed, ParseOk):
        files = files_from_payload(parsed.data.get("files"))
        if files:
            return FilesOk(files)
        return ParseError(raw=text, reason="JSON has no usable 'files'")

    logger.debug(f"[ResponseParser] Could not parse generated files: {parsed.reason}")
    return parsed


def parse_fix_response(text: Optional[str]) -> Union[ParseOk, ParseError]:
    """
    Parse an LLM fixer response: {files: [{path, content, description}], summary}.

    The returned data always has a list under "files" and a string "summary".
    """
    parsed = extract_json(text)
    if isinstance(parsed, ParseError):
        return parsed

    raw_files = parsed.data.get("files")
    entries: List[Dict[str, str]] = []
    if isinstance(raw_files, dict):
        raw_files = [{"path": path, "content": content} for path, content in raw_files.items()]
    if isinstance(raw_files, list):
        for entry in raw_files:
            if not isinstance(entry, dict) or not isinstance(entry.get("path"), str) or not entry["path"].strip():
                continue
            # A patch without content would truncate the file
            if entry.get("content") is None:
                continue
            entries.append({
                "path": _normalize_path(entry["path"]),
                "content": coerce_content(entry.get("content")),
                "description": coerce_content(entry.get("description")) or "LLM fix",
            })

    return ParseOk({"files": entries, "summary": coerce_content(parsed.data.get("summary"))})
