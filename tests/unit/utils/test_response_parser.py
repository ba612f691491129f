"""
Unit Tests for the LLM response parser
"""
from forgeloop.utils.response_parser import (
    FilesOk,
    ParseError,
    ParseOk,
    coerce_content,
    extract_json,
    files_from_payload,
    find_json_object,
    parse_fix_response,
    parse_generated_files,
    strip_code_fences,
)


class TestExtractJson:
    """Tests for JSON recovery from noisy output"""

    def test_plain_json(self):
        assert extract_json('{"a": 1}') == ParseOk({"a": 1})

    def test_fenced_json(self):
        parsed = extract_json('Here you go:\n```json\n{"tasks": []}\n```\nGood luck!')
        assert isinstance(parsed, ParseOk)
        assert parsed.data == {"tasks": []}

    def test_object_inside_prose(self):
        parsed = extract_json('Sure! {"summary": "braces } in strings { are fine"} Done.')
        assert parsed.data == {"summary": "braces } in strings { are fine"}

    def test_skips_unparseable_candidates(self):
        parsed = extract_json('{not json} then {"ok": true}')
        assert parsed.data == {"ok": True}

    def test_empty_and_garbage(self):
        assert isinstance(extract_json(""), ParseError)
        assert isinstance(extract_json(None), ParseError)
        error = extract_json("no braces at all")
        assert error.ok is False
        assert error.reason == "no JSON object found"

    def test_top_level_array_is_not_an_object(self):
        assert isinstance(extract_json("[1, 2, 3]"), ParseError)


class TestHelpers:
    """Tests for the small parsing helpers"""

    def test_strip_code_fences(self):
        assert strip_code_fences("```tsx\nconst a = 1;\n```") == "const a = 1;"
        assert strip_code_fences("  plain  ") == "plain"

    def test_find_json_object_handles_escapes(self):
        assert find_json_object('x {"q": "say \\"hi\\" {"} y') == {"q": 'say "hi" {'}

    def test_coerce_content(self):
        assert coerce_content("text") == "text"
        assert coerce_content({"a": 1}) == '{\n  "a": 1\n}'
        assert coerce_content(None) == ""
        assert coerce_content(3) == "3"

    def test_files_from_payload_shapes(self):
        assert files_from_payload({"./src/a.ts": "a"}) == {"src/a.ts": "a"}
        assert files_from_payload([{"path": "/src/b.ts", "content": "b"}, {"content": "no path"}]) == {"src/b.ts": "b"}
        assert files_from_payload("nonsense") == {}


class TestParseGeneratedFiles:
    """Tests for code-generation responses"""

    def test_file_comment_blocks(self):
        text = (
            "```tsx\n// File: src/components/Header.tsx\nexport const Header = () => null;\n```\n\n"
            "```css\n/* File: src/app/extra.css */\n.a { color: red; }\n```"
        )
        parsed = parse_generated_files(text)

        assert isinstance(parsed, FilesOk)
        assert parsed.files == {
            "src/components/Header.tsx": "export const Header = () => null;\n",
            "src/app/extra.css": ".a { color: red; }\n",
        }

    def test_file_tags(self):
        parsed = parse_generated_files('<file path="src/app/page.tsx">\nexport default 1;\n</file>')
        assert parsed.files == {"src/app/page.tsx": "export default 1;\n"}

    def test_json_files(self):
        parsed = parse_generated_files('{"files": {"package.json": {"name": "x"}}}')
        assert parsed.files == {"package.json": '{\n  "name": "x"\n}'}

    def test_json_without_files(self):
        parsed = parse_generated_files('{"summary": "oops"}')
        assert isinstance(parsed, ParseError)
        assert parsed.reason == "JSON has no usable 'files'"


class TestParseFixResponse:
    """Tests for fixer responses"""

    def test_normalizes_entries(self):
        parsed = parse_fix_response(
            '{"files": [{"path": "./src/a.tsx", "content": "x"}, {"path": ""}, "junk"], "summary": null}'
        )
        assert parsed.data == {
            "files": [{"path": "src/a.tsx", "content": "x", "description": "LLM fix"}],
            "summary": "",
        }

    def test_dict_shaped_files(self):
        parsed = parse_fix_response('{"files": {"src/a.tsx": "x"}, "summary": "ok"}')
        assert parsed.data["files"][0]["path"] == "src/a.tsx"

    def test_entries_without_content_dropped(self):
        parsed = parse_fix_response(
            '{"files": [{"path": "src/a.tsx", "description": "fixed"}, {"path": "src/b.tsx", "content": null}]}'
        )
        assert parsed.data["files"] == []

    def test_dict_shaped_null_content_dropped(self):
        parsed = parse_fix_response('{"files": {"src/a.tsx": null, "src/b.tsx": ""}}')
        assert [f["path"] for f in parsed.data["files"]] == ["src/b.tsx"]

    def test_missing_files_key_gives_empty_list(self):
        assert parse_fix_response('{"summary": "no changes"}').data["files"] == []
