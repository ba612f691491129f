"""
Unit Tests for the Change-Impact Classifier
"""
from forgeloop.services.change_impact import (
    COMPLEX_CONFIDENCE,
    MODERATE_CONFIDENCE,
    ChangeImpactClassifier,
    FileChange,
    diff_snapshots,
)

PAGE = """export default function Home() {
  return <main>Hello</main>;
}
"""


def _edit(path, old, new):
    return FileChange(path=path, old_content=old, new_content=new)


class TestFileChange:
    """Tests for per-file change metrics"""

    def test_lines_changed_counts_adds_and_removes(self):
        change = _edit("src/app/page.tsx", PAGE, PAGE.replace("Hello", "Hi"))
        assert change.lines_changed == 2

    def test_new_file(self):
        change = FileChange(path="src/a.tsx", old_content=None, new_content="a\nb\n")
        assert change.is_new
        assert change.lines_changed == 2
        assert "new file src/a.tsx" in change.signals()

    def test_removed_hook_is_not_a_signal(self):
        old = "const [a] = useState(0);\nconst b = 1;\n"
        assert _edit("src/a.tsx", old, "const b = 1;\n").signals() == []


class TestClassify:
    """Tests for ChangeImpactClassifier.classify"""

    def test_no_changes(self):
        impact = ChangeImpactClassifier.classify([_edit("src/a.tsx", PAGE, PAGE)])

        assert impact.needs_rebuild is False
        assert impact.confidence == 1.0
        assert impact.should_skip_validation is True

    def test_small_text_edit_skips_validation(self):
        """Test a one-line copy change relies on hot reload"""
        impact = ChangeImpactClassifier.classify([_edit("src/app/page.tsx", PAGE, PAGE.replace("Hello", "Hi"))])

        assert impact.needs_rebuild is False
        assert impact.should_skip_validation is True
        assert impact.files_changed == 1
        assert impact.lines_changed == 2

    def test_new_hook_forces_rebuild(self):
        new = PAGE.replace("  return", "  const [open, setOpen] = useState(false);\n  return")
        impact = ChangeImpactClassifier.classify([_edit("src/app/page.tsx", PAGE, new)])

        assert impact.needs_rebuild is True
        assert impact.reasons == ["new hook call in src/app/page.tsx"]

    def test_new_handler_forces_rebuild(self):
        old = "<button>Go</button>\n"
        new = "<button onClick={go}>Go</button>\n"
        impact = ChangeImpactClassifier.classify([_edit("src/components/B.tsx", old, new)])

        assert impact.needs_rebuild is True
        assert "new event handler in src/components/B.tsx" in impact.reasons

    def test_new_export_forces_rebuild(self):
        new = PAGE + "export const metadata = { title: 'x' };\n"
        impact = ChangeImpactClassifier.classify([_edit("src/app/page.tsx", PAGE, new)])
        assert "new export in src/app/page.tsx" in impact.reasons

    def test_manifest_change_forces_rebuild(self):
        impact = ChangeImpactClassifier.classify([
            _edit("package.json", '{"dependencies": {}}', '{"dependencies": {"zod": "^3.0.0"}}')
        ])
        assert impact.reasons == ["package.json changed"]

    def test_many_files_is_complex(self):
        changes = [_edit(f"src/c{i}.tsx", "a\n", "b\n") for i in range(3)]
        impact = ChangeImpactClassifier.classify(changes)

        assert impact.needs_rebuild is True
        assert impact.confidence == COMPLEX_CONFIDENCE

    def test_many_lines_is_complex(self):
        old = "\n".join(f"<p>{i}</p>" for i in range(120))
        new = "\n".join(f"<li>{i}</li>" for i in range(120))
        impact = ChangeImpactClassifier.classify([_edit("src/app/page.tsx", old, new)])

        assert impact.confidence == COMPLEX_CONFIDENCE
        assert impact.lines_changed == 240

    def test_moderate_change_rebuilds_with_low_confidence(self):
        old = "\n".join(f"<p>line {i}</p>" for i in range(15))
        new = "\n".join(f"<p>row {i}</p>" for i in range(15))
        impact = ChangeImpactClassifier.classify([_edit("src/app/page.tsx", old, new)])

        assert impact.needs_rebuild is True
        assert impact.confidence == MODERATE_CONFIDENCE
        assert impact.should_skip_validation is False
        assert impact.to_dict()["skip_validation"] is False


class TestDiffSnapshots:
    """Tests for snapshot diffing"""

    def test_only_changed_and_new_paths(self):
        before = {"src/a.tsx": "a", "src/b.tsx": "b"}
        after = {"src/a.tsx": "a", "src/b.tsx": "B", "src/c.tsx": "c"}

        changes = diff_snapshots(before, after)

        assert [(c.path, c.is_new) for c in changes] == [("src/b.tsx", False), ("src/c.tsx", True)]
