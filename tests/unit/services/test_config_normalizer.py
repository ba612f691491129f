"""
Unit Tests for the Config Normalizer
"""
import json

from forgeloop.services.config_normalizer import (
    POSTCSS_V3,
    REQUIRED_COMPILER_OPTIONS,
    TAILWIND_CONTENT_GLOBS,
    ConfigNormalizer,
)
from forgeloop.services.fixes import FixType

TEMPLATE_LAYOUT = """import type { Metadata } from "next";
import { Geist, Geist_Mono } from "next/font/google";
import "./globals.css";

const geistSans = Geist({
  variable: "--font-geist-sans",
  subsets: ["latin"],
});

const geistMono = Geist_Mono({
  variable: "--font-geist-mono",
  subsets: ["latin"],
});

export default function RootLayout({ children }: { children: React.ReactNode }) {
  return (
    <html lang="en">
      <body className={`${geistSans.variable} ${geistMono.variable} antialiased`}>{children}</body>
    </html>
  );
}
"""

INTER_LAYOUT = """import { Inter } from "next/font/google";

const inter = Inter({ subsets: ["latin"] });

export default function RootLayout({ children }: { children: React.ReactNode }) {
  return (
    <html lang="en">
      <body className={inter.className}>{children}</body>
    </html>
  );
}
"""


def _with_dependencies(project_dir, **dev_dependencies):
    manifest = json.loads((project_dir / "package.json").read_text())
    manifest["devDependencies"] = dev_dependencies
    (project_dir / "package.json").write_text(json.dumps(manifest))


class TestNextConfig:
    """Tests for next.config handling"""

    def test_ensure_creates_default_once(self, project_dir):
        normalizer = ConfigNormalizer()

        fix = normalizer.ensure_next_config(project_dir)

        assert fix.file == "next.config.js"
        assert "module.exports = nextConfig" in (project_dir / "next.config.js").read_text()
        assert normalizer.ensure_next_config(project_dir) is None

    def test_convert_without_export_falls_back_to_default(self, project_dir):
        (project_dir / "next.config.ts").write_text("// empty\n")

        fix = ConfigNormalizer().convert_next_config(project_dir)

        assert fix.type == FixType.CONFIG_EXTENSION
        assert "reactStrictMode: true" in (project_dir / "next.config.js").read_text()


class TestTsconfig:
    """Tests for tsconfig normalization"""

    def test_created_when_missing(self, project_dir):
        normalizer = ConfigNormalizer()

        fix = normalizer.normalize_tsconfig(project_dir)

        data = json.loads((project_dir / "tsconfig.json").read_text())
        assert fix.type == FixType.TSCONFIG
        assert data["compilerOptions"]["paths"] == {"@/*": ["./src/*"]}
        assert normalizer.normalize_tsconfig(project_dir) is None

    def test_existing_options_are_kept(self, project_dir):
        (project_dir / "tsconfig.json").write_text(json.dumps({
            "compilerOptions": {"baseUrl": ".", "strict": False},
        }))

        ConfigNormalizer().normalize_tsconfig(project_dir)

        options = json.loads((project_dir / "tsconfig.json").read_text())["compilerOptions"]
        assert options["baseUrl"] == "."
        assert options["strict"] is REQUIRED_COMPILER_OPTIONS["strict"]

    def test_unparseable_tsconfig_left_alone(self, project_dir):
        (project_dir / "tsconfig.json").write_text("{ // comment\n}")

        assert ConfigNormalizer().normalize_tsconfig(project_dir) is None
        assert (project_dir / "tsconfig.json").read_text() == "{ // comment\n}"

    def test_null_compiler_options_replaced(self, project_dir):
        (project_dir / "tsconfig.json").write_text(json.dumps({"compilerOptions": None}))

        fix = ConfigNormalizer().normalize_tsconfig(project_dir)

        options = json.loads((project_dir / "tsconfig.json").read_text())["compilerOptions"]
        assert fix.type == FixType.TSCONFIG
        assert options["paths"] == {"@/*": ["./src/*"]}


class TestTailwind:
    """Tests for Tailwind detection and PostCSS / content config"""

    def test_major_from_installed_package(self, project_dir):
        installed = project_dir / "node_modules" / "tailwindcss"
        installed.mkdir()
        (installed / "package.json").write_text(json.dumps({"version": "4.0.7"}))
        _with_dependencies(project_dir, tailwindcss="^3.4.1")

        assert ConfigNormalizer().detect_tailwind_major(project_dir) == 4

    def test_major_from_declared_range(self, project_dir):
        _with_dependencies(project_dir, tailwindcss="^3.4.1")
        assert ConfigNormalizer().detect_tailwind_major(project_dir) == 3

    def test_major_default(self, tmp_path):
        assert ConfigNormalizer().detect_tailwind_major(tmp_path) == 3

    def test_null_dependency_sections(self, project_dir):
        (project_dir / "package.json").write_text(json.dumps({"dependencies": None, "devDependencies": None}))
        normalizer = ConfigNormalizer()

        assert normalizer.detect_tailwind_major(project_dir) == 3
        assert normalizer.uses_tailwind(project_dir) is False

    def test_configure_postcss_v3(self, project_dir):
        _with_dependencies(project_dir, tailwindcss="^3.4.1")

        fix, to_install = ConfigNormalizer().configure_postcss(project_dir)

        assert fix.file == "postcss.config.js"
        assert (project_dir / "postcss.config.js").read_text() == POSTCSS_V3
        assert to_install == ["autoprefixer"]

    def test_tailwind_config_created(self, project_dir):
        _with_dependencies(project_dir, tailwindcss="^3.4.1")
        normalizer = ConfigNormalizer()

        fix = normalizer.ensure_tailwind_content(project_dir)

        assert fix.description == "Created tailwind.config.js"
        assert normalizer.ensure_tailwind_content(project_dir) is None

    def test_tailwind_content_updated(self, project_dir):
        _with_dependencies(project_dir, tailwindcss="^3.4.1")
        (project_dir / "tailwind.config.js").write_text(
            "module.exports = {\n  content: ['./pages/**/*.js'],\n  theme: {},\n};\n"
        )

        fix = ConfigNormalizer().ensure_tailwind_content(project_dir)

        content = (project_dir / "tailwind.config.js").read_text()
        assert fix.description == "Updated Tailwind content paths"
        assert all(glob in content for glob in TAILWIND_CONTENT_GLOBS)
        assert "./pages/**/*.js" not in content

    def test_tailwind_v4_needs_no_content(self, project_dir):
        _with_dependencies(project_dir, tailwindcss="^4.0.0")
        assert ConfigNormalizer().ensure_tailwind_content(project_dir) is None


class TestStripGoogleFonts:
    """Tests for layout font removal"""

    def test_template_class_names(self, project_dir):
        layout = project_dir / "src" / "app" / "layout.tsx"
        layout.write_text(TEMPLATE_LAYOUT)

        fix = ConfigNormalizer().strip_google_fonts(project_dir)

        content = layout.read_text()
        assert fix.type == FixType.LAYOUT
        assert "next/font/google" not in content
        assert "geistSans" not in content
        assert '<body className="antialiased">' in content
        assert 'import "./globals.css";' in content

    def test_direct_class_name(self, project_dir):
        layout = project_dir / "src" / "app" / "layout.tsx"
        layout.write_text(INTER_LAYOUT)

        ConfigNormalizer().strip_google_fonts(project_dir)

        content = layout.read_text()
        assert "Inter" not in content
        assert "inter." not in content
        assert "<body>{children}</body>" in content

    def test_layout_without_fonts(self, project_dir):
        (project_dir / "src" / "app" / "layout.tsx").write_text("export default function L() { return null; }\n")
        assert ConfigNormalizer().strip_google_fonts(project_dir) is None


class TestNormalizeAll:
    """Tests for the combined normalization pass"""

    def test_second_pass_changes_nothing(self, project_dir):
        normalizer = ConfigNormalizer()

        fixes, to_install = normalizer.normalize_all(project_dir)

        assert {f.type for f in fixes} == {FixType.CONFIG_EXTENSION, FixType.TSCONFIG}
        assert to_install == []
        assert normalizer.normalize_all(project_dir) == ([], [])

    def test_tailwind_project_gets_postcss(self, project_dir):
        _with_dependencies(project_dir, tailwindcss="^3.4.1", autoprefixer="^10.0.0")

        fixes, to_install = ConfigNormalizer().normalize_all(project_dir)

        assert FixType.POSTCSS_PIPELINE in {f.type for f in fixes}
        assert FixType.STYLE_CONFIG in {f.type for f in fixes}
        assert to_install == []

    def test_undecodable_layout_does_not_stop_other_steps(self, project_dir):
        layout = project_dir / "src" / "app" / "layout.tsx"
        layout.write_bytes(b'import { Inter } from "next/font/google";\n// caf\xe9\n')

        fixes, _ = ConfigNormalizer().normalize_all(project_dir)

        assert FixType.TSCONFIG in {f.type for f in fixes}
        assert layout.read_bytes().endswith(b"caf\xe9\n")
