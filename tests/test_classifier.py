"""Tests for changelens.classifier - per-file categorization and pattern detection."""

from __future__ import annotations

import textwrap
from unittest.mock import patch

import pytest

from changelens.classifier import (
    SNAPSHOT_CHARS,
    analyze_functional_impact,
    analyze_semantics,
    assess_business_relevance,
    categorize_file,
    change_complexity,
    classify_file,
    detect_breaking,
    detect_language,
    determine_change_scope,
    is_unavailable,
    key_diff_lines,
    map_status,
)
from changelens.models import DeploymentImpact, FileCategory, FileStatus
from tests.conftest import make_diff

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _diff(path: str, body: str) -> str:
    """Wrap dedented *body* lines (already carrying +/- signs) in diff headers."""
    return (
        f"diff --git a/{path} b/{path}\n--- a/{path}\n+++ b/{path}\n@@ -1,3 +1,3 @@\n"
        + textwrap.dedent(body)
    )


BINARY_DIFF = "diff --git a/logo.png b/logo.png\nBinary files a/logo.png and b/logo.png differ\n"


# ===========================================================================
# Status, category, language
# ===========================================================================


class TestMapStatus:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("A", FileStatus.added),
            ("M", FileStatus.modified),
            ("D", FileStatus.deleted),
            ("R100", FileStatus.renamed),
            ("C75", FileStatus.copied),
            ("T", FileStatus.type_changed),
            ("X", FileStatus.unknown),
            ("", FileStatus.unknown),
            ("added", FileStatus.added),
        ],
    )
    def test_letters(self, raw: str, expected: FileStatus) -> None:
        assert map_status(raw) is expected

    def test_enum_passthrough(self) -> None:
        assert map_status(FileStatus.deleted) is FileStatus.deleted


class TestCategorizeFile:
    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("src/app.py", FileCategory.source),
            ("web/Button.tsx", FileCategory.source),
            ("tests/test_app.py", FileCategory.test),
            ("src/Button.test.tsx", FileCategory.test),
            ("pkg/server_test.go", FileCategory.test),
            ("db/migrations/001_init.sql", FileCategory.database),
            ("src/migrations/0002_auto.py", FileCategory.database),
            ("schema.prisma", FileCategory.database),
            ("styles/main.scss", FileCategory.style),
            ("config.yaml", FileCategory.config),
            ("package.json", FileCategory.config),
            (".env.example", FileCategory.config),
            ("Dockerfile", FileCategory.config),
            ("README.md", FileCategory.docs),
            ("assets/logo.png", FileCategory.asset),
            ("scripts/deploy.sh", FileCategory.script),
            ("LICENSE", FileCategory.other),
            ("", FileCategory.other),
        ],
    )
    def test_categories(self, path: str, expected: FileCategory) -> None:
        assert categorize_file(path) is expected


class TestDetectLanguage:
    def test_known(self) -> None:
        assert detect_language("src/app.py") == "Python"
        assert detect_language("web/App.tsx") == "TypeScript React"
        assert detect_language("db/001.SQL") == "SQL"

    def test_unknown(self) -> None:
        assert detect_language("Makefile") == "Unknown"
        assert detect_language("") == "Unknown"


# ===========================================================================
# Complexity and scope
# ===========================================================================


class TestChangeComplexity:
    @pytest.mark.parametrize(
        ("added", "expected"),
        [(1, 1), (9, 1), (10, 2), (49, 2), (50, 3), (150, 4), (200, 5), (500, 5)],
    )
    def test_buckets(self, added: int, expected: int) -> None:
        assert change_complexity(make_diff("src/a.py", added)) == expected

    def test_unavailable_is_zero(self) -> None:
        assert change_complexity(None) == 0
        assert change_complexity("") == 0
        assert change_complexity(BINARY_DIFF) == 0


class TestIsUnavailable:
    def test_binary(self) -> None:
        assert is_unavailable(BINARY_DIFF) is True

    def test_textual(self) -> None:
        assert is_unavailable(make_diff("src/a.py", 1)) is False


class TestDetermineChangeScope:
    def test_wide(self) -> None:
        assert determine_change_scope("src/lib/helpers.ts") == "wide"
        assert determine_change_scope("utils/strings.py") == "wide"

    def test_moderate(self) -> None:
        assert determine_change_scope("src/components/Button.tsx") == "moderate"

    def test_local(self) -> None:
        assert determine_change_scope("src/app.py") == "local"


class TestKeyDiffLines:
    def test_picks_meaningful_lines(self) -> None:
        diff = _diff(
            "src/a.py",
            """\
            +x = 1
            +def handle_request(payload):
            -def handle(payload):
             unchanged_context_line = True
            """,
        )
        assert key_diff_lines(diff) == ["def handle_request(payload):", "def handle(payload):"]

    def test_limit(self) -> None:
        diff = make_diff("src/a.py", 20, line="meaningful_value = compute()")
        assert len(key_diff_lines(diff, limit=3)) == 3

    def test_unavailable(self) -> None:
        assert key_diff_lines(None) == []


# ===========================================================================
# Semantic analysis
# ===========================================================================


class TestAnalyzeSemantics:
    def test_database_framework_and_schema_tag(self) -> None:
        diff = _diff("db/migrations/002.sql", "+CREATE TABLE users (id int);\n")
        findings = analyze_semantics(diff, "db/migrations/002.sql")
        assert "Database" in findings.frameworks
        assert "database_schema" in findings.tags

    def test_react_hooks(self) -> None:
        diff = _diff(
            "src/components/Counter.tsx",
            """\
            +export function CounterComponent() {
            +  const [count, setCount] = useState(0);
            +  const inc = useCallback(() => setCount(count + 1), [count]);
            """,
        )
        findings = analyze_semantics(diff, "src/components/Counter.tsx")
        assert "React" in findings.frameworks
        assert {"react_hooks", "performance_optimization", "state_management"} <= findings.tags
        assert "component_definition" in findings.tags
        assert "CounterComponent" in findings.code_elements

    def test_api_endpoints(self) -> None:
        diff = _diff(
            "app/api/users/route.ts",
            """\
            +export async function GET(request) {
            +  return fetch(url);
            +}
            +export async function POST(request) {}
            """,
        )
        findings = analyze_semantics(diff, "app/api/users/route.ts")
        assert "API" in findings.frameworks
        assert findings.api_changes == ("GET endpoint", "POST endpoint")
        assert {"api_endpoint", "async_operations", "data_fetching"} <= findings.tags

    def test_flask_style_routes(self) -> None:
        diff = _diff("api/views.py", "+@app.get('/health')\n+def health():\n")
        findings = analyze_semantics(diff, "api/views.py")
        assert findings.api_changes == ("GET endpoint",)
        assert "function_definition" in findings.tags
        assert "health" in findings.code_elements

    def test_python_patterns(self) -> None:
        diff = _diff(
            "src/service.py",
            """\
            +class TokenCache:
            +    async def refresh(self):
            +        try:
            +            await self.client.get()
            +        except TimeoutError:
            +            raise RuntimeError("refresh failed")
            """,
        )
        findings = analyze_semantics(diff, "src/service.py")
        assert {
            "type_definition",
            "function_definition",
            "error_handling",
            "async_operations",
            "caching",
            "authentication",
        } <= findings.tags
        assert {"TokenCache", "refresh"} <= findings.code_elements

    def test_unavailable_diff_yields_empty(self) -> None:
        findings = analyze_semantics(BINARY_DIFF, "logo.png")
        assert findings.tags == frozenset()
        assert findings.frameworks == frozenset()
        assert findings.api_changes == ()


class TestDetectBreaking:
    def test_drop_table(self) -> None:
        assert detect_breaking(_diff("db/x.sql", "+DROP TABLE legacy;\n")) is True

    def test_alter_drop_column(self) -> None:
        assert detect_breaking(_diff("db/x.sql", "+ALTER TABLE users DROP COLUMN age;\n")) is True

    def test_breaking_marker(self) -> None:
        assert detect_breaking(_diff("CHANGELOG.md", "+BREAKING CHANGE: new config\n")) is True

    def test_removed_export(self) -> None:
        diff = _diff("src/lib/api.ts", "-export function legacyLogin() {}\n")
        assert detect_breaking(diff) is True

    def test_moved_export_is_not_breaking(self) -> None:
        diff = _diff(
            "src/lib/api.ts",
            "-export function login(user) {}\n+export async function login(user, opts) {}\n",
        )
        assert detect_breaking(diff) is False

    def test_ordinary_change(self) -> None:
        assert detect_breaking(make_diff("src/a.py", 3, 2)) is False

    def test_marker_in_context_line_is_ignored(self) -> None:
        diff = _diff(
            "CHANGELOG.md",
            " ## 2.0.0\n BREAKING CHANGE: config format moved\n-Fixd typo\n+Fixed typo\n",
        )
        assert detect_breaking(diff) is False
        impact = analyze_functional_impact(diff, "CHANGELOG.md")
        assert impact.breaking is False
        assert impact.deployment_impact is DeploymentImpact.low

    def test_unavailable(self) -> None:
        assert detect_breaking(None) is False


class TestFunctionalImpact:
    def test_migration_is_high_deployment(self) -> None:
        path = "db/migrations/003_drop.sql"
        impact = analyze_functional_impact(_diff(path, "+DROP TABLE sessions;\n"), path)
        assert impact.breaking is True
        assert impact.data_changes is True
        assert impact.migration_required is True
        assert impact.deployment_impact is DeploymentImpact.high

    def test_api_route_is_medium(self) -> None:
        path = "src/api/users.ts"
        impact = analyze_functional_impact(_diff(path, "+const limit = 10;\n"), path)
        assert impact.api_changes is True
        assert impact.user_facing is True
        assert impact.deployment_impact is DeploymentImpact.medium

    def test_config_is_medium(self) -> None:
        impact = analyze_functional_impact(make_diff("config.yaml", 2), "config.yaml")
        assert impact.deployment_impact is DeploymentImpact.medium

    def test_dependency_manifest_requires_migration(self) -> None:
        impact = analyze_functional_impact(make_diff("package.json", 1), "package.json")
        assert impact.migration_required is True

    def test_security_only_on_changed_lines(self) -> None:
        path = "src/app.py"
        diff = _diff(path, " password_field = None\n+value = 2\n")
        assert analyze_functional_impact(diff, path).security_related is False
        diff = _diff(path, "+password_hash = bcrypt(password)\n")
        assert analyze_functional_impact(diff, path).security_related is True

    def test_performance(self) -> None:
        path = "src/app.py"
        impact = analyze_functional_impact(_diff(path, "+results = cache.get(key)\n"), path)
        assert impact.performance_impact is True

    def test_plain_local_change_is_low(self) -> None:
        impact = analyze_functional_impact(make_diff("tools/fmt.py", 2), "tools/fmt.py")
        assert impact.scope == "local"
        assert impact.deployment_impact is DeploymentImpact.low
        assert impact.user_facing is False

    def test_unavailable_keeps_scope_only(self) -> None:
        impact = analyze_functional_impact(None, "src/lib/x.png")
        assert impact.scope == "wide"
        assert impact.breaking is False
        assert impact.deployment_impact is DeploymentImpact.low


class TestBusinessRelevance:
    def test_high_priority_path(self) -> None:
        relevance = assess_business_relevance("src/billing/plan.ts", make_diff("x", 1))
        assert relevance.priority == "high"
        assert relevance.customer_facing is True

    def test_medium_priority_path(self) -> None:
        relevance = assess_business_relevance("web/app/page.tsx", make_diff("x", 1))
        assert relevance.priority == "medium"

    def test_low_priority_path(self) -> None:
        relevance = assess_business_relevance("tools/fmt.py", make_diff("x", 1))
        assert relevance.priority == "low"
        assert relevance.customer_facing is False

    def test_revenue_indicator(self) -> None:
        diff = _diff("src/x.ts", "+const invoice = createInvoice(order);\n")
        assert assess_business_relevance("src/x.ts", diff).revenue_impact is True


# ===========================================================================
# classify_file
# ===========================================================================


class TestClassifyFile:
    def test_sql_migration(self) -> None:
        path = "db/migrations/002_drop_sessions.sql"
        change = classify_file("A", path, _diff(path, "+DROP TABLE legacy_sessions;\n"))
        assert change.status is FileStatus.added
        assert change.category is FileCategory.database
        assert change.language == "SQL"
        assert change.complexity_score == 1
        assert change.functional_impact.breaking is True
        assert change.functional_impact.migration_required is True
        assert "Database" in change.frameworks

    def test_binary_file(self) -> None:
        change = classify_file("M", "assets/logo.png", BINARY_DIFF)
        assert change.category is FileCategory.asset
        assert change.complexity_score == 0
        assert change.semantic_tags == frozenset()
        assert change.frameworks == frozenset()
        assert change.diff_text is None
        assert change.changed_lines == (0, 0)

    def test_snapshots_are_truncated(self) -> None:
        change = classify_file(
            "M",
            "src/a.py",
            make_diff("src/a.py", 1),
            before="b" * (SNAPSHOT_CHARS + 50),
            after="short",
        )
        assert len(change.before_content) == SNAPSHOT_CHARS
        assert change.after_content == "short"

    def test_changed_lines(self) -> None:
        change = classify_file("M", "src/a.py", make_diff("src/a.py", 4, 3))
        assert change.changed_lines == (4, 3)

    def test_detector_failure_degrades(self) -> None:
        with patch(
            "changelens.classifier.analyze_semantics",
            side_effect=ValueError("boom"),
        ):
            change = classify_file("M", "src/lib/a.py", make_diff("src/lib/a.py", 5))
        assert change.semantic_tags == frozenset()
        assert change.complexity_score == 0
        assert change.functional_impact.scope == "wide"
        assert change.category is FileCategory.source

    def test_sets_serialize_as_sorted_lists(self) -> None:
        diff = _diff("src/service.py", "+async def fetch_all():\n+    await go()\n")
        dumped = classify_file("M", "src/service.py", diff).model_dump(mode="json")
        assert isinstance(dumped["semantic_tags"], list)
        assert dumped["semantic_tags"] == sorted(dumped["semantic_tags"])


class TestClassificationIsDeterministic:
    @pytest.mark.parametrize(
        ("status", "path", "diff"),
        [
            ("A", "db/migrations/004_drop.sql", _diff("db/migrations/004_drop.sql", "+DROP TABLE t;\n")),
            (
                "M",
                "src/components/Login.tsx",
                _diff(
                    "src/components/Login.tsx",
                    "+import { useState } from 'react';\n+export function Login() {}\n",
                ),
            ),
            (
                "M",
                "app/routes.py",
                _diff("app/routes.py", "+@app.route('/users', methods=['POST'])\n+def create(): ...\n"),
            ),
            ("M", "config/settings.yaml", make_diff("config/settings.yaml", 4, 1)),
            ("A", "assets/logo.png", BINARY_DIFF),
            ("D", "src/old.py", None),
        ],
    )
    def test_same_input_same_output(self, status: str, path: str, diff: str | None) -> None:
        first = classify_file(status, path, diff, before="x = 1\n", after="x = 2\n")
        second = classify_file(status, path, diff, before="x = 1\n", after="x = 2\n")
        assert first == second
        assert first.model_dump(mode="json") == second.model_dump(mode="json")
