"""Tests for changelens.parser: conventional types, scopes, breaking flags and log parsing."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from changelens.models import ConventionalType
from changelens.parser import (
    FIELD_SEP,
    LOG_FORMAT,
    RECORD_SEP,
    extract_scope,
    extract_type,
    infer_type,
    is_breaking,
    parse_git_date,
    parse_log,
    validate_subject,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _raw_record(
    commit_hash: str = "a" * 40,
    message: str = "feat: add widget\n",
    name: str = "Ada Lovelace",
    email: str = "ada@example.com",
    date: str = "2026-01-15T10:00:00+00:00",
) -> str:
    fields = [commit_hash, commit_hash[:7], name, email, date, date, message]
    return RECORD_SEP + FIELD_SEP.join(fields) + "\n"


# ===========================================================================
# Type extraction
# ===========================================================================


class TestExtractType:
    @pytest.mark.parametrize(
        ("subject", "expected"),
        [
            ("feat: add login", ConventionalType.feat),
            ("fix(api): handle null", ConventionalType.fix),
            ("docs: update readme", ConventionalType.docs),
            ("perf!: faster parsing", ConventionalType.perf),
            ("security: rotate keys", ConventionalType.security),
            ("FEAT: shouting works too", ConventionalType.feat),
        ],
    )
    def test_conventional_prefixes(self, subject: str, expected: ConventionalType) -> None:
        assert extract_type(subject) is expected

    @pytest.mark.parametrize(
        ("subject", "expected"),
        [
            ("revert: undo widget", ConventionalType.chore),
            ("deps: bump pydantic", ConventionalType.build),
            ("ui: new button", ConventionalType.feat),
            ("api: new endpoint", ConventionalType.feat),
            ("db: add index", ConventionalType.chore),
            ("wip: halfway there", ConventionalType.chore),
            ("breaking: remove v1", ConventionalType.other),
        ],
    )
    def test_aliases(self, subject: str, expected: ConventionalType) -> None:
        assert extract_type(subject) is expected

    def test_unknown_prefix_falls_back_to_inference(self) -> None:
        assert extract_type("oops: fix the thing") is ConventionalType.fix

    def test_empty_subject(self) -> None:
        assert extract_type("") is ConventionalType.other


class TestInferType:
    @pytest.mark.parametrize(
        ("subject", "expected"),
        [
            ("Add export button", ConventionalType.feat),
            ("Resolve crash on startup", ConventionalType.fix),
            ("Upgrade dependencies", ConventionalType.refactor),
            ("Delete unused assets", ConventionalType.chore),
            ("Document the CLI", ConventionalType.docs),
            ("Optimize hot loop", ConventionalType.perf),
            ("Patch vulnerability in parser", ConventionalType.security),
            ("Tweak settings page", ConventionalType.config),
            ("Prepare release 2.0", ConventionalType.build),
            ("Bump ci workflow", ConventionalType.ci),
            ("Miscellaneous", ConventionalType.other),
        ],
    )
    def test_inference_table(self, subject: str, expected: ConventionalType) -> None:
        assert infer_type(subject) is expected

    def test_first_matching_row_wins(self) -> None:
        # "add" (feat) is listed before "fix"
        assert infer_type("Add fix for login") is ConventionalType.feat


# ===========================================================================
# Scope and breaking flag
# ===========================================================================


class TestExtractScope:
    def test_scope_present(self) -> None:
        assert extract_scope("feat(auth): add login") == "auth"

    def test_scope_with_bang(self) -> None:
        assert extract_scope("fix(db)!: drop table") == "db"

    def test_no_scope(self) -> None:
        assert extract_scope("feat: add login") is None

    def test_empty_scope(self) -> None:
        assert extract_scope("feat(): add login") is None

    def test_not_conventional(self) -> None:
        assert extract_scope("Add login (auth)") is None


class TestIsBreaking:
    def test_bang_in_subject(self) -> None:
        assert is_breaking("feat!: remove v1 API") is True

    def test_bang_with_scope(self) -> None:
        assert is_breaking("feat(api)!: remove v1") is True

    def test_breaking_change_in_body(self) -> None:
        assert is_breaking("feat: new auth", "BREAKING CHANGE: tokens expire") is True

    def test_breaking_dash_change(self) -> None:
        assert is_breaking("feat: new auth", "BREAKING-CHANGE: tokens expire") is True

    def test_case_insensitive(self) -> None:
        assert is_breaking("feat: new auth", "breaking change: tokens expire") is True

    def test_plain_commit(self) -> None:
        assert is_breaking("feat: add login", "Adds a login form.") is False


class TestValidateSubject:
    @pytest.mark.parametrize(
        "subject",
        ["feat: add login", "fix(auth)!: drop v1 tokens", "revert: undo cache change"],
    )
    def test_valid(self, subject: str) -> None:
        assert validate_subject(subject) == []

    @pytest.mark.parametrize(
        "subject",
        ["Add login", "feature: add login", "fix:missing space", "fix(): empty scope", ""],
    )
    def test_not_conventional(self, subject: str) -> None:
        issues = validate_subject(subject)
        assert len(issues) == 1
        assert "conventional commit format" in issues[0]

    def test_too_long(self) -> None:
        subject = "feat: " + "x" * 67
        assert len(subject) == 73
        assert validate_subject(subject) == ["Subject line too long (max 72 characters)"]

    def test_exactly_72_is_fine(self) -> None:
        assert validate_subject("feat: " + "x" * 66) == []

    def test_both_problems(self) -> None:
        assert len(validate_subject("y" * 80)) == 2


class TestParseGitDate:
    def test_iso_with_offset(self) -> None:
        parsed = parse_git_date("2026-01-15T10:00:00+02:00")
        assert parsed == datetime(2026, 1, 15, 10, 0, tzinfo=timezone(timedelta(hours=2)))

    def test_garbage_falls_back_to_now(self) -> None:
        before = datetime.now(tz=UTC)
        parsed = parse_git_date("not a date")
        assert parsed >= before


# ===========================================================================
# parse_log
# ===========================================================================


class TestParseLog:
    def test_format_uses_separators(self) -> None:
        assert FIELD_SEP in LOG_FORMAT
        assert "%B" in LOG_FORMAT

    def test_empty_input(self) -> None:
        assert parse_log("") == []
        assert parse_log("   \n") == []

    def test_single_record(self) -> None:
        records = parse_log(_raw_record())
        assert len(records) == 1
        record = records[0]
        assert record.hash == "a" * 40
        assert record.short_hash == "aaaaaaa"
        assert record.author.name == "Ada Lovelace"
        assert record.author.email == "ada@example.com"
        assert record.subject == "feat: add widget"
        assert record.conventional_type is ConventionalType.feat
        assert record.author_date.tzinfo is not None

    def test_multiline_body_survives(self) -> None:
        message = "feat(api)!: remove v1 API\n\nFirst paragraph.\n\nBREAKING CHANGE: v1 is gone\n"
        record = parse_log(_raw_record(message=message))[0]
        assert record.subject == "feat(api)!: remove v1 API"
        assert "First paragraph." in record.body
        assert "BREAKING CHANGE: v1 is gone" in record.body
        assert record.scope == "api"
        assert record.breaking is True

    def test_breaking_from_body_only(self) -> None:
        message = "feat: new auth\n\nBREAKING CHANGE: tokens expire\n"
        record = parse_log(_raw_record(message=message))[0]
        assert record.conventional_type is ConventionalType.feat
        assert record.breaking is True

    def test_records_keep_input_order(self) -> None:
        raw = (
            _raw_record("1" * 40, "feat: first\n")
            + _raw_record("2" * 40, "fix: second\n")
            + _raw_record("3" * 40, "docs: third\n")
        )
        subjects = [r.subject for r in parse_log(raw)]
        assert subjects == ["feat: first", "fix: second", "docs: third"]

    def test_reverse(self) -> None:
        raw = _raw_record("1" * 40, "feat: first\n") + _raw_record("2" * 40, "fix: second\n")
        subjects = [r.subject for r in parse_log(raw, reverse=True)]
        assert subjects == ["fix: second", "feat: first"]

    def test_malformed_record_is_skipped(self) -> None:
        raw = (
            _raw_record("1" * 40, "feat: first\n")
            + RECORD_SEP
            + "only" + FIELD_SEP + "two fields\n"
            + _raw_record("2" * 40, "fix: second\n")
        )
        records = parse_log(raw)
        assert [r.hash for r in records] == ["1" * 40, "2" * 40]

    def test_record_without_hash_is_skipped(self) -> None:
        raw = _raw_record("", "feat: nameless\n") + _raw_record("2" * 40, "fix: second\n")
        records = parse_log(raw)
        assert [r.hash for r in records] == ["2" * 40]

    def test_message_containing_separator_text_is_kept(self) -> None:
        # The raw message is the last field, so extra separators stay in the body.
        message = f"feat: odd\n\nbody mentions {FIELD_SEP} literally\n"
        record = parse_log(_raw_record(message=message))[0]
        assert FIELD_SEP in record.body

    def test_unconventional_subject_is_inferred(self) -> None:
        record = parse_log(_raw_record(message="Fix crash in parser\n"))[0]
        assert record.conventional_type is ConventionalType.fix
        assert record.scope is None
        assert record.breaking is False
