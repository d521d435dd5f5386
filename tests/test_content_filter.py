"""
Tests for content filters: compilation, evaluation order, hot reload and CRUD.
"""

import pytest

from commgate.models.content_filter import ContentFilter
from commgate.services.content_filter import (
    DEFAULT_FILTERS,
    ContentFilterMatcher,
    add_filter,
    compile_filters,
    list_filters,
    remove_filter,
    seed_default_filters,
    set_filter_enabled,
)


def _row(id, pattern, pattern_type="regex", action="deny", description=None, enabled=True):
    return ContentFilter(
        id=id, pattern=pattern, pattern_type=pattern_type, action=action,
        description=description, enabled=enabled,
    )


# ---------------------------------------------------------------------------
# Compilation and evaluation
# ---------------------------------------------------------------------------

class TestEvaluation:
    def test_no_rules_no_match(self):
        assert compile_filters([]).evaluate(["anything"]) is None

    def test_regex_case_insensitive(self):
        fs = compile_filters([_row(1, r"\bwire\s+money\b")])
        match = fs.evaluate(["Please WIRE   Money today"])
        assert match is not None and match.is_deny

    def test_literal_case_insensitive_substring(self):
        fs = compile_filters([_row(1, "Password", pattern_type="literal", action="flag")])
        match = fs.evaluate(["your PASSWORD reset"])
        assert match is not None
        assert match.action == "flag"

    def test_deny_beats_flag_regardless_of_order(self):
        fs = compile_filters([
            _row(1, "hello", pattern_type="literal", action="flag", description="greeting"),
            _row(2, "secret plan", pattern_type="literal", action="deny", description="plans"),
        ])
        match = fs.evaluate(["hello", "the secret plan"])
        assert match.is_deny
        assert match.name == "plans"

    def test_deny_checked_against_every_text_before_flags(self):
        fs = compile_filters([
            _row(1, "subject-word", pattern_type="literal", action="flag"),
            _row(2, "body-word", pattern_type="literal", action="deny"),
        ])
        match = fs.evaluate(["subject-word", "body-word"])
        assert match.is_deny

    def test_first_matching_deny_wins(self):
        fs = compile_filters([
            _row(1, "abc", pattern_type="literal", description="first"),
            _row(2, "abc", pattern_type="literal", description="second"),
        ])
        assert fs.evaluate(["abc"]).name == "first"

    def test_invalid_regex_skipped(self):
        fs = compile_filters([_row(1, "(unclosed"), _row(2, "ok", pattern_type="literal")])
        assert fs.skipped == 1
        assert len(fs) == 1
        assert fs.evaluate(["ok"]).filter_id == 2

    def test_disabled_rules_ignored(self):
        fs = compile_filters([_row(1, "blocked", pattern_type="literal", enabled=False)])
        assert fs.evaluate(["blocked"]) is None

    def test_name_falls_back_to_id(self):
        fs = compile_filters([_row(7, "x", pattern_type="literal")])
        assert fs.evaluate(["x"]).name == "filter-7"


class TestDefaultRules:
    @pytest.fixture
    def matcher(self):
        return ContentFilterMatcher.from_database()

    def test_defaults_seeded(self):
        assert len(list_filters()) == len(DEFAULT_FILTERS)

    def test_ssn_denied(self, matcher):
        match = matcher.check(None, "my ssn is 123-45-6789")
        assert match.is_deny
        assert match.name == "Social Security Number"

    def test_credit_card_denied(self, matcher):
        assert matcher.check(None, "card 4111 1111 1111 1111").is_deny

    def test_api_key_assignment_denied(self, matcher):
        assert matcher.check(None, "use api_key=abc123").is_deny

    def test_password_flagged(self, matcher):
        match = matcher.check("Password reset", "click the link")
        assert match.action == "flag"

    def test_clean_text_passes(self, matcher):
        assert matcher.check("Lunch", "See you at noon.") is None

    def test_seed_is_noop_when_rules_exist(self):
        assert seed_default_filters() == 0


# ---------------------------------------------------------------------------
# Reload and CRUD
# ---------------------------------------------------------------------------

class TestReloadAndCrud:
    def test_new_rule_applies_only_after_reload(self):
        matcher = ContentFilterMatcher.from_database()
        row = add_filter("crypto giveaway", pattern_type="literal", description="scam")
        assert matcher.check(None, "crypto giveaway inside") is None

        matcher.reload()
        assert matcher.check(None, "crypto giveaway inside").filter_id == row.id

    def test_reload_swaps_whole_set(self):
        matcher = ContentFilterMatcher.from_database()
        old = matcher.current
        matcher.reload()
        assert matcher.current is not old
        assert len(old) == len(matcher.current)

    def test_disable_and_enable(self):
        row = add_filter("zzz", pattern_type="literal")
        assert set_filter_enabled(row.id, False) is True
        assert row.id not in [r.id for r in list_filters(enabled_only=True)]
        assert set_filter_enabled(row.id, True) is True
        assert row.id in [r.id for r in list_filters(enabled_only=True)]

    def test_remove(self):
        row = add_filter("zzz", pattern_type="literal")
        assert remove_filter(row.id) is True
        assert remove_filter(row.id) is False

    def test_unknown_id(self):
        assert set_filter_enabled(99999, False) is False

    @pytest.mark.parametrize("kwargs", [
        {"pattern": ""},
        {"pattern": "(bad"},
        {"pattern": "x", "action": "block"},
        {"pattern": "x", "pattern_type": "glob"},
    ])
    def test_add_validation(self, kwargs):
        with pytest.raises(ValueError):
            add_filter(**kwargs)
