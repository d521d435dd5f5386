"""
Tests for the `gateway` operator CLI (keys, allowlists, filters, consent,
history, daemon status).
"""

import os
from unittest.mock import patch

import httpx
import pytest

from commgate import cli
from commgate.config import settings
from commgate.services import allowlist, consent, content_filter, key_store, queue_store


def run(capsys, *argv):
    code = cli.main(list(argv))
    out, err = capsys.readouterr()
    return code, out, err


class TestKeys:
    def test_add_prints_raw_key_once(self, capsys):
        code, out, _ = run(capsys, "keys", "add", "mail-bot", "--per-hour", "5")
        assert code == 0
        raw = next(line.strip() for line in out.splitlines() if line.strip().startswith("gw_") and len(line.strip()) == 51)
        record = key_store.authenticate(raw)
        assert record.name == "mail-bot"
        assert record.rate_limit_per_hour == 5
        assert record.rate_limit_per_day == 50

    def test_list(self, capsys):
        _, record = key_store.create_key("lister")
        code, out, _ = run(capsys, "keys", "list")
        assert code == 0
        assert record.key_prefix in out
        assert "active" in out

    def test_list_empty(self, capsys):
        assert run(capsys, "keys", "list")[1].strip() == "No keys."

    def test_revoke_by_prefix(self, capsys):
        raw, record = key_store.create_key("doomed")
        code, out, _ = run(capsys, "keys", "revoke", record.key_prefix)
        assert code == 0
        assert "Revoked" in out
        assert key_store.get_key(record.id).is_revoked

    def test_revoke_unknown_key(self, capsys):
        code, _, err = run(capsys, "keys", "revoke", "gw_ffffffff")
        assert code == 1
        assert "No key matching" in err

    def test_limits(self, capsys):
        _, record = key_store.create_key("limited")
        code, out, _ = run(capsys, "keys", "limits", record.id[:8], "--per-day", "7")
        assert code == 0
        assert key_store.get_key(record.id).rate_limit_per_day == 7

    def test_webhook_set_show_remove(self, capsys):
        _, record = key_store.create_key("hooked")
        run(capsys, "keys", "webhook", record.key_prefix, "https://agent.local/hook")
        assert key_store.get_key(record.id).webhook_url == "https://agent.local/hook"

        _, out, _ = run(capsys, "keys", "webhook", record.key_prefix)
        assert "https://agent.local/hook" in out

        run(capsys, "keys", "webhook", record.key_prefix, "--remove")
        assert key_store.get_key(record.id).webhook_url is None

    def test_webhook_bad_url(self, capsys):
        _, record = key_store.create_key("hooked")
        code, _, err = run(capsys, "keys", "webhook", record.key_prefix, "agent.local")
        assert code == 1
        assert "http" in err


class TestAllowlist:
    def test_set_adds_one_pattern_each_time(self, capsys):
        _, record = key_store.create_key("scoped")
        prefix = record.key_prefix

        assert run(capsys, "keys", "allowlist", "set", prefix, "a@x.com")[0] == 0
        assert run(capsys, "keys", "allowlist", "set", prefix, "b@y.com")[0] == 0
        assert allowlist.list_patterns(record.id) == ["a@x.com", "b@y.com"]

        _, out, _ = run(capsys, "keys", "allowlist", "set", prefix, "a@x.com")
        assert "Already present: a@x.com" in out
        assert allowlist.list_patterns(record.id) == ["a@x.com", "b@y.com"]

    def test_set_requires_a_pattern(self, capsys):
        _, record = key_store.create_key("scoped")
        allowlist.add_pattern(record.id, "a@x.com")
        with pytest.raises(SystemExit):
            cli.main(["keys", "allowlist", "set", record.key_prefix])
        assert allowlist.list_patterns(record.id) == ["a@x.com"]

    def test_add_list_remove(self, capsys):
        _, record = key_store.create_key("scoped")
        prefix = record.key_prefix
        run(capsys, "keys", "allowlist", "set", prefix, "*@corp.io")

        _, out, _ = run(capsys, "keys", "allowlist", "add", prefix, "*@corp.io", "ceo@other.io")
        assert "Already present: *@corp.io" in out
        assert "Added: ceo@other.io" in out

        _, out, _ = run(capsys, "keys", "allowlist", "list", prefix)
        assert out.split() == ["*@corp.io", "ceo@other.io"]

        assert run(capsys, "keys", "allowlist", "remove", prefix, "ceo@other.io")[0] == 0
        assert run(capsys, "keys", "allowlist", "remove", prefix, "ceo@other.io")[0] == 1

    def test_replace(self, capsys):
        _, record = key_store.create_key("scoped")
        allowlist.add_pattern(record.id, "old@corp.io")
        code, _, _ = run(capsys, "keys", "allowlist", "replace", record.key_prefix, "*@corp.io", "+15551234567")
        assert code == 0
        assert allowlist.list_patterns(record.id) == ["*@corp.io", "+15551234567"]

    def test_replace_requires_patterns(self, capsys):
        _, record = key_store.create_key("scoped")
        with pytest.raises(SystemExit):
            cli.main(["keys", "allowlist", "replace", record.key_prefix])

    def test_clear_is_explicit(self, capsys):
        _, record = key_store.create_key("scoped")
        allowlist.add_pattern(record.id, "a@b.io")
        _, out, _ = run(capsys, "keys", "allowlist", "clear", record.key_prefix)
        assert "unrestricted" in out
        assert allowlist.list_patterns(record.id) == []

    def test_invalid_pattern(self, capsys):
        _, record = key_store.create_key("scoped")
        code, _, err = run(capsys, "keys", "allowlist", "add", record.key_prefix, "a*b@x.io")
        assert code == 1
        assert "Wildcards" in err


class TestFilters:
    def test_list_shows_defaults(self, capsys):
        _, out, _ = run(capsys, "filters", "list")
        assert "Social Security Number" in out
        assert "flag" in out

    def test_add_disable_enable_remove(self, capsys):
        code, out, _ = run(capsys, "filters", "add", "wire transfer", "--literal", "--action", "flag",
                           "--description", "money movement")
        assert code == 0
        row = next(r for r in content_filter.list_filters() if r.description == "money movement")
        assert (row.pattern_type, row.action) == ("literal", "flag")

        run(capsys, "filters", "disable", str(row.id))
        assert not next(r for r in content_filter.list_filters() if r.id == row.id).enabled
        run(capsys, "filters", "enable", str(row.id))
        assert next(r for r in content_filter.list_filters() if r.id == row.id).enabled

        assert run(capsys, "filters", "remove", str(row.id))[0] == 0
        assert run(capsys, "filters", "remove", str(row.id))[0] == 1

    def test_add_invalid_regex(self, capsys):
        code, _, err = run(capsys, "filters", "add", "([unclosed")
        assert code == 1
        assert "Invalid regex" in err


class TestConsent:
    def test_deny_allow_list(self, capsys):
        run(capsys, "consent", "deny", "Alice@Example.com")
        assert not consent.SqlConsentLookup().is_contact_allowed("alice@example.com")

        _, out, _ = run(capsys, "consent", "list")
        assert "alice@example.com" in out
        assert "denied" in out

        run(capsys, "consent", "allow", "alice@example.com")
        assert consent.SqlConsentLookup().is_contact_allowed("ALICE@example.com")

    def test_list_empty(self, capsys):
        assert "all contacts allowed" in run(capsys, "consent", "list")[1]


class TestHistoryAndStatus:
    def test_history_filters(self, capsys):
        _, a = key_store.create_key("alpha-agent")
        _, b = key_store.create_key("beta-agent")
        kept = queue_store.insert_entry(
            key_id=a.id, channel="sms", recipient_address="+15551234567", body="x", status="pending",
        )
        queue_store.insert_entry(
            key_id=b.id, channel="sms", recipient_address="+15557654321", body="y", status="pending",
        )
        queue_store.claim(kept.id, "denied")

        _, out, _ = run(capsys, "history", "--agent", "alpha")
        assert "+15551234567" in out
        assert "+15557654321" not in out

        _, out, _ = run(capsys, "history", "--status", "pending")
        assert "+15557654321" in out
        assert "+15551234567" not in out

    def test_history_empty(self, capsys):
        assert run(capsys, "history")[1].strip() == "No messages."

    def test_status_when_stopped(self, capsys):
        code, out, _ = run(capsys, "status")
        assert code == 1
        assert "stopped" in out

    def test_stop_when_not_running(self, capsys):
        code, out, _ = run(capsys, "stop")
        assert code == 1
        assert "not running" in out

    def test_status_probes_recorded_port(self, capsys):
        settings.pid_file.parent.mkdir(parents=True, exist_ok=True)
        settings.pid_file.write_text(f"{os.getpid()}\n127.0.0.1:9911\n")
        response = httpx.Response(
            200,
            json={"success": True, "data": {"uptime_secs": 5, "pending_count": 4}},
            request=httpx.Request("GET", "http://127.0.0.1:9911/gateway/health"),
        )
        try:
            with patch("commgate.daemon.httpx.get", return_value=response) as get:
                code, out, _ = run(capsys, "status")
        finally:
            settings.pid_file.unlink()
        assert code == 0
        assert get.call_args[0][0] == "http://127.0.0.1:9911/gateway/health"
        assert "Pending: 4" in out


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    def test_unknown_history_status(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["history", "--status", "lost"])
