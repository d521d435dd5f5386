"""
Tests for the gateway key store: generation, hashing, authentication,
revocation and administrative lookups.
"""

import pytest

from commgate.core.errors import AuthError
from commgate.services import key_store
from commgate.services.key_store import (
    KEY_DISPLAY_LENGTH,
    KeyStoreError,
    authenticate,
    create_key,
    generate_key,
    hash_key,
    is_valid_key_format,
    list_keys,
    resolve_key,
    revoke_key,
    set_rate_limits,
    set_webhook,
)


# ---------------------------------------------------------------------------
# Format
# ---------------------------------------------------------------------------

class TestKeyFormat:
    def test_generated_key_shape(self):
        raw = generate_key()
        assert raw.startswith("gw_")
        assert len(raw) == 51
        assert is_valid_key_format(raw)

    def test_generated_keys_are_unique(self):
        assert len({generate_key() for _ in range(20)}) == 20

    @pytest.mark.parametrize("candidate", [
        "",
        "gw_",
        "gw_" + "a" * 47,
        "gw_" + "a" * 49,
        "gw_" + "A" * 48,
        "xx_" + "a" * 48,
        "gw_" + "g" * 48,
    ])
    def test_rejects_malformed(self, candidate):
        assert not is_valid_key_format(candidate)

    def test_not_a_string(self):
        assert not is_valid_key_format(12345)  # type: ignore[arg-type]

    def test_hash_is_deterministic_and_not_raw(self):
        raw = generate_key()
        assert hash_key(raw) == hash_key(raw)
        assert raw not in hash_key(raw)
        assert len(hash_key(raw)) == 64


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class TestCreateAndAuthenticate:
    def test_create_stores_hash_and_prefix_only(self):
        raw, record = create_key("mail-bot")
        assert record.key_prefix == raw[:KEY_DISPLAY_LENGTH]
        assert record.key_hash == hash_key(raw)
        assert record.rate_limit_per_hour == 10
        assert record.rate_limit_per_day == 50
        assert record.last_used_at is None

    def test_custom_limits(self):
        _, record = create_key("busy-bot", rate_limit_per_hour=3, rate_limit_per_day=7)
        assert (record.rate_limit_per_hour, record.rate_limit_per_day) == (3, 7)

    def test_empty_name_rejected(self):
        with pytest.raises(KeyStoreError, match="name"):
            create_key("   ")

    def test_negative_limit_rejected(self):
        with pytest.raises(KeyStoreError):
            create_key("bot", rate_limit_per_hour=-1)

    def test_authenticate_valid_key_stamps_last_used(self):
        raw, record = create_key("bot")
        found = authenticate(raw)
        assert found.id == record.id
        assert found.last_used_at is not None

    def test_missing_key(self):
        with pytest.raises(AuthError):
            authenticate(None)

    def test_malformed_key(self):
        with pytest.raises(AuthError):
            authenticate("not-a-key")

    def test_unknown_key(self):
        create_key("bot")
        with pytest.raises(AuthError):
            authenticate(generate_key())

    def test_revoked_key_rejected_immediately(self):
        raw, record = create_key("bot")
        authenticate(raw)
        assert revoke_key(record.id) is True
        with pytest.raises(AuthError):
            authenticate(raw)

    def test_revoke_twice(self):
        _, record = create_key("bot")
        assert revoke_key(record.id) is True
        assert revoke_key(record.id) is False

    def test_revoke_unknown(self):
        with pytest.raises(KeyStoreError, match="not found"):
            revoke_key("does-not-exist")


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------

class TestAdministration:
    def test_list_excludes_revoked_on_request(self):
        _, a = create_key("a")
        _, b = create_key("b")
        revoke_key(b.id)
        assert {k.id for k in list_keys()} == {a.id, b.id}
        assert [k.id for k in list_keys(include_revoked=False)] == [a.id]
        assert key_store.count_active_keys() == 1

    def test_resolve_by_display_prefix(self):
        raw, record = create_key("bot")
        assert resolve_key(raw[:KEY_DISPLAY_LENGTH]).id == record.id

    def test_resolve_by_id_prefix(self):
        _, record = create_key("bot")
        assert resolve_key(record.id[:8]).id == record.id

    def test_resolve_unknown(self):
        with pytest.raises(KeyStoreError) as exc_info:
            resolve_key("gw_00000000")
        assert exc_info.value.code == "not_found"

    def test_resolve_ambiguous(self):
        create_key("a")
        create_key("b")
        with pytest.raises(KeyStoreError) as exc_info:
            resolve_key("gw_")
        assert exc_info.value.code == "ambiguous"

    def test_set_rate_limits_partial(self):
        _, record = create_key("bot")
        updated = set_rate_limits(record.id, per_day=99)
        assert updated.rate_limit_per_hour == 10
        assert updated.rate_limit_per_day == 99

    def test_set_and_clear_webhook(self):
        _, record = create_key("bot")
        assert set_webhook(record.id, "https://agent.local/hook").webhook_url == "https://agent.local/hook"
        assert set_webhook(record.id, None).webhook_url is None

    def test_webhook_requires_http_scheme(self):
        _, record = create_key("bot")
        with pytest.raises(KeyStoreError, match="http"):
            set_webhook(record.id, "ftp://agent.local/hook")
