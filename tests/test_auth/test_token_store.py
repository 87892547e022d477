"""Tests for creative_sync.auth.token_store — JSON persistence of the credential."""

from __future__ import annotations

import stat

from creative_sync.auth.token_store import TokenStore


class TestTokenStore:
    def test_load_missing_file_returns_none(self, tmp_path):
        store = TokenStore(tmp_path / "token.json")
        assert not store.exists()
        assert store.load() is None

    def test_save_then_load(self, tmp_path, credential):
        store = TokenStore(tmp_path / "auth" / "token.json")
        store.save(credential)
        loaded = store.load()
        assert loaded == credential
        assert loaded.expires_at.tzinfo is not None

    def test_save_leaves_no_temp_file(self, tmp_path, credential):
        store = TokenStore(tmp_path / "token.json")
        store.save(credential)
        assert [p.name for p in tmp_path.iterdir()] == ["token.json"]

    def test_file_is_owner_only(self, tmp_path, credential):
        store = TokenStore(tmp_path / "token.json")
        store.save(credential)
        mode = stat.S_IMODE((tmp_path / "token.json").stat().st_mode)
        assert mode == 0o600

    def test_unreadable_file_treated_as_missing(self, tmp_path):
        path = tmp_path / "token.json"
        path.write_text("{not json", encoding="utf-8")
        assert TokenStore(path).load() is None

    def test_invalid_credential_treated_as_missing(self, tmp_path):
        path = tmp_path / "token.json"
        path.write_text('{"access_token": ""}', encoding="utf-8")
        assert TokenStore(path).load() is None

    def test_clear(self, tmp_path, credential):
        store = TokenStore(tmp_path / "token.json")
        store.save(credential)
        assert store.clear() is True
        assert store.clear() is False
        assert store.load() is None
