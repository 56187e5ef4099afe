"""Tests for storage.py"""

import json
import sqlite3

import pytest

from app.core.llm_providers import ProviderConfig, ProviderType
from app.core.prompts import DEFAULT_SYSTEM_PROMPT
from app.core.storage import (
    DB,
    DEFAULT_FEEDS,
    STORAGE_KEY,
    PersistedSettings,
    SettingsFormatError,
    SettingsStore,
    export_settings,
    import_settings,
)
from app.providers.content_types import FeedSource


@pytest.fixture
def db():
    """In-memory settings database."""
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    conn.row_factory = sqlite3.Row
    database = DB(conn=conn)
    database.init()
    return database


@pytest.fixture
def store(db):
    return SettingsStore(db)


@pytest.fixture
def sample_settings():
    return PersistedSettings(
        api_key="sk-test",
        feeds=[FeedSource(url="https://blog.example.com/feed"), FeedSource(url="https://news.example.com/rss")],
        llm_config=ProviderConfig(
            type="anthropic",
            model="claude-3-5-sonnet-20241022",
            base_url="https://api.wlai.vip/v1",
            system_prompt="用一句话总结",
        ),
    )


class TestPersistedSettings:
    def test_default_uses_builtin_feeds(self):
        settings = PersistedSettings.default()
        assert settings.api_key == ""
        assert settings.feed_urls == [f["url"] for f in DEFAULT_FEEDS]
        assert settings.llm_config.type == "openai"
        assert settings.llm_config.system_prompt == DEFAULT_SYSTEM_PROMPT

    def test_to_dict_layout(self, sample_settings):
        data = sample_settings.to_dict()
        assert data == {
            "apiKey": "sk-test",
            "feeds": [{"url": "https://blog.example.com/feed"}, {"url": "https://news.example.com/rss"}],
            "llmConfig": {
                "type": "anthropic",
                "model": "claude-3-5-sonnet-20241022",
                "baseUrl": "https://api.wlai.vip/v1",
                "systemPrompt": "用一句话总结",
            },
        }

    def test_normalized_trims_key_and_drops_blank_feeds(self):
        settings = PersistedSettings(
            api_key="  sk-test \n",
            feeds=[FeedSource(url=" https://a.example.com "), FeedSource(url="   "), FeedSource(url="")],
        )
        normalized = settings.normalized()
        assert normalized.api_key == "sk-test"
        assert normalized.feed_urls == ["https://a.example.com"]

    def test_from_dict_missing_llm_config_uses_default(self):
        settings = PersistedSettings.from_dict({"apiKey": "k", "feeds": []})
        assert settings.llm_config == ProviderConfig.default(ProviderType.OPENAI)

    @pytest.mark.parametrize(
        "data",
        [
            [],
            {"apiKey": 42},
            {"feeds": "https://a.example.com"},
            {"feeds": [{"link": "https://a.example.com"}]},
            {"llmConfig": {"type": "openai"}},
        ],
    )
    def test_from_dict_rejects_bad_layout(self, data):
        with pytest.raises(SettingsFormatError):
            PersistedSettings.from_dict(data)


class TestExportImport:
    def test_round_trip(self, sample_settings):
        exported = export_settings(sample_settings)
        imported = import_settings(exported)

        assert imported.llm_config == sample_settings.llm_config
        assert imported.feeds == sample_settings.feeds
        assert json.loads(export_settings(imported)) == json.loads(exported)

    def test_export_keeps_non_ascii(self, sample_settings):
        assert "用一句话总结" in export_settings(sample_settings)

    def test_import_bytes(self, sample_settings):
        imported = import_settings(export_settings(sample_settings).encode("utf-8"))
        assert imported == sample_settings

    def test_import_invalid_json(self):
        with pytest.raises(SettingsFormatError, match="JSON"):
            import_settings("{not json")


class TestSettingsStore:
    def test_load_absent(self, store):
        assert store.load() is None
        assert store.load_or_default() == PersistedSettings.default()

    def test_save_and_load(self, store, sample_settings):
        store.save(sample_settings)
        assert store.load() == sample_settings

    def test_save_overwrites(self, store, sample_settings):
        store.save(sample_settings)
        store.save(PersistedSettings(api_key="other"))
        loaded = store.load()
        assert loaded.api_key == "other"
        assert loaded.feeds == []

    def test_save_normalizes(self, store):
        saved = store.save(
            PersistedSettings(api_key=" key ", feeds=[FeedSource(url=""), FeedSource(url="https://a.example.com")])
        )
        assert saved.api_key == "key"
        assert store.load().feed_urls == ["https://a.example.com"]

    def test_stored_under_fixed_key(self, db, store, sample_settings):
        store.save(sample_settings)
        raw = db.get_setting(STORAGE_KEY)
        assert json.loads(raw) == sample_settings.to_dict()

    @pytest.mark.parametrize("raw", ["{broken", "[]", '{"feeds": 3}'])
    def test_malformed_blob_treated_as_absent(self, db, store, raw):
        db.set_setting(STORAGE_KEY, raw)
        assert store.load() is None
        assert store.load_or_default() == PersistedSettings.default()

    def test_unknown_provider_type_is_kept(self, store):
        settings = PersistedSettings(
            api_key="k",
            llm_config=ProviderConfig(type="gemini", model="gemini-1.5-pro-latest", base_url="https://x"),
        )
        store.save(settings)
        assert store.load().llm_config.type == "gemini"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
