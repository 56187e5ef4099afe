"""Local persistence for reader settings.

The whole settings object is stored as one JSON blob under a fixed key
in the `app_settings` table. There is no schema versioning: a blob that
does not parse is treated as absent and the defaults are used.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from dataclasses import dataclass, field, replace
from typing import Any

from app.core.llm_providers import ProviderConfig, ProviderType
from app.core.prompts import DEFAULT_SYSTEM_PROMPT
from app.core.settings import Settings
from app.providers.content_types import FeedSource

logger = logging.getLogger(__name__)

STORAGE_KEY = "rss_reader_settings"

DEFAULT_FEEDS: list[dict[str, str]] = [
    {"url": "https://plink.anyfeeder.com/weixin/ckxxwx", "name": "参考消息"},
    {"url": "http://feeds.feedburner.com/zhihu-daily", "name": "知乎日报"},
    {"url": "https://plink.anyfeeder.com/weixin/jianshuio", "name": "简书"},
    {"url": "https://wangyurui.com/feed.xml", "name": "王玉瑞博客"},
]


class SettingsFormatError(ValueError):
    """Settings blob does not have the expected layout."""


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS app_settings (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL,
  updated_at TEXT DEFAULT (datetime('now'))
);
"""


@dataclass
class PersistedSettings:
    """API key, feed list and provider config of the single reader user."""

    api_key: str
    feeds: list[FeedSource] = field(default_factory=list)
    llm_config: ProviderConfig = field(default_factory=ProviderConfig.default)

    @classmethod
    def default(cls) -> "PersistedSettings":
        return cls(
            api_key="",
            feeds=[FeedSource(url=f["url"]) for f in DEFAULT_FEEDS],
            llm_config=ProviderConfig.default(
                ProviderType.OPENAI, system_prompt=DEFAULT_SYSTEM_PROMPT
            ),
        )

    @property
    def feed_urls(self) -> list[str]:
        return [f.url for f in self.feeds]

    def normalized(self) -> "PersistedSettings":
        """Trim the API key and drop blank feed URLs."""
        return replace(
            self,
            api_key=self.api_key.strip(),
            feeds=[FeedSource(url=f.url.strip()) for f in self.feeds if f.url.strip()],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiKey": self.api_key,
            "feeds": [f.to_dict() for f in self.feeds],
            "llmConfig": self.llm_config.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "PersistedSettings":
        """Build from the stored layout.

        A missing llmConfig falls back to the default provider config.

        Raises:
            SettingsFormatError: If the layout is not as expected.
        """
        if not isinstance(data, dict):
            raise SettingsFormatError("settings must be a JSON object")

        api_key = data.get("apiKey", "")
        if not isinstance(api_key, str):
            raise SettingsFormatError("apiKey must be a string")

        raw_feeds = data.get("feeds", [])
        if not isinstance(raw_feeds, list):
            raise SettingsFormatError("feeds must be a list")
        feeds = []
        for raw in raw_feeds:
            if not isinstance(raw, dict) or not isinstance(raw.get("url"), str):
                raise SettingsFormatError("each feed must be an object with a url")
            feeds.append(FeedSource(url=raw["url"]))

        raw_config = data.get("llmConfig")
        if raw_config is None:
            llm_config = ProviderConfig.default()
        else:
            try:
                llm_config = ProviderConfig.from_dict(raw_config)
            except ValueError as e:
                raise SettingsFormatError(str(e)) from e

        return cls(api_key=api_key, feeds=feeds, llm_config=llm_config)


def export_settings(settings: PersistedSettings) -> str:
    """Serialize settings for download."""
    return json.dumps(settings.to_dict(), ensure_ascii=False, indent=2)


def import_settings(text: str | bytes) -> PersistedSettings:
    """Parse an exported settings file.

    Raises:
        SettingsFormatError: If the file is not valid settings JSON.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise SettingsFormatError(f"not valid JSON: {e}") from e
    return PersistedSettings.from_dict(data)


@dataclass
class DB:
    conn: sqlite3.Connection

    def init(self) -> None:
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()

    def get_setting(self, key: str, default: str | None = None) -> str | None:
        """Get a setting value by key."""
        cur = self.conn.execute(
            "SELECT value FROM app_settings WHERE key = ?",
            (key,)
        )
        row = cur.fetchone()
        return row[0] if row else default

    def set_setting(self, key: str, value: str) -> None:
        """Set a setting value (upsert)."""
        self.conn.execute(
            """
            INSERT INTO app_settings (key, value, updated_at)
            VALUES (?, ?, datetime('now'))
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = datetime('now')
            """,
            (key, value)
        )
        self.conn.commit()


class SettingsStore:
    """Loads and saves PersistedSettings as a single blob."""

    def __init__(self, db: DB, key: str = STORAGE_KEY) -> None:
        self._db = db
        self._key = key

    def load(self) -> PersistedSettings | None:
        """Return stored settings, or None if absent or malformed."""
        raw = self._db.get_setting(self._key)
        if raw is None:
            return None
        try:
            return import_settings(raw)
        except SettingsFormatError as e:
            logger.warning(f"Ignoring malformed stored settings: {e}")
            return None

    def load_or_default(self) -> PersistedSettings:
        return self.load() or PersistedSettings.default()

    def save(self, settings: PersistedSettings) -> PersistedSettings:
        """Persist normalized settings and return what was stored."""
        settings = settings.normalized()
        self._db.set_setting(self._key, json.dumps(settings.to_dict(), ensure_ascii=False))
        logger.info(
            f"Saved settings: {len(settings.feeds)} feeds, provider={settings.llm_config.type}"
        )
        return settings


_db: DB | None = None


def init_db(db_path: str | None = None) -> None:
    global _db

    s = Settings.from_env()
    path = db_path or s.db_path
    if path != ":memory:" and os.path.dirname(path):
        os.makedirs(os.path.dirname(path), exist_ok=True)

    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row

    _db = DB(conn=conn)
    _db.init()


def get_db() -> DB:
    assert _db is not None, "DB not initialized"
    return _db


def get_settings_store() -> SettingsStore:
    return SettingsStore(get_db())
