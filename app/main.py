from __future__ import annotations

import json
import logging
from pathlib import Path

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from jinja2 import Environment, FileSystemLoader, select_autoescape

from app.core.feed_fetcher import fetch_feeds
from app.core.llm_providers import (
    PROVIDER_DEFAULTS,
    PROXY_BASE_URLS,
    SUGGESTED_MODELS,
    ProviderConfig,
    ProviderType,
    SummaryRequest,
    summarize,
)
from app.core.prompts import ANTHROPIC_PREAMBLE, DEFAULT_SYSTEM_PROMPT
from app.core.settings import Settings
from app.core.storage import (
    PersistedSettings,
    SettingsFormatError,
    export_settings,
    get_settings_store,
    import_settings,
    init_db,
)
from app.providers.content_types import FeedSource

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = BASE_DIR / "templates"

EXPORT_FILENAME = "rss-reader-settings.json"

jinja = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html", "xml"]),
)

app = FastAPI(title="rss-summary-reader")


@app.on_event("startup")
def _startup() -> None:
    s = Settings.from_env()
    logging.basicConfig(
        level=s.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db()


def render(template_name: str, **ctx) -> HTMLResponse:
    template = jinja.get_template(template_name)
    return HTMLResponse(template.render(**ctx))


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _read_json(request: Request) -> dict | None:
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


@app.get("/", response_class=HTMLResponse)
async def home(request: Request):
    """Reader page: configured feeds plus the settings form."""
    s = Settings.from_env()
    settings = get_settings_store().load_or_default()
    results = await fetch_feeds(settings.feed_urls, timeout=s.feed_timeout_seconds)
    return render(
        "home.html",
        request=request,
        settings=settings,
        results=results,
        provider_defaults={t.value: d for t, d in PROVIDER_DEFAULTS.items()},
        proxy_urls=PROXY_BASE_URLS,
        models=SUGGESTED_MODELS,
        default_prompt=DEFAULT_SYSTEM_PROMPT,
    )


@app.post("/settings")
def save_settings_form(
    api_key: str = Form(""),
    provider_type: str = Form("openai"),
    model: str = Form(""),
    base_url: str = Form(""),
    system_prompt: str = Form(""),
    feeds: str = Form(""),
):
    """Save settings from the HTML form.

    Empty model or base URL fall back to the selected provider's defaults.
    Feeds are given one URL per line.
    """
    parsed = ProviderType.parse(provider_type)
    if parsed is None:
        return _error(f"unsupported model type: {provider_type}", 400)

    defaults = PROVIDER_DEFAULTS[parsed]
    settings = PersistedSettings(
        api_key=api_key,
        feeds=[FeedSource(url=line) for line in feeds.splitlines()],
        llm_config=ProviderConfig(
            type=parsed.value,
            model=model.strip() or defaults.model,
            base_url=base_url.strip() or defaults.base_url,
            system_prompt=system_prompt if system_prompt.strip() else None,
        ),
    )
    get_settings_store().save(settings)
    return RedirectResponse(url="/", status_code=303)


# ==================== Summaries ====================


@app.post("/api/llm")
async def api_summarize(request: Request):
    """Summarize one article.

    Body: {"content": str, "apiKey"?: str, "llmConfig"?: {...}}.
    Omitted apiKey/llmConfig are taken from the stored settings.

    Returns:
        {"summary": str} or {"error": str} with 400 (configuration) or
        500 (provider/transport) status.
    """
    payload = await _read_json(request)
    if payload is None:
        return _error("request body must be a JSON object", 400)

    content = payload.get("content")
    if not isinstance(content, str):
        return _error("content must be a string", 400)

    stored = get_settings_store().load_or_default()

    api_key = payload.get("apiKey", stored.api_key)
    if not isinstance(api_key, str):
        return _error("apiKey must be a string", 400)

    if "llmConfig" in payload:
        try:
            config = ProviderConfig.from_dict(payload["llmConfig"])
        except ValueError as e:
            return _error(str(e), 400)
    else:
        config = stored.llm_config

    s = Settings.from_env()
    result = await summarize(
        SummaryRequest(content=content, api_key=api_key, config=config),
        timeout=s.llm_timeout_seconds,
    )
    return JSONResponse(result.to_dict(), status_code=result.status_code)


# ==================== Feeds ====================


@app.post("/api/rss")
async def api_fetch_feeds(request: Request):
    """Fetch feeds. Body: {"feeds": [{"url": str}, ...]}.

    Feeds that fail are left out of the response.
    """
    payload = await _read_json(request)
    raw_feeds = payload.get("feeds") if payload else None
    if not isinstance(raw_feeds, list) or not all(
        isinstance(f, dict) and isinstance(f.get("url"), str) for f in raw_feeds
    ):
        return _error("invalid feed list", 400)

    s = Settings.from_env()
    results = await fetch_feeds([f["url"] for f in raw_feeds], timeout=s.feed_timeout_seconds)
    return {"feeds": [r.feed.to_dict() for r in results if r.success]}


# ==================== Settings ====================


@app.get("/api/settings")
def api_get_settings():
    """Current settings (stored, or defaults if none)."""
    return get_settings_store().load_or_default().to_dict()


@app.post("/api/settings")
async def api_save_settings(request: Request):
    """Replace the stored settings with the JSON body."""
    payload = await _read_json(request)
    if payload is None:
        return _error("request body must be a JSON object", 400)
    try:
        settings = PersistedSettings.from_dict(payload)
    except SettingsFormatError as e:
        return _error(str(e), 400)
    saved = get_settings_store().save(settings)
    return saved.to_dict()


@app.get("/api/settings/export")
def api_export_settings():
    """Download the current settings as a JSON file."""
    settings = get_settings_store().load_or_default()
    return Response(
        content=export_settings(settings).encode("utf-8"),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{EXPORT_FILENAME}"'},
    )


@app.post("/api/settings/import")
async def api_import_settings(file: UploadFile = File(...)):
    """Replace the stored settings with an exported settings file."""
    raw = await file.read()
    try:
        settings = import_settings(raw)
    except SettingsFormatError as e:
        logger.warning(f"Rejected settings import {file.filename!r}: {e}")
        return _error(f"invalid settings file: {e}", 400)
    saved = get_settings_store().save(settings)
    return saved.to_dict()


@app.get("/api/providers")
def api_providers():
    """Provider defaults and presets for the settings form."""
    return {
        "providers": [
            {
                "type": t.value,
                "label": d.label,
                "baseUrl": d.base_url,
                "model": d.model,
                "usesSystemPrompt": t is not ProviderType.ANTHROPIC,
            }
            for t, d in PROVIDER_DEFAULTS.items()
        ],
        "proxyUrls": PROXY_BASE_URLS,
        "models": SUGGESTED_MODELS,
        "defaultSystemPrompt": DEFAULT_SYSTEM_PROMPT,
        "anthropicPreamble": ANTHROPIC_PREAMBLE,
    }
