from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

import httpx
from fastmcp import FastMCP

from teamsync.sync.api import TeamApiClient
from teamsync.sync.config import SyncConfig
from teamsync.sync.dashboard import TeamDashboard
from teamsync.sync.errors import AuthorizationError, SyncError
from teamsync.sync.prefetch import PreloadableComponent
from teamsync.sync.session import SessionStore
from teamsync.sync.state import Tab

logger = logging.getLogger(__name__)


def tab_components() -> dict[str, PreloadableComponent]:
    # One lazily imported view module per tab
    return {tab.value: PreloadableComponent.from_module(f"server.views.{tab.value}") for tab in Tab}


@asynccontextmanager
async def app_lifespan(server: FastMCP):
    config = SyncConfig().resolve()
    session = SessionStore(os.environ.get("TEAMSYNC_API_TOKEN") or None)

    async with httpx.AsyncClient(timeout=config.request_timeout_seconds) as client:
        api = TeamApiClient(client, config.api_base_url, session)

        if session.token is None:
            logger.warning("TEAMSYNC_API_TOKEN not set; dashboard starts signed out")
        else:
            try:
                session.set_user(await api.get_profile())
            except AuthorizationError as exc:
                if exc.session_expired:
                    session.invalidate("HTTP 401 while loading profile")
                else:
                    logger.warning("Profile not accessible: %s", exc.message)
            except SyncError as exc:
                logger.warning("Failed to load profile: %s", exc.message)

        dashboard = TeamDashboard(api, session, config=config, components=tab_components())
        dashboard.mount()

        try:
            yield {"dashboard": dashboard, "http_client": client}
        finally:
            await dashboard.close()
