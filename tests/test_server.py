from __future__ import annotations

import asyncio

from server.lifespan import tab_components
from server.tools import render_tab
from teamsync.sync.api import TeamApiClient
from teamsync.sync.config import SyncConfig
from teamsync.sync.dashboard import TeamDashboard
from teamsync.sync.models import UserProfile
from teamsync.sync.session import SessionStore
from teamsync.sync.state import Tab


async def test_every_tab_has_a_view_component():
    components = tab_components()

    assert set(components) == {tab.value for tab in Tab}
    for component in components.values():
        module = await component.preload()
        assert callable(module.render)


async def test_render_tab_uses_live_dashboard_data(http_client):
    session = SessionStore("token-1", UserProfile(role="manager"))
    api = TeamApiClient(http_client, "http://api.test", session)
    dashboard = TeamDashboard(
        api,
        session,
        config=SyncConfig(eviction_grace_seconds=0),
        components=tab_components(),
    )
    dashboard.mount()
    await asyncio.sleep(0.05)

    try:
        members = await render_tab(dashboard, Tab.MEMBERS)
        approvals = await render_tab(dashboard, Tab.APPROVALS)
        analytics = await render_tab(dashboard, Tab.ANALYTICS)
    finally:
        await dashboard.close()

    assert "Members: 3 (2 available, 1 on leave)" in members
    assert "- l1: Bo EL 2026-11-02 -> 2026-11-04" in approvals
    assert "Total leaves: 3" in analytics
