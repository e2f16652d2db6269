from __future__ import annotations

from datetime import datetime, timezone

from fastmcp import Context, FastMCP

from server.auth import get_dashboard
from teamsync.observability.tracing import traced_resource
from teamsync.sync.dashboard import RESOURCES


def register_resources(mcp: FastMCP) -> None:

    @mcp.resource("team://dashboard/summary")
    @traced_resource(uri="team://dashboard/summary")
    async def dashboard_summary(ctx: Context = Context) -> str:  # type: ignore[assignment]
        """Team statistics and the dashboard's active tab."""
        dashboard = get_dashboard(ctx)
        view = dashboard.view()
        stats = view.team_stats
        return (
            f"Active tab: {dashboard.state.active_tab.value}\n"
            f"Has team: {view.has_team}\n"
            f"Members: {stats.total_members} "
            f"(available {stats.available_members}, on leave {stats.on_leave_members})\n"
            f"Pending approvals: {stats.pending_approvals}\n"
            f"Pending users: {stats.pending_users}\n"
            f"Total leaves: {stats.total_leaves}\n"
            f"Manager: {view.is_manager}"
        )

    @mcp.resource("team://cache/health")
    @traced_resource(uri="team://cache/health")
    async def cache_health(ctx: Context = Context) -> str:  # type: ignore[assignment]
        """Per-resource cache entry state."""
        dashboard = get_dashboard(ctx)
        lines = []
        for name in RESOURCES:
            key = dashboard.resource_key(name)
            if key is None:
                lines.append(f"{name}: inactive")
                continue
            entry = dashboard.store.get(key)
            if entry.error is not None:
                status = "error"
            elif entry.fetched_at is None:
                status = "stale" if entry.has_value else "empty"
            else:
                status = "healthy"
            fetched = (
                datetime.fromtimestamp(entry.fetched_at, timezone.utc).isoformat()
                if entry.fetched_at is not None
                else "never"
            )
            lines.append(
                f"{key}: status={status} loading={entry.is_loading} last_fetch={fetched}"
            )
        return "\n".join(lines)
