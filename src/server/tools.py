from __future__ import annotations

import asyncio

from fastmcp import Context, FastMCP

from server.auth import get_dashboard, requires_role
from teamsync.observability.tracing import traced_tool
from teamsync.sync.dashboard import TeamDashboard
from teamsync.sync.models import MutationResult
from teamsync.sync.state import Tab


def _describe(result: MutationResult, success: str) -> str:
    if result.success:
        return success
    if result.status_code is not None:
        return f"Failed ({result.status_code}): {result.error}"
    return f"Failed: {result.error}"


async def render_tab(dashboard: TeamDashboard, tab: Tab) -> str:
    if dashboard.show_skeleton(tab):
        return f"{tab.value}: loading..."
    module = await dashboard.load_component(tab)
    view = dashboard.view()
    text = module.render(view)
    if view.errors.get("team") is not None:
        text += "\n\n[Warning: team data could not be refreshed]"
    return text


def register_tools(mcp: FastMCP) -> None:

    @mcp.tool(tags={"manager", "approvals"})
    @traced_tool()
    @requires_role("manager", "admin")
    async def approve_leave(
        leave_id: str,
        reason: str | None = None,
        ctx: Context = Context,  # type: ignore[assignment]
    ) -> str:
        """Approve a pending leave request; approvals and analytics are refetched."""
        dashboard = get_dashboard(ctx)
        result = await dashboard.approve_leave(leave_id, reason)
        return _describe(result, f"Leave {leave_id} approved.")

    @mcp.tool(tags={"manager", "approvals"})
    @traced_tool()
    @requires_role("manager", "admin")
    async def reject_leave(
        leave_id: str,
        reason: str,
        ctx: Context = Context,  # type: ignore[assignment]
    ) -> str:
        """Reject a pending leave request. A non-empty reason is required."""
        dashboard = get_dashboard(ctx)
        result = await dashboard.reject_leave(leave_id, reason)
        return _describe(result, f"Leave {leave_id} rejected.")

    @mcp.tool(tags={"manager", "members"})
    @traced_tool()
    @requires_role("manager", "admin")
    async def add_team_member(
        email: str,
        ctx: Context = Context,  # type: ignore[assignment]
    ) -> str:
        """Add a user to the team by email."""
        result = await get_dashboard(ctx).add_team_member(email)
        return _describe(result, f"Added {email} to the team.")

    @mcp.tool(tags={"manager", "members"})
    @traced_tool()
    @requires_role("manager", "admin")
    async def remove_team_member(
        member_id: str,
        ctx: Context = Context,  # type: ignore[assignment]
    ) -> str:
        """Remove a member from the team."""
        result = await get_dashboard(ctx).remove_team_member(member_id)
        return _describe(result, f"Removed member {member_id}.")

    @mcp.tool(tags={"manager", "members"})
    @traced_tool()
    @requires_role("manager", "admin")
    async def create_team(
        name: str,
        description: str | None = None,
        ctx: Context = Context,  # type: ignore[assignment]
    ) -> str:
        """Create a team managed by the signed-in user."""
        result = await get_dashboard(ctx).create_team(name, description)
        return _describe(result, f"Team '{name.strip()}' created.")

    @mcp.tool(tags={"dashboard"})
    @traced_tool()
    async def prefetch_tab(
        tab: str,
        ctx: Context = Context,  # type: ignore[assignment]
    ) -> str:
        """Warm a tab's view and data ahead of switching to it."""
        status = await get_dashboard(ctx).hover_tab(tab)
        return f"Prefetch for {Tab(tab).value}: {status.value}"

    @mcp.tool(tags={"dashboard"})
    @traced_tool()
    async def set_active_tab(
        tab: str,
        ctx: Context = Context,  # type: ignore[assignment]
    ) -> str:
        """Switch the dashboard to ``tab`` (members, approvals, analytics, pending) and render it."""
        dashboard = get_dashboard(ctx)
        state = dashboard.set_active_tab(tab)
        return await render_tab(dashboard, state.active_tab)

    @mcp.tool(tags={"dashboard"})
    @traced_tool()
    async def refresh_dashboard(
        ctx: Context = Context,  # type: ignore[assignment]
    ) -> str:
        """Force a refetch of every dashboard resource."""
        dashboard = get_dashboard(ctx)
        await asyncio.gather(
            dashboard.refresh_team(),
            dashboard.refresh_approvals(),
            dashboard.refresh_pending_users(),
        )
        await dashboard.refresh_leaves()
        return await render_tab(dashboard, dashboard.state.active_tab)
