from __future__ import annotations

from teamsync.sync.dashboard import TeamView


def render(view: TeamView) -> str:
    if not view.has_team:
        return "You are not part of a team yet."

    stats = view.team_stats
    lines = [
        f"Members: {stats.total_members} "
        f"({stats.available_members} available, {stats.on_leave_members} on leave)"
    ]
    lines += [f"- {m.name} <{m.email}> role={m.role} status={m.status} (id={m.id})" for m in view.members_page]
    if not view.members_page:
        lines.append("(no members match the current filter)")
    return "\n".join(lines)
