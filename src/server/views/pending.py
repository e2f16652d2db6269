from __future__ import annotations

from teamsync.sync.dashboard import TeamView


def render(view: TeamView) -> str:
    if not view.pending_users:
        return "No users are waiting on a password change."

    lines = [f"Pending users: {len(view.pending_users)}"]
    lines += [f"- {user.name} <{user.email}>" for user in view.pending_users]
    return "\n".join(lines)
