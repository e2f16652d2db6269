from __future__ import annotations

from teamsync.sync.dashboard import TeamView


def _requester(approval) -> str:
    requester = approval.requester
    if isinstance(requester, dict):
        return requester.get("name") or requester.get("email") or "unknown"
    return str(requester or "unknown")


def render(view: TeamView) -> str:
    if not view.approvals:
        return "No pending approvals."

    lines = [f"Pending approvals: {len(view.approvals)}"]
    for approval in view.approvals:
        lines.append(
            f"- {approval.id}: {_requester(approval)} {approval.leave_type} "
            f"{approval.from_date} -> {approval.to_date}"
            + (f" ({approval.destination})" if approval.destination else "")
        )
    return "\n".join(lines)
