from __future__ import annotations

from teamsync.sync.dashboard import TeamView


def render(view: TeamView) -> str:
    if not view.has_team:
        return "Analytics are available once you belong to a team."

    lines = [f"Total leaves: {view.team_stats.total_leaves}"]
    for name, value in sorted(view.statistics.items()):
        if name != "totalLeaves":
            lines.append(f"- {name}: {value}")
    lines.append(f"Leaves shown: {len(view.leaves)}")
    return "\n".join(lines)
