"""
CLI commands for the member pool.

Read-only views over the files a running ``webtier serve`` keeps in
``.state/``: the last published roster and the activity history.
"""

from __future__ import annotations

import json
from pathlib import Path

import click


def _resolve_root(ctx: click.Context) -> Path:
    """Resolve tier root from context or CWD."""
    config_path: Path | None = ctx.obj.get("config_path")
    if config_path is None:
        from webtier.core.config.loader import find_config_file

        config_path = find_config_file()
    return config_path.parent.resolve() if config_path else Path.cwd()


@click.group()
def pool() -> None:
    """Pool — members and scaling activity."""


@pool.command("members")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def members(ctx: click.Context, as_json: bool) -> None:
    """List members of the last published roster."""
    from webtier.core.persistence.state_file import default_state_path, load_state

    state = load_state(default_state_path(_resolve_root(ctx)))

    if as_json:
        click.echo(json.dumps(
            {
                "version": state.version,
                "members": [m.model_dump(mode="json") for m in state.members],
            },
            indent=2,
        ))
        return

    if not state.members:
        click.secho("No members recorded. Is `webtier serve` running?", fg="yellow")
        return

    click.secho(f"\n🖥️  Pool v{state.version} — {state.healthy_count}/{state.size} healthy", bold=True)
    click.echo()
    colors = {"healthy": "green", "unhealthy": "red"}
    for m in sorted(state.members, key=lambda m: (m.zone, m.id)):
        click.secho(f"   {m.id:<12}", fg=colors.get(m.status.value, "yellow"), nl=False)
        click.echo(f" {m.zone:<10} {m.address:<22} {m.status.value:<10}", nl=False)
        if m.replaces:
            click.echo(f" (replaced {m.replaces})", nl=False)
        click.echo()
    click.echo()


@pool.command("activity")
@click.option("-n", "count", default=20, type=int, help="Number of entries to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def activity(ctx: click.Context, count: int, as_json: bool) -> None:
    """Show recent scaling activity."""
    from webtier.core.persistence.activity import default_activity_path, read_activity

    entries = read_activity(default_activity_path(_resolve_root(ctx)), n=count)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.secho("No scaling activity recorded.", fg="yellow")
        return

    icons = {"ok": ("✓", "green"), "failed": ("✗", "red"), "skipped": ("⊘", "yellow")}
    click.echo()
    for e in entries:
        icon, color = icons.get(e.status, ("?", "white"))
        click.secho(f"   {icon} ", fg=color, nl=False)
        click.echo(f"{e.timestamp[:19]}  {e.kind:<9} {e.member_id:<12} {e.zone:<10} {e.cause}")
        if e.error:
            click.secho(f"       {e.error}", fg="red")
    click.echo()
