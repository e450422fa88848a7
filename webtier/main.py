"""
webtier — CLI entrypoint.

Usage:
    python -m webtier.main --help
    webtier status
    webtier config check
    webtier serve --mock
"""

from __future__ import annotations

import json
import os
import sys
import time
from pathlib import Path

import click

from webtier import __version__
from webtier.core.observability.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="webtier")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to webtier.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """webtier — a self-healing pool of web servers behind a load balancer."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = os.environ.get("WEBTIER_LOG_LEVEL", "WARNING")

    setup_logging(
        level=level,
        log_file=os.environ.get("WEBTIER_LOG_FILE"),
        log_file_level=os.environ.get("WEBTIER_LOG_FILE_LEVEL"),
        quiet_third_party=not debug,
    )


def _resolve_root(ctx: click.Context) -> Path:
    """Directory holding webtier.yml (CWD when there is none)."""
    config_path: Path | None = ctx.obj.get("config_path")
    if config_path is None:
        from webtier.core.config.loader import find_config_file

        config_path = find_config_file()
    return config_path.parent.resolve() if config_path else Path.cwd()


_STATUS_ICONS = {
    "healthy": ("💚", "green"),
    "degraded": ("🟡", "yellow"),
    "unhealthy": ("🔴", "red"),
    "unknown": ("❔", "white"),
}


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show tier configuration and the last known pool."""
    from webtier.core.use_cases.status import get_status

    result = get_status(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    config = result.config
    assert config is not None  # guaranteed after error check above
    cap = config.capacity

    if not ctx.obj.get("quiet", False):
        click.secho(f"\n📋 {config.name}", fg="cyan", bold=True)
        click.echo(f"   Listener: :{config.lb_port} → members :{config.server_port}")
        click.echo(f"   Zones:    {', '.join(cap.zones)}")
        click.echo()

    click.secho(
        f"   Capacity: min {cap.min_size} / desired {cap.effective_desired} / max {cap.max_size}",
        fg="white",
        bold=True,
    )
    click.secho("   Rules:", fg="white", bold=True)
    for rule in config.sorted_rules:
        click.echo(f"     • [{rule.priority}] {', '.join(rule.path_patterns)} → {rule.target}")

    state = result.state
    click.echo()
    if state is None or state.version == 0:
        click.secho("   Pool: never started", fg="yellow")
    else:
        color = "green" if state.healthy_count >= cap.min_size else "yellow"
        click.secho(
            f"   Pool v{state.version}: {state.healthy_count}/{state.size} healthy",
            fg=color,
            bold=True,
        )
        for m in state.members:
            marker = {"healthy": "✓", "unhealthy": "✗"}.get(m.status.value, "?")
            click.echo(f"     {marker} {m.id}  {m.zone}  {m.address}  {m.status.value}")
        if state.updated_at:
            click.echo(f"   Updated: {state.updated_at}")
    click.echo()


@cli.group()
def config() -> None:
    """Tier configuration commands."""


@config.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def config_check(ctx: click.Context, as_json: bool) -> None:
    """Validate webtier.yml configuration."""
    from webtier.core.use_cases.config_check import check_config

    result = check_config(config_path=ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.valid else 1)
        return

    if result.valid:
        assert result.config is not None  # guaranteed when valid
        cap = result.config.capacity
        click.secho("✅ Configuration is valid", fg="green", bold=True)
        click.echo(f"   Tier:  {result.config.name}")
        click.echo(f"   Pool:  {cap.min_size}-{cap.max_size} across {len(cap.zones)} zone(s)")
        click.echo(f"   Rules: {len(result.config.rules)}")
    else:
        click.secho("❌ Configuration errors:", fg="red", bold=True)
        for err in result.errors:
            click.echo(f"   • {err}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    if not result.valid:
        click.echo()
        sys.exit(1)

    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def health(ctx: click.Context, as_json: bool) -> None:
    "Show tier health — pool and retry queue (breakers: see /api/health)."
    from webtier.core.observability.health import check_system_health
    from webtier.core.persistence.state_file import default_state_path, load_state
    from webtier.core.reliability.retry_queue import RetryQueue
    from webtier.core.runtime import RETRY_QUEUE_FILE

    root = _resolve_root(ctx)
    state_path = default_state_path(root)
    pool = load_state(state_path) if state_path.is_file() else None

    system_health = check_system_health(
        pool=pool,
        retry_queue=RetryQueue(path=state_path.parent / RETRY_QUEUE_FILE),
    )

    if as_json:
        click.echo(json.dumps(system_health.to_dict(), indent=2))
        return

    icon, color = _STATUS_ICONS.get(system_health.status, ("❔", "white"))

    click.echo()
    click.secho(f"{icon} Tier Health: {system_health.status.upper()}", fg=color, bold=True)
    click.echo(f"   {system_health.timestamp}")
    click.echo()

    for component in system_health.components:
        c_icon, c_color = _STATUS_ICONS.get(component.status, ("❔", "white"))
        click.secho(f"   {c_icon} {component.name}", fg=c_color, bold=True)
        click.echo(f"      {component.message}")

        if ctx.obj.get("verbose") and component.details:
            for key, val in component.details.items():
                if key == "items":
                    continue
                click.echo(f"      {key}: {val}")

    click.echo()


@cli.command()
@click.argument("name", required=False)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def output(ctx: click.Context, name: str | None, as_json: bool) -> None:
    """Show tier outputs, or the raw value of one.

    Examples:

        webtier output

        webtier output alb_dns_name
    """
    from webtier.core.config.loader import ConfigError, load_config
    from webtier.core.use_cases.outputs import compute_outputs

    try:
        tier = load_config(ctx.obj.get("config_path"), allow_defaults=True)
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    outputs = compute_outputs(tier)

    if name is not None:
        if name not in outputs:
            click.secho(f"❌ Unknown output '{name}' (known: {', '.join(outputs)})", fg="red")
            sys.exit(1)
        click.echo(outputs[name])
        return

    if as_json:
        click.echo(json.dumps(outputs, indent=2))
        return

    for key, value in outputs.items():
        click.echo(f"{key} = \"{value}\"")


@cli.command()
@click.option("--mock", is_flag=True, help="Use in-memory members (no sockets).")
@click.option("--desired", type=int, default=None, help="Override desired capacity.")
@click.option("--admin-host", default="127.0.0.1", help="Admin API bind address.")
@click.option("--admin-port", default=8000, type=int, help="Admin API port (0 disables).")
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="State directory (default: .state next to webtier.yml).",
)
@click.option("--tick", default=1.0, type=float, help="Seconds between control loop ticks.")
@click.pass_context
def serve(
    ctx: click.Context,
    mock: bool,
    desired: int | None,
    admin_host: str,
    admin_port: int,
    state_dir: str | None,
    tick: float,
) -> None:
    """Run the tier: members, health checks, scaling and the listener."""
    from webtier.core.config.loader import ConfigError, load_config
    from webtier.core.engine.roster import CapacityError
    from webtier.core.persistence.state_file import DEFAULT_STATE_DIR
    from webtier.core.runtime import build_runtime
    from webtier.core.use_cases.outputs import compute_outputs
    from webtier.ui.web.director_app import create_director_app
    from webtier.ui.web.server import create_admin_app, serve_in_thread

    try:
        tier = load_config(ctx.obj.get("config_path"), allow_defaults=True)
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    state_path = Path(state_dir) if state_dir else _resolve_root(ctx) / DEFAULT_STATE_DIR
    runtime = build_runtime(tier, mock=mock, state_dir=state_path, tick_interval=tick)

    if desired is not None:
        try:
            runtime.capacity.set_desired(desired)
        except CapacityError as e:
            click.secho(f"❌ {e}", fg="red")
            sys.exit(1)

    try:
        director_server = serve_in_thread(
            create_director_app(runtime.director), tier.lb_host, tier.lb_port
        )
    except OSError as e:
        click.secho(f"❌ Cannot bind {tier.lb_host}:{tier.lb_port}: {e}", fg="red")
        sys.exit(1)

    servers = [director_server]
    if admin_port:
        servers.append(serve_in_thread(create_admin_app(runtime), admin_host, admin_port))

    outputs = compute_outputs(tier)
    click.echo()
    click.secho(f"⚡ webtier — {tier.name}", bold=True)
    click.echo(f"   alb_dns_name: {outputs['alb_dns_name']}")
    click.echo(f"   Pool:         {tier.capacity.min_size}-{tier.capacity.max_size}, desired {runtime.capacity.desired}")
    if admin_port:
        click.echo(f"   Admin API:    http://{admin_host}:{admin_port}/api/status")
    click.echo(f"   State:        {state_path}")
    if mock:
        click.secho("   Mode: mock (in-memory members)", fg="yellow")
    click.echo()

    runtime.start()
    try:
        while runtime.loop.running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        click.echo()
        click.secho("   Shutting down...", fg="yellow")
    finally:
        for server in servers:
            server.shutdown()
        runtime.stop()


@cli.command()
@click.option("--duration", default=300.0, type=float, help="Simulated seconds.")
@click.option("--tick", default=1.0, type=float, help="Seconds between ticks.")
@click.option("--crash-rate", default=0.02, type=float, help="Chance per tick that a member dies.")
@click.option("--probe-failure-rate", default=0.0, type=float, help="Chance that any probe fails.")
@click.option("--launch-failure-rate", default=0.0, type=float, help="Chance that any launch fails.")
@click.option("--seed", default=0, type=int, help="Random seed.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def simulate(
    ctx: click.Context,
    duration: float,
    tick: float,
    crash_rate: float,
    probe_failure_rate: float,
    launch_failure_rate: float,
    seed: int,
    as_json: bool,
) -> None:
    """Run the tier on a simulated clock under random failures.

    Examples:

        webtier simulate --duration 600 --crash-rate 0.05

        webtier simulate --probe-failure-rate 0.3 --json
    """
    from webtier.core.config.loader import ConfigError, load_config
    from webtier.core.use_cases.simulate import run_simulation

    try:
        tier = load_config(ctx.obj.get("config_path"), allow_defaults=True)
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    result = run_simulation(
        tier,
        duration=duration,
        tick=tick,
        crash_rate=crash_rate,
        probe_failure_rate=probe_failure_rate,
        launch_failure_rate=launch_failure_rate,
        seed=seed,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)
        return

    cap = tier.capacity
    click.secho(f"\n🎲 Simulation — {tier.name} ({result.seconds:.0f}s, seed {seed})", fg="cyan", bold=True)
    click.echo(f"   Ticks: {result.ticks} | Roster versions: {result.versions}")
    click.echo(
        f"   Pool size: {result.min_observed}-{result.max_observed} "
        f"(bounds {cap.min_size}-{cap.max_size}), final {result.final_healthy}/{result.final_size} healthy"
    )
    click.echo(
        f"   Crashes: {result.crashes} | Replacements: {result.replacements} | "
        f"Launches: {result.launches} (+{result.launch_failures} failed) | "
        f"Terminations: {result.terminations}"
    )
    click.echo("   Requests: " + ", ".join(f"{code}×{n}" for code, n in result.requests.items()))
    click.echo()

    if result.ok:
        click.secho("   ✅ Pool stayed within bounds", fg="green", bold=True)
        click.echo()
        return

    click.secho("   ❌ Bound violations:", fg="red", bold=True)
    for violation in result.violations[:20]:
        click.echo(f"     • {violation}")
    click.echo()
    sys.exit(1)


# ── Register sub-command groups from webtier/ui/cli/ ──────────────

from webtier.ui.cli.pool import pool  # noqa: E402

cli.add_command(pool)


if __name__ == "__main__":
    cli()
