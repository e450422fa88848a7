"""
Tests for CLI commands — status, config check, health, output, simulate, pool.
"""

import json
import textwrap
from pathlib import Path

import pytest
from click.testing import CliRunner

from webtier.core.models.health import HealthStatus
from webtier.core.models.member import PoolMember
from webtier.core.models.state import PoolState
from webtier.core.persistence.activity import ActivityEntry, ActivityLog
from webtier.core.persistence.state_file import save_state
from webtier.main import cli


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    content = textwrap.dedent("""\
        tier:
          name: cli-tier
          server_port: 18080
          lb_port: 8088
          capacity:
            min_size: 2
            max_size: 4
            zones: [zone-a, zone-b]
    """)
    path = tmp_path / "webtier.yml"
    path.write_text(content)
    return path


@pytest.fixture
def with_state(config_file: Path) -> Path:
    """Pool state and activity as a running tier would leave them."""
    state_dir = config_file.parent / ".state"
    save_state(
        PoolState(
            tier_name="cli-tier",
            version=4,
            desired_capacity=2,
            min_size=2,
            max_size=4,
            members=[
                PoolMember(id="m-aaaa", zone="zone-a", host="127.0.1.1", port=18080, status=HealthStatus.HEALTHY),
                PoolMember(id="m-bbbb", zone="zone-b", host="127.0.1.2", port=18080, status=HealthStatus.UNHEALTHY),
            ],
        ),
        state_dir / "pool.json",
    )
    log = ActivityLog(path=state_dir / "activity.ndjson")
    log.write(ActivityEntry(kind="launch", member_id="m-aaaa", zone="zone-a", cause="fill"))
    log.write(ActivityEntry(kind="replace", member_id="m-cccc", zone="zone-b", status="failed", error="no capacity"))
    return config_file


def _invoke(*args: str):
    return CliRunner().invoke(cli, list(args))


class TestCLIGlobal:
    def test_help(self):
        result = _invoke("--help")
        assert result.exit_code == 0
        assert "self-healing" in result.output

    def test_version(self):
        result = _invoke("--version")
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_commands_registered(self):
        result = _invoke("--help")
        for name in ("status", "config", "health", "output", "serve", "simulate", "pool"):
            assert name in result.output


class TestStatusCommand:
    def test_never_started(self, config_file: Path):
        result = _invoke("--config", str(config_file), "status")
        assert result.exit_code == 0
        assert "cli-tier" in result.output
        assert "never started" in result.output

    def test_with_state(self, with_state: Path):
        result = _invoke("--config", str(with_state), "status")
        assert result.exit_code == 0
        assert "1/2 healthy" in result.output
        assert "m-aaaa" in result.output

    def test_json(self, with_state: Path):
        result = _invoke("--config", str(with_state), "status", "--json")
        data = json.loads(result.output)
        assert data["tier"]["lb_port"] == 8088
        assert data["outputs"]["alb_dns_name"] == "127.0.0.1:8088"
        assert data["pool"]["size"] == 2

    def test_missing_config(self, tmp_path: Path):
        result = _invoke("--config", str(tmp_path / "nope.yml"), "status")
        assert result.exit_code == 1


class TestConfigCheck:
    def test_valid(self, config_file: Path):
        result = _invoke("--config", str(config_file), "config", "check")
        assert result.exit_code == 0
        assert "valid" in result.output

    def test_invalid(self, tmp_path: Path):
        path = tmp_path / "webtier.yml"
        path.write_text("capacity: {min_size: 5, max_size: 2}\n")
        result = _invoke("--config", str(path), "config", "check")
        assert result.exit_code == 1
        assert "errors" in result.output

    def test_warnings(self, tmp_path: Path):
        path = tmp_path / "webtier.yml"
        path.write_text("capacity: {zones: [only]}\n")
        result = _invoke("--config", str(path), "config", "check", "--json")
        data = json.loads(result.output)
        assert data["valid"] is True
        assert any("one zone" in w for w in data["warnings"])
        assert any("below 1024" in w for w in data["warnings"])


class TestHealthCommand:
    def test_json(self, with_state: Path):
        result = _invoke("--config", str(with_state), "health", "--json")
        assert result.exit_code == 0
        data = json.loads(result.output)
        names = [c["name"] for c in data["components"]]
        assert names == ["pool", "retry_queue"]
        assert data["status"] == "degraded"

    def test_pretty(self, with_state: Path):
        result = _invoke("--config", str(with_state), "health")
        assert "Tier Health" in result.output
        assert "1/2 members healthy" in result.output
        assert "circuit_breakers" not in result.output


class TestOutputCommand:
    def test_all(self, config_file: Path):
        result = _invoke("--config", str(config_file), "output")
        assert result.exit_code == 0
        assert 'alb_dns_name = "127.0.0.1:8088"' in result.output

    def test_single_raw(self, config_file: Path):
        result = _invoke("--config", str(config_file), "output", "alb_dns_name")
        assert result.output.strip() == "127.0.0.1:8088"

    def test_unknown(self, config_file: Path):
        result = _invoke("--config", str(config_file), "output", "nope")
        assert result.exit_code == 1

    def test_default_port_omitted(self, tmp_path: Path):
        path = tmp_path / "webtier.yml"
        path.write_text("lb_host: web.example.internal\n")
        result = _invoke("--config", str(path), "output", "alb_dns_name")
        assert result.output.strip() == "web.example.internal"


class TestSimulateCommand:
    def test_json(self, config_file: Path):
        result = _invoke(
            "--config", str(config_file),
            "simulate", "--duration", "120", "--crash-rate", "0.1", "--seed", "3", "--json",
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["ok"] is True
        assert data["max_observed"] <= 4
        assert data["ticks"] == 120

    def test_pretty(self, config_file: Path):
        result = _invoke("--config", str(config_file), "simulate", "--duration", "60")
        assert result.exit_code == 0
        assert "within bounds" in result.output


class TestPoolCommands:
    def test_members(self, with_state: Path):
        result = _invoke("--config", str(with_state), "pool", "members")
        assert result.exit_code == 0
        assert "m-aaaa" in result.output
        assert "127.0.1.2:18080" in result.output

    def test_members_json(self, with_state: Path):
        result = _invoke("--config", str(with_state), "pool", "members", "--json")
        data = json.loads(result.output)
        assert data["version"] == 4
        assert [m["id"] for m in data["members"]] == ["m-aaaa", "m-bbbb"]

    def test_members_empty(self, config_file: Path):
        result = _invoke("--config", str(config_file), "pool", "members")
        assert "No members" in result.output

    def test_activity(self, with_state: Path):
        result = _invoke("--config", str(with_state), "pool", "activity")
        assert "m-aaaa" in result.output
        assert "no capacity" in result.output

    def test_activity_json_last_n(self, with_state: Path):
        result = _invoke("--config", str(with_state), "pool", "activity", "-n", "1", "--json")
        data = json.loads(result.output)
        assert [e["member_id"] for e in data] == ["m-cccc"]
