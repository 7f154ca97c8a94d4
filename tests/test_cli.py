"""Tests for the command line entry point and discovery snapshot handling."""

import json
import textwrap
from pathlib import Path
from typing import Dict

import pytest

from dns_distributor import cli, settings
from dns_distributor.models import CreateOutcome, CreateResult, ProviderCapabilities, ProviderRecordSpec, RecordType
from dns_distributor.providers import ProviderClient

CONFIG_YAML = """
providers:
  - id: "home"
    type: "static"
    zone: "home.example.com"
    capabilities:
      record_types: ["A", "CNAME"]
      ttl_min: 60
      ttl_max: 86400
      ttl_default: 300
"""


class MockProviderClient(ProviderClient):
    def __init__(self) -> None:
        self.created = []
        self.deleted = []

    @property
    def name(self) -> str:
        return "Mock"

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supported_record_types=frozenset({RecordType.A}), ttl_min=60, ttl_max=86400, ttl_default=300
        )

    def create(self, spec: ProviderRecordSpec) -> CreateResult:
        self.created.append(spec)
        return CreateResult(CreateOutcome.CREATED, external_id=spec.hostname)

    def delete(self, external_id: str) -> bool:
        self.deleted.append(external_id)
        return True


@pytest.fixture
def paths(tmp_path: Path) -> Dict[str, str]:
    config = tmp_path / "config.yaml"
    config.write_text(CONFIG_YAML)
    return {"config": str(config), "state": str(tmp_path / "state.json"), "dir": str(tmp_path)}


@pytest.fixture
def mock_client(monkeypatch: pytest.MonkeyPatch) -> MockProviderClient:
    client = MockProviderClient()
    monkeypatch.setattr(cli, "create_clients", lambda config: {"home": client})
    return client


# =============================================================================
# Discovery snapshot
# =============================================================================


def test_read_discovery_formats(tmp_path: Path) -> None:
    as_list = tmp_path / "list.yaml"
    as_list.write_text("- app.example.com\n- web.example.com\n")
    as_lines = tmp_path / "hosts.txt"
    as_lines.write_text("app.example.com\nweb.example.com\n")
    as_map = tmp_path / "map.yaml"
    as_map.write_text("hostnames:\n  - app.example.com\n")
    empty = tmp_path / "empty.txt"
    empty.write_text("")

    assert cli.read_discovery(str(as_list)) == ["app.example.com", "web.example.com"]
    assert cli.read_discovery(str(as_lines)) == ["app.example.com", "web.example.com"]
    assert cli.read_discovery(str(as_map)) == ["app.example.com"]
    assert cli.read_discovery(str(empty)) == []


def test_read_discovery_missing_snapshot_is_none(tmp_path: Path) -> None:
    assert cli.read_discovery("") is None
    assert cli.read_discovery(str(tmp_path / "missing.txt")) is None


def test_run_sweep_without_snapshot_orphans_nothing(paths: Dict[str, str], mock_client: MockProviderClient) -> None:
    service = cli.build_service(paths["config"], paths["state"])
    service.multi_create(
        cli.MultiCreateDNSRecordInput.from_dict(
            {"baseHostname": "app.home.example.com", "type": "A", "content": "10.0.0.1", "providers": ["home"]}
        ),
        source="discovery",
    )

    report = cli.run_sweep(service, "")
    assert report.orphaned == []

    snapshot = Path(paths["dir"]) / "present.txt"
    snapshot.write_text("web.home.example.com\n")
    report = cli.run_sweep(service, str(snapshot))
    assert len(report.orphaned) == 1


# =============================================================================
# Commands
# =============================================================================


def test_create_command(paths: Dict[str, str], mock_client: MockProviderClient, capsys: pytest.CaptureFixture) -> None:
    intent = Path(paths["dir"]) / "intent.yaml"
    intent.write_text(
        'baseHostname: "app.home.example.com"\ntype: "A"\ncontent: "10.0.0.1"\nproviders:\n  - providerId: "home"\n'
    )

    code = cli.main(["--config", paths["config"], "--state", paths["state"], "create", str(intent)])

    assert code == 0
    output = json.loads(capsys.readouterr().out)
    assert output["created"] == 1
    assert mock_client.created[0].hostname == "app.home.example.com"


def test_create_command_invalid_intent(paths: Dict[str, str], mock_client: MockProviderClient) -> None:
    intent = Path(paths["dir"]) / "intent.yaml"
    intent.write_text("type: A\n")

    assert cli.main(["--config", paths["config"], "--state", paths["state"], "create", str(intent)]) == 1


def test_setting_command(paths: Dict[str, str], capsys: pytest.CaptureFixture) -> None:
    code = cli.main(["--config", paths["config"], "--state", paths["state"], "setting", "cleanup_grace_period"])

    assert code == 0
    assert "cleanup_grace_period=" in capsys.readouterr().out


def test_setting_command_unknown_key(paths: Dict[str, str]) -> None:
    assert cli.main(["--config", paths["config"], "--state", paths["state"], "setting", "bogus"]) == 1


def test_extend_command_unknown_record(paths: Dict[str, str]) -> None:
    assert cli.main(["--config", paths["config"], "--state", paths["state"], "extend", "missing", "30"]) == 1


def test_orphans_command_empty(paths: Dict[str, str], capsys: pytest.CaptureFixture) -> None:
    assert cli.main(["--config", paths["config"], "--state", paths["state"], "orphans"]) == 0
    assert capsys.readouterr().out == ""


def test_sweep_once(paths: Dict[str, str], mock_client: MockProviderClient) -> None:
    code = cli.main(
        ["--config", paths["config"], "--state", paths["state"], "sweep", "--mode", "once", "--discovery", ""]
    )

    assert code == 0


def test_sweep_invalid_mode(paths: Dict[str, str], mock_client: MockProviderClient) -> None:
    assert cli.main(["--config", paths["config"], "--state", paths["state"], "sweep", "--mode", "sometimes"]) == 1


def test_discovery_create_then_sweep_deletes_after_host_disappears(
    paths: Dict[str, str], mock_client: MockProviderClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("CLEANUP_ORPHANED", "true")
    monkeypatch.setenv("CLEANUP_GRACE_PERIOD", "0")
    intent = Path(paths["dir"]) / "intent.yaml"
    intent.write_text(
        'baseHostname: "app.home.example.com"\ntype: "A"\ncontent: "10.0.0.1"\nproviders:\n  - providerId: "home"\n'
    )
    snapshot = Path(paths["dir"]) / "present.txt"
    snapshot.write_text("")
    base = ["--config", paths["config"], "--state", paths["state"]]

    assert cli.main(base + ["create", str(intent), "--source", "discovery"]) == 0
    assert cli.main(base + ["sweep", "--mode", "once", "--discovery", str(snapshot)]) == 0

    assert mock_client.deleted == ["app.home.example.com"]
    assert json.loads(Path(paths["state"]).read_text())["records"] == {}


def test_create_source_from_intent_file(paths: Dict[str, str], mock_client: MockProviderClient) -> None:
    intent = Path(paths["dir"]) / "intent.yaml"
    intent.write_text(
        'baseHostname: "app.home.example.com"\ncontent: "10.0.0.1"\nsource: "discovery"\nproviders: ["home"]\n'
    )

    assert cli.main(["--config", paths["config"], "--state", paths["state"], "create", str(intent)]) == 0

    records = json.loads(Path(paths["state"]).read_text())["records"]
    assert [r["source"] for r in records.values()] == ["discovery"]


def test_override_commands(paths: Dict[str, str], capsys: pytest.CaptureFixture) -> None:
    base = ["--config", paths["config"], "--state", paths["state"], "override"]

    assert cli.main(base + ["set", "*.home.example.com", "--ttl", "900", "--no-proxied", "--provider", "home"]) == 0
    assert cli.main(base + ["list"]) == 0
    assert capsys.readouterr().out.strip() == "*.home.example.com ttl=900 proxied=False provider=home"

    assert cli.main(base + ["set", "x.example.com", "--type", "BOGUS"]) == 1
    assert cli.main(base + ["set"]) == 1
    assert cli.main(base + ["delete", "*.home.example.com"]) == 0
    assert cli.main(base + ["delete", "*.home.example.com"]) == 1


def test_preserve_commands(paths: Dict[str, str], capsys: pytest.CaptureFixture) -> None:
    base = ["--config", paths["config"], "--state", paths["state"], "preserve"]

    assert cli.main(base + ["add", "Mail.home.example.com", "--reason", "mx"]) == 0
    assert cli.main(base + ["add", "mail.home.example.com"]) == 0
    assert cli.main(base + ["list"]) == 0
    assert capsys.readouterr().out.strip() == "mail.home.example.com mx"

    assert cli.main(base + ["delete", "mail.home.example.com"]) == 0
    assert cli.main(base + ["delete", "mail.home.example.com"]) == 1


def test_documented_config_example_has_a_client_for_every_provider(tmp_path: Path) -> None:
    doc = settings.__doc__
    example = doc.split("::\n", 1)[1].split("\n\nProviders of any other type", 1)[0]
    config_file = tmp_path / "config.yaml"
    config_file.write_text(textwrap.dedent(example))

    config = settings.load_config(str(config_file))
    clients = cli.create_clients(config)

    assert [p.id for p in config.providers] == ["home", "edge"]
    assert sorted(clients) == ["edge", "home"]
