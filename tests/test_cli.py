"""Tests for the command line interface."""

import json

import pytest

from clusterwatch.cli.main import build_parser, main


@pytest.fixture
def root(tmp_path):
    """Working directory with state in a file and no log file."""
    (tmp_path / "clusterwatch.yaml").write_text(
        "logging:\n  path: null\nstorage:\n  path: state/cw.json\n"
    )
    return tmp_path


@pytest.fixture
def replay_file(root, make_raw_snapshot):
    """Five hot snapshots without timestamps and one broken line."""
    lines = [json.dumps(make_raw_snapshot(cpu=95, indexing=i * 100, search=i * 10)) for i in range(1, 6)]
    lines.insert(2, "{broken")
    path = root / "snapshots.jsonl"
    path.write_text("\n".join(lines) + "\n")
    return path


class TestParser:
    """Tests for argument parsing."""

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_replay_defaults(self):
        args = build_parser().parse_args(["replay", "snaps.jsonl"])
        assert args.interval == 10.0
        assert args.persist is False
        assert args.label is None


class TestRulesCommand:
    """Tests for `clusterwatch rules`."""

    def test_text_output(self, root, capsys):
        main(["--root", str(root), "rules"])
        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 13
        assert any("high-cpu-usage" in line and "90.0%" in line for line in lines)

    def test_json_output(self, root, capsys):
        main(["--root", str(root), "rules", "--json"])
        rules = json.loads(capsys.readouterr().out)
        assert [r["id"] for r in rules][:2] == ["cluster-status-red", "critical-jvm-heap"]


class TestReplayCommand:
    """Tests for `clusterwatch replay`."""

    def test_text_output(self, root, replay_file, capsys):
        main(["--root", str(root), "replay", str(replay_file)])
        out = capsys.readouterr().out

        assert out.count("indexing") == 5
        assert "ALERT CRITICAL Critical CPU Usage: 95.0%" in out
        assert "ALERT WARNING High CPU Load: 95.0%" in out
        assert not (root / "state" / "cw.json").exists()

    def test_json_output(self, root, replay_file, capsys):
        main(["--root", str(root), "replay", str(replay_file), "--json", "--label", "lab"])
        payloads = [json.loads(line) for line in capsys.readouterr().out.splitlines()]

        assert [p["tick"] for p in payloads] == [1, 2, 3, 4, 5]
        assert payloads[1]["metrics"]["indexing_rate"] == pytest.approx(10.0)
        raised = [a for p in payloads for a in p["new_alerts"]]
        assert {a["rule_id"] for a in raised} == {"high-cpu-usage", "high-cpu-load"}
        assert all(a["cluster_name"] == "lab" for a in raised)
        assert payloads[3]["new_alerts"]

    def test_persist_writes_state(self, root, replay_file, capsys):
        main(["--root", str(root), "replay", str(replay_file), "--persist"])
        state = json.loads((root / "state" / "cw.json").read_text())
        assert {"rules", "settings", "history", "performance-history"} <= set(state)
