import io
import sys

import pytest

import beads_tui as bt


@pytest.fixture
def cli_config(tmp_path, monkeypatch):
    monkeypatch.setattr(bt, "DEFAULT_CONFIG_PATH", str(tmp_path / "absent.yml"))
    path = tmp_path / "bu.yml"
    path.write_text(
        f"log_path: {tmp_path / 'bu.log'}\nstate_path: {tmp_path / 'state.json'}\n",
        encoding="utf-8",
    )
    yield str(path)
    for h in list(bt.logger.handlers):
        bt.logger.removeHandler(h)
        h.close()


def test_missing_database_exits_with_hint(tmp_path, cli_config, capsys):
    with pytest.raises(SystemExit) as excinfo:
        bt.main(["--config", cli_config, "--db", str(tmp_path / "none.db")])
    assert excinfo.value.code == 1
    assert "br init" in capsys.readouterr().err


def test_bad_config_exits(tmp_path, capsys):
    bad = tmp_path / "bad.yml"
    bad.write_text("refresh_seconds: often\n", encoding="utf-8")
    with pytest.raises(SystemExit) as excinfo:
        bt.main(["--config", str(bad)])
    assert excinfo.value.code == 1
    assert "Config error" in capsys.readouterr().err


def test_no_ui_prints_issue_tree(seed, beads_db, cli_config, capsys):
    seed.issue("bd-1", "Parent")
    seed.issue("bd-2", "Child")
    seed.issue("bd-3", "Done", status="closed")
    seed.dep("bd-2", "bd-1", "parent-child")
    bt.main(["--config", cli_config, "--db", beads_db, "--no-ui"])
    out = capsys.readouterr().out.splitlines()
    assert out == ["▷ P2 bd-1: Parent (open)", "  ▷ P2 bd-2: Child (open)"]


def test_requires_a_terminal(beads_db, cli_config, capsys, monkeypatch):
    monkeypatch.setattr(sys, "stdin", io.StringIO())
    with pytest.raises(SystemExit) as excinfo:
        bt.main(["--config", cli_config, "--db", beads_db])
    assert excinfo.value.code == 1
    assert "terminal" in capsys.readouterr().err
