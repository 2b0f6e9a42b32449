from __future__ import annotations

import pytest

from forge_interview import cli
from forge_interview.cli import run_cli


def test_progress_for_unknown_forge_exits_with_not_found(capsys):
    with pytest.raises(SystemExit) as exit_info:
        run_cli(["progress", "missing", "--redis-url", ""])
    assert exit_info.value.code == 1
    assert "missing" in capsys.readouterr().err


def test_progress_prints_rendered_summary(monkeypatch, capsys, store, sourdough):
    forge, _, _ = sourdough
    monkeypatch.setattr(cli, "create_store", lambda redis_url: store)
    with pytest.raises(SystemExit) as exit_info:
        run_cli(["progress", forge.id, "--redis-url", "redis://unused"])
    assert exit_info.value.code == 0
    assert "[CURRENT] Feeding schedule" in capsys.readouterr().out


def test_subcommand_is_required():
    with pytest.raises(SystemExit) as exit_info:
        run_cli([])
    assert exit_info.value.code == 2
