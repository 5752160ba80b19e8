from __future__ import annotations

from pathlib import Path

import pytest

from flow_notes.cli import main
from flow_notes.config import settings


def test_cli_local_edit_commands(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
):
    monkeypatch.setattr(settings, "database_url", f"sqlite:///{tmp_path / 'cli.db'}")

    assert main(["login", "u1", "tok-u1", "--username", "ann"]) == 0
    assert "logged in as ann" in capsys.readouterr().out

    assert main(["new", "Hello", "first body"]) == 0
    local_id = capsys.readouterr().out.strip()
    assert local_id

    assert main(["edit", local_id, "--content", "second body"]) == 0
    assert main(["ls"]) == 0
    out = capsys.readouterr().out
    assert local_id in out
    assert "pending" in out
    assert "Hello" in out

    assert main(["status"]) == 0
    out = capsys.readouterr().out
    assert "user: ann" in out
    assert "pending mutations: 2" in out

    assert main(["rm", local_id]) == 0
    assert main(["rm", local_id]) == 1
    assert "no such note" in capsys.readouterr().err

    assert main(["status"]) == 0
    # Never synced: deleting it leaves nothing to send.
    assert "pending mutations: 0" in capsys.readouterr().out
