from __future__ import annotations

import json
from pathlib import Path

from click.testing import CliRunner

from hatchway.cli import main
from tests.launcher.fakes import make_container


def test_check_config_lists_apps(tmp_path: Path) -> None:
    container = make_container()
    path = tmp_path / "hatchway.json"
    path.write_text(json.dumps({"containers": [container.model_dump(by_alias=True)]}), encoding="utf-8")

    result = CliRunner().invoke(main, ["check-config", str(path)])

    assert result.exit_code == 0, result.output
    assert "1 containers, pay-model store none" in result.output
    assert f"{container.app_id}  Jupyter" in result.output


def test_check_config_reports_errors(tmp_path: Path) -> None:
    path = tmp_path / "hatchway.json"
    path.write_text('{"containers": [{"name": "x"}]}', encoding="utf-8")

    result = CliRunner().invoke(main, ["check-config", str(path)])

    assert result.exit_code == 1
    assert "Invalid launcher config" in result.output
