from __future__ import annotations

import importlib
import runpy
from pathlib import Path

import pytest

import isms_risk_cli.__main__ as app_main
import isms_risk_cli.cli as cli
from isms_risk_cli import __version__
from isms_risk_cli.exceptions import (
    AuthenticationError,
    ConfigError,
    IsmsRiskError,
    PreconditionError,
)


def test_version_is_defined() -> None:
    assert __version__ == "0.1.0"


@pytest.mark.parametrize(
    "module_name",
    [
        "isms_risk_cli.config",
        "isms_risk_cli.client",
        "isms_risk_cli.scoring",
        "isms_risk_cli.threats",
        "isms_risk_cli.workflow",
        "isms_risk_cli.tasks",
        "isms_risk_cli.suggestions",
        "isms_risk_cli.formatters",
        "isms_risk_cli.models",
    ],
)
def test_modules_are_importable(module_name: str) -> None:
    assert importlib.import_module(module_name) is not None


def test_main_calls_cli_main(monkeypatch: pytest.MonkeyPatch) -> None:
    called = {"value": False}

    def fake_cli_main() -> None:
        called["value"] = True

    monkeypatch.setattr(app_main, "cli_main", fake_cli_main)
    app_main.main()
    assert called["value"] is True


def test_main_exits_on_isms_risk_error(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def raise_precondition() -> None:
        raise PreconditionError("No organization selected.")

    monkeypatch.setattr(app_main, "cli_main", raise_precondition)

    with pytest.raises(SystemExit) as raised:
        app_main.main()

    captured = capsys.readouterr()
    assert raised.value.code == 1
    assert captured.err.strip() == "Error: No organization selected."


def test_main_uses_setup_exit_code_for_config_errors(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def raise_config() -> None:
        raise ConfigError("Configuration not found. Run isms-risk --init first.")

    monkeypatch.setattr(app_main, "cli_main", raise_config)

    with pytest.raises(SystemExit) as raised:
        app_main.main()

    assert raised.value.code == app_main.EXIT_SETUP == 3
    assert "Configuration not found" in capsys.readouterr().err


@pytest.mark.parametrize("env_key, expect_hint", [("", False), ("from-env", True)])
def test_main_names_the_key_source_on_auth_failure(
    env_key: str,
    expect_hint: bool,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    def raise_auth() -> None:
        raise AuthenticationError("Authentication failed.")

    monkeypatch.setattr(app_main, "cli_main", raise_auth)
    monkeypatch.setenv("ISMS_RISK_API_KEY", env_key)

    with pytest.raises(SystemExit) as raised:
        app_main.main()

    err = capsys.readouterr().err
    assert raised.value.code == 3
    assert err.startswith("Error: Authentication failed.")
    assert ("taken from ISMS_RISK_API_KEY" in err) is expect_hint


def test_main_exits_on_keyboard_interrupt(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def raise_keyboard_interrupt() -> None:
        raise KeyboardInterrupt

    monkeypatch.setattr(app_main, "cli_main", raise_keyboard_interrupt)

    with pytest.raises(SystemExit) as raised:
        app_main.main()

    assert raised.value.code == 130
    assert capsys.readouterr().out == "\n"


def test_python_m_entrypoint_executes_main(monkeypatch: pytest.MonkeyPatch) -> None:
    call_count = {"value": 0}

    def fake_cli_main() -> None:
        call_count["value"] += 1

    monkeypatch.setattr(cli, "main", fake_cli_main)
    module_path = Path(app_main.__file__).resolve()
    runpy.run_path(str(module_path), run_name="__main__")
    assert call_count["value"] == 1


def test_errors_share_one_base() -> None:
    from isms_risk_cli import exceptions

    for name in (
        "ConfigError", "ApiError", "ValidationError", "PreconditionError",
        "ReferentialIntegrityError", "WorkflowError",
    ):
        assert issubclass(getattr(exceptions, name), IsmsRiskError)
