"""
Tests for the command-line interface.
"""

from unittest.mock import MagicMock, patch

import httpx
import pytest

from codeyaar import __version__
from codeyaar.cli import build_parser, cmd_check, cmd_health, cmd_models


@pytest.mark.parametrize("argv,command", [
    (["serve"], "serve"),
    (["up", "--port", "9000"], "up"),
    (["ping"], "ping"),
    (["tail", "--no-follow", "-n", "5"], "tail"),
    (["models"], "models"),
    (["scan", "hello"], "scan"),
])
def test_aliases_parse(argv, command):
    args = build_parser().parse_args(argv)
    assert args.command == command
    assert callable(args.func)


def test_serve_options():
    args = build_parser().parse_args(["start", "-p", "9000", "--reload"])
    assert args.port == 9000
    assert args.reload is True
    assert args.host is None


def test_version(capsys):
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--version"])
    assert __version__ in capsys.readouterr().out


def test_check_allowed(capsys):
    with patch("codeyaar.config.get_config", return_value={}):
        cmd_check(build_parser().parse_args(["check", "print('hi')"]))
    assert "allowed" in capsys.readouterr().out


def test_check_blocked(capsys):
    with patch("codeyaar.config.get_config", return_value={}):
        with pytest.raises(SystemExit) as exc:
            cmd_check(build_parser().parse_args(["check", "please rm -rf /"]))
    assert exc.value.code == 1
    assert "rm_rf" in capsys.readouterr().out


def test_models(capsys):
    with patch("codeyaar.config.get_config", return_value={}):
        cmd_models(build_parser().parse_args(["models"]))
    out = capsys.readouterr().out
    assert "gpt-5-mini" in out
    assert "openai/gpt-5-mini" in out
    assert "(other)" in out


def test_health_ok(capsys):
    resp = MagicMock()
    resp.json.return_value = {"status": "ok", "version": __version__, "upstream_configured": False}
    with patch("httpx.get", return_value=resp) as get:
        cmd_health(build_parser().parse_args(["health", "--url", "http://gw:8000/"]))
    get.assert_called_once_with("http://gw:8000/health", timeout=5)
    out = capsys.readouterr().out
    assert "ok" in out
    assert "not configured" in out


def test_health_down(capsys):
    with patch("httpx.get", side_effect=httpx.ConnectError("refused")):
        with pytest.raises(SystemExit) as exc:
            cmd_health(build_parser().parse_args(["health"]))
    assert exc.value.code == 1
    assert "not answering" in capsys.readouterr().out
