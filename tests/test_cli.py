"""Unit tests for main.py -- the command-line entry point."""

from types import SimpleNamespace
from unittest.mock import patch

import main


def test_purge_tokens_command_reports_count(capsys):
    settings = SimpleNamespace(database_url="sqlite:///file:test_cli_purge?mode=memory&cache=shared&uri=true")
    with patch.object(main, "get_settings", return_value=settings):
        assert main.main(["purge-tokens"]) == 0
    assert "Removed 0 expired refresh token(s)." in capsys.readouterr().out


def test_serve_is_the_default_command():
    with patch("uvicorn.run") as run:
        assert main.main([]) == 0
    run.assert_called_once_with("api.main:app", host="127.0.0.1", port=8000, reload=False)


def test_serve_options():
    with patch("uvicorn.run") as run:
        main.main(["serve", "--host", "0.0.0.0", "--port", "9000", "--reload"])
    run.assert_called_once_with("api.main:app", host="0.0.0.0", port=9000, reload=True)
