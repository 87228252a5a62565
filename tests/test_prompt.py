"""Tests for terminal prompts."""

import io
from unittest.mock import patch

from rich.console import Console

from opsdb.prompt import confirm, prompt_login


def _console() -> Console:
    return Console(file=io.StringIO())


class TestConfirm:
    def test_yes(self):
        assert confirm("Continue? ", io.StringIO("y\n"), _console())
        assert confirm("Continue? ", io.StringIO("Yes\n"), _console())

    def test_no(self):
        assert not confirm("Continue? ", io.StringIO("n\n"), _console())
        assert not confirm("Continue? ", io.StringIO("maybe\n"), _console())

    def test_empty_answer_asks_again(self):
        out = _console()
        assert confirm("Continue? ", io.StringIO("\n\ny\n"), out)
        assert out.file.getvalue().count("Continue?") == 3

    def test_end_of_input_is_no(self):
        assert not confirm("Continue? ", io.StringIO(""), _console())
        assert not confirm("Continue? ", io.StringIO("\n"), _console())

    def test_brackets_printed_verbatim(self):
        out = _console()
        confirm("This will update 2 entry, continue?  [y/N]: ", io.StringIO("n\n"), out)
        assert "[y/N]" in out.file.getvalue()


class TestPromptLogin:
    def test_known_login_only_asks_password(self):
        reader = io.StringIO("ignored\n")
        with patch("opsdb.prompt.typer.prompt", return_value="secret") as mock_prompt:
            assert prompt_login("jdoe", reader, _console()) == ("jdoe", "secret")
        mock_prompt.assert_called_once_with("Password", hide_input=True)
        assert reader.read() == "ignored\n"

    def test_asks_for_login(self):
        out = _console()
        with patch("opsdb.prompt.typer.prompt", return_value="secret"):
            assert prompt_login("", io.StringIO(" jdoe \n"), out) == ("jdoe", "secret")
        assert "Login:" in out.file.getvalue()
