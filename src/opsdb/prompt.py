"""Terminal prompts for credentials and confirmation."""

import sys
from typing import TextIO

import typer
from rich.console import Console

console = Console()


def _read_line(reader: TextIO) -> str | None:
    """Read one line without its newline. Returns None at end of input."""
    line = reader.readline()
    if not line:
        return None
    return line.rstrip("\r\n")


def confirm(message: str, reader: TextIO | None = None, out: Console | None = None) -> bool:
    """Ask a yes/no question.

    Empty answers re-prompt. Anything starting with y/Y is yes, any other
    answer is no, and end of input is no.
    """
    reader = reader or sys.stdin
    out = out or console
    while True:
        out.print(message, end="", markup=False)
        response = _read_line(reader)
        if response is None:
            return False
        if response:
            return response[0] in ("y", "Y")


def prompt_login(login: str = "", reader: TextIO | None = None, out: Console | None = None) -> tuple[str, str]:
    """Prompt for credentials.

    Asks for a username only when ``login`` is empty, then for a password
    with input hidden.

    Returns:
        (username, password)
    """
    reader = reader or sys.stdin
    out = out or console
    if not login:
        out.print("Login: ", end="")
        login = (_read_line(reader) or "").strip()
    password = typer.prompt("Password", hide_input=True)
    return login, password
