"""Configuration handling for the OpsDB CLI."""

import getpass
import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

DEFAULT_SERVICE_LOGIN = "autoreg"
ENV_FILENAME = "local.env"
# Directories above the working directory searched for the env file
ENV_SEARCH_DEPTH = 3


def find_env_file(start: Path | None = None, filename: str | None = None) -> Path | None:
    """Return the nearest env file at or above ``start``.

    The name comes from ``OPSDB_ENV_FILE`` when set, else ``local.env``.
    """
    filename = filename or os.environ.get("OPSDB_ENV_FILE") or ENV_FILENAME
    start = start or Path.cwd()
    for directory in [start, *start.parents][: ENV_SEARCH_DEPTH + 1]:
        candidate = directory / filename
        if candidate.is_file():
            return candidate
    return None


def load_env_file(path: Path) -> dict[str, str]:
    """Apply ``KEY=value`` lines to the environment.

    Variables already set are left alone. Blank lines, comments and lines
    without ``=`` are skipped; an ``export`` prefix and quotes are stripped.

    Returns:
        The variables that were set
    """
    applied: dict[str, str] = {}
    for raw in path.read_text().splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :]
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key or key in os.environ:
            continue
        value = value.strip().strip('"').strip("'")
        os.environ[key] = value
        applied[key] = value
    return applied


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return ""


@dataclass
class OpsDBConfig:
    """Configuration for the OpsDB client.

    Configuration can be loaded from:
    1. Environment variables (OPSDB_URL, OPSDB_USER, OPSDB_PASSWORD)
    2. Explicit parameters

    SSL verification is disabled by default because OpsDB and the SSO
    server commonly use internal certificates.

    The service login (``autoreg`` by default) authenticates against the
    server's local login path instead of SSO and never prompts.
    """

    base_url: str = ""
    username: str = field(default_factory=_current_user)
    password: str = ""
    service_login: str = DEFAULT_SERVICE_LOGIN
    verify_ssl: bool = False
    timeout: int = 30
    new_server: bool = False

    # Cookie persistence
    cookie_dir: Path = field(default_factory=Path.home)

    @property
    def host(self) -> str:
        """Hostname from OPSDB_URL."""
        return urlparse(self.base_url).hostname or ""

    @property
    def is_service(self) -> bool:
        """True if the configured user is the service login."""
        return self.username == self.service_login

    @classmethod
    def from_env(cls) -> "OpsDBConfig":
        """Load configuration from environment variables.

        Environment variables:
            OPSDB_URL: Base URL (e.g., http://opsdb.example.com)
            OPSDB_USER: Username (defaults to the current OS user)
            OPSDB_PASSWORD: Password (prompted for when empty)
            OPSDB_SERVICE_LOGIN: Name of the non-interactive service login
            OPSDB_VERIFY_SSL: Set to "true" to enable SSL verification
            OPSDB_TIMEOUT: Request timeout in seconds
            OPSDB_COOKIE_DIR: Directory holding cookie files (defaults to $HOME)
            OPSDB_NEW: Set to "true" when talking to the new TechOpsDB server

        Returns:
            OpsDBConfig instance
        """
        cookie_dir = os.environ.get("OPSDB_COOKIE_DIR")
        return cls(
            base_url=os.environ.get("OPSDB_URL", "").rstrip("/"),
            username=os.environ.get("OPSDB_USER") or _current_user(),
            password=os.environ.get("OPSDB_PASSWORD", ""),
            service_login=os.environ.get("OPSDB_SERVICE_LOGIN", DEFAULT_SERVICE_LOGIN),
            verify_ssl=os.environ.get("OPSDB_VERIFY_SSL", "").lower() == "true",
            timeout=int(os.environ.get("OPSDB_TIMEOUT", "30")),
            new_server=os.environ.get("OPSDB_NEW", "").lower() == "true",
            cookie_dir=Path(cookie_dir).expanduser() if cookie_dir else Path.home(),
        )

    def validate(self) -> list[str]:
        """Validate configuration, returning list of missing fields.

        Returns:
            List of missing required field names.
        """
        missing = []
        if not self.base_url:
            missing.append("base_url (OPSDB_URL)")
        return missing
