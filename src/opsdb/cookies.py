"""Per-identity session cookie persistence.

Cookies are stored one JSON object per line. The service login has its own
file (``~/.opsdb_cookie_autoreg``); interactive logins share
``~/.opsdb_cookie``. Saving appends; nothing here ever truncates an existing file.
"""

import json
import logging
import time
from dataclasses import asdict, dataclass
from http.cookiejar import Cookie
from pathlib import Path
from urllib.parse import urlparse

import httpx

from .config import DEFAULT_SERVICE_LOGIN
from .exceptions import CookieNotFoundError

logger = logging.getLogger(__name__)

COOKIE_FILENAME = ".opsdb_cookie"
NEW_SERVER_COOKIE_FILENAME = ".techopsdb_cookie"

# http.cookiejar files host-only cookies for dotless hosts under host + ".local"
LOCAL_DOMAIN_SUFFIX = ".local"


@dataclass
class CookieRecord:
    """One persisted cookie."""

    name: str
    value: str
    domain: str = ""
    path: str = ""
    expires: int | None = None

    def with_defaults(self, domain: str) -> "CookieRecord":
        """Fill in domain and path the server left out."""
        return CookieRecord(
            name=self.name,
            value=self.value,
            domain=self.domain or domain,
            path=self.path or "/",
            expires=self.expires,
        )

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires is None:
            return False
        return self.expires <= (time.time() if now is None else now)

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, line: str) -> "CookieRecord":
        data = json.loads(line)
        return cls(
            name=data["name"],
            value=data.get("value", ""),
            domain=data.get("domain", ""),
            path=data.get("path", ""),
            expires=data.get("expires"),
        )


def jar_domain(host: str) -> str:
    """Domain the cookie jar uses for ``host`` (``opsdb`` -> ``opsdb.local``)."""
    if host and "." not in host:
        return host + LOCAL_DOMAIN_SUFFIX
    return host


def cookies_for_url(cookies: httpx.Cookies, url: str) -> list[CookieRecord]:
    """Return the cookies in a jar that would be sent to ``url``.

    Domains are recorded as the real host name, without the jar's
    ``.local`` suffix for dotless hosts.
    """
    parsed = urlparse(url)
    host = parsed.hostname or ""
    effective_host = jar_domain(host)
    path = parsed.path or "/"
    result = []
    for cookie in cookies.jar:
        domain = cookie.domain.lstrip(".")
        if domain and domain not in (host, effective_host) and not effective_host.endswith("." + domain):
            continue
        if cookie.path and not path.startswith(cookie.path):
            continue
        if domain == effective_host:
            domain = host
        result.append(
            CookieRecord(
                name=cookie.name,
                value=cookie.value or "",
                domain=domain,
                path=cookie.path if cookie.path_specified else "",
                expires=cookie.expires,
            )
        )
    return result


def seed_cookies(cookies: httpx.Cookies, records: list[CookieRecord]) -> list[CookieRecord]:
    """Load persisted records into a client's cookie jar.

    Expired records are skipped; the rest keep their expiry in the jar.

    Returns:
        The records that were loaded
    """
    now = time.time()
    seeded = []
    for record in records:
        if record.is_expired(now):
            logger.debug("Skipping expired cookie %s for %s", record.name, record.domain)
            continue
        domain = jar_domain(record.domain) if not record.domain.startswith(".") else record.domain
        cookie = Cookie(
            version=0,
            name=record.name,
            value=record.value,
            port=None,
            port_specified=False,
            domain=domain,
            domain_specified=bool(domain),
            domain_initial_dot=domain.startswith("."),
            path=record.path or "/",
            path_specified=True,
            secure=False,
            expires=record.expires,
            discard=record.expires is None,
            comment=None,
            comment_url=None,
            rest={"HttpOnly": None},
            rfc2109=False,
        )
        cookies.jar.set_cookie(cookie)
        seeded.append(record)
    return seeded


class CookieStore:
    """Loads and saves cookie files keyed by login name."""

    def __init__(
        self,
        directory: Path | None = None,
        service_login: str = DEFAULT_SERVICE_LOGIN,
        new_server: bool = False,
    ):
        self.directory = directory or Path.home()
        self.service_login = service_login
        self.new_server = new_server

    def path_for(self, login: str) -> Path:
        """Cookie file location for a login."""
        if self.new_server:
            filename = NEW_SERVER_COOKIE_FILENAME
        elif login == self.service_login:
            filename = f"{COOKIE_FILENAME}_{login}"
        else:
            filename = COOKIE_FILENAME
        return self.directory / filename

    def load(self, login: str) -> list[CookieRecord]:
        """Load persisted cookies for a login.

        Lines that fail to decode are skipped.

        Raises:
            CookieNotFoundError: If the file does not exist or cannot be read.
        """
        path = self.path_for(login)
        try:
            text = path.read_text()
        except OSError as e:
            raise CookieNotFoundError(f"No cookie file at {path}: {e}") from e

        records = []
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                record = CookieRecord.from_json(line)
            except (json.JSONDecodeError, KeyError, TypeError):
                logger.debug("Skipping undecodable cookie line in %s", path)
                continue
            logger.debug("Cookie found at %s: %s=%s", path, record.name, record.value)
            records.append(record)
        return records

    def save(self, login: str, cookies: list[CookieRecord], domain: str) -> None:
        """Append cookies to the login's file, creating it if needed.

        Failures are logged and swallowed so a read-only home directory
        never breaks authentication.
        """
        path = self.path_for(login)
        logger.debug("Cookie file: %s, cookies: %s, domain: %s", path, cookies, domain)
        if not cookies:
            return

        created = not path.exists()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a") as f:
                for cookie in cookies:
                    line = cookie.with_defaults(domain).to_json()
                    logger.debug("Writing cookie json: %s", line)
                    f.write(line + "\n")
            if created:
                path.chmod(0o600)
        except OSError as e:
            logger.error("Error writing to cookie file (%s): %s", path, e)

    def clear(self, login: str) -> bool:
        """Delete the login's cookie file. Returns True if one was removed."""
        path = self.path_for(login)
        if path.exists():
            path.unlink()
            return True
        return False
