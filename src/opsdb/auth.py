"""OpsDB session authentication.

OpsDB sits behind a redirecting front end. A session is established by
POSTing a placeholder form to ``/accounts.xml`` with redirects disabled:

- 200: the (persisted) cookies are still good, nothing else to do.
- 3xx for the service login: follow redirects until the SSO login page is
  reached, then log in locally at ``https://<host>/login/login``.
- 3xx for a person: follow redirects to the SSO server, POST credentials to
  ``https://<sso>/login?noredirects=1`` until SSO answers 200 or redirects
  to ``/session/tokens``, then pick up the session token.

Cookies are persisted per login so later runs skip the handshake.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable
from urllib.parse import urljoin, urlparse, urlunparse

import httpx
from rich.console import Console

from .cookies import CookieStore, cookies_for_url, seed_cookies
from .exceptions import (
    AmbiguousSessionStateError,
    AuthenticationError,
    CookieNotFoundError,
    MissingTLSCapabilityError,
    OpsDBError,
    RedirectLoopError,
    RequestError,
    UnreachableError,
)
from .prompt import prompt_login

logger = logging.getLogger(__name__)
console = Console(stderr=True)

MAX_SSO_ROUNDS = 7
TOKEN_FOLLOW_REDIRECTS = 2
MAX_REDIRECTS = 10

CHECK_PATH = "/accounts.xml"
PLACEHOLDER_FORM = {"foo": "bar"}

SSO_PATTERN = re.compile(r"^https://sso")
SSO_AUTHORIZED_PATTERN = re.compile(r"^https?://(sso[^/]*)/session/tokens")
SSO_LOGIN_REDIRECT_PATTERN = re.compile(r"^https://(sso[^/]*)/login\?url")
CANT_CONNECT_PATTERN = re.compile(r"Can't connect .* Invalid argument")


class AuthState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    PROBING = "probing"
    INTERACTIVE_SSO = "interactive_sso"
    SERVICE_LOCAL_LOGIN = "service_local_login"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


class CredentialProvider:
    """Deferred password supplier, called at most once."""

    def __init__(self, supplier: Callable[[], str]):
        self._supplier = supplier
        self._secret: str | None = None

    @classmethod
    def fixed(cls, secret: str) -> "CredentialProvider":
        return cls(lambda: secret)

    @property
    def called(self) -> bool:
        return self._secret is not None

    def __call__(self) -> str:
        if self._secret is None:
            self._secret = self._supplier() or ""
        return self._secret


@dataclass
class Identity:
    """A login principal.

    Service identities log in locally and are never prompted; interactive
    identities authenticate through SSO.
    """

    login: str
    credentials: CredentialProvider
    service: bool = False

    @classmethod
    def service_account(cls, login: str, password: str | Callable[[], str]) -> "Identity":
        supplier = password if callable(password) else (lambda: password)
        return cls(login=login, credentials=CredentialProvider(supplier), service=True)

    @classmethod
    def interactive(cls, login: str, password: str | Callable[[], str] = "") -> "Identity":
        supplier = password if callable(password) else (lambda: password)
        return cls(login=login, credentials=CredentialProvider(supplier), service=False)


@dataclass
class Session:
    """Authenticated HTTP context for one identity."""

    server: str
    client: httpx.Client
    identity: Identity
    state: AuthState = AuthState.AUTHENTICATED
    cookie_domain: str = ""

    def url(self, path: str) -> str:
        return f"{self.server}/{path.lstrip('/')}"

    def close(self) -> None:
        self.client.close()


class SessionRegistry:
    """Sessions keyed by login name, one per identity.

    Sessions live until cleared; nothing expires them. Not thread safe.
    """

    def __init__(self):
        self._sessions: dict[str, Session] = {}

    def get(self, login: str) -> Session | None:
        return self._sessions.get(login)

    def register(self, session: Session) -> None:
        self._sessions[session.identity.login] = session

    def clear(self, login: str | None = None) -> None:
        """Drop one cached session (or all) so the next establish re-authenticates."""
        logins = [login] if login is not None else list(self._sessions)
        for name in logins:
            session = self._sessions.pop(name, None)
            if session is not None:
                session.close()

    def close(self) -> None:
        self.clear()

    def __contains__(self, login: str) -> bool:
        return login in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


@dataclass
class Handshake:
    """Mutable state of one establish() call."""

    server: str
    client: httpx.Client
    identity: Identity
    state: AuthState = AuthState.UNAUTHENTICATED
    url: str = ""
    cookie_domain: str = ""


@dataclass
class SSOAttempt:
    """Position in the SSO login loop."""

    location: str
    round: int = 0
    response: httpx.Response | None = None
    authorized: bool = False


def is_redirect(response: httpx.Response | None) -> bool:
    return response is not None and 300 <= response.status_code < 400


def location(response: httpx.Response | None) -> str:
    """Absolute redirect target of a response, or "" if none."""
    if response is None or "location" not in response.headers:
        return ""
    return urljoin(str(response.request.url), response.headers["location"])


def origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def request_following(
    client: httpx.Client, method: str, url: str, limit: int, **kwargs
) -> httpx.Response:
    """Send a request and follow redirects by hand, keeping the method.

    Raises:
        RedirectLoopError: After more than ``limit`` redirects.
        UnreachableError: On transport failure.
    """
    hops = 0
    while True:
        try:
            response = client.request(method, url, follow_redirects=False, **kwargs)
        except httpx.TransportError as e:
            raise UnreachableError(f"Unable to reach {url}: {e}", url=url) from e
        if not is_redirect(response):
            return response
        if hops >= limit:
            raise RedirectLoopError(f"Stopped after {limit} redirects", url=url)
        logger.debug("Redirecting to %s from %s", location(response), url)
        url = location(response)
        hops += 1


class Authenticator:
    """Establishes authenticated sessions and caches them in a registry."""

    def __init__(
        self,
        store: CookieStore,
        registry: SessionRegistry | None = None,
        prompt: Callable[[str], tuple[str, str]] = prompt_login,
        verify: bool = False,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
        out: Console | None = None,
    ):
        """Initialize authenticator.

        Args:
            store: Cookie persistence
            registry: Session cache shared with record clients
            prompt: Called with the login name when a person has no
                password yet; returns (username, password)
            verify: Verify TLS certificates
            timeout: Request timeout in seconds
            transport: Custom httpx transport (tests use MockTransport)
            out: Console for progress messages
        """
        self.store = store
        self.registry = registry if registry is not None else SessionRegistry()
        self.prompt = prompt
        self.verify = verify
        self.timeout = timeout
        self.transport = transport
        self.out = out or console

    def new_client(self) -> httpx.Client:
        return httpx.Client(
            verify=self.verify,
            timeout=self.timeout,
            follow_redirects=False,
            max_redirects=MAX_REDIRECTS,
            transport=self.transport,
        )

    def establish(self, server: str, identity: Identity) -> Session:
        """Return an authenticated session for ``identity``.

        A session already in the registry is returned as is, without
        checking it against the server.

        Raises:
            UnreachableError: Server could not be reached
            RedirectLoopError: A redirect bound was exceeded
            AuthenticationError: Credentials were rejected (and subclasses)
        """
        cached = self.registry.get(identity.login)
        if cached is not None:
            logger.debug("Reusing session for %s", identity.login)
            return cached

        hs = Handshake(server=server.rstrip("/"), client=self.new_client(), identity=identity)
        try:
            self._run(hs)
        except OpsDBError as e:
            hs.state = AuthState.FAILED
            hs.client.close()
            if isinstance(e, RequestError):
                e.server = e.server or hs.server
                e.login = e.login or identity.login
                e.url = e.url or hs.url
            raise

        session = Session(
            server=hs.server,
            client=hs.client,
            identity=identity,
            state=hs.state,
            cookie_domain=hs.cookie_domain,
        )
        self.registry.register(session)
        return session

    def _run(self, hs: Handshake) -> None:
        hs.state = AuthState.PROBING
        self._load_cookies(hs)

        hs.url = f"{hs.server}{CHECK_PATH}"
        logger.debug("Posting to (%s)", hs.url)
        response = self._post(hs, hs.url, PLACEHOLDER_FORM)

        if not is_redirect(response):
            logger.debug("Response from %s: %s", hs.url, response.status_code)
            hs.state = AuthState.AUTHENTICATED
            return

        logger.debug("Response %s redirected to %s", hs.url, location(response))
        if hs.identity.service:
            self._service_login(hs, response)
        else:
            self._interactive_login(hs, response)

    def _load_cookies(self, hs: Handshake) -> None:
        """Seed the jar from persisted cookies and point at their domain."""
        try:
            records = self.store.load(hs.identity.login)
        except CookieNotFoundError as e:
            logger.debug("%s", e)
            return
        records = seed_cookies(hs.client.cookies, records)
        if not records:
            return

        hs.cookie_domain = records[0].domain
        if hs.cookie_domain:
            scheme = urlparse(hs.server).scheme or "http"
            hs.server = f"{scheme}://{hs.cookie_domain}"
            logger.debug("Cookie host: %s", hs.cookie_domain)

    def _post(self, hs: Handshake, url: str, data: dict[str, str]) -> httpx.Response:
        try:
            return hs.client.post(url, data=data, follow_redirects=False)
        except httpx.TransportError as e:
            raise UnreachableError(f"Unable to reach {url}: {e}", url=url) from e

    def _failure(self, cls: type[RequestError], hs: Handshake, message: str, response=None) -> RequestError:
        hs.state = AuthState.FAILED
        return cls(message, server=hs.server, login=hs.identity.login, url=hs.url, response=response)

    def _follow_to_sso(self, hs: Handshake, response: httpx.Response, stop: re.Pattern, update_server: bool) -> httpx.Response:
        """Re-POST the placeholder form along redirects until ``stop`` matches."""
        hops = 0
        while is_redirect(response) and not stop.match(location(response)):
            if hops >= MAX_REDIRECTS:
                raise self._failure(RedirectLoopError, hs, f"Stopped after {MAX_REDIRECTS} redirects")
            hs.url = location(response)
            if update_server:
                hs.server = origin(hs.url)
            logger.debug("Posting to: %s", hs.url)
            response = self._post(hs, hs.url, PLACEHOLDER_FORM)
            hops += 1
        return response

    def _service_login(self, hs: Handshake, response: httpx.Response) -> None:
        hs.state = AuthState.SERVICE_LOCAL_LOGIN
        check_url = hs.url
        response = self._follow_to_sso(hs, response, SSO_PATTERN, update_server=True)

        target = location(response)
        if not is_redirect(response):
            logger.debug("Authentication successful.")
            hs.state = AuthState.AUTHENTICATED
            return
        if not SSO_LOGIN_REDIRECT_PATTERN.match(target):
            raise self._failure(
                AuthenticationError, hs, f"Service login redirected to unexpected SSO page {target}", response
            )

        logger.debug(
            "POST to %s for service login %s was redirected, authenticating to local login path",
            check_url,
            hs.identity.login,
        )
        base = origin(hs.url) if hs.url != check_url else hs.server
        login_url = urlunparse(urlparse(f"{base}/login/login")._replace(scheme="https"))
        hs.url = login_url
        logger.debug("Authenticating to %s", login_url)

        form = {"login": hs.identity.login, "password": hs.identity.credentials()}
        try:
            response = hs.client.post(login_url, data=form, follow_redirects=True)
        except httpx.TooManyRedirects as e:
            raise RedirectLoopError(f"Stopped after {MAX_REDIRECTS} redirects", url=login_url) from e
        except httpx.TransportError as e:
            raise UnreachableError(f"Unable to reach {login_url}: {e}", url=login_url) from e
        logger.debug("Local login response: %s", response.status_code)

        # The local login answer is not checked; the next request will tell.
        host = urlparse(login_url).hostname or ""
        self.store.save(hs.identity.login, cookies_for_url(hs.client.cookies, login_url), host)
        hs.cookie_domain = host
        hs.state = AuthState.AUTHENTICATED

    def _credentials(self, hs: Handshake) -> tuple[str, str]:
        username = hs.identity.login
        password = hs.identity.credentials()
        if not password:
            username, password = self.prompt(username)
        if not username or not password:
            raise self._failure(AuthenticationError, hs, "No credentials supplied")
        return username, password

    def _interactive_login(self, hs: Handshake, response: httpx.Response) -> None:
        response = self._follow_to_sso(hs, response, SSO_PATTERN, update_server=False)
        cookie_location = hs.url
        target = location(response)

        if is_redirect(response) and SSO_PATTERN.match(target):
            logger.debug("POST to %s%s was redirected, authenticating to SSO", hs.server, CHECK_PATH)
            hs.state = AuthState.INTERACTIVE_SSO
            username, password = self._credentials(hs)
            logger.debug("Login: %s", username)

            attempt = SSOAttempt(location=target)
            while not attempt.authorized:
                if attempt.round >= MAX_SSO_ROUNDS:
                    raise self._failure(RedirectLoopError, hs, "SSO redirect loop", attempt.response)
                attempt = self.sso_step(hs, attempt, username, password)
            response = attempt.response

            logger.debug("Authentication successful to %s", cookie_location)
            host = urlparse(cookie_location).hostname or ""
            self.store.save(hs.identity.login, cookies_for_url(hs.client.cookies, cookie_location), host)

        if is_redirect(response) and SSO_AUTHORIZED_PATTERN.match(location(response)):
            self._fetch_session_token(hs, location(response))
        hs.state = AuthState.AUTHENTICATED

    def sso_step(self, hs: Handshake, attempt: SSOAttempt, username: str, password: str) -> SSOAttempt:
        """POST credentials to the SSO host once and classify the answer.

        Returns:
            The next attempt; ``authorized`` is set when SSO accepted.

        Raises:
            MissingTLSCapabilityError: SSO cannot reach back over TLS
            AuthenticationError: SSO rejected the credentials
        """
        sso_host = urlparse(attempt.location).netloc
        logger.debug("SSO server: %s", sso_host)
        hs.url = f"https://{sso_host}/login?noredirects=1"
        self.out.print(f"Authenticating to {hs.url}...")

        response = self._post(hs, hs.url, {"login": username, "password": password})
        target = location(response)
        next_round = attempt.round + 1

        if response.status_code == 200 or (is_redirect(response) and SSO_AUTHORIZED_PATTERN.match(target)):
            return SSOAttempt(location=target or attempt.location, round=next_round, response=response, authorized=True)
        if is_redirect(response):
            logger.debug("Redirected to %s", target)
            return SSOAttempt(location=target, round=next_round, response=response)

        if CANT_CONNECT_PATTERN.search(response.text):
            raise self._failure(
                MissingTLSCapabilityError,
                hs,
                "Cannot connect. Looks like the SSO server is missing Crypt::SSLeay",
                response,
            )
        raise self._failure(AuthenticationError, hs, f"Authentication failed: HTTP {response.status_code}", response)

    def _fetch_session_token(self, hs: Handshake, url: str) -> None:
        hs.url = url
        response = request_following(hs.client, "GET", url, TOKEN_FOLLOW_REDIRECTS)
        if response.status_code == 200:
            raise self._failure(
                AmbiguousSessionStateError,
                hs,
                "Unable to get SSO session token. Might be authentication failure or SSO problem",
                response,
            )
