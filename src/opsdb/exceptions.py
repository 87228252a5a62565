"""Custom exceptions for the OpsDB client."""

import httpx


class OpsDBError(Exception):
    """Base exception for OpsDB errors."""

    pass


class RequestError(OpsDBError):
    """A request or login step failed.

    Carries the server, login and last URL tried so the handshake can be
    retraced by hand.
    """

    def __init__(
        self,
        message: str,
        server: str = "",
        login: str = "",
        url: str = "",
        response: httpx.Response | None = None,
    ):
        super().__init__(message)
        self.server = server
        self.login = login
        self.url = url
        self.response = response

    def __str__(self) -> str:
        message = super().__str__()
        context = [f"{k}={v}" for k, v in (("server", self.server), ("login", self.login), ("url", self.url)) if v]
        if context:
            return f"{message} ({', '.join(context)})"
        return message


class UnreachableError(RequestError):
    """Server could not be reached (DNS, TLS, connection refused...)."""

    pass


class RedirectLoopError(RequestError):
    """A bounded redirect chain exceeded its limit."""

    pass


class AuthenticationError(RequestError):
    """Failed to authenticate with OpsDB or the SSO server."""

    pass


class MissingTLSCapabilityError(AuthenticationError):
    """SSO server reported it cannot open TLS connections (missing Crypt::SSLeay)."""

    pass


class AmbiguousSessionStateError(AuthenticationError):
    """SSO login looked successful but the session token could not be confirmed."""

    pass


class UnknownFieldCatalogError(OpsDBError):
    """Field names for a record type could not be retrieved."""

    def __init__(self, message: str, record_type: str = ""):
        super().__init__(message)
        self.record_type = record_type


class MalformedResponseError(OpsDBError):
    """Response body was not an XML document with a root element."""

    pass


class CookieNotFoundError(OpsDBError):
    """No persisted cookie file for the identity (or it is unreadable)."""

    pass
