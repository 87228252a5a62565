"""OpsDB record client: search, update and create records."""

import logging
from typing import Callable

import httpx

from .auth import MAX_REDIRECTS, Session, request_following
from .exceptions import OpsDBError, RedirectLoopError, UnknownFieldCatalogError, UnreachableError
from .prompt import confirm as prompt_confirm
from .query import (
    FieldCatalog,
    FieldCatalogCache,
    build_create_url,
    build_search_url,
    build_update_url,
    field_names_url,
    set_params,
    singularize,
)
from .results import ResultArray, ResultMap, ResultNode, ResultValue, build_from_xml, intersect_fields

logger = logging.getLogger(__name__)


class OpsDBClient:
    """Issues record requests over an authenticated session.

    Field catalogs are fetched once per record type and kept in ``catalogs``,
    which may be shared between clients.
    """

    def __init__(
        self,
        session: Session,
        catalogs: FieldCatalogCache | None = None,
        confirm: Callable[[str], bool] = prompt_confirm,
    ):
        """Initialize client.

        Args:
            session: Authenticated session (see Authenticator.establish)
            catalogs: Field catalog cache
            confirm: Asks the user before anything is written
        """
        self.session = session
        self.catalogs = catalogs if catalogs is not None else FieldCatalogCache()
        self.confirm = confirm

    @property
    def server(self) -> str:
        return self.session.server

    def _get(self, url: str) -> httpx.Response:
        logger.debug("URL: %s", url)
        try:
            return self.session.client.get(url, follow_redirects=True)
        except httpx.TooManyRedirects as e:
            raise RedirectLoopError(f"Stopped after {MAX_REDIRECTS} redirects fetching {url}", url=url) from e
        except httpx.TransportError as e:
            raise UnreachableError(f"Unable to reach {url}: {e}", url=url) from e

    def _fetch_catalog(self, record_type: str) -> FieldCatalog:
        url = field_names_url(self.server, record_type)
        try:
            response = self._get(url)
        except OpsDBError as e:
            raise UnknownFieldCatalogError(f"Unable to get field names for {record_type}: {e}", record_type) from e
        if response.status_code != 200:
            raise UnknownFieldCatalogError(
                f"Unable to get field names for {record_type}: HTTP {response.status_code}", record_type
            )
        return FieldCatalog.from_xml(record_type, response.content)

    def field_names(self, record_type: str) -> FieldCatalog:
        """Field catalog for a record type.

        Raises:
            UnknownFieldCatalogError: If the catalog cannot be retrieved.
        """
        return self.catalogs.get(record_type, self._fetch_catalog)

    def _search(
        self, record_type: str, conditions: dict[str, list[str]], includes: dict[str, list[str]], catalog: FieldCatalog
    ) -> ResultNode:
        url = build_search_url(self.server, record_type, conditions, includes, catalog)
        response = self._get(url)
        return build_from_xml(response.content)

    def get_objects(
        self,
        record_type: str,
        conditions: dict[str, list[str]],
        includes: dict[str, list[str]] | None = None,
    ) -> ResultNode:
        """Search records.

        Args:
            record_type: Record type, e.g. "nodes"
            conditions: Search flags, keyword prefix -> expressions
            includes: ``{"include": [fields]}``; unknown fields are dropped

        Returns:
            Result tree of matching records
        """
        catalog = self.field_names(record_type)
        includes = dict(includes or {})
        includes["include"] = intersect_fields(catalog.names, includes.get("include", []))
        return self._search(record_type, conditions, includes, catalog)

    def get_all_fields(self, record_type: str, conditions: dict[str, list[str]]) -> ResultNode:
        """Search records, including every association the type has."""
        catalog = self.field_names(record_type)
        return self._search(record_type, conditions, {"include": list(catalog.names)}, catalog)

    def _write(self, method: str, url: str) -> httpx.Response:
        logger.debug("%s Request: %s", method, url)
        return request_following(self.session.client, method, url, MAX_REDIRECTS)

    def set_objects(
        self,
        record_type: str,
        conditions: dict[str, list[str]],
        values: dict[str, str],
        includes: dict[str, list[str]] | None = None,
    ) -> str:
        """Update matching records, or create one when nothing matches.

        The user is asked to confirm before any request is sent.

        Returns:
            Summary message

        Raises:
            OpsDBError: If one or more updates failed (message lists counts)
        """
        catalog = self.field_names(record_type)
        results = self._search(record_type, conditions, includes or {}, catalog)

        if isinstance(results, ResultArray) and results.items:
            return self._update(record_type, results, values)
        return self._create(record_type, conditions, values)

    def _update(self, record_type: str, results: ResultArray, values: dict[str, str]) -> str:
        total = len(results.items)
        if not self.confirm(f"This will update {total} entry, continue?  [y/N]: "):
            return "Cancelled\n"

        succeeded = 0
        for item in results.items:
            if not isinstance(item, ResultMap):
                continue
            record_id = item.get("id")
            if not isinstance(record_id, ResultValue) or not record_id.value:
                continue

            logger.debug("Set: %s", values)
            url = build_update_url(self.server, record_type, record_id.value, set_params(item.name, values))
            try:
                response = self._write("PUT", url)
            except OpsDBError as e:
                logger.error("Error requesting PUT request for url: %s: %s", url, e)
                continue
            if response.status_code >= 400:
                logger.error("PUT %s failed: HTTP %s", url, response.status_code)
                continue
            logger.debug("Success Response Body:\n%s", response.text)
            succeeded += 1

        message = f"{succeeded} out of {total} update(s) succeeded.\n"
        if succeeded != total:
            raise OpsDBError(message + f"{total - succeeded} out of {total} update(s) failed.\n")
        return message

    def _create(self, record_type: str, conditions: dict[str, list[str]], values: dict[str, str]) -> str:
        values = dict(values)
        name = conditions.get("", [""])[0] if conditions.get("") else ""
        if values.get("name"):
            name = values["name"]
        else:
            values["name"] = name

        if not self.confirm(f"This will create new entry ({name}), continue?  [y/N]: "):
            return "No update was ran.\n"

        logger.debug("Set: %s", values)
        url = build_create_url(self.server, record_type, set_params(singularize(record_type), values))
        response = self._write("POST", url)
        if response.status_code >= 400:
            raise OpsDBError(f"Failed creating {name}: HTTP {response.status_code}")
        logger.debug("Success Response Body:\n%s", response.text)
        return f"Successfully created {singularize(record_type)} ({name})\n"
