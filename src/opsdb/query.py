"""Request URL construction for OpsDB searches, updates and creates."""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable
from urllib.parse import urlencode

from .exceptions import MalformedResponseError, UnknownFieldCatalogError
from .results import parse_document

logger = logging.getLogger(__name__)

FIELD_NAMES_ROOT = "field_names"
FIELD_NAME_TAG = "field_name"

# field[subfield] -> field
_SUBFIELD_PATTERN = re.compile(r"^([^\[]+)\[.+\]")


@dataclass
class FieldCatalog:
    """Known fields for one record type, from ``<type>/field_names.xml``.

    Attributes:
        record_type: Record type, e.g. "nodes"
        entries: Every field name the server listed
        names: Association names (prefixes of bracketed entries), in the
            order first seen. Includes are checked against these.
        shortcuts: Abbreviated field token -> canonical bracketed path
    """

    record_type: str
    entries: list[str] = field(default_factory=list)
    names: list[str] = field(default_factory=list)
    shortcuts: dict[str, str] = field(default_factory=dict)

    def expand(self, key: str) -> str:
        """Replace a shortcut with its canonical field path."""
        return self.shortcuts.get(key, key)

    @classmethod
    def from_xml(cls, record_type: str, content: str | bytes) -> "FieldCatalog":
        """Parse a field_names document.

        Raises:
            UnknownFieldCatalogError: If the document is malformed or has no
                ``field_names`` root.
        """
        try:
            root = parse_document(content)
        except MalformedResponseError as e:
            raise UnknownFieldCatalogError(f"Unable to parse field names for {record_type}: {e}", record_type) from e
        if root.tag != FIELD_NAMES_ROOT:
            raise UnknownFieldCatalogError(f"No field names returned for {record_type}", record_type)

        entries = [(child.text or "").strip() for child in root if child.tag == FIELD_NAME_TAG]
        entries = [e for e in entries if e]

        names: list[str] = []
        for entry in entries:
            match = _SUBFIELD_PATTERN.match(entry)
            if match and match.group(1) not in names:
                names.append(match.group(1))

        return cls(record_type=record_type, entries=entries, names=names, shortcuts=build_shortcuts(entries))


def build_shortcuts(entries: list[str]) -> dict[str, str]:
    """Build the shortcut table for a list of field names.

    Each bracketed entry ``a[b][c]`` is reachable as ``a.b.c``, and as ``c``
    alone when no other entry ends in ``c`` and ``c`` is not itself a field.
    """
    shortcuts: dict[str, str] = {}
    by_leaf: dict[str, list[str]] = {}
    plain = {e for e in entries if "[" not in e}

    for entry in entries:
        if "[" not in entry:
            continue
        segments = [s for s in re.split(r"[\[\]]+", entry) if s]
        shortcuts[".".join(segments)] = entry
        by_leaf.setdefault(segments[-1], []).append(entry)

    for leaf, paths in by_leaf.items():
        if len(paths) == 1 and leaf not in plain:
            shortcuts.setdefault(leaf, paths[0])
    return shortcuts


class FieldCatalogCache:
    """Field catalogs keyed by record type, fetched once each.

    Not thread safe; the CLI is single threaded.
    """

    def __init__(self):
        self._catalogs: dict[str, FieldCatalog] = {}

    def get(self, record_type: str, fetch: Callable[[str], FieldCatalog]) -> FieldCatalog:
        """Return the cached catalog, calling ``fetch`` on first use."""
        catalog = self._catalogs.get(record_type)
        if catalog is None:
            logger.debug("Fetching field names for %s", record_type)
            catalog = fetch(record_type)
            self._catalogs[record_type] = catalog
        return catalog

    def clear(self) -> None:
        self._catalogs.clear()

    def __contains__(self, record_type: str) -> bool:
        return record_type in self._catalogs


def split_conditions(
    conditions: dict[str, list[str]], expand: Callable[[str], str] = lambda k: k
) -> dict[str, list[str]]:
    """Turn search flags into query parameters.

    ``conditions`` maps a search keyword prefix ("" for plain matching,
    "exact_", "regex_"...) to raw values like ``"name=web1,status=up"``.
    A value without ``=`` matches on ``name``.

    Args:
        conditions: Keyword prefix -> list of comma-delimited expressions
        expand: Shortcut expansion for field keys

    Returns:
        Parameter name -> values
    """
    params: dict[str, list[str]] = {}
    for prefix, raw_values in conditions.items():
        parsed: dict[str, list[str]] = {}
        for raw in raw_values:
            for entry in raw.split(","):
                pair = entry.split("=")
                if len(pair) == 2:
                    key = f"{prefix}{expand(pair[0])}"
                    value = pair[1]
                elif len(pair) == 1:
                    key, value = "name", pair[0]
                else:
                    break
                parsed[key] = [value]
        for key, values in parsed.items():
            params.setdefault(key, []).extend(values)
    return params


def include_params(includes: dict[str, list[str]]) -> dict[str, list[str]]:
    """Turn include lists into ``include[field]`` parameters.

    ``field[subfield]`` includes the association ``field``; a ``[tags]``
    sub-selector also asks for its tags.
    """
    params: dict[str, list[str]] = {}
    for key, fields in includes.items():
        for f in fields:
            match = _SUBFIELD_PATTERN.match(f)
            if match:
                values = [""]
                if "[tags]" in f:
                    values.append("tags")
                params[f"{key}[{match.group(1)}]"] = values
            else:
                params[f"{key}[{f}]"] = [""]
    return params


def encode_params(params: dict[str, list[str]]) -> str:
    """Form-encode parameters with keys sorted."""
    return urlencode(sorted((k, v) for k, values in params.items() for v in values))


def build_search_url(
    server: str,
    record_type: str,
    conditions: dict[str, list[str]],
    includes: dict[str, list[str]] | None = None,
    catalog: FieldCatalog | None = None,
) -> str:
    """Build ``<server>/<type>.xml?<query>`` for a search.

    Args:
        server: Base server URL
        record_type: Record type, e.g. "nodes"
        conditions: Search flags (see split_conditions)
        includes: ``{"include": [fields]}`` associations to include
        catalog: Field catalog providing shortcut expansion

    Returns:
        Search URL
    """
    expand = catalog.expand if catalog else (lambda k: k)
    params = split_conditions(conditions, expand)
    for key, values in include_params(includes or {}).items():
        params.setdefault(key, []).extend(values)
    return f"{server}/{record_type}.xml?{encode_params(params)}"


def set_params(prefix: str, values: dict[str, str]) -> dict[str, list[str]]:
    """Scope field assignments under a record prefix.

    Keys already in bracket form are sent unchanged, everything else becomes
    ``prefix[key]``.
    """
    params = {}
    for key, value in values.items():
        if "[" in key and key.endswith("]"):
            params[key] = [value]
        else:
            params[f"{prefix}[{key}]"] = [value]
    return params


def build_update_url(server: str, record_type: str, record_id: str, params: dict[str, list[str]]) -> str:
    return f"{server}/{record_type}/{record_id}.xml?{encode_params(params)}"


def build_create_url(server: str, record_type: str, params: dict[str, list[str]]) -> str:
    return f"{server}/{record_type}.xml?{encode_params(params)}"


def field_names_url(server: str, record_type: str) -> str:
    return f"{server}/{record_type}/field_names.xml"


def singularize(plural: str) -> str:
    """Naive singular form of a record type.

    ``statuses`` -> ``status``, ``ip_addresses`` -> ``ip_address``,
    ``nodes`` -> ``node``. Words are not checked against a dictionary, so
    an already singular ``status`` becomes ``statu``.
    """
    match = re.fullmatch(r"(.*s)es", plural)
    if match:
        return match.group(1)
    match = re.fullmatch(r"(.*)s", plural)
    if match:
        return match.group(1)
    return plural
