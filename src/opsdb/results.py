"""Typed result tree for OpsDB XML responses.

OpsDB answers with Rails-style XML: records are elements, collections carry
``type="array"`` and empty values carry ``nil="true"``. Responses are turned
into a tree of three node kinds:

    ResultValue  leaf holding a string
    ResultMap    ordered field name -> node mapping
    ResultArray  ordered list of nodes

Field paths address nested values with bracket nesting, e.g.
``node[operating_system][name]``. The same syntax is used to build request
parameters and to filter what gets printed.
"""

from dataclasses import dataclass, field
from typing import Union

from lxml import etree

from .exceptions import MalformedResponseError

NO_MATCHES = "No matching objects\n"
WILDCARD = "*"

# No entity expansion or network access while parsing responses
_PARSER = etree.XMLParser(resolve_entities=False, no_network=True)


@dataclass
class ResultValue:
    """Leaf node."""

    name: str = ""
    value: str = ""


@dataclass
class ResultMap:
    """Record node. Field order is the order fields were first seen."""

    name: str = ""
    fields: dict[str, "ResultNode"] = field(default_factory=dict)

    def add(self, key: str, node: "ResultNode") -> None:
        """Set a field. Re-adding a key replaces the value in place."""
        self.fields[key] = node

    def get(self, key: str) -> "ResultNode | None":
        return self.fields.get(key)

    def keys(self) -> list[str]:
        return list(self.fields)

    def items(self):
        return self.fields.items()

    def name_value(self) -> str | None:
        """Value of the record's ``name`` field, if it is a leaf."""
        node = self.fields.get("name")
        if isinstance(node, ResultValue):
            return node.value
        return None

    def __len__(self) -> int:
        return len(self.fields)


@dataclass
class ResultArray:
    """Collection node."""

    name: str = ""
    items: list["ResultNode"] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.items)


ResultNode = Union[ResultValue, ResultMap, ResultArray]


def _unexpected(node: object) -> TypeError:
    return TypeError(f"Not a result node: {type(node).__name__}")


# --- Construction ---


def _is_element(node) -> bool:
    # Comments and processing instructions have callable tags
    return isinstance(node.tag, str)


def build(element: etree._Element) -> ResultNode:
    """Build a result tree from a parsed XML element.

    Args:
        element: lxml element (usually the document root)

    Returns:
        ResultArray for ``type="array"`` elements, ResultValue for nil or
        text-only elements, ResultMap otherwise.
    """
    name = element.tag
    is_array = element.get("type") == "array"

    if element.get("nil") == "true":
        if is_array:
            return ResultArray(name=name)
        return ResultValue(name=name, value="")

    if is_array:
        return ResultArray(name=name, items=[build(child) for child in element if _is_element(child)])

    if len(element) == 0 and element.text is not None:
        return ResultValue(name=name, value=element.text)

    result = ResultMap(name=name)
    for child in element:
        if _is_element(child):
            result.add(child.tag, build(child))
    return result


def parse_document(content: str | bytes) -> etree._Element:
    """Parse an XML document and return its root element.

    Raises:
        MalformedResponseError: If the content is not well-formed XML.
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    try:
        root = etree.fromstring(content, parser=_PARSER)
    except etree.XMLSyntaxError as e:
        raise MalformedResponseError(f"Unable to parse response as XML: {e}") from e
    if root is None:
        raise MalformedResponseError("Response has no document element")
    return root


def build_from_xml(content: str | bytes) -> ResultNode:
    """Parse a response body and build its result tree."""
    return build(parse_document(content))


# --- Comparison ---


def compare(a: ResultNode | None, b: ResultNode | None) -> bool:
    """Structural equality between two result trees.

    Maps that carry a ``name`` field are equal when their names are equal;
    other fields are not looked at. Arrays of equal length are equal when
    every element of ``a`` matches some element of ``b``.
    """
    if isinstance(a, ResultMap):
        if not isinstance(b, ResultMap) or len(a) != len(b):
            return False
        a_name = a.get("name")
        if a_name is not None:
            return compare(a_name, b.get("name"))
        for key, node in a.items():
            other = b.get(key)
            if other is None or not compare(node, other):
                return False
        return True
    if isinstance(a, ResultArray):
        if not isinstance(b, ResultArray) or len(a) != len(b):
            return False
        return all(any(compare(item, other) for other in b.items) for item in a.items)
    if isinstance(a, ResultValue):
        return isinstance(b, ResultValue) and a.value == b.value
    return False


# --- Field paths ---


def join_path(segments: list[str]) -> str:
    """Join path segments as ``a[b][c]``."""
    if not segments:
        return ""
    return segments[0] + "".join(f"[{s}]" for s in segments[1:])


def field_matches(path: str, filters: list[str]) -> bool:
    """Return True if a field path should be shown for the given filters.

    An empty filter list shows everything. A filter matches on ``*``, on
    equality, or when either string contains the other and at least one of
    them has no brackets, so ``os`` finds ``node[operating_system][name]``.
    """
    if not filters:
        return True
    for f in filters:
        if f == WILDCARD or f == path:
            return True
        if "[" in f and "[" in path:
            continue
        if f in path or path in f:
            return True
    return False


def intersect_fields(catalog: list[str], requested: list[str]) -> list[str]:
    """Keep requested fields that relate to a known field name.

    A requested field is kept when it contains, or is contained by, any
    catalog name. Unknown fields are dropped silently.
    """
    result = []
    for name in catalog:
        for field_name in requested:
            if (name in field_name or field_name in name) and field_name not in result:
                result.append(field_name)
    return result


# --- Rendering ---


def _filtered_lines(node: ResultNode, path: list[str], fields: list[str]) -> list[str]:
    lines: list[str] = []
    if isinstance(node, ResultArray):
        if field_matches(join_path(path), fields):
            fields = fields + [join_path(path + ["name"])]
        for item in node.items:
            lines.extend(_filtered_lines(item, path, fields))
    elif isinstance(node, ResultMap):
        for key, child in node.items():
            child_path = path + [key]
            if isinstance(child, ResultValue):
                name = join_path(child_path)
                if field_matches(name, fields) or field_matches(key, fields):
                    lines.append(f"{name}: {child.value}")
            else:
                lines.extend(_filtered_lines(child, child_path, fields))
    elif isinstance(node, ResultValue):
        name = join_path(path) or node.name
        if field_matches(name, fields):
            lines.append(f"{name}: {node.value}")
    else:
        raise _unexpected(node)
    return lines


def filtered_dump(node: ResultNode, fields: list[str], path: list[str] | None = None) -> str:
    """Dump ``path: value`` lines for leaves matching ``fields``."""
    return "".join(line + "\n" for line in _filtered_lines(node, path or [], fields))


def render(node: ResultNode | None, fields: list[str] | None = None) -> str:
    """Render a result tree for display.

    Args:
        node: Result tree from a search
        fields: Field filters. Without any, only record names are shown.

    Returns:
        Text ready to print
    """
    if node is None:
        return NO_MATCHES
    fields = fields or []

    if isinstance(node, ResultArray):
        if not node.items:
            return NO_MATCHES
        out = []
        for item in node.items:
            if not isinstance(item, ResultMap):
                continue
            name = item.name_value()
            if not fields:
                out.append((name if name is not None else item.name) + "\n")
                continue
            if name is not None:
                out.append(name + ":\n")
            out.append(filtered_dump(item, fields) + "\n")
        return "".join(out)

    if isinstance(node, ResultMap):
        if not fields:
            return node.name + "\n"
        name = node.name_value()
        header = name + ":\n" if name is not None else ""
        return header + filtered_dump(node, fields)

    if isinstance(node, ResultValue):
        return node.value + "\n" if fields else ""

    raise _unexpected(node)


def _all_lines(node: ResultNode, path: list[str]) -> list[str]:
    lines: list[str] = []
    if isinstance(node, ResultMap):
        if not len(node) and path:
            lines.append(f"{join_path(path)}:")
        for key, child in node.items():
            lines.extend(_all_lines(child, path + [key]))
    elif isinstance(node, ResultArray):
        for item in node.items:
            lines.extend(_all_lines(item, path))
    elif isinstance(node, ResultValue):
        lines.append(f"{join_path(path)}: {node.value}")
    else:
        raise _unexpected(node)
    return lines


def render_all(node: ResultNode | None) -> str:
    """Render every leaf as ``path: value``, records headed by their name."""
    if node is None:
        return NO_MATCHES
    if isinstance(node, ResultArray):
        if not node.items:
            return NO_MATCHES
        out = []
        for item in node.items:
            if isinstance(item, ResultMap) and item.name_value() is not None:
                out.append(item.name_value() + ":\n")
            out.append("".join(line + "\n" for line in _all_lines(item, [])) + "\n")
        return "".join(out)
    if isinstance(node, ResultMap):
        name = node.name_value()
        header = name + ":\n" if name is not None else ""
        return header + "".join(line + "\n" for line in _all_lines(node, []))
    if isinstance(node, ResultValue):
        return node.value + "\n"
    raise _unexpected(node)


def debug_dump(node: ResultNode, path: list[str] | None = None) -> str:
    """Typed dump of a tree, for --debug output."""
    path = path or []
    if isinstance(node, ResultMap):
        out = f"Map: ({node.name})\n"
        for key, child in node.items():
            out += debug_dump(child, path + [key])
        return out
    if isinstance(node, ResultArray):
        out = f"Array: ({node.name})\n"
        for item in node.items:
            out += debug_dump(item, path)
        return out
    if isinstance(node, ResultValue):
        return f"Value: ({node.name}) {join_path(path)}: {node.value}\n"
    raise _unexpected(node)
