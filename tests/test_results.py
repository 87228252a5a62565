"""Tests for the result tree: building, comparing and rendering."""

import pytest

from opsdb.exceptions import MalformedResponseError
from opsdb.results import (
    NO_MATCHES,
    ResultArray,
    ResultMap,
    ResultValue,
    build_from_xml,
    compare,
    debug_dump,
    field_matches,
    filtered_dump,
    intersect_fields,
    join_path,
    render,
    render_all,
)

SINGLE_NODE_XML = """<nodes type="array">
  <node>
    <id>1</id>
    <name>web1</name>
    <operating_system>
      <name>CentOS</name>
      <version>7</version>
    </operating_system>
  </node>
</nodes>"""


def _node(name: str, **extra: str) -> ResultMap:
    node = ResultMap(name="node")
    node.add("name", ResultValue(name="name", value=name))
    for key, value in extra.items():
        node.add(key, ResultValue(name=key, value=value))
    return node


class TestBuild:
    """Tests for building trees from XML."""

    def test_array_root(self, nodes_xml):
        result = build_from_xml(nodes_xml)
        assert isinstance(result, ResultArray)
        assert result.name == "nodes"
        assert len(result) == 2

    def test_text_element_becomes_value(self, nodes_xml):
        node = build_from_xml(nodes_xml).items[0]
        assert isinstance(node, ResultMap)
        assert node.get("name") == ResultValue(name="name", value="web1.example.com")

    def test_nested_element_becomes_map(self, nodes_xml):
        os_node = build_from_xml(nodes_xml).items[0].get("operating_system")
        assert isinstance(os_node, ResultMap)
        assert os_node.keys() == ["name", "version_number"]

    def test_field_order_preserved(self, nodes_xml):
        node = build_from_xml(nodes_xml).items[0]
        assert node.keys() == ["id", "name", "operating_system", "description", "node_groups"]

    def test_nil_value_is_empty_leaf(self, nodes_xml):
        node = build_from_xml(nodes_xml).items[0]
        assert node.get("description") == ResultValue(name="description", value="")

    def test_nil_ignores_children(self):
        result = build_from_xml('<node><owner nil="true"><name>x</name></owner></node>')
        assert result.get("owner") == ResultValue(name="owner", value="")

    def test_nil_array_is_empty_array(self):
        result = build_from_xml('<node><tags type="array" nil="true"><tag>a</tag></tags></node>')
        tags = result.get("tags")
        assert isinstance(tags, ResultArray)
        assert tags.items == []

    def test_single_child_array_stays_array(self, nodes_xml):
        groups = build_from_xml(nodes_xml).items[0].get("node_groups")
        assert isinstance(groups, ResultArray)
        assert len(groups) == 1
        assert groups.items[0].name_value() == "web"

    def test_empty_array_stays_array(self, nodes_xml):
        groups = build_from_xml(nodes_xml).items[1].get("node_groups")
        assert isinstance(groups, ResultArray)
        assert len(groups) == 0

    def test_array_of_text_values(self):
        result = build_from_xml('<aliases type="array"><alias>a</alias><alias>b</alias></aliases>')
        assert isinstance(result, ResultArray)
        assert [v.value for v in result.items] == ["a", "b"]

    def test_comments_ignored(self):
        result = build_from_xml("<nodes type=\"array\"><!-- none --><node><name>a</name></node></nodes>")
        assert len(result) == 1

    def test_repeated_tag_keeps_first_position(self):
        result = build_from_xml("<a><x>1</x><y>2</y><x>3</x></a>")
        assert result.keys() == ["x", "y"]
        assert result.get("x").value == "3"

    def test_malformed_xml(self):
        with pytest.raises(MalformedResponseError):
            build_from_xml("<nodes><node></nodes>")

    def test_empty_body(self):
        with pytest.raises(MalformedResponseError):
            build_from_xml("")


class TestResultMap:
    def test_add_overwrites_in_place(self):
        m = ResultMap(name="node")
        m.add("a", ResultValue(value="1"))
        m.add("b", ResultValue(value="2"))
        m.add("a", ResultValue(value="3"))
        assert m.keys() == ["a", "b"]
        assert m.get("a").value == "3"

    def test_name_value_requires_leaf(self):
        m = ResultMap(name="node")
        m.add("name", ResultMap(name="name"))
        assert m.name_value() is None


class TestCompare:
    """Tests for structural comparison."""

    def test_reflexive(self, nodes_xml):
        tree = build_from_xml(nodes_xml)
        assert compare(tree, tree)
        for node in tree.items:
            assert compare(node, node)

    def test_maps_with_name_compare_by_name_only(self):
        a = _node("web1", status="up")
        b = _node("web1", status="down")
        assert compare(a, b)

    def test_maps_with_different_names(self):
        assert not compare(_node("web1", status="up"), _node("web2", status="up"))

    def test_maps_of_different_size(self):
        assert not compare(_node("web1"), _node("web1", status="up"))

    def test_maps_without_name_compare_all_fields(self):
        a = ResultMap(name="os", fields={"version": ResultValue(value="7")})
        b = ResultMap(name="os", fields={"version": ResultValue(value="8")})
        assert not compare(a, b)
        assert compare(a, ResultMap(name="os", fields={"version": ResultValue(value="7")}))

    def test_arrays_unordered(self):
        a = ResultArray(items=[_node("web1"), _node("web2")])
        b = ResultArray(items=[_node("web2"), _node("web1")])
        assert compare(a, b)

    def test_arrays_of_different_length(self):
        assert not compare(ResultArray(items=[_node("web1")]), ResultArray(items=[]))

    def test_mixed_kinds(self):
        assert not compare(ResultValue(value="a"), ResultMap())
        assert not compare(ResultMap(), ResultArray())
        assert not compare(ResultValue(value="a"), None)


class TestFieldMatches:
    """Tests for field path filter matching."""

    def test_no_filters_matches_everything(self):
        assert field_matches("node[os][version]", [])

    def test_wildcard(self):
        assert field_matches("node[os][version]", ["*"])

    def test_exact(self):
        assert field_matches("node[os][version]", ["node[os][version]"])

    def test_substring(self):
        assert field_matches("node[os][version]", ["os"])

    def test_substring_other_direction(self):
        assert field_matches("os", ["operating_system"]) is False
        assert field_matches("name", ["hostname"])

    def test_no_match(self):
        assert not field_matches("node[os][version]", ["osx"])

    def test_two_bracketed_paths_need_equality(self):
        assert not field_matches("node[os][version]", ["node[os]"])


class TestIntersectFields:
    def test_bidirectional_substring(self):
        catalog = ["operating_system", "node_groups"]
        requested = ["node_groups[tags]", "bogus", "operating"]
        assert intersect_fields(catalog, requested) == ["operating", "node_groups[tags]"]

    def test_unknown_dropped(self):
        assert intersect_fields(["node_groups"], ["hardware"]) == []


class TestRender:
    """Tests for rendering trees."""

    def test_names_only(self, nodes_xml):
        assert render(build_from_xml(nodes_xml), []) == "web1.example.com\nweb2.example.com\n"

    def test_names_only_omits_values(self, nodes_xml):
        output = render(build_from_xml(nodes_xml))
        assert "CentOS" not in output
        assert ":" not in output

    def test_wildcard_emits_every_leaf(self):
        output = render(build_from_xml(SINGLE_NODE_XML), ["*"])
        assert output == (
            "web1:\n"
            "id: 1\n"
            "name: web1\n"
            "operating_system[name]: CentOS\n"
            "operating_system[version]: 7\n"
            "\n"
        )

    def test_filtered_fields(self):
        output = render(build_from_xml(SINGLE_NODE_XML), ["operating_system"])
        assert output == "web1:\noperating_system[name]: CentOS\noperating_system[version]: 7\n\n"

    def test_filter_by_leaf_key(self):
        output = render(build_from_xml(SINGLE_NODE_XML), ["version"])
        assert "operating_system[version]: 7" in output
        assert "CentOS" not in output

    def test_nested_array_paths(self, nodes_xml):
        output = render(build_from_xml(nodes_xml), ["node_groups"])
        assert "node_groups[name]: web" in output

    def test_empty_array(self):
        assert render(ResultArray(name="nodes"), []) == NO_MATCHES
        assert render(ResultArray(name="nodes"), ["*"]) == NO_MATCHES

    def test_none(self):
        assert render(None) == NO_MATCHES

    def test_map_without_fields_shows_tag(self):
        assert render(_node("web1")) == "node\n"

    def test_map_with_fields(self):
        assert render(_node("web1", status="up"), ["status"]) == "web1:\nstatus: up\n"

    def test_record_without_name_uses_tag(self):
        tree = ResultArray(items=[ResultMap(name="vip", fields={"id": ResultValue(value="3")})])
        assert render(tree) == "vip\n"


class TestDumps:
    def test_filtered_dump_with_path(self):
        node = ResultMap(name="os", fields={"name": ResultValue(value="CentOS")})
        assert filtered_dump(node, ["*"], ["node", "operating_system"]) == "node[operating_system][name]: CentOS\n"

    def test_render_all(self):
        output = render_all(build_from_xml(SINGLE_NODE_XML))
        assert output.startswith("web1:\n")
        assert "operating_system[version]: 7\n" in output

    def test_debug_dump(self):
        output = debug_dump(build_from_xml(SINGLE_NODE_XML))
        assert output.startswith("Array: (nodes)\nMap: (node)\n")
        assert "Value: (version) operating_system[version]: 7\n" in output

    def test_join_path(self):
        assert join_path(["node", "os", "version"]) == "node[os][version]"
        assert join_path([]) == ""
