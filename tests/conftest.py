"""Pytest fixtures for OpsDB tests."""

import io
from typing import Callable

import httpx
import pytest
from rich.console import Console

from opsdb.cookies import CookieStore

NODES_XML = """<?xml version="1.0" encoding="UTF-8"?>
<nodes type="array">
  <node>
    <id type="integer">1</id>
    <name>web1.example.com</name>
    <operating_system>
      <name>CentOS</name>
      <version_number>7</version_number>
    </operating_system>
    <description nil="true"></description>
    <node_groups type="array">
      <node_group>
        <name>web</name>
      </node_group>
    </node_groups>
  </node>
  <node>
    <id type="integer">2</id>
    <name>web2.example.com</name>
    <operating_system>
      <name>Ubuntu</name>
      <version_number>22.04</version_number>
    </operating_system>
    <description nil="true"></description>
    <node_groups type="array"/>
  </node>
</nodes>
"""

FIELD_NAMES_XML = """<?xml version="1.0" encoding="UTF-8"?>
<field_names type="array">
  <field_name>name</field_name>
  <field_name>status</field_name>
  <field_name>operating_system[name]</field_name>
  <field_name>operating_system[version_number]</field_name>
  <field_name>hardware_profile[manufacturer]</field_name>
  <field_name>node_groups[name]</field_name>
</field_names>
"""


@pytest.fixture
def nodes_xml() -> str:
    """Search response with two nodes."""
    return NODES_XML


@pytest.fixture
def field_names_xml() -> str:
    """field_names.xml response for nodes."""
    return FIELD_NAMES_XML


@pytest.fixture
def cookie_store(tmp_path) -> CookieStore:
    """Cookie store writing under a temporary directory."""
    return CookieStore(tmp_path)


@pytest.fixture
def quiet_console() -> Console:
    """Console that writes to a buffer."""
    return Console(file=io.StringIO())


class Recorder:
    """MockTransport handler that records requests and dispatches to a router."""

    def __init__(self, router: Callable[[httpx.Request], httpx.Response]):
        self.router = router
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.router(request)

    def urls(self) -> list[str]:
        return [str(r.url) for r in self.requests]

    def count(self, method: str, prefix: str) -> int:
        return sum(1 for r in self.requests if r.method == method and str(r.url).startswith(prefix))


@pytest.fixture
def recorder() -> Callable[[Callable[[httpx.Request], httpx.Response]], Recorder]:
    """Factory for recording request handlers."""
    return Recorder


def redirect(url: str, **headers) -> httpx.Response:
    return httpx.Response(302, headers={"location": url, **headers})
