from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest

from gsp.accounts.tokens import Account
from gsp.control.state import PanelState, ServerRecord
from gsp.panel.resources import Allocation, Egg, Location, Node, Page, Server, User


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "uses_respx: test mocks HTTP with respx (allows httpx transport calls)"
    )


@pytest.fixture(autouse=True)
def _block_real_http(request, monkeypatch):
    """Prevent any test from reaching a real panel or token service."""
    if request.node.get_closest_marker("uses_respx"):
        return

    def _blocked(self, req, *a, **kw):
        raise RuntimeError(
            f"Unmocked HTTP call to {req.url}! "
            f"Use respx or a MagicMock client for this request."
        )

    monkeypatch.setattr(httpx.HTTPTransport, "handle_request", _blocked)


# ── Panel resource factories ──


@pytest.fixture
def make_location():
    def _make(id=1, short="eu", long="Europe", **extra):
        return Location.from_api({"id": id, "short": short, "long": long, **extra})
    return _make


@pytest.fixture
def make_node():
    def _make(id=1, location_id=1, name="node-1", **extra):
        attrs = {
            "id": id, "uuid": f"node-uuid-{id}", "name": name,
            "description": f"{name} description", "location_id": location_id,
        }
        attrs.update(extra)
        return Node.from_api(attrs)
    return _make


@pytest.fixture
def make_server():
    """Factory for panel Server resources. ``env=None`` drops the container block."""
    def _make(id=10, user=5, node=1, name=None, env="default", allocation=None, **extra):
        attrs = {
            "id": id, "uuid": f"uuid-{id}", "identifier": f"ident{id}",
            "name": name or f"server-{id}", "user": user, "node": node,
            "allocation": 100 + id, "suspended": False,
        }
        if env == "default":
            env = {"STEAM_ACC": f"token-{id}", "RCON_PASSWORD": f"rcon-{id}"}
        if env is not None:
            attrs["container"] = {"environment": env}
        if allocation is not None:
            attrs["relationships"] = {"allocations": {"object": "list", "data": [
                {"object": "allocation", "attributes": {"id": 100 + id, **allocation}},
            ]}}
        attrs.update(extra)
        return Server.from_api(attrs)
    return _make


@pytest.fixture
def make_allocation():
    def _make(id=1, port=27015, assigned=False, ip="10.0.0.1", alias="play.example.com"):
        return Allocation(id=id, ip=ip, alias=alias, port=port, assigned=assigned)
    return _make


def single_page(items) -> Page:
    return Page(items=list(items), total_pages=1)


@pytest.fixture
def fake_panel():
    """MagicMock application/client APIs and account service with one-page listings.

    Set listings via ``fake_panel.set(servers=[...], nodes=[...], ...)``.
    """
    app = MagicMock()
    client = MagicMock()
    accounts = MagicMock()
    client.network_allocations.return_value = []
    accounts.list_accounts.return_value = []

    def _set(locations=None, nodes=None, servers=None, allocations=None, users=None):
        if locations is not None:
            app.list_locations.side_effect = lambda page=1: single_page(locations)
        if nodes is not None:
            app.list_nodes.side_effect = lambda page=1: single_page(nodes)
        if servers is not None:
            app.list_servers.side_effect = lambda page=1: single_page(servers)
        if allocations is not None:
            app.list_node_allocations.side_effect = lambda node_id, page=1: single_page(allocations)
        if users is not None:
            app.list_users.side_effect = lambda page=1: single_page(users)

    _set(locations=[], nodes=[], servers=[], allocations=[], users=[])
    app.get_egg.return_value = Egg(id=15, docker_image="ghcr.io/game/srcds", startup="./srcds_run")
    app.get_user.side_effect = lambda user_id: User(id=user_id, username="csgopanel-test")
    accounts.create_account.return_value = Account(login_token="new-token", account_id="9001")
    return SimpleNamespace(app=app, client=client, accounts=accounts, set=_set)


@pytest.fixture
def state(tmp_path):
    return PanelState(state_dir=tmp_path)


@pytest.fixture
def make_server_record():
    """Factory for ServerRecord with sensible defaults. Override any field via kwargs."""
    def _make(**overrides):
        defaults = dict(
            id=1, server_id=10, status="provisioned", panel_node_id=1,
            name="node-1-27015", uuid="uuid-10", data={"identifier": "ident10"},
            login_token="token-10", account_id="9001", rcon_password="rcon-10",
            ip="play.example.com", port=27015,
        )
        defaults.update(overrides)
        return ServerRecord(**defaults)
    return _make
