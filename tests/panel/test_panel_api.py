import json

import httpx
import pytest
import respx

from gsp.errors import PanelConflictError, PanelError, PanelNotFoundError, PanelValidationError
from gsp.panel.application import ApplicationAPI, resolve_owner_id
from gsp.panel.client import ClientAPI
from gsp.panel.pagination import fetch_all

pytestmark = pytest.mark.uses_respx

BASE = "https://panel.test"


def _list(objects, page, total_pages):
    return {
        "object": "list",
        "data": [{"object": "item", "attributes": o} for o in objects],
        "meta": {"pagination": {"current_page": page, "total_pages": total_pages}},
    }


def test_application_api_uses_admin_key_and_prefix():
    app = ApplicationAPI(BASE, "admin-key")
    with respx.mock(base_url=BASE) as mock:
        route = mock.get("/api/application/locations").mock(
            return_value=httpx.Response(200, json=_list([{"id": 1, "short": "eu", "long": "Europe"}], 1, 1)),
        )
        page = app.list_locations()
    assert route.called
    request = route.calls.last.request
    assert request.headers["Authorization"] == "Bearer admin-key"
    assert request.url.params["page"] == "1"
    assert page.total_pages == 1
    assert page.items[0].short == "eu"


def test_client_api_uses_client_key():
    client = ClientAPI(BASE, "client-key")
    with respx.mock(base_url=BASE) as mock:
        route = mock.post("/api/client/servers/abc123/power").mock(return_value=httpx.Response(204))
        client.power("abc123", "start")
    request = route.calls.last.request
    assert request.headers["Authorization"] == "Bearer client-key"
    assert json.loads(request.content) == {"signal": "start"}


def test_servers_listing_drains_all_pages():
    app = ApplicationAPI(BASE, "admin-key")

    def _page(request):
        page = int(request.url.params["page"])
        return httpx.Response(200, json=_list(
            [{"id": page, "uuid": f"u{page}", "identifier": f"i{page}", "name": f"s{page}", "user": 5, "node": 1}],
            page, 3,
        ))

    with respx.mock(base_url=BASE) as mock:
        route = mock.get("/api/application/servers").mock(side_effect=_page)
        servers = fetch_all(app.list_servers)
    assert [s.id for s in servers] == [1, 2, 3]
    assert all(call.request.url.params["include"] == "allocations" for call in route.calls)


def test_node_allocations_are_scoped_by_node():
    app = ApplicationAPI(BASE, "admin-key")
    with respx.mock(base_url=BASE) as mock:
        mock.get("/api/application/nodes/4/allocations").mock(return_value=httpx.Response(200, json=_list(
            [{"id": 9, "ip": "10.0.0.1", "alias": None, "port": 27015, "assigned": True}], 1, 1,
        )))
        page = app.list_node_allocations(4, 1)
    assert page.items[0].assigned is True
    assert page.items[0].port == 27015


def test_404_raises_not_found():
    app = ApplicationAPI(BASE, "admin-key")
    with respx.mock(base_url=BASE) as mock:
        mock.get("/api/application/nodes/99").mock(return_value=httpx.Response(404, json={
            "errors": [{"code": "NotFoundHttpException", "status": "404", "detail": "Not found."}],
        }))
        with pytest.raises(PanelNotFoundError):
            app.get_node(99)


def test_422_raises_validation_with_every_message():
    app = ApplicationAPI(BASE, "admin-key")
    with respx.mock(base_url=BASE) as mock:
        mock.post("/api/application/servers").mock(return_value=httpx.Response(422, json={"errors": [
            {"code": "ValidationException", "status": "422", "detail": "The name field is required."},
            {"code": "ValidationException", "status": "422", "detail": "The egg field is required."},
        ]}))
        with pytest.raises(PanelValidationError) as exc_info:
            app.create_server({})
    assert exc_info.value.errors == ["The name field is required.", "The egg field is required."]
    assert str(exc_info.value) == "The name field is required.;The egg field is required."


def test_409_raises_conflict_with_detail():
    client = ClientAPI(BASE, "client-key")
    detail = "This server has not yet completed its installation process, please try again later."
    with respx.mock(base_url=BASE) as mock:
        mock.get("/api/client/servers/abc/resources").mock(return_value=httpx.Response(409, json={
            "errors": [{"code": "ConflictHttpException", "status": "409", "detail": detail}],
        }))
        with pytest.raises(PanelConflictError) as exc_info:
            client.resources("abc")
    assert exc_info.value.detail == detail


def test_transport_error_becomes_panel_error():
    app = ApplicationAPI(BASE, "admin-key")
    with respx.mock(base_url=BASE) as mock:
        mock.get("/api/application/locations").mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(PanelError):
            app.list_locations()


def test_resources_parses_current_state():
    client = ClientAPI(BASE, "client-key")
    with respx.mock(base_url=BASE) as mock:
        mock.get("/api/client/servers/abc/resources").mock(return_value=httpx.Response(200, json={
            "object": "stats",
            "attributes": {"current_state": "running", "is_suspended": False, "resources": {"memory_bytes": 1}},
        }))
        usage = client.resources("abc")
    assert usage.current_state == "running"
    assert usage.resources == {"memory_bytes": 1}


def test_resolve_owner_id_finds_username():
    app = ApplicationAPI(BASE, "admin-key")
    with respx.mock(base_url=BASE) as mock:
        mock.get("/api/application/users").mock(return_value=httpx.Response(200, json=_list(
            [{"id": 3, "username": "someone"}, {"id": 5, "username": "csgopanel-production"}], 1, 1,
        )))
        assert resolve_owner_id(app, "csgopanel-production") == 5


def test_resolve_owner_id_is_none_on_failure():
    app = ApplicationAPI(BASE, "admin-key")
    with respx.mock(base_url=BASE) as mock:
        mock.get("/api/application/users").mock(return_value=httpx.Response(500))
        assert resolve_owner_id(app, "csgopanel-production") is None


def test_resolve_owner_id_is_none_when_missing():
    app = ApplicationAPI(BASE, "admin-key")
    with respx.mock(base_url=BASE) as mock:
        mock.get("/api/application/users").mock(return_value=httpx.Response(200, json=_list([], 1, 1)))
        assert resolve_owner_id(app, "csgopanel-production") is None


def test_non_json_body_raises_panel_error():
    client = ClientAPI(BASE, "client-key")
    with respx.mock(base_url=BASE) as mock:
        mock.get("/api/client/servers/abc123/resources").mock(
            return_value=httpx.Response(200, text="<html>maintenance</html>"),
        )
        with pytest.raises(PanelError, match="non-JSON body"):
            client.resources("abc123")


def test_create_server_with_non_json_body_raises_panel_error():
    app = ApplicationAPI(BASE, "admin-key")
    with respx.mock(base_url=BASE) as mock:
        mock.post("/api/application/servers").mock(return_value=httpx.Response(201, text="created"))
        with pytest.raises(PanelError):
            app.create_server({"name": "x"})


def test_startup_variable_with_empty_body():
    client = ClientAPI(BASE, "client-key")
    with respx.mock(base_url=BASE) as mock:
        mock.put("/api/client/servers/abc123/startup/variable").mock(return_value=httpx.Response(204))
        assert client.update_startup_variable("abc123", "SRCDS_MAP", "de_nuke") == {}
