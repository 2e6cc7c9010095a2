"""Application (admin) API: listings, lookups, create, suspend and delete."""

from gsp.errors import PanelError
from gsp.logging_config import get_logger
from gsp.panel.http import PanelHTTP
from gsp.panel.pagination import fetch_all
from gsp.panel.resources import Allocation, Egg, Location, Node, Page, Server, User

logger = get_logger(__name__)


def _page(body: dict, factory) -> Page:
    pagination = body.get("meta", {}).get("pagination", {})
    return Page(
        items=[factory(item) for item in body.get("data", [])],
        total_pages=int(pagination.get("total_pages", 1) or 1),
    )


class ApplicationAPI(PanelHTTP):
    api_prefix = "/api/application"

    def list_locations(self, page: int = 1) -> Page:
        return _page(self.get_json("/locations", {"page": page}), Location.from_api)

    def list_nodes(self, page: int = 1) -> Page:
        return _page(self.get_json("/nodes", {"page": page}), Node.from_api)

    def list_servers(self, page: int = 1) -> Page:
        return _page(
            self.get_json("/servers", {"page": page, "include": "allocations"}),
            Server.from_api,
        )

    def list_node_allocations(self, node_id: int, page: int = 1) -> Page:
        return _page(self.get_json(f"/nodes/{node_id}/allocations", {"page": page}), Allocation.from_api)

    def list_users(self, page: int = 1) -> Page:
        return _page(self.get_json("/users", {"page": page}), User.from_api)

    def get_node(self, node_id: int) -> Node:
        return Node.from_api(self.get_json(f"/nodes/{node_id}"))

    def get_server(self, server_id: int) -> Server:
        return Server.from_api(self.get_json(f"/servers/{server_id}"))

    def get_user(self, user_id: int) -> User:
        return User.from_api(self.get_json(f"/users/{user_id}"))

    def get_egg(self, nest_id: int, egg_id: int) -> Egg:
        return Egg.from_api(self.get_json(f"/nests/{nest_id}/eggs/{egg_id}"))

    def create_server(self, payload: dict) -> Server:
        response = self.request("POST", "/servers", json=payload)
        return Server.from_api(self.decode(response))

    def suspend_server(self, server_id: int) -> None:
        self.request("POST", f"/servers/{server_id}/suspend")

    def force_delete_server(self, server_id: int) -> None:
        self.request("DELETE", f"/servers/{server_id}/force")


def find_user_by_username(users: list[User], username: str) -> User | None:
    for user in users:
        if user.username == username:
            return user
    return None


def resolve_owner_id(app: ApplicationAPI, username: str) -> int | None:
    """Panel id of the user named ``username``; None when it cannot be resolved."""
    try:
        owner = find_user_by_username(fetch_all(app.list_users), username)
    except PanelError as e:
        logger.warning("owner_lookup_failed", username=username, error=str(e))
        return None
    if owner is None:
        logger.warning("owner_not_found", username=username)
        return None
    return owner.id
