"""Server template: the environment and limits every new game server gets."""

import secrets
import string

from gsp.panel.resources import Allocation, Egg, Node

ENV_LOGIN_TOKEN = "STEAM_ACC"
ENV_RCON_PASSWORD = "RCON_PASSWORD"

DEFAULT_MAP = "de_dust2"
SERVER_APP_ID = "740"

RCON_ALPHABET = string.digits + string.ascii_lowercase + string.ascii_uppercase


def generate_rcon_password(length: int = 16) -> str:
    return "".join(secrets.choice(RCON_ALPHABET) for _ in range(length))


def gotv_port(port: int) -> str:
    """GOTV port derived from the game port: "28" followed by its digits from the third on."""
    return "28" + str(port)[2:]


def server_name(node: Node, allocation: Allocation) -> str:
    return f"{node.name}-{allocation.port}"


def build_create_payload(
    *,
    local_id: int,
    owner_id: int,
    egg: Egg,
    node: Node,
    allocation: Allocation,
    login_token: str,
    rcon_password: str,
    extra: dict | None = None,
) -> dict:
    """Creation payload; keys in ``extra`` replace the defaults wholesale."""
    payload = {
        "name": server_name(node, allocation),
        "external_id": str(local_id),
        "user": owner_id,
        "egg": egg.id,
        "docker_image": egg.docker_image,
        "skip_scripts": True,
        "environment": {
            "SRCDS_MAP": DEFAULT_MAP,
            ENV_LOGIN_TOKEN: login_token,
            "SRCDS_APPID": SERVER_APP_ID,
            "GOTV_PORT": gotv_port(allocation.port),
            "STARTUP": egg.startup,
            "GAME_MODE": "2",
            "GAME_TYPE": "0",
            ENV_RCON_PASSWORD: rcon_password,
        },
        "limits": {
            "memory": 0,
            "swap": 0,
            "disk": 0,
            "io": 1000,
            "cpu": 0,
        },
        "feature_limits": {
            "databases": 0,
            "backups": 0,
        },
        "allocation": {
            "default": allocation.id,
        },
        "startup": egg.startup,
        "description": f"server with {allocation.port} port on {node.name} node",
        "start_on_completion": False,
    }
    payload.update(extra or {})
    return payload
