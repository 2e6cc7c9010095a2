"""Login-token account service (Steam ``IGameServersService``).

Each game server gets its own account whose login token is embedded in the
server environment so it can authenticate to the game network.
"""

from dataclasses import dataclass

import httpx

from gsp.errors import AccountServiceError
from gsp.logging_config import get_logger

logger = get_logger(__name__)

SERVICE_PATH = "/IGameServersService"


@dataclass(frozen=True)
class Account:
    login_token: str
    account_id: str


class AccountService:
    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.steampowered.com",
        timeout: float = 30.0,
        http_client: httpx.Client | None = None,
    ):
        self.api_key = api_key
        self._client = http_client or httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout)

    def _call(self, method: str, name: str, params: dict | None = None) -> dict:
        params = {"key": self.api_key, **(params or {})}
        path = f"{SERVICE_PATH}/{name}/v1/"
        try:
            if method == "GET":
                response = self._client.get(path, params=params)
            else:
                response = self._client.post(path, data=params)
            response.raise_for_status()
            return response.json().get("response", {})
        except (httpx.HTTPError, ValueError) as e:
            raise AccountServiceError(f"{name} failed: {e}") from e

    def create_account(self, app_id: int, memo: str) -> Account:
        body = self._call("POST", "CreateAccount", {"appid": app_id, "memo": memo})
        if not body.get("login_token"):
            raise AccountServiceError(f"CreateAccount returned no login token for {memo}")
        logger.info("login_account_created", memo=memo, account_id=body.get("steamid"))
        return Account(login_token=body["login_token"], account_id=str(body.get("steamid", "")))

    def list_accounts(self) -> list[Account]:
        body = self._call("GET", "GetAccountList")
        if "servers" not in body:
            raise AccountServiceError("GetAccountList response has no server list")
        return [
            Account(login_token=s.get("login_token", ""), account_id=str(s.get("steamid", "")))
            for s in body["servers"]
        ]

    def delete_account(self, account_id: str) -> None:
        self._call("POST", "DeleteAccount", {"steamid": account_id})
        logger.info("login_account_deleted", account_id=account_id)

    def close(self) -> None:
        self._client.close()
