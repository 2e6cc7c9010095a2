"""Wires settings into panel clients, the state store and the two engines."""

from dataclasses import dataclass

from gsp.accounts.tokens import AccountService
from gsp.config import Settings
from gsp.control.lifecycle import ServerLifecycle
from gsp.control.locks import KeyedLock
from gsp.control.reconciler import Reconciler
from gsp.control.state import PanelState
from gsp.panel.application import ApplicationAPI, resolve_owner_id
from gsp.panel.client import ClientAPI


@dataclass
class PanelContext:
    settings: Settings
    app: ApplicationAPI
    client: ClientAPI
    accounts: AccountService
    state: PanelState
    owner_id: int | None
    reconciler: Reconciler
    lifecycle: ServerLifecycle

    @classmethod
    def from_settings(cls, settings: Settings, on_status=None, locks: KeyedLock | None = None) -> "PanelContext":
        timeouts = dict(timeout=settings.http_timeout, connect_timeout=settings.connect_timeout)
        app = ApplicationAPI(settings.panel_url, settings.panel_api_key, **timeouts)
        client = ClientAPI(settings.panel_url, settings.panel_client_api_key, **timeouts)
        accounts = AccountService(
            settings.token_api_key, base_url=settings.token_api_url, timeout=settings.http_timeout,
        )
        state = PanelState(settings.state_dir)
        owner_id = resolve_owner_id(app, settings.owner_username)
        return cls(
            settings=settings,
            app=app,
            client=client,
            accounts=accounts,
            state=state,
            owner_id=owner_id,
            reconciler=Reconciler(app, client, accounts, state, owner_id, on_status=on_status),
            lifecycle=ServerLifecycle(
                app, client, accounts, state, owner_id,
                nest_id=settings.nest_id, egg_id=settings.egg_id,
                game_app_id=settings.game_app_id, locks=locks, on_status=on_status,
            ),
        )

    def close(self) -> None:
        self.app.close()
        self.client.close()
        self.accounts.close()
