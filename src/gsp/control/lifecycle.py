"""Single-server lifecycle: create, power, suspend, delete and runtime calls.

Management calls go through the application API, end-user calls through the
client API. Servers are addressed locally by ServerRecord and remotely by the
panel server id stored on it.
"""

from gsp.accounts.tokens import AccountService
from gsp.control.locks import KeyedLock
from gsp.control.state import (
    ACTION_CREATE,
    ACTION_POWER,
    ACTION_SUSPEND,
    ACTION_UPDATE,
    STATUS_INSTALLING,
    STATUS_PENDING_INSTALL,
    STATUS_PROVISIONED,
    STATUS_RUNNING,
    STATUS_SUSPENDED,
    PanelState,
    ServerRecord,
)
from gsp.control.template import build_create_payload, generate_rcon_password, server_name
from gsp.control.waiting import CancelToken, wait_for
from gsp.errors import (
    AllocationNotFoundError,
    GspError,
    LifecycleError,
    NodeNotFoundError,
    PanelError,
    PanelNotFoundError,
    PanelValidationError,
    PowerTimeoutError,
    PreconditionError,
)
from gsp.logging_config import get_logger
from gsp.panel.allocations import find_available_allocation
from gsp.panel.application import ApplicationAPI
from gsp.panel.client import POWER_SIGNALS, ClientAPI
from gsp.panel.resources import ResourceUsage, Server

logger = get_logger(__name__)

INSTALLING = STATUS_INSTALLING
INSTALL_PENDING_MESSAGE = "This server has not yet completed its installation process"

WAIT_SIGNALS = ("start", "restart")
DEFAULT_LOG_DIRECTORY = "csgo/logs"


class ServerLifecycle:
    POWER_WAIT_ATTEMPTS = 24
    POWER_WAIT_INTERVAL = 10.0

    def __init__(
        self,
        app: ApplicationAPI,
        client: ClientAPI,
        accounts: AccountService,
        state: PanelState,
        owner_id: int | None,
        nest_id: int = 5,
        egg_id: int = 15,
        game_app_id: int = 730,
        locks: KeyedLock | None = None,
        on_status=None,
    ):
        self.app = app
        self.client = client
        self.accounts = accounts
        self.state = state
        self.owner_id = owner_id
        self.nest_id = nest_id
        self.egg_id = egg_id
        self.game_app_id = game_app_id
        self.locks = locks if locks is not None else KeyedLock()
        self.on_status = on_status
        self.power_wait_attempts = self.POWER_WAIT_ATTEMPTS
        self.power_wait_interval = self.POWER_WAIT_INTERVAL

    def _notify(self, message: str) -> None:
        if self.on_status:
            self.on_status(message)

    def _remote(self, server: ServerRecord) -> Server:
        if not server.server_id:
            raise PreconditionError(f"Server {server.id} has no panel server id")
        try:
            return self.app.get_server(server.server_id)
        except PanelError as e:
            raise LifecycleError(f"Looking up panel server {server.server_id} failed: {e}") from e

    # ── Create ──

    def create(self, node_id: int, extra: dict | None = None) -> ServerRecord:
        """Provision a new server on ``node_id`` using the first free allocation."""
        with self.locks.hold(("node", node_id)):
            self._notify("Looking up node")
            try:
                node = self.app.get_node(node_id)
            except PanelNotFoundError as e:
                raise NodeNotFoundError(f"Node {node_id} not found") from e

            self._notify("Finding a free allocation")
            allocation = find_available_allocation(self.app, node_id)
            if allocation is None:
                raise AllocationNotFoundError(f"No free allocation on node {node_id}")

            if self.owner_id is None:
                raise LifecycleError("Owner account is not resolved; cannot create servers")

            try:
                owner = self.app.get_user(self.owner_id)
                egg = self.app.get_egg(self.nest_id, self.egg_id)

                self._notify("Requesting login token")
                name = server_name(node, allocation)
                account = self.accounts.create_account(self.game_app_id, name)
                rcon_password = generate_rcon_password()

                record = self.state.create_server(status=STATUS_PENDING_INSTALL)
                self.state.add_activity(record.id, ACTION_CREATE, STATUS_PENDING_INSTALL)

                payload = build_create_payload(
                    local_id=record.id,
                    owner_id=owner.id,
                    egg=egg,
                    node=node,
                    allocation=allocation,
                    login_token=account.login_token,
                    rcon_password=rcon_password,
                    extra=extra,
                )
                self._notify("Creating panel server")
                remote = self.app.create_server(payload)
                logger.info("panel_server_created", name=remote.name, server_id=remote.id, local_id=record.id)

                local_node = self.state.get_node_by_external_id(node_id)
                if local_node is None:
                    logger.warning("panel_server_node_not_synced", node_id=node_id, local_id=record.id)
                self.state.update_server(
                    record.id,
                    server_id=remote.id,
                    name=remote.name,
                    uuid=remote.uuid,
                    panel_node_id=local_node.id if local_node else None,
                    login_token=account.login_token,
                    account_id=account.account_id,
                    rcon_password=rcon_password,
                    ip=allocation.alias or allocation.ip,
                    port=allocation.port,
                    data=remote.to_payload(),
                )
                return self.state.set_server_status(record.id, STATUS_PROVISIONED, ACTION_CREATE)
            except PanelValidationError:
                raise
            except (GspError, OSError, KeyError) as e:
                raise LifecycleError(f"Creating server on node {node_id} failed: {e}") from e

    # ── Power ──

    def power(
        self,
        server: ServerRecord,
        signal: str,
        skip_wait: bool = False,
        cancel: CancelToken | None = None,
        deadline: float | None = None,
    ) -> None:
        """Send a power signal; for start/restart wait until the panel reports running.

        ``cancel`` aborts the wait from another thread; ``deadline`` is a
        ``time.monotonic()`` value after which no further check is made.
        """
        if signal not in POWER_SIGNALS:
            raise ValueError(f"Unknown power signal: {signal}")
        if server.suspended:
            raise PreconditionError("Powering server failed: panel server suspended")
        if not server.server_id:
            raise PreconditionError("Powering server failed: panel server_id empty")

        with self.locks.hold(("server", server.server_id)):
            remote = self._remote(server)
            self._notify(f"Sending {signal}")
            try:
                self.client.power(remote.identifier, signal)
            except PanelError as e:
                raise LifecycleError(f"Power {signal} for server {server.server_id} failed: {e}") from e
            logger.info("power_signal_sent", server_id=server.server_id, signal=signal)

            if signal not in WAIT_SIGNALS or skip_wait:
                return

            self._notify("Waiting for server to report running")
            succeeded, probes = wait_for(
                probe=lambda: self._usage(remote.identifier),
                done=lambda usage: isinstance(usage, ResourceUsage) and usage.current_state == "running",
                attempts=self.power_wait_attempts,
                interval=self.power_wait_interval,
                cancel=cancel,
                deadline=deadline,
            )
            if not succeeded:
                logger.error("power_wait_timed_out", server_id=server.server_id, signal=signal, probes=probes)
                raise PowerTimeoutError(signal, probes)
            self.state.set_server_status(server.id, STATUS_RUNNING, ACTION_POWER)

    # ── Suspend / delete ──

    def suspend(self, server: ServerRecord) -> None:
        if not server.server_id:
            raise PreconditionError("Suspend server failed: panel server_id empty")
        with self.locks.hold(("server", server.server_id)):
            try:
                self.app.suspend_server(server.server_id)
            except PanelError as e:
                raise LifecycleError(f"Suspending server {server.server_id} failed: {e}") from e
            self.state.set_server_status(server.id, STATUS_SUSPENDED, ACTION_SUSPEND)

    def delete(self, server_id: int | None, account_id: str | None = None) -> None:
        """Force-delete the panel server and, if given, its login-token account."""
        if not server_id:
            return
        with self.locks.hold(("server", server_id)):
            try:
                self.app.get_server(server_id)
                self.app.force_delete_server(server_id)
                logger.info("panel_server_deleted", server_id=server_id)
                if account_id:
                    self.accounts.delete_account(account_id)
            except GspError as e:
                raise LifecycleError(f"Deleting server {server_id} failed: {e}") from e

    # ── Runtime ──

    def update_environment(self, server: ServerRecord, key: str, value: str) -> dict:
        remote = self._remote(server)
        try:
            return self.client.update_startup_variable(remote.identifier, key, value)
        except PanelError as e:
            raise LifecycleError(f"Updating {key} on server {server.server_id} failed: {e}") from e

    def send_console_command(self, server: ServerRecord, command: str) -> None:
        remote = self._remote(server)
        try:
            self.client.command(remote.identifier, command)
        except PanelError as e:
            raise LifecycleError(f"Console command on server {server.server_id} failed: {e}") from e

    def _usage(self, identifier: str) -> ResourceUsage | str | None:
        try:
            return self.client.resources(identifier)
        except PanelError as e:
            if INSTALL_PENDING_MESSAGE in f"{e} {e.detail}":
                return INSTALLING
            logger.debug("resource_usage_unavailable", identifier=identifier, error=str(e))
            return None

    def get_resource_usage(self, server: ServerRecord) -> ResourceUsage | str | None:
        """Usage, the INSTALLING marker, or None when the state is unknown."""
        if not server.server_id:
            return None
        try:
            remote = self.app.get_server(server.server_id)
        except PanelError as e:
            if INSTALL_PENDING_MESSAGE in f"{e} {e.detail}":
                return INSTALLING
            return None
        return self._usage(remote.identifier)

    def refresh_status(self, server: ServerRecord) -> ServerRecord:
        """Mirror the panel's runtime state into the local status."""
        usage = self.get_resource_usage(server)
        if usage is None:
            return server
        if usage == INSTALLING:
            status = STATUS_INSTALLING
        elif usage.is_suspended:
            status = STATUS_SUSPENDED
        else:
            status = usage.current_state or server.status
        return self.state.set_server_status(server.id, status, ACTION_UPDATE)

    def get_latest_log_contents(self, server: ServerRecord, directory: str = DEFAULT_LOG_DIRECTORY) -> str:
        remote = self._remote(server)
        try:
            files = [f for f in self.client.list_files(remote.identifier, directory) if f.get("is_file", True)]
            if not files:
                return ""
            latest = max(files, key=lambda f: f.get("modified_at") or "")
            return self.client.file_contents(remote.identifier, f"{directory}/{latest['name']}")
        except PanelError as e:
            raise LifecycleError(f"Reading logs of server {server.server_id} failed: {e}") from e

    def get_server_allocation(self, server: ServerRecord) -> dict:
        remote = self._remote(server)
        try:
            allocations = self.client.network_allocations(remote.identifier)
        except PanelError as e:
            raise LifecycleError(f"Allocation lookup for server {server.server_id} failed: {e}") from e
        return allocations[0] if allocations else {}
