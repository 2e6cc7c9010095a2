"""Mirror the panel into local state and prune what the panel no longer has.

A full pass runs Locations -> Nodes -> Servers, then deletes missing servers,
unused nodes and unused locations, in that order. Per-item steps return a
StepResult so one broken server never stops the batch.
"""

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

from gsp.accounts.matching import resolve_account_id
from gsp.accounts.tokens import Account, AccountService
from gsp.control.state import PanelState, ServerRecord
from gsp.control.template import ENV_LOGIN_TOKEN, ENV_RCON_PASSWORD
from gsp.errors import AccountServiceError, GspError, PanelError
from gsp.logging_config import get_logger
from gsp.panel.application import ApplicationAPI
from gsp.panel.client import ClientAPI
from gsp.panel.pagination import fetch_all
from gsp.panel.resources import Node, Server

logger = get_logger(__name__)


class StepStatus(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class StepResult:
    status: StepStatus
    value: object = None
    message: str = ""

    @classmethod
    def ok(cls, value=None) -> "StepResult":
        return cls(StepStatus.OK, value)

    @classmethod
    def skipped(cls, message: str, value=None) -> "StepResult":
        return cls(StepStatus.SKIPPED, value, message)

    @classmethod
    def failed(cls, message: str) -> "StepResult":
        return cls(StepStatus.FAILED, None, message)


@dataclass
class SyncReport:
    name: str
    synced: int = 0
    deleted: int = 0
    warnings: list[str] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)

    def add(self, label: str, result: StepResult) -> None:
        if result.status is StepStatus.FAILED:
            self.failures.append(f"{label}: {result.message}")
            return
        self.synced += 1
        if result.status is StepStatus.SKIPPED:
            self.warnings.append(f"{label}: {result.message}")

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass
class _Runtime:
    login_token: str | None = None
    rcon_password: str | None = None
    allocation: dict | None = None


class Reconciler:
    def __init__(
        self,
        app: ApplicationAPI,
        client: ClientAPI,
        accounts: AccountService,
        state: PanelState,
        owner_id: int | None,
        on_status=None,
    ):
        self.app = app
        self.client = client
        self.accounts = accounts
        self.state = state
        self.owner_id = owner_id
        self.on_status = on_status

    def _notify(self, message: str) -> None:
        if self.on_status:
            self.on_status(message)

    def _owns(self, server: Server) -> bool:
        return self.owner_id is not None and server.user == self.owner_id

    def reconcile(self) -> list[SyncReport]:
        """Full pass in dependency order."""
        return [
            self.sync_locations(),
            self.sync_nodes(),
            self.sync_servers(),
            self.delete_not_exists_servers(),
            self.delete_unused_nodes(),
            self.delete_unused_locations(),
        ]

    # ── Sync ──

    def sync_locations(self) -> SyncReport:
        self._notify("Syncing locations")
        report = SyncReport("locations")
        for location in fetch_all(self.app.list_locations):
            self.state.upsert_location(
                location.id,
                short_code=location.short,
                description=location.long,
                data=location.raw,
            )
            report.synced += 1
        logger.info("locations_synced", count=report.synced)
        return report

    def sync_nodes(self) -> SyncReport:
        self._notify("Syncing nodes")
        report = SyncReport("nodes")
        servers = fetch_all(self.app.list_servers)
        nodes = fetch_all(self.app.list_nodes)
        # Counted over every panel server, owned or not.
        counts = Counter(s.node for s in servers)
        for node in nodes:
            result = self._sync_node(node, counts[node.id])
            report.add(f"node {node.id}", result)
            if result.status is StepStatus.FAILED:
                logger.error("node_sync_failed", node_id=node.id, reason=result.message)
        logger.info("nodes_synced", count=report.synced, failed=len(report.failures))
        return report

    def _sync_node(self, node: Node, server_count: int) -> StepResult:
        location = self.state.get_location_by_external_id(node.location_id)
        if location is None:
            return StepResult.failed(f"location {node.location_id} is not synced")
        record = self.state.upsert_node(
            node.id,
            panel_location_id=location.id,
            external_location_id=node.location_id,
            name=node.name,
            uuid=node.uuid,
            description=node.description,
            data=node.raw,
            server_count=server_count,
        )
        return StepResult.ok(record)

    def _load_accounts(self) -> list[Account] | None:
        try:
            return self.accounts.list_accounts()
        except AccountServiceError as e:
            logger.warning("account_list_unavailable", error=str(e))
            return None

    def sync_servers(self) -> SyncReport:
        self._notify("Syncing servers")
        logger.info("server_sync_started", owner_id=self.owner_id)
        report = SyncReport("servers")
        servers = fetch_all(self.app.list_servers)
        accounts = self._load_accounts()
        for server in servers:
            if not self._owns(server):
                continue
            try:
                result = self._sync_server(server, accounts)
            except GspError as e:
                result = StepResult.failed(str(e))
            report.add(f"server {server.id} ({server.name})", result)
            if result.status is StepStatus.FAILED:
                logger.error("server_sync_failed", server_id=server.id, reason=result.message)
        logger.info(
            "server_sync_finished", count=report.synced,
            warnings=len(report.warnings), failed=len(report.failures),
        )
        return report

    @staticmethod
    def _read_runtime(server: Server) -> StepResult:
        """Each field is read on its own; whatever is readable is kept."""
        runtime = _Runtime()
        problems = []
        try:
            env = server.environment
        except (KeyError, TypeError) as e:
            env = None
            problems.append(f"environment unreadable ({e!r})")
        if isinstance(env, dict):
            runtime.login_token = env.get(ENV_LOGIN_TOKEN)
            runtime.rcon_password = env.get(ENV_RCON_PASSWORD)
            missing = [k for k in (ENV_LOGIN_TOKEN, ENV_RCON_PASSWORD) if not env.get(k)]
            if missing:
                problems.append(f"{', '.join(missing)} missing from environment")
        elif env is not None:
            problems.append("environment is not a mapping")
        try:
            runtime.allocation = server.allocation_object
        except (KeyError, TypeError, AttributeError) as e:
            problems.append(f"allocation data unreadable ({e!r})")
        if problems:
            return StepResult.skipped("; ".join(problems), runtime)
        return StepResult.ok(runtime)

    def _sync_server(self, server: Server, accounts: list[Account] | None) -> StepResult:
        node = self.state.get_node_by_external_id(server.node)
        if node is None:
            return StepResult.failed(f"node {server.node} is not synced")

        ip = port = account_id = None
        existing = self.state.get_server_by_server_id(server.id)
        if existing:
            ip, port, account_id = existing.ip, existing.port, existing.account_id

        read = self._read_runtime(server)
        runtime: _Runtime = read.value
        if read.status is StepStatus.SKIPPED:
            logger.info("server_sync_env_unreadable", server=server.name, reason=read.message)

        data = server.to_payload()
        allocation_resolved = False
        if runtime.allocation and runtime.allocation.get("ip_alias"):
            ip = runtime.allocation["ip_alias"]
            port = runtime.allocation.get("port")
            data["allocation_object"] = runtime.allocation
            allocation_resolved = True
        elif existing and existing.data.get("allocation_object"):
            data["allocation_object"] = existing.data["allocation_object"]

        if accounts is not None:
            matched = resolve_account_id(runtime.login_token, accounts)
            if matched is not None:
                account_id = matched

        record = self.state.upsert_server(
            server.id,
            panel_node_id=node.id,
            name=server.name,
            uuid=server.uuid,
            data=data,
            login_token=runtime.login_token,
            account_id=account_id,
            rcon_password=runtime.rcon_password,
            ip=ip,
            port=port,
        )

        if not allocation_resolved:
            enriched = self._enrich_allocation(server, record)
            if enriched.status is StepStatus.SKIPPED:
                logger.info("server_sync_allocation_unavailable", server=server.name, reason=enriched.message)
                return enriched
        return read if read.status is StepStatus.SKIPPED else StepResult.ok(record)

    def _enrich_allocation(self, server: Server, record: ServerRecord) -> StepResult:
        try:
            allocations = self.client.network_allocations(server.identifier)
        except PanelError as e:
            return StepResult.skipped(f"allocation lookup failed: {e}", record)
        if not allocations:
            return StepResult.ok(record)
        allocation = allocations[0]
        if record.data.get("allocation_object") != allocation:
            data = dict(record.data)
            data["allocation_object"] = allocation
            record = self.state.update_server(record.id, data=data)
        return StepResult.ok(record)

    # ── Cleanup ──

    def delete_not_exists_servers(self) -> SyncReport:
        """Delete local servers with no owned counterpart in the panel.

        With no resolved owner nothing is owned, so every local server goes.
        """
        self._notify("Removing servers missing from the panel")
        report = SyncReport("missing-servers")
        servers = fetch_all(self.app.list_servers)
        if self.owner_id is None:
            logger.warning("owner_unresolved_deleting_all_servers")
        owned_ids = {s.id for s in servers if self._owns(s)}
        for record in self.state.list_servers():
            if record.server_id not in owned_ids:
                self.state.delete_server(record.id)
                report.deleted += 1
                logger.info("server_deleted_locally", id=record.id, server_id=record.server_id)
        return report

    def delete_unused_nodes(self) -> SyncReport:
        self._notify("Removing unused nodes")
        report = SyncReport("unused-nodes")
        used = self.state.used_node_ids()
        for node in self.state.list_nodes():
            if node.id not in used:
                self.state.delete_node(node.id)
                report.deleted += 1
        logger.info("unused_nodes_deleted", count=report.deleted)
        return report

    def delete_unused_locations(self) -> SyncReport:
        self._notify("Removing unused locations")
        report = SyncReport("unused-locations")
        used = self.state.used_location_ids()
        for location in self.state.list_locations():
            if location.id not in used:
                self.state.delete_location(location.id)
                report.deleted += 1
        logger.info("unused_locations_deleted", count=report.deleted)
        return report

    # ── Login tokens ──

    def prune_orphan_login_tokens(self) -> SyncReport:
        """Delete accounts whose login token no panel server uses."""
        self._notify("Pruning orphan login tokens")
        report = SyncReport("orphan-tokens")
        used_tokens = set()
        for server in fetch_all(self.app.list_servers):
            token = self._read_runtime(server).value.login_token
            if token:
                used_tokens.add(token)
        for account in self.accounts.list_accounts():
            if account.login_token in used_tokens:
                continue
            try:
                self.accounts.delete_account(account.account_id)
            except AccountServiceError as e:
                report.add(f"account {account.account_id}", StepResult.failed(str(e)))
                continue
            report.deleted += 1
        logger.info("orphan_tokens_pruned", count=report.deleted, failed=len(report.failures))
        return report
