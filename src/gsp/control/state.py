import json
import os
import tempfile
import threading
from dataclasses import dataclass, field, asdict, fields
from datetime import datetime, timezone
from pathlib import Path

from gsp.config import DEFAULT_STATE_DIR

STATUS_PENDING_INSTALL = "pending-install"
STATUS_PROVISIONED = "provisioned"
STATUS_INSTALLING = "installing"
STATUS_RUNNING = "running"
STATUS_SUSPENDED = "suspended"

ACTION_CREATE = "create"
ACTION_UPDATE = "update"
ACTION_POWER = "power"
ACTION_SUSPEND = "suspend"

TABLES = ("locations", "nodes", "servers", "activities")

_FILE_LOCKS: dict[Path, threading.RLock] = {}
_FILE_LOCKS_GUARD = threading.Lock()


def _file_lock(path: Path) -> threading.RLock:
    """One reentrant lock per state file, shared by every PanelState on it."""
    with _FILE_LOCKS_GUARD:
        return _FILE_LOCKS.setdefault(path.resolve(), threading.RLock())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class LocationRecord:
    id: int
    external_id: int
    short_code: str = ""
    description: str = ""
    data: dict = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""


@dataclass
class NodeRecord:
    id: int
    external_id: int
    panel_location_id: int | None = None
    external_location_id: int | None = None
    name: str = ""
    uuid: str = ""
    description: str = ""
    data: dict = field(default_factory=dict)
    server_count: int = 0
    created_at: str = ""
    updated_at: str = ""


@dataclass
class ServerRecord:
    id: int
    server_id: int | None = None
    status: str = STATUS_PROVISIONED
    panel_node_id: int | None = None
    name: str = ""
    uuid: str = ""
    data: dict = field(default_factory=dict)
    login_token: str | None = None
    account_id: str | None = None
    rcon_password: str | None = None
    ip: str | None = None
    port: int | None = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def suspended(self) -> bool:
        return (
            self.status == STATUS_SUSPENDED
            or bool(self.data.get("suspended"))
            or self.data.get("status") == "suspended"
        )

    @property
    def identifier(self) -> str:
        return self.data.get("identifier", "")

    @property
    def connection_string(self) -> str:
        if self.ip and self.port:
            return f"{self.ip}:{self.port}"
        return self.ip or ""


@dataclass
class ServerActivityRecord:
    id: int
    panel_server_id: int
    action: str
    status: str
    created_at: str = ""


_RECORD_TYPES = {
    "locations": LocationRecord,
    "nodes": NodeRecord,
    "servers": ServerRecord,
    "activities": ServerActivityRecord,
}


class PanelState:
    """JSON-file store for the local mirror of the panel.

    Every table is keyed by a local integer id. Locations and nodes are
    upserted by their panel id, servers by their panel server id.
    """

    def __init__(self, state_dir: Path = DEFAULT_STATE_DIR):
        self.state_dir = Path(state_dir)
        self.state_file = self.state_dir / "panel.json"
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self._lock = _file_lock(self.state_file)

    def _load(self) -> dict:
        if not self.state_file.exists():
            data = {}
        else:
            data = json.loads(self.state_file.read_text())
        for table in TABLES:
            data.setdefault(table, {})
        data.setdefault("sequences", {})
        return data

    def _save_all(self, data: dict) -> None:
        fd, tmp = tempfile.mkstemp(dir=self.state_dir, prefix=".panel-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.state_file)
        except BaseException:
            os.unlink(tmp)
            raise

    @staticmethod
    def _next_id(data: dict, table: str) -> int:
        value = data["sequences"].get(table, 0) + 1
        data["sequences"][table] = value
        return value

    @staticmethod
    def _record(table: str, row: dict):
        return _RECORD_TYPES[table](**row)

    def _rows(self, table: str) -> list:
        data = self._load()
        return [self._record(table, row) for row in data[table].values()]

    def _find(self, data: dict, table: str, key_field: str, key) -> dict | None:
        for row in data[table].values():
            if row.get(key_field) == key:
                return row
        return None

    def _upsert(self, table: str, key_field: str, key, values: dict):
        """Insert or update the row whose ``key_field`` equals ``key``.

        An update that changes nothing leaves the row (and updated_at) untouched.
        """
        with self._lock:
            data = self._load()
            row = self._find(data, table, key_field, key)
            if row is None:
                now = _now()
                row_id = self._next_id(data, table)
                record = _RECORD_TYPES[table](id=row_id, **{key_field: key}, **values, created_at=now, updated_at=now)
                data[table][str(row_id)] = asdict(record)
                self._save_all(data)
                return record
            changed = {k: v for k, v in values.items() if row.get(k) != v}
            if changed:
                row.update(changed)
                row["updated_at"] = _now()
                self._save_all(data)
            return self._record(table, row)

    def _update(self, table: str, row_id: int, values: dict):
        valid = {f.name for f in fields(_RECORD_TYPES[table])}
        unknown = set(values) - valid
        if unknown:
            raise ValueError(f"Unknown {table} field(s): {', '.join(sorted(unknown))}")
        with self._lock:
            data = self._load()
            row = data[table].get(str(row_id))
            if row is None:
                raise KeyError(f"{table} row {row_id} not found")
            row.update(values)
            row["updated_at"] = _now()
            self._save_all(data)
            return self._record(table, row)

    def _delete(self, table: str, row_id: int) -> None:
        with self._lock:
            data = self._load()
            data[table].pop(str(row_id), None)
            if table == "servers":
                data["activities"] = {
                    k: v for k, v in data["activities"].items() if v["panel_server_id"] != row_id
                }
            self._save_all(data)

    # ── Locations ──

    def upsert_location(self, external_id: int, **values) -> LocationRecord:
        return self._upsert("locations", "external_id", external_id, values)

    def get_location_by_external_id(self, external_id: int) -> LocationRecord | None:
        row = self._find(self._load(), "locations", "external_id", external_id)
        return LocationRecord(**row) if row else None

    def list_locations(self) -> list[LocationRecord]:
        return self._rows("locations")

    def delete_location(self, location_id: int) -> None:
        self._delete("locations", location_id)

    # ── Nodes ──

    def upsert_node(self, external_id: int, **values) -> NodeRecord:
        return self._upsert("nodes", "external_id", external_id, values)

    def get_node(self, node_id: int) -> NodeRecord | None:
        row = self._load()["nodes"].get(str(node_id))
        return NodeRecord(**row) if row else None

    def get_node_by_external_id(self, external_id: int) -> NodeRecord | None:
        row = self._find(self._load(), "nodes", "external_id", external_id)
        return NodeRecord(**row) if row else None

    def list_nodes(self) -> list[NodeRecord]:
        return self._rows("nodes")

    def delete_node(self, node_id: int) -> None:
        self._delete("nodes", node_id)

    def used_location_ids(self) -> set[int]:
        """Distinct location ids still referenced by nodes."""
        return {n.panel_location_id for n in self.list_nodes() if n.panel_location_id is not None}

    # ── Servers ──

    def create_server(self, **values) -> ServerRecord:
        with self._lock:
            data = self._load()
            now = _now()
            record = ServerRecord(id=self._next_id(data, "servers"), created_at=now, updated_at=now, **values)
            data["servers"][str(record.id)] = asdict(record)
            self._save_all(data)
            return record

    def upsert_server(self, server_id: int, **values) -> ServerRecord:
        return self._upsert("servers", "server_id", server_id, values)

    def update_server(self, record_id: int, **values) -> ServerRecord:
        return self._update("servers", record_id, values)

    def get_server(self, record_id: int) -> ServerRecord | None:
        row = self._load()["servers"].get(str(record_id))
        return ServerRecord(**row) if row else None

    def get_server_by_server_id(self, server_id: int) -> ServerRecord | None:
        row = self._find(self._load(), "servers", "server_id", server_id)
        return ServerRecord(**row) if row else None

    def get_by_name_or_id(self, name_or_id: str) -> ServerRecord | None:
        data = self._load()
        if name_or_id in data["servers"]:
            return ServerRecord(**data["servers"][name_or_id])
        for row in data["servers"].values():
            if row.get("name") == name_or_id or row.get("uuid") == name_or_id:
                return ServerRecord(**row)
        for row in data["servers"].values():
            if (row.get("data") or {}).get("identifier") == name_or_id:
                return ServerRecord(**row)
        return None

    def list_servers(self) -> list[ServerRecord]:
        return self._rows("servers")

    def delete_server(self, record_id: int) -> None:
        """Hard delete; the server's activity log goes with it."""
        self._delete("servers", record_id)

    def used_node_ids(self) -> set[int]:
        """Distinct node ids still referenced by servers."""
        return {s.panel_node_id for s in self.list_servers() if s.panel_node_id is not None}

    # ── Activity ──

    def add_activity(self, panel_server_id: int, action: str, status: str) -> ServerActivityRecord:
        with self._lock:
            data = self._load()
            record = ServerActivityRecord(
                id=self._next_id(data, "activities"), panel_server_id=panel_server_id,
                action=action, status=status, created_at=_now(),
            )
            data["activities"][str(record.id)] = asdict(record)
            self._save_all(data)
            return record

    def list_activities(self, panel_server_id: int) -> list[ServerActivityRecord]:
        return [a for a in self._rows("activities") if a.panel_server_id == panel_server_id]

    def set_server_status(self, record_id: int, status: str, action: str = ACTION_UPDATE) -> ServerRecord:
        """Move a server to ``status`` and log the transition. No-op if unchanged."""
        with self._lock:
            record = self.get_server(record_id)
            if record is None:
                raise KeyError(f"servers row {record_id} not found")
            if record.status == status:
                return record
            record = self.update_server(record_id, status=status)
            self.add_activity(record_id, action, status)
            return record
