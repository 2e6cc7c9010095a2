from dataclasses import dataclass, field


def attributes(obj: dict) -> dict:
    """Unwrap a panel ``{"object": ..., "attributes": {...}}`` envelope."""
    if isinstance(obj, dict) and "attributes" in obj:
        return obj["attributes"]
    return obj


@dataclass(frozen=True)
class Page:
    items: list
    total_pages: int


@dataclass(frozen=True)
class Location:
    id: int
    short: str
    long: str
    raw: dict = field(default_factory=dict, compare=False)

    @classmethod
    def from_api(cls, obj: dict) -> "Location":
        attrs = attributes(obj)
        return cls(id=attrs["id"], short=attrs.get("short", ""), long=attrs.get("long") or "", raw=attrs)


@dataclass(frozen=True)
class Node:
    id: int
    uuid: str
    name: str
    description: str
    location_id: int
    raw: dict = field(default_factory=dict, compare=False)

    @classmethod
    def from_api(cls, obj: dict) -> "Node":
        attrs = attributes(obj)
        return cls(
            id=attrs["id"], uuid=attrs.get("uuid", ""), name=attrs.get("name", ""),
            description=attrs.get("description") or "", location_id=attrs["location_id"],
            raw=attrs,
        )


@dataclass(frozen=True)
class Allocation:
    id: int
    ip: str
    alias: str | None
    port: int
    assigned: bool

    @classmethod
    def from_api(cls, obj: dict) -> "Allocation":
        attrs = attributes(obj)
        return cls(
            id=attrs["id"], ip=attrs.get("ip", ""), alias=attrs.get("alias"),
            port=attrs["port"], assigned=bool(attrs.get("assigned", False)),
        )


@dataclass(frozen=True)
class Server:
    id: int
    uuid: str
    identifier: str
    name: str
    user: int
    node: int
    raw: dict = field(default_factory=dict, compare=False)

    @classmethod
    def from_api(cls, obj: dict) -> "Server":
        attrs = attributes(obj)
        return cls(
            id=attrs["id"], uuid=attrs.get("uuid", ""), identifier=attrs.get("identifier", ""),
            name=attrs.get("name", ""), user=attrs.get("user"), node=attrs.get("node"),
            raw=attrs,
        )

    @property
    def environment(self) -> dict:
        """Container environment. Raises KeyError when the payload lacks it."""
        return self.raw["container"]["environment"]

    @property
    def allocation_object(self) -> dict | None:
        """Primary allocation as ``{id, ip, ip_alias, port}`` when the payload carries it."""
        if self.raw.get("allocation_object"):
            return self.raw["allocation_object"]
        included = self.raw.get("relationships", {}).get("allocations", {}).get("data") or []
        for item in included:
            attrs = attributes(item)
            if attrs.get("id") == self.raw.get("allocation"):
                return {
                    "id": attrs["id"],
                    "ip": attrs.get("ip"),
                    "ip_alias": attrs.get("alias"),
                    "port": attrs.get("port"),
                }
        return None

    def to_payload(self) -> dict:
        """Payload stored locally, without the included relationships."""
        return {k: v for k, v in self.raw.items() if k != "relationships"}


@dataclass(frozen=True)
class User:
    id: int
    username: str
    raw: dict = field(default_factory=dict, compare=False)

    @classmethod
    def from_api(cls, obj: dict) -> "User":
        attrs = attributes(obj)
        return cls(id=attrs["id"], username=attrs.get("username", ""), raw=attrs)


@dataclass(frozen=True)
class Egg:
    id: int
    docker_image: str
    startup: str
    raw: dict = field(default_factory=dict, compare=False)

    @classmethod
    def from_api(cls, obj: dict) -> "Egg":
        attrs = attributes(obj)
        return cls(
            id=attrs["id"], docker_image=attrs.get("docker_image", ""),
            startup=attrs.get("startup", ""), raw=attrs,
        )


@dataclass(frozen=True)
class ResourceUsage:
    current_state: str
    is_suspended: bool = False
    resources: dict = field(default_factory=dict)

    @classmethod
    def from_api(cls, obj: dict) -> "ResourceUsage":
        attrs = attributes(obj)
        return cls(
            current_state=attrs.get("current_state", ""),
            is_suspended=bool(attrs.get("is_suspended", False)),
            resources=attrs.get("resources") or {},
        )
