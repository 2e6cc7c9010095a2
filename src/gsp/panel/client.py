"""Client (end-user) API: power, console, resources, startup variables, files."""

from gsp.panel.http import PanelHTTP
from gsp.panel.resources import ResourceUsage, attributes

POWER_SIGNALS = ("start", "stop", "restart", "kill")


class ClientAPI(PanelHTTP):
    api_prefix = "/api/client"

    def power(self, identifier: str, signal: str) -> None:
        if signal not in POWER_SIGNALS:
            raise ValueError(f"Unknown power signal: {signal}")
        self.request("POST", f"/servers/{identifier}/power", json={"signal": signal})

    def command(self, identifier: str, command: str) -> None:
        self.request("POST", f"/servers/{identifier}/command", json={"command": command})

    def resources(self, identifier: str) -> ResourceUsage:
        return ResourceUsage.from_api(self.get_json(f"/servers/{identifier}/resources"))

    def update_startup_variable(self, identifier: str, key: str, value: str) -> dict:
        response = self.request(
            "PUT", f"/servers/{identifier}/startup/variable", json={"key": key, "value": value},
        )
        return attributes(self.decode(response))

    def list_files(self, identifier: str, directory: str) -> list[dict]:
        body = self.get_json(f"/servers/{identifier}/files/list", {"directory": directory})
        return [attributes(item) for item in body.get("data", [])]

    def file_contents(self, identifier: str, path: str) -> str:
        return self.request("GET", f"/servers/{identifier}/files/contents", params={"file": path}).text

    def network_allocations(self, identifier: str) -> list[dict]:
        body = self.get_json(f"/servers/{identifier}/network/allocations")
        return [attributes(item) for item in body.get("data", [])]
