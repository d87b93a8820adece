"""
Panel client for the Pterodactyl client API (server detail, resources, power, files).
Credentials: a user's client API key (ptlc_...), decrypted from the link store.
"""

from typing import Dict, Any, Optional, List

import requests

from ..schemas import ApiResult, PowerSignal, OwnershipRole


def _error_detail(exc: requests.exceptions.RequestException) -> str:
    """Prefer the panel's own error detail over the transport message."""
    response = getattr(exc, "response", None)
    if response is not None:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            errors = payload.get("errors") or []
            if errors and isinstance(errors[0], dict) and errors[0].get("detail"):
                return errors[0]["detail"]
    return str(exc) or "Panel request failed"


class PanelClient:
    """
    Connector for the panel's client API. Every method returns an ApiResult
    and never raises for HTTP or transport failures.
    """

    ACCEPT = "Application/vnd.pterodactyl.v1+json"

    def __init__(self, base_url: str, api_key: str, timeout: float = 15):
        if not base_url:
            raise ValueError("Panel URL is required")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": self.ACCEPT,
        }

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/client{path}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        r = requests.request(
            method,
            self._url(path),
            headers=self._headers(),
            timeout=self.timeout,
            **kwargs,
        )
        r.raise_for_status()
        return r

    def get_server_details(self, server_id: str) -> ApiResult[Dict[str, Any]]:
        """Server attributes (name, identifier, limits, ...)."""
        try:
            r = self._request("GET", f"/servers/{server_id}")
            return ApiResult.ok(r.json().get("attributes", {}))
        except requests.exceptions.RequestException as e:
            return ApiResult.fail(_error_detail(e))
        except ValueError as e:
            return ApiResult.fail(f"Invalid panel response: {e}")

    def get_server_resources(self, server_id: str) -> ApiResult[Dict[str, Any]]:
        """Live resource usage (current_state + resources block)."""
        try:
            r = self._request("GET", f"/servers/{server_id}/resources")
            return ApiResult.ok(r.json().get("attributes", {}))
        except requests.exceptions.RequestException as e:
            return ApiResult.fail(_error_detail(e))
        except ValueError as e:
            return ApiResult.fail(f"Invalid panel response: {e}")

    def send_power_signal(self, server_id: str, signal: PowerSignal) -> ApiResult[None]:
        """Send start/stop/restart/kill."""
        signal = PowerSignal(signal)
        try:
            self._request("POST", f"/servers/{server_id}/power", json={"signal": signal.value})
            return ApiResult.ok()
        except requests.exceptions.RequestException as e:
            return ApiResult.fail(_error_detail(e))

    def start_server(self, server_id: str) -> ApiResult[None]:
        return self.send_power_signal(server_id, PowerSignal.START)

    def stop_server(self, server_id: str) -> ApiResult[None]:
        return self.send_power_signal(server_id, PowerSignal.STOP)

    def restart_server(self, server_id: str) -> ApiResult[None]:
        return self.send_power_signal(server_id, PowerSignal.RESTART)

    def kill_server(self, server_id: str) -> ApiResult[None]:
        return self.send_power_signal(server_id, PowerSignal.KILL)

    def list_servers(self) -> ApiResult[List[Dict[str, Any]]]:
        """Servers the API key can see."""
        try:
            r = self._request("GET", "/")
            servers = []
            for item in r.json().get("data", []):
                attrs = item.get("attributes", {})
                servers.append({
                    "id": attrs.get("identifier"),
                    "uuid": attrs.get("uuid"),
                    "name": attrs.get("name"),
                    "description": attrs.get("description"),
                    "ownership_role": (
                        OwnershipRole.OWNER.value if attrs.get("server_owner")
                        else OwnershipRole.USER.value
                    ),
                })
            return ApiResult.ok(servers)
        except requests.exceptions.RequestException as e:
            return ApiResult.fail(_error_detail(e))
        except ValueError as e:
            return ApiResult.fail(f"Invalid panel response: {e}")

    def find_server_by_uuid(self, server_uuid: str) -> ApiResult[Dict[str, Any]]:
        """Case-insensitive UUID lookup over ``list_servers``."""
        result = self.list_servers()
        if not result.success:
            return result
        wanted = server_uuid.lower()
        for server in result.data:
            if (server.get("uuid") or "").lower() == wanted:
                return ApiResult.ok(server)
        return ApiResult.fail(f'Server with UUID "{server_uuid}" not found')

    def read_file(self, server_id: str, path: str) -> ApiResult[str]:
        """Raw contents of a file inside the server's container."""
        try:
            r = self._request("GET", f"/servers/{server_id}/files/contents", params={"file": path})
            return ApiResult.ok(r.text)
        except requests.exceptions.RequestException as e:
            return ApiResult.fail(_error_detail(e))


def format_bytes(num_bytes: Optional[int]) -> str:
    """Human-readable byte count (1024 based)."""
    if not num_bytes:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(num_bytes)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


def format_uptime(seconds: float) -> str:
    seconds = int(seconds)
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60
    if days > 0:
        return f"{days}d {hours}h {minutes}m"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
