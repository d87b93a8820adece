"""Power control and on-demand status for linked servers."""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, UTC
from typing import Any, Dict, List

from ..errors import UpstreamUnavailable
from ..schemas import PowerSignal, TelemetrySample
from .status_view import build_status_view

logger = logging.getLogger(__name__)


class ControlService:
    """Permission-checked operations against a linked server."""

    def __init__(self, store, verification, credentials):
        self.store = store
        self.verification = verification
        self.credentials = credentials

    def send_power(self, user_id: str, resource_id: str, signal) -> Dict[str, Any]:
        """Send a power signal and bump the link's last_active.

        Raises:
            PermissionDenied: The user has not verified the server
            UpstreamUnavailable: The panel rejected or failed the call
        """
        signal = PowerSignal(signal)
        self.verification.require_permission(user_id, resource_id)
        client = self.credentials.client_for_user(user_id)

        result = client.send_power_signal(resource_id, signal)
        if not result.success:
            raise UpstreamUnavailable(f"Failed to {signal.value} server: {result.error}")

        self.store.touch_resource(user_id, resource_id)
        logger.info("Sent %s to %s", signal.value, resource_id,
                    extra={"user_id": user_id, "resource_id": resource_id})
        return {"resource_id": resource_id, "signal": signal.value, "sent": True}

    def fetch_snapshot(self, user_id: str, resource_id: str):
        """Detail + resources, fetched concurrently; both must succeed.

        Returns:
            (details, resources) attribute dicts
        """
        client = self.credentials.client_for_user(user_id)
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="panel-link-fetch") as pool:
            details_future = pool.submit(client.get_server_details, resource_id)
            resources_future = pool.submit(client.get_server_resources, resource_id)
            details = details_future.result()
            resources = resources_future.result()
        if not details.success or not resources.success:
            raise UpstreamUnavailable(
                "Failed to fetch server data from the panel: "
                f"{details.error or resources.error}"
            )
        return details.data, resources.data

    def fetch_status(self, user_id: str, resource_id: str) -> Dict[str, Any]:
        """Current status view; also records a telemetry sample."""
        self.verification.require_permission(user_id, resource_id)
        details, resources = self.fetch_snapshot(user_id, resource_id)

        now = datetime.now(UTC)
        self.store.append_telemetry(TelemetrySample.from_resources(resource_id, resources, now))
        self.store.touch_resource(user_id, resource_id, now)
        return build_status_view(details, resources, now=now)

    def history(self, user_id: str, resource_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        self.verification.require_permission(user_id, resource_id)
        return [s.to_dict() for s in self.store.get_telemetry(resource_id, limit=limit)]
