"""Schema definitions for panel-link."""

from dataclasses import dataclass, field, asdict
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar


class LinkStatus(str, Enum):
    """Lifecycle state of a linked resource."""
    LINKED = "linked"
    UNLINKED = "unlinked"


class PowerSignal(str, Enum):
    """Power signals accepted by the panel."""
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    KILL = "kill"


class OwnershipRole(str, Enum):
    OWNER = "owner"
    USER = "user"


class EvictionReason(str, Enum):
    """Why the scheduler dropped a subscription."""
    PERMISSION_LOST = "permission_lost"
    TARGET_GONE = "target_gone"
    POLL_FAILURES = "poll_failures"
    IDLE = "idle"


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class LinkedResource:
    """A verified binding of a chat user to a panel server."""
    user_id: str
    resource_id: str
    resource_name: Optional[str] = None
    origin_context: Dict[str, Any] = field(default_factory=dict)
    verified: bool = True
    verified_at: datetime = field(default_factory=utcnow)
    last_active: datetime = field(default_factory=utcnow)
    status: LinkStatus = LinkStatus.LINKED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "origin_context": self.origin_context,
            "verified": self.verified,
            "verified_at": self.verified_at.isoformat(),
            "last_active": self.last_active.isoformat(),
            "status": self.status.value,
        }


@dataclass
class VerificationChallenge:
    """Single-use, time-boxed proof request."""
    token: str
    code: str
    user_id: str
    resource_id: str
    issued_at: datetime
    expires_at: datetime
    used: bool = False

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at


@dataclass
class Credential:
    """Decrypted view of a user's panel API key. Never persisted in this form."""
    user_id: str
    api_key: str
    panel_url: Optional[str]
    verified_at: datetime

    def __repr__(self) -> str:
        return (
            f"Credential(user_id={self.user_id!r}, api_key='***', "
            f"panel_url={self.panel_url!r}, verified_at={self.verified_at!r})"
        )


@dataclass
class TelemetrySample:
    """One polled resource-usage snapshot."""
    resource_id: str
    cpu: float
    memory_bytes: int
    disk_bytes: int
    uptime_ms: int
    state: str
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def from_resources(cls, resource_id: str, resources: Dict[str, Any],
                       timestamp: Optional[datetime] = None) -> "TelemetrySample":
        """Build a sample from the panel's ``/resources`` attributes."""
        # Panel nests usage under "resources"; older payloads keep it flat
        usage = resources.get("resources") or resources
        return cls(
            resource_id=resource_id,
            cpu=float(usage.get("cpu_absolute") or 0.0),
            memory_bytes=int(usage.get("memory_bytes") or 0),
            disk_bytes=int(usage.get("disk_bytes") or 0),
            uptime_ms=int(usage.get("uptime") or 0),
            state=resources.get("current_state") or "unknown",
            timestamp=timestamp or utcnow(),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class ActiveSubscription:
    """Scheduler-owned binding between a rendered view and a resource."""
    subscription_id: str
    channel_ref: str
    resource_id: str
    user_id: str
    last_update: float
    callback_url: Optional[str] = None
    update_count: int = 0
    fail_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


T = TypeVar("T")


@dataclass(frozen=True)
class ApiResult(Generic[T]):
    """Tagged result of a panel API call: either ``data`` or ``error``."""
    success: bool
    data: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Optional[T] = None) -> "ApiResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ApiResult[T]":
        return cls(success=False, error=error or "Unknown panel error")
