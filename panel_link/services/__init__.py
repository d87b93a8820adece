"""Domain services for panel-link."""

from .credentials import CredentialService
from .verification import OwnershipVerificationService, IssuedChallenge
from .control import ControlService
from .render import WebhookRenderTarget, InMemoryRenderTarget, RenderTargetError
from .scheduler import StatusPollingScheduler

__all__ = [
    "CredentialService",
    "OwnershipVerificationService",
    "IssuedChallenge",
    "ControlService",
    "WebhookRenderTarget",
    "InMemoryRenderTarget",
    "RenderTargetError",
    "StatusPollingScheduler",
]
