"""Panel API key intake, validation and lookup."""

import logging
import re
from datetime import datetime, UTC
from typing import Any, Callable, Dict, Optional

from ..clients.panel_client import PanelClient
from ..errors import InvalidCredential, NotFound

logger = logging.getLogger(__name__)

# Client API keys issued by the panel
API_KEY_PATTERN = re.compile(r"^ptlc_[A-Za-z0-9]{20,}$")

ClientFactory = Callable[[str, str, float], PanelClient]


def looks_like_api_key(text: Optional[str]) -> bool:
    return bool(text) and bool(API_KEY_PATTERN.match(text.strip()))


class CredentialService:
    """Stores working panel API keys per user and builds clients from them."""

    def __init__(
        self,
        store,
        default_panel_url: Optional[str] = None,
        client_factory: ClientFactory = PanelClient,
        timeout: float = 15,
    ):
        self.store = store
        self.default_panel_url = default_panel_url
        self.client_factory = client_factory
        self.timeout = timeout

    def _resolve_panel_url(self, panel_url: Optional[str]) -> str:
        url = (panel_url or self.default_panel_url or "").strip().rstrip("/")
        if not url:
            raise InvalidCredential("No panel URL configured. Provide the URL of your panel.")
        if not url.startswith(("http://", "https://")):
            raise InvalidCredential("Panel URL must start with http:// or https://")
        return url

    def submit_api_key(self, user_id: str, text: str,
                       panel_url: Optional[str] = None) -> Dict[str, Any]:
        """Validate a submitted API key against the panel and store it encrypted.

        Returns:
            Summary with the panel URL and how many servers the key can see

        Raises:
            InvalidCredential: Wrong key format or the panel rejected the key
        """
        api_key = (text or "").strip()
        if not API_KEY_PATTERN.match(api_key):
            raise InvalidCredential(
                "That doesn't look like a panel client API key (expected ptlc_...)."
            )
        url = self._resolve_panel_url(panel_url)

        client = self.client_factory(url, api_key, self.timeout)
        result = client.list_servers()
        if not result.success:
            logger.info("Rejected API key for user %s: %s", user_id, result.error,
                        extra={"user_id": user_id})
            raise InvalidCredential(f"The panel rejected this API key: {result.error}")

        verified_at = datetime.now(UTC)
        self.store.save_credential(user_id, api_key, url, verified_at=verified_at)
        logger.info("Stored panel credential for user %s", user_id, extra={"user_id": user_id})
        return {
            "panel_url": url,
            "server_count": len(result.data or []),
            "verified_at": verified_at.isoformat(),
        }

    def client_for_user(self, user_id: str) -> PanelClient:
        """Build a panel client from the user's stored key.

        Raises:
            NotFound: No credential stored
            CorruptCredential: Stored credential can't be decrypted
        """
        credential = self.store.get_credential(user_id)
        if credential is None:
            raise NotFound("No panel API key on file. Submit your client API key first.")
        url = self._resolve_panel_url(credential.panel_url)
        return self.client_factory(url, credential.api_key, self.timeout)

    def has_credentials(self, user_id: str) -> bool:
        return self.store.get_credential_info(user_id) is not None

    def describe(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.store.get_credential_info(user_id)

    def remove(self, user_id: str) -> bool:
        removed = self.store.remove_credential(user_id)
        if removed:
            logger.info("Removed panel credential for user %s", user_id, extra={"user_id": user_id})
        return removed
