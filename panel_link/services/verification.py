"""Ownership verification: single-use challenges proving a user controls a server.

A challenge moves NoChallenge -> Issued -> Consumed | Expired. The user
proves control by writing ``PANEL_LINK_VERIFY:<code>:<token>`` into a file on
the server; adjudication reads that file back through the panel API with the
user's own key before atomically consuming the challenge and creating the link.
"""

import hmac
import logging
import re
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from typing import Any, Callable, Dict, List, Optional

from ..errors import (
    AlreadyUsed, ChallengeExpired, NoActiveChallenge, NotFound, PanelLinkError,
    PermissionDenied, ProofMismatch, UpstreamUnavailable,
)
from ..schemas import LinkedResource, LinkStatus, VerificationChallenge

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8
CODE_SHAPE = re.compile(r"^[A-Z0-9]{8}$")
TOKEN_BYTES = 32
CHALLENGE_TTL = timedelta(hours=24)
PROOF_PREFIX = "PANEL_LINK_VERIFY"
DEFAULT_PROOF_PATH = "/.panel_link_verify"

MODE_FILE = "file"
MODE_SHAPE = "shape"


def generate_code(length: int = CODE_LENGTH) -> str:
    """Uniformly random uppercase alphanumeric code."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def generate_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def proof_line(code: str, token: str) -> str:
    return f"{PROOF_PREFIX}:{code}:{token}"


@dataclass
class IssuedChallenge:
    code: str
    token: str
    instructions: str
    expires_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "token": self.token,
            "instructions": self.instructions,
            "expires_at": self.expires_at.isoformat(),
        }


class OwnershipVerificationService:
    """Issues and adjudicates verification challenges."""

    def __init__(
        self,
        store,
        credentials,
        mode: str = MODE_FILE,
        proof_path: str = DEFAULT_PROOF_PATH,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        metrics=None,
    ):
        if mode not in (MODE_FILE, MODE_SHAPE):
            raise ValueError(f"Unknown verification mode: {mode}")
        self.store = store
        self.credentials = credentials
        self.mode = mode
        self.proof_path = proof_path
        self._clock = clock
        if metrics is None:
            from ..monitoring.metrics import metrics
        self.metrics = metrics

    def issue_challenge(self, user_id: str, resource_id: str) -> IssuedChallenge:
        """Create and persist a new challenge for (user, resource)."""
        if not user_id or not resource_id:
            raise ValueError("user_id and resource_id are required")
        if self.mode == MODE_FILE and not self.credentials.has_credentials(user_id):
            raise NotFound(
                "Submit your panel client API key before linking a server; "
                "it is used to read back the verification file."
            )

        now = self._clock()
        challenge = VerificationChallenge(
            token=generate_token(),
            code=generate_code(),
            user_id=user_id,
            resource_id=resource_id,
            issued_at=now,
            expires_at=now + CHALLENGE_TTL,
        )
        self.store.issue_token(challenge)
        logger.info("Issued verification challenge for %s on %s", user_id, resource_id,
                    extra={"user_id": user_id, "resource_id": resource_id})

        instructions = (
            "To link your server, run this command in your panel's server console:\n"
            f"```\necho \"{proof_line(challenge.code, challenge.token)}\" > "
            f"{self.proof_path.lstrip('/')}\n```\n"
            f"Then verify with server_id {resource_id} and code {challenge.code}. "
            "The code expires in 24 hours."
        )
        return IssuedChallenge(
            code=challenge.code,
            token=challenge.token,
            instructions=instructions,
            expires_at=challenge.expires_at,
        )

    def adjudicate(self, user_id: str, resource_id: str, code: str,
                   origin_context: Optional[Dict[str, Any]] = None) -> LinkedResource:
        """Check a submitted code and link the resource on success.

        Raises:
            NoActiveChallenge: Nothing was issued for this pair
            AlreadyUsed: Every challenge for the pair is consumed, or a
                concurrent attempt consumed it first
            ChallengeExpired: The newest unused challenge is past its window
            ProofMismatch: Wrong code, or the proof file doesn't match
            UpstreamUnavailable: The proof file could not be read
            StorageFailure: The consume transaction failed; nothing was applied
        """
        try:
            linked = self._adjudicate(user_id, resource_id, code, origin_context)
        except PanelLinkError as e:
            self.metrics.verifications.labels(outcome=e.code.value).inc()
            logger.info("Verification failed for %s on %s: %s", user_id, resource_id, e.code.value,
                        extra={"user_id": user_id, "resource_id": resource_id})
            raise
        self.metrics.verifications.labels(outcome="success").inc()
        logger.info("Verified %s as owner of %s", user_id, resource_id,
                    extra={"user_id": user_id, "resource_id": resource_id})
        return linked

    def _adjudicate(self, user_id: str, resource_id: str, code: str,
                    origin_context: Optional[Dict[str, Any]]) -> LinkedResource:
        code = (code or "").strip().upper()
        now = self._clock()

        challenges = self.store.list_challenges(user_id, resource_id)
        if not challenges:
            raise NoActiveChallenge(
                "No verification in progress for this server. Start by linking it."
            )
        unused = [c for c in challenges if not c.used]
        if not unused:
            raise AlreadyUsed("This verification code has already been used.")

        challenge = unused[0]
        if challenge.is_expired(now):
            raise ChallengeExpired("Your verification code has expired. Link the server again.")

        if not CODE_SHAPE.match(code) or not hmac.compare_digest(code, challenge.code):
            raise ProofMismatch("Invalid verification code.")

        if self.mode == MODE_FILE:
            self._check_proof(user_id, resource_id, challenge)

        linked = LinkedResource(
            user_id=user_id,
            resource_id=resource_id,
            resource_name=self._lookup_name(user_id, resource_id),
            origin_context=origin_context or {},
            verified=True,
            verified_at=now,
            last_active=now,
            status=LinkStatus.LINKED,
        )
        if not self.store.consume_token(challenge.token, linked, now=now):
            raise AlreadyUsed("This verification code has already been used.")
        return linked

    def _check_proof(self, user_id: str, resource_id: str,
                     challenge: VerificationChallenge) -> None:
        """Read the proof file back from the server and compare it."""
        client = self.credentials.client_for_user(user_id)
        result = client.read_file(resource_id, self.proof_path)
        if not result.success:
            raise UpstreamUnavailable(
                f"Could not read the verification file from your server: {result.error}"
            )
        expected = proof_line(challenge.code, challenge.token)
        lines = [line.strip().strip('"') for line in (result.data or "").splitlines()]
        if not any(hmac.compare_digest(line, expected) for line in lines):
            raise ProofMismatch(
                "The verification file on your server does not match this challenge."
            )

    def _lookup_name(self, user_id: str, resource_id: str) -> Optional[str]:
        if not self.credentials.has_credentials(user_id):
            return None
        try:
            result = self.credentials.client_for_user(user_id).get_server_details(resource_id)
        except PanelLinkError as e:
            logger.debug("Could not resolve name for %s: %s", resource_id, e.message)
            return None
        if not result.success:
            return None
        return (result.data or {}).get("name")

    def has_permission(self, user_id: str, resource_id: str) -> bool:
        """True if the user holds a verified, linked binding to the resource."""
        resource = self.store.get_resource(user_id, resource_id)
        return bool(resource and resource.verified and resource.status == LinkStatus.LINKED)

    def require_permission(self, user_id: str, resource_id: str) -> None:
        if not self.has_permission(user_id, resource_id):
            raise PermissionDenied("You do not have permission to manage this server.")

    def list_linked(self, user_id: str) -> List[LinkedResource]:
        return [r for r in self.store.list_resources_for_user(user_id) if r.verified]

    def unlink(self, user_id: str, resource_id: str) -> None:
        self.require_permission(user_id, resource_id)
        self.store.remove_resource(user_id, resource_id)
        logger.info("Unlinked %s from %s", resource_id, user_id,
                    extra={"user_id": user_id, "resource_id": resource_id})
