"""Security primitives for panel-link."""

from .vault import CredentialVault, derive_key

__all__ = ["CredentialVault", "derive_key"]
