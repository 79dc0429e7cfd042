"""Vault — password-gated copies of message media."""

from ephemera.vault.models import VaultItem
from ephemera.vault.store import VaultStore
from ephemera.vault.transfer import VaultTransfer

__all__ = ["VaultItem", "VaultStore", "VaultTransfer"]
