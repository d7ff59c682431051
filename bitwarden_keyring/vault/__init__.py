"""Bitwarden vault access through the ``bw serve`` REST API."""
from .client import VaultClient
from .prompter import PasswordPrompter
from .serve import BitwardenServe
from .types import (
    URI,
    CreateItemRequest,
    CustomField,
    FieldType,
    Item,
    ItemType,
    Login,
    VaultStatus,
)

__all__ = (
    "VaultClient",
    "PasswordPrompter",
    "BitwardenServe",
    "URI",
    "CreateItemRequest",
    "CustomField",
    "FieldType",
    "Item",
    "ItemType",
    "Login",
    "VaultStatus",
)
