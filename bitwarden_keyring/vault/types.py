"""
Vault Types — pydantic models for the Bitwarden CLI REST API.

Field names are snake_case in Python and camelCase on the wire; always
dump with ``by_alias=True``.
"""
from datetime import datetime
from enum import IntEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ItemType(IntEnum):
    LOGIN = 1
    SECURE_NOTE = 2
    CARD = 3
    IDENTITY = 4
    SSH_KEY = 5


class FieldType(IntEnum):
    TEXT = 0
    HIDDEN = 1
    BOOLEAN = 2


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class URI(_WireModel):
    uri: str
    match: Optional[int] = None


class Login(_WireModel):
    uris: list[URI] = Field(default_factory=list)
    username: Optional[str] = None
    password: Optional[str] = None
    totp: Optional[str] = None


class CustomField(_WireModel):
    name: str
    value: Optional[str] = None
    type: int = FieldType.TEXT


class CreateItemRequest(_WireModel):
    """Body of create and update calls."""

    organization_id: Optional[str] = Field(default=None, alias="organizationId")
    folder_id: Optional[str] = Field(default=None, alias="folderId")
    type: int = ItemType.LOGIN
    name: str
    notes: Optional[str] = None
    favorite: bool = False
    login: Optional[Login] = None
    ssh_key: Optional[dict[str, Any]] = Field(default=None, alias="sshKey")
    fields: list[CustomField] = Field(default_factory=list)
    reprompt: int = 0

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class Item(_WireModel):
    """A vault item as returned by the API."""

    id: str
    organization_id: Optional[str] = Field(default=None, alias="organizationId")
    folder_id: Optional[str] = Field(default=None, alias="folderId")
    type: int = ItemType.LOGIN
    name: str = ""
    notes: Optional[str] = None
    favorite: bool = False
    login: Optional[Login] = None
    secure_note: Optional[dict[str, Any]] = Field(default=None, alias="secureNote")
    card: Optional[dict[str, Any]] = None
    identity: Optional[dict[str, Any]] = None
    ssh_key: Optional[dict[str, Any]] = Field(default=None, alias="sshKey")
    fields: list[CustomField] = Field(default_factory=list)
    reprompt: int = 0
    revision_date: Optional[datetime] = Field(default=None, alias="revisionDate")
    creation_date: Optional[datetime] = Field(default=None, alias="creationDate")
    deleted_date: Optional[datetime] = Field(default=None, alias="deletedDate")

    @property
    def password(self) -> Optional[str]:
        return self.login.password if self.login else None

    def to_update_request(self) -> CreateItemRequest:
        """Build an update body that preserves every writable field.

        Sending a partial body would silently reset ``favorite`` and
        ``reprompt`` on the server.
        """
        return CreateItemRequest(
            organization_id=self.organization_id,
            folder_id=self.folder_id,
            type=self.type,
            name=self.name,
            notes=self.notes,
            favorite=self.favorite,
            login=self.login.model_copy(deep=True) if self.login else None,
            ssh_key=self.ssh_key,
            fields=[f.model_copy() for f in self.fields],
            reprompt=self.reprompt,
        )


class VaultStatus(_WireModel):
    """``template`` section of the ``/status`` response."""

    server_url: Optional[str] = Field(default=None, alias="serverUrl")
    last_sync: Optional[str] = Field(default=None, alias="lastSync")
    user_email: Optional[str] = Field(default=None, alias="userEmail")
    user_id: Optional[str] = Field(default=None, alias="userId")
    status: str = "locked"

    @property
    def locked(self) -> bool:
        return self.status == "locked"

    def last_sync_timestamp(self) -> int:
        """Last sync time as Unix seconds, 0 when absent or unparseable.

        Bitwarden reports RFC 3339 timestamps with or without fractional
        seconds, usually with a trailing ``Z``.
        """
        if not self.last_sync:
            return 0
        try:
            moment = datetime.fromisoformat(self.last_sync.replace("Z", "+00:00"))
        except ValueError:
            return 0
        return max(int(moment.timestamp()), 0)
