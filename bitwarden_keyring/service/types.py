"""
Secret Service Types — bus names, object paths and the Secret struct.
"""
from dataclasses import dataclass

BUS_NAME = "org.freedesktop.secrets"
SERVICE_PATH = "/org/freedesktop/secrets"
COLLECTION_PREFIX = SERVICE_PATH + "/collections/"
SESSION_PREFIX = SERVICE_PATH + "/session/"
PROMPT_PREFIX = SERVICE_PATH + "/prompt/"
ALIAS_PREFIX = SERVICE_PATH + "/aliases/"

SERVICE_INTERFACE = "org.freedesktop.Secret.Service"
COLLECTION_INTERFACE = "org.freedesktop.Secret.Collection"
ITEM_INTERFACE = "org.freedesktop.Secret.Item"
SESSION_INTERFACE = "org.freedesktop.Secret.Session"
PROMPT_INTERFACE = "org.freedesktop.Secret.Prompt"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"
INTROSPECTABLE_INTERFACE = "org.freedesktop.DBus.Introspectable"
PEER_INTERFACE = "org.freedesktop.DBus.Peer"

PROP_ITEM_LABEL = ITEM_INTERFACE + ".Label"
PROP_ITEM_ATTRIBUTES = ITEM_INTERFACE + ".Attributes"

DEFAULT_COLLECTION = "default"
DEFAULT_COLLECTION_PATH = COLLECTION_PREFIX + DEFAULT_COLLECTION
DEFAULT_ALIAS_PATH = ALIAS_PREFIX + DEFAULT_COLLECTION

# "no prompt needed" / "no object"
NO_PROMPT = "/"

ALGORITHM_PLAIN = "plain"
ALGORITHM_DH = "dh-ietf1024-sha256-aes128-cbc-pkcs7"

SECRET_SIGNATURE = "(oayays)"
DEFAULT_CONTENT_TYPE = "text/plain"


@dataclass(frozen=True)
class Secret:
    """Wire secret ``(oayays)``: session, parameters, value, content type.

    For plain sessions ``parameters`` is empty and ``value`` is the raw
    UTF-8 secret; for DH sessions ``parameters`` is the IV and ``value``
    the ciphertext.
    """

    session: str
    parameters: bytes
    value: bytes
    content_type: str = DEFAULT_CONTENT_TYPE

    def to_dbus(self) -> list:
        return [self.session, self.parameters, self.value, self.content_type]

    @classmethod
    def from_dbus(cls, value) -> "Secret":
        session, parameters, secret, content_type = value
        return cls(str(session), bytes(parameters), bytes(secret), str(content_type))


def sanitize_id(item_id: str) -> str:
    """Strip hyphens so a vault UUID is a valid object-path segment."""
    return item_id.replace("-", "")


def unsanitize_id(segment: str) -> str:
    """Re-insert UUID hyphens into a 32-character segment.

    Any other input is returned unchanged.
    """
    if len(segment) != 32:
        return segment
    return "-".join((
        segment[0:8], segment[8:12], segment[12:16], segment[16:20], segment[20:32],
    ))


def item_path(item_id: str, collection: str = DEFAULT_COLLECTION) -> str:
    return f"{COLLECTION_PREFIX}{collection}/{sanitize_id(item_id)}"


def item_id_from_path(path: str) -> str:
    """Vault item id addressed by an item object path (last segment)."""
    return unsanitize_id(path.rstrip("/").rsplit("/", 1)[-1])
