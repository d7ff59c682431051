"""
Attribute Mapping — libsecret attributes ⇄ Bitwarden login items.

libsecret clients look secrets up by free-form string attributes
(``service``, ``username``, ``xdg:schema`` ...). Bitwarden stores logins
with a name, a username, URIs and custom fields. This module translates
between the two:

- ``item_to_attributes``: attributes advertised for a vault item
- ``matches_attributes``: search predicate over vault items
- ``build_uri_from_attributes``: URI used to narrow vault searches
- ``update_item_from_attributes``: write attributes back into an item
"""
from typing import Optional

from .vault.types import URI, CustomField, FieldType, Item, ItemType, Login

ATTR_SERVICE = "service"
ATTR_USERNAME = "username"
ATTR_USER = "user"
ATTR_DOMAIN = "domain"
ATTR_SERVER = "server"
ATTR_PROTOCOL = "protocol"
ATTR_PORT = "port"
ATTR_PATH = "path"
ATTR_LABEL = "label"
ATTR_SCHEMA = "xdg:schema"

SCHEMA_GENERIC_SECRET = "org.freedesktop.Secret.Generic"
SCHEMA_NETWORK_PASSWORD = "org.gnome.keyring.NetworkPassword"

IDENTITY_ATTRIBUTES = (
    ATTR_LABEL, ATTR_SERVICE, ATTR_DOMAIN, ATTR_SERVER, ATTR_USERNAME, ATTR_USER,
)

# never stored as custom fields
_RESERVED_ATTRIBUTES = frozenset({
    ATTR_SCHEMA, ATTR_LABEL, ATTR_SERVICE, ATTR_DOMAIN, ATTR_SERVER,
    ATTR_PROTOCOL, ATTR_PORT, ATTR_PATH, ATTR_USERNAME, ATTR_USER,
})

_DEFAULT_PORTS = {"https": "443", "http": "80"}


# ---------------------------------------------------------------------------
# URI helpers
# ---------------------------------------------------------------------------

def _split_scheme(uri: str) -> tuple[str, str]:
    scheme, sep, rest = uri.partition("://")
    if not sep:
        return "", uri
    return scheme, rest


def _split_authority(rest: str) -> tuple[str, str, str]:
    """Split ``host[:port][/path]`` into (host, port, path).

    Bracketed IPv6 hosts keep their brackets.
    """
    slash = rest.find("/")
    authority, path = (rest, "") if slash == -1 else (rest[:slash], rest[slash:])
    if authority.startswith("["):
        end = authority.find("]")
        if end != -1:
            host, tail = authority[:end + 1], authority[end + 1:]
            port = tail[1:] if tail.startswith(":") else ""
            return host, port, path
    host, _, port = authority.partition(":")
    return host, port, path


def extract_domain(uri: str) -> str:
    """Return the lower-cased host of ``uri``, which may lack a scheme."""
    _, rest = _split_scheme(uri)
    host, _, _ = _split_authority(rest)
    return host.lower()


def extract_uri_components(uri: str) -> tuple[str, str, str]:
    """Return (protocol, port, path) of ``uri``; missing parts are ``""``."""
    scheme, rest = _split_scheme(uri)
    _, port, path = _split_authority(rest)
    return scheme.lower(), port, path


def normalize(uri: str) -> str:
    """Prefix ``https://`` when ``uri`` has no scheme."""
    if "://" not in uri:
        return "https://" + uri
    return uri


def build_uri_from_attributes(attrs: dict[str, str]) -> str:
    """Build a URI from ``service`` or ``domain``/``server`` plus components.

    A ``service`` that already carries a scheme is used as-is. Otherwise the
    URI is ``protocol://host[:port][/path]`` with ``https`` as the default
    protocol. Returns ``""`` when no host attribute is present.
    """
    service = attrs.get(ATTR_SERVICE, "")
    if service and "://" in service:
        return service
    host = service or attrs.get(ATTR_DOMAIN) or attrs.get(ATTR_SERVER) or ""
    if not host:
        return ""
    uri = f"{attrs.get(ATTR_PROTOCOL) or 'https'}://{host}"
    port = attrs.get(ATTR_PORT)
    if port:
        uri += ":" + port
    path = attrs.get(ATTR_PATH)
    if path:
        if not path.startswith("/"):
            uri += "/"
        uri += path
    return uri


def get_username(attrs: dict[str, str]) -> str:
    if ATTR_USERNAME in attrs:
        return attrs[ATTR_USERNAME]
    return attrs.get(ATTR_USER, "")


def has_meaningful_attributes(attrs: Optional[dict[str, str]]) -> bool:
    """True when ``attrs`` holds at least one non-empty identity attribute.

    Guards replace-on-create against empty or schema-only attribute sets
    matching an arbitrary item.
    """
    if not attrs:
        return False
    return any(attrs.get(key) for key in IDENTITY_ATTRIBUTES)


# ---------------------------------------------------------------------------
# Item -> attributes
# ---------------------------------------------------------------------------

def item_to_attributes(item: Item) -> dict[str, str]:
    attrs: dict[str, str] = {}
    if item.login is not None:
        if item.login.username is not None:
            attrs[ATTR_USERNAME] = item.login.username
        if item.login.uris:
            uri = item.login.uris[0].uri
            attrs[ATTR_SERVICE] = uri
            attrs[ATTR_DOMAIN] = extract_domain(uri)
            protocol, port, path = extract_uri_components(uri)
            if protocol:
                attrs[ATTR_PROTOCOL] = protocol
            if port:
                attrs[ATTR_PORT] = port
            if path:
                attrs[ATTR_PATH] = path
    attrs[ATTR_LABEL] = item.name
    attrs[ATTR_SCHEMA] = SCHEMA_GENERIC_SECRET
    for f in item.fields:
        if f.type == FieldType.TEXT and f.value is not None:
            attrs[f.name] = f.value
    return attrs


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

def _matches_uri(item: Item, value: str) -> bool:
    value_lower = value.lower()
    value_domain = extract_domain(value)
    for entry in item.login.uris:
        uri_lower = entry.uri.lower()
        if uri_lower == value_lower:
            return True
        if value_domain and extract_domain(entry.uri) == value_domain:
            return True
        if value_lower in uri_lower or uri_lower in value_lower:
            return True
    return False


def _effective_port(protocol: str, port: str) -> str:
    return port or _DEFAULT_PORTS.get(protocol, "")


def _path_matches(path: str, wanted: str) -> bool:
    if not wanted.startswith("/"):
        wanted = "/" + wanted
    wanted = wanted.rstrip("/") or "/"
    if wanted == "/":
        return True
    return path == wanted or path.startswith(wanted + "/")


def _matches_component(item: Item, key: str, value: str) -> bool:
    for entry in item.login.uris:
        protocol, port, path = extract_uri_components(entry.uri)
        if key == ATTR_PROTOCOL and protocol == value.lower():
            return True
        if key == ATTR_PORT and _effective_port(protocol, port) == value:
            return True
        if key == ATTR_PATH and _path_matches(path, value):
            return True
    return False


def _matches_field(item: Item, key: str, value: str) -> bool:
    return any(f.name == key and f.value == value for f in item.fields)


def matches_attributes(item: Item, attrs: dict[str, str]) -> bool:
    """Return True if the login ``item`` satisfies every attribute.

    Non-login items never match.
    """
    if item.type != ItemType.LOGIN or item.login is None:
        return False
    for key, value in attrs.items():
        if key == ATTR_SCHEMA:
            continue
        if key in (ATTR_SERVICE, ATTR_DOMAIN, ATTR_SERVER):
            matched = _matches_uri(item, value)
        elif key in (ATTR_PROTOCOL, ATTR_PORT, ATTR_PATH):
            matched = _matches_component(item, key, value)
        elif key in (ATTR_USERNAME, ATTR_USER):
            matched = item.login.username == value
        elif key == ATTR_LABEL:
            matched = item.name.casefold() == value.casefold()
        else:
            matched = _matches_field(item, key, value)
        if not matched:
            return False
    return True


# ---------------------------------------------------------------------------
# Attributes -> item
# ---------------------------------------------------------------------------

def update_item_from_attributes(item: Item, attrs: dict[str, str]) -> None:
    """Apply ``attrs`` to ``item`` in place.

    Username and URI attributes go to the login; every non-reserved
    attribute becomes (or updates) a text custom field.
    """
    if item.login is None:
        item.login = Login()
    username = get_username(attrs)
    if username:
        item.login.username = username
    uri = build_uri_from_attributes(attrs)
    if uri:
        if item.login.uris:
            item.login.uris[0] = URI(uri=uri, match=item.login.uris[0].match)
        else:
            item.login.uris = [URI(uri=uri)]
    for key, value in attrs.items():
        if key in _RESERVED_ATTRIBUTES:
            continue
        for f in item.fields:
            if f.name == key:
                f.value = value
                break
        else:
            item.fields.append(CustomField(name=key, value=value, type=FieldType.TEXT))
