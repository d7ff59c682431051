"""Secret Service — freedesktop.org Secret Service objects over D-Bus.

Security Note (Threat Model):
    Any process on the session bus may open a session and read secrets
    once the vault is unlocked; the service does not authenticate callers.
    Transport encryption (DH sessions) protects secrets from bus
    monitoring, not from the peer that requested them.
"""
from .bus import DBusObject, Method, ObjectBus, Property
from .errors import SecretServiceError, to_protocol_error
from .service import SecretService
from .types import BUS_NAME, SERVICE_PATH, Secret

__all__ = [
    "DBusObject",
    "Method",
    "ObjectBus",
    "Property",
    "SecretServiceError",
    "to_protocol_error",
    "SecretService",
    "BUS_NAME",
    "SERVICE_PATH",
    "Secret",
]
