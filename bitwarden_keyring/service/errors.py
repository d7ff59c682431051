"""
Protocol Errors — what callers on the bus are allowed to see.

Handlers raise domain errors from :mod:`bitwarden_keyring.exceptions`;
the bus dispatcher passes every failure through :func:`to_protocol_error`
exactly once before replying.

Security Note:
    Anything not explicitly mapped becomes ``Failed("backend error")`` so
    HTTP status codes, endpoints and response bodies never leave the
    process.
"""
import asyncio
import logging

from ..exceptions import (
    InvalidInput,
    ObjectNotFound,
    SessionNotFound,
    UserCancelled,
    VaultLocked,
)

logger = logging.getLogger("bwkeyring.service")

SECRET_ERROR_PREFIX = "org.freedesktop.Secret.Error."
DBUS_ERROR_PREFIX = "org.freedesktop.DBus.Error."

GENERIC_BACKEND_MESSAGE = "backend error"


class SecretServiceError(Exception):
    """An error with a D-Bus error name and a message safe to send."""

    name = DBUS_ERROR_PREFIX + "Failed"
    default_message = "operation failed"

    def __init__(self, message: str = ""):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class IsLocked(SecretServiceError):
    name = SECRET_ERROR_PREFIX + "IsLocked"
    default_message = "vault is locked"


class NoSession(SecretServiceError):
    name = SECRET_ERROR_PREFIX + "NoSession"
    default_message = "session not found"


class NoSuchObject(SecretServiceError):
    name = SECRET_ERROR_PREFIX + "NoSuchObject"
    default_message = "no such object"


class PromptDismissed(SecretServiceError):
    name = SECRET_ERROR_PREFIX + "PromptDismissed"
    default_message = "prompt dismissed"


class NotSupported(SecretServiceError):
    name = DBUS_ERROR_PREFIX + "NotSupported"
    default_message = "not supported"


class InvalidArgs(SecretServiceError):
    name = DBUS_ERROR_PREFIX + "InvalidArgs"
    default_message = "invalid arguments"


class UnknownMethod(SecretServiceError):
    name = DBUS_ERROR_PREFIX + "UnknownMethod"
    default_message = "unknown method"


class UnknownInterface(SecretServiceError):
    name = DBUS_ERROR_PREFIX + "UnknownInterface"
    default_message = "unknown interface"


class UnknownProperty(SecretServiceError):
    name = DBUS_ERROR_PREFIX + "UnknownProperty"
    default_message = "unknown property"


class PropertyReadOnly(SecretServiceError):
    name = DBUS_ERROR_PREFIX + "PropertyReadOnly"
    default_message = "property is read-only"


class Failed(SecretServiceError):
    name = DBUS_ERROR_PREFIX + "Failed"
    default_message = GENERIC_BACKEND_MESSAGE


def to_protocol_error(err: BaseException) -> SecretServiceError:
    """Translate any exception into a protocol error.

    Only the error type decides the result; the original message is
    discarded except for errors that are already protocol errors.
    """
    if isinstance(err, SecretServiceError):
        return err
    if isinstance(err, VaultLocked):
        return IsLocked()
    if isinstance(err, (UserCancelled, asyncio.CancelledError)):
        return PromptDismissed()
    if isinstance(err, SessionNotFound):
        return NoSession()
    if isinstance(err, ObjectNotFound):
        return NoSuchObject()
    if isinstance(err, InvalidInput):
        return InvalidArgs()
    logger.debug("Backend error redacted: %s", type(err).__name__)
    return Failed()
