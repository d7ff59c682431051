"""
Keyring Exceptions — domain error taxonomy.

These errors never cross the bus as-is: the dispatch boundary translates
them with :func:`bitwarden_keyring.service.errors.to_protocol_error`.

Security Note:
    Messages may reach logs; never put secrets, HTTP bodies or URLs with
    credentials into them.
"""
import re


class KeyringError(Exception):
    """Base class for every error raised by bitwarden_keyring."""


class InvalidInput(KeyringError, ValueError):
    """Malformed key material, ciphertext or arguments. Never retried."""


class NotFound(KeyringError):
    """An addressed object does not exist."""


class SessionNotFound(NotFound):
    """Unknown or already closed session."""


class ObjectNotFound(NotFound):
    """Unknown collection, item or prompt."""


class ExportError(KeyringError):
    """An object could not be made addressable on the bus."""


class MissingSecret(KeyringError):
    """The item carries no password to hand out."""


# ---------------------------------------------------------------------------
# Vault errors
# ---------------------------------------------------------------------------

class VaultError(KeyringError):
    """Catch-all for vault and network failures."""


class VaultLocked(VaultError):
    """The vault is locked and auto-unlock is disabled or impossible."""

    def __init__(self, message: str = "vault is locked"):
        super().__init__(message)


class UserCancelled(VaultError):
    """The user dismissed the master password prompt."""

    def __init__(self, message: str = "user cancelled password prompt"):
        super().__init__(message)


class NoPromptAvailable(VaultError):
    """No usable password prompt program was found."""


_REDACT_PATTERN = re.compile(
    r'(?i)"(password|raw|token|session|authorization|key)"\s*:\s*"([^"]*)"'
)
_SNIPPET_MAX = 512
_TRUNCATED = "[truncated...]"


def body_snippet(prefix: str, body: str) -> str:
    """Return a truncated, redacted HTTP body for debug logging.

    The result, prefix included, is at most 512 characters long and every
    sensitive JSON string field is replaced by ``[redacted]``.
    """
    body = _REDACT_PATTERN.sub(r'"\1":"[redacted]"', body)
    budget = _SNIPPET_MAX - len(prefix) - len(": ")
    if len(body) > budget:
        available = budget - len(_TRUNCATED)
        body = body[:available] + _TRUNCATED if available > 0 else _TRUNCATED
    return f"{prefix}: {body}"


class APIError(VaultError):
    """HTTP error from the vault API.

    ``str()`` carries only the status code and request path; the response
    body is kept aside for debug logging via :meth:`debug_details`.
    """

    def __init__(self, status: int, path: str, body: str = ""):
        super().__init__(f"API error {status} on {path}")
        self.status = status
        self.path = path
        self._body = body

    def debug_details(self) -> str:
        return body_snippet("Response", self._body)
