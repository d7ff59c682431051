"""
Sessions — per-client secret transport.

``OpenSession`` negotiates either ``plain`` (secrets travel as raw UTF-8)
or ``dh-ietf1024-sha256-aes128-cbc-pkcs7`` (DH key agreement, then AES-128
per secret). Each session lives at ``/org/freedesktop/secrets/session/<n>``
until the client calls ``Close``.

Security Note:
    The derived AES key is set once at creation and never logged.
"""
import itertools
import logging
import weakref
from typing import Any, Optional

from dbus_fast import Variant

from .. import crypto
from ..exceptions import InvalidInput, SessionNotFound
from .bus import DBusObject, Method
from .errors import NotSupported
from .types import ALGORITHM_DH, ALGORITHM_PLAIN, SESSION_INTERFACE, SESSION_PREFIX

logger = logging.getLogger("bwkeyring.service")


class Session(DBusObject):
    """An open transport session."""

    interface = SESSION_INTERFACE
    methods = {"Close": Method("close")}

    def __init__(
        self,
        path: str,
        algorithm: str,
        aes_key: Optional[bytes],
        manager: "SessionManager",
    ):
        self.path = path
        self.algorithm = algorithm
        self._aes_key = aes_key
        self._manager = weakref.ref(manager)

    @property
    def encrypted(self) -> bool:
        return self.algorithm == ALGORITHM_DH

    def encrypt_secret(self, plaintext: bytes) -> tuple[bytes, bytes]:
        """Return (value, parameters) for a secret sent to the client."""
        if not self.encrypted:
            return plaintext, b""
        if self._aes_key is None:
            raise InvalidInput("session not initialized")
        ciphertext, iv = crypto.encrypt(plaintext, self._aes_key)
        return ciphertext, iv

    def decrypt_secret(self, value: bytes, parameters: bytes) -> bytes:
        """Return the plaintext of a secret received from the client."""
        if not self.encrypted:
            return value
        if self._aes_key is None:
            raise InvalidInput("session not initialized")
        return crypto.decrypt(value, self._aes_key, parameters)

    async def close(self) -> None:
        manager = self._manager()
        if manager is None:
            raise SessionNotFound(self.path)
        manager.close_session(self.path)


class SessionManager:
    """Creates, looks up and closes sessions.

    Args:
        bus: Object bus the sessions are exported on.
    """

    def __init__(self, bus):
        self._bus = bus
        self._sessions: dict[str, Session] = {}
        self._counter = itertools.count(1)

    def __len__(self) -> int:
        return len(self._sessions)

    def create_session(self, algorithm: str, peer_input: Any) -> tuple[Session, Variant]:
        """Negotiate a session.

        Args:
            algorithm: ``plain`` or the DH algorithm name.
            peer_input: The client's input; for DH its public key bytes.

        Returns:
            Tuple of (session, output variant for the client).

        Raises:
            NotSupported: For an unknown algorithm.
            InvalidInput: For a malformed DH public key.
            ExportError: If the session object could not be exported.
        """
        if algorithm == ALGORITHM_PLAIN:
            aes_key, output = None, Variant("s", "")
        elif algorithm == ALGORITHM_DH:
            if not isinstance(peer_input, (bytes, bytearray)):
                raise InvalidInput("DH input must be a byte array")
            key_pair = crypto.generate_key_pair(bytes(peer_input))
            aes_key = crypto.derive_aes_key(key_pair.shared_key)
            key_pair.discard_private_key()
            output = Variant("ay", key_pair.public_key)
        else:
            raise NotSupported(f"unsupported algorithm: {algorithm}")

        path = f"{SESSION_PREFIX}{next(self._counter)}"
        session = Session(path, algorithm, aes_key, self)
        self._bus.export(path, session)
        self._sessions[path] = session
        logger.debug("Opened %s session %s", algorithm, path)
        return session, output

    def get_session(self, path: str) -> Optional[Session]:
        return self._sessions.get(path)

    def require_session(self, path: str) -> Session:
        session = self._sessions.get(path)
        if session is None:
            raise SessionNotFound(path)
        return session

    def close_session(self, path: str) -> None:
        """Close ``path``; closing an unknown session is an error."""
        session = self._sessions.pop(path, None)
        if session is None:
            raise SessionNotFound(path)
        self._bus.unexport(path)
        logger.debug("Closed session %s", path)

    def close_all(self) -> None:
        for path in list(self._sessions):
            self.close_session(path)
