"""
Object Bus — per-object method dispatch on top of dbus-fast.

Every exported :class:`DBusObject` declares its interface as plain tables:

- ``methods``: member name → :class:`Method` (coroutine attribute, in/out args)
- ``properties``: property name → :class:`Property` (signature, writable)
- ``signals``: signal name → args, for introspection only

:class:`ObjectBus` owns the path → object table and answers
``org.freedesktop.DBus.Properties`` and ``Introspectable`` itself;
``org.freedesktop.DBus.Peer`` is left to dbus-fast. Each
incoming call runs as its own asyncio task, so a slow vault call never
blocks the bus reader or other callers.

Errors raised by handlers are translated once, here, with
:func:`to_protocol_error`.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional
from xml.sax.saxutils import quoteattr

from dbus_fast import (
    BusType,
    Message,
    MessageFlag,
    MessageType,
    NameFlag,
    RequestNameReply,
    Variant,
)
from dbus_fast.aio import MessageBus
from dbus_fast.validators import is_object_path_valid

from ..exceptions import ExportError
from .errors import (
    InvalidArgs,
    PropertyReadOnly,
    SecretServiceError,
    UnknownInterface,
    UnknownMethod,
    UnknownProperty,
    to_protocol_error,
)
from .types import (
    BUS_NAME,
    INTROSPECTABLE_INTERFACE,
    PEER_INTERFACE,
    PROPERTIES_INTERFACE,
)

logger = logging.getLogger("bwkeyring.service")

INTROSPECT_HEADER = (
    '<!DOCTYPE node PUBLIC "-//freedesktop//DTD D-BUS Object Introspection 1.0//EN"\n'
    '"http://www.freedesktop.org/standards/dbus/1.0/introspect.dtd">'
)

_STANDARD_INTERFACES_XML = """\
  <interface name="org.freedesktop.DBus.Properties">
    <method name="Get">
      <arg name="interface" type="s" direction="in"/>
      <arg name="property" type="s" direction="in"/>
      <arg name="value" type="v" direction="out"/>
    </method>
    <method name="Set">
      <arg name="interface" type="s" direction="in"/>
      <arg name="property" type="s" direction="in"/>
      <arg name="value" type="v" direction="in"/>
    </method>
    <method name="GetAll">
      <arg name="interface" type="s" direction="in"/>
      <arg name="properties" type="a{sv}" direction="out"/>
    </method>
  </interface>
  <interface name="org.freedesktop.DBus.Introspectable">
    <method name="Introspect">
      <arg name="xml" type="s" direction="out"/>
    </method>
  </interface>
  <interface name="org.freedesktop.DBus.Peer">
    <method name="Ping"/>
    <method name="GetMachineId">
      <arg name="machine_uuid" type="s" direction="out"/>
    </method>
  </interface>"""

Args = tuple[tuple[str, str], ...]


@dataclass(frozen=True)
class Method:
    """A bus method bound to a coroutine attribute of the object."""

    attr: str
    in_args: Args = ()
    out_args: Args = ()

    @property
    def in_signature(self) -> str:
        return "".join(sig for _, sig in self.in_args)

    @property
    def out_signature(self) -> str:
        return "".join(sig for _, sig in self.out_args)


@dataclass(frozen=True)
class Property:
    signature: str
    writable: bool = False


class DBusObject:
    """Base class for objects exported through :class:`ObjectBus`."""

    interface: str = ""
    methods: dict[str, Method] = {}
    properties: dict[str, Property] = {}
    signals: dict[str, Args] = {}

    async def get_property(self, name: str) -> Any:
        raise UnknownProperty(f"unknown property: {name}")

    async def set_property(self, name: str, value: Any) -> None:
        raise PropertyReadOnly(f"property {name} is read-only")

    async def get_all_properties(self) -> dict[str, Any]:
        return {name: await self.get_property(name) for name in self.properties}

    def introspection_xml(self) -> str:
        """``<interface>`` element describing this object's own interface."""
        lines = [f"  <interface name={quoteattr(self.interface)}>"]
        for member, method in self.methods.items():
            lines.append(f"    <method name={quoteattr(member)}>")
            for direction, args in (("in", method.in_args), ("out", method.out_args)):
                for name, sig in args:
                    lines.append(
                        f"      <arg name={quoteattr(name)} type={quoteattr(sig)} "
                        f'direction="{direction}"/>'
                    )
            lines.append("    </method>")
        for name, prop in self.properties.items():
            access = "readwrite" if prop.writable else "read"
            lines.append(
                f"    <property name={quoteattr(name)} type={quoteattr(prop.signature)} "
                f'access="{access}"/>'
            )
        for name, args in self.signals.items():
            lines.append(f"    <signal name={quoteattr(name)}>")
            for arg, sig in args:
                lines.append(f"      <arg name={quoteattr(arg)} type={quoteattr(sig)}/>")
            lines.append("    </signal>")
        lines.append("  </interface>")
        return "\n".join(lines)


class ObjectBus:
    """Exports :class:`DBusObject` instances on a dbus-fast connection.

    Args:
        bus_type: Which message bus :meth:`connect` attaches to.
        bus: An already connected bus (skips :meth:`connect`).
    """

    def __init__(
        self,
        bus_type: BusType = BusType.SESSION,
        bus: Optional[MessageBus] = None,
    ):
        self._bus_type = bus_type
        self._bus = bus
        self._objects: dict[str, DBusObject] = {}
        self._tasks: set[asyncio.Task] = set()
        if bus is not None:
            bus.add_message_handler(self._on_message)

    @property
    def connected(self) -> bool:
        return self._bus is not None and self._bus.connected

    async def connect(self) -> None:
        self._bus = await MessageBus(bus_type=self._bus_type).connect()
        self._bus.add_message_handler(self._on_message)
        logger.info("Connected to %s D-Bus", self._bus_type.name.lower())

    async def request_name(self, name: str = BUS_NAME) -> None:
        """Claim ``name``; fails if another process already owns it."""
        reply = await self._bus.request_name(name, NameFlag.DO_NOT_QUEUE)
        if reply != RequestNameReply.PRIMARY_OWNER:
            raise ExportError(f"bus name {name} already taken")
        logger.info("Acquired bus name %s", name)

    async def disconnect(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._bus is not None:
            self._bus.remove_message_handler(self._on_message)
            self._bus.disconnect()
            self._bus = None

    # ------------------------------------------------------------------
    # Object table
    # ------------------------------------------------------------------

    def export(self, path: str, obj: DBusObject) -> None:
        """Make ``obj`` addressable at ``path``.

        Raises:
            ExportError: If the path is malformed or already in use.
        """
        if not is_object_path_valid(path):
            raise ExportError(f"invalid object path: {path}")
        if path in self._objects:
            raise ExportError(f"object path already exported: {path}")
        self._objects[path] = obj
        logger.debug("Exported %s", path)

    def unexport(self, path: str) -> bool:
        removed = self._objects.pop(path, None) is not None
        if removed:
            logger.debug("Unexported %s", path)
        return removed

    def lookup(self, path: str) -> Optional[DBusObject]:
        return self._objects.get(path)

    def _children(self, path: str) -> list[str]:
        prefix = path if path.endswith("/") else path + "/"
        children = set()
        for exported in self._objects:
            if exported.startswith(prefix):
                children.add(exported[len(prefix):].split("/", 1)[0])
        return sorted(children)

    def introspect(self, path: str) -> str:
        lines = [INTROSPECT_HEADER, "<node>"]
        obj = self._objects.get(path)
        if obj is not None:
            lines.append(obj.introspection_xml())
        lines.append(_STANDARD_INTERFACES_XML)
        for child in self._children(path):
            lines.append(f"  <node name={quoteattr(child)}/>")
        lines.append("</node>")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def emit(
        self,
        path: str,
        interface: str,
        member: str,
        signature: str = "",
        body: Optional[list] = None,
    ) -> None:
        if self._bus is None:
            raise ExportError("not connected")
        self._bus.send(Message.new_signal(path, interface, member, signature, body or []))

    # ------------------------------------------------------------------
    # Method calls
    # ------------------------------------------------------------------

    def _on_message(self, msg: Message) -> Optional[bool]:
        if msg.message_type != MessageType.METHOD_CALL:
            return None
        # Ping and GetMachineId are answered by dbus-fast's default handler.
        if msg.interface == PEER_INTERFACE:
            return None
        if msg.path not in self._objects:
            is_introspect = (
                msg.interface in (None, INTROSPECTABLE_INTERFACE)
                and msg.member == "Introspect"
            )
            if not (is_introspect and self._children(msg.path)):
                return None
        task = asyncio.get_running_loop().create_task(self._reply(msg))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _reply(self, msg: Message) -> None:
        reply = await self.handle(msg)
        if msg.flags & MessageFlag.NO_REPLY_EXPECTED:
            return
        try:
            self._bus.send(reply)
        except Exception as err:
            logger.warning("Failed to send reply to %s.%s: %s", msg.interface, msg.member, err)

    async def handle(self, msg: Message) -> Message:
        """Run one method call and build its reply or error message."""
        try:
            signature, body = await self._call(msg)
            return Message.new_method_return(msg, signature, body)
        except Exception as err:
            protocol_error = to_protocol_error(err)
            if not isinstance(err, SecretServiceError):
                logger.warning(
                    "%s.%s on %s failed: %s",
                    msg.interface, msg.member, msg.path, type(err).__name__,
                )
                logger.debug("Failure detail: %s", err)
            return Message.new_error(msg, protocol_error.name, protocol_error.message)

    async def _call(self, msg: Message) -> tuple[str, list]:
        if msg.member == "Introspect" and msg.interface in (None, INTROSPECTABLE_INTERFACE):
            return "s", [self.introspect(msg.path)]
        obj = self._objects.get(msg.path)
        if obj is None:
            raise UnknownMethod(f"no object at {msg.path}")
        if msg.interface == PROPERTIES_INTERFACE:
            return await self._call_properties(obj, msg)
        if msg.interface not in (None, obj.interface):
            raise UnknownInterface(f"unknown interface: {msg.interface}")
        method = obj.methods.get(msg.member)
        if method is None:
            raise UnknownMethod(f"unknown method: {msg.member}")
        if (msg.signature or "") != method.in_signature:
            raise InvalidArgs(
                f"expected signature {method.in_signature!r}, got {msg.signature!r}"
            )
        result = await getattr(obj, method.attr)(*msg.body)
        out_count = len(method.out_args)
        if out_count == 0:
            return "", []
        if out_count == 1:
            return method.out_signature, [result]
        return method.out_signature, list(result)

    async def _call_properties(self, obj: DBusObject, msg: Message) -> tuple[str, list]:
        if msg.member == "GetAll" and msg.signature == "s":
            self._check_interface(obj, msg.body[0])
            values = await obj.get_all_properties()
            return "a{sv}", [{
                name: Variant(obj.properties[name].signature, value)
                for name, value in values.items()
            }]
        if msg.member == "Get" and msg.signature == "ss":
            iface, name = msg.body
            self._check_interface(obj, iface)
            prop = self._property(obj, name)
            return "v", [Variant(prop.signature, await obj.get_property(name))]
        if msg.member == "Set" and msg.signature == "ssv":
            iface, name, value = msg.body
            self._check_interface(obj, iface)
            prop = self._property(obj, name)
            if not prop.writable:
                raise PropertyReadOnly(f"property {name} is read-only")
            if value.signature != prop.signature:
                raise InvalidArgs(f"property {name} expects type {prop.signature}")
            await obj.set_property(name, value.value)
            return "", []
        raise UnknownMethod(f"unknown method: {msg.member}")

    @staticmethod
    def _check_interface(obj: DBusObject, interface: str) -> None:
        if interface != obj.interface:
            raise UnknownInterface(f"unknown interface: {interface}")

    @staticmethod
    def _property(obj: DBusObject, name: str) -> Property:
        prop = obj.properties.get(name)
        if prop is None:
            raise UnknownProperty(f"unknown property: {name}")
        return prop
