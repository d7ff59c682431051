"""
Entry point: ``bitwarden-keyring`` / ``python -m bitwarden_keyring``.

Startup is fail-closed: if ``bw serve`` cannot be started, the bus cannot
be reached or the bus name is taken, everything started so far is torn
down and the process exits non-zero.
"""
import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from dbus_fast import BusType
from pydantic import ValidationError

from .conf import KeyringConfig
from .exceptions import KeyringError
from .service import ObjectBus, SecretService
from .vault import BitwardenServe, PasswordPrompter, VaultClient
from .version import __version__

logger = logging.getLogger("bwkeyring")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bitwarden-keyring",
        description="freedesktop.org Secret Service backed by a Bitwarden vault.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--bw-port", type=int, help="port for bw serve (0 = auto-select)")
    parser.add_argument("--bw-start-timeout", type=float, help="seconds to wait for bw serve")
    parser.add_argument("--debug", action="store_true", default=None, help="enable debug logging")
    parser.add_argument(
        "--debug-http", action="store_true", default=None,
        help="log redacted HTTP error bodies (requires --debug)",
    )
    parser.add_argument(
        "--no-auto-unlock", dest="auto_unlock", action="store_false", default=None,
        help="report a locked vault instead of prompting for the password",
    )
    parser.add_argument(
        "--allow-insecure-prompts", action="store_true", default=None,
        help="allow password prompts that cannot hide input (dmenu)",
    )
    parser.add_argument(
        "--systemd-ask-password-path",
        help="absolute path to the systemd-ask-password binary",
    )
    parser.add_argument("--bus", choices=("session", "system"), help="message bus to use")
    return parser


def load_config(argv: Optional[list[str]] = None) -> KeyringConfig:
    args = build_parser().parse_args(argv)
    return KeyringConfig.from_env(
        bw_port=args.bw_port,
        bw_start_timeout=args.bw_start_timeout,
        debug=args.debug,
        debug_http=args.debug_http,
        auto_unlock=args.auto_unlock,
        allow_insecure_prompts=args.allow_insecure_prompts,
        systemd_ask_password_path=args.systemd_ask_password_path,
        bus=args.bus,
    )


async def run(config: KeyringConfig) -> None:
    """Run the service until SIGINT or SIGTERM."""
    config = config.with_port()
    prompter = PasswordPrompter(
        allow_insecure=config.allow_insecure_prompts,
        systemd_ask_password_path=config.systemd_ask_password_path,
        timeout=config.prompt_timeout,
    )
    vault = VaultClient(
        config.bw_port,
        host=config.bw_host,
        prompter=prompter,
        auto_unlock=config.auto_unlock,
        debug=config.http_debug,
        timeout=config.request_timeout,
    )
    serve = BitwardenServe(
        vault, config.bw_port, host=config.bw_host, start_timeout=config.bw_start_timeout,
    )
    vault.health_check = serve.check_healthy
    bus = ObjectBus(BusType.SYSTEM if config.bus == "system" else BusType.SESSION)
    service = SecretService(bus, vault)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop.set)

    started = False
    try:
        logger.info("bitwarden-keyring %s starting", __version__)
        await serve.start()
        serve.check_healthy()
        await bus.connect()
        await service.start()
        started = True
        await bus.request_name()
        logger.info("Ready to serve secrets from the Bitwarden vault")
        await stop.wait()
        logger.info("Shutting down")
    finally:
        if started:
            await service.stop()
        if bus.connected:
            await bus.disconnect()
        await vault.close()
        await serve.stop()


def main(argv: Optional[list[str]] = None) -> int:
    try:
        config = load_config(argv)
    except ValidationError as err:
        print(f"bitwarden-keyring: invalid configuration:\n{err}", file=sys.stderr)
        return 2
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(run(config))
    except KeyringError as err:
        logger.error("Fatal: %s", err)
        return 1
    except OSError as err:
        logger.error("Fatal: %s", err)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
