"""
Main entry point for the web_enhanced adapter process.

One-shot mode takes a single {verb, args} JSON payload as argument and
writes one envelope line. Serve mode reads one payload per stdin line and
keeps sessions alive between commands until EOF or a termination signal.
"""

import asyncio
import json
import signal
import sys
import traceback
from typing import Any, Optional

import click
import jsonschema
import structlog

from core.config import ConfigLoader, EngineConfig
from core.errors import (
    AdapterError,
    ConfigError,
    FrameworkError,
    InvalidArgumentsError,
    MissingArgumentsError,
)
from core.log import configure_logging
from browser.driver import BrowserDriver
from browser.interaction import HumanInteraction
from browser.pages import PageMultiplexer
from browser.recovery import RetryPolicy
from browser.registry import SessionRegistry
from browser.timing import DelayProvider
from adapter.dispatcher import CommandDispatcher


logger = structlog.get_logger()

PAYLOAD_SCHEMA = {
    "type": "object",
    "properties": {
        "verb": {"type": "string", "minLength": 1},
        "args": {"type": "object"},
    },
    "required": ["verb"],
}


def success_envelope(data: Any) -> dict[str, Any]:
    return {"ok": True, "data": data}


def failure_envelope(error: BaseException, debug: bool = False) -> dict[str, Any]:
    """Single structured failure; tracebacks only in debug mode."""
    if not isinstance(error, FrameworkError):
        error = AdapterError(str(error))

    envelope = {
        "ok": False,
        "code": error.code.value,
        "msg": error.msg,
        "details": error.details(),
    }
    if debug:
        envelope["details"]["traceback"] = "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        )
    return envelope


def parse_payload(raw: str) -> dict[str, Any]:
    """Decode and shape-check a {verb, args} payload."""
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidArgumentsError(f"Payload is not valid JSON: {e}", field="payload")

    try:
        jsonschema.validate(payload, PAYLOAD_SCHEMA)
    except jsonschema.ValidationError as e:
        if e.validator == "required":
            raise MissingArgumentsError(["verb"])
        field = ".".join(str(part) for part in e.absolute_path) or "payload"
        raise InvalidArgumentsError(e.message, field=field)

    return payload


class Application:
    """Engine container: driver, session registry, pages and dispatcher."""

    def __init__(self, config: EngineConfig, driver: Any = None, delays: Any = None):
        self.config = config
        self.driver = driver if driver is not None else BrowserDriver()
        self.delays = delays or DelayProvider()

        self.registry = SessionRegistry(self.driver, config.sessions)
        self.pages = PageMultiplexer(
            self.registry,
            navigation_timeout_ms=config.sessions.navigation_timeout_ms,
        )
        self.dispatcher = CommandDispatcher(
            self.registry,
            self.pages,
            interaction=HumanInteraction(self.delays, config.interaction),
            policy=RetryPolicy.from_config(config.retry),
            delays=self.delays,
            allow_evaluate=config.allow_evaluate,
            default_timeout_ms=config.interaction.visibility_timeout_ms,
        )
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        await self.registry.start()

    async def stop(self) -> None:
        """Close every session (snapshotting auth state) and stop the driver."""
        await self.registry.stop()
        stop_driver = getattr(self.driver, "stop", None)
        if stop_driver:
            await stop_driver()

    async def handle(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Run one payload and build its envelope."""
        try:
            data = await self.dispatcher.dispatch(payload["verb"], payload.get("args", {}))
            return success_envelope(data)
        except FrameworkError as e:
            return failure_envelope(e, self.config.debug)
        except Exception as e:
            logger.exception("unexpected_error", verb=payload.get("verb"))
            return failure_envelope(AdapterError(str(e)), self.config.debug)

    async def handle_line(self, line: str) -> dict[str, Any]:
        try:
            payload = parse_payload(line)
        except FrameworkError as e:
            return failure_envelope(e, self.config.debug)
        return await self.handle(payload)

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def serve(self, reader: asyncio.StreamReader, writer: Any = None) -> None:
        """Process newline-delimited payloads until EOF or shutdown."""
        writer = writer or sys.stdout

        while not self._shutdown_event.is_set():
            read_task = asyncio.ensure_future(reader.readline())
            shutdown_task = asyncio.ensure_future(self._shutdown_event.wait())
            done, pending = await asyncio.wait(
                {read_task, shutdown_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            for task in pending:
                task.cancel()
            if read_task not in done:
                break

            line = read_task.result().decode("utf-8", errors="replace")
            if not line:
                break
            if not line.strip():
                continue

            envelope = await self.handle_line(line)
            writer.write(json.dumps(envelope) + "\n")
            writer.flush()


async def stdin_reader() -> asyncio.StreamReader:
    """Non-blocking reader over the process stdin."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, sys.stdin)
    return reader


def build_application(config: EngineConfig) -> Application:
    return Application(config)


def emit(envelope: dict[str, Any]) -> int:
    """Write the envelope to stdout on success, stderr on failure; return exit code."""
    stream = sys.stdout if envelope["ok"] else sys.stderr
    stream.write(json.dumps(envelope) + "\n")
    stream.flush()
    return 0 if envelope["ok"] else 1


async def run(payload: Optional[str], serve: bool, config_path: Optional[str], debug: bool) -> int:
    try:
        config = ConfigLoader().load(config_path)
    except ConfigError as e:
        return emit(failure_envelope(e, debug))

    if debug:
        config.debug = True
    configure_logging(
        level="debug" if config.debug else config.logging.level,
        json_format=config.logging.json_format,
    )

    parsed = None
    if not serve:
        try:
            parsed = parse_payload(payload or "{}")
        except FrameworkError as e:
            return emit(failure_envelope(e, config.debug))

    try:
        app = build_application(config)
    except FrameworkError as e:
        return emit(failure_envelope(e, config.debug))

    loop = asyncio.get_running_loop()
    handling: Optional[asyncio.Future] = None

    def signal_handler():
        logger.info("shutdown_signal_received")
        app.request_shutdown()
        if handling:
            handling.cancel()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    await app.start()
    try:
        if serve:
            await app.serve(await stdin_reader())
            return 0

        handling = asyncio.ensure_future(app.handle(parsed))
        try:
            envelope = await handling
        except asyncio.CancelledError:
            envelope = failure_envelope(
                AdapterError("Interrupted by signal", error_type="interrupted"), config.debug
            )
        return emit(envelope)
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        await app.stop()


@click.command()
@click.argument("payload", required=False)
@click.option("--serve", is_flag=True, help="Read one JSON payload per stdin line.")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="YAML or JSON engine config.")
@click.option("--debug", is_flag=True, help="Verbose logs and tracebacks in failure details.")
def cli(payload: Optional[str], serve: bool, config_path: Optional[str], debug: bool) -> None:
    """Run one web_enhanced verb, or serve verbs from stdin."""
    sys.exit(asyncio.run(run(payload, serve, config_path, debug)))


if __name__ == "__main__":
    cli()
