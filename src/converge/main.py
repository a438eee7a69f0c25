"""Program runner and logging setup.

A program is a Python file defining ``async def main(scope)``. It may also
define ``create_state_store()`` returning the StateStore to run against;
without one the run uses an in-memory store and nothing survives the
process.
"""

from __future__ import annotations

import importlib.util
import inspect
import logging
import sys
from dataclasses import dataclass
from datetime import UTC
from pathlib import Path
from types import ModuleType
from typing import Any

from .clients import AzureClientFactory
from .config import ConfigurationError, EngineConfig
from .materializer import RunReport
from .scope import create_scope
from .state import InMemoryStateStore, StateStore

logger = logging.getLogger(__name__)

PROGRAM_ENTRY_POINT = "main"
STATE_STORE_FACTORY = "create_state_store"

# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CONFIGURATION_ERROR = 2


class ProgramLoadError(Exception):
    """Raised when a program file cannot be loaded."""

    pass


def setup_logging(level: int = logging.INFO) -> None:
    """Configure structured logging with JSON output."""
    import json
    from datetime import datetime

    class JsonFormatter(logging.Formatter):
        """Format logs as JSON for structured logging."""

        def format(self, record: logging.LogRecord) -> str:
            log_data = {
                "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
                "level": record.levelname,
                "message": record.getMessage(),
                "logger": record.name,
            }

            # Add extra fields from the record
            for key, value in record.__dict__.items():
                if key not in (
                    "name",
                    "msg",
                    "args",
                    "created",
                    "filename",
                    "funcName",
                    "levelname",
                    "levelno",
                    "lineno",
                    "module",
                    "msecs",
                    "pathname",
                    "process",
                    "processName",
                    "relativeCreated",
                    "stack_info",
                    "exc_info",
                    "exc_text",
                    "thread",
                    "threadName",
                    "taskName",
                    "message",
                ):
                    log_data[key] = value

            # Add exception info if present
            if record.exc_info:
                log_data["exception"] = self.formatException(record.exc_info)

            # Secrets render masked through their str()
            return json.dumps(log_data, default=str)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from Azure SDK
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


@dataclass
class Program:
    """A loaded program file."""

    path: Path
    module: ModuleType

    @property
    def entry_point(self) -> Any:
        return getattr(self.module, PROGRAM_ENTRY_POINT)

    def create_state_store(self) -> StateStore:
        factory = getattr(self.module, STATE_STORE_FACTORY, None)
        if factory is None:
            logger.warning(
                "Program defines no state store, using in-memory state",
                extra={"program": str(self.path)},
            )
            return InMemoryStateStore()
        return factory()


def load_program(path: Path) -> Program:
    """Import a program file.

    Raises:
        ProgramLoadError: If the file is missing, fails to import, or has no
            ``async def main(scope)``.
    """
    if not path.is_file():
        raise ProgramLoadError(f"Program file not found: {path}")

    module_name = f"converge_program_{path.stem}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ProgramLoadError(f"Cannot load program file: {path}")

    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise ProgramLoadError(f"Failed to import {path}: {e}") from e

    entry_point = getattr(module, PROGRAM_ENTRY_POINT, None)
    if entry_point is None or not inspect.iscoroutinefunction(entry_point):
        raise ProgramLoadError(f"{path} must define 'async def {PROGRAM_ENTRY_POINT}(scope)'")

    return Program(path=path, module=module)


async def run_program(program: Program, config: EngineConfig, *, destroy: bool = False) -> RunReport:
    """Run a program once against its state store.

    apply: run the program, then delete orphans if it finished without raising.
    destroy: delete everything recorded for the app and stage.

    Raises:
        Exception: Whatever the program raised; orphan cleanup is skipped.
    """
    client_factory = None
    if not config.local:
        # subscription_id is validated as present by EngineConfig unless local
        client_factory = AzureClientFactory(
            config.subscription_id or "",
            client_id=config.client_id,
            timeout_seconds=config.provider_timeout_seconds,
        )

    scope = create_scope(
        config.app_name,
        stage=config.stage,
        local=config.local,
        adopt=config.adopt,
        state_store=program.create_state_store(),
        client_factory=client_factory,
    )

    logger.info(
        "Starting run",
        extra={
            "program": str(program.path),
            "app": config.app_name,
            "stage": config.stage,
            "local": config.local,
            "adopt": config.adopt,
            "action": "destroy" if destroy else "apply",
        },
    )

    if destroy:
        return await scope.destroy()

    async with scope:
        await program.entry_point(scope)
    return scope.report


async def main(
    program_path: Path,
    *,
    destroy: bool = False,
    app_name: str | None = None,
    stage: str | None = None,
    local: bool | None = None,
    adopt: bool | None = None,
) -> tuple[int, RunReport | None]:
    """Load configuration and a program, and run it.

    Returns:
        Exit code (0 success, 1 reconciliation failure, 2 configuration error)
        and the run report when the run got that far.
    """
    try:
        config = EngineConfig.from_env(app_name=app_name, stage=stage, local=local, adopt=adopt)
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return EXIT_CONFIGURATION_ERROR, None

    try:
        program = load_program(program_path)
    except ProgramLoadError as e:
        logger.error("Program loading failed", extra={"error": str(e)})
        return EXIT_CONFIGURATION_ERROR, None

    try:
        report = await run_program(program, config, destroy=destroy)
    except Exception as e:
        logger.exception("Run aborted", extra={"error": str(e)})
        return EXIT_FAILURE, None

    return (EXIT_SUCCESS if report.success else EXIT_FAILURE), report
