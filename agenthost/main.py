"""
agenthost: command-line entry point.

Loads configuration and characters, configures logging, and hands control to
the supervisor. The process exit status is whatever the first shutdown
trigger decided: 0 for signals and the console ``exit`` command, 1 for
configuration errors, failed bring-up, critical memory, and uncaught errors.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional

import click
import structlog

from agenthost import __version__
from agenthost.character import load_characters
from agenthost.config import AgentHostConfig
from agenthost.errors import CharacterConfigError
from agenthost.supervisor import Supervisor

_SECRET_KEYS = {"token", "api_key", "access_token", "secrets", "authorization"}
_REDACTED = "[redacted]"


def _redact_secret_fields(logger, method_name, event_dict):
    """
    Structlog processor that keeps credentials out of log output.

    Any top-level field whose name is secret-bearing is replaced outright,
    whatever its type, so a secrets bag never reaches a log line.
    """
    for key in list(event_dict):
        if key.lower() in _SECRET_KEYS and event_dict[key] is not None:
            event_dict[key] = _REDACTED
    return event_dict


_logging_configured = False


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog over stdlib logging. Later calls are no-ops."""
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        return
    _logging_configured = True

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
        stream=sys.stderr,
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _redact_secret_fields,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


logger = structlog.get_logger(__name__)


@click.command()
@click.option(
    "--character",
    "character",
    default=None,
    metavar="PATH",
    help="A single character file.",
)
@click.option(
    "--characters",
    "characters",
    default=None,
    metavar="PATH[,PATH...]",
    help="Comma-separated character files. Takes precedence over --character.",
)
@click.version_option(__version__, prog_name="agenthost")
def main(character: Optional[str], characters: Optional[str]) -> None:
    """Run one or more conversational agents with a local console."""
    config = AgentHostConfig()
    configure_logging(config.logging.level)

    try:
        loaded = load_characters(characters or character, config.bringup.characters_dir)
    except CharacterConfigError as e:
        click.echo(str(e), err=True)
        sys.exit(1)

    supervisor = Supervisor(config, loaded)
    try:
        exit_code = asyncio.run(supervisor.run())
    except KeyboardInterrupt:
        exit_code = 0
    except Exception as e:
        logger.critical("main.fatal_error", error=str(e), exc_info=True)
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
