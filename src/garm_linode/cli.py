"""
garm-provider-linode command line entry point.

GARM configures everything through environment variables; each one
is also accepted as an option to make manual runs easier::

    GARM_COMMAND=ListInstances GARM_POOL_ID=... garm-provider-linode

Entry point: garm_linode.cli:main
"""

from __future__ import annotations

import logging
import signal
import sys
import threading

import click
from rich.console import Console

from .errors import ProviderError, exit_code_for
from .execution import Command, Environment, parse_bootstrap_params, parse_command, run
from .provider import LinodeProvider

logger = logging.getLogger("garm_linode.cli")

# stdout carries the result for GARM; everything else goes to stderr.
err_console = Console(stderr=True)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )


def _setup_signals(stop: threading.Event) -> None:
    """Cancel blocking waits on SIGINT/SIGTERM."""

    def _handle_signal(signum, frame):
        logger.info("Received signal %s, cancelling", signal.Signals(signum).name)
        stop.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, _handle_signal)


def _fail(exc: BaseException) -> None:
    err_console.print(
        f"failed to run command: {exc}", markup=False, highlight=False, soft_wrap=True,
    )
    sys.exit(exit_code_for(exc))


@click.command()
@click.option("--command", "command", envvar="GARM_COMMAND", required=True,
              help="Operation to run (CreateInstance, ListInstances, ...).")
@click.option("--controller-id", envvar="GARM_CONTROLLER_ID", default="",
              help="ID of the GARM controller owning the instances.")
@click.option("--pool-id", envvar="GARM_POOL_ID", default="",
              help="Pool to list instances for.")
@click.option("--config", "config_file", envvar="GARM_PROVIDER_CONFIG_FILE", default="",
              help="Path to the provider TOML config.")
@click.option("--instance-id", envvar="GARM_INSTANCE_ID", default="",
              help="Instance ID or name for single-instance commands.")
@click.option("--interface-version", envvar="GARM_INTERFACE_VERSION", default="",
              help="Provider interface version requested by GARM.")
@click.option("--log-level", envvar="GARM_LINODE_LOG_LEVEL", default="WARNING",
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Log level for messages written to stderr.")
def main(
    command: str,
    controller_id: str,
    pool_id: str,
    config_file: str,
    instance_id: str,
    interface_version: str,
    log_level: str,
):
    """Linode external provider for GARM."""
    _setup_logging(log_level)
    stop = threading.Event()
    _setup_signals(stop)

    try:
        env = Environment(
            command=parse_command(command),
            controller_id=controller_id,
            pool_id=pool_id,
            provider_config_file=config_file,
            instance_id=instance_id,
            interface_version=interface_version,
        )
        if env.command == Command.CREATE_INSTANCE:
            env.bootstrap_params = parse_bootstrap_params(
                click.get_text_stream("stdin").read()
            )
        env.validate_for_command()

        if env.command == Command.GET_VERSION:
            result = LinodeProvider.get_version()
        else:
            provider = LinodeProvider.from_config_file(
                env.provider_config_file, env.controller_id,
            )
            result = run(provider, env, stop=stop)
    except ProviderError as exc:
        _fail(exc)

    if result:
        click.echo(result, nl=False)


if __name__ == "__main__":
    main()
