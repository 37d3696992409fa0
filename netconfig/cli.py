"""Click CLI for netconfig.

Commands:
- run: Send a batch of commands to one device and print its output
- ciphers: List the ciphers negotiated by default
"""

import asyncio
import sys
from typing import List, Optional, TextIO, Tuple

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from netconfig import __version__
from netconfig.logger import setup_logging
from netconfig.ssh import ClientConfigBuilder, SessionOptions, default_ciphers, dial
from netconfig.ssh.session import DEFAULT_SESSION_TIMEOUT, DEFAULT_TERM_TYPE
from netconfig.utils.errors import (
    DeviceConnectionError,
    ExitStatusError,
    NetconfigError,
    SessionTimeoutError,
)
from netconfig.utils.retry import retry_with_backoff

console = Console(stderr=True)


def read_commands(commands: Tuple[str, ...], command_file: Optional[TextIO]) -> List[str]:
    """Collect commands from -c options followed by the lines of -f."""
    batch = list(commands)
    if command_file is not None:
        batch.extend(line.rstrip("\r\n") for line in command_file if line.strip())
    return batch


@click.group()
@click.version_option(version=__version__)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--debug-ssh", is_flag=True, help="Enable verbose SSH protocol logging")
@click.pass_context
def cli(ctx, debug: bool, debug_ssh: bool):
    """netconfig - send configuration commands to network devices over SSH."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug

    level = "DEBUG" if debug else "WARNING"
    setup_logging(level=level, debug_ssh=debug_ssh)


@cli.command()
@click.argument("address")
@click.option("-u", "--user", envvar="NETCONFIG_USER", required=True, help="Login user")
@click.option("-p", "--password", envvar="NETCONFIG_PASSWORD", help="Login password")
@click.option("--ask-pass", is_flag=True, help="Prompt for the login password")
@click.option(
    "-i",
    "--identity",
    "identities",
    multiple=True,
    type=click.Path(dir_okay=False),
    help="Private key file (repeatable)",
)
@click.option(
    "--known-hosts",
    type=click.Path(dir_okay=False),
    help="Only connect to hosts listed in this known_hosts file",
)
@click.option(
    "--connect-timeout",
    type=click.FloatRange(min=0),
    default=0,
    help="Connection timeout in seconds (0 for library default)",
)
@click.option("--cipher", "ciphers", multiple=True, help="Extra cipher for legacy devices")
@click.option("-c", "--command", "commands", multiple=True, help="Command to send (repeatable)")
@click.option(
    "-f",
    "--file",
    "command_file",
    type=click.File("r"),
    help="File with one command per line",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    default=DEFAULT_SESSION_TIMEOUT,
    show_default=True,
    help="Seconds to wait for the shell to exit",
)
@click.option("--pty", is_flag=True, help="Request a pseudo-terminal")
@click.option("--term-type", default=DEFAULT_TERM_TYPE, show_default=True)
@click.option("--check-exit", is_flag=True, help="Fail on a non-zero exit status")
@click.option(
    "--retries",
    type=click.IntRange(min=0),
    default=0,
    help="Retry dial + run after connection failures or timeouts",
)
def run(
    address: str,
    user: str,
    password: Optional[str],
    ask_pass: bool,
    identities: Tuple[str, ...],
    known_hosts: Optional[str],
    connect_timeout: float,
    ciphers: Tuple[str, ...],
    commands: Tuple[str, ...],
    command_file: Optional[TextIO],
    timeout: float,
    pty: bool,
    term_type: str,
    check_exit: bool,
    retries: int,
):
    """Send commands to the device at ADDRESS (host:port)."""
    batch = read_commands(commands, command_file)
    if not batch:
        raise click.UsageError("no commands given; use -c or -f")

    try:
        builder = ClientConfigBuilder(user)
        if known_hosts:
            builder.allow_known_hosts(known_hosts)
        if identities:
            builder.private_key(*identities)
        if password or ask_pass:
            builder.password(password or "")
        config = builder.timeout(connect_timeout).ciphers(*ciphers).build()
    except NetconfigError as e:
        console.print(f"[red]Configuration error:[/] {escape(str(e))}")
        sys.exit(1)

    options = SessionOptions(
        timeout=timeout,
        pty=pty,
        term_type=term_type,
        check_exit_status=check_exit,
    )

    async def _execute() -> bytes:
        async with await dial(address, config) as device:
            return await device.run(*batch, options=options)

    def _on_retry(error: Exception, attempt: int, wait_time: float) -> None:
        console.print(
            f"[yellow]Attempt {attempt} failed: {escape(str(error))}. "
            f"Retrying in {wait_time:.1f}s[/]"
        )

    try:
        output = asyncio.run(
            retry_with_backoff(
                _execute,
                max_attempts=retries + 1,
                retryable_exceptions=(DeviceConnectionError, SessionTimeoutError),
                on_retry=_on_retry,
            )
        )
    except ExitStatusError as e:
        click.echo(e.output, nl=False)
        console.print(f"[red]{escape(address)}: {escape(str(e))}[/]")
        sys.exit(1)
    except NetconfigError as e:
        console.print(f"[red]{escape(address)}: {escape(str(e))}[/]")
        sys.exit(1)

    click.echo(output, nl=False)


@cli.command("ciphers")
def ciphers_cmd():
    """List the ciphers negotiated when no --cipher is given."""
    table = Table(title="Default Ciphers")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Cipher")

    for index, name in enumerate(default_ciphers(), start=1):
        table.add_row(str(index), name)

    Console().print(table)


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
