"""CLI entrypoint for command-orchestrator."""

import logging
import sys
from pathlib import Path

import rich_click as click

from command_orchestrator import __version__
from command_orchestrator.controllers import DispatchCommand, OrchestratorCliController

click.rich_click.USE_MARKDOWN = True
CONTROLLER = OrchestratorCliController()


@click.command(
    context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False},
)
@click.version_option(version=__version__, prog_name="command-orchestrator")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--verbose", is_flag=True, default=False, help="Log debug detail to stderr.")
@click.argument("command")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
def cli(db_path: Path | None, verbose: bool, command: str, args: tuple[str, ...]) -> None:
    """Run `COMMAND [ARGS]...` through planning, execution and repair.

    Reserved commands: `set-role`, `approve`, `reject`, `pending-approvals`,
    `metrics`, `learning-stats`, `retry-queue`, `snapshots`.
    Prints exactly one JSON record; exits 1 when its status is `error`.
    """

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        outcome = CONTROLLER.dispatch(
            DispatchCommand(db_path=db_path, command=command, args=tuple(args)),
        )
    except ValueError as error:
        raise click.ClickException(f"Invalid configuration: {error}") from error
    click.echo(outcome.line)
    if not outcome.success:
        sys.exit(1)


if __name__ == "__main__":  # pragma: no cover
    cli()
