"""CLI entrypoint for picfactory."""

import logging
from pathlib import Path

import rich_click as click

from picfactory import __version__
from picfactory.jobs.controllers import (
    AuthCommand,
    CommandResult,
    GenerationCliController,
    RunJobCommand,
)

click.rich_click.USE_MARKDOWN = True
GENERATION_CONTROLLER = GenerationCliController()


@click.group()
@click.version_option(version=__version__, prog_name="picfactory")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Log progress to stderr.")
def picfactory(verbose: bool) -> None:
    """Batch image generation: every reference image x every prompt."""

    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


@picfactory.command("run")
@click.option(
    "--ref",
    "refs",
    multiple=True,
    required=True,
    type=click.Path(path_type=Path, dir_okay=False),
    help="Reference image. Can be repeated.",
)
@click.option("--prompt", "prompts", multiple=True, help="Prompt text. Can be repeated.")
@click.option(
    "--prompts-file",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="Text file with one prompt per line.",
)
@click.option(
    "--output-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Output directory. Defaults to <output root>/job-<date>.",
)
@click.option("--mock", is_flag=True, default=False, help="Use the offline mock executor.")
@click.option(
    "--timeout",
    "timeout_seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Cancel the job after this many seconds.",
)
def run(  # noqa: PLR0913
    refs: tuple[Path, ...],
    prompts: tuple[str, ...],
    prompts_file: Path | None,
    output_dir: Path | None,
    mock: bool,
    timeout_seconds: float | None,
) -> None:
    """Run one job to completion in the foreground."""

    _finish(
        _guarded(
            lambda: GENERATION_CONTROLLER.run_job(
                RunJobCommand(
                    refs=refs,
                    prompts=prompts,
                    prompts_file=prompts_file,
                    output_dir=output_dir,
                    mock=mock,
                    timeout_seconds=timeout_seconds,
                ),
            ),
        ),
        "Job did not finish successfully.",
    )


@picfactory.group()
def auth() -> None:
    """Login state of the remote web app."""


@auth.command("check")
@click.option(
    "--headless/--headed",
    default=None,
    help="Override PICFACTORY_HEADLESS for the probe session.",
)
def auth_check(headless: bool | None) -> None:
    """Probe the saved browser profile for a logged-in session."""

    _finish(
        _guarded(lambda: GENERATION_CONTROLLER.check_auth(AuthCommand(headless=headless))),
        "Not logged in.",
    )


@auth.command("open")
def auth_open() -> None:
    """Open the web app in a visible browser to log in."""

    _finish(
        _guarded(lambda: GENERATION_CONTROLLER.open_web(AuthCommand(), emit=_emit_lines)),
        "Not logged in.",
    )


def _guarded(action) -> CommandResult:
    try:
        return action()
    except (ValueError, LookupError) as error:
        raise click.ClickException(str(error)) from error


def _finish(result: CommandResult, failure_message: str) -> None:
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(failure_message)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    picfactory()
