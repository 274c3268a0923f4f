"""narextract CLI entrypoint.

This module provides the `extract` click command which resolves a Hydra job
(or a store path) to a NAR in a binary cache and extracts a single file out
of it while the NAR is being downloaded.

Usage example (from shell):
    narextract nixos/trunk-combined/nixos.iso_minimal.x86_64-linux minimal.iso --match-basename
    narextract /nix/store/<hash>-hello-2.12 hello -m bin/hello

Archive handling is delegated to `narextract.ArchiveEngine.NarExtractor`;
this module only deals with options, logging and progress reporting.
"""

import dataclasses
import logging
import threading
from pathlib import Path

import click
import httpx
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import BarColumn, DownloadColumn, Progress, SpinnerColumn, TextColumn, TransferSpeedColumn

from .ArchiveEngine import NarExtractor
from .Config import get_config
from .Errors import NarExtractError
from .Extractor import MatchMode

# Single console shared by log output and the progress bar.
console = Console()


def _setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


@click.command(context_settings=dict(help_option_names=["-h", "--help"]))
@click.argument("job", type=str)
@click.argument("output", type=click.Path(file_okay=True, dir_okay=False, writable=True, path_type=Path))
@click.option("--member", "-m", type=str, default=None,
              help="Path of the file inside the store path (default: derived from the store path)")
@click.option("--output-name", type=str, default="out", show_default=True, help="Hydra build output to use")
@click.option("--match-basename", is_flag=True, default=False,
              help="Match the first file whose name equals the target's last segment, in any directory")
@click.option("--cache-url", type=str, default=None, help="Binary cache URL (env: NAREXTRACT_CACHE_URL)")
@click.option("--hydra-url", type=str, default=None, help="Hydra URL (env: NAREXTRACT_HYDRA_URL)")
@click.option("--deadline", type=click.FloatRange(min=0, min_open=True), default=None,
              help="Abort the download after this many seconds")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Log every archive entry visited")
def extract(job: str, output: Path, member: str | None, output_name: str, match_basename: bool,
            cache_url: str | None, hydra_url: str | None, deadline: float | None, verbose: bool):
    """Extract one file of the latest build of JOB into OUTPUT.

    JOB is a Hydra job name or a store path. Only the bytes up to the end of
    the requested file are downloaded.

    Args:

        job: Hydra job, e.g. nixos/trunk-combined/nixos.iso_minimal.x86_64-linux, or a store path.

        output: Destination file. It is only created once the file has been copied completely.

    Raises:

        SystemExit: With status 1 when the extraction fails for a known reason.
    """
    _setup_logging(verbose)

    config = get_config()
    overrides = {}
    if cache_url:
        overrides["cache_url"] = cache_url.rstrip("/")
    if hydra_url:
        overrides["hydra_url"] = hydra_url.rstrip("/")
    config = dataclasses.replace(config, **overrides)
    mode = MatchMode.BASENAME if match_basename else MatchMode.FULL_PATH

    timer = None
    try:
        with NarExtractor.from_config(config) as extractor, Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task(f"Resolving {job}...", total=None)

            def on_narinfo(narinfo):
                progress.update(task, description="Downloading NAR...", total=narinfo.file_size)

            def progress_callback(bytes_read):
                progress.update(task, advance=bytes_read)

            if deadline is not None:
                timer = threading.Timer(deadline, extractor.cancel)
                timer.daemon = True
                timer.start()

            result = extractor.extract_file(job, output, member=member, output=output_name, mode=mode,
                                            progress_callback=progress_callback, on_narinfo=on_narinfo)

        console.print(f"Wrote {escape(result.archive_path)} ({result.size} bytes) to {escape(str(result.output_path))}")
    except (NarExtractError, httpx.HTTPError, OSError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise SystemExit(1) from e
    except Exception as e:
        # Surface the error to the user and re-raise for callers / tests to handle.
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise e
    finally:
        if timer is not None:
            timer.cancel()
