"""Command-line interface for contour pyramid generation."""

import asyncio
import functools
import logging
import os
from pathlib import Path
from typing import Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn

from . import __version__
from .config import get_config, load_threshold_table
from .errors import GenerationError
from .models.contour import ContourOptions, Encoding, contour_levels_from_increment
from .models.job import GenerationSettings, PyramidJob
from .models.tile import BoundingBox, Tile
from .services.contour_service import ContourTileService
from .services.dem_service import DemService
from .services.pyramid_service import PyramidGenerator, PyramidRunner, RunResult
from .services.worker_service import InProcessWorker, SubprocessWorker

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)

WORKER_MODES = ("process", "task")


def _configure_logging(verbose: bool, plain: bool = False) -> None:
    """Route package logs to stderr.

    Child processes log plain lines so the parent can relay them verbatim.
    """
    root = logging.getLogger("contourgen")
    root.handlers.clear()
    root.propagate = False

    if plain:
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        root.setLevel(logging.INFO)
    else:
        handler = RichHandler(console=err_console, show_path=False, markup=False)
        root.setLevel(logging.INFO if verbose else logging.WARNING)
    root.addHandler(handler)


def common_options(func):
    """Options shared by every generation command."""
    options = [
        click.option("--demUrl", "dem_url", required=True,
                     help="DEM tile URL with {z}/{x}/{y}, or pmtiles:///path/to/file.pmtiles"),
        click.option("--encoding", type=click.Choice([e.value for e in Encoding]), default="mapbox",
                     show_default=True, help="RGB elevation encoding of the DEM tiles"),
        click.option("--sourceMaxZoom", "source_max_zoom", type=click.IntRange(min=0), default=8,
                     show_default=True, help="Maximum zoom available from the DEM source"),
        click.option("--increment", type=click.FloatRange(min=0), default=0, show_default=True,
                     help="Contour interval; 0 uses the per-zoom threshold table"),
        click.option("--thresholds", "thresholds_file", type=click.Path(exists=True, dir_okay=False),
                     help="YAML file with a zoom -> contour interval table"),
        click.option("--outputMaxZoom", "output_max_zoom", type=click.IntRange(min=0), default=8,
                     show_default=True, help="Deepest zoom of the output pyramid"),
        click.option("--outputDir", "output_dir", type=click.Path(file_okay=False),
                     default=lambda: str(get_config().output_dir),
                     help="Directory for z/x/y.pbf tiles and metadata.json"),
        click.option("--batchSize", "batch_size", type=click.IntRange(min=1),
                     default=lambda: get_config().batch_size,
                     help="Tiles generated concurrently per worker"),
        click.option("--verbose", "-v", is_flag=True, help="Log progress of every worker"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def dispatch_options(func):
    """Options of the commands that fan out over several workers."""
    options = [
        click.option("--processes", type=click.IntRange(min=1),
                     default=lambda: get_config().processes,
                     help="Number of parallel workers"),
        click.option("--workerMode", "worker_mode", type=click.Choice(WORKER_MODES), default="process",
                     show_default=True,
                     help="Run each root tile in a child process or as a task in this process"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _build_settings(
    dem_url: str,
    encoding: str,
    source_max_zoom: int,
    increment: float,
    thresholds_file: Optional[str],
    output_max_zoom: int,
    output_dir: str,
    batch_size: int,
) -> GenerationSettings:
    thresholds = load_threshold_table(Path(thresholds_file)).thresholds if thresholds_file else None
    contour = ContourOptions(levels=contour_levels_from_increment(increment, thresholds))
    return GenerationSettings(
        dem_url=dem_url,
        encoding=Encoding(encoding),
        source_max_zoom=source_max_zoom,
        output_max_zoom=output_max_zoom,
        output_dir=Path(output_dir),
        batch_size=batch_size,
        contour=contour,
    )


def _open_tile_service(settings: GenerationSettings) -> ContourTileService:
    config = get_config()
    dem = DemService(
        settings.dem_url,
        encoding=settings.encoding,
        max_zoom=settings.source_max_zoom,
        cache_size=config.cache_size,
        timeout=config.timeout_seconds,
    )
    return ContourTileService(dem, settings.contour)


def _print_header(settings: GenerationSettings, **extra) -> None:
    for key, value in extra.items():
        console.print(f"[bold]{key}:[/bold] {value}")
    console.print(f"[bold]demUrl:[/bold] {settings.dem_url}")
    console.print(f"[bold]sourceMaxZoom:[/bold] {settings.source_max_zoom}")
    console.print(f"[bold]encoding:[/bold] {settings.encoding.value}")
    console.print(f"[bold]outputMaxZoom:[/bold] {settings.output_max_zoom}")
    console.print(f"[bold]outputDir:[/bold] {settings.output_dir}")


def _run_generation(
    settings: GenerationSettings,
    processes: int,
    worker_mode: str,
    verbose: bool,
    start,
) -> RunResult:
    """
    Run ``start(runner)`` with progress reporting and the chosen worker mode.

    Args:
        settings: Options shared by every root job
        processes: Number of worker slots
        worker_mode: "process" or "task"
        verbose: Relay worker output instead of showing a progress bar
        start: Coroutine function taking the PyramidRunner

    Returns:
        RunResult of the finished run
    """
    tile_service = _open_tile_service(settings) if worker_mode == "task" else None
    if tile_service is not None:
        worker = InProcessWorker(tile_service)
    else:
        worker = SubprocessWorker(verbose=verbose)

    try:
        if verbose:
            runner = PyramidRunner(settings, worker, processes=processes)
            return asyncio.run(start(runner))

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Generating pyramids...", total=None)

            def on_progress(completed: int, total: int) -> None:
                progress.update(task, completed=completed, total=total)

            runner = PyramidRunner(settings, worker, processes=processes, progress_callback=on_progress)
            result = asyncio.run(start(runner))
            progress.update(task, description="[green]Pyramids generated")
            return result
    finally:
        if tile_service is not None:
            tile_service.dem.close()


def _report(result: RunResult) -> None:
    console.print(f"[green]Generated:[/green] {len(result.roots)} root tiles, "
                  f"zoom {result.min_zoom} to {result.max_zoom}")
    console.print(f"[green]Metadata:[/green] {result.metadata_path}")
    console.print(f"[dim]Elapsed: {result.elapsed_time:.1f}s[/dim]")


def handle_errors(func):
    """Turn expected failures into a red error line and exit status 1."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (ValidationError, ValueError, GenerationError, OSError) as e:
            err_console.print(f"[red]Error:[/red] {e}")
            raise SystemExit(1)
    return wrapper


class ContourGroup(click.Group):
    """Command group reporting usage errors with exit status 1."""

    def make_context(self, info_name, args, parent=None, **extra):
        try:
            return super().make_context(info_name, args, parent=parent, **extra)
        except click.UsageError as e:
            e.exit_code = 1
            raise

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except click.UsageError as e:
            e.exit_code = 1
            raise


@click.group(cls=ContourGroup)
@click.version_option(version=__version__)
def main():
    """Contour Generator - Build contour vector tile pyramids from DEM tiles."""
    pass


@main.command()
@click.option("--x", type=int, required=True, help="X coordinate of the root tile")
@click.option("--y", type=int, required=True, help="Y coordinate of the root tile")
@click.option("--z", type=int, required=True, help="Zoom level of the root tile")
@common_options
@dispatch_options
@handle_errors
def pyramid(x: int, y: int, z: int, verbose: bool, processes: int, worker_mode: str, **options):
    """Generate the pyramid below a single root tile."""
    _configure_logging(verbose)
    root = Tile(z, x, y)
    settings = _build_settings(**options)

    if verbose:
        _print_header(settings, x=x, y=y, z=z)

    result = _run_generation(
        settings, processes, worker_mode, verbose,
        lambda runner: runner.run_pyramid(root),
    )
    _report(result)


@main.command()
@click.option("--outputMinZoom", "output_min_zoom", type=click.IntRange(min=0), default=5,
              show_default=True, help="Zoom level of the root tiles")
@common_options
@dispatch_options
@handle_errors
def zoom(output_min_zoom: int, verbose: bool, processes: int, worker_mode: str, **options):
    """Generate pyramids for every tile of the world at the minimum zoom."""
    _configure_logging(verbose)
    settings = _build_settings(**options)

    if verbose:
        _print_header(settings, outputMinZoom=output_min_zoom, processes=processes)

    result = _run_generation(
        settings, processes, worker_mode, verbose,
        lambda runner: runner.run_zoom(output_min_zoom),
    )
    _report(result)


@main.command()
@click.option("--minx", type=float, required=True, help="Western longitude")
@click.option("--miny", type=float, required=True, help="Southern latitude")
@click.option("--maxx", type=float, required=True, help="Eastern longitude")
@click.option("--maxy", type=float, required=True, help="Northern latitude")
@click.option("--outputMinZoom", "output_min_zoom", type=click.IntRange(min=0), default=5,
              show_default=True, help="Zoom level of the root tiles")
@common_options
@dispatch_options
@handle_errors
def bbox(
    minx: float,
    miny: float,
    maxx: float,
    maxy: float,
    output_min_zoom: int,
    verbose: bool,
    processes: int,
    worker_mode: str,
    **options,
):
    """Generate pyramids for the tiles covering a bounding box."""
    _configure_logging(verbose)
    region = BoundingBox(min_lon=minx, min_lat=miny, max_lon=maxx, max_lat=maxy)
    settings = _build_settings(**options)

    if verbose:
        _print_header(
            settings,
            minx=minx, miny=miny, maxx=maxx, maxy=maxy,
            outputMinZoom=output_min_zoom, processes=processes,
        )

    result = _run_generation(
        settings, processes, worker_mode, verbose,
        lambda runner: runner.run_bbox(region, output_min_zoom),
    )
    _report(result)


@main.command("generate-pyramid", hidden=True)
@click.option("--x", type=int, required=True)
@click.option("--y", type=int, required=True)
@click.option("--z", type=int, required=True)
@click.option("--contourJson", "contour_json", help="Serialized contour options")
@common_options
@handle_errors
def generate_pyramid(x: int, y: int, z: int, contour_json: Optional[str], verbose: bool, **options):
    """Generate one root tile's pyramid (run by worker processes)."""
    _configure_logging(verbose, plain=True)
    settings = _build_settings(**options)
    if contour_json:
        settings = settings.model_copy(update={"contour": ContourOptions.model_validate_json(contour_json)})

    job = PyramidJob(root=Tile(z, x, y), settings=settings)
    tile_service = _open_tile_service(settings)
    try:
        count = asyncio.run(PyramidGenerator(job, tile_service).run())
    finally:
        tile_service.dem.close()
    logger.info("Wrote %d tiles in process %d", count, os.getpid())


if __name__ == "__main__":
    main()
