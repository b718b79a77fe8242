import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import __version__
from . import config as settings_store
from .dataset import check_solution, expected_path_for, generate_dataset, read_matrix, write_matrix
from .errors import MatmulError
from .host import compare as compare_kernels
from .host import multiply_files
from .kernels import KERNELS
from .launch import launch_config
from .timer import Timer


console = Console()

EXIT_FAILURE = 1
EXIT_WRONG_SOLUTION = 3


def setup_logging(level: str):
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def fail(message: str, code: int = EXIT_FAILURE):
    console.print(f"[red]Error: {escape(message)}[/red]")
    raise SystemExit(code)


def print_timings(timer: Timer):
    table = Table(title="Timings")
    table.add_column("Kind", style="cyan")
    table.add_column("Phase")
    table.add_column("Elapsed (ms)", justify="right", style="green")
    for span in timer.spans:
        table.add_row(span.category, span.message, f"{span.elapsed_ms:.3f}")
    console.print(table)


@click.group()
@click.version_option(version=__version__)
@click.option('--log-level', type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help='Logging verbosity (default: stored setting)')
@click.pass_context
def cli(ctx: click.Context, log_level: Optional[str]):
    """tiledmm - multiply matrices on a CUDA device with naive or tiled kernels."""
    settings = settings_store.load_settings()
    setup_logging((log_level or settings.log_level).upper())
    ctx.obj = settings


@cli.command()
@click.argument('a_path', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument('b_path', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('-e', '--expected', 'expected_path', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Expected output (default: output.raw beside A, if present)')
@click.option('-o', '--output', 'output_path', type=click.Path(dir_okay=False, path_type=Path),
              help='Write the result here (.raw or .csv)')
@click.option('--kernel', type=click.Choice(sorted(KERNELS)), help='Kernel strategy')
@click.option('--tile-width', type=int, help='Tile / block edge length')
@click.option('--timings/--no-timings', default=True, help='Print the phase timing table')
@click.pass_obj
def run(
    settings: settings_store.Settings,
    a_path: Path,
    b_path: Path,
    expected_path: Optional[Path],
    output_path: Optional[Path],
    kernel: Optional[str],
    tile_width: Optional[int],
    timings: bool,
):
    """Multiply A by B and check the result.

    Examples:

      # Multiply the inputs of a dataset and validate against its output.raw
      tiledmm run data/0/input0.raw data/0/input1.raw

      # Use the naive kernel and save the product
      tiledmm run a.raw b.raw --kernel naive -o c.raw
    """
    kernel = kernel or settings.kernel
    tile_width = tile_width if tile_width is not None else settings.tile_width
    expected_path = expected_path or expected_path_for(a_path)
    timer = Timer()

    try:
        result = multiply_files(a_path, b_path, kernel=kernel, tile_width=tile_width, timer=timer)
        if output_path:
            write_matrix(output_path, result)
        expected = read_matrix(expected_path) if expected_path else None
    except MatmulError as e:
        if timings and timer.spans:
            print_timings(timer)
        fail(str(e))

    if timings:
        print_timings(timer)

    config = launch_config(result.rows, result.columns, tile_width)
    summary = (
        f"[bold]Kernel:[/bold] {kernel}\n"
        f"[bold]Result:[/bold] {result.rows} x {result.columns}\n"
        f"[bold]Grid:[/bold] {config.grid[0]} x {config.grid[1]} blocks of "
        f"{config.block[0]} x {config.block[1]} threads "
        f"({config.idle_threads(result.rows, result.columns)} idle)"
    )
    if output_path:
        summary += f"\n[bold]Output:[/bold] {escape(str(output_path))}"

    if expected is None:
        console.print(Panel(summary, title="Done", border_style="blue"))
        return

    report = check_solution(result, expected, rtol=settings.rtol, atol=settings.atol)
    summary += f"\n[bold]Expected:[/bold] {escape(str(expected_path))}\n{report.message}"
    if report.correct:
        console.print(Panel(f"[green]✓[/green] {summary}", title="Solution Correct", border_style="green"))
    else:
        console.print(Panel(f"[red]✗[/red] {summary}", title="Solution Incorrect", border_style="red"))
        raise SystemExit(EXIT_WRONG_SOLUTION)


@cli.command()
@click.argument('a_path', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument('b_path', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--tile-width', type=int, help='Tile / block edge length')
@click.pass_obj
def compare(settings: settings_store.Settings, a_path: Path, b_path: Path, tile_width: Optional[int]):
    """Run the naive and tiled kernels on the same inputs and compare them.

    Example:

      tiledmm compare data/0/input0.raw data/0/input1.raw --tile-width 8
    """
    tile_width = tile_width if tile_width is not None else settings.tile_width
    try:
        a = read_matrix(a_path)
        b = read_matrix(b_path)
        result = compare_kernels(a, b, tile_width=tile_width)
    except MatmulError as e:
        fail(str(e))

    table = Table(title=f"Naive vs tiled ({a.rows} x {a.columns} @ {b.rows} x {b.columns}, tile {tile_width})")
    table.add_column("Kernel", style="cyan")
    table.add_column("Compute (ms)", justify="right", style="green")
    table.add_row("naive", f"{result.naive_seconds * 1000.0:.3f}")
    table.add_row("tiled", f"{result.tiled_seconds * 1000.0:.3f}")
    console.print(table)

    agrees = result.agrees(rtol=settings.rtol, atol=settings.atol)
    style = "green" if agrees else "red"
    console.print(Panel(
        f"[bold]Max abs diff:[/bold] {result.max_abs_diff:.3e}\n"
        f"[bold]Max rel diff:[/bold] {result.max_rel_diff:.3e}\n"
        f"[bold]Speedup:[/bold] {result.speedup:.2f}x\n"
        f"[{style}]{'Kernels agree' if agrees else 'Kernels disagree'}[/{style}]",
        title="Comparison",
        border_style=style,
    ))
    if not agrees:
        raise SystemExit(EXIT_WRONG_SOLUTION)


@cli.command()
@click.argument('directory', type=click.Path(file_okay=False, path_type=Path))
@click.option('--rows', required=True, type=click.IntRange(min=1), help='Rows of A')
@click.option('--inner', required=True, type=click.IntRange(min=1), help='Columns of A / rows of B')
@click.option('--columns', required=True, type=click.IntRange(min=1), help='Columns of B')
@click.option('--seed', type=int, help='Random seed')
def generate(directory: Path, rows: int, inner: int, columns: int, seed: Optional[int]):
    """Write a random dataset (input0.raw, input1.raw, output.raw).

    Example:

      tiledmm generate data/0 --rows 64 --inner 50 --columns 33 --seed 1
    """
    try:
        paths = generate_dataset(directory, rows, inner, columns, seed=seed)
    except MatmulError as e:
        fail(str(e))

    table = Table(title="Generated Dataset")
    table.add_column("File", style="cyan")
    table.add_column("Shape", style="magenta")
    for path, shape in zip(paths, [(rows, inner), (inner, columns), (rows, columns)]):
        table.add_row(str(path), f"{shape[0]} x {shape[1]}")
    console.print(table)


@cli.group(name="config")
def config_group():
    """Show or change stored defaults."""


@config_group.command()
def show():
    """Show current settings."""
    settings = settings_store.load_settings()
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for key, value in settings.model_dump().items():
        table.add_row(key, str(value))
    console.print(Panel(table, title=f"Settings ({settings_store.CONFIG_FILE})", border_style="blue"))


@config_group.command(name="set")
@click.argument('key')
@click.argument('value')
def set_value(key: str, value: str):
    """Set one setting.

    Example:

      tiledmm config set tile_width 32
    """
    try:
        settings = settings_store.update_setting(key, value)
    except MatmulError as e:
        fail(str(e))
    console.print(f"[green]✓[/green] {key} = {getattr(settings, key)}")


@config_group.command()
def reset():
    """Clear stored settings."""
    settings_store.clear_settings()
    console.print("[green]✓[/green] Settings reset to defaults")


if __name__ == '__main__':
    cli()
