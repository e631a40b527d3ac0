from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import NoReturn, Optional

import anyio
import typer

from .analysis import AnalyzerOptions, analyze_media
from .errors import RangeSeekError
from .reader import ReaderSettings, ReadStrategy, load_reader_settings_from_env
from .source import ByteSourceAdapter

app = typer.Typer(no_args_is_help=True, help="Seekable byte access to remote media.")


def _fail(error: Exception) -> NoReturn:
    typer.echo(f"error: {error}", err=True)
    raise typer.Exit(code=1)


@app.callback()
def main(
    ctx: typer.Context,
    proxy: Optional[str] = typer.Option(
        None, "--proxy", help="Gateway endpoint, e.g. http://host/resources/proxy."
    ),
    strategy: Optional[ReadStrategy] = typer.Option(
        None, "--strategy", help="Chunk read strategy."
    ),
    prefetch_window: Optional[int] = typer.Option(
        None, "--prefetch-window", min=1, help="Prefetch window in bytes."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = load_reader_settings_from_env()
    overrides = {
        key: value
        for key, value in {
            "proxy_endpoint": proxy,
            "strategy": strategy,
            "prefetch_window": prefetch_window,
        }.items()
        if value is not None
    }
    ctx.obj = settings.model_copy(update=overrides) if overrides else settings


@app.command()
def probe(
    ctx: typer.Context,
    url: str,
    as_json: bool = typer.Option(False, "--json", help="Print JSON."),
) -> None:
    """Resolve the size and range support of URL."""
    settings: ReaderSettings = ctx.obj

    async def run() -> dict[str, object]:
        async with ByteSourceAdapter(url, settings) as source:
            size = await source.get_size()
            assert source.descriptor is not None
            return {
                "url": url,
                "size": size,
                "range_support": source.descriptor.range_support.value,
            }

    try:
        info = anyio.run(run)
    except RangeSeekError as error:
        _fail(error)
    if as_json:
        typer.echo(json.dumps(info, indent=2))
    else:
        typer.echo(f"{info['size']} bytes (range support: {info['range_support']})")


@app.command()
def read(
    ctx: typer.Context,
    url: str,
    offset: int = typer.Option(0, "--offset", min=0),
    length: int = typer.Option(..., "--length", min=1),
    out: Optional[Path] = typer.Option(None, "--out", help="Write bytes here."),
) -> None:
    """Read LENGTH bytes at OFFSET from URL."""
    settings: ReaderSettings = ctx.obj

    async def run() -> bytes:
        async with ByteSourceAdapter(url, settings) as source:
            await source.get_size()
            return await source.read_chunk(length, offset)

    try:
        data = anyio.run(run)
    except RangeSeekError as error:
        _fail(error)
    if out is not None:
        out.write_bytes(data)
        typer.echo(f"wrote {len(data)} bytes to {out}")
    elif sys.stdout.isatty():
        for index in range(0, len(data), 16):
            typer.echo(f"{offset + index:08x}  {data[index : index + 16].hex(' ')}")
    else:
        sys.stdout.buffer.write(data)


@app.command()
def analyze(
    ctx: typer.Context,
    url: str,
    backend: Optional[str] = typer.Option(
        None, "--backend", help="Analyzer as module:attr or entry point name."
    ),
    output_format: str = typer.Option("text", "--format"),
    cover_data: bool = typer.Option(False, "--cover-data"),
    full: bool = typer.Option(True, "--full/--no-full"),
) -> None:
    """Run an analyzer backend over URL and print its report."""
    settings: ReaderSettings = ctx.obj
    try:
        options = AnalyzerOptions(
            output_format=output_format, cover_data=cover_data, full=full
        )
    except ValueError as error:
        _fail(error)

    try:
        report = anyio.run(
            lambda: analyze_media(
                url, options=options, settings=settings, backend=backend
            )
        )
    except RangeSeekError as error:
        _fail(error)
    typer.echo(report)


if __name__ == "__main__":
    app()
