from __future__ import annotations

import argparse
import shutil
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console

from .core.config import get_settings
from .core.errors import ProcessingError
from .media.faststart import FFmpegFaststartRewriter
from .media.geometry import classify_dimensions
from .media.probe import FFprobeInspector

console = Console()


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "check", False):
        _run_environment_check()
        return

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    args.func(args)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tubely media developer CLI")
    parser.add_argument("--check", action="store_true", help="Validate presence of ffmpeg/ffprobe")

    subparsers = parser.add_subparsers(dest="command")

    classify_parser = subparsers.add_parser("classify", help="Print the first video stream's size and geometry category")
    classify_parser.add_argument("--file", required=True, help="Path to the source media file")
    classify_parser.set_defaults(func=_cmd_classify)

    faststart_parser = subparsers.add_parser("faststart", help="Rewrite an MP4 for progressive playback")
    faststart_parser.add_argument("--file", required=True, help="Path to the source media file")
    faststart_parser.add_argument("--output", help="Destination path (defaults to <file>.processing)")
    faststart_parser.set_defaults(func=_cmd_faststart)
    return parser


def _require_file(raw: str) -> Path:
    media_path = Path(raw).expanduser().resolve()
    if not media_path.is_file():
        console.print(f"[red]File not found: {media_path}[/]")
        sys.exit(2)
    return media_path


def _cmd_classify(args: argparse.Namespace) -> None:
    settings = get_settings()
    media_path = _require_file(args.file)
    inspector = FFprobeInspector(binary=settings.ffprobe_binary, timeout_s=settings.media_tool_timeout_s)
    try:
        dimensions = inspector.inspect(media_path)
    except ProcessingError as exc:
        console.print(f"[red]ffprobe failed:[/] {exc}")
        sys.exit(3)
    category = classify_dimensions(dimensions.width, dimensions.height)
    console.print_json(
        data={
            "file": str(media_path),
            "width": dimensions.width,
            "height": dimensions.height,
            "ratio": round(dimensions.ratio, 4),
            "category": category.value,
        }
    )


def _cmd_faststart(args: argparse.Namespace) -> None:
    """Rewrite a file with the moov atom up front; the source is left untouched."""
    settings = get_settings()
    media_path = _require_file(args.file)
    rewriter = FFmpegFaststartRewriter(binary=settings.ffmpeg_binary, timeout_s=settings.media_tool_timeout_s)
    try:
        output = rewriter.rewrite(media_path)
    except ProcessingError as exc:
        console.print(f"[red]ffmpeg failed:[/] {exc}")
        sys.exit(3)
    if args.output:
        destination = Path(args.output).expanduser().resolve()
        shutil.move(str(output), str(destination))
        output = destination
    console.print(f"[green]Faststart copy written to {output}[/]")


def _run_environment_check() -> None:
    """Check for the presence of required external dependencies."""
    settings = get_settings()
    results = {
        "ffmpeg": shutil.which(settings.ffmpeg_binary) is not None,
        "ffprobe": shutil.which(settings.ffprobe_binary) is not None,
    }

    console.rule("[bold]Environment Check")
    for label, ok in results.items():
        console.print(f"[bold]{label}[/]: {'✅' if ok else '❌'}")

    if not all(results.values()):
        console.print("[red]Missing dependencies detected. Install ffmpeg (which ships ffprobe).[/]")
        sys.exit(1)
    console.print("[green]Environment looks good![/]")


if __name__ == "__main__":
    main()
