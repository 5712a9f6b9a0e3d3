from __future__ import annotations

import argparse
import sys
import threading
from importlib import metadata
from pathlib import Path

import tomllib
from rich.progress import (
    BarColumn,
    Progress,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from .container import CONTAINER_SUFFIX, decode_container, describe_container
from .convert import ConversionResult, epub_to_rnb
from .errors import RnbError
from .logging_utils import console, set_debug_logging, status


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover - defensive
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("rnb")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"rnb {__version__}",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="EPUB → .rnb reader container. Use `rnb dump` to inspect a container.",
    )
    _add_version_flag(ap)
    ap.add_argument(
        "input_path",
        help="Path to input .epub or a directory containing .epub files",
    )
    ap.add_argument(
        "-o",
        "--output",
        help=f"Output path (defaults to the input with a {CONTAINER_SUFFIX} extension)",
    )
    ap.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=None,
        help="Parallel workers for parsing and image copying (default: $RNB_JOBS or CPU count).",
    )
    ap.add_argument(
        "--gaiji",
        help="Extra gaiji table (JSON object of image name → text) merged over the book's gaiji.json.",
    )
    ap.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging (documents, merge statistics, image placement).",
    )
    return ap


def build_dump_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Print the blocks, ruby spans and image table of an .rnb container.",
    )
    _add_version_flag(ap)
    ap.add_argument("container", help="Path to an .rnb file")
    return ap


class _RichProgress:
    def __init__(self, label: str) -> None:
        self.label = label
        self.enabled = console.is_terminal
        self.lock = threading.Lock()
        self.tasks: dict[str, TaskID] = {}
        self.progress: Progress | None = None
        if not self.enabled:
            return
        self.progress = Progress(
            TextColumn("{task.description}", justify="left"),
            BarColumn(bar_width=None),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        )

    def __enter__(self) -> "_RichProgress":
        if self.progress is not None:
            self.progress.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self.progress is not None:
            self.progress.stop()

    def __call__(self, event: dict[str, object]) -> None:
        if self.progress is None:
            return
        kind = str(event.get("event"))
        total = event.get("total")
        with self.lock:
            task = self.tasks.get(kind)
            if task is None:
                description = "Parsing documents" if kind == "document" else "Copying images"
                task = self.progress.add_task(
                    f"{self.label}: {description}",
                    total=total if isinstance(total, int) else None,
                )
                self.tasks[kind] = task
            self.progress.advance(task)


def _convert_one(
    epub_path: Path,
    output_path: Path | None,
    *,
    jobs: int | None,
    gaiji_path: Path | None,
) -> ConversionResult:
    with _RichProgress(epub_path.name) as progress:
        result = epub_to_rnb(epub_path, output_path, jobs=jobs, gaiji_path=gaiji_path, progress=progress)
    status(
        f"{epub_path.name} -> {result.output_path} "
        f"({result.blocks} blocks, {result.images} images, {result.size} bytes)"
    )
    return result


def _run_dump(args: argparse.Namespace) -> int:
    path = Path(args.container)
    if not path.is_file():
        raise SystemExit(f"Container not found: {path}")
    try:
        decoded = decode_container(path.read_bytes())
    except RnbError as exc:
        raise SystemExit(f"{path}: {exc}") from exc
    for line in describe_container(decoded):
        print(line)
    return 0


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "dump":
        dump_args = build_dump_parser().parse_args(argv[1:])
        return _run_dump(dump_args)

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0

    args = parser.parse_args(argv)
    set_debug_logging(bool(args.debug))

    inp_path = Path(args.input_path)
    if not inp_path.exists():
        raise SystemExit(f"Input path not found: {inp_path}")
    gaiji_path = Path(args.gaiji) if args.gaiji else None
    if gaiji_path is not None and not gaiji_path.is_file():
        raise SystemExit(f"Gaiji table not found: {gaiji_path}")

    if inp_path.is_dir():
        if args.output:
            raise SystemExit("--output cannot be used when processing a directory.")
        epubs = sorted(p for p in inp_path.iterdir() if p.suffix.lower() == ".epub")
        if not epubs:
            raise SystemExit(f"No .epub files found in directory: {inp_path}")
        targets = [(epub_path, None) for epub_path in epubs]
    else:
        if inp_path.suffix.lower() != ".epub":
            raise SystemExit(f"Input must be an .epub file or directory: {inp_path}")
        targets = [(inp_path, Path(args.output) if args.output else None)]

    for epub_path, output_path in targets:
        try:
            _convert_one(epub_path, output_path, jobs=args.jobs, gaiji_path=gaiji_path)
        except (RnbError, ValueError) as exc:
            raise SystemExit(f"{epub_path}: {exc}") from exc
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
