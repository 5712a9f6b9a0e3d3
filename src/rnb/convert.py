from __future__ import annotations

import os
import tempfile
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, TypeVar

from .container import CONTAINER_SUFFIX, encode_header
from .epub import Book, load_book, open_epub, read_document, read_member
from .errors import RnbError, StructureError
from .images import ImageEntry, image_offsets, transfer_order
from .logging_utils import debug_log
from .markup import parse_document
from .merge import merge_paragraphs
from .model import Block, Paragraph

JOBS_ENV = "RNB_JOBS"

ProgressCallback = Callable[[dict[str, object]], None]
_T = TypeVar("_T")


@dataclass
class ConversionResult:
    output_path: Path
    documents: int
    paragraphs: int
    blocks: int
    images: int
    size: int


def resolve_jobs(jobs: int | None = None) -> int:
    if jobs is None:
        env_value = os.environ.get(JOBS_ENV, "").strip()
        if env_value:
            try:
                jobs = int(env_value)
            except ValueError as exc:
                raise ValueError(f"{JOBS_ENV} must be an integer, got {env_value!r}") from exc
    if jobs is None or jobs <= 0:
        jobs = os.cpu_count() or 1
    return jobs


def default_output_path(input_path: Path) -> Path:
    return input_path.with_suffix(CONTAINER_SUFFIX)


def _emit(progress: ProgressCallback | None, event: dict[str, object]) -> None:
    if progress is not None:
        progress(event)


def _gather(futures: Iterable[Future[_T]]) -> Iterable[Future[_T]]:
    """Yield futures as they complete; the first failure cancels everything still queued."""
    pending = list(futures)
    try:
        for future in as_completed(pending):
            future.result()
            yield future
    except BaseException:
        for future in pending:
            future.cancel()
        raise


def _parse_one(book: Book, index: int, name: str) -> tuple[int, list[Paragraph]]:
    try:
        # ZipFile readers are not shared between workers.
        with open_epub(book.source) as zf:
            markup = read_document(zf, name)
        paragraphs = parse_document(markup, book.glyphs, book.images)
    except RnbError as exc:
        raise type(exc)(f"document {index} ({name}): {exc}") from exc
    return index, paragraphs


def parse_book(book: Book, *, jobs: int, progress: ProgressCallback | None = None) -> list[Paragraph]:
    """Parse every document in parallel and return the paragraphs in document order."""
    total = len(book.documents)
    results: list[tuple[int, list[Paragraph]]] = []
    with ThreadPoolExecutor(max_workers=jobs, thread_name_prefix="rnb-parse") as executor:
        futures = [executor.submit(_parse_one, book, index, name) for index, name in enumerate(book.documents)]
        # Completion order is arbitrary; results are re-sorted below.
        for future in _gather(futures):
            index, paragraphs = future.result()
            results.append((index, paragraphs))
            debug_log(f"parsed {book.documents[index]}: {len(paragraphs)} paragraphs")
            _emit(
                progress,
                {
                    "event": "document",
                    "index": index,
                    "total": total,
                    "source": book.documents[index],
                    "paragraphs": len(paragraphs),
                },
            )
    results.sort(key=lambda item: item[0])
    return [paragraph for _, paragraphs in results for paragraph in paragraphs]


def _transfer_image(source: Path, output_path: Path, entry: ImageEntry, position: int) -> int:
    with open_epub(source) as zf:
        data = read_member(zf, entry.locator)
    if len(data) != entry.size:
        raise StructureError(
            f"{entry.locator}: archive lists {entry.size} bytes but {len(data)} were read"
        )
    # Every worker writes through its own handle into its own byte range.
    with output_path.open("r+b") as handle:
        handle.seek(position)
        handle.write(data)
    return len(data)


def write_images(
    book: Book,
    output_path: Path,
    base_offset: int,
    *,
    jobs: int,
    progress: ProgressCallback | None = None,
) -> None:
    """Copy image bytes into a preallocated output file at their precomputed offsets."""
    catalog = book.images
    offsets = image_offsets(catalog.sizes)
    total = len(catalog)
    with ThreadPoolExecutor(max_workers=jobs, thread_name_prefix="rnb-image") as executor:
        futures = {
            executor.submit(
                _transfer_image, book.source, output_path, catalog[index], base_offset + offsets[index]
            ): index
            for index in transfer_order(catalog.sizes)
        }
        for future in _gather(futures):
            index = futures[future]
            entry = catalog[index]
            debug_log(f"image {index} {entry.name}: {entry.size} bytes at {base_offset + offsets[index]}")
            _emit(
                progress,
                {"event": "image", "index": index, "total": total, "name": entry.name, "size": entry.size},
            )


def write_container(
    book: Book,
    blocks: list[Block],
    output_path: Path,
    *,
    jobs: int,
    progress: ProgressCallback | None = None,
) -> int:
    """
    Write the finished container to ``output_path`` and return its size.

    The header is encoded before anything touches the disk, and the file only
    appears at ``output_path`` once every image has been written.
    """
    header = encode_header(blocks, book.images)
    total_size = len(header) + sum(book.images.sizes)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "wb",
        dir=output_path.parent,
        prefix=f".{output_path.name}.",
        suffix=".part",
        delete=False,
    ) as handle:
        tmp_path = Path(handle.name)
    try:
        with tmp_path.open("r+b") as handle:
            handle.write(header)
            # Preallocate the image region so workers can write anywhere in it.
            handle.truncate(total_size)
        write_images(book, tmp_path, len(header), jobs=jobs, progress=progress)
        os.chmod(tmp_path, 0o644)
        os.replace(tmp_path, output_path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return total_size


def epub_to_rnb(
    input_path: str | Path,
    output_path: str | Path | None = None,
    *,
    jobs: int | None = None,
    gaiji_path: str | Path | None = None,
    progress: ProgressCallback | None = None,
) -> ConversionResult:
    """
    Convert an EPUB into an .rnb container.

    Any error aborts the run without leaving a file at the output path.
    """
    source = Path(input_path)
    destination = Path(output_path) if output_path is not None else default_output_path(source)
    if destination.resolve() == source.resolve():
        raise ValueError(f"Output path would overwrite the input: {source}")
    workers = resolve_jobs(jobs)

    book = load_book(source, gaiji_path=Path(gaiji_path) if gaiji_path is not None else None)
    debug_log(
        f"{source.name}: {len(book.documents)} documents, {len(book.images)} images, "
        f"{len(book.glyphs)} gaiji mappings, {workers} workers"
    )

    paragraphs = parse_book(book, jobs=workers, progress=progress)
    blocks = merge_paragraphs(paragraphs)
    debug_log(f"merged {len(paragraphs)} paragraphs into {len(blocks)} blocks")

    size = write_container(book, blocks, destination, jobs=workers, progress=progress)
    return ConversionResult(
        output_path=destination,
        documents=len(book.documents),
        paragraphs=len(paragraphs),
        blocks=len(blocks),
        images=len(book.images),
        size=size,
    )


__all__ = [
    "JOBS_ENV",
    "ConversionResult",
    "resolve_jobs",
    "default_output_path",
    "parse_book",
    "write_images",
    "write_container",
    "epub_to_rnb",
]
