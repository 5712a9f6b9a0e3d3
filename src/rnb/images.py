from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from .errors import CapacityError
from .model import final_segment

IMAGE_EXTS = (".jpg", ".jpeg", ".png")
# The image count is stored in a single byte.
MAX_IMAGES = 0xFF
_U32_MAX = 0xFFFFFFFF


@dataclass(frozen=True)
class ImageEntry:
    name: str
    size: int
    locator: str


@dataclass(frozen=True)
class ImageCatalog:
    entries: tuple[ImageEntry, ...] = ()

    def __post_init__(self) -> None:
        if len(self.entries) > MAX_IMAGES:
            raise CapacityError(
                f"EPUB contains {len(self.entries)} images; at most {MAX_IMAGES} can be stored"
            )
        for entry in self.entries:
            if entry.size > _U32_MAX:
                raise CapacityError(f"Image {entry.locator} is too large to store ({entry.size} bytes)")

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)

    def __getitem__(self, index: int) -> ImageEntry:
        return self.entries[index]

    @property
    def sizes(self) -> list[int]:
        return [entry.size for entry in self.entries]

    def index_of(self, src: str) -> int | None:
        name = final_segment(src)
        for index, entry in enumerate(self.entries):
            if entry.name == name:
                return index
        return None

    @classmethod
    def from_members(cls, members: Iterable[tuple[str, int]]) -> "ImageCatalog":
        """Build a catalog from ``(archive name, uncompressed size)`` pairs in archive order."""
        entries = [
            ImageEntry(name=final_segment(locator), size=size, locator=locator)
            for locator, size in members
            if is_image_name(locator)
        ]
        return cls(tuple(entries))


def is_image_name(name: str) -> bool:
    return name.lower().endswith(IMAGE_EXTS)


def image_offsets(sizes: Sequence[int]) -> list[int]:
    """Exclusive prefix sum of image sizes, i.e. each image's offset in the data region."""
    offsets: list[int] = []
    total = 0
    for size in sizes:
        offsets.append(total)
        total += size
    if offsets and offsets[-1] > _U32_MAX:
        raise CapacityError(f"Image data ({total} bytes) exceeds the 32-bit offset range")
    return offsets


def transfer_order(sizes: Sequence[int]) -> list[int]:
    """Catalog indices, largest image first."""
    return sorted(range(len(sizes)), key=lambda index: sizes[index], reverse=True)


__all__ = [
    "IMAGE_EXTS",
    "MAX_IMAGES",
    "ImageEntry",
    "ImageCatalog",
    "is_image_name",
    "image_offsets",
    "transfer_order",
]
