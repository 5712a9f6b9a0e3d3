from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from .errors import StructureError
from .model import final_segment

GAIJI_FILENAME = "gaiji.json"


@dataclass(frozen=True)
class GlyphTable:
    """Replacement text for gaiji images, keyed by the image's file name."""

    replacements: Mapping[str, str] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.replacements)

    def lookup(self, src: str) -> str | None:
        replacement = self.replacements.get(final_segment(src))
        # An empty replacement is as good as no mapping at all.
        return replacement or None

    def merged(self, other: "GlyphTable") -> "GlyphTable":
        combined = dict(self.replacements)
        combined.update(other.replacements)
        return GlyphTable(combined)

    @classmethod
    def from_payload(cls, payload: object, *, source: str = GAIJI_FILENAME) -> "GlyphTable":
        if isinstance(payload, Mapping):
            pairs = list(payload.items())
        elif isinstance(payload, list):
            pairs = []
            for entry in payload:
                if not isinstance(entry, (list, tuple)) or len(entry) != 2:
                    raise StructureError(f"{source}: expected [name, replacement] pairs, got {entry!r}")
                pairs.append((entry[0], entry[1]))
        else:
            raise StructureError(f"{source}: expected an object mapping names to replacements")
        replacements: dict[str, str] = {}
        for name, replacement in pairs:
            if not isinstance(name, str) or not isinstance(replacement, str):
                raise StructureError(f"{source}: non-string gaiji entry {name!r}: {replacement!r}")
            replacements[name] = replacement
        return cls(replacements)

    @classmethod
    def from_json(cls, text: str, *, source: str = GAIJI_FILENAME) -> "GlyphTable":
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StructureError(f"{source}: invalid JSON ({exc})") from exc
        return cls.from_payload(payload, source=source)


def load_glyph_file(path: Path) -> GlyphTable:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise StructureError(f"Cannot read gaiji table {path}: {exc}") from exc
    return GlyphTable.from_json(text, source=str(path))


__all__ = ["GAIJI_FILENAME", "GlyphTable", "load_glyph_file"]
