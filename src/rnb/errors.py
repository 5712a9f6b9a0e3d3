from __future__ import annotations


class RnbError(RuntimeError):
    """Base class for every fatal conversion error."""


class StructureError(RnbError):
    """Raised when the EPUB container or package document is unusable."""


class MarkupError(RnbError):
    """Raised when a text document contains markup the parser cannot place."""


class ReferenceResolutionError(RnbError):
    """Raised when an inline reference does not resolve against the loaded tables."""


class UnresolvedGlyphError(ReferenceResolutionError):
    """Raised when a gaiji image has no entry in the glyph table."""


class UnresolvedImageError(ReferenceResolutionError):
    """Raised when an illustration does not point at a catalogued image."""


class CapacityError(RnbError):
    """Raised when a value does not fit the container's field widths."""


class EncodingError(RnbError):
    """Raised when a block would collide with reserved bits of the wire format."""


class ContainerFormatError(RnbError):
    """Raised when decoding a truncated or inconsistent .rnb container."""


__all__ = [
    "RnbError",
    "StructureError",
    "MarkupError",
    "ReferenceResolutionError",
    "UnresolvedGlyphError",
    "UnresolvedImageError",
    "CapacityError",
    "EncodingError",
    "ContainerFormatError",
]
