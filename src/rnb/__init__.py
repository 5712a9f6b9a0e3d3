from .container import DecodedContainer, decode_container, encode_header
from .convert import ConversionResult, epub_to_rnb
from .errors import (
    CapacityError,
    ContainerFormatError,
    EncodingError,
    MarkupError,
    ReferenceResolutionError,
    RnbError,
    StructureError,
    UnresolvedGlyphError,
    UnresolvedImageError,
)
from .markup import parse_document
from .merge import merge_paragraphs
from .model import ImageBlock, ImageParagraph, Ruby, TextBlock, TextParagraph

__all__ = [
    "epub_to_rnb",
    "ConversionResult",
    "parse_document",
    "merge_paragraphs",
    "encode_header",
    "decode_container",
    "DecodedContainer",
    "Ruby",
    "TextParagraph",
    "ImageParagraph",
    "TextBlock",
    "ImageBlock",
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
