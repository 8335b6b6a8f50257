"""API source normalization (specification, documentation, repository and text inputs)."""

from .normalizer import SourceNormalizer
from .openapi import load_document, normalize_openapi
from .text_parsers import auto_parse

__all__ = [
    "SourceNormalizer",
    "load_document",
    "normalize_openapi",
    "auto_parse",
]
