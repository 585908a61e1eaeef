from docindex.models.chunk import Chunk
from docindex.models.page import Page
from docindex.models.source import Source

__all__ = [
    "Source",
    "Page",
    "Chunk",
]
