from docindex.config import settings
from docindex.services.crawler.base import PageContent
from docindex.services.store.base import ChunkDraft


def chunk_text(
    text: str,
    max_chars: int = None,
    overlap: int = None,
) -> list[str]:
    """Split text into overlapping character windows.

    Window i covers [i * (max_chars - overlap), i * (max_chars - overlap) + max_chars).
    Splitting stops with the first window that reaches the end of the text,
    so text no longer than max_chars yields exactly one chunk. Chunks are
    trimmed but not filtered.
    """
    if max_chars is None:
        max_chars = settings.chunk_max_chars
    if overlap is None:
        overlap = settings.chunk_overlap
    if overlap < 0 or overlap >= max_chars:
        raise ValueError("overlap must be in [0, max_chars)")

    if not text:
        return []

    step = max_chars - overlap
    chunks = []
    start = 0
    while start < len(text):
        end = start + max_chars
        chunks.append(text[start:end].strip())
        if end >= len(text):
            break
        start += step
    return chunks


def build_chunks(
    page: PageContent,
    max_chars: int = None,
    overlap: int = None,
    min_text_chars: int = None,
) -> list[ChunkDraft]:
    """Text windows first, then one chunk per code block, numbered in order.

    Text windows of min_text_chars or fewer characters are dropped. Raw
    source-file pages contribute their code chunk only.
    """
    if min_text_chars is None:
        min_text_chars = settings.min_text_chunk_chars

    drafts: list[ChunkDraft] = []
    if not page.code_file:
        for window in chunk_text(page.content, max_chars, overlap):
            if len(window) > min_text_chars:
                drafts.append(
                    ChunkDraft(content=window, chunk_type="text", position=len(drafts))
                )

    for block in page.code_blocks:
        drafts.append(
            ChunkDraft(
                content=block.content,
                chunk_type="code",
                position=len(drafts),
                language=block.language,
                heading_path=block.heading_path,
            )
        )
    return drafts
