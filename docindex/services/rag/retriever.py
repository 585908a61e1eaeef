import logging
from dataclasses import dataclass, field
from urllib.parse import urlparse

from docindex.config import settings
from docindex.services.search.semantic import SearchEngine, SearchResult
from docindex.services.store.base import DocsStore

logger = logging.getLogger("docindex.rag.retriever")


@dataclass
class DocsContext:
    """Documentation excerpts selected for an assistant prompt."""

    chunks: list[SearchResult] = field(default_factory=list)
    context_text: str = ""
    sources_used: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "chunks": [c.to_dict() for c in self.chunks],
            "context_text": self.context_text,
            "sources_used": self.sources_used,
        }


async def retrieve_context(
    engine: SearchEngine,
    store: DocsStore,
    query: str,
    max_chunks: int = None,
    min_similarity: float = None,
    include_code: bool = True,
    source_ids: list[int] | None = None,
) -> DocsContext:
    """Collect the most relevant chunks across completed sources.

    Preferred source_ids are narrowed to the completed ones.

    Each source is searched for up to 2 * max_chunks results, which are
    merged, cut at min_similarity and ranked, highest first.
    """
    max_chunks = max_chunks or settings.context_max_chunks
    if min_similarity is None:
        min_similarity = settings.context_min_similarity

    sources = await store.list_sources(status="completed")
    if not sources:
        return DocsContext()

    completed_ids = [s.id for s in sources]
    if source_ids:
        ids = [i for i in source_ids if i in completed_ids]
        ignored = set(source_ids) - set(ids)
        if ignored:
            logger.info("Ignoring sources that are not completed: %s", sorted(ignored))
    else:
        ids = completed_ids
    chunk_type = "all" if include_code else "text"

    results: list[SearchResult] = []
    for source_id in ids:
        results.extend(
            await engine.search(
                query, source_id=source_id, chunk_type=chunk_type, limit=max_chunks * 2
            )
        )

    results = [r for r in results if r.similarity >= min_similarity]
    results.sort(key=lambda r: r.similarity, reverse=True)
    top = results[:max_chunks]

    titles_by_host = {urlparse(s.url).netloc: s.title for s in sources if s.title}
    sources_used: list[str] = []
    for result in top:
        host = urlparse(result.url).netloc
        name = titles_by_host.get(host) or host
        if name not in sources_used:
            sources_used.append(name)

    logger.info("Retrieved %d context chunks for query '%s'", len(top), query)
    return DocsContext(chunks=top, context_text=build_context_text(top), sources_used=sources_used)


def build_context_text(chunks: list[SearchResult]) -> str:
    if not chunks:
        return ""

    sections = []
    for i, chunk in enumerate(chunks, start=1):
        content = chunk.content
        if chunk.chunk_type == "code" and chunk.language:
            content = f"```{chunk.language}\n{content}\n```"
        sections.append(
            "\n".join(
                [
                    f"## Documentation Context {i}",
                    f"**Source:** {chunk.title} - {chunk.url}",
                    f"**Relevance:** {round(chunk.similarity * 100)}%",
                    "",
                    content,
                ]
            )
        )

    return "\n".join(
        [
            "# Relevant Documentation",
            "",
            "The following documentation excerpts are relevant to your question:",
            "",
            *sections,
        ]
    )


async def is_docs_context_available(store: DocsStore) -> bool:
    """True when at least one completed source has embedded chunks."""
    sources = await store.list_sources(status="completed")
    for source in sources:
        if await store.find_chunks_with_embedding(source.id):
            return True
    return False


async def available_sources_summary(store: DocsStore) -> str:
    sources = await store.list_sources(status="completed")
    if not sources:
        return "No documentation sources are currently indexed."

    lines = ["## Available Documentation Sources", ""]
    for source in sources:
        title = source.title or urlparse(source.url).netloc
        lines.append(f"- **{title}**: {source.crawled_pages or 0} pages indexed from {source.url}")
    lines.append("")
    lines.append("You can reference any of these documentation sources in your responses.")
    return "\n".join(lines)
