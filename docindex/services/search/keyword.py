from docindex.services.store.base import StoredChunk

TITLE_BOOST = 2
SCORE_SCALE = 10.0


def keyword_score(query: str, chunk: StoredChunk) -> float:
    """Term-occurrence score of a chunk, scaled into [0, 1].

    Each query term counts once per occurrence in the chunk content, plus a
    flat boost when the term appears in the page title.
    """
    terms = [t for t in query.lower().split() if t]
    if not terms:
        return 0.0

    text = chunk.content.lower()
    title = (chunk.title or "").lower()
    score = 0
    for term in terms:
        score += text.count(term)
        if term in title:
            score += TITLE_BOOST
    return min(1.0, score / SCORE_SCALE)


def keyword_search(
    query: str, chunks: list[StoredChunk]
) -> list[tuple[StoredChunk, float]]:
    """Score chunks by keyword matches, highest first. Zero scores are dropped."""
    scored = []
    for chunk in chunks:
        score = keyword_score(query, chunk)
        if score > 0:
            scored.append((chunk, score))
    scored.sort(key=lambda item: item[1], reverse=True)
    return scored
