class DocIndexError(Exception):
    """Base class for errors raised by the indexing pipeline."""


class SourceNotFoundError(DocIndexError):
    def __init__(self, source_id: int):
        super().__init__(f"Docs source not found: {source_id}")
        self.source_id = source_id


class InvalidSourceUrlError(DocIndexError, ValueError):
    def __init__(self, url: str):
        super().__init__(f"Invalid documentation URL: {url!r}")
        self.url = url


class DuplicateSourceError(DocIndexError):
    def __init__(self, url: str):
        super().__init__(f"Documentation source already exists for URL: {url}")
        self.url = url


class EmbeddingProviderError(DocIndexError):
    """The embedding backend returned an error or an unusable response."""


class EmbeddingInProgressError(DocIndexError):
    def __init__(self, source_id: int):
        super().__init__(f"Embedding generation already running for source {source_id}")
        self.source_id = source_id
