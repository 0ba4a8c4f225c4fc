from frida_mgr.cache.artifacts import (
    ArtifactCache,
    CacheKey,
    CachedArtifact,
    DownloadSource,
    LocalSource,
    SourcePolicy,
)

__all__ = [
    "ArtifactCache",
    "CacheKey",
    "CachedArtifact",
    "DownloadSource",
    "LocalSource",
    "SourcePolicy",
]
