"""Build a version map from upstream release metadata.

Server releases come from the GitHub releases Atom feed and the PyPI index of
the ``frida`` package (the feed only carries recent entries); tooling releases
come from the PyPI index of ``frida-tools``. Each server version is paired with
the nearest tooling release (bounded lookahead, then earlier releases) whose
``frida`` requirement in its PyPI metadata admits that server version.
"""

from __future__ import annotations

import bisect
import itertools
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, Optional, Sequence

from packaging.requirements import InvalidRequirement, Requirement
from packaging.utils import canonicalize_name
from packaging.version import InvalidVersion, Version

from frida_mgr.errors import DownloadFailedError, VersionMapUnreachableError
from frida_mgr.net.http import HttpClient
from frida_mgr.versions.version_map import VersionInfo, VersionMap

logger = logging.getLogger(__name__)

_ATOM_NS = "{http://www.w3.org/2005/Atom}"
MAX_FORWARD_LOOKAHEAD = timedelta(days=21)


@dataclass(frozen=True)
class Release:
    version: Version
    published_at: datetime


def _parse_ts(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    s = raw.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_version(tag: str, *, include_prerelease: bool) -> Optional[Version]:
    tag = tag.strip()
    if tag.startswith("v"):
        tag = tag[1:]
    try:
        v = Version(tag)
    except InvalidVersion:
        return None
    if v.is_prerelease and not include_prerelease:
        return None
    return v


def _tag_from_title(title: str) -> Optional[str]:
    # "Frida 17.5.2", "Release v16.6.6", "14.5.0: Require Frida >= 17.5.0"
    for token in title.split():
        token = token.strip().rstrip(":,;)")
        if token.startswith("v"):
            token = token[1:]
        if re.fullmatch(r"\d+\.\d+\.\d+(?:[-.+]?[0-9A-Za-z.]+)?", token):
            return token
    return None


def dedup_releases(releases: Iterable[Release]) -> list[Release]:
    """One entry per version (latest timestamp wins), sorted by publish date."""
    by_version: Dict[Version, Release] = {}
    for r in releases:
        prev = by_version.get(r.version)
        if prev is None or r.published_at > prev.published_at:
            by_version[r.version] = r
    return sorted(by_version.values(), key=lambda r: (r.published_at, r.version))


def parse_atom_releases(xml_text: str, *, include_prerelease: bool = False) -> list[Release]:
    try:
        root = ET.fromstring(xml_text.strip())
    except ET.ParseError as e:
        raise DownloadFailedError(f"failed to parse Atom feed: {e}") from e

    out: list[Release] = []
    for entry in root.iter(f"{_ATOM_NS}entry"):
        title = (entry.findtext(f"{_ATOM_NS}title") or "").strip()
        lowered = title.lower()
        if not include_prerelease and ("pre-release" in lowered or "prerelease" in lowered):
            continue

        published_at = _parse_ts(entry.findtext(f"{_ATOM_NS}published")) or _parse_ts(
            entry.findtext(f"{_ATOM_NS}updated")
        )
        if published_at is None:
            continue

        tag: Optional[str] = None
        for link in entry.findall(f"{_ATOM_NS}link"):
            href = link.get("href") or ""
            if "/tag/" in href:
                tag = href.rsplit("/tag/", 1)[1]
                break
        if tag is None:
            tag = _tag_from_title(title)
        if tag is None:
            continue

        version = _parse_version(tag, include_prerelease=include_prerelease)
        if version is None:
            continue
        out.append(Release(version=version, published_at=published_at))
    return dedup_releases(out)


def parse_pypi_releases(index: Any, *, include_prerelease: bool = False) -> list[Release]:
    if not isinstance(index, dict) or not isinstance(index.get("releases"), dict):
        raise DownloadFailedError("PyPI index has no 'releases' object")

    out: list[Release] = []
    for raw_version, files in index["releases"].items():
        version = _parse_version(str(raw_version), include_prerelease=include_prerelease)
        if version is None or not isinstance(files, list):
            continue
        stamps = []
        for f in files:
            if not isinstance(f, dict) or f.get("yanked"):
                continue
            ts = _parse_ts(f.get("upload_time_iso_8601") or f.get("upload_time"))
            if ts is not None:
                stamps.append(ts)
        if stamps:
            out.append(Release(version=version, published_at=min(stamps)))
    return dedup_releases(out)


def frida_requirement_allows(
    requires_dist: Optional[Sequence[str]], frida_version: Version
) -> bool:
    """Whether a frida-tools release's ``requires_dist`` admits ``frida_version``.

    Missing metadata counts as compatible. Requirements behind a marker that
    does not hold here (an extra, another platform) are ignored.
    """

    if not requires_dist:
        return True
    for raw in requires_dist:
        try:
            req = Requirement(raw)
        except InvalidRequirement:
            continue
        if canonicalize_name(req.name) != "frida":
            continue
        if req.marker is not None and not req.marker.evaluate({"extra": ""}):
            continue
        if not req.specifier.contains(frida_version, prereleases=True):
            return False
    return True


def select_compatible_tools_release(
    tools_by_date: Sequence[Release],
    frida_version: Version,
    published_at: datetime,
    requires_dist_for: Callable[[Version], Optional[Sequence[str]]],
) -> Optional[Release]:
    """Pick the frida-tools release to pair with a server release.

    Releases inside the lookahead window after ``published_at`` are tried
    oldest first, then earlier releases newest first; the first whose ``frida``
    requirement admits ``frida_version`` wins. When none does, the
    closest-by-time release is returned so the server still gets a mapping.
    """

    if not tools_by_date:
        return None
    dates = [r.published_at for r in tools_by_date]
    idx = bisect.bisect_left(dates, published_at)
    deadline = published_at + MAX_FORWARD_LOOKAHEAD
    forward = itertools.takewhile(lambda r: r.published_at <= deadline, tools_by_date[idx:])
    for candidate in itertools.chain(forward, reversed(tools_by_date[:idx])):
        if frida_requirement_allows(requires_dist_for(candidate.version), frida_version):
            return candidate
    fallback = tools_by_date[idx] if idx < len(tools_by_date) else tools_by_date[-1]
    logger.warning(
        "no frida-tools release declares support for frida %s; using %s",
        frida_version,
        fallback.version,
    )
    return fallback


def build_default_aliases(versions: Iterable[str]) -> Dict[str, str]:
    parsed = []
    for v in versions:
        try:
            parsed.append(Version(v))
        except InvalidVersion:
            continue
    parsed.sort()

    aliases: Dict[str, str] = {}
    if not parsed:
        return aliases
    latest = parsed[-1]
    aliases["latest"] = str(latest)
    aliases["stable"] = str(latest)
    lts_major = max(latest.major - 1, 0)
    for v in reversed(parsed):
        if v.major == lts_major:
            aliases["lts"] = str(v)
            break
    return aliases


@dataclass(frozen=True)
class ReleaseSources:
    releases_feed_url: str = "https://github.com/frida/frida/releases.atom"
    server_index_url: str = "https://pypi.org/pypi/frida/json"
    tools_index_url: str = "https://pypi.org/pypi/frida-tools/json"
    tools_release_url_template: str = "https://pypi.org/pypi/frida-tools/{version}/json"


def fetch_requires_dist(http: HttpClient, url: str) -> Optional[list[str]]:
    """``info.requires_dist`` of one PyPI release, or None when unavailable."""

    try:
        data = http.fetch_json(url)
    except DownloadFailedError as e:
        logger.warning("release metadata unavailable, assuming compatible: %s", e)
        return None
    info = data.get("info") if isinstance(data, dict) else None
    reqs = info.get("requires_dist") if isinstance(info, dict) else None
    if not isinstance(reqs, list):
        return None
    return [str(r) for r in reqs]


def fetch_version_map(
    http: HttpClient,
    *,
    sources: ReleaseSources = ReleaseSources(),
    include_prerelease: bool = False,
    now: Optional[datetime] = None,
) -> VersionMap:
    """Fetch upstream metadata and build a complete map.

    Raises VersionMapUnreachableError when the sources cannot be fetched or
    yield no usable mapping.
    """

    server: list[Release] = []
    errors: list[str] = []
    try:
        server.extend(
            parse_atom_releases(
                http.fetch_text(sources.releases_feed_url), include_prerelease=include_prerelease
            )
        )
    except DownloadFailedError as e:
        logger.warning("release feed unavailable: %s", e)
        errors.append(str(e))
    try:
        server.extend(
            parse_pypi_releases(
                http.fetch_json(sources.server_index_url), include_prerelease=include_prerelease
            )
        )
    except DownloadFailedError as e:
        logger.warning("server index unavailable: %s", e)
        errors.append(str(e))
    if not server:
        raise VersionMapUnreachableError(
            "no server releases could be fetched: " + "; ".join(errors or ["empty result"])
        )

    try:
        tools = parse_pypi_releases(
            http.fetch_json(sources.tools_index_url), include_prerelease=include_prerelease
        )
    except DownloadFailedError as e:
        raise VersionMapUnreachableError(f"tooling index unavailable: {e}") from e

    requires_cache: Dict[Version, Optional[list[str]]] = {}

    def requires_dist_for(version: Version) -> Optional[list[str]]:
        if version not in requires_cache:
            url = sources.tools_release_url_template.format(version=version)
            requires_cache[version] = fetch_requires_dist(http, url)
        return requires_cache[version]

    mappings: Dict[str, VersionInfo] = {}
    for rel in dedup_releases(server):
        match = select_compatible_tools_release(
            tools, rel.version, rel.published_at, requires_dist_for
        )
        if match is None:
            continue
        mappings[str(rel.version)] = VersionInfo(
            tools=str(match.version),
            released=rel.published_at.date().isoformat(),
        )

    if not mappings:
        raise VersionMapUnreachableError("version map refresh produced 0 entries")

    stamp = (now or datetime.now(timezone.utc)).replace(microsecond=0).isoformat()
    return VersionMap(
        mappings=mappings,
        aliases=build_default_aliases(mappings),
        last_refreshed=stamp,
        source=" + ".join(
            (sources.releases_feed_url, sources.server_index_url, sources.tools_index_url)
        ),
    )
