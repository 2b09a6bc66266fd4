"""Resource reference classification."""

from __future__ import annotations

from dataclasses import dataclass
import posixpath
import re
from urllib.parse import unquote, urlparse

from mergerelay.errors import FetchError, FetchFailureReason

_SHARED_LINK_RE = re.compile(r"^https?://.*dropbox\.com", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class HttpUrl:
    url: str


@dataclass(frozen=True, slots=True)
class CloudSharedLink:
    url: str


@dataclass(frozen=True, slots=True)
class CloudInternalPath:
    path: str


ResourceReference = HttpUrl | CloudSharedLink | CloudInternalPath


def classify_reference(raw: str | None) -> ResourceReference:
    """Classify a raw identifier into a shared link, an internal path or a plain URL."""
    value = (raw or "").strip()
    if _SHARED_LINK_RE.match(value):
        return CloudSharedLink(url=value)
    if value.startswith("/"):
        return CloudInternalPath(path=value)

    parsed = urlparse(value)
    if parsed.scheme.lower() in {"http", "https"} and parsed.netloc:
        return HttpUrl(url=value)

    raise FetchError(
        FetchFailureReason.UNSUPPORTED_REFERENCE,
        "Provide an http(s) URL, a Dropbox shared link or a Dropbox path like /Folder/file.mp4",
    )


def describe_reference(ref: ResourceReference) -> str:
    match ref:
        case CloudSharedLink():
            return "shared_link"
        case CloudInternalPath():
            return "internal_path"
        case HttpUrl():
            return "http_url"


def extension_from_name(name: str | None) -> str:
    """Return the lowercase extension of a file name or URL path, or an empty string."""
    if not name:
        return ""
    _, ext = posixpath.splitext(posixpath.basename(name))
    if not ext or len(ext) > 10 or not ext[1:].isalnum():
        return ""
    return ext.lower()


def extension_from_url(url: str) -> str:
    try:
        path = urlparse(url).path
    except ValueError:
        return ""
    return extension_from_name(unquote(path))


def infer_extension(*candidates: str | None, fallback: str) -> str:
    """Pick the first determinable extension among filenames and URLs."""
    for candidate in candidates:
        if not candidate:
            continue
        ext = extension_from_url(candidate) if "://" in candidate else extension_from_name(candidate)
        if ext:
            return ext
    return fallback
