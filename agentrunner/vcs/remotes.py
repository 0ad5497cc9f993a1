"""Normalising remote URLs to `owner/repo` slugs and back."""

import re

_SCP_LIKE = re.compile(r"^[\w.\-]+@(?P<host>[\w.\-]+):(?P<path>.+)$")
_URL = re.compile(r"^(?:ssh|https?|git)://(?:[^@/]+@)?(?P<host>[\w.\-]+)(?::\d+)?/(?P<path>.+)$")


def _slug_from_path(path: str) -> str | None:
    path = path.strip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    parts = [p for p in path.split("/") if p]
    if len(parts) != 2:
        return None
    return f"{parts[0]}/{parts[1]}"


def extract_repository_slug(url: str | None) -> str | None:
    """`owner/repo` from an SSH or HTTPS remote URL.

    Accepts `git@host:owner/repo.git`, `ssh://git@host/owner/repo` and
    `https://host/owner/repo(.git)`. Returns None for anything else.
    """
    if not url or not url.strip():
        return None
    url = url.strip()
    match = _SCP_LIKE.match(url) or _URL.match(url)
    if match is None:
        return None
    return _slug_from_path(match.group("path"))


def build_clone_url(slug: str, use_ssh: bool = True, host: str = "github.com") -> str:
    """Clone URL for `owner/repo`."""
    slug = slug.strip().strip("/")
    if slug.endswith(".git"):
        slug = slug[: -len(".git")]
    if use_ssh:
        return f"git@{host}:{slug}.git"
    return f"https://{host}/{slug}.git"
