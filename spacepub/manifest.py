from __future__ import annotations

import json

from .space import Space
from .utils import posix_join

MANIFEST_NAME = "index.json"
HTML_CONTENT_TYPE = "text/html"


def build_manifest(space: Space, dest_dir: str) -> list[dict]:
    prefix = f"{dest_dir.rstrip('/')}/"
    entries = []
    for meta in space.list_attachments():
        if not meta.name.startswith(prefix):
            continue
        # generated pages are not downloadable assets
        if meta.content_type == HTML_CONTENT_TYPE:
            continue
        entries.append(
            {
                "name": meta.name[len(prefix) :],
                "size": meta.size,
                "contentType": meta.content_type,
                "lastModified": meta.last_modified,
                "perm": "ro",
            }
        )
    return sorted(entries, key=lambda entry: entry["name"])


def write_manifest(space: Space, dest_dir: str, entries: list[dict]) -> str:
    path = posix_join(dest_dir, MANIFEST_NAME)
    space.write_attachment(path, json.dumps(entries, indent=2).encode("utf-8"))
    return path
