from __future__ import annotations

import mimetypes
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from .content import page_share, page_tags, parse_front_matter

PAGE_SUFFIX = ".md"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

mimetypes.add_type("text/markdown", ".md")


@dataclass
class PageRecord:
    name: str
    tags: list[str] = field(default_factory=list)
    share: object = None
    last_modified: int = 0


@dataclass(frozen=True)
class FileMeta:
    name: str
    size: int
    content_type: str
    last_modified: int


def guess_content_type(name: str) -> str:
    content_type, _ = mimetypes.guess_type(name)
    return content_type or DEFAULT_CONTENT_TYPE


class Space:
    """A directory of markdown pages and attachments.

    Pages are ``*.md`` files named by their path relative to the root without
    the suffix. Every other file, and every markdown file below one of the
    ``ignore`` directories, is an attachment named by its relative path.
    Hidden files and directories are not part of the space.
    """

    def __init__(self, root: Path, ignore: Iterable[str] = ()) -> None:
        self.root = Path(root)
        self.ignore = {item.strip("/") for item in ignore if item.strip("/")}

    def _resolve(self, name: str) -> Path:
        path = (self.root / name.lstrip("/")).resolve()
        root = self.root.resolve()
        if path == root or not path.is_relative_to(root):
            raise ValueError(f"Refusing to access path outside space: {name}")
        return path

    def _rel(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def _files(self) -> list[Path]:
        if not self.root.exists():
            return []
        files = []
        for path in self.root.rglob("*"):
            rel_parts = path.relative_to(self.root).parts
            if any(part.startswith(".") for part in rel_parts):
                continue
            if path.is_file():
                files.append(path)
        return sorted(files, key=lambda p: p.relative_to(self.root).as_posix())

    def is_page_path(self, rel: str) -> bool:
        if not rel.endswith(PAGE_SUFFIX):
            return False
        return not any(rel == item or rel.startswith(f"{item}/") for item in self.ignore)

    def page_path(self, name: str) -> Path:
        return self._resolve(f"{name}{PAGE_SUFFIX}")

    def list_pages(self) -> list[PageRecord]:
        pages = []
        for path in self._files():
            rel = self._rel(path)
            if not self.is_page_path(rel):
                continue
            try:
                text = path.read_text(encoding="utf-8")
            except UnicodeDecodeError as exc:
                print(f"Skipping unreadable page {rel}: {exc}", file=sys.stderr)
                continue
            meta, body = parse_front_matter(text)
            pages.append(
                PageRecord(
                    name=rel[: -len(PAGE_SUFFIX)],
                    tags=page_tags(meta, body),
                    share=page_share(meta),
                    last_modified=path.stat().st_mtime_ns // 1_000_000,
                )
            )
        return pages

    def read_page(self, name: str) -> str:
        path = self.page_path(name)
        if not path.is_file():
            raise FileNotFoundError(f"Page not found: {name}")
        return path.read_text(encoding="utf-8")

    def list_attachments(self) -> list[FileMeta]:
        attachments = []
        for path in self._files():
            rel = self._rel(path)
            if self.is_page_path(rel):
                continue
            attachments.append(self._meta(path, rel))
        return attachments

    def _meta(self, path: Path, rel: str) -> FileMeta:
        stat = path.stat()
        return FileMeta(
            name=rel,
            size=stat.st_size,
            content_type=guess_content_type(rel),
            last_modified=stat.st_mtime_ns // 1_000_000,
        )

    def file_meta(self, name: str) -> FileMeta:
        path = self._resolve(name)
        return self._meta(path, path.relative_to(self.root.resolve()).as_posix())

    def read_attachment(self, name: str) -> bytes:
        return self._resolve(name).read_bytes()

    def write_attachment(self, name: str, data: bytes, last_modified: Optional[int] = None) -> None:
        path = self._resolve(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        if last_modified is not None:
            stamp = last_modified * 1_000_000
            os.utime(path, ns=(stamp, stamp))

    def delete_attachment(self, name: str) -> None:
        path = self._resolve(name)
        path.unlink()
        root = self.root.resolve()
        parent = path.parent
        while parent != root and not any(parent.iterdir()):
            parent.rmdir()
            parent = parent.parent
