from __future__ import annotations

import copy
import posixpath
import sys
import threading
from typing import Callable, Iterable, Mapping, Optional

from .config import PublishConfig
from .render import render_markdown_to_html
from .space import PAGE_SUFFIX, Space
from .transform import transform_document
from .tree import parse_markdown
from .utils import posix_join


def page_html_path(dest_dir: str, page_name: str) -> str:
    return posix_join(dest_dir, f"{page_name}/index.html")


def page_md_path(dest_dir: str, page_name: str) -> str:
    return posix_join(dest_dir, f"{page_name}{PAGE_SUFFIX}")


class CopiedAttachments:
    """Attachment targets already written during one publish run."""

    def __init__(self) -> None:
        self._targets: set[str] = set()
        self._lock = threading.Lock()

    def claim(self, target: str) -> bool:
        with self._lock:
            if target in self._targets:
                return False
            self._targets.add(target)
            return True


def copy_attachments(
    space: Space,
    attachments: Iterable[str],
    dest_dir: str,
    copied: Optional[CopiedAttachments] = None,
) -> None:
    if copied is None:
        copied = CopiedAttachments()
    for attachment in attachments:
        # pages only reach the output through their cleaned mirror
        if space.is_page_path(posixpath.normpath(attachment.lstrip("/"))):
            print(f"Skipping page link {attachment}: pages are not copied as attachments", file=sys.stderr)
            continue
        try:
            data = space.read_attachment(attachment)
            meta = space.file_meta(attachment)
        except (OSError, ValueError) as exc:
            print(f"Error reading attachment {attachment}: {exc}", file=sys.stderr)
            continue
        target = posix_join(dest_dir, attachment)
        if not copied.claim(target):
            continue
        print(f"Writing {target}")
        space.write_attachment(target, data, last_modified=meta.last_modified)


def generate_page(
    space: Space,
    page_name: str,
    html_path: str,
    md_path: str,
    published: frozenset[str],
    config: PublishConfig,
    dest_dir: str,
    template: Callable[[Mapping], str],
    copied: Optional[CopiedAttachments] = None,
) -> None:
    text = space.read_page(page_name)
    print(f"Writing {page_name}")
    tree = parse_markdown(text)
    result = transform_document(copy.deepcopy(tree), published, config)
    copy_attachments(space, result.attachments, dest_dir, copied)

    source_meta = space.file_meta(f"{page_name}{PAGE_SUFFIX}")
    space.write_attachment(md_path, result.text.encode("utf-8"), last_modified=source_meta.last_modified)

    body = render_markdown_to_html(tree, smart_hard_break=True, attachment_url_prefix="/")
    html_doc = template({"pageName": page_name, "config": config, "body": body})
    space.write_attachment(html_path, html_doc.encode("utf-8"))
