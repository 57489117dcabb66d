from __future__ import annotations

import argparse
import os
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Mapping

from jinja2 import TemplateError

from .config import CONFIG_PAGE, PublishConfig, load_config, load_publish_config
from .content import read_code_block_page
from .manifest import build_manifest, write_manifest
from .pages import CopiedAttachments, generate_page, page_html_path, page_md_path
from .render import DEFAULT_TEMPLATE, compile_template, read_template
from .selection import select_published_pages
from .space import Space
from .utils import parse_int, posix_join

DEST_DIR = "_public"
MAX_WORKERS = 32


@dataclass
class PublishResult:
    dest_dir: str
    config: PublishConfig
    published: list[str] = field(default_factory=list)
    manifest: list[dict] = field(default_factory=list)


def clean_dest_dir(space: Space, dest_dir: str) -> None:
    print("Cleaning up destination directory")
    prefix = f"{dest_dir.rstrip('/')}/"
    for meta in space.list_attachments():
        if meta.name.startswith(prefix):
            space.delete_attachment(meta.name)


def load_template(space: Space, config: PublishConfig) -> Callable[[Mapping], str]:
    source = read_template(DEFAULT_TEMPLATE)
    if config.template:
        source = read_code_block_page(space, config.template)
    return compile_template(source)


def publish_all(
    space: Space,
    dest_dir: str = DEST_DIR,
    config_page: str = CONFIG_PAGE,
    workers: int = 1,
) -> PublishResult:
    """Regenerate the whole static site under ``dest_dir``.

    Prior output is removed first, so every run starts from an empty
    destination. Any error other than an unreadable attachment or a missing
    configuration page aborts the run and leaves the partial output in place.
    """
    dest_dir = dest_dir.strip("/")
    if not dest_dir or dest_dir == ".":
        raise ValueError("Refusing to publish into the space root.")
    space.ignore.add(dest_dir)

    config = load_publish_config(space, config_page)
    print(f"Publishing to {dest_dir}")
    pages = space.list_pages()

    clean_dest_dir(space, dest_dir)

    published = select_published_pages(pages, config)
    names = sorted(published)
    print(f"Publishing {len(names)} page(s)")

    template = load_template(space, config)
    copied = CopiedAttachments()

    def render_page(name: str) -> None:
        generate_page(
            space,
            name,
            page_html_path(dest_dir, name),
            page_md_path(dest_dir, name),
            published,
            config,
            dest_dir,
            template,
            copied,
        )

    workers = max(1, min(int(workers or 1), MAX_WORKERS))
    if workers <= 1 or len(names) <= 1:
        for name in names:
            render_page(name)
    else:
        with ThreadPoolExecutor(max_workers=min(workers, len(names))) as executor:
            list(executor.map(render_page, names))

    if config.index_page:
        print(f"Writing {config.index_page}")
        generate_page(
            space,
            config.index_page,
            posix_join(dest_dir, "index.html"),
            posix_join(dest_dir, "index.md"),
            published,
            config,
            dest_dir,
            template,
            copied,
        )

    manifest: list[dict] = []
    if config.generate_index_json:
        manifest = build_manifest(space, dest_dir)
        print(f"Writing {write_manifest(space, dest_dir, manifest)}")

    return PublishResult(dest_dir=dest_dir, config=config, published=names, manifest=manifest)


def publish_all_command(
    space: Space, notify: Callable[[str], object] = print, **options: object
) -> PublishResult:
    notify("Publishing...")
    result = publish_all(space, **options)
    notify("Done!")
    return result


def main() -> None:
    pre_parser = argparse.ArgumentParser(add_help=False)
    pre_parser.add_argument(
        "--config",
        default="publish.toml",
        help="Path to publish settings file (TOML/YAML/JSON).",
    )
    pre_args, _ = pre_parser.parse_known_args()
    config = load_config(Path(pre_args.config))

    def cfg_value(key: str, default: object) -> object:
        value = config.get(key)
        return default if value is None else value

    def cfg_str(key: str, default: str) -> str:
        return str(cfg_value(key, default))

    def cfg_int(key: str, default: int) -> int:
        return parse_int(cfg_value(key, default), default)

    parser = argparse.ArgumentParser(description="Publish pages of a markdown space as a static site.")
    parser.add_argument("--config", default=pre_args.config, help="Path to publish settings file (TOML/YAML/JSON).")
    parser.add_argument("--space", default=cfg_str("space", "."), help="Directory holding the space's pages.")
    parser.add_argument(
        "--output",
        default=cfg_str("output", DEST_DIR),
        help="Output directory, relative to the space.",
    )
    parser.add_argument(
        "--config-page",
        default=cfg_str("config_page", CONFIG_PAGE),
        help="Page holding the YAML publish configuration.",
    )
    parser.add_argument(
        "--build-workers",
        default=cfg_int("build_workers", 1),
        type=int,
        help="Number of worker threads for page generation (0 = auto).",
    )
    args = parser.parse_args()

    space_dir = Path(args.space)
    if not space_dir.is_dir():
        print(f"Space directory not found: {space_dir}", file=sys.stderr)
        sys.exit(1)
    workers = args.build_workers
    if workers <= 0:
        workers = os.cpu_count() or 1

    start = time.perf_counter()
    try:
        result = publish_all_command(
            Space(space_dir, ignore=[args.output]),
            dest_dir=args.output,
            config_page=args.config_page,
            workers=workers,
        )
    except (OSError, ValueError, TemplateError) as exc:
        print(f"Publish failed: {exc}", file=sys.stderr)
        sys.exit(1)
    elapsed = time.perf_counter() - start
    print(f"Publish completed in {elapsed:.2f}s.")
    print(f"Site generated in: {space_dir / result.dest_dir}")


if __name__ == "__main__":
    main()
