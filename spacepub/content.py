from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import yaml

from .tree import FENCE_RE, ParseTree, collect_nodes_of_type, find_child_of_type, parse_markdown, render_to_text
from .utils import parse_list

if TYPE_CHECKING:
    from .space import Space

SHARE_KEY = "$share"
YAML_LANGUAGES = {"yaml", "yml"}


def parse_front_matter(text: str) -> tuple[dict, str]:
    clean_text = text.lstrip("\ufeff")
    lines = clean_text.splitlines()
    if not lines or lines[0].strip() != "---":
        return {}, clean_text

    end = None
    for i in range(1, len(lines)):
        if lines[i].strip() in {"---", "..."}:
            end = i
            break
    if end is None:
        return {}, clean_text

    body = "\n".join(lines[end + 1 :])
    try:
        meta = yaml.safe_load("\n".join(lines[1:end]))
    except yaml.YAMLError:
        return {}, body
    if not isinstance(meta, dict):
        return {}, body
    return meta, body


def page_tags(meta: dict, body: str) -> list[str]:
    tags = parse_list(meta.get("tags"))
    for node in collect_nodes_of_type(parse_markdown(body), "Hashtag"):
        tags.append(render_to_text(node).lstrip("#"))
    return list(dict.fromkeys(tags))


def page_share(meta: dict) -> object:
    return meta.get(SHARE_KEY)


def code_block_language(node: ParseTree) -> str:
    fence = find_child_of_type(node, "CodeFence")
    if fence is None:
        return ""
    line = render_to_text(fence).strip()
    match = FENCE_RE.match(line)
    info = line[match.end() :] if match else ""
    return info.strip().split(" ")[0].lower() if info.strip() else ""


def code_block_body(node: ParseTree) -> str:
    code = find_child_of_type(node, "CodeText")
    return render_to_text(code) if code is not None else ""


def _first_code_block(text: str, languages: Optional[set[str]] = None) -> Optional[ParseTree]:
    for node in collect_nodes_of_type(parse_markdown(text), "FencedCode"):
        if languages is None or code_block_language(node) in languages:
            return node
    return None


def read_yaml_page(space: Space, name: str) -> object:
    node = _first_code_block(space.read_page(name), YAML_LANGUAGES)
    if node is None:
        raise ValueError(f"No yaml block found on page {name}")
    return yaml.safe_load(code_block_body(node))


def read_code_block_page(space: Space, name: str) -> str:
    node = _first_code_block(space.read_page(name))
    if node is None:
        raise ValueError(f"No code block found on page {name}")
    return code_block_body(node)
