from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from .config import PublishConfig
from .tree import (
    DELETE,
    KEEP,
    ParseTree,
    ReplaceWithText,
    Rewrite,
    collect_nodes_of_type,
    find_child_of_type,
    render_to_text,
    replace_nodes_matching,
)

COMMENT_TYPES = {"Comment", "CommentBlock"}
SCHEME_SEPARATOR = "://"


@dataclass
class TransformResult:
    text: str
    attachments: list[str] = field(default_factory=list)


def wiki_link_target(node: ParseTree) -> Optional[str]:
    """Target page of a wiki link with any ``@`` qualifier removed."""
    page = find_child_of_type(node, "WikiLinkPage")
    if page is None or not page.children or page.children[0].text is None:
        return None
    return page.children[0].text.split("@")[0]


def rewrite_node(node: ParseTree, published: frozenset[str], config: PublishConfig) -> Rewrite:
    if node.type == "WikiLink":
        target = wiki_link_target(node)
        if target is not None and target not in published:
            return ReplaceWithText(f"_{target}_")
        return KEEP
    if node.type in COMMENT_TYPES:
        return DELETE
    if node.type == "Hashtag" and config.remove_hashtags:
        return DELETE
    return KEEP


def clean_markdown(tree: ParseTree, config: PublishConfig, published: frozenset[str]) -> str:
    replace_nodes_matching(tree, lambda node: rewrite_node(node, published, config))
    return render_to_text(tree).strip()


def collect_attachments(tree: ParseTree) -> list[str]:
    attachments = []
    for node in collect_nodes_of_type(tree, "URL"):
        url = render_to_text(node)
        if SCHEME_SEPARATOR not in url:
            attachments.append(url)
    return attachments


def transform_document(tree: ParseTree, published: frozenset[str], config: PublishConfig) -> TransformResult:
    """Rewrite ``tree`` in place for publishing.

    Returns the cleaned markdown text together with the local attachments the
    rewritten page still references.
    """
    text = clean_markdown(tree, config, published)
    return TransformResult(text=text, attachments=collect_attachments(tree))
