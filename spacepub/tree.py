from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional, Union

FENCE_RE = re.compile(r"^(?P<indent>[ \t]*)(`{3,}|~{3,})")
FRONT_MATTER_DELIMS = {"---"}
FRONT_MATTER_END_DELIMS = {"---", "..."}
BOM = "\ufeff"

INLINE_RE = re.compile(
    r"(?P<code>(?P<ticks>`+)[^\n]+?(?P=ticks))"
    r"|(?P<comment><!--.*?-->|%%.*?%%)"
    r"|(?P<wikilink>\[\[(?P<wl_page>[^\[\]|\n]+)(?:(?P<wl_pipe>\|)(?P<wl_alias>[^\[\]\n]*))?\]\])"
    r"|(?P<link>(?P<bang>!?)\[(?P<label>[^\[\]\n]*)\]\((?P<url>[^()\s]+)(?P<title>\s+\"[^\"\n]*\")?\))"
    r"|(?P<naked>\b[A-Za-z][A-Za-z0-9+.-]*://[^\s<>()\[\]]+)"
    r"|(?P<hashtag>(?<![\w#&])#\w[\w/-]*)",
    re.DOTALL,
)


@dataclass
class ParseTree:
    """A node of a parsed markdown page.

    Typed nodes carry ``children``; leaf nodes carry ``text`` only. Joining the
    text of all leaves in order gives back the source the tree was parsed from.
    """

    type: Optional[str] = None
    children: Optional[list[ParseTree]] = None
    text: Optional[str] = None


@dataclass(frozen=True)
class Keep:
    pass


@dataclass(frozen=True)
class Delete:
    pass


@dataclass(frozen=True)
class ReplaceWithText:
    text: str


KEEP = Keep()
DELETE = Delete()
Rewrite = Union[Keep, Delete, ReplaceWithText]


def _node(node_type: str, text: str) -> ParseTree:
    return ParseTree(type=node_type, children=[ParseTree(text=text)])


def _line_end(text: str, pos: int) -> int:
    index = text.find("\n", pos)
    return len(text) if index == -1 else index + 1


def _fence_end(text: str, pos: int, marker: str) -> int:
    while pos < len(text):
        line_end = _line_end(text, pos)
        candidate = text[pos:line_end].strip()
        if candidate and set(candidate) == {marker[0]} and len(candidate) >= len(marker):
            return line_end
        pos = line_end
    return len(text)


def _fenced_code(block: str) -> ParseTree:
    open_end = _line_end(block, 0)
    children = [_node("CodeFence", block[:open_end])]
    body = block[open_end:]
    closing = ""
    lines = body.splitlines(keepends=True)
    if lines:
        last = lines[-1].strip()
        marker = FENCE_RE.match(block).group(2)
        if last and set(last) == {marker[0]} and len(last) >= len(marker):
            closing = lines[-1]
            body = "".join(lines[:-1])
    children.append(_node("CodeText", body))
    if closing:
        children.append(_node("CodeFence", closing))
    return ParseTree(type="FencedCode", children=children)


def _front_matter_end(text: str) -> int:
    first_end = _line_end(text, 0)
    # a leading byte order mark stays inside the FrontMatter node
    if text[:first_end].lstrip(BOM).rstrip("\r\n") not in FRONT_MATTER_DELIMS:
        return 0
    pos = first_end
    while pos < len(text):
        line_end = _line_end(text, pos)
        if text[pos:line_end].rstrip("\r\n") in FRONT_MATTER_END_DELIMS:
            return line_end
        pos = line_end
    return 0


def _inline_node(match: re.Match) -> ParseTree:
    if match.group("code") is not None:
        return _node("InlineCode", match.group(0))
    if match.group("comment") is not None:
        return _node("Comment", match.group(0))
    if match.group("wikilink") is not None:
        children = [_node("WikiLinkMark", "[["), _node("WikiLinkPage", match.group("wl_page"))]
        if match.group("wl_pipe"):
            children.append(_node("WikiLinkMark", "|"))
            children.append(_node("WikiLinkAlias", match.group("wl_alias")))
        children.append(_node("WikiLinkMark", "]]"))
        return ParseTree(type="WikiLink", children=children)
    if match.group("link") is not None:
        is_image = bool(match.group("bang"))
        children = [
            _node("LinkMark", "![" if is_image else "["),
            _node("LinkLabel", match.group("label")),
            _node("LinkMark", "]("),
            _node("URL", match.group("url")),
        ]
        if match.group("title"):
            children.append(_node("LinkTitle", match.group("title")))
        children.append(_node("LinkMark", ")"))
        return ParseTree(type="Image" if is_image else "Link", children=children)
    if match.group("naked") is not None:
        return _node("NakedURL", match.group(0))
    return _node("Hashtag", match.group(0))


def parse_inline(text: str) -> list[ParseTree]:
    nodes: list[ParseTree] = []
    pos = 0
    for match in INLINE_RE.finditer(text):
        if match.start() > pos:
            nodes.append(ParseTree(text=text[pos : match.start()]))
        nodes.append(_inline_node(match))
        pos = match.end()
    if pos < len(text):
        nodes.append(ParseTree(text=text[pos:]))
    return nodes


def parse_markdown(text: str) -> ParseTree:
    """Parse page text into a lossless tree.

    Front matter, fenced code and block comments are kept as opaque blocks;
    the remaining text is split into inline nodes (links, wiki links, hashtags,
    comments, code spans and naked URLs) separated by plain text leaves.
    """
    children: list[ParseTree] = []
    pos = _front_matter_end(text)
    if pos:
        children.append(_node("FrontMatter", text[:pos]))
    text_start = pos

    def flush(end: int) -> None:
        if end > text_start:
            children.extend(parse_inline(text[text_start:end]))

    while pos < len(text):
        line_end = _line_end(text, pos)
        line = text[pos:line_end].rstrip("\r\n")
        fence = FENCE_RE.match(line)
        if fence:
            block_end = _fence_end(text, line_end, fence.group(2))
            flush(pos)
            children.append(_fenced_code(text[pos:block_end]))
            pos = text_start = block_end
            continue
        stripped = line.lstrip()
        if stripped.startswith("<!--"):
            close = text.find("-->", pos + line.index("<!--") + 4)
            if close != -1:
                close_line_end = _line_end(text, close)
                if not text[close + 3 : close_line_end].strip():
                    flush(pos)
                    children.append(_node("CommentBlock", text[pos:close_line_end]))
                    pos = text_start = close_line_end
                    continue
        pos = line_end
    flush(len(text))
    return ParseTree(type="Document", children=children)


def render_to_text(tree: ParseTree, skip_types: Iterable[str] = ()) -> str:
    skip = set(skip_types)
    parts: list[str] = []

    def visit(node: ParseTree) -> None:
        if node.type in skip:
            return
        if node.text is not None:
            parts.append(node.text)
        for child in node.children or []:
            visit(child)

    visit(tree)
    return "".join(parts)


def walk(tree: ParseTree) -> Iterator[ParseTree]:
    yield tree
    for child in tree.children or []:
        yield from walk(child)


def collect_nodes_matching(tree: ParseTree, predicate: Callable[[ParseTree], bool]) -> list[ParseTree]:
    return [node for node in walk(tree) if predicate(node)]


def collect_nodes_of_type(tree: ParseTree, node_type: str) -> list[ParseTree]:
    return collect_nodes_matching(tree, lambda node: node.type == node_type)


def find_child_of_type(node: ParseTree, node_type: str) -> Optional[ParseTree]:
    for child in node.children or []:
        if child.type == node_type:
            return child
    return None


def replace_nodes_matching(tree: ParseTree, rewrite: Callable[[ParseTree], Rewrite]) -> None:
    """Rewrite ``tree`` in place, depth first.

    ``rewrite`` sees every node below the root. Deleted and replaced nodes are
    not descended into.
    """
    if not tree.children:
        return
    children: list[ParseTree] = []
    for child in tree.children:
        outcome = rewrite(child)
        if isinstance(outcome, Delete):
            continue
        if isinstance(outcome, ReplaceWithText):
            children.append(ParseTree(text=outcome.text))
            continue
        replace_nodes_matching(child, rewrite)
        children.append(child)
    tree.children = children
