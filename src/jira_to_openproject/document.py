"""Convert Atlassian Document Format (ADF) trees into OpenProject markdown.

Rendering is a depth-first transform: every node's output is a pure function
of the node and its already-rendered children. Unknown node types degrade to
their rendered children and malformed input never raises.

Media nodes do not render inline. Jira attachments only get an OpenProject
URL once they are uploaded to an existing work package, so the first pass
emits an ``ATTACH{filename}`` placeholder and ``substitute_attachments``
replaces it after the upload.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .models import Artifact

logger: logging.Logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN: re.Pattern[str] = re.compile(r"ATTACH\{([^{}\n]+)\}")
_PLACEHOLDER_OPEN = "ATTACH{"
_ESCAPED_CHARACTERS = ("*", "_")
_MAX_HEADING_LEVEL = 6


class NodeKind(StrEnum):
    """ADF node types the converter understands."""

    DOC = "doc"
    PARAGRAPH = "paragraph"
    TEXT = "text"
    HEADING = "heading"
    BULLET_LIST = "bulletList"
    ORDERED_LIST = "orderedList"
    LIST_ITEM = "listItem"
    CODE_BLOCK = "codeBlock"
    BLOCKQUOTE = "blockquote"
    RULE = "rule"
    HARD_BREAK = "hardBreak"
    MENTION = "mention"
    EMOJI = "emoji"
    INLINE_CARD = "inlineCard"
    DATE = "date"
    STATUS = "status"
    TABLE = "table"
    TABLE_ROW = "tableRow"
    TABLE_HEADER = "tableHeader"
    TABLE_CELL = "tableCell"
    PANEL = "panel"
    EXPAND = "expand"
    NESTED_EXPAND = "nestedExpand"
    MEDIA_SINGLE = "mediaSingle"
    MEDIA_GROUP = "mediaGroup"
    MEDIA = "media"
    MEDIA_INLINE = "mediaInline"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Mark:
    """A formatting mark on a text node."""

    type: str
    attrs: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DocNode:
    """A parsed ADF node."""

    kind: NodeKind
    attrs: dict[str, Any] = field(default_factory=dict)
    content: tuple[DocNode, ...] = ()
    text: str = ""
    marks: tuple[Mark, ...] = ()


def _as_dict(value: Any) -> dict[str, Any]:  # noqa: ANN401 - raw JSON
    return value if isinstance(value, dict) else {}


def parse_node(raw: Any) -> DocNode:  # noqa: ANN401 - raw JSON
    """Parse a raw ADF JSON value into a ``DocNode`` tree.

    Anything that is not a JSON object becomes an empty ``UNKNOWN`` node.
    """
    if not isinstance(raw, dict):
        return DocNode(kind=NodeKind.UNKNOWN)

    try:
        kind = NodeKind(raw.get("type"))
    except ValueError:
        logger.debug(f"Unknown ADF node type {raw.get('type')!r}, rendering children only")
        kind = NodeKind.UNKNOWN

    children = raw.get("content")
    content = tuple(parse_node(child) for child in children) if isinstance(children, list) else ()

    raw_marks = raw.get("marks")
    marks = (
        tuple(
            Mark(type=str(m.get("type", "")), attrs=_as_dict(m.get("attrs")))
            for m in raw_marks
            if isinstance(m, dict)
        )
        if isinstance(raw_marks, list)
        else ()
    )

    text = raw.get("text")
    return DocNode(
        kind=kind,
        attrs=_as_dict(raw.get("attrs")),
        content=content,
        text=text if isinstance(text, str) else "",
        marks=marks,
    )


def placeholder(filename: str) -> str:
    """Return the placeholder token standing in for an attachment."""
    return f"{_PLACEHOLDER_OPEN}{filename}}}"


def neutralize_placeholders(text: str) -> str:
    """Break up placeholder openers in user text so only media nodes produce tokens."""
    return text.replace(_PLACEHOLDER_OPEN, "ATTACH\\{")


def escape_text(text: str) -> str:
    """Backslash-escape the markdown emphasis characters."""
    for char in _ESCAPED_CHARACTERS:
        text = text.replace(char, f"\\{char}")
    return text


def _apply_mark(text: str, mark: Mark) -> str:
    match mark.type:
        case "strong":
            return f"**{text}**"
        case "em":
            return f"*{text}*"
        case "code":
            return f"`{text}`"
        case "strike":
            return f"~~{text}~~"
        case "link":
            href = mark.attrs.get("href")
            return f"[{text}]({href})" if href else text
        case _:
            return text


def _render_text(node: DocNode) -> str:
    is_code = any(m.type == "code" for m in node.marks)
    text = neutralize_placeholders(node.text if is_code else escape_text(node.text))
    for mark in node.marks:
        text = _apply_mark(text, mark)
    return text


def _heading_level(attrs: dict[str, Any]) -> int:
    level = attrs.get("level")
    if not isinstance(level, int) or isinstance(level, bool) or level < 1:
        return 1
    return min(level, _MAX_HEADING_LEVEL)


def _indent(text: str, prefix: str) -> str:
    """Prefix the first line with ``prefix`` and indent the following lines to match."""
    pad = " " * len(prefix)
    lines = text.split("\n")
    return "\n".join([prefix + lines[0], *(pad + line if line else line for line in lines[1:])])


def _render_list(node: DocNode, *, ordered: bool) -> str:
    start = node.attrs.get("order", 1)
    if not isinstance(start, int) or isinstance(start, bool):
        start = 1
    items: list[str] = []
    for offset, child in enumerate(node.content):
        marker = f"{start + offset}. " if ordered else "- "
        items.append(_indent(_render(child), marker))
    return "\n".join(items)


def _render_code_block(node: DocNode) -> str:
    language = node.attrs.get("language") or ""
    code = neutralize_placeholders("".join(child.text for child in node.content))
    return f"```{language}\n{code}\n```"


def _quote(text: str) -> str:
    return "\n".join(f"> {line}" if line else ">" for line in text.split("\n"))


def _render_cell(node: DocNode) -> str:
    text = " ".join(part for part in (_render(child) for child in node.content) if part)
    return text.replace("|", "\\|").replace("\n", "<br>")


def _render_table(node: DocNode) -> str:
    rows = [[_render_cell(cell) for cell in row.content] for row in node.content if row.kind == NodeKind.TABLE_ROW]
    if not rows:
        return ""
    width = max(len(row) for row in rows)
    if width == 0:
        return ""
    padded = [row + [""] * (width - len(row)) for row in rows]
    lines = [f"| {' | '.join(padded[0])} |", f"|{'---|' * width}"]
    lines.extend(f"| {' | '.join(row)} |" for row in padded[1:])
    return "\n".join(lines)


def _render_media(node: DocNode) -> str:
    if node.attrs.get("type") == "external":
        url = node.attrs.get("url")
        alt = neutralize_placeholders(str(node.attrs.get("alt") or ""))
        return f"![{alt}]({url})" if url else ""
    filename = node.attrs.get("alt") or node.attrs.get("filename")
    if not filename or not isinstance(filename, str):
        return ""
    return placeholder(filename)


def _render_date(node: DocNode) -> str:
    timestamp = node.attrs.get("timestamp")
    try:
        return datetime.fromtimestamp(int(timestamp) / 1000, tz=UTC).date().isoformat()
    except (TypeError, ValueError, OverflowError, OSError):
        return ""


def _join(nodes: tuple[DocNode, ...], separator: str) -> str:
    return separator.join(part for part in (_render(child) for child in nodes) if part)


def _render(node: DocNode) -> str:  # noqa: PLR0911, PLR0912 - one arm per node kind
    match node.kind:
        case NodeKind.DOC:
            return _join(node.content, "\n\n")
        case NodeKind.PARAGRAPH:
            return "".join(_render(child) for child in node.content)
        case NodeKind.TEXT:
            return _render_text(node)
        case NodeKind.HEADING:
            return "#" * _heading_level(node.attrs) + " " + "".join(_render(child) for child in node.content)
        case NodeKind.BULLET_LIST:
            return _render_list(node, ordered=False)
        case NodeKind.ORDERED_LIST:
            return _render_list(node, ordered=True)
        case NodeKind.LIST_ITEM:
            return _join(node.content, "\n")
        case NodeKind.CODE_BLOCK:
            return _render_code_block(node)
        case NodeKind.BLOCKQUOTE | NodeKind.PANEL:
            return _quote(_join(node.content, "\n\n"))
        case NodeKind.RULE:
            return "---"
        case NodeKind.HARD_BREAK:
            return "\n"
        case NodeKind.MENTION:
            text = str(node.attrs.get("text") or node.attrs.get("id") or "")
            return neutralize_placeholders(text if text.startswith("@") else f"@{text}")
        case NodeKind.EMOJI:
            return neutralize_placeholders(str(node.attrs.get("text") or node.attrs.get("shortName") or ""))
        case NodeKind.INLINE_CARD:
            return neutralize_placeholders(str(node.attrs.get("url") or ""))
        case NodeKind.DATE:
            return _render_date(node)
        case NodeKind.STATUS:
            text = node.attrs.get("text")
            return f"`{neutralize_placeholders(str(text))}`" if text else ""
        case NodeKind.TABLE:
            return _render_table(node)
        case NodeKind.TABLE_ROW | NodeKind.TABLE_HEADER | NodeKind.TABLE_CELL:
            # Only reachable for cells outside a table.
            return _join(node.content, "\n\n")
        case NodeKind.EXPAND | NodeKind.NESTED_EXPAND:
            title = node.attrs.get("title")
            body = _join(node.content, "\n\n")
            return f"**{neutralize_placeholders(escape_text(str(title)))}**\n\n{body}" if title else body
        case NodeKind.MEDIA_SINGLE | NodeKind.MEDIA_GROUP:
            return _join(node.content, "\n")
        case NodeKind.MEDIA | NodeKind.MEDIA_INLINE:
            return _render_media(node)
        case _:
            return "".join(_render(child) for child in node.content)


def render(document: Any) -> str:  # noqa: ANN401 - raw JSON
    """Render an ADF document (dict) to markdown.

    ``None`` renders to ``""``. A plain string is already markup (Jira
    server and legacy payloads) and is returned unchanged apart from
    ``neutralize_placeholders``.
    """
    if not document:
        return ""
    if isinstance(document, str):
        return neutralize_placeholders(document)
    return _render(parse_node(document)).strip("\n")


def find_placeholders(markup: str) -> list[str]:
    """Return the filenames referenced by placeholders, in order of appearance."""
    return PLACEHOLDER_PATTERN.findall(markup)


def substitute_attachments(markup: str, artifacts: Mapping[str, Artifact]) -> str:
    """Replace ``ATTACH{filename}`` placeholders with OpenProject attachment links.

    Placeholders without a matching uploaded artifact are left intact.
    """

    def _replace(match: re.Match[str]) -> str:
        filename = match.group(1)
        artifact = artifacts.get(filename)
        if artifact is None:
            logger.debug(f"No uploaded attachment for placeholder {filename!r}, leaving it in place")
            return match.group(0)
        prefix = "!" if artifact.is_image else ""
        return f"{prefix}[{filename}]({artifact.href})"

    return PLACEHOLDER_PATTERN.sub(_replace, markup)
