"""Text preparation: flattening structured content and splitting text into chunks."""

from typing import Any

from shared.errors import ChunkingConfigurationError

CHARS_PER_TOKEN = 4            # rough token estimate used for chunk sizing
BOUNDARY_SEARCH_RATIO = 0.7    # only cut at a boundary found in the last 30% of a window
_BOUNDARY_MARKERS = (". ", "! ", "? ", "\n")

_BLOCK_TYPES = ("paragraph", "heading", "blockquote", "codeBlock")


def extract_text(content: Any) -> str:
    """Flatten a rich-text content tree into plain text, one line per block.

    Understands the editor's node types: paragraphs and headings become one
    line each, bullet list items are prefixed with "• ", ordered list items
    with an incrementing number. Unknown node types are recursed into;
    leaves without text contribute nothing. Plain strings pass through.

    Args:
        content (Any): A node dict ({"type": ..., "content": [...]}), a list of nodes, or a string.

    Returns:
        str: The extracted text.
    """
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    lines: list[str] = []
    _walk(content, lines, prefix="")
    return "\n".join(line for line in lines if line.strip())


def _inline_text(node: Any) -> str:
    """Concatenate all text runs below a node."""
    if isinstance(node, list):
        return "".join(_inline_text(child) for child in node)
    if not isinstance(node, dict):
        return ""
    if node.get("type") == "text":
        return node.get("text") or ""
    if node.get("type") == "hardBreak":
        return " "
    return _inline_text(node.get("content") or [])


def _walk(node: Any, lines: list[str], prefix: str) -> None:
    if isinstance(node, list):
        for child in node:
            _walk(child, lines, prefix)
        return
    if not isinstance(node, dict):
        return

    node_type = node.get("type")
    children = node.get("content") or []

    if node_type == "text":
        text = node.get("text") or ""
        if text.strip():
            lines.append(f"{prefix}{text}")
    elif node_type in _BLOCK_TYPES:
        text = _inline_text(children)
        if text.strip():
            lines.append(f"{prefix}{text}")
    elif node_type == "bulletList":
        for item in children:
            _walk_list_item(item, lines, "• ")
    elif node_type == "orderedList":
        start = (node.get("attrs") or {}).get("start") or 1
        for offset, item in enumerate(children):
            _walk_list_item(item, lines, f"{start + offset}. ")
    else:
        _walk(children, lines, prefix)


def _walk_list_item(item: Any, lines: list[str], marker: str) -> None:
    # the marker goes on the item's first line only, nested lines keep plain indentation
    item_lines: list[str] = []
    _walk(item.get("content") if isinstance(item, dict) else item, item_lines, prefix="")
    for index, line in enumerate(item_lines):
        lines.append(f"{marker}{line}" if index == 0 else f"  {line}")


def chunk_text(text: str, target_size_tokens: int = 500, overlap_tokens: int = 50) -> list[str]:
    """Split text into overlapping chunks of roughly target_size_tokens.

    Tokens are approximated as 4 characters. Each window advances by
    (target - overlap) tokens; a chunk ends at the last sentence or line
    boundary found in the final 30% of its window, when there is one.
    The window always advances by at least one character.

    Args:
        text (str): The text to split.
        target_size_tokens (int): Target chunk size in tokens.
        overlap_tokens (int): Overlap between consecutive chunks in tokens.

    Returns:
        list[str]: Non-empty, stripped chunks in document order.

    Raises:
        ChunkingConfigurationError: If either size is not positive or overlap >= target.
    """
    if target_size_tokens <= 0 or overlap_tokens <= 0:
        raise ChunkingConfigurationError(
            f"Chunk size and overlap must be positive (got size={target_size_tokens}, overlap={overlap_tokens})"
        )
    if overlap_tokens >= target_size_tokens:
        raise ChunkingConfigurationError(
            f"Chunk overlap ({overlap_tokens}) must be smaller than chunk size ({target_size_tokens})"
        )

    if not text or not text.strip():
        return []

    max_chars = target_size_tokens * CHARS_PER_TOKEN
    overlap_chars = overlap_tokens * CHARS_PER_TOKEN

    if len(text) <= max_chars:
        return [text.strip()]

    chunks: list[str] = []
    start = 0
    length = len(text)
    while start < length:
        end = min(start + max_chars, length)
        if end < length:
            end = _find_boundary(text, start, end)

        chunk = text[start:end].strip()
        if chunk:
            chunks.append(chunk)
        if end >= length:
            break
        start = max(end - overlap_chars, start + 1)
    return chunks


def _find_boundary(text: str, start: int, end: int) -> int:
    """Return the end offset of the window [start, end), pulled back to a boundary if one exists late enough."""
    window = text[start:end]
    threshold = int(len(window) * BOUNDARY_SEARCH_RATIO)
    best = -1
    for marker in _BOUNDARY_MARKERS:
        position = window.rfind(marker, threshold)
        if position != -1:
            # keep the punctuation, drop the trailing space
            best = max(best, position + 1)
    if best > threshold:
        return start + best
    return end
