"""
Plain-text extraction for rich-text payloads stored by the authoring app.

Content is either a legacy plain string or a serialized editor state, i.e. a
mapping with a ``root`` node whose descendants are ``text``, ``linebreak`` or
container nodes holding ``children``.
"""
from typing import Any, Dict, List, Mapping, Optional, Union

RichText = Union[str, Dict[str, Any]]

BLOCK_NODE_TYPES = {"paragraph", "heading", "quote", "listitem"}


def is_editor_state(content: Any) -> bool:
    return isinstance(content, Mapping) and "root" in content


def _extract_text(node: Any) -> str:
    if not isinstance(node, Mapping):
        return ""
    node_type = node.get("type")
    if node_type == "text":
        text = node.get("text")
        return text if isinstance(text, str) else ""
    if node_type == "linebreak":
        return "\n"
    children = node.get("children")
    if isinstance(children, list):
        joined = "".join(_extract_text(child) for child in children)
        return joined + ("\n" if node_type in BLOCK_NODE_TYPES else "")
    return ""


def get_plain_text(content: Optional[RichText]) -> str:
    """Return the plain-text rendering of a rich-text value ("" for empty)."""
    if not content:
        return ""
    if isinstance(content, str):
        return content
    if is_editor_state(content):
        return _extract_text(content["root"])
    return ""


def is_rich_text_empty(content: Optional[RichText]) -> bool:
    return not get_plain_text(content).strip()


def string_to_editor_state(text: str) -> Dict[str, Any]:
    """Wrap plain text into an editor state, one paragraph per line."""
    paragraphs: List[Dict[str, Any]] = []
    for line in (text or "").split("\n"):
        children = []
        if line:
            children.append({
                "detail": 0,
                "format": 0,
                "mode": "normal",
                "style": "",
                "text": line,
                "type": "text",
                "version": 1,
            })
        paragraphs.append({
            "children": children,
            "direction": "ltr",
            "format": "",
            "indent": 0,
            "type": "paragraph",
            "version": 1,
        })
    return {
        "root": {
            "children": paragraphs,
            "direction": "ltr",
            "format": "",
            "indent": 0,
            "type": "root",
            "version": 1,
        }
    }
