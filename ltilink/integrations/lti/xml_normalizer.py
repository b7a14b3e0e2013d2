"""
Normalization of XML service responses into nested mappings.

Both the legacy extension responses (simple lower-case tags) and the LTI 1.1
POX envelopes (namespaced ``imsx_`` tags) are converted with the same rules:

- namespaces and prefixes are removed from tag and attribute names
- a leaf element becomes its trimmed text
- an element with child elements becomes a mapping of tag name to value
- a tag occurring once is collapsed to its value, a repeated tag becomes a
  list of values in document order
- attributes are kept under ``@attributes``
"""

import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional, Union

from ltilink.integrations.lti.error_handler import LTIResponseParseError


XmlNode = Union[str, List["XmlNode"], Dict[str, "XmlNode"]]

ATTRIBUTES_KEY = "@attributes"
TEXT_KEY = "#text"


def local_name(tag: str) -> str:
    """Strip any ``{namespace}`` or ``prefix:`` from a tag name."""
    if '}' in tag:
        tag = tag.rsplit('}', 1)[1]
    return tag.split(':')[-1]


def element_to_node(element: ET.Element) -> XmlNode:
    """Convert an element and its subtree into an ``XmlNode``."""
    children = list(element)
    attributes = {local_name(name): value for name, value in element.attrib.items()}

    if not children:
        text = (element.text or '').strip()
        if not attributes:
            return text
        node: Dict[str, XmlNode] = {ATTRIBUTES_KEY: attributes}
        if text:
            node[TEXT_KEY] = text
        return node

    grouped: Dict[str, List[XmlNode]] = {}
    for child in children:
        grouped.setdefault(local_name(child.tag), []).append(element_to_node(child))

    node = {
        name: values[0] if len(values) == 1 else values
        for name, values in grouped.items()
    }
    if attributes:
        node[ATTRIBUTES_KEY] = attributes
    return node


def parse_xml(text: Optional[str]) -> XmlNode:
    """
    Parse an XML document into an ``XmlNode`` rooted at the document element.

    Raises:
        LTIResponseParseError: if the document is empty or not well-formed
    """
    if not text or not text.strip():
        raise LTIResponseParseError("Empty XML document in service response")
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise LTIResponseParseError(
            f"Invalid XML in service response: {e}",
            original_exception=e
        )
    return element_to_node(root)


def node_get(node: Any, *path: str) -> Optional[XmlNode]:
    """Follow a path of tag names, returning None when any step is missing."""
    for name in path:
        if not isinstance(node, dict) or name not in node:
            return None
        node = node[name]
    return node


def node_list(value: Optional[XmlNode]) -> List[XmlNode]:
    """Return a repeated-or-single value as a list."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]
