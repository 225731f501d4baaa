"""
Shared XML utilities for the ANPR Event Service

Camera notifications arrive as XML documents whose namespace depends on the
firmware (hikvision.com, isapi.org, or none at all). Lookups here match on
local element names so callers do not need to care.

SECURITY: All XML parsing uses a hardened lxml parser (no DTDs, no entity
resolution, no network access) to prevent XXE attacks.
"""

import logging
import re
from typing import Any, Optional

from lxml import etree

logger = logging.getLogger(__name__)


class XMLPayloadError(ValueError):
    """Raised when an XML document cannot be parsed"""
    pass


def get_secure_parser() -> etree.XMLParser:
    """Get a secure XML parser that prevents XXE attacks"""
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        dtd_validation=False,
        load_dtd=False,
        huge_tree=False,
        remove_blank_text=True
    )


def secure_parse_bytes(xml_bytes: bytes) -> Any:
    """Securely parse an XML document held in memory

    Args:
        xml_bytes: Raw XML document

    Returns:
        Root element

    Raises:
        XMLPayloadError: If the document is empty, not well-formed or
            declares a DTD
    """
    if not xml_bytes or not xml_bytes.strip():
        raise XMLPayloadError("empty XML document")
    try:
        root = etree.fromstring(xml_bytes, get_secure_parser())
    except etree.XMLSyntaxError as e:
        raise XMLPayloadError(f"invalid XML: {e}") from e

    # Entity references are never expanded; no document may declare them
    docinfo = root.getroottree().docinfo
    if docinfo.doctype or docinfo.internalDTD is not None:
        raise XMLPayloadError("DTD declarations are not allowed")
    return root


def local_name(elem: Any) -> str:
    """Element tag without its namespace"""
    tag = elem.tag
    if not isinstance(tag, str):
        # comments and processing instructions
        return ''
    return etree.QName(tag).localname


def find_child(elem: Any, name: str) -> Optional[Any]:
    """First direct child with the given local name, ignoring namespaces"""
    if elem is None:
        return None
    for child in elem:
        if local_name(child) == name:
            return child
    return None


def get_text_from_element(elem: Any, path: str) -> Optional[str]:
    """Safely get text content from a '/'-separated path of local names

    Args:
        elem: Parent XML element
        path: Path such as 'ANPR/licensePlate'

    Returns:
        Stripped text content or None if element not found or empty
    """
    current = elem
    for part in path.split('/'):
        current = find_child(current, part)
        if current is None:
            return None
    if current.text and current.text.strip():
        return current.text.strip()
    return None


def sanitize_for_logging(text: str) -> str:
    """Sanitize user input for safe logging, preventing log injection

    Removes newlines, carriage returns, and other control characters
    that could be used to inject fake log entries.

    Args:
        text: User input text

    Returns:
        Sanitized text safe for logging
    """
    if not text:
        return ''
    sanitized = re.sub(r'[\r\n\x00-\x1f\x7f-\x9f]', ' ', str(text))
    sanitized = re.sub(r'\s+', ' ', sanitized).strip()
    return sanitized[:500] if len(sanitized) > 500 else sanitized
