"""
XML part codec.

Parts are parsed into lxml elements, which keep element order, namespaced
attributes and text intact, and serialized back with an XML declaration.
Lookups go through get_attr() and children() so callers never depend on
the prefix a producer happened to choose.
"""

from lxml import etree

from .errors import ParseError


# Prefixes PowerPoint and most other producers use for OOXML namespaces
NAMESPACES: dict[str, str] = {
    'a': 'http://schemas.openxmlformats.org/drawingml/2006/main',
    'p': 'http://schemas.openxmlformats.org/presentationml/2006/main',
    'r': 'http://schemas.openxmlformats.org/officeDocument/2006/relationships',
    'pr': 'http://schemas.openxmlformats.org/package/2006/relationships',
    'ct': 'http://schemas.openxmlformats.org/package/2006/content-types',
    'mc': 'http://schemas.openxmlformats.org/markup-compatibility/2006',
    'p14': 'http://schemas.microsoft.com/office/powerpoint/2010/main',
}


def _parser() -> etree.XMLParser:
    # lxml parsers are not thread-safe, so each parse gets its own
    return etree.XMLParser(
        remove_blank_text=False,
        resolve_entities=False,
        no_network=True,
        huge_tree=True,
    )


def parse(data: bytes, path: str | None = None) -> etree._Element:
    """
    Parse XML bytes into an element tree.

    Args:
        data: Raw part bytes
        path: Archive path, used in the error message only

    Returns:
        The root element

    Raises:
        ParseError: If the bytes are not well-formed XML
    """
    if data is None:
        raise ParseError(path, ValueError("part is missing"))
    try:
        return etree.fromstring(data, _parser())
    except (etree.XMLSyntaxError, ValueError) as e:
        raise ParseError(path, e) from e


def serialize(root: etree._Element) -> bytes:
    """Serialize an element (and its document) back to UTF-8 bytes."""
    return etree.tostring(
        root.getroottree(),
        xml_declaration=True,
        encoding='UTF-8',
        standalone=True,
    )


def local_name(element: etree._Element) -> str:
    """Tag name without namespace. Comments and PIs give ''."""
    if not isinstance(element.tag, str):
        return ''
    return etree.QName(element).localname


def _clark(element: etree._Element, prefixed: str) -> str | None:
    prefix, _, name = prefixed.partition(':')
    uri = element.nsmap.get(prefix) or NAMESPACES.get(prefix)
    return f"{{{uri}}}{name}" if uri else None


def _attr_key(element: etree._Element, name: str) -> str | None:
    if name.startswith('@_'):
        name = name[2:]
    attrib = element.attrib
    if name in attrib:
        return name

    if name.startswith('{'):
        local = name.split('}', 1)[1]
    elif ':' in name:
        key = _clark(element, name)
        if key is not None and key in attrib:
            return key
        local = name.split(':', 1)[1]
    else:
        local = name

    for key in attrib:
        if key.startswith('{') and key.split('}', 1)[1] == local:
            return key
    return None


def get_attr(element: etree._Element, name: str, default: str | None = None) -> str | None:
    """
    Look up an attribute by logical name, independent of prefix conventions.

    Checked in this order:
      1. the exact key, after stripping an ``@_`` marker (``@_Target`` -> ``Target``)
      2. a ``prefix:local`` name resolved to ``{uri}local`` through the
         element's own namespace map, then the well-known OOXML prefixes
      3. the first namespace-qualified attribute whose local name matches

    A fully qualified ``{uri}local`` name is matched by step 1.
    """
    key = _attr_key(element, name)
    return element.attrib[key] if key is not None else default


def set_attr(element: etree._Element, name: str, value: str) -> None:
    """Overwrite the attribute get_attr() would read, or add it unqualified."""
    key = _attr_key(element, name)
    if key is None:
        key = name.removeprefix('@_').split(':', 1)[-1]
    element.set(key, value)


def children(element: etree._Element | None, name: str) -> list[etree._Element]:
    """
    Direct children with the given local name, always as a list.

    ``name`` may carry a prefix (``p:sldId``); only the local part is matched.
    """
    if element is None:
        return []
    local = name.split(':', 1)[-1]
    return [el for el in element if local_name(el) == local]


def child(element: etree._Element | None, name: str) -> etree._Element | None:
    found = children(element, name)
    return found[0] if found else None


def descendants(element: etree._Element, name: str) -> list[etree._Element]:
    """All descendants with the given local name, in document order."""
    local = name.split(':', 1)[-1]
    return [el for el in element.iter() if local_name(el) == local]


def remove_element(element: etree._Element) -> None:
    """Detach an element from its parent, keeping any non-whitespace tail text."""
    parent = element.getparent()
    if parent is None:
        return
    if element.tail and element.tail.strip():
        previous = element.getprevious()
        if previous is not None:
            previous.tail = (previous.tail or '') + element.tail
        else:
            parent.text = (parent.text or '') + element.tail
    parent.remove(element)


def add_child(parent: etree._Element, name: str, attrib: dict[str, str] | None = None,
              index: int | None = None) -> etree._Element:
    """Create a child element in the parent's namespace, appended or inserted at ``index``."""
    namespace = etree.QName(parent).namespace
    element = parent.makeelement(f"{{{namespace}}}{name}" if namespace else name, attrib or {})
    if index is None:
        parent.append(element)
    else:
        parent.insert(index, element)
    return element
