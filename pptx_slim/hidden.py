"""
Hidden-slide removal.

A slide whose root element carries ``show="0"`` is skipped by PowerPoint in
slide shows. Removing it takes the slide part, its notes, the presentation
relationship and every list in presentation.xml that names it.
"""

import logging
import warnings
from typing import TypedDict

from . import rels, xmlpart
from .archive import Archive
from .config import PRESENTATION_PATH
from .errors import ParseError, SafetyAbortWarning
from .pruning import drop_dangling_relationships, prune_content_types
from .rels import RelationshipResolver


class HiddenSlidesReport(TypedDict):
    """Outcome of the hidden-slide pass."""
    total_slides: int
    hidden_slides: int
    removed_slides: list[str]
    removed_notes: list[str]
    bytes_removed: int
    warnings: list[str]


def is_hidden(slide_root) -> bool:
    """True when the slide's ``show`` attribute is false ('0' or 'false')."""
    value = xmlpart.get_attr(slide_root, 'show')
    return value is not None and value.strip().lower() in ('0', 'false')


def find_hidden_slides(archive: Archive, resolver: RelationshipResolver | None = None) -> list[str]:
    """Paths of hidden slides listed in the presentation, in slide order."""
    return [path for _, _, path in _scan(archive, resolver or RelationshipResolver(archive))[1]]


def _scan(archive: Archive, resolver: RelationshipResolver):
    """
    Parse presentation.xml and classify its slide list.

    Returns (presentation root or None, [(sldId element, rId, slide path), ...]
    for hidden slides, total slide entries).
    """
    try:
        root = xmlpart.parse(archive.get(PRESENTATION_PATH), PRESENTATION_PATH)
    except ParseError as e:
        logging.warning(f"Cannot read slide list: {e.original}")
        return None, [], 0

    by_id = {rel.id: rel for rel in resolver.resolve(PRESENTATION_PATH)}
    entries = xmlpart.children(xmlpart.child(root, 'sldIdLst'), 'sldId')
    hidden = []
    for entry in entries:
        rid = xmlpart.get_attr(entry, 'r:id')
        rel = by_id.get(rid)
        if rel is None or rel.external or rel.kind != rels.SLIDE or rel.target not in archive:
            logging.debug(f"Slide entry {rid} does not resolve to a slide part, keeping it")
            continue
        try:
            slide_root = xmlpart.parse(archive.get(rel.target), rel.target)
        except ParseError as e:
            logging.warning(f"Keeping unreadable slide {rel.target}: {e.original}")
            continue
        if is_hidden(slide_root):
            hidden.append((entry, rid, rel.target))
    return root, hidden, len(entries)


def _remove_part(archive: Archive, path: str) -> int:
    size = archive.size_of(path)
    archive.remove(path)
    archive.remove(rels.rels_path_for(path))
    return size


def remove_hidden_slides(archive: Archive) -> HiddenSlidesReport:
    """
    Delete every hidden slide from the archive.

    If all slides are hidden nothing is removed and a SafetyAbortWarning is
    issued, since a presentation without slides is useless.

    Args:
        archive: Archive to modify in place

    Returns:
        HiddenSlidesReport
    """
    resolver = RelationshipResolver(archive)
    root, hidden, total = _scan(archive, resolver)
    report: HiddenSlidesReport = {
        'total_slides': total,
        'hidden_slides': len(hidden),
        'removed_slides': [],
        'removed_notes': [],
        'bytes_removed': 0,
        'warnings': [],
    }
    if not hidden:
        return report

    if len(hidden) == total:
        message = f"All {total} slides are hidden; keeping them so the presentation is not left empty"
        warnings.warn(message, SafetyAbortWarning, stacklevel=2)
        logging.warning(message)
        report['warnings'].append(message)
        return report

    removed_rids = set()
    removed_slide_ids = set()
    for entry, rid, slide_path in hidden:
        notes = resolver.first_target(slide_path, rels.NOTES_SLIDE)
        report['bytes_removed'] += _remove_part(archive, slide_path)
        report['removed_slides'].append(slide_path)
        if notes and notes in archive:
            report['bytes_removed'] += _remove_part(archive, notes)
            report['removed_notes'].append(notes)

        removed_rids.add(rid)
        slide_id = xmlpart.get_attr(entry, 'id')
        if slide_id is not None:
            removed_slide_ids.add(slide_id)
        xmlpart.remove_element(entry)
        logging.debug(f"Removed hidden slide {slide_path} ({rid})")

    # Custom shows list slides by relationship id
    for sld in xmlpart.descendants(root, 'sld'):
        if xmlpart.get_attr(sld, 'r:id') in removed_rids:
            xmlpart.remove_element(sld)

    # Sections (p14:sectionLst) list slides by numeric id
    for section in xmlpart.descendants(root, 'section'):
        for entry in xmlpart.descendants(section, 'sldId'):
            if xmlpart.get_attr(entry, 'id') in removed_slide_ids:
                xmlpart.remove_element(entry)

    archive.set(PRESENTATION_PATH, xmlpart.serialize(root))
    rels.remove_relationships(archive, PRESENTATION_PATH, lambda rel: rel.id in removed_rids)
    prune_content_types(archive)
    drop_dangling_relationships(archive)

    logging.info(f"Removed {len(report['removed_slides'])} hidden slide(s) of {total}")
    return report
