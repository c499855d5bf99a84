"""
Reachability analysis and pruning of unused layouts, masters and media.

Everything reachable from the presentation's slide list is kept: the slides
themselves, the layout each slide is built on, the master of each kept
layout, and every media part referenced by a retained part. The rest is
deleted, subject to a safety guard per resource class, and the relationship
files, ID lists and content-types manifest are brought back in sync.
"""

import logging
import warnings
from dataclasses import dataclass, field
from typing import TypedDict
from urllib.parse import unquote

from . import rels, xmlpart
from .archive import Archive, normalize_path
from .config import (
    CONTENT_TYPES_PATH,
    MEDIA_PREFIX,
    MEDIA_REMOVAL_MAX_FRACTION,
    PRESENTATION_PATH,
    SLIDE_LAYOUT_PREFIX,
    SLIDE_MASTER_PREFIX,
    TEMPLATE_REMOVAL_MAX_FRACTION,
)
from .errors import ParseError, SafetyAbortWarning
from .rels import RelationshipResolver


HYPERLINK_ELEMENTS = ('hlinkClick', 'hlinkHover')


class PruneReport(TypedDict):
    """Outcome of one pruning pass."""
    used_slides: int
    used_layouts: int
    used_masters: int
    used_media: int
    removed_layouts: list[str]
    removed_masters: list[str]
    removed_media: list[str]
    media_bytes_removed: int
    removed_relationships: int
    removed_overrides: int
    warnings: list[str]


@dataclass
class Reachability:
    """Used and present parts per resource class. Lists keep archive order."""
    used_slides: list[str] = field(default_factory=list)
    used_layouts: set[str] = field(default_factory=set)
    used_masters: set[str] = field(default_factory=set)
    used_media: set[str] = field(default_factory=set)
    all_layouts: list[str] = field(default_factory=list)
    all_masters: list[str] = field(default_factory=list)
    all_media: list[str] = field(default_factory=list)

    @property
    def unused_layouts(self) -> list[str]:
        return [p for p in self.all_layouts if p not in self.used_layouts]

    @property
    def unused_masters(self) -> list[str]:
        return [p for p in self.all_masters if p not in self.used_masters]

    @property
    def unused_media(self) -> list[str]:
        return [p for p in self.all_media if p not in self.used_media]


def _part_list(archive: Archive, prefix: str) -> list[str]:
    return [p for p in archive.find(prefix=prefix) if '/_rels/' not in p and not p.endswith('.rels')]


def find_used_slides(archive: Archive, resolver: RelationshipResolver) -> list[str]:
    """Slide parts the presentation links to and that exist, in rels order."""
    used = []
    for rel in resolver.resolve(PRESENTATION_PATH):
        if rel.kind == rels.SLIDE and not rel.external and rel.target in archive and rel.target not in used:
            used.append(rel.target)
    return used


def masters_of(archive: Archive, layouts, resolver: RelationshipResolver) -> set[str]:
    """Existing masters the given layouts belong to."""
    masters = set()
    for layout in layouts:
        master = rels.get_master_of(archive, layout, resolver)
        if master and master in archive:
            masters.add(master)
    return masters


def media_in_use(archive: Archive, resolver: RelationshipResolver, removed=frozenset()) -> set[str]:
    """
    Media targets of every relationship file whose owner is retained.

    An owner is retained when it is the package root or an existing part not
    listed in ``removed``.
    """
    used = set()
    for _, owner in rels.iter_rels_files(archive):
        if owner and (owner not in archive or owner in removed):
            continue
        for rel in resolver.resolve(owner):
            if rel.external or not rel.target:
                continue
            if rel.kind in rels.MEDIA_KINDS or rel.target.startswith(MEDIA_PREFIX):
                used.add(rel.target)
    return used


def compute_reachability(archive: Archive, resolver: RelationshipResolver | None = None) -> Reachability:
    """
    Work out which slides, layouts, masters and media are in use.

    Layouts are kept only when a used slide is built on them directly; a
    layout that only its master refers to counts as unused. Media usage is
    computed as if every unused layout and master were already gone.
    """
    resolver = resolver or RelationshipResolver(archive)
    reach = Reachability(
        all_layouts=_part_list(archive, SLIDE_LAYOUT_PREFIX),
        all_masters=_part_list(archive, SLIDE_MASTER_PREFIX),
        all_media=_part_list(archive, MEDIA_PREFIX),
    )

    reach.used_slides = find_used_slides(archive, resolver)
    for slide in reach.used_slides:
        layout = rels.get_slide_layout_of(archive, slide, resolver)
        if layout and layout in archive:
            reach.used_layouts.add(layout)
    reach.used_masters = masters_of(archive, reach.used_layouts, resolver)

    removed = set(reach.unused_layouts) | set(reach.unused_masters)
    reach.used_media = media_in_use(archive, resolver, removed)

    logging.debug(f"Reachable: {len(reach.used_slides)} slides, {len(reach.used_layouts)} layouts, "
                  f"{len(reach.used_masters)} masters, {len(reach.used_media)} media")
    return reach


def should_skip_removal(total: int, unused: int, max_fraction: float) -> bool:
    """
    Safety guard for bulk deletion.

    True when every part of a non-empty class would go, or when the unused
    share exceeds ``max_fraction``. Both usually mean the reference scan
    missed something rather than that the deck really is that wasteful.
    """
    if total <= 0 or unused <= 0:
        return False
    if unused >= total:
        return True
    return unused / total > max_fraction


def _guard(report: PruneReport, label: str, total: int, unused: int, max_fraction: float) -> bool:
    if not should_skip_removal(total, unused, max_fraction):
        return False
    message = (f"Skipping removal of {unused}/{total} {label}: "
               f"removing that many looks unsafe, keeping all of them")
    warnings.warn(message, SafetyAbortWarning, stacklevel=3)
    logging.warning(message)
    report['warnings'].append(message)
    return True


def _delete_part(archive: Archive, path: str) -> int:
    """Remove a part and its .rels file. Returns the bytes freed by the part."""
    size = archive.size_of(path)
    archive.remove(path)
    archive.remove(rels.rels_path_for(path))
    return size


def drop_unlinked_ids(archive: Archive, part_path: str, list_name: str, entry_name: str,
                      resolver: RelationshipResolver | None = None,
                      drop_empty_list: bool = False) -> int:
    """
    Remove ID-list entries (``p:sldId``, ``p:sldLayoutId``...) whose ``r:id``
    no longer names a relationship of ``part_path``.

    Returns:
        Number of entries removed
    """
    data = archive.get(part_path)
    if data is None:
        return 0
    try:
        root = xmlpart.parse(data, part_path)
    except ParseError as e:
        logging.warning(f"Cannot update {list_name} in {part_path}: {e.original}")
        return 0

    id_list = xmlpart.child(root, list_name)
    if id_list is None:
        return 0

    rels_path = rels.rels_path_for(part_path)
    if archive.get(rels_path) is None:
        return 0
    resolver = resolver or RelationshipResolver(archive)
    relationships = resolver.resolve(part_path)
    if rels_path in resolver.failed:
        return 0
    known = {rel.id for rel in relationships}
    removed = 0
    for entry in xmlpart.children(id_list, entry_name):
        if xmlpart.get_attr(entry, 'r:id') not in known:
            xmlpart.remove_element(entry)
            removed += 1

    changed = removed > 0
    if drop_empty_list and not xmlpart.children(id_list, entry_name):
        xmlpart.remove_element(id_list)
        changed = True

    if changed:
        archive.set(part_path, xmlpart.serialize(root))
        logging.debug(f"Dropped {removed} {entry_name} entr{'y' if removed == 1 else 'ies'} from {part_path}")
    return removed


def prune_content_types(archive: Archive) -> list[str]:
    """
    Drop every ``Override`` whose part no longer exists.

    Returns:
        PartNames of the removed overrides
    """
    data = archive.get(CONTENT_TYPES_PATH)
    if data is None:
        return []
    try:
        root = xmlpart.parse(data, CONTENT_TYPES_PATH)
    except ParseError as e:
        logging.warning(f"Cannot prune content types: {e.original}")
        return []

    removed = []
    for override in xmlpart.children(root, 'Override'):
        part_name = xmlpart.get_attr(override, 'PartName') or ''
        if normalize_path(unquote(part_name)) in archive:
            continue
        xmlpart.remove_element(override)
        removed.append(part_name)

    if removed:
        archive.set(CONTENT_TYPES_PATH, xmlpart.serialize(root))
        logging.debug(f"Removed {len(removed)} content-type override(s)")
    return removed


def drop_relationship_refs(archive: Archive, part_path: str, rel_ids) -> int:
    """
    Remove references to dropped relationship ids from a part's XML.

    Hyperlink elements (``a:hlinkClick``, ``a:hlinkHover``) pointing at one
    of ``rel_ids`` are removed whole; any other ``r:``-namespaced attribute
    holding one of them loses just that attribute.

    Returns:
        Number of references removed
    """
    data = archive.get(part_path)
    if data is None or not rel_ids or not part_path.endswith('.xml'):
        return 0
    try:
        root = xmlpart.parse(data, part_path)
    except ParseError as e:
        logging.warning(f"Cannot clear relationship references in {part_path}: {e.original}")
        return 0

    prefix = f"{{{xmlpart.NAMESPACES['r']}}}"
    removed = 0
    for element in list(root.iter()):
        if not isinstance(element.tag, str):
            continue
        keys = [k for k, v in element.attrib.items() if k.startswith(prefix) and v in rel_ids]
        if not keys:
            continue
        if xmlpart.local_name(element) in HYPERLINK_ELEMENTS and element is not root:
            xmlpart.remove_element(element)
        else:
            for key in keys:
                del element.attrib[key]
        removed += len(keys)

    if removed:
        archive.set(part_path, xmlpart.serialize(root))
        logging.debug(f"Cleared {removed} reference(s) to dropped relationships in {part_path}")
    return removed


def drop_dangling_relationships(archive: Archive) -> int:
    """
    Remove internal relationships pointing at parts that do not exist, and
    relationship files whose owning part is gone. References to the dropped
    ids are cleared from the owning part so no ``r:id`` is left unresolved.

    Returns:
        Number of relationships removed
    """
    removed = 0
    for rels_path, owner in list(rels.iter_rels_files(archive)):
        if owner and owner not in archive:
            archive.remove(rels_path)
            logging.debug(f"Removed orphaned relationships file {rels_path}")
            continue
        dropped = rels.remove_relationships(
            archive, owner,
            lambda rel: not rel.external and bool(rel.target) and rel.target not in archive,
        )
        for rel in dropped:
            logging.debug(f"Dropped dangling relationship {rel.id} -> {rel.target} from {rels_path}")
        if owner and dropped:
            drop_relationship_refs(archive, owner, {rel.id for rel in dropped})
        removed += len(dropped)
    return removed


def prune_unused_resources(archive: Archive) -> PruneReport:
    """
    Delete layouts, masters and media nothing retained refers to.

    Args:
        archive: Archive to prune in place

    Returns:
        PruneReport with usage counts, removed paths and any guard warnings
    """
    resolver = RelationshipResolver(archive)
    reach = compute_reachability(archive, resolver)
    report: PruneReport = {
        'used_slides': len(reach.used_slides),
        'used_layouts': len(reach.used_layouts),
        'used_masters': len(reach.used_masters),
        'used_media': len(reach.used_media),
        'removed_layouts': [],
        'removed_masters': [],
        'removed_media': [],
        'media_bytes_removed': 0,
        'removed_relationships': 0,
        'removed_overrides': 0,
        'warnings': [],
    }

    # Decide what goes before touching anything; a tripped guard keeps the whole class
    kept_layouts = set(reach.used_layouts)
    doomed_layouts = reach.unused_layouts
    if _guard(report, 'slide layouts', len(reach.all_layouts), len(doomed_layouts),
              TEMPLATE_REMOVAL_MAX_FRACTION):
        kept_layouts = set(reach.all_layouts)
        doomed_layouts = []

    kept_masters = masters_of(archive, kept_layouts, resolver)
    doomed_masters = [m for m in reach.all_masters if m not in kept_masters]
    if _guard(report, 'slide masters', len(reach.all_masters), len(doomed_masters),
              TEMPLATE_REMOVAL_MAX_FRACTION):
        kept_masters = set(reach.all_masters)
        doomed_masters = []

    used_media = reach.used_media
    if set(doomed_layouts) != set(reach.unused_layouts) or set(doomed_masters) != set(reach.unused_masters):
        used_media = media_in_use(archive, resolver, set(doomed_layouts) | set(doomed_masters))
    doomed_media = [m for m in reach.all_media if m not in used_media]
    if _guard(report, 'media files', len(reach.all_media), len(doomed_media), MEDIA_REMOVAL_MAX_FRACTION):
        doomed_media = []

    for layout in doomed_layouts:
        _delete_part(archive, layout)
        report['removed_layouts'].append(layout)
        logging.debug(f"Removed unused layout {layout}")
    for master in doomed_masters:
        _delete_part(archive, master)
        report['removed_masters'].append(master)
        logging.debug(f"Removed unused master {master}")
    for media in doomed_media:
        report['media_bytes_removed'] += _delete_part(archive, media)
        report['removed_media'].append(media)
        logging.debug(f"Removed unused media {media}")

    # Presentation: layout/master links and the master ID list
    removed = rels.remove_relationships(
        archive, PRESENTATION_PATH,
        lambda rel: (rel.kind == rels.SLIDE_LAYOUT and rel.target not in kept_layouts)
        or (rel.kind == rels.SLIDE_MASTER and rel.target not in kept_masters),
    )
    report['removed_relationships'] += len(removed)
    drop_unlinked_ids(archive, PRESENTATION_PATH, 'sldMasterIdLst', 'sldMasterId', resolver)

    # Retained masters: layout links and the layout ID list
    for master in sorted(kept_masters):
        if master not in archive:
            continue
        removed = rels.remove_relationships(
            archive, master,
            lambda rel: rel.kind == rels.SLIDE_LAYOUT and rel.target not in kept_layouts,
        )
        report['removed_relationships'] += len(removed)
        drop_unlinked_ids(archive, master, 'sldLayoutIdLst', 'sldLayoutId', resolver, drop_empty_list=True)

    report['removed_overrides'] = len(prune_content_types(archive))
    report['removed_relationships'] += drop_dangling_relationships(archive)

    logging.info(f"Pruned {len(report['removed_layouts'])} layouts, {len(report['removed_masters'])} masters, "
                 f"{len(report['removed_media'])} media files")
    return report
