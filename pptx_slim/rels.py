"""
Relationship resolution.

Every part's links live in a sibling ``_rels/<name>.rels`` file. This module
reads those files into Relationship tuples with targets normalized to
archive paths, classifies them by type, and rewrites them when parts are
removed or renamed.
"""

import logging
import posixpath
from collections.abc import Callable, Iterator
from typing import NamedTuple
from urllib.parse import unquote

from pptx.opc.constants import RELATIONSHIP_TARGET_MODE as RTM
from pptx.opc.constants import RELATIONSHIP_TYPE as RT

from . import xmlpart
from .archive import Archive, normalize_path
from .errors import ParseError


def type_marker(rel_type: str) -> str:
    """
    Final segment of a relationship type URI ('.../slideLayout' -> 'slideLayout').

    Producers mix absolute and relative type URIs, so classification only
    looks at this segment. Comparing whole segments keeps 'slide' from also
    matching 'slideLayout' or 'slideMaster'.
    """
    return rel_type.rstrip('/').rsplit('/', 1)[-1]


SLIDE = type_marker(RT.SLIDE)
SLIDE_LAYOUT = type_marker(RT.SLIDE_LAYOUT)
SLIDE_MASTER = type_marker(RT.SLIDE_MASTER)
NOTES_SLIDE = type_marker(RT.NOTES_SLIDE)
IMAGE = type_marker(RT.IMAGE)
AUDIO = type_marker(RT.AUDIO)
VIDEO = type_marker(RT.VIDEO)
MEDIA = type_marker(RT.MEDIA)
HD_PHOTO = 'hdphoto'

MEDIA_KINDS = frozenset({IMAGE, AUDIO, VIDEO, MEDIA, HD_PHOTO})


class Relationship(NamedTuple):
    """One entry of a .rels file."""
    id: str
    type: str
    target: str  # archive path for internal targets, the raw URI for external ones
    raw_target: str
    external: bool = False

    @property
    def kind(self) -> str:
        return type_marker(self.type)

    def is_kind(self, *kinds: str) -> bool:
        return self.kind in kinds


def rels_path_for(part_path: str) -> str:
    """``ppt/slides/slide1.xml`` -> ``ppt/slides/_rels/slide1.xml.rels``."""
    part_path = normalize_path(part_path)
    directory, name = posixpath.split(part_path)
    return posixpath.join(directory, '_rels', f"{name}.rels")


def owner_of_rels(rels_path: str) -> str | None:
    """
    Inverse of rels_path_for(). Returns '' for the package-level ``_rels/.rels``
    and None when the path is not a relationship file.
    """
    rels_path = normalize_path(rels_path)
    rels_dir, name = posixpath.split(rels_path)
    if posixpath.basename(rels_dir) != '_rels' or not name.endswith('.rels'):
        return None
    return posixpath.join(posixpath.dirname(rels_dir), name[:-len('.rels')])


def resolve_target(part_path: str, target: str) -> str:
    """Resolve a (possibly ``../``-relative) target against the owning part's directory."""
    target = unquote(target.split('#', 1)[0])
    if target.startswith('/'):
        return normalize_path(target)
    base = posixpath.dirname(normalize_path(part_path))
    return normalize_path(posixpath.join(base, target))


def _relationship_from_element(element, part_path: str) -> Relationship:
    raw_target = xmlpart.get_attr(element, 'Target', '') or ''
    external = xmlpart.get_attr(element, 'TargetMode') == RTM.EXTERNAL
    return Relationship(
        id=xmlpart.get_attr(element, 'Id', '') or '',
        type=xmlpart.get_attr(element, 'Type', '') or '',
        target=raw_target if external else resolve_target(part_path, raw_target),
        raw_target=raw_target,
        external=external,
    )


def _canonical(archive: Archive, rel: Relationship) -> Relationship:
    if rel.external or not rel.target:
        return rel
    target = archive.canonical(rel.target)
    return rel if target == rel.target else rel._replace(target=target)


def parse_relationships(data: bytes, part_path: str, rels_path: str | None = None) -> list[Relationship]:
    """
    Parse the bytes of a .rels file.

    Raises:
        ParseError: If the XML is malformed
    """
    root = xmlpart.parse(data, rels_path or rels_path_for(part_path))
    return [
        _relationship_from_element(el, part_path)
        for el in xmlpart.children(root, 'Relationship')
    ]


def resolve(archive: Archive, part_path: str) -> list[Relationship]:
    """
    List the relationships of a part.

    Args:
        archive: Archive holding the part
        part_path: Path of the owning part ('' for the package root)

    Returns:
        Relationships in document order; empty when the part has no .rels file

    Raises:
        ParseError: If the .rels file exists but is malformed
    """
    rels_path = rels_path_for(part_path)
    data = archive.get(rels_path)
    if data is None:
        return []
    return [_canonical(archive, rel) for rel in parse_relationships(data, part_path, rels_path)]


class RelationshipResolver:
    """
    resolve() memoized for one run.

    Entries are keyed by .rels path and remember the exact bytes object they
    were parsed from, so a rewritten .rels file is re-read automatically.
    Parse failures are logged and treated as "no relationships".
    """

    def __init__(self, archive: Archive) -> None:
        self.archive = archive
        self._cache: dict[str, tuple[bytes, list[Relationship]]] = {}
        self.failed: set[str] = set()

    def resolve(self, part_path: str) -> list[Relationship]:
        rels_path = rels_path_for(part_path)
        data = self.archive.get(rels_path)
        if data is None:
            return []

        cached = self._cache.get(rels_path)
        if cached is not None and cached[0] is data:
            return [_canonical(self.archive, rel) for rel in cached[1]]

        try:
            relationships = parse_relationships(data, part_path, rels_path)
            self.failed.discard(rels_path)
        except ParseError as e:
            logging.warning(f"Skipping unreadable relationships file {rels_path}: {e.original}")
            self.failed.add(rels_path)
            relationships = []

        self._cache[rels_path] = (data, relationships)
        return [_canonical(self.archive, rel) for rel in relationships]

    def first_target(self, part_path: str, kind: str) -> str | None:
        for rel in self.resolve(part_path):
            if rel.kind == kind and not rel.external and rel.target:
                return rel.target
        return None

    def clear(self) -> None:
        self._cache.clear()
        self.failed.clear()


def get_slide_layout_of(archive: Archive, slide_path: str,
                        resolver: RelationshipResolver | None = None) -> str | None:
    """Path of the layout a slide is based on, or None."""
    return (resolver or RelationshipResolver(archive)).first_target(slide_path, SLIDE_LAYOUT)


def get_master_of(archive: Archive, layout_path: str,
                  resolver: RelationshipResolver | None = None) -> str | None:
    """Path of the master a layout belongs to, or None."""
    return (resolver or RelationshipResolver(archive)).first_target(layout_path, SLIDE_MASTER)


def iter_rels_files(archive: Archive) -> Iterator[tuple[str, str]]:
    """Yield (rels_path, owning_part) for every relationship file in the archive."""
    for rels_path in archive.find(suffix='.rels'):
        owner = owner_of_rels(rels_path)
        if owner is not None:
            yield rels_path, owner


def remove_relationships(
    archive: Archive,
    part_path: str,
    predicate: Callable[[Relationship], bool],
) -> list[Relationship]:
    """
    Drop every relationship of ``part_path`` for which ``predicate`` is true.

    The .rels file is only rewritten when something was removed. An
    unreadable .rels file is logged and left untouched.

    Returns:
        The removed relationships
    """
    rels_path = rels_path_for(part_path)
    data = archive.get(rels_path)
    if data is None:
        return []

    try:
        root = xmlpart.parse(data, rels_path)
    except ParseError as e:
        logging.warning(f"Cannot rewrite {rels_path}: {e.original}")
        return []

    removed = []
    for element in xmlpart.children(root, 'Relationship'):
        rel = _canonical(archive, _relationship_from_element(element, part_path))
        if predicate(rel):
            xmlpart.remove_element(element)
            removed.append(rel)

    if removed:
        archive.set(rels_path, xmlpart.serialize(root))
        logging.debug(f"Removed {len(removed)} relationship(s) from {rels_path}: "
                      f"{', '.join(rel.id for rel in removed)}")
    return removed


def retarget_relationships(archive: Archive, old_path: str, new_path: str) -> int:
    """
    Point every internal relationship targeting ``old_path`` at ``new_path``.

    Only the file name is replaced in the authored target, so relative and
    absolute target styles are both kept. Both paths must share a directory.

    Returns:
        Number of relationships updated
    """
    old_path, new_path = normalize_path(old_path), normalize_path(new_path)
    new_name = posixpath.basename(new_path)
    updated = 0

    for rels_path, owner in iter_rels_files(archive):
        try:
            root = xmlpart.parse(archive.get(rels_path), rels_path)
        except ParseError as e:
            logging.warning(f"Cannot retarget {rels_path}: {e.original}")
            continue

        changed = False
        for element in xmlpart.children(root, 'Relationship'):
            rel = _canonical(archive, _relationship_from_element(element, owner))
            if rel.external or rel.target != old_path:
                continue
            head, sep, _ = rel.raw_target.rpartition('/')
            xmlpart.set_attr(element, 'Target', f"{head}{sep}{new_name}")
            changed = True
            updated += 1

        if changed:
            archive.set(rels_path, xmlpart.serialize(root))
    return updated
