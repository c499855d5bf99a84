"""
Tests for relationship resolution and rewriting.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))
from pptx_slim import rels
from pptx_slim.archive import Archive
from pptx_factory import build_archive, rels_xml


def test_rels_path_round_trip():
    assert rels.rels_path_for('ppt/slides/slide1.xml') == 'ppt/slides/_rels/slide1.xml.rels'
    assert rels.rels_path_for('') == '_rels/.rels'
    assert rels.owner_of_rels('ppt/slides/_rels/slide1.xml.rels') == 'ppt/slides/slide1.xml'
    assert rels.owner_of_rels('_rels/.rels') == ''
    assert rels.owner_of_rels('ppt/slides/slide1.xml') is None


def test_resolve_target_relative_and_absolute():
    """Targets resolve against the owning part's directory; a leading slash is package-absolute."""
    assert rels.resolve_target('ppt/slides/slide1.xml', '../media/image1.png') == 'ppt/media/image1.png'
    assert rels.resolve_target('ppt/slides/slide1.xml', '/ppt/media/image1.png') == 'ppt/media/image1.png'
    assert rels.resolve_target('ppt/presentation.xml', 'slides/slide1.xml') == 'ppt/slides/slide1.xml'
    assert rels.resolve_target('ppt/slides/slide1.xml', '../media/my%20image.png') == 'ppt/media/my image.png'


def test_type_marker_classification():
    """'slide' is not confused with 'slideLayout' or 'slideMaster'."""
    base = 'http://schemas.openxmlformats.org/officeDocument/2006/relationships/'
    assert rels.type_marker(base + 'slide') == rels.SLIDE
    assert rels.type_marker(base + 'slideLayout') == rels.SLIDE_LAYOUT
    assert rels.type_marker(base + 'slideMaster') == rels.SLIDE_MASTER
    assert rels.SLIDE != rels.SLIDE_LAYOUT
    assert rels.type_marker('http://schemas.microsoft.com/office/2007/relationships/hdphoto') in rels.MEDIA_KINDS


def test_resolve_missing_rels_is_empty():
    archive = Archive({'ppt/slides/slide1.xml': b'<p:sld/>'})
    assert rels.resolve(archive, 'ppt/slides/slide1.xml') == []


def test_resolve_external_targets_untouched():
    """External hyperlinks keep their URI and are flagged external."""
    archive = Archive({
        'ppt/slides/_rels/slide1.xml.rels': rels_xml([
            ('rId1', 'slideLayout', '../slideLayouts/slideLayout1.xml'),
            ('rId2', 'hyperlink', 'https://example.com/a/../b', 'External'),
        ]).encode('utf-8'),
    })
    found = rels.resolve(archive, 'ppt/slides/slide1.xml')
    assert [r.target for r in found] == ['ppt/slideLayouts/slideLayout1.xml', 'https://example.com/a/../b']
    assert [r.external for r in found] == [False, True]


def test_slide_layout_and_master_lookup():
    archive = build_archive(slides=[{'layout': 2}], layout_masters=(1, 1))
    assert rels.get_slide_layout_of(archive, 'ppt/slides/slide1.xml') == 'ppt/slideLayouts/slideLayout2.xml'
    assert rels.get_master_of(archive, 'ppt/slideLayouts/slideLayout2.xml') == 'ppt/slideMasters/slideMaster1.xml'


def test_resolver_cache_refreshes_on_rewrite():
    """A rewritten .rels file is re-read by the memoized resolver."""
    archive = build_archive(slides=[{'media': ['image1.png']}])
    resolver = rels.RelationshipResolver(archive)
    assert len(resolver.resolve('ppt/slides/slide1.xml')) == 2

    rels.remove_relationships(archive, 'ppt/slides/slide1.xml', lambda r: r.kind == rels.IMAGE)
    assert [r.kind for r in resolver.resolve('ppt/slides/slide1.xml')] == [rels.SLIDE_LAYOUT]


def test_resolver_logs_and_skips_malformed_rels(caplog):
    archive = Archive({'ppt/slides/_rels/slide1.xml.rels': b'<Relationships><broken'})
    resolver = rels.RelationshipResolver(archive)
    assert resolver.resolve('ppt/slides/slide1.xml') == []
    assert 'ppt/slides/_rels/slide1.xml.rels' in resolver.failed
    assert 'unreadable relationships' in caplog.text


def test_resolver_matches_case_insensitive_targets():
    """A target differing from the stored part name only by case resolves to the stored name."""
    archive = Archive({
        'ppt/media/image1.png': b'png',
        'ppt/slides/_rels/slide1.xml.rels': rels_xml([('rId1', 'image', '../media/Image1.PNG')]).encode('utf-8'),
    })
    (rel,) = rels.RelationshipResolver(archive).resolve('ppt/slides/slide1.xml')
    assert rel.target == 'ppt/media/image1.png'


def test_remove_relationships_returns_removed():
    archive = build_archive(slides=[{'media': ['a.png', 'b.png']}])
    removed = rels.remove_relationships(
        archive, 'ppt/slides/slide1.xml', lambda r: r.target == 'ppt/media/a.png')
    assert [r.target for r in removed] == ['ppt/media/a.png']
    targets = [r.target for r in rels.resolve(archive, 'ppt/slides/slide1.xml')]
    assert 'ppt/media/a.png' not in targets
    assert 'ppt/media/b.png' in targets


def test_retarget_relationships_keeps_target_style():
    """Renaming a part updates relative and absolute targets alike."""
    archive = Archive({
        'ppt/media/image1.png': b'png',
        'ppt/slides/_rels/slide1.xml.rels': rels_xml([('rId1', 'image', '../media/image1.png')]).encode('utf-8'),
        'ppt/slides/_rels/slide2.xml.rels': rels_xml([('rId1', 'image', '/ppt/media/image1.png')]).encode('utf-8'),
    })
    assert rels.retarget_relationships(archive, 'ppt/media/image1.png', 'ppt/media/image1.webp') == 2

    one = rels.resolve(archive, 'ppt/slides/slide1.xml')[0]
    two = rels.resolve(archive, 'ppt/slides/slide2.xml')[0]
    assert one.raw_target == '../media/image1.webp'
    assert two.raw_target == '/ppt/media/image1.webp'
    assert one.target == two.target == 'ppt/media/image1.webp'
