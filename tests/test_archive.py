"""
Tests for the in-memory archive model.
"""

import io
import sys
import zipfile
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))
from pptx_slim.archive import Archive, normalize_path
from pptx_slim.errors import ArchiveError


def test_normalize_path():
    """Backslashes, outer slashes and dot segments are normalized away."""
    assert normalize_path('/ppt/slides/slide1.xml') == 'ppt/slides/slide1.xml'
    assert normalize_path('ppt\\media\\image1.png') == 'ppt/media/image1.png'
    assert normalize_path('ppt/slides/../media/./image1.png') == 'ppt/media/image1.png'
    assert normalize_path('/') == ''


def test_set_get_remove():
    """Keys differing only by slashes address the same entry."""
    archive = Archive()
    archive.set('/ppt/a.xml', b'one')
    assert archive.get('ppt/a.xml') == b'one'
    assert 'ppt\\a.xml' in archive
    assert len(archive) == 1

    assert archive.remove('ppt/a.xml') is True
    assert archive.remove('ppt/a.xml') is False
    assert archive.get('ppt/a.xml') is None


def test_set_rejects_empty_path():
    with pytest.raises(ValueError):
        Archive().set('/', b'x')


def test_case_insensitive_lookup():
    """Part names differing only by case resolve to the stored entry."""
    archive = Archive({'ppt/media/image1.png': b'x'})
    assert 'ppt/media/Image1.PNG' in archive
    assert archive.canonical('ppt/media/IMAGE1.png') == 'ppt/media/image1.png'

    archive.remove('ppt/media/image1.png')
    assert 'ppt/media/Image1.PNG' not in archive


def test_iter_paths_filters():
    """Prefix, suffix and pattern filters combine."""
    archive = Archive({
        'ppt/slides/slide1.xml': b'',
        'ppt/slides/_rels/slide1.xml.rels': b'',
        'ppt/media/image1.png': b'',
    })
    assert archive.find(prefix='ppt/slides/') == ['ppt/slides/slide1.xml', 'ppt/slides/_rels/slide1.xml.rels']
    assert archive.find(suffix='.rels') == ['ppt/slides/_rels/slide1.xml.rels']
    assert archive.find(pattern=r'image\d+\.png$') == ['ppt/media/image1.png']


def test_zip_round_trip_content_types_first():
    """to_bytes() writes a deflated ZIP with [Content_Types].xml as the first member."""
    archive = Archive({'ppt/presentation.xml': b'<p/>', '[Content_Types].xml': b'<Types/>'})
    data = archive.to_bytes()

    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        infos = zf.infolist()
        assert infos[0].filename == '[Content_Types].xml'
        assert all(info.compress_type == zipfile.ZIP_DEFLATED for info in infos)

    reloaded = Archive.from_bytes(data)
    assert reloaded.get('ppt/presentation.xml') == b'<p/>'


def test_from_bytes_rejects_garbage():
    with pytest.raises(ArchiveError):
        Archive.from_bytes(b'this is not a zip file')


def test_transaction_commit_and_discard():
    """Changes are only visible on the base archive after commit."""
    base = Archive({'a.xml': b'1'})

    txn = base.transaction()
    txn.archive.set('a.xml', b'2')
    txn.archive.set('b.xml', b'3')
    assert base.get('a.xml') == b'1'
    txn.commit()
    assert base.get('a.xml') == b'2'
    assert 'b.xml' in base

    txn = base.transaction()
    txn.archive.remove('a.xml')
    txn.discard()
    assert base.get('a.xml') == b'2'

    with pytest.raises(RuntimeError):
        txn.commit()


def test_transaction_context_manager_discards_on_error():
    """An exception escaping the block leaves the base archive untouched."""
    base = Archive({'a.xml': b'1'})
    with pytest.raises(KeyError):
        with base.transaction() as txn:
            txn.archive.remove('a.xml')
            raise KeyError('boom')
    assert base.get('a.xml') == b'1'

    with base.transaction() as txn:
        txn.archive.set('a.xml', b'changed')
    assert base.get('a.xml') == b'changed'
