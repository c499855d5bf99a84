"""
Builders for hand-made .pptx archives with an exact reference graph.

python-pptx decks always carry one master with eleven layouts, which makes
precise pruning scenarios awkward; these helpers write the parts directly.
"""

import io
import random
import sys
from pathlib import Path

from PIL import Image

sys.path.insert(0, str(Path(__file__).parent.parent))
from pptx_slim.archive import Archive


NS_P = 'http://schemas.openxmlformats.org/presentationml/2006/main'
NS_A = 'http://schemas.openxmlformats.org/drawingml/2006/main'
NS_R = 'http://schemas.openxmlformats.org/officeDocument/2006/relationships'
NS_PR = 'http://schemas.openxmlformats.org/package/2006/relationships'
NS_CT = 'http://schemas.openxmlformats.org/package/2006/content-types'
RT = NS_R + '/'

CT_PRESENTATION = 'application/vnd.openxmlformats-officedocument.presentationml.presentation.main+xml'
CT_SLIDE = 'application/vnd.openxmlformats-officedocument.presentationml.slide+xml'
CT_LAYOUT = 'application/vnd.openxmlformats-officedocument.presentationml.slideLayout+xml'
CT_MASTER = 'application/vnd.openxmlformats-officedocument.presentationml.slideMaster+xml'
CT_NOTES = 'application/vnd.openxmlformats-officedocument.presentationml.notesSlide+xml'
CT_THEME = 'application/vnd.openxmlformats-officedocument.theme+xml'

XML_DECL = '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
ROOT_NS = f'xmlns:a="{NS_A}" xmlns:r="{NS_R}" xmlns:p="{NS_P}"'
SP_TREE = ('<p:cSld><p:spTree><p:nvGrpSpPr><p:cNvPr id="1" name=""/><p:cNvGrpSpPr/><p:nvPr/>'
           '</p:nvGrpSpPr><p:grpSpPr/></p:spTree></p:cSld>')


def make_png(width: int = 64, height: int = 64, color: str = 'red') -> bytes:
    """Flat-colored PNG."""
    img = Image.new('RGB', (width, height), color=color)
    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    return buffer.getvalue()


def make_noise_png(width: int = 400, height: int = 300, seed: int = 0) -> bytes:
    """Photo-like PNG: random pixels, so lossless PNG stays large."""
    rng = random.Random(seed)
    img = Image.frombytes('RGB', (width, height), rng.randbytes(width * height * 3))
    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    return buffer.getvalue()


def make_jpeg(width: int = 400, height: int = 300, seed: int = 0, quality: int = 100) -> bytes:
    rng = random.Random(seed)
    img = Image.frombytes('RGB', (width, height), rng.randbytes(width * height * 3))
    buffer = io.BytesIO()
    img.save(buffer, format='JPEG', quality=quality)
    return buffer.getvalue()


def rels_xml(entries) -> str:
    """entries: iterable of (rId, type marker or full URI, target[, 'External'])."""
    rows = []
    for entry in entries:
        rid, rel_type, target = entry[:3]
        uri = rel_type if '/' in rel_type else RT + rel_type
        mode = f' TargetMode="{entry[3]}"' if len(entry) > 3 else ''
        rows.append(f'<Relationship Id="{rid}" Type="{uri}" Target="{target}"{mode}/>')
    return f'{XML_DECL}<Relationships xmlns="{NS_PR}">{"".join(rows)}</Relationships>'


def slide_xml(hidden: bool = False) -> str:
    show = ' show="0"' if hidden else ''
    return f'{XML_DECL}<p:sld {ROOT_NS}{show}>{SP_TREE}<p:clrMapOvr><a:masterClrMapping/></p:clrMapOvr></p:sld>'


def build_archive(
    slides=None,
    layout_masters=(1,),
    master_count: int = 1,
    layout_media=None,
    master_media=None,
    media=None,
    custom_show: bool = False,
) -> Archive:
    """
    Build a presentation archive.

    Args:
        slides: list of dicts with keys ``layout`` (1-based, default 1),
            ``media`` (list of file names under ppt/media), ``hidden`` and
            ``notes`` (bools). Defaults to one plain slide.
        layout_masters: master number for each layout; its length is the
            number of layouts
        master_count: number of masters
        layout_media: {layout number: [media names]}
        master_media: {master number: [media names]}
        media: {name: bytes} for every media file present; referenced names
            missing from it get a small PNG
        custom_show: add a custom show listing every slide
    """
    slides = slides if slides is not None else [{}]
    layout_media = layout_media or {}
    master_media = master_media or {}
    media = dict(media or {})
    entries: dict[str, bytes] = {}
    overrides = []

    def put(path, text, content_type=None):
        entries[path] = text.encode('utf-8') if isinstance(text, str) else text
        if content_type:
            overrides.append(f'<Override PartName="/{path}" ContentType="{content_type}"/>')

    def media_rels(names, start):
        rows = []
        for offset, name in enumerate(names):
            media.setdefault(name, make_png(color='blue'))
            rows.append((f'rIdImg{start + offset}', 'image', f'../media/{name}'))
        return rows

    # Masters, each with a theme and its layouts
    for m in range(1, master_count + 1):
        layouts = [i + 1 for i, owner in enumerate(layout_masters) if owner == m]
        ids = ''.join(f'<p:sldLayoutId id="{2147483648 + m * 100 + n}" r:id="rIdL{n}"/>' for n in layouts)
        id_list = f'<p:sldLayoutIdLst>{ids}</p:sldLayoutIdLst>' if layouts else ''
        put(f'ppt/slideMasters/slideMaster{m}.xml',
            f'{XML_DECL}<p:sldMaster {ROOT_NS}>{SP_TREE}'
            f'<p:clrMap bg1="lt1" tx1="dk1" bg2="lt2" tx2="dk2" accent1="accent1" accent2="accent2" '
            f'accent3="accent3" accent4="accent4" accent5="accent5" accent6="accent6" hlink="hlink" '
            f'folHlink="folHlink"/>{id_list}</p:sldMaster>',
            CT_MASTER)
        rows = [(f'rIdL{n}', 'slideLayout', f'../slideLayouts/slideLayout{n}.xml') for n in layouts]
        rows.append(('rIdTheme', 'theme', f'../theme/theme{m}.xml'))
        rows += media_rels(master_media.get(m, []), 1)
        put(f'ppt/slideMasters/_rels/slideMaster{m}.xml.rels', rels_xml(rows))
        put(f'ppt/theme/theme{m}.xml', f'{XML_DECL}<a:theme xmlns:a="{NS_A}" name="Theme {m}"/>', CT_THEME)

    for n, owner in enumerate(layout_masters, start=1):
        put(f'ppt/slideLayouts/slideLayout{n}.xml',
            f'{XML_DECL}<p:sldLayout {ROOT_NS}>{SP_TREE}</p:sldLayout>', CT_LAYOUT)
        rows = [('rId1', 'slideMaster', f'../slideMasters/slideMaster{owner}.xml')]
        rows += media_rels(layout_media.get(n, []), 2)
        put(f'ppt/slideLayouts/_rels/slideLayout{n}.xml.rels', rels_xml(rows))

    # Slides
    pres_rows = [(f'rIdM{m}', 'slideMaster', f'slideMasters/slideMaster{m}.xml')
                 for m in range(1, master_count + 1)]
    sld_ids = []
    for s, options in enumerate(slides, start=1):
        put(f'ppt/slides/slide{s}.xml', slide_xml(options.get('hidden', False)), CT_SLIDE)
        rows = [('rId1', 'slideLayout', f'../slideLayouts/slideLayout{options.get("layout", 1)}.xml')]
        rows += media_rels(options.get('media', []), 2)
        if options.get('notes'):
            rows.append(('rIdNotes', 'notesSlide', f'../notesSlides/notesSlide{s}.xml'))
            put(f'ppt/notesSlides/notesSlide{s}.xml',
                f'{XML_DECL}<p:notes {ROOT_NS}>{SP_TREE}</p:notes>', CT_NOTES)
            put(f'ppt/notesSlides/_rels/notesSlide{s}.xml.rels',
                rels_xml([('rId1', 'slide', f'../slides/slide{s}.xml')]))
        put(f'ppt/slides/_rels/slide{s}.xml.rels', rels_xml(rows))
        pres_rows.append((f'rIdS{s}', 'slide', f'slides/slide{s}.xml'))
        sld_ids.append(f'<p:sldId id="{255 + s}" r:id="rIdS{s}"/>')

    master_ids = ''.join(f'<p:sldMasterId id="{2147483648 + m * 100}" r:id="rIdM{m}"/>'
                         for m in range(1, master_count + 1))
    shows = ''
    if custom_show:
        refs = ''.join(f'<p:sld r:id="rIdS{s}"/>' for s in range(1, len(slides) + 1))
        shows = f'<p:custShowLst><p:custShow name="Short" id="0"><p:sldLst>{refs}</p:sldLst></p:custShow></p:custShowLst>'
    put('ppt/presentation.xml',
        f'{XML_DECL}<p:presentation {ROOT_NS}><p:sldMasterIdLst>{master_ids}</p:sldMasterIdLst>'
        f'<p:sldIdLst>{"".join(sld_ids)}</p:sldIdLst>'
        f'<p:sldSz cx="9144000" cy="6858000"/><p:notesSz cx="6858000" cy="9144000"/>{shows}</p:presentation>',
        CT_PRESENTATION)
    put('ppt/_rels/presentation.xml.rels', rels_xml(pres_rows))
    put('_rels/.rels', rels_xml([('rId1', 'officeDocument', 'ppt/presentation.xml')]))

    for name, data in media.items():
        entries[f'ppt/media/{name}'] = data

    content_types = (
        f'{XML_DECL}<Types xmlns="{NS_CT}">'
        '<Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>'
        '<Default Extension="xml" ContentType="application/xml"/>'
        '<Default Extension="png" ContentType="image/png"/>'
        '<Default Extension="jpeg" ContentType="image/jpeg"/>'
        f'{"".join(overrides)}</Types>'
    )
    archive = Archive()
    archive.set('[Content_Types].xml', content_types.encode('utf-8'))
    for path, data in entries.items():
        archive.set(path, data)
    return archive
