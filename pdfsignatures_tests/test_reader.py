from io import BytesIO

import pytest

from pdfsignatures.pdf_utils import generic
from pdfsignatures.pdf_utils.incremental_writer import (
    IncrementalPdfFileWriter,
)
from pdfsignatures.pdf_utils.misc import (
    PdfHeaderError,
    PdfReadError,
    XRefChainError,
)
from pdfsignatures.pdf_utils.reader import PdfFileReader

from .samples import (
    MINIMAL,
    MINIMAL_OBJSTREAM,
    MINIMAL_TWO_REVISIONS,
    MINIMAL_XREF,
    simple_page,
)


def _first_page(r: PdfFileReader):
    return r.root['/Pages']['/Kids'][0]


@pytest.mark.parametrize('data', [MINIMAL, MINIMAL_XREF, MINIMAL_OBJSTREAM])
def test_read_single_revision(data):
    r = PdfFileReader(BytesIO(data))
    assert r.total_revisions == 1
    assert r.root['/Pages']['/Count'] == 1
    page = _first_page(r)
    font = page['/Resources']['/Font']['/F1']
    assert font['/BaseFont'] == '/Courier'
    assert b'Hello world' in page['/Contents'].data
    assert r.trailer['/Info']['/Producer'] == 'pdfsignatures tests'


def test_xref_flavours():
    assert PdfFileReader(BytesIO(MINIMAL)).has_xref_stream
    assert not PdfFileReader(BytesIO(MINIMAL_XREF)).has_xref_stream
    assert b'xref\n' in MINIMAL_XREF


def test_read_two_revisions():
    r = PdfFileReader(BytesIO(MINIMAL_TWO_REVISIONS))
    assert r.total_revisions == 2
    assert r.root['/Pages']['/Count'] == 2
    page_ref = r.root['/Pages']['/Kids'].raw_get(1).reference
    assert r.xrefs.get_introducing_revision(page_ref) == 1
    # the original revision is untouched
    assert MINIMAL_TWO_REVISIONS.startswith(MINIMAL)


def test_incremental_update_without_changes_copies_input():
    w = IncrementalPdfFileWriter(BytesIO(MINIMAL))
    out = BytesIO()
    w.write(out)
    assert out.getvalue() == MINIMAL


def test_incremental_update_appends():
    w = IncrementalPdfFileWriter(BytesIO(MINIMAL_XREF))
    w.insert_page(simple_page(w, 'Appended'))
    out = BytesIO()
    w.write(out)
    data = out.getvalue()
    assert data.startswith(MINIMAL_XREF)
    r = PdfFileReader(BytesIO(data))
    assert r.total_revisions == 2
    # xref flavour is preserved
    assert not r.has_xref_stream


def test_bad_header():
    data = b'%PFD-1.7' + MINIMAL[8:]
    with pytest.raises(PdfHeaderError, match='Illegal PDF header'):
        PdfFileReader(BytesIO(data))


def test_empty_file():
    with pytest.raises(PdfReadError):
        PdfFileReader(BytesIO(b''))


def _break_startxref(data: bytes) -> bytes:
    head, _ = data.rsplit(b'startxref\n', 1)
    return head + b'startxref\n1\n%%EOF\n'


@pytest.mark.parametrize('data', [MINIMAL, MINIMAL_XREF])
def test_broken_xref_chain(data):
    with pytest.raises(XRefChainError):
        PdfFileReader(BytesIO(_break_startxref(data)))


def test_broken_header_and_chain_are_distinguished():
    assert not issubclass(XRefChainError, PdfHeaderError)
    assert not issubclass(PdfHeaderError, XRefChainError)


def test_hex_string_roundtrip():
    stream = BytesIO(b'<48656c6c6f>')
    obj = generic.read_hex_string_from_stream(stream)
    assert obj.original_bytes == b'Hello'
