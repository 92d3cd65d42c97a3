from datetime import datetime, timedelta, timezone
from io import BytesIO

import pytest
from freezegun import freeze_time

from pdfsignatures.pdf_utils import generic
from pdfsignatures.pdf_utils.incremental_writer import (
    IncrementalPdfFileWriter,
)
from pdfsignatures.pdf_utils.misc import PdfReadError
from pdfsignatures.pdf_utils.reader import PdfFileReader
from pdfsignatures.sign import fields, placeholder
from pdfsignatures.sign.general import ParameterError, SigningError
from pdfsignatures.sign.pdf_byterange import read_reserved_region

from .samples import MINIMAL, MINIMAL_EMPTY_FIELD, MINIMAL_XREF


def _add_placeholder(data, **kwargs):
    kwargs.setdefault('signing_time', '2020-11-01T12:00:00')
    w = IncrementalPdfFileWriter(BytesIO(data))
    spec = placeholder.PlaceholderSpec.from_params(**kwargs)
    return placeholder.add_signature_placeholder(w, spec)


def _sig_field(r: PdfFileReader, name):
    for field_name, value, _ in fields.enumerate_sig_fields(r):
        if field_name == name:
            return value
    raise KeyError(name)


@pytest.mark.parametrize('data', [MINIMAL, MINIMAL_XREF])
def test_placeholder_byte_range(data):
    result = _add_placeholder(data, estimated_size=1024)
    output = result.output.getvalue()
    assert output.startswith(data)

    br = result.byte_range
    assert br[0] == 0
    assert br[2] + br[3] == len(output)
    contents_len = br[2] - br[1]
    assert contents_len == 2 * 1024 + 2
    assert br[1] + br[3] == len(output) - contents_len
    assert output[br[1]:br[2]] == b'<' + b'0' * 2048 + b'>'

    r = PdfFileReader(BytesIO(output))
    assert r.total_revisions == 2
    sig_dict = _sig_field(r, result.field_name)
    assert list(sig_dict['/ByteRange']) == br
    region = read_reserved_region(sig_dict, output)
    assert region.byte_range == tuple(br)
    assert region.bytes_reserved == 1024
    assert region.is_empty(output)


def test_placeholder_dictionary():
    result = _add_placeholder(
        MINIMAL, estimated_size=512, reason='Approval', location='Ghent',
        contact_info='signer@example.com',
    )
    r = PdfFileReader(BytesIO(result.output.getvalue()))
    assert result.field_name == 'Signature1'
    sig_dict = _sig_field(r, 'Signature1')
    assert sig_dict['/Type'] == '/Sig'
    assert sig_dict['/Filter'] == '/Adobe.PPKLite'
    assert sig_dict['/SubFilter'] == '/adbe.pkcs7.detached'
    assert sig_dict['/Reason'] == 'Approval'
    assert sig_dict['/Location'] == 'Ghent'
    assert sig_dict['/ContactInfo'] == 'signer@example.com'
    assert sig_dict['/M'] == 'D:20201101120000Z'
    assert sig_dict['/Prop_Build']['/App']['/Name'] == '/pdfsignatures'
    assert '/Reference' not in sig_dict

    form = r.root['/AcroForm']
    assert form['/SigFlags'] == 1
    assert '/Perms' not in r.root


def test_certification_placeholder():
    result = _add_placeholder(
        MINIMAL, estimated_size=30000,
        cert_level=fields.CertificationLevel.CERTIFIED_NO_CHANGES_ALLOWED,
    )
    r = PdfFileReader(BytesIO(result.output.getvalue()))
    assert r.root['/AcroForm']['/SigFlags'] == 3
    sig_dict = _sig_field(r, result.field_name)
    ref_dict = sig_dict['/Reference'][0]
    assert ref_dict['/TransformMethod'] == '/DocMDP'
    assert ref_dict['/TransformParams']['/P'] == 1
    docmdp = r.root['/Perms'].raw_get('/DocMDP')
    field = r.root['/AcroForm']['/Fields'][0]
    assert docmdp.reference == field.raw_get('/V').reference


@pytest.mark.parametrize('level', [1, 2, 3])
def test_cert_level_from_int(level):
    result = _add_placeholder(MINIMAL, estimated_size=64, cert_level=level)
    r = PdfFileReader(BytesIO(result.output.getvalue()))
    sig_dict = _sig_field(r, result.field_name)
    assert sig_dict['/Reference'][0]['/TransformParams']['/P'] == level


def test_certify_twice():
    result = _add_placeholder(MINIMAL, estimated_size=64, cert_level=1)
    with pytest.raises(ParameterError, match='already contains a cert'):
        _add_placeholder(
            result.output.getvalue(), estimated_size=64, cert_level=2
        )


def test_approval_after_certification():
    result = _add_placeholder(MINIMAL, estimated_size=64, cert_level=2)
    result = _add_placeholder(result.output.getvalue(), estimated_size=64)
    assert result.field_name == 'Signature2'
    r = PdfFileReader(BytesIO(result.output.getvalue()))
    assert r.total_revisions == 3
    # the lock set by the certification signature is preserved
    assert r.root['/AcroForm']['/SigFlags'] == 3


def test_field_name():
    result = _add_placeholder(MINIMAL, estimated_size=64, field_name='Sig')
    assert result.field_name == 'Sig'
    with pytest.raises(SigningError, match='already exists'):
        _add_placeholder(
            result.output.getvalue(), estimated_size=64, field_name='Sig'
        )


def test_next_field_name_skips_existing():
    result = _add_placeholder(MINIMAL_EMPTY_FIELD, estimated_size=64)
    assert result.field_name == 'Signature1'
    r = PdfFileReader(BytesIO(result.output.getvalue()))
    names = [name for name, _, _ in fields.enumerate_sig_fields(r)]
    assert names == ['Unsigned', 'Signature1']


@pytest.mark.parametrize('size', [0, -1, True, '100', 1.5, None])
def test_invalid_estimated_size(size):
    with pytest.raises(ParameterError, match='positive integer'):
        placeholder.PlaceholderSpec.from_params(estimated_size=size)


@pytest.mark.parametrize('level', [-1, 4, '1', None])
def test_invalid_cert_level(level):
    with pytest.raises(ParameterError):
        placeholder.PlaceholderSpec.from_params(cert_level=level)


@pytest.mark.parametrize('date', ['yesterday', '2020-13-01', '2020-02-30'])
def test_invalid_date(date):
    with pytest.raises(ParameterError, match='Could not parse signing date'):
        placeholder.PlaceholderSpec.from_params(signing_time=date)


@pytest.mark.parametrize('date,expected', [
    ('2020-11-01T12:00:00', 'D:20201101120000Z'),
    ('2020-11-01T12:00:00+02:00', "D:20201101120000+02'00'"),
    (datetime(2020, 11, 1, 12), 'D:20201101120000Z'),
    (
        datetime(2020, 11, 1, 12, tzinfo=timezone(-timedelta(hours=5))),
        "D:20201101120000-05'00'"
    ),
])
def test_signing_time(date, expected):
    result = _add_placeholder(MINIMAL, estimated_size=64, signing_time=date)
    r = PdfFileReader(BytesIO(result.output.getvalue()))
    sig_dict = _sig_field(r, result.field_name)
    assert sig_dict['/M'] == expected


@freeze_time('2020-11-15 12:00:00')
def test_signing_time_defaults_to_now():
    spec = placeholder.PlaceholderSpec.from_params()
    assert spec.signing_time.tzinfo is not None
    assert abs(
        spec.signing_time - datetime(2020, 11, 15, 12, tzinfo=timezone.utc)
    ) < timedelta(seconds=1)

    result = _add_placeholder(MINIMAL, estimated_size=64, signing_time=None)
    r = PdfFileReader(BytesIO(result.output.getvalue()))
    sig_dict = _sig_field(r, result.field_name)
    signing_time = generic.parse_pdf_date(sig_dict['/M'])
    assert signing_time == datetime(2020, 11, 15, 12, tzinfo=timezone.utc)


def test_default_spec():
    spec = placeholder.PlaceholderSpec.from_params()
    assert spec.estimated_size == placeholder.DEFAULT_ESTIMATED_SIZE == 30000
    assert spec.cert_level == fields.CertificationLevel.NOT_CERTIFIED
    assert spec.field_name is None


def _without_page_tree(data):
    w = IncrementalPdfFileWriter(BytesIO(data))
    del w.root['/Pages']
    w.update_root()
    out = BytesIO()
    w.write(out)
    return out.getvalue()


def test_catalog_without_pages():
    data = _without_page_tree(MINIMAL)
    with pytest.raises(PdfReadError, match='no /Pages entry'):
        _add_placeholder(data, estimated_size=64)
