import hashlib
from io import BytesIO

import pytest
from asn1crypto import crl as asn1_crl

from pdfsignatures.pdf_utils import generic
from pdfsignatures.pdf_utils.incremental_writer import (
    IncrementalPdfFileWriter,
)
from pdfsignatures.pdf_utils.reader import PdfFileReader
from pdfsignatures.sign import embed, ltv, placeholder
from pdfsignatures.sign.general import NoSignatureForLtvError, ParameterError

from .samples import (
    DUMMY_SIGNATURE,
    MINIMAL,
    MINIMAL_AES256,
    MINIMAL_RC4,
    USER_PASSWORD,
    make_crl,
    make_ocsp_response,
)

RESERVED = 256


def _signed(data=MINIMAL, password=None, signature=DUMMY_SIGNATURE):
    w = IncrementalPdfFileWriter(BytesIO(data), password=password)
    spec = placeholder.PlaceholderSpec.from_params(
        estimated_size=RESERVED, signing_time='2020-11-01T12:00:00'
    )
    result = placeholder.add_signature_placeholder(w, spec)
    prepared = result.output.getvalue()
    r = PdfFileReader(BytesIO(prepared))
    r.unlock(password)
    return embed.embed_signature(r, signature)


def _add_ltv(data, password=None, **kwargs):
    w = IncrementalPdfFileWriter(BytesIO(data), password=password)
    return ltv.add_ltv(w, **kwargs).getvalue()


def _read_dss(data, password=None):
    r = PdfFileReader(BytesIO(data))
    r.unlock(password)
    return r, r.root['/DSS']


def _vri_key(signature=DUMMY_SIGNATURE):
    padded = signature + b'\x00' * (RESERVED - len(signature))
    return '/' + hashlib.sha1(padded).hexdigest().upper()


def _stream_payloads(arr):
    return [x.get_object().data for x in arr]


def test_add_crl_and_ocsp():
    signed = _signed()
    crl_der = make_crl()
    ocsp_der = make_ocsp_response()
    output = _add_ltv(signed, crls=[crl_der], ocsps=[ocsp_der])
    assert output.startswith(signed)

    r, dss = _read_dss(output)
    assert dss['/Type'] == '/DSS'
    assert _stream_payloads(dss['/CRLs']) == [crl_der]
    assert _stream_payloads(dss['/OCSPs']) == [ocsp_der]

    vri = dss['/VRI'][_vri_key()]
    assert vri['/Type'] == '/VRI'
    assert _stream_payloads(vri['/CRL']) == [crl_der]
    assert _stream_payloads(vri['/OCSP']) == [ocsp_der]
    assert r.total_revisions == 3


def test_vri_key():
    ident = ltv.DocumentSecurityStore.sig_content_identifier(b'\x01\x02')
    assert ident == '/' + hashlib.sha1(b'\x01\x02').hexdigest().upper()


def test_only_crls():
    output = _add_ltv(_signed(), crls=[make_crl()])
    _, dss = _read_dss(output)
    assert '/OCSPs' not in dss
    vri = dss['/VRI'][_vri_key()]
    assert '/OCSP' not in vri
    assert len(vri['/CRL']) == 1


def test_ltv_is_cumulative():
    signed = _signed()
    crl1, crl2 = make_crl('Test CA 1'), make_crl('Test CA 2')
    ocsp_der = make_ocsp_response()
    output = _add_ltv(signed, crls=[crl1])
    output = _add_ltv(output, crls=[crl2], ocsps=[ocsp_der])

    r, dss = _read_dss(output)
    assert r.total_revisions == 4
    assert _stream_payloads(dss['/CRLs']) == [crl1, crl2]
    assert _stream_payloads(dss['/OCSPs']) == [ocsp_der]
    vri = dss['/VRI'][_vri_key()]
    assert _stream_payloads(vri['/CRL']) == [crl1, crl2]
    assert _stream_payloads(vri['/OCSP']) == [ocsp_der]


def test_ltv_order_independent():
    signed = _signed()
    crl1, crl2 = make_crl('Test CA 1'), make_crl('Test CA 2')
    output_a = _add_ltv(_add_ltv(signed, crls=[crl1]), crls=[crl2])
    output_b = _add_ltv(_add_ltv(signed, crls=[crl2]), crls=[crl1])
    _, dss_a = _read_dss(output_a)
    _, dss_b = _read_dss(output_b)
    assert set(_stream_payloads(dss_a['/CRLs'])) \
        == set(_stream_payloads(dss_b['/CRLs'])) == {crl1, crl2}


def test_duplicates_stored_once():
    signed = _signed()
    crl_der = make_crl()
    output = _add_ltv(signed, crls=[crl_der, crl_der])
    output = _add_ltv(output, crls=[crl_der])
    _, dss = _read_dss(output)
    assert _stream_payloads(dss['/CRLs']) == [crl_der]
    vri = dss['/VRI'][_vri_key()]
    assert _stream_payloads(vri['/CRL']) == [crl_der]


def test_ltv_latest_signature():
    first = _signed()
    other_sig = DUMMY_SIGNATURE[:-1] + b'\xbb'
    second = _signed(first, signature=other_sig)
    output = _add_ltv(second, ocsps=[make_ocsp_response()])
    _, dss = _read_dss(output)
    assert list(dss['/VRI'].keys()) == [_vri_key(other_sig)]


def test_ltv_streams_compressed():
    output = _add_ltv(_signed(), crls=[make_crl()])
    _, dss = _read_dss(output)
    crl_stream = dss['/CRLs'][0]
    assert crl_stream['/Filter'] == '/FlateDecode'
    # the payload parses back to the same structure
    parsed = asn1_crl.CertificateList.load(crl_stream.data)
    assert parsed.issuer.native['common_name'] == 'Test CA'


@pytest.mark.parametrize('data', [MINIMAL_AES256, MINIMAL_RC4])
def test_ltv_encrypted(data):
    signed = _signed(data, password=USER_PASSWORD)
    crl_der = make_crl()
    output = _add_ltv(signed, password=USER_PASSWORD, crls=[crl_der])
    assert crl_der not in output
    _, dss = _read_dss(output, password=USER_PASSWORD)
    assert _stream_payloads(dss['/CRLs']) == [crl_der]
    assert _vri_key() in dss['/VRI']


def test_ltv_unsigned():
    with pytest.raises(NoSignatureForLtvError):
        _add_ltv(MINIMAL, crls=[make_crl()])


def test_ltv_placeholder_only():
    w = IncrementalPdfFileWriter(BytesIO(MINIMAL))
    spec = placeholder.PlaceholderSpec.from_params(estimated_size=RESERVED)
    result = placeholder.add_signature_placeholder(w, spec)
    prepared = result.output.getvalue()
    with pytest.raises(NoSignatureForLtvError):
        _add_ltv(prepared, crls=[make_crl()])


@pytest.mark.parametrize('kwargs,match', [
    ({'crls': [b'\x30\x03\x02\x01\x01']}, 'Could not parse CRL'),
    ({'crls': [b'garbage']}, 'Could not parse CRL'),
    ({'ocsps': [b'garbage']}, 'Could not parse OCSP response'),
])
def test_ltv_garbage(kwargs, match):
    with pytest.raises(ParameterError, match=match):
        _add_ltv(_signed(), **kwargs)


def test_vri_roundtrip():
    ref1 = generic.Reference(10, 0)
    ref2 = generic.Reference(11, 0)
    vri = ltv.VRI(ocsps=[generic.IndirectObject(10, 0, None)])
    vri.extend(crls=[generic.IndirectObject(11, 0, None)])
    pdf_dict = vri.as_pdf_object()
    assert pdf_dict['/Type'] == '/VRI'
    assert pdf_dict.raw_get('/OCSP').raw_get(0).reference == ref1
    assert pdf_dict.raw_get('/CRL').raw_get(0).reference == ref2
    assert '/Cert' not in pdf_dict
