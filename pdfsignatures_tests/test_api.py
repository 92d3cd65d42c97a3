import asyncio
import base64
import hashlib
from io import BytesIO

import pytest

from pdfsignatures import api
from pdfsignatures.pdf_utils.reader import PdfFileReader

from .samples import (
    DUMMY_SIGNATURE,
    MINIMAL,
    MINIMAL_AES256,
    MINIMAL_RC4,
    MINIMAL_TWO_PLACEHOLDERS,
    OWNER_PASSWORD,
    USER_PASSWORD,
    make_crl,
    make_ocsp_response,
)

B64_SIGNATURE = base64.b64encode(DUMMY_SIGNATURE).decode('ascii')


@pytest.fixture
def minimal_file(tmp_path):
    path = tmp_path / 'minimal.pdf'
    path.write_bytes(MINIMAL)
    return path


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode('ascii')


def test_full_workflow(tmp_path, minimal_file):
    prepared = tmp_path / 'prepared.pdf'
    signed = tmp_path / 'signed.pdf'
    with_ltv = tmp_path / 'ltv.pdf'

    result = api.add_signature_placeholder(
        minimal_file, prepared, estimated_size=1024, reason='Testing',
        date='2020-11-01T12:00:00'
    )
    assert result == api.PlaceholderResult(output_path=str(prepared))
    prepared_data = prepared.read_bytes()

    digest_result = api.compute_digest(prepared, algorithm='SHA-256')
    r = PdfFileReader(BytesIO(prepared_data))
    sig_dict = r.root['/AcroForm']['/Fields'][0]['/V']
    br = [int(x) for x in sig_dict['/ByteRange']]
    md = hashlib.sha256(prepared_data[:br[1]] + prepared_data[br[2]:])
    assert base64.b64decode(digest_result.digest) == md.digest()
    assert br[1] + br[3] == len(prepared_data) - (br[2] - br[1])

    sign_result = api.embed_signature(prepared, signed, B64_SIGNATURE)
    assert sign_result.output_path == str(signed)
    signed_data = signed.read_bytes()
    assert len(signed_data) == len(prepared_data)
    assert signed_data[:br[1]] == prepared_data[:br[1]]
    assert signed_data[br[2]:] == prepared_data[br[2]:]

    ltv_result = api.add_ltv(
        signed, with_ltv, crl=[_b64(make_crl())],
        ocsp=[_b64(make_ocsp_response())]
    )
    assert ltv_result.output_path == str(with_ltv)
    assert with_ltv.read_bytes().startswith(signed_data)


def test_in_place(minimal_file):
    api.add_signature_placeholder(
        minimal_file, minimal_file, estimated_size=256
    )
    data = minimal_file.read_bytes()
    assert data.startswith(MINIMAL)
    assert len(data) > len(MINIMAL)
    api.embed_signature(minimal_file, minimal_file, B64_SIGNATURE)
    assert len(minimal_file.read_bytes()) == len(data)


def test_embed_too_large_leaves_output_alone(tmp_path, minimal_file):
    prepared = tmp_path / 'prepared.pdf'
    api.add_signature_placeholder(minimal_file, prepared, estimated_size=16)
    before = prepared.read_bytes()
    with pytest.raises(api.SignatureTooLargeError):
        api.embed_signature(prepared, prepared, B64_SIGNATURE)
    assert prepared.read_bytes() == before
    # no stray temporary files
    assert sorted(p.name for p in tmp_path.iterdir()) \
        == ['minimal.pdf', 'prepared.pdf']


@pytest.mark.parametrize('signature', ['not base64!', '', 'AAA'])
def test_embed_bad_base64(tmp_path, minimal_file, signature):
    prepared = tmp_path / 'prepared.pdf'
    api.add_signature_placeholder(minimal_file, prepared, estimated_size=64)
    with pytest.raises(api.ParameterError):
        api.embed_signature(prepared, tmp_path / 'out.pdf', signature)
    assert not (tmp_path / 'out.pdf').exists()


def test_ltv_bad_base64(tmp_path, minimal_file):
    with pytest.raises(api.ParameterError, match='CRL'):
        api.add_ltv(minimal_file, tmp_path / 'out.pdf', crl=['%%%'])


def test_ltv_unsigned(tmp_path, minimal_file):
    with pytest.raises(api.NoSignatureForLtvError):
        api.add_ltv(
            minimal_file, tmp_path / 'out.pdf', crl=[_b64(make_crl())]
        )


def test_digest_without_placeholder(minimal_file):
    with pytest.raises(api.PlaceholderNotFoundError):
        api.compute_digest(minimal_file)


def test_digest_ambiguous(tmp_path):
    path = tmp_path / 'ambiguous.pdf'
    path.write_bytes(MINIMAL_TWO_PLACEHOLDERS)
    with pytest.raises(api.AmbiguousPlaceholderError):
        api.compute_digest(path)


def test_parse_error(tmp_path):
    path = tmp_path / 'broken.pdf'
    path.write_bytes(b'this is not a PDF file')
    with pytest.raises(api.ParseError):
        api.compute_digest(path)
    with pytest.raises(api.ParseError):
        api.add_signature_placeholder(path, tmp_path / 'out.pdf')


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        api.compute_digest(tmp_path / 'nonexistent.pdf')


@pytest.mark.parametrize('data', [MINIMAL_AES256, MINIMAL_RC4])
@pytest.mark.parametrize('password', [USER_PASSWORD, OWNER_PASSWORD])
def test_encrypted_workflow(tmp_path, data, password):
    infile = tmp_path / 'encrypted.pdf'
    infile.write_bytes(data)
    prepared = tmp_path / 'prepared.pdf'
    signed = tmp_path / 'signed.pdf'
    api.add_signature_placeholder(
        infile, prepared, estimated_size=256, password=password
    )
    digest_result = api.compute_digest(prepared, password=password)
    assert len(base64.b64decode(digest_result.digest)) == 64
    api.embed_signature(prepared, signed, B64_SIGNATURE, password=password)
    api.add_ltv(
        signed, tmp_path / 'ltv.pdf', crl=[_b64(make_crl())],
        password=password
    )
    fields = api.list_signature_fields(signed, password=password)
    assert [(f.name, f.status) for f in fields] == [('Signature1', 'signed')]


@pytest.mark.parametrize('data', [MINIMAL_AES256, MINIMAL_RC4])
def test_encrypted_wrong_password(tmp_path, data):
    infile = tmp_path / 'encrypted.pdf'
    infile.write_bytes(data)
    with pytest.raises(api.PasswordError, match='Incorrect password'):
        api.add_signature_placeholder(
            infile, tmp_path / 'out.pdf', password='wrong'
        )
    with pytest.raises(api.PasswordError, match='password is required'):
        api.list_signature_fields(infile)
    assert not (tmp_path / 'out.pdf').exists()


def test_list_signature_fields(tmp_path, minimal_file):
    assert api.list_signature_fields(minimal_file) == []

    prepared = tmp_path / 'prepared.pdf'
    signed = tmp_path / 'signed.pdf'
    api.add_signature_placeholder(
        minimal_file, prepared, estimated_size=128, field_name='First'
    )
    api.embed_signature(prepared, signed, B64_SIGNATURE)
    api.add_signature_placeholder(
        signed, signed, estimated_size=64, field_name='Second'
    )
    assert api.list_signature_fields(signed) == [
        api.SignatureFieldStatus('First', 'signed', 128),
        api.SignatureFieldStatus('Second', 'placeholder', 64),
    ]


def test_invalid_parameters(tmp_path, minimal_file):
    out = tmp_path / 'out.pdf'
    with pytest.raises(api.ParameterError):
        api.add_signature_placeholder(minimal_file, out, estimated_size=0)
    with pytest.raises(api.ParameterError):
        api.add_signature_placeholder(minimal_file, out, cert_level=7)
    with pytest.raises(api.ParameterError):
        api.add_signature_placeholder(minimal_file, out, date='never')
    with pytest.raises(api.ParameterError):
        api.compute_digest(minimal_file, algorithm='MD5')
    assert not out.exists()


def test_error_types():
    assert api.ParseError.error_type == 'ParseError'
    assert api.PasswordError.error_type == 'PasswordError'
    assert api.SignatureTooLargeError.error_type == 'SignatureTooLargeError'
    assert issubclass(api.PasswordError, api.ParseError)
    assert issubclass(api.AmbiguousPlaceholderError,
                      api.PlaceholderNotFoundError)


def test_async_workflow(tmp_path, minimal_file):
    prepared = tmp_path / 'prepared.pdf'
    signed = tmp_path / 'signed.pdf'

    async def _job():
        await api.async_add_signature_placeholder(
            minimal_file, prepared, estimated_size=256
        )
        digest_result = await api.async_compute_digest(
            prepared, algorithm='SHA-384'
        )
        await api.async_embed_signature(prepared, signed, B64_SIGNATURE)
        await api.async_add_ltv(
            signed, signed, ocsp=[_b64(make_ocsp_response())]
        )
        return digest_result

    digest_result = asyncio.run(_job())
    assert len(base64.b64decode(digest_result.digest)) == 48
    assert api.list_signature_fields(signed)[0].status == 'signed'


def test_async_errors_propagate(tmp_path):
    async def _job():
        await api.async_compute_digest(tmp_path / 'nonexistent.pdf')

    with pytest.raises(FileNotFoundError):
        asyncio.run(_job())


def test_async_concurrent_documents(tmp_path):
    paths = []
    for ix in range(4):
        path = tmp_path / f'doc{ix}.pdf'
        path.write_bytes(MINIMAL)
        paths.append(path)

    async def _job():
        await asyncio.gather(*(
            api.async_add_signature_placeholder(
                p, p, estimated_size=64, field_name=f'Sig{ix}'
            ) for ix, p in enumerate(paths)
        ))
        return await asyncio.gather(
            *(api.async_compute_digest(p) for p in paths)
        )

    results = asyncio.run(_job())
    assert len(results) == 4
    # every document gets its own field name, so the digests differ
    assert len({r.digest for r in results}) == 4
