import base64
import hashlib
from io import BytesIO

import pytest

from pdfsignatures.pdf_utils.incremental_writer import (
    IncrementalPdfFileWriter,
)
from pdfsignatures.pdf_utils.reader import PdfFileReader
from pdfsignatures.sign import digest, embed, placeholder
from pdfsignatures.sign.general import (
    AmbiguousPlaceholderError,
    ParameterError,
    PlaceholderNotFoundError,
    normalise_md_algorithm,
)

from .samples import (
    DUMMY_SIGNATURE,
    MINIMAL,
    MINIMAL_EMPTY_FIELD,
    MINIMAL_TWO_PLACEHOLDERS,
)


def _with_placeholder(data, field_name=None, estimated_size=256):
    w = IncrementalPdfFileWriter(BytesIO(data))
    spec = placeholder.PlaceholderSpec.from_params(
        estimated_size=estimated_size, field_name=field_name,
        signing_time='2020-11-01T12:00:00',
    )
    return placeholder.add_signature_placeholder(w, spec)


def _reader(data):
    return PdfFileReader(BytesIO(data))


def _expected_digest(data, br, algorithm):
    md = hashlib.new(algorithm)
    md.update(data[br[0]:br[0] + br[1]])
    md.update(data[br[2]:br[2] + br[3]])
    return base64.b64encode(md.digest()).decode('ascii')


@pytest.mark.parametrize('algorithm,hashlib_name,digest_len', [
    ('SHA-256', 'sha256', 32),
    ('SHA-384', 'sha384', 48),
    ('SHA-512', 'sha512', 64),
])
def test_digest(algorithm, hashlib_name, digest_len):
    result = _with_placeholder(MINIMAL)
    data = result.output.getvalue()
    value = digest.compute_digest(_reader(data), md_algorithm=algorithm)
    assert value == _expected_digest(data, result.byte_range, hashlib_name)
    assert len(base64.b64decode(value)) == digest_len


def test_default_digest_algorithm_is_sha512():
    result = _with_placeholder(MINIMAL)
    data = result.output.getvalue()
    value = digest.compute_digest(_reader(data))
    assert value == _expected_digest(data, result.byte_range, 'sha512')


def test_sha256_digest_length():
    result = _with_placeholder(MINIMAL, estimated_size=30000)
    data = result.output.getvalue()
    value = digest.compute_digest(_reader(data), md_algorithm='SHA-256')
    assert len(value) == 44


def test_digest_small_chunks():
    result = _with_placeholder(MINIMAL)
    data = result.output.getvalue()
    value = digest.compute_digest(
        _reader(data), md_algorithm='SHA-256', chunk_size=7
    )
    assert value == _expected_digest(data, result.byte_range, 'sha256')


@pytest.mark.parametrize('name,expected', [
    ('sha256', 'SHA-256'), ('SHA256', 'SHA-256'), ('Sha-384', 'SHA-384'),
    ('SHA-512', 'SHA-512'),
])
def test_normalise_md_algorithm(name, expected):
    assert normalise_md_algorithm(name) == expected


@pytest.mark.parametrize('name', ['md5', 'SHA-1', 'sha3_256', '', None])
def test_unsupported_algorithm(name):
    result = _with_placeholder(MINIMAL)
    with pytest.raises(ParameterError):
        digest.compute_digest(
            _reader(result.output.getvalue()), md_algorithm=name
        )


@pytest.mark.parametrize('data', [MINIMAL, MINIMAL_EMPTY_FIELD])
def test_no_placeholder(data):
    with pytest.raises(PlaceholderNotFoundError, match='No signature place'):
        digest.compute_digest(_reader(data))


def test_ambiguous_placeholders():
    with pytest.raises(AmbiguousPlaceholderError, match='Sig1, Sig2'):
        digest.compute_digest(_reader(MINIMAL_TWO_PLACEHOLDERS))


def test_ambiguous_is_not_found_subclass():
    # callers that only care about 'no usable placeholder' can catch both
    assert issubclass(AmbiguousPlaceholderError, PlaceholderNotFoundError)


def test_newer_placeholder_takes_precedence():
    first = _with_placeholder(MINIMAL, field_name='Older')
    second = _with_placeholder(first.output.getvalue(), field_name='Newer')
    data = second.output.getvalue()
    r = _reader(data)
    found = digest.find_placeholder(r, data)
    assert found.field_name == 'Newer'
    assert found.revision == 2
    assert found.region.byte_range == tuple(second.byte_range)

    placeholders = {
        p.field_name: p.revision
        for p in digest.iter_placeholders(r, data)
    }
    assert placeholders == {'Older': 1, 'Newer': 2}


def test_newer_placeholder_resolves_ambiguity():
    result = _with_placeholder(MINIMAL_TWO_PLACEHOLDERS, field_name='Third')
    data = result.output.getvalue()
    found = digest.find_placeholder(_reader(data), data)
    assert found.field_name == 'Third'


def test_signed_placeholders_are_skipped():
    first = _with_placeholder(MINIMAL, field_name='Older')
    signed = embed.embed_signature(
        _reader(first.output.getvalue()), DUMMY_SIGNATURE
    )
    second = _with_placeholder(signed, field_name='Newer')
    data = second.output.getvalue()
    found = digest.find_placeholder(_reader(data), data)
    assert found.field_name == 'Newer'
    assert found.revision == 2


def test_placeholder_under_signature_is_not_selected():
    first = _with_placeholder(MINIMAL, field_name='Older')
    second = _with_placeholder(first.output.getvalue(), field_name='Newer')
    signed = embed.embed_signature(
        _reader(second.output.getvalue()), DUMMY_SIGNATURE
    )
    r = _reader(signed)
    assert [p.field_name for p in digest.iter_placeholders(r, signed)] \
        == ['Older']
    with pytest.raises(PlaceholderNotFoundError, match='Older.*covered'):
        digest.find_placeholder(r, signed)


def test_tampered_byte_range_is_ignored():
    result = _with_placeholder(MINIMAL)
    data = bytearray(result.output.getvalue())
    br_str = b'%010d' % result.byte_range[1]
    ix = data.index(br_str)
    data[ix:ix + 10] = b'%010d' % (result.byte_range[1] - 1)
    with pytest.raises(PlaceholderNotFoundError):
        digest.compute_digest(_reader(bytes(data)))
