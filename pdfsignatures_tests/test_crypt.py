from io import BytesIO

import pytest

from pdfsignatures.pdf_utils.crypt import AuthStatus
from pdfsignatures.pdf_utils.incremental_writer import (
    IncrementalPdfFileWriter,
)
from pdfsignatures.pdf_utils.misc import PasswordError, PdfError
from pdfsignatures.pdf_utils.reader import PdfFileReader
from pdfsignatures.sign import placeholder

from .samples import (
    MINIMAL,
    MINIMAL_AES128,
    MINIMAL_AES256,
    MINIMAL_RC4,
    OWNER_PASSWORD,
    USER_PASSWORD,
    simple_page,
)

ENCRYPTED_SAMPLES = [MINIMAL_RC4, MINIMAL_AES128, MINIMAL_AES256]


@pytest.mark.parametrize('data', ENCRYPTED_SAMPLES)
@pytest.mark.parametrize('password,status', [
    (USER_PASSWORD, AuthStatus.USER), (OWNER_PASSWORD, AuthStatus.OWNER)
])
def test_unlock(data, password, status):
    r = PdfFileReader(BytesIO(data))
    assert r.encrypted
    result = r.unlock(password)
    assert result.status == status
    page = r.root['/Pages']['/Kids'][0]
    assert b'Hello world' in page['/Contents'].data
    assert r.trailer['/Info']['/Producer'] == 'pdfsignatures tests'


@pytest.mark.parametrize('data', ENCRYPTED_SAMPLES)
def test_wrong_password(data):
    r = PdfFileReader(BytesIO(data))
    with pytest.raises(PasswordError, match='Incorrect password'):
        r.unlock('wrongpassword')


@pytest.mark.parametrize('data', ENCRYPTED_SAMPLES)
def test_password_required(data):
    r = PdfFileReader(BytesIO(data))
    with pytest.raises(PasswordError, match='password is required'):
        r.unlock()


def test_unlock_unencrypted_is_noop():
    r = PdfFileReader(BytesIO(MINIMAL))
    assert not r.encrypted
    assert r.unlock('whatever') is None


@pytest.mark.parametrize('data', ENCRYPTED_SAMPLES)
def test_incremental_update_is_encrypted(data):
    w = IncrementalPdfFileWriter(BytesIO(data), password=USER_PASSWORD)
    w.insert_page(simple_page(w, 'Secret page'))
    out = BytesIO()
    w.write(out)
    output = out.getvalue()
    assert b'Secret page' not in output

    r = PdfFileReader(BytesIO(output))
    r.unlock(USER_PASSWORD)
    assert r.total_revisions == 2
    page = r.root['/Pages']['/Kids'][1]
    assert b'Secret page' in page['/Contents'].data


@pytest.mark.parametrize('data', ENCRYPTED_SAMPLES)
def test_incremental_writer_wrong_password(data):
    with pytest.raises(PasswordError):
        IncrementalPdfFileWriter(BytesIO(data), password='wrongpassword')


@pytest.mark.parametrize('data', ENCRYPTED_SAMPLES)
def test_key_unavailable_before_unlock(data):
    r = PdfFileReader(BytesIO(data))
    sh = r.security_handler
    with pytest.raises(PdfError, match='not authenticated'):
        sh.get_file_encryption_key()
    with pytest.raises(PdfError, match='not authenticated'):
        sh.get_string_filter().shared_key
    r.unlock(USER_PASSWORD)
    assert sh.get_string_filter().shared_key \
        == sh.get_file_encryption_key()


@pytest.mark.parametrize('data', ENCRYPTED_SAMPLES)
def test_signature_contents_not_encrypted(data):
    w = IncrementalPdfFileWriter(BytesIO(data), password=OWNER_PASSWORD)
    spec = placeholder.PlaceholderSpec.from_params(
        estimated_size=64, reason='Top secret',
        signing_time='2020-11-01T12:00:00',
    )
    result = placeholder.add_signature_placeholder(w, spec)
    output = result.output.getvalue()
    # the reason is encrypted, the reserved region is not
    assert b'Top secret' not in output
    start, end = result.byte_range[1], result.byte_range[2]
    assert output[start:end] == b'<' + b'0' * 128 + b'>'

    r = PdfFileReader(BytesIO(output))
    r.unlock(USER_PASSWORD)
    sig_dict = r.root['/AcroForm']['/Fields'][0]['/V']
    assert sig_dict['/Reason'] == 'Top secret'
