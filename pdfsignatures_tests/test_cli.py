import base64
import os
from datetime import datetime, timezone
from io import BytesIO

import pytest
from click.testing import CliRunner
from freezegun import freeze_time

from pdfsignatures import __version__, api
from pdfsignatures.cli import DEFAULT_CONFIG_FILE, cli_root
from pdfsignatures.pdf_utils import generic
from pdfsignatures.pdf_utils.reader import PdfFileReader

from .samples import (
    DUMMY_SIGNATURE,
    MINIMAL,
    MINIMAL_AES256,
    MINIMAL_TWO_PLACEHOLDERS,
    MINIMAL_XREF,
    USER_PASSWORD,
    make_crl,
    make_ocsp_response,
)

INPUT_PATH = 'input.pdf'
PREPARED_PATH = 'prepared.pdf'
SIGNED_PATH = 'signed.pdf'
B64_SIGNATURE = base64.b64encode(DUMMY_SIGNATURE).decode('ascii')


@pytest.fixture
def cli_runner():
    runner = CliRunner()
    with runner.isolated_filesystem():
        with open(INPUT_PATH, 'wb') as outf:
            outf.write(MINIMAL)
        yield runner


def _write(path, data: bytes):
    with open(path, 'wb') as outf:
        outf.write(data)


def _read(path) -> bytes:
    with open(path, 'rb') as inf:
        return inf.read()


def _prepare(cli_runner, *extra_args):
    result = cli_runner.invoke(
        cli_root,
        ['placeholder', INPUT_PATH, PREPARED_PATH, *extra_args]
    )
    assert not result.exception, result.output
    return result


def test_version(cli_runner):
    result = cli_runner.invoke(cli_root, ['--version'])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_placeholder(cli_runner):
    result = _prepare(cli_runner, '--estimated-size', '1024')
    assert result.stdout.strip() == PREPARED_PATH
    fields = api.list_signature_fields(PREPARED_PATH)
    assert fields == [
        api.SignatureFieldStatus('Signature1', 'placeholder', 1024)
    ]


def test_placeholder_metadata(cli_runner):
    _prepare(
        cli_runner, '--estimated-size', '64', '--cert-level', '1',
        '--reason', 'Approved', '--location', 'Ghent',
        '--contact', 'signer@example.com', '--date', '2020-11-01T12:00:00',
        '--field', 'Approval'
    )
    r = PdfFileReader(BytesIO(_read(PREPARED_PATH)))
    sig_dict = r.root['/AcroForm']['/Fields'][0]['/V']
    assert sig_dict['/Reason'] == 'Approved'
    assert sig_dict['/Location'] == 'Ghent'
    assert sig_dict['/ContactInfo'] == 'signer@example.com'
    assert sig_dict['/M'] == 'D:20201101120000Z'
    assert '/DocMDP' in r.root['/Perms']
    assert api.list_signature_fields(PREPARED_PATH)[0].name == 'Approval'


@freeze_time('2020-11-15 12:00:00')
def test_placeholder_default_date(cli_runner):
    _prepare(cli_runner, '--estimated-size', '64')
    r = PdfFileReader(BytesIO(_read(PREPARED_PATH)))
    sig_dict = r.root['/AcroForm']['/Fields'][0]['/V']
    signing_time = generic.parse_pdf_date(sig_dict['/M'])
    assert signing_time == datetime(2020, 11, 15, 12, tzinfo=timezone.utc)


@pytest.mark.parametrize('args', [
    ['--estimated-size', '0'], ['--estimated-size', 'abc'],
    ['--cert-level', '4'],
])
def test_placeholder_bad_option(cli_runner, args):
    result = cli_runner.invoke(
        cli_root, ['placeholder', INPUT_PATH, PREPARED_PATH, *args]
    )
    assert result.exit_code == 2
    assert not os.path.exists(PREPARED_PATH)


def test_placeholder_bad_date(cli_runner):
    result = cli_runner.invoke(
        cli_root,
        ['placeholder', INPUT_PATH, PREPARED_PATH, '--date', 'tomorrow']
    )
    assert result.exit_code == 1
    assert '[ParameterError]' in result.output
    assert 'Could not parse signing date' in result.output


def test_missing_input(cli_runner):
    result = cli_runner.invoke(cli_root, ['digest', 'nonexistent.pdf'])
    assert result.exit_code == 2


@pytest.mark.parametrize('algorithm,length', [
    ('sha256', 32), ('SHA-384', 48), ('Sha384', 48), ('sha-512', 64),
    (None, 64),
])
def test_digest(cli_runner, algorithm, length):
    _prepare(cli_runner, '--estimated-size', '64')
    args = ['digest', PREPARED_PATH]
    if algorithm is not None:
        args += ['--algorithm', algorithm]
    result = cli_runner.invoke(cli_root, args)
    assert result.exit_code == 0, result.output
    digest = result.stdout.strip()
    assert len(base64.b64decode(digest)) == length
    assert digest == api.compute_digest(
        PREPARED_PATH, algorithm=algorithm or 'SHA-512'
    ).digest


def test_digest_unsupported_algorithm(cli_runner):
    _prepare(cli_runner)
    result = cli_runner.invoke(
        cli_root, ['digest', PREPARED_PATH, '--algorithm', 'md5']
    )
    assert result.exit_code == 2
    assert 'Unsupported digest algorithm' in result.output


def test_digest_no_placeholder(cli_runner):
    result = cli_runner.invoke(cli_root, ['digest', INPUT_PATH])
    assert result.exit_code == 1
    assert '[PlaceholderNotFoundError]' in result.output


def test_digest_ambiguous(cli_runner):
    _write('ambiguous.pdf', MINIMAL_TWO_PLACEHOLDERS)
    result = cli_runner.invoke(cli_root, ['digest', 'ambiguous.pdf'])
    assert result.exit_code == 1
    assert 'more than one signature placeholder' in result.output


def test_embed_base64(cli_runner):
    _prepare(cli_runner, '--estimated-size', '256')
    result = cli_runner.invoke(
        cli_root,
        ['embed', PREPARED_PATH, SIGNED_PATH, '--signature', B64_SIGNATURE]
    )
    assert result.exit_code == 0, result.output
    assert result.stdout.strip() == SIGNED_PATH
    assert len(_read(SIGNED_PATH)) == len(_read(PREPARED_PATH))
    assert api.list_signature_fields(SIGNED_PATH)[0].status == 'signed'


def test_embed_signature_file(cli_runner):
    _prepare(cli_runner, '--estimated-size', '256')
    _write('signature.der', DUMMY_SIGNATURE)
    result = cli_runner.invoke(
        cli_root,
        ['embed', PREPARED_PATH, SIGNED_PATH,
         '--signature-file', 'signature.der']
    )
    assert result.exit_code == 0, result.output
    assert api.list_signature_fields(SIGNED_PATH)[0].status == 'signed'


@pytest.mark.parametrize('sig_args', [
    [], ['--signature', B64_SIGNATURE, '--signature-file', INPUT_PATH]
])
def test_embed_signature_args(cli_runner, sig_args):
    _prepare(cli_runner)
    result = cli_runner.invoke(
        cli_root, ['embed', PREPARED_PATH, SIGNED_PATH, *sig_args]
    )
    assert result.exit_code == 1
    assert 'Exactly one of --signature and --signature-file' in result.output


def test_embed_too_large(cli_runner):
    _prepare(cli_runner, '--estimated-size', '16')
    result = cli_runner.invoke(
        cli_root,
        ['embed', PREPARED_PATH, SIGNED_PATH, '--signature', B64_SIGNATURE]
    )
    assert result.exit_code == 1
    assert '[SignatureTooLargeError]' in result.output
    assert not os.path.exists(SIGNED_PATH)


def test_ltv(cli_runner):
    _prepare(cli_runner, '--estimated-size', '256')
    api.embed_signature(PREPARED_PATH, SIGNED_PATH, B64_SIGNATURE)
    _write('ocsp.der', make_ocsp_response())
    crl_b64 = base64.b64encode(make_crl()).decode('ascii')
    result = cli_runner.invoke(
        cli_root,
        ['ltv', SIGNED_PATH, 'ltv.pdf', '--crl', crl_b64,
         '--ocsp', '@ocsp.der']
    )
    assert result.exit_code == 0, result.output
    assert result.stdout.strip() == 'ltv.pdf'
    data = _read('ltv.pdf')
    assert data.startswith(_read(SIGNED_PATH))
    assert '/DSS' in PdfFileReader(BytesIO(data)).root


def test_ltv_unsigned(cli_runner):
    crl_b64 = base64.b64encode(make_crl()).decode('ascii')
    result = cli_runner.invoke(
        cli_root, ['ltv', INPUT_PATH, 'ltv.pdf', '--crl', crl_b64]
    )
    assert result.exit_code == 1
    assert '[NoSignatureForLtvError]' in result.output


def test_list(cli_runner):
    _prepare(cli_runner, '--estimated-size', '256', '--field', 'First')
    api.embed_signature(PREPARED_PATH, SIGNED_PATH, B64_SIGNATURE)
    api.add_signature_placeholder(
        SIGNED_PATH, SIGNED_PATH, estimated_size=64, field_name='Second'
    )
    result = cli_runner.invoke(cli_root, ['list', SIGNED_PATH])
    assert result.exit_code == 0, result.output
    assert result.stdout.splitlines() == [
        'First:signed:256', 'Second:placeholder:64'
    ]


def test_encrypted(cli_runner):
    _write('encrypted.pdf', MINIMAL_AES256)
    result = cli_runner.invoke(
        cli_root, ['placeholder', 'encrypted.pdf', PREPARED_PATH]
    )
    assert result.exit_code == 1
    assert '[PasswordError]' in result.output
    assert 'password is required' in result.output

    result = cli_runner.invoke(
        cli_root,
        ['placeholder', 'encrypted.pdf', PREPARED_PATH,
         '--password', 'wrong']
    )
    assert result.exit_code == 1
    assert 'Incorrect password' in result.output

    result = cli_runner.invoke(
        cli_root,
        ['placeholder', 'encrypted.pdf', PREPARED_PATH,
         '--password', USER_PASSWORD]
    )
    assert result.exit_code == 0, result.output
    result = cli_runner.invoke(
        cli_root, ['digest', PREPARED_PATH, '--password', USER_PASSWORD]
    )
    assert result.exit_code == 0, result.output


def test_parse_error(cli_runner):
    _write('broken.pdf', b'%PDF-1.7\nthis is not a PDF file')
    result = cli_runner.invoke(cli_root, ['list', 'broken.pdf'])
    assert result.exit_code == 1
    assert '[ParseError]' in result.output


def test_no_strict_syntax(cli_runner):
    # point startxref a few bytes before the actual xref table
    head, tail = MINIMAL_XREF.rsplit(b'startxref\n', 1)
    startxref = int(tail.split(b'\n', 1)[0])
    data = head + b'startxref\n%d\n%%%%EOF\n' % (startxref - 3)
    _write('lenient.pdf', data)
    result = cli_runner.invoke(cli_root, ['list', 'lenient.pdf'])
    assert result.exit_code == 1
    assert '[ParseError]' in result.output
    result = cli_runner.invoke(
        cli_root, ['--no-strict-syntax', 'list', 'lenient.pdf']
    )
    assert result.exit_code == 0, result.output
    assert result.stdout == ''


def test_config_defaults(cli_runner):
    with open('config.yml', 'w') as outf:
        outf.write(
            'defaults:\n'
            '  estimated-size: 512\n'
            '  digest-algorithm: SHA-256\n'
        )
    result = cli_runner.invoke(
        cli_root,
        ['--config', 'config.yml', 'placeholder', INPUT_PATH, PREPARED_PATH]
    )
    assert result.exit_code == 0, result.output
    fields = api.list_signature_fields(PREPARED_PATH)
    assert fields[0].bytes_reserved == 512

    result = cli_runner.invoke(
        cli_root, ['--config', 'config.yml', 'digest', PREPARED_PATH]
    )
    assert result.exit_code == 0, result.output
    assert len(base64.b64decode(result.stdout.strip())) == 32


def test_default_config_file(cli_runner):
    with open(DEFAULT_CONFIG_FILE, 'w') as outf:
        outf.write('defaults:\n  estimated-size: 100\n')
    _prepare(cli_runner)
    assert api.list_signature_fields(PREPARED_PATH)[0].bytes_reserved == 100


def test_command_line_overrides_config(cli_runner):
    with open(DEFAULT_CONFIG_FILE, 'w') as outf:
        outf.write('defaults:\n  estimated-size: 100\n')
    _prepare(cli_runner, '--estimated-size', '200')
    assert api.list_signature_fields(PREPARED_PATH)[0].bytes_reserved == 200


@pytest.mark.parametrize('config_text', [
    'defaults:\n  estimated-size: -5\n', 'logging: [', 'foo: bar\n',
])
def test_bad_config(cli_runner, config_text):
    with open('config.yml', 'w') as outf:
        outf.write(config_text)
    result = cli_runner.invoke(
        cli_root, ['--config', 'config.yml', 'list', INPUT_PATH]
    )
    assert result.exit_code == 1
    assert '[ConfigurationError] Failed to parse configuration' \
        in result.output


def test_log_to_file(cli_runner):
    with open('config.yml', 'w') as outf:
        outf.write(
            'logging:\n'
            '  root-level: INFO\n'
            '  by-module:\n'
            '    pdfsignatures.api:\n'
            '      level: INFO\n'
            '      output: pdfsignatures.log\n'
        )
    result = cli_runner.invoke(
        cli_root,
        ['--config', 'config.yml', 'placeholder', INPUT_PATH, PREPARED_PATH]
    )
    assert result.exit_code == 0, result.output
    with open('pdfsignatures.log') as logf:
        log_text = logf.read()
    assert 'Added signature placeholder Signature1' in log_text


def test_verbose(cli_runner):
    result = cli_runner.invoke(
        cli_root, ['--verbose', 'placeholder', INPUT_PATH, PREPARED_PATH]
    )
    assert result.exit_code == 0, result.output
