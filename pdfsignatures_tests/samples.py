from datetime import datetime, timezone
from io import BytesIO

from asn1crypto import crl, ocsp, x509

from pdfsignatures.pdf_utils import generic, writer
from pdfsignatures.pdf_utils.crypt import StandardSecuritySettingsRevision
from pdfsignatures.pdf_utils.generic import pdf_name
from pdfsignatures.pdf_utils.incremental_writer import (
    IncrementalPdfFileWriter,
)
from pdfsignatures.sign import fields
from pdfsignatures.sign.pdf_byterange import SignatureObject

# user/owner passwords for the encrypted samples
USER_PASSWORD = 'usersecret'
OWNER_PASSWORD = 'ownersecret'


def simple_page(pdf_out, ascii_text, compress=False, obj_stream=None):
    # based on the minimal pdf file of
    # https://brendanzagaeski.appspot.com/0004.html
    font = generic.DictionaryObject({
        pdf_name('/Type'): pdf_name('/Font'),
        pdf_name('/Subtype'): pdf_name('/Type1'),
        pdf_name('/BaseFont'): pdf_name('/Courier'),
    })
    resources = generic.DictionaryObject({
        pdf_name('/Font'): generic.DictionaryObject({
            pdf_name('/F1'): pdf_out.add_object(font, obj_stream=obj_stream)
        })
    })
    stream = generic.StreamObject(
        stream_data=f'BT /F1 18 Tf 0 0 Td ({ascii_text}) Tj ET'.encode('ascii')
    )
    if compress:
        stream.compress()
    return writer.PageObject(
        contents=pdf_out.add_object(stream), media_box=(0, 0, 300, 144),
        resources=resources
    )


def _render(pdf_out) -> bytes:
    out = BytesIO()
    pdf_out.write(out)
    return out.getvalue()


def minimal_pdf(stream_xrefs=True, compress=False, use_obj_stream=False,
                encryption=None) -> bytes:
    w = writer.PdfFileWriter(stream_xrefs=stream_xrefs)
    obj_stream = w.prepare_object_stream() if use_obj_stream else None
    w.insert_page(
        simple_page(w, 'Hello world', compress=compress, obj_stream=obj_stream)
    )
    w.set_info(generic.DictionaryObject({
        pdf_name('/Producer'): generic.pdf_string('pdfsignatures tests'),
    }))
    if encryption == 'aes256':
        w.encrypt(OWNER_PASSWORD, USER_PASSWORD)
    elif encryption == 'rc4':
        w.encrypt_legacy(
            OWNER_PASSWORD, USER_PASSWORD,
            rev=StandardSecuritySettingsRevision.RC4_EXTENDED,
            keylen_bytes=16, use_aes128=False,
        )
    elif encryption == 'aes128':
        w.encrypt_legacy(
            OWNER_PASSWORD, USER_PASSWORD,
            rev=StandardSecuritySettingsRevision.RC4_OR_AES128,
            keylen_bytes=16, use_aes128=True,
        )
    return _render(w)


def two_revision_pdf() -> bytes:
    w = IncrementalPdfFileWriter(BytesIO(MINIMAL))
    w.insert_page(simple_page(w, 'Second page'))
    return _render(w)


def two_placeholders_pdf(bytes_reserved=256) -> bytes:
    """
    A single-revision document with two unfilled signature placeholders.
    """
    w = writer.PdfFileWriter()
    w.insert_page(simple_page(w, 'Hello world'))
    sig_objs = []
    for name in ('Sig1', 'Sig2'):
        field_ref = fields.prepare_sig_field(name, w.root, w)
        sig_obj = SignatureObject(bytes_reserved=bytes_reserved)
        field_ref.get_object()[pdf_name('/V')] = w.add_object(sig_obj)
        sig_objs.append(sig_obj)
    fields.ensure_sig_flags(w, lock_sig_flags=False)
    out = BytesIO()
    w.write(out)
    for sig_obj in sig_objs:
        sig_obj.fill_byte_range(out)
    return out.getvalue()


def empty_field_pdf() -> bytes:
    """
    A document with a signature field that does not have a value yet.
    """
    w = writer.PdfFileWriter()
    w.insert_page(simple_page(w, 'Hello world'))
    fields.prepare_sig_field('Unsigned', w.root, w)
    fields.ensure_sig_flags(w, lock_sig_flags=False)
    return _render(w)


MINIMAL = minimal_pdf()
MINIMAL_XREF = minimal_pdf(stream_xrefs=False)
MINIMAL_OBJSTREAM = minimal_pdf(compress=True, use_obj_stream=True)
MINIMAL_TWO_REVISIONS = two_revision_pdf()
MINIMAL_AES256 = minimal_pdf(encryption='aes256')
MINIMAL_RC4 = minimal_pdf(encryption='rc4', stream_xrefs=False)
MINIMAL_AES128 = minimal_pdf(encryption='aes128')
MINIMAL_TWO_PLACEHOLDERS = two_placeholders_pdf()
MINIMAL_EMPTY_FIELD = empty_field_pdf()

# stand-in for a DER-encoded CMS object; its contents are irrelevant here
DUMMY_SIGNATURE = bytes.fromhex('3082000a0201010204deadbeef') + b'\xaa' * 64

_FIXED_DT = datetime(2020, 11, 1, tzinfo=timezone.utc)


def make_crl(issuer_name='Test CA') -> bytes:
    algo = {'algorithm': 'sha256_rsa'}
    tbs = crl.TbsCertList({
        'version': 'v2',
        'signature': algo,
        'issuer': x509.Name.build({'common_name': issuer_name}),
        'this_update': x509.Time(name='utc_time', value=_FIXED_DT),
        'next_update': x509.Time(
            name='utc_time', value=_FIXED_DT.replace(month=12)
        ),
    })
    return crl.CertificateList({
        'tbs_cert_list': tbs,
        'signature_algorithm': algo,
        'signature': b'\x01' * 32,
    }).dump()


def make_ocsp_response(status='unauthorized') -> bytes:
    # a response without response bytes is structurally valid
    return ocsp.OCSPResponse({'response_status': status}).dump()
