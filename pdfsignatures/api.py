"""
File-level entry points for the detached signing workflow.

The typical sequence is

1. :func:`add_signature_placeholder` to reserve room for a signature,
2. :func:`compute_digest` to obtain the digest to be signed externally,
3. :func:`embed_signature` to insert the resulting CMS signature,
4. optionally, :func:`add_ltv` to add revocation information.

All functions read the input file completely before producing any output,
and write their output atomically, so the output path may coincide with the
input path. Each synchronous function has an ``async_`` counterpart that
runs it in the event loop's default executor.
"""

import asyncio
import functools
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Iterable, List, Optional, Union

from pdfsignatures.pdf_utils import misc
from pdfsignatures.pdf_utils.incremental_writer import (
    IncrementalPdfFileWriter,
)
from pdfsignatures.pdf_utils.misc import (
    PasswordError,
    PdfError,
    PdfReadError,
    PdfWriteError,
)
from pdfsignatures.pdf_utils.reader import PdfFileReader
from pdfsignatures.sign import digest as digest_mod
from pdfsignatures.sign import embed as embed_mod
from pdfsignatures.sign import ltv as ltv_mod
from pdfsignatures.sign import placeholder as placeholder_mod
from pdfsignatures.sign.fields import CertificationLevel, enumerate_sig_fields
from pdfsignatures.sign.general import (
    DEFAULT_MD,
    AmbiguousPlaceholderError,
    NoSignatureForLtvError,
    ParameterError,
    PlaceholderNotFoundError,
    SignatureTooLargeError,
    SigningError,
    decode_base64,
)
from pdfsignatures.sign.pdf_byterange import read_reserved_region

__all__ = [
    'PlaceholderResult', 'DigestResult', 'SignResult', 'LtvResult',
    'SignatureFieldStatus',
    'add_signature_placeholder', 'compute_digest', 'embed_signature',
    'add_ltv', 'list_signature_fields',
    'async_add_signature_placeholder', 'async_compute_digest',
    'async_embed_signature', 'async_add_ltv',
    'CertificationLevel', 'ParseError', 'PdfError', 'PdfWriteError',
    'PasswordError', 'SigningError', 'ParameterError',
    'PlaceholderNotFoundError', 'AmbiguousPlaceholderError',
    'SignatureTooLargeError', 'NoSignatureForLtvError',
]

logger = logging.getLogger(__name__)

ParseError = PdfReadError
"""
Alias for :class:`~.misc.PdfReadError`, raised for malformed input.
"""


@dataclass(frozen=True)
class PlaceholderResult:
    output_path: str
    """Path of the document with the placeholder."""


@dataclass(frozen=True)
class DigestResult:
    digest: str
    """Base64-encoded digest of the signed byte ranges."""


@dataclass(frozen=True)
class SignResult:
    output_path: str
    """Path of the signed document."""


@dataclass(frozen=True)
class LtvResult:
    output_path: str
    """Path of the document with the updated DSS."""


@dataclass(frozen=True)
class SignatureFieldStatus:
    """
    Summary of a signature field, as reported by
    :func:`list_signature_fields`.
    """

    name: str
    """Fully qualified field name."""

    status: str
    """
    One of ``'empty'`` (no signature dictionary), ``'placeholder'``
    (signature dictionary without a signature) or ``'signed'``.
    """

    bytes_reserved: Optional[int] = None
    """Size of the reserved region, if there is one."""


def _read_file(path) -> bytes:
    with open(path, 'rb') as inf:
        return inf.read()


def _open_reader(path, password, strict) -> PdfFileReader:
    reader = PdfFileReader(BytesIO(_read_file(path)), strict=strict)
    reader.unlock(password)
    return reader


def add_signature_placeholder(file, out,
                              estimated_size: int =
                              placeholder_mod.DEFAULT_ESTIMATED_SIZE,
                              cert_level: Union[CertificationLevel, int] =
                              CertificationLevel.NOT_CERTIFIED,
                              password: Optional[str] = None,
                              reason: Optional[str] = None,
                              location: Optional[str] = None,
                              contact: Optional[str] = None,
                              date=None, *, field_name: Optional[str] = None,
                              strict: bool = True) -> PlaceholderResult:
    """
    Add an empty signature to a document, to be signed externally.

    :param file:
        Path to the input document.
    :param out:
        Path to write the output to.
    :param estimated_size:
        Number of bytes to reserve for the DER-encoded signature.
    :param cert_level:
        Certification level (0-3). ``0`` produces an approval signature.
    :param password:
        Password of an encrypted input document.
    :param reason:
        Signing reason.
    :param location:
        Signing location.
    :param contact:
        Contact information of the signer.
    :param date:
        Signing time, as a :class:`~datetime.datetime` or an ISO 8601 string.
        Naive values are interpreted as UTC. Defaults to the current time.
    :param field_name:
        Name of the signature field to create.
    :param strict:
        Parse the input in strict mode.
    :raise ParameterError:
        If one of the parameters is invalid.
    """
    spec = placeholder_mod.PlaceholderSpec.from_params(
        estimated_size=estimated_size, cert_level=cert_level,
        reason=reason, location=location, contact_info=contact,
        signing_time=date, field_name=field_name,
    )
    input_data = _read_file(file)
    pdf_out = IncrementalPdfFileWriter(
        BytesIO(input_data), strict=strict, password=password
    )
    result = placeholder_mod.add_signature_placeholder(pdf_out, spec)
    output_path = misc.write_output_atomically(
        out, result.output.getbuffer()
    )
    logger.info(
        "Added signature placeholder %s to %s", result.field_name, output_path
    )
    return PlaceholderResult(output_path=output_path)


def compute_digest(file, password: Optional[str] = None,
                   algorithm: str = DEFAULT_MD, *,
                   strict: bool = True) -> DigestResult:
    """
    Compute the digest of the byte ranges around a document's signature
    placeholder.

    :param file:
        Path to a document with a placeholder.
    :param password:
        Password of an encrypted document.
    :param algorithm:
        Digest algorithm: ``SHA-256``, ``SHA-384`` or ``SHA-512``.
    :param strict:
        Parse the input in strict mode.
    """
    reader = _open_reader(file, password, strict)
    return DigestResult(
        digest=digest_mod.compute_digest(reader, md_algorithm=algorithm)
    )


def embed_signature(file, out, signature: Union[str, bytes],
                    password: Optional[str] = None, *,
                    strict: bool = True) -> SignResult:
    """
    Embed a detached CMS signature into a document's signature placeholder.

    :param file:
        Path to a document with a placeholder.
    :param out:
        Path to write the signed document to.
    :param signature:
        The DER-encoded signature, in base64.
    :param password:
        Password of an encrypted document.
    :param strict:
        Parse the input in strict mode.
    :raise SignatureTooLargeError:
        If the signature does not fit in the placeholder. Nothing is
        written in that case.
    """
    sig_bytes = decode_base64(signature, "Signature")
    reader = _open_reader(file, password, strict)
    signed = embed_mod.embed_signature(reader, sig_bytes)
    output_path = misc.write_output_atomically(out, signed)
    logger.info("Wrote signed document to %s", output_path)
    return SignResult(output_path=output_path)


def add_ltv(file, out, crl: Iterable[Union[str, bytes]] = (),
            ocsp: Iterable[Union[str, bytes]] = (),
            password: Optional[str] = None, *,
            strict: bool = True) -> LtvResult:
    """
    Add revocation information to the DSS of a signed document.

    :param file:
        Path to a signed document.
    :param out:
        Path to write the output to.
    :param crl:
        DER-encoded CRLs, in base64.
    :param ocsp:
        DER-encoded OCSP responses, in base64.
    :param password:
        Password of an encrypted document.
    :param strict:
        Parse the input in strict mode.
    """
    crls = [decode_base64(x, "CRL") for x in crl]
    ocsps = [decode_base64(x, "OCSP response") for x in ocsp]
    input_data = _read_file(file)
    pdf_out = IncrementalPdfFileWriter(
        BytesIO(input_data), strict=strict, password=password
    )
    output = ltv_mod.add_ltv(pdf_out, crls=crls, ocsps=ocsps)
    output_path = misc.write_output_atomically(out, output.getbuffer())
    logger.info(
        "Added %d CRL(s) and %d OCSP response(s) to %s",
        len(crls), len(ocsps), output_path
    )
    return LtvResult(output_path=output_path)


def list_signature_fields(file, password: Optional[str] = None, *,
                          strict: bool = True) -> List[SignatureFieldStatus]:
    """
    List the signature fields of a document along with their state.
    """
    reader = _open_reader(file, password, strict)
    data = digest_mod.read_input_data(reader)
    result = []
    for name, sig_value, _ in enumerate_sig_fields(reader):
        if sig_value is None:
            result.append(SignatureFieldStatus(name=name, status='empty'))
            continue
        region = read_reserved_region(sig_value, data)
        if region is None:
            status = 'signed'
            reserved = None
        else:
            status = 'placeholder' if region.is_empty(data) else 'signed'
            reserved = region.bytes_reserved
        result.append(
            SignatureFieldStatus(
                name=name, status=status, bytes_reserved=reserved
            )
        )
    return result


async def _run_in_executor(func, *args, **kwargs):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        None, functools.partial(func, *args, **kwargs)
    )


async def async_add_signature_placeholder(*args, **kwargs) \
        -> PlaceholderResult:
    """Asynchronous version of :func:`add_signature_placeholder`."""
    return await _run_in_executor(add_signature_placeholder, *args, **kwargs)


async def async_compute_digest(*args, **kwargs) -> DigestResult:
    """Asynchronous version of :func:`compute_digest`."""
    return await _run_in_executor(compute_digest, *args, **kwargs)


async def async_embed_signature(*args, **kwargs) -> SignResult:
    """Asynchronous version of :func:`embed_signature`."""
    return await _run_in_executor(embed_signature, *args, **kwargs)


async def async_add_ltv(*args, **kwargs) -> LtvResult:
    """Asynchronous version of :func:`add_ltv`."""
    return await _run_in_executor(add_ltv, *args, **kwargs)
