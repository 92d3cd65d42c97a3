"""
Insertion of empty signature placeholders, to be filled in later with a
signature produced by an external signer.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import IO, List, Optional, Union

import pytz
import tzlocal

from pdfsignatures.pdf_utils import generic, misc
from pdfsignatures.pdf_utils.generic import pdf_name
from pdfsignatures.pdf_utils.incremental_writer import (
    IncrementalPdfFileWriter,
)
from pdfsignatures.version import __version__

from .fields import (
    CertificationLevel,
    docmdp_reference_dictionary,
    ensure_sig_flags,
    get_docmdp_sig,
    next_sig_field_name,
    prepare_sig_field,
)
from .general import ParameterError
from .pdf_byterange import SignatureObject

__all__ = [
    'DEFAULT_ESTIMATED_SIZE', 'PlaceholderSpec', 'PreparedPlaceholder',
    'add_signature_placeholder',
]

logger = logging.getLogger(__name__)

DEFAULT_ESTIMATED_SIZE = 30000
"""
Default number of bytes reserved for the signature.
"""


def _validate_estimated_size(estimated_size) -> int:
    if isinstance(estimated_size, bool) \
            or not isinstance(estimated_size, int) or estimated_size <= 0:
        raise ParameterError(
            f"Estimated signature size must be a positive integer, "
            f"not {estimated_size!r}"
        )
    return estimated_size


def _process_signing_time(value) -> datetime:
    if value is None:
        return datetime.now(tz=tzlocal.get_localzone())
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=pytz.UTC)
        return value
    if isinstance(value, str):
        try:
            return misc.isoparse(value)
        except (ValueError, OverflowError) as e:
            raise ParameterError(
                f"Could not parse signing date {value!r}: {e}"
            ) from e
    raise ParameterError(f"Unsupported signing date {value!r}")


@dataclass(frozen=True)
class PlaceholderSpec:
    """
    Settings for a signature placeholder.
    """

    estimated_size: int = DEFAULT_ESTIMATED_SIZE
    """
    Number of bytes to reserve for the DER-encoded signature.
    """

    cert_level: CertificationLevel = CertificationLevel.NOT_CERTIFIED
    """
    Certification level. Anything other than
    :attr:`.CertificationLevel.NOT_CERTIFIED` produces a certification
    signature.
    """

    reason: Optional[str] = None
    location: Optional[str] = None
    contact_info: Optional[str] = None

    signing_time: Optional[datetime] = None
    """
    Value for the ``/M`` entry. Defaults to the current time.
    """

    field_name: Optional[str] = None
    """
    Name of the new signature field. If not specified, a name of the form
    ``SignatureN`` is chosen.
    """

    @classmethod
    def from_params(cls, *, estimated_size=DEFAULT_ESTIMATED_SIZE,
                    cert_level=CertificationLevel.NOT_CERTIFIED,
                    reason=None, location=None, contact_info=None,
                    signing_time: Union[datetime, str, None] = None,
                    field_name=None) -> 'PlaceholderSpec':
        """
        Validate user-supplied placeholder settings.

        :raise ParameterError:
            If the estimated size is not a positive integer, the certification
            level is out of range, or the signing time cannot be parsed.
        """
        return PlaceholderSpec(
            estimated_size=_validate_estimated_size(estimated_size),
            cert_level=CertificationLevel.from_value(cert_level),
            reason=reason, location=location, contact_info=contact_info,
            signing_time=_process_signing_time(signing_time),
            field_name=field_name,
        )


@dataclass(frozen=True)
class PreparedPlaceholder:
    """
    The output of :func:`add_signature_placeholder`.
    """

    output: IO
    """
    The output stream, containing the updated document.
    """

    field_name: str
    """
    Name of the signature field that was created.
    """

    byte_range: List[int]
    """
    The byte range covered by the future signature.
    """

    bytes_reserved: int
    """
    Number of bytes reserved for the signature.
    """


def _register_docmdp(pdf_out: IncrementalPdfFileWriter,
                     sig_obj_ref: generic.IndirectObject):
    root = pdf_out.root
    try:
        perms = root['/Perms']
    except KeyError:
        root[pdf_name('/Perms')] = generic.DictionaryObject({
            pdf_name('/DocMDP'): sig_obj_ref
        })
        pdf_out.update_root()
        return
    perms[pdf_name('/DocMDP')] = sig_obj_ref
    pdf_out.update_container(perms)


def add_signature_placeholder(pdf_out: IncrementalPdfFileWriter,
                              spec: PlaceholderSpec,
                              output: Optional[IO] = None) \
        -> PreparedPlaceholder:
    """
    Add a signature field with an empty signature to the document, and write
    the result as an incremental update.

    The signature dictionary reserves room for a detached PKCS#7 signature
    of ``spec.estimated_size`` bytes. Its ``/ByteRange`` covers the entire
    output except for the reserved region.

    :param pdf_out:
        An incremental writer for the input document.
    :param spec:
        The placeholder settings.
    :param output:
        Seekable output stream. If not specified, a :class:`.BytesIO` is used.
    :return:
        A :class:`PreparedPlaceholder`.
    :raise ParameterError:
        If a certification signature is requested for a document that is
        already certified.
    """
    cert_level = spec.cert_level
    certify = cert_level.certifies
    if certify and get_docmdp_sig(pdf_out) is not None:
        raise ParameterError(
            "The document already contains a certification signature; "
            "a document can only be certified once."
        )

    field_name = spec.field_name or next_sig_field_name(pdf_out)
    root = pdf_out.root
    sig_field_ref = prepare_sig_field(field_name, root, pdf_out)
    ensure_sig_flags(pdf_out, lock_sig_flags=certify)

    signing_time = spec.signing_time or datetime.now(
        tz=tzlocal.get_localzone()
    )
    sig_obj = SignatureObject(
        bytes_reserved=spec.estimated_size, timestamp=signing_time,
        reason=spec.reason, location=spec.location,
        contact_info=spec.contact_info, app_name='pdfsignatures',
        app_version=__version__,
    )
    if certify:
        sig_obj[pdf_name('/Reference')] = generic.ArrayObject(
            [docmdp_reference_dictionary(cert_level)]
        )
    sig_obj_ref = pdf_out.add_object(sig_obj)

    sig_field = sig_field_ref.get_object()
    sig_field[pdf_name('/V')] = sig_obj_ref
    if certify:
        _register_docmdp(pdf_out, sig_obj_ref)

    logger.debug(
        "Adding placeholder for signature field %s, reserving %d bytes "
        "(certification level: %s)", field_name, spec.estimated_size,
        cert_level.name
    )
    if output is None:
        output = BytesIO()
    pdf_out.write(output)
    byte_range = sig_obj.fill_byte_range(output)
    output.seek(0)
    return PreparedPlaceholder(
        output=output, field_name=field_name, byte_range=byte_range,
        bytes_reserved=spec.estimated_size,
    )
