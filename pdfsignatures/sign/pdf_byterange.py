"""
Signature dictionaries with a ``/ByteRange`` and a reserved ``/Contents``
region, both when writing them out and when locating them in existing
files.
"""

import binascii
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from pdfsignatures.pdf_utils import generic
from pdfsignatures.pdf_utils.generic import pdf_date, pdf_name, pdf_string

from .general import ParameterError, SignatureTooLargeError

__all__ = [
    'SigByteRangeObject', 'DERPlaceholder', 'PdfByteRangeDigest',
    'SignatureObject', 'ReservedRegion', 'read_reserved_region',
]

logger = logging.getLogger(__name__)

BYTE_RANGE_FORMAT = "[ %010d %010d %010d %010d ]"


class SigByteRangeObject(generic.PdfObject):
    """
    Fixed-width ``/ByteRange`` array, to be filled in after the document
    has been serialised.
    """

    def __init__(self):
        self._filled = False
        self._range_object_offset = None
        self.first_region_len = 0
        self.second_region_offset = 0
        self.second_region_len = 0

    def fill_offsets(self, stream, sig_start, sig_end, eof):
        if self._filled:
            raise ValueError('Offsets already filled')  # pragma: nocover
        if self._range_object_offset is None:
            raise ValueError(
                'Could not determine where to write /ByteRange value'
            )  # pragma: nocover

        old_seek = stream.tell()
        self.first_region_len = sig_start
        self.second_region_offset = sig_end
        self.second_region_len = eof - sig_end
        # the array has a fixed width, so we can just write over it
        stream.seek(self._range_object_offset)
        self.write_to_stream(stream, None)

        stream.seek(old_seek)
        self._filled = True

    def write_to_stream(self, stream, handler=None, container_ref=None):
        if self._range_object_offset is None:
            self._range_object_offset = stream.tell()
        string_repr = BYTE_RANGE_FORMAT % (
            0, self.first_region_len,
            self.second_region_offset, self.second_region_len,
        )
        stream.write(string_repr.encode('ascii'))


class DERPlaceholder(generic.PdfObject):
    """
    Hex string of zeroes reserving room for a DER-encoded signature.

    :param bytes_reserved:
        Number of (binary) bytes to reserve. The hex string is twice as long.
    """

    def __init__(self, bytes_reserved: int):
        self.value = b'0' * (2 * bytes_reserved)
        self._offsets = None

    @property
    def offsets(self) -> Tuple[int, int]:
        if self._offsets is None:
            raise ValueError('No offsets available')  # pragma: nocover
        return self._offsets

    # always ignore the encryption key: signature contents are never encrypted
    def write_to_stream(self, stream, handler=None, container_ref=None):
        start = stream.tell()
        stream.write(b'<')
        stream.write(self.value)
        stream.write(b'>')
        end = stream.tell()
        if self._offsets is None:
            self._offsets = start, end


class PdfByteRangeDigest(generic.DictionaryObject):
    """
    Dictionary with a ``/Contents`` placeholder and a ``/ByteRange`` entry
    covering everything but the placeholder.

    :param bytes_reserved:
        Number of bytes to reserve for the signature.
    """

    def __init__(self, *, bytes_reserved: int):
        super().__init__()
        contents = DERPlaceholder(bytes_reserved=bytes_reserved)
        self[pdf_name('/Contents')] = self.contents = contents
        byte_range = SigByteRangeObject()
        self[pdf_name('/ByteRange')] = self.byte_range = byte_range

    def fill_byte_range(self, output):
        """
        Write the proper values of the ``/ByteRange`` entry into an output
        stream to which the signature dictionary has just been written.

        :param output:
            A seekable output stream, positioned at the end of the file.
        :return:
            The byte range as a list of four integers.
        """
        eof = output.tell()
        sig_start, sig_end = self.contents.offsets
        self.byte_range.fill_offsets(output, sig_start, sig_end, eof)
        return [0, sig_start, sig_end, eof - sig_end]


class SignatureObject(PdfByteRangeDigest):
    """
    Class modelling a placeholder for a regular PDF signature, to be filled
    with a detached PKCS#7 signature later.

    :param bytes_reserved:
        The number of bytes to reserve for the signature.
    :param timestamp:
        The timestamp to embed into the ``/M`` entry.
    :param reason:
        Optional signing reason.
    :param location:
        Optional signing location.
    :param contact_info:
        Optional contact information of the signer.
    :param app_name:
        Name of the producing application, for the ``/Prop_Build`` entry.
    :param app_version:
        Version of the producing application.
    """

    def __init__(self, *, bytes_reserved: int,
                 timestamp: Optional[datetime] = None, reason=None,
                 location=None, contact_info=None, app_name=None,
                 app_version=None):
        super().__init__(bytes_reserved=bytes_reserved)
        self.update({
            pdf_name('/Type'): pdf_name('/Sig'),
            pdf_name('/Filter'): pdf_name('/Adobe.PPKLite'),
            pdf_name('/SubFilter'): pdf_name('/adbe.pkcs7.detached'),
        })

        if timestamp is not None:
            self[pdf_name('/M')] = pdf_date(timestamp)
        if reason:
            self[pdf_name('/Reason')] = pdf_string(reason)
        if location:
            self[pdf_name('/Location')] = pdf_string(location)
        if contact_info:
            self[pdf_name('/ContactInfo')] = pdf_string(contact_info)
        if app_name:
            app = generic.DictionaryObject({
                pdf_name('/Name'): pdf_name('/' + app_name),
            })
            if app_version:
                app['/REx'] = pdf_string(app_version)
            self[pdf_name('/Prop_Build')] = generic.DictionaryObject({
                pdf_name('/App'): app
            })


HEX_ZEROES = re.compile(rb'0*')


@dataclass(frozen=True)
class ReservedRegion:
    """
    The ``/Contents`` region of a signature dictionary in an existing file.
    """

    byte_range: Tuple[int, int, int, int]
    """
    The declared ``/ByteRange``.
    """

    @property
    def start(self) -> int:
        """Offset of the ``<`` delimiter."""
        return self.byte_range[1]

    @property
    def end(self) -> int:
        """Offset just past the ``>`` delimiter."""
        return self.byte_range[2]

    @property
    def bytes_reserved(self) -> int:
        """Number of binary signature bytes that fit in the region."""
        return (self.end - self.start - 2) // 2

    @property
    def covered_end(self) -> int:
        """Offset just past the last byte covered by the byte range."""
        return self.byte_range[2] + self.byte_range[3]

    def covers(self, other: 'ReservedRegion') -> bool:
        """
        Check whether another reserved region overlaps the bytes digested
        through this region's byte range.

        :param other:
            Another region in the same file.
        """
        if self.start <= other.start and other.end <= self.end:
            return False
        return other.start < self.covered_end

    def hex_contents(self, data: bytes) -> bytes:
        return data[self.start + 1:self.end - 1]

    def is_empty(self, data: bytes) -> bool:
        """
        Check whether the region still consists of hex zeroes only.
        """
        return HEX_ZEROES.fullmatch(self.hex_contents(data)) is not None

    def fill(self, buf: bytearray, der_bytes: bytes):
        """
        Write a DER-encoded signature into the reserved region, as uppercase
        hex right-padded with zeroes. The length of the buffer is unchanged.

        :param buf:
            A mutable copy of the file contents.
        :param der_bytes:
            The signature.
        :raise SignatureTooLargeError:
            If the signature does not fit.
        """
        if not der_bytes:
            raise ParameterError("Signature must not be empty")
        bytes_reserved = self.bytes_reserved
        if len(der_bytes) > bytes_reserved:
            raise SignatureTooLargeError(
                f"Signature is larger than the space reserved for it: "
                f"allocated {bytes_reserved} bytes, but the signature "
                f"requires {len(der_bytes)} bytes."
            )
        der_hex = binascii.hexlify(der_bytes).upper()
        padded = der_hex.ljust(self.end - self.start - 2, b'0')
        # +1 to skip the '<'
        buf[self.start + 1:self.end - 1] = padded


def read_reserved_region(sig_dict: generic.DictionaryObject,
                         data: bytes) -> Optional[ReservedRegion]:
    """
    Validate the ``/ByteRange`` of a signature dictionary against the
    file contents, and return the region it excludes.

    The byte range must start at zero, exclude exactly one hex string
    (``<`` at the end of the first span, ``>`` just before the second span),
    and the second span must end within the file.

    :param sig_dict:
        A signature dictionary.
    :param data:
        The file contents.
    :return:
        A :class:`ReservedRegion`, or ``None`` if the byte range is absent or
        inconsistent with the file.
    """
    if not isinstance(sig_dict, generic.DictionaryObject):
        return None
    try:
        br = sig_dict['/ByteRange']
    except KeyError:
        return None
    if not isinstance(br, generic.ArrayObject) or len(br) != 4:
        return None
    try:
        values: List[int] = [int(br[ix]) for ix in range(4)]
    except (TypeError, ValueError):
        return None
    start1, len1, start2, len2 = values
    if start1 != 0 or len1 <= 0 or len2 < 0 or start2 < len1 + 2:
        return None
    if start2 + len2 > len(data):
        return None
    if data[len1:len1 + 1] != b'<' or data[start2 - 1:start2] != b'>':
        return None
    return ReservedRegion(byte_range=(start1, len1, start2, len2))
