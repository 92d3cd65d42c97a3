"""
Embedding of externally produced signatures into a signature placeholder.
"""

import logging

from pdfsignatures.pdf_utils.reader import PdfFileReader

from .digest import find_placeholder, read_input_data

__all__ = ['embed_signature']

logger = logging.getLogger(__name__)


def embed_signature(reader: PdfFileReader, signature: bytes) -> bytes:
    """
    Write a DER-encoded signature into the reserved ``/Contents`` region of
    the document's signature placeholder.

    The signature is written as uppercase hex, padded with zeroes. The
    output has the same length as the input, and differs from it only in
    the reserved region, so the ``/ByteRange`` remains valid.

    :param reader:
        A reader for the document.
    :param signature:
        The DER-encoded CMS signature.
    :return:
        The signed document.
    :raise ParameterError:
        If the signature is empty.
    :raise SignatureTooLargeError:
        If the signature does not fit in the reserved region.
    :raise PlaceholderNotFoundError:
        If there is no suitable placeholder.
    """
    data = read_input_data(reader)
    placeholder = find_placeholder(reader, data)
    output = bytearray(data)
    placeholder.region.fill(output, signature)
    logger.debug(
        "Embedded %d-byte signature into field %s",
        len(signature), placeholder.field_name
    )
    return bytes(output)
