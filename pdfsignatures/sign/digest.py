"""
Locating unfilled signature placeholders, and computing the digest an
external signer needs to produce a detached signature for them.
"""

import base64
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterator, List, Tuple

from pdfsignatures.pdf_utils import generic, misc
from pdfsignatures.pdf_utils.reader import PdfFileReader

from .fields import enumerate_sig_fields
from .general import (
    DEFAULT_MD,
    AmbiguousPlaceholderError,
    PlaceholderNotFoundError,
    byte_range_digest,
    normalise_md_algorithm,
)
from .pdf_byterange import ReservedRegion, read_reserved_region

__all__ = [
    'SignaturePlaceholder', 'iter_placeholders', 'find_placeholder',
    'compute_digest', 'read_input_data',
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignaturePlaceholder:
    """
    An unfilled signature dictionary in an existing document.
    """

    field_name: str
    """
    Fully qualified name of the signature field.
    """

    sig_object_ref: generic.Reference
    """
    Reference to the signature dictionary.
    """

    region: ReservedRegion
    """
    The region reserved for the signature.
    """

    revision: int
    """
    The revision in which the signature dictionary was introduced.
    """


def read_input_data(reader: PdfFileReader) -> bytes:
    stream = reader.stream
    stream.seek(0)
    return stream.read()


def _iter_signature_regions(reader: PdfFileReader, data: bytes) \
        -> Iterator[Tuple[SignaturePlaceholder, bool]]:
    for field_name, sig_value, field_ref in enumerate_sig_fields(reader):
        if not isinstance(sig_value, generic.DictionaryObject) \
                or sig_value.get('/Type') != '/Sig':
            logger.debug(
                "Value of field %s is not a signature dictionary", field_name
            )
            continue
        sig_value_raw = field_ref.get_object().raw_get('/V')
        if isinstance(sig_value_raw, generic.IndirectObject):
            sig_ref = sig_value_raw.reference
        else:
            # direct signature dictionaries live in the field
            sig_ref = field_ref.reference
        region = read_reserved_region(sig_value, data)
        if region is None:
            logger.debug(
                "Signature in field %s has a byte range that does not match "
                "the file", field_name
            )
            continue
        try:
            revision = reader.xrefs.get_introducing_revision(sig_ref)
        except KeyError:
            revision = reader.total_revisions - 1
        entry = SignaturePlaceholder(
            field_name=field_name, sig_object_ref=sig_ref, region=region,
            revision=revision,
        )
        yield entry, region.is_empty(data)


def iter_placeholders(reader: PdfFileReader, data: bytes) \
        -> Iterator[SignaturePlaceholder]:
    """
    Enumerate all unfilled signature placeholders in a document.

    A placeholder is a signature dictionary with a ``/ByteRange`` that is
    consistent with the file, and a reserved ``/Contents`` region that
    consists of hex zeroes only.

    :param reader:
        A reader for the document.
    :param data:
        The raw file contents.
    """
    for entry, empty in _iter_signature_regions(reader, data):
        if empty:
            yield entry


def find_placeholder(reader: PdfFileReader, data: bytes) \
        -> SignaturePlaceholder:
    """
    Select the placeholder to operate on: the one introduced in the most
    recent revision that introduced any placeholders at all.

    Placeholders whose reserved region lies within the byte range of a
    signature that has already been filled in are never selected, since
    filling them would invalidate that signature.

    :param reader:
        A reader for the document.
    :param data:
        The raw file contents.
    :raise PlaceholderNotFoundError:
        If there is no usable placeholder.
    :raise AmbiguousPlaceholderError:
        If the most recent revision introduced more than one placeholder.
    """
    placeholders: List[SignaturePlaceholder] = []
    filled: List[SignaturePlaceholder] = []
    for entry, empty in _iter_signature_regions(reader, data):
        (placeholders if empty else filled).append(entry)
    if not placeholders:
        raise PlaceholderNotFoundError(
            "No signature placeholder found in the document"
        )

    by_revision: Dict[int, List[SignaturePlaceholder]] = defaultdict(list)
    for placeholder in placeholders:
        signed_over = [
            sig.field_name for sig in filled
            if sig.region.covers(placeholder.region)
        ]
        if signed_over:
            logger.debug(
                "Placeholder in field %s is covered by the signature(s) in "
                "%s", placeholder.field_name, ', '.join(signed_over)
            )
            continue
        by_revision[placeholder.revision].append(placeholder)
    if not by_revision:
        names = ', '.join(p.field_name for p in placeholders)
        raise PlaceholderNotFoundError(
            f"The remaining signature placeholders ({names}) are covered by "
            f"a signature that has already been embedded; filling them "
            f"would invalidate it."
        )
    revision = max(by_revision)
    candidates = by_revision[revision]
    if len(candidates) > 1:
        names = ', '.join(p.field_name for p in candidates)
        raise AmbiguousPlaceholderError(
            f"Revision {revision} contains more than one signature "
            f"placeholder ({names}); cannot determine which one to use."
        )
    placeholder, = candidates
    logger.debug(
        "Selected placeholder in field %s (revision %d, %d bytes reserved)",
        placeholder.field_name, revision, placeholder.region.bytes_reserved
    )
    return placeholder


def compute_digest(reader: PdfFileReader, md_algorithm: str = DEFAULT_MD,
                   chunk_size=misc.DEFAULT_CHUNK_SIZE) -> str:
    """
    Compute the digest of the byte ranges around the signature placeholder.

    :param reader:
        A reader for the document.
    :param md_algorithm:
        Name of the digest algorithm, see
        :data:`~.general.DIGEST_ALGORITHMS`.
    :param chunk_size:
        The I/O chunk size to use.
    :return:
        The digest, base64-encoded.
    :raise ParameterError:
        If the digest algorithm is not supported.
    :raise PlaceholderNotFoundError:
        If no suitable placeholder is present.
    """
    md_algorithm = normalise_md_algorithm(md_algorithm)
    data = read_input_data(reader)
    placeholder = find_placeholder(reader, data)
    total_len, digest = byte_range_digest(
        reader.stream, placeholder.region.byte_range, md_algorithm,
        chunk_size=chunk_size,
    )
    logger.debug("Digested %d bytes using %s", total_len, md_algorithm)
    return base64.b64encode(digest).decode('ascii')
