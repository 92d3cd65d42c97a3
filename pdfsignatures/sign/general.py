"""
General tools shared by the signing workflow: error classes, the message
digest algorithm registry and byte range digesting.
"""

import base64
import binascii
import logging
from typing import IO, Iterable, Tuple

from cryptography.hazmat.primitives import hashes

from pdfsignatures.pdf_utils import misc

__all__ = [
    'SigningError', 'ParameterError', 'PlaceholderNotFoundError',
    'AmbiguousPlaceholderError', 'SignatureTooLargeError',
    'NoSignatureForLtvError', 'DIGEST_ALGORITHMS', 'DEFAULT_MD',
    'normalise_md_algorithm', 'get_pyca_cryptography_hash',
    'byte_range_digest', 'decode_base64',
]

logger = logging.getLogger(__name__)


class SigningError(ValueError):
    """
    Error encountered while preparing, digesting or completing a signature.
    """

    error_type = 'SigningError'
    """
    Stable, machine-readable identifier for the kind of error.
    """

    def __init__(self, msg: str, *args):
        self.msg = msg
        super().__init__(msg, *args)


class ParameterError(SigningError):
    """
    Raised when an operation receives an invalid argument.
    """

    error_type = 'ParameterError'


class PlaceholderNotFoundError(SigningError):
    """
    Raised when a document does not contain an unfilled signature
    placeholder.
    """

    error_type = 'PlaceholderNotFoundError'


class AmbiguousPlaceholderError(PlaceholderNotFoundError):
    """
    Raised when the most recent revision containing placeholders contains
    more than one, so that there is no way to tell which one is meant.
    """

    error_type = 'AmbiguousPlaceholderError'


class SignatureTooLargeError(SigningError):
    """
    Raised when a signature does not fit in the space reserved for it.
    """

    error_type = 'SignatureTooLargeError'


class NoSignatureForLtvError(SigningError):
    """
    Raised when validation data is supplied for a document that does not
    contain a completed signature.
    """

    error_type = 'NoSignatureForLtvError'


DIGEST_ALGORITHMS = {
    'SHA-256': 'sha256',
    'SHA-384': 'sha384',
    'SHA-512': 'sha512',
}
"""
Supported message digest algorithms, keyed by their canonical name.
"""

DEFAULT_MD = 'SHA-512'


def normalise_md_algorithm(algorithm: str) -> str:
    """
    Map a user-supplied digest algorithm name to its canonical form.
    Matching is case-insensitive and ignores dashes, so ``sha256``,
    ``SHA256`` and ``SHA-256`` are all accepted.

    :param algorithm:
        The algorithm name.
    :return:
        The canonical name, e.g. ``'SHA-256'``.
    :raise ParameterError:
        If the algorithm is not supported.
    """
    if isinstance(algorithm, str):
        needle = algorithm.replace('-', '').lower()
        for canonical, short in DIGEST_ALGORITHMS.items():
            if needle == short:
                return canonical
    raise ParameterError(
        f"Unsupported digest algorithm {algorithm!r}; expected one of "
        f"{', '.join(DIGEST_ALGORITHMS)}."
    )


def get_pyca_cryptography_hash(algorithm: str) -> hashes.HashAlgorithm:
    return getattr(hashes, DIGEST_ALGORITHMS[algorithm].upper())()


def byte_range_digest(stream: IO, byte_range: Iterable[int],
                      md_algorithm: str,
                      chunk_size=misc.DEFAULT_CHUNK_SIZE) -> Tuple[int, bytes]:
    """
    Internal API to compute byte range digests. Potentially dangerous if used
    without due caution.

    :param stream:
        Stream over which to compute the digest. Must support seeking and
        reading.
    :param byte_range:
        The byte range, as a list of (offset, length) pairs, flattened.
    :param md_algorithm:
        The canonical name of the message digest algorithm to use.
    :param chunk_size:
        The I/O chunk size to use.
    :return:
        A tuple of the total digested length, and the actual digest.
    """
    md = hashes.Hash(get_pyca_cryptography_hash(md_algorithm))

    total_len = 0
    chunk_buf = bytearray(chunk_size)
    for lo, chunk_len in misc.pair_iter(byte_range):
        stream.seek(lo)
        misc.chunked_digest(chunk_buf, stream, md, max_read=chunk_len)
        total_len += chunk_len

    return total_len, md.finalize()


def decode_base64(data, what: str) -> bytes:
    """
    Decode a base64 payload supplied by the caller.

    :param data:
        The base64 data, as a string or as bytes.
    :param what:
        Description of the payload, for error messages.
    :raise ParameterError:
        If the data is not valid base64.
    """
    if isinstance(data, str):
        try:
            data = data.encode('ascii')
        except UnicodeEncodeError:
            raise ParameterError(f"{what} is not valid base64")
    try:
        return base64.b64decode(b''.join(data.split()), validate=True)
    except (binascii.Error, TypeError, AttributeError) as e:
        raise ParameterError(f"{what} is not valid base64: {e}")
