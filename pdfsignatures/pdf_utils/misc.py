"""
Utility functions for the PDF library: error classes, low-level stream
reading helpers and output helpers.

Generally, all of these constitute internal API, except for the exception
classes.
"""

import logging
import os
import tempfile
from datetime import datetime
from enum import Enum
from typing import Callable

import pytz
from dateutil.parser import isoparse as _dateutil_isoparse

__all__ = [
    'PdfError', 'PdfReadError', 'PdfStrictReadError', 'PdfHeaderError',
    'XRefChainError', 'PasswordError', 'PdfWriteError', 'PdfStreamError',
    'get_and_apply', 'OrderedEnum', 'is_regular_character',
    'read_non_whitespace', 'read_until_whitespace', 'read_until_delimiter',
    'read_until_regex', 'skip_over_whitespace', 'skip_over_comment', 'peek',
    'DEFAULT_CHUNK_SIZE', 'chunked_write', 'chunked_digest', 'chunk_stream',
    'write_output_atomically', 'isoparse'
]

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 4096
"""
Default chunk size for stream I/O.
"""

PDF_WHITESPACE = b' \n\r\t\f\x00'
PDF_DELIMITERS = b'()<>[]{}/%'


def pair_iter(lst):
    i = iter(lst)
    while True:
        try:
            x1 = next(i)
        except StopIteration:
            return
        try:
            x2 = next(i)
        except StopIteration:
            raise ValueError('List has odd number of elements')
        yield x1, x2


def is_regular_character(byte_value: int):
    return byte_value not in PDF_WHITESPACE and byte_value not in PDF_DELIMITERS


def read_until_whitespace(stream, maxchars=None):
    """
    Reads non-whitespace characters and returns them.
    Stops upon encountering whitespace or when maxchars is reached.
    """
    if maxchars == 0:
        return b''

    def _build():
        stop_at = None if maxchars is None else stream.tell() + maxchars
        while maxchars is None or stream.tell() < stop_at:
            tok = stream.read(1)
            if tok.isspace() or not tok:
                break
            yield tok
    return b''.join(_build())


def read_until_delimiter(stream) -> bytes:
    """
    Read regular characters until whitespace, a delimiter or the end of the
    stream is encountered. The stream is left positioned at the first
    non-regular character.
    """
    result = bytearray()
    while True:
        tok = stream.read(1)
        if not tok:
            break
        if not is_regular_character(tok[0]):
            stream.seek(-1, os.SEEK_CUR)
            break
        result += tok
    return bytes(result)


def read_non_whitespace(stream, seek_back=False, allow_eof=False):
    """
    Finds and reads the next non-whitespace character (ignores whitespace
    and comments).
    """
    tok = PDF_WHITESPACE[:1]
    while True:
        while tok in PDF_WHITESPACE:
            if not tok:
                if allow_eof:
                    return b''
                raise PdfStreamError('Stream ended prematurely')
            tok = stream.read(1)
        if tok != b'%':
            break
        stream.seek(-1, os.SEEK_CUR)
        skip_over_comment(stream)
        tok = PDF_WHITESPACE[:1]
    if seek_back:
        stream.seek(-1, os.SEEK_CUR)
    return tok


def skip_over_whitespace(stream, stop_after_eol=False) -> bool:
    """
    Similar to :func:`read_non_whitespace`, but returns a boolean indicating
    whether more than one whitespace character was read.

    Will return the cursor to before the first non-whitespace character
    encountered, or after the first end-of-line sequence if
    ``stop_after_eol`` is set and one is encountered.
    """
    tok = PDF_WHITESPACE[:1]
    cnt = 0
    while tok and tok in PDF_WHITESPACE:
        tok = stream.read(1)
        cnt += 1
        if stop_after_eol:
            if tok == b'\n':
                return cnt > 1
            elif tok == b'\r':
                if stream.read(1) == b'\n':
                    return cnt > 1
                # lone CR also counts as EOL, but we read one byte too many
                break
    if tok:
        stream.seek(-1, os.SEEK_CUR)
    return cnt > 1


def skip_over_comment(stream) -> bool:
    tok = stream.read(1)
    stream.seek(-1, os.SEEK_CUR)
    if tok == b'%':
        while tok not in (b'\n', b'\r', b''):
            tok = stream.read(1)
        return True
    return False


def read_until_regex(stream, regex, ignore_eof=False):
    """
    Reads until the regular expression pattern matched (ignore the match).

    :param stream: stream to search
    :param regex: regex to match
    :param ignore_eof:
        If ``True``, return what was read so far on EOF instead of raising
        :class:`PdfStreamError`.
    """
    name = b''
    while True:
        tok = stream.read(16)
        if not tok:
            if ignore_eof:
                return name
            raise PdfStreamError("Stream has ended unexpectedly")
        m = regex.search(tok)
        if m is not None:
            name += tok[:m.start()]
            stream.seek(m.start() - len(tok), os.SEEK_CUR)
            break
        name += tok
    return name


class PdfError(Exception):
    """
    Base class for errors raised by the PDF library.

    :param msg:
        Human-readable error message.
    """

    error_type = 'PdfError'
    """
    Stable, machine-readable identifier for the kind of error.
    """

    def __init__(self, msg: str, *args):
        self.msg = msg
        super().__init__(msg, *args)


class PdfReadError(PdfError):
    """
    Raised when a PDF file is malformed or cannot be interpreted.
    """
    error_type = 'ParseError'


class PdfStrictReadError(PdfReadError):
    pass


class PdfHeaderError(PdfReadError):
    """
    Raised when the ``%PDF-x.y`` header is missing or malformed.
    """


class XRefChainError(PdfReadError):
    """
    Raised when the chain of cross-reference sections cannot be resolved.
    """


class PasswordError(PdfReadError):
    """
    Raised when an encrypted document cannot be opened with the password
    supplied (or without one, if none was supplied).
    """
    error_type = 'PasswordError'


class PdfWriteError(PdfError):
    error_type = 'WriteError'


class PdfStreamError(PdfReadError):
    pass


def peek(itr):
    itr = iter(itr)
    first = next(itr)

    def _itr():
        yield first
        yield from itr

    return first, _itr()


class OrderedEnum(Enum):
    """
    Ordered enum (from the Python documentation)
    """

    def __ge__(self, other):
        if self.__class__ is other.__class__:
            return self.value >= other.value
        raise NotImplementedError

    def __gt__(self, other):
        if self.__class__ is other.__class__:
            return self.value > other.value
        raise NotImplementedError

    def __le__(self, other):
        if self.__class__ is other.__class__:
            return self.value <= other.value
        raise NotImplementedError

    def __lt__(self, other):
        if self.__class__ is other.__class__:
            return self.value < other.value
        raise NotImplementedError


def get_and_apply(dictionary: dict, key, function: Callable, *, default=None):
    try:
        value = dictionary[key]
    except KeyError:
        return default
    return function(value)


def chunk_stream(temp_buffer: bytearray, stream, max_read=None):
    total_read = 0
    while max_read is None or total_read < max_read:
        # clamp the input buffer if necessary
        read_buffer = temp_buffer
        if max_read is not None:
            to_read = max_read - total_read
            if to_read < len(temp_buffer):
                read_buffer = memoryview(temp_buffer)[:to_read]
        bytes_read = stream.readinto(read_buffer)
        if not bytes_read:
            return
        total_read += bytes_read

        if bytes_read < len(read_buffer):
            yield memoryview(read_buffer)[:bytes_read]
        else:
            yield read_buffer


def chunked_digest(temp_buffer: bytearray, stream, md, max_read=None):
    for chunk in chunk_stream(temp_buffer, stream, max_read=max_read):
        md.update(chunk)


def chunked_write(temp_buffer: bytearray, stream, output, max_read=None):
    for chunk in chunk_stream(temp_buffer, stream, max_read=max_read):
        output.write(chunk)


def write_output_atomically(path, data) -> str:
    """
    Write a fully rendered output file to ``path``.

    The data is written to a temporary file in the destination directory,
    which is then moved into place, so the destination either contains the
    complete output or is left untouched.

    :param path:
        Destination path.
    :param data:
        A bytes-like object.
    :return:
        The destination path, as a string.
    """
    path = os.fspath(path)
    target_dir = os.path.dirname(os.path.abspath(path))
    fd, tmp_path = tempfile.mkstemp(
        dir=target_dir, prefix='.pdfsignatures-', suffix='.tmp'
    )
    try:
        with os.fdopen(fd, 'wb') as outf:
            outf.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        logger.debug("Discarding temporary output file %s", tmp_path)
        os.unlink(tmp_path)
        raise
    return path


def isoparse(dt_str: str) -> datetime:
    """
    Parse an ISO 8601 date. Naive values are interpreted as UTC.

    :raise ValueError: if the string is not a valid ISO 8601 date
    """
    dt = _dateutil_isoparse(dt_str)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=pytz.UTC)
    return dt
