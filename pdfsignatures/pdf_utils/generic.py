"""
Implementation of PDF object types and other generic functionality.

PDF objects are modelled as a tagged union: every concrete object type
subclasses :class:`.PdfObject` and, where it makes sense, the Python builtin
it corresponds to (``int``, ``str``, ``bytes``, ``list``, ``dict``).
"""
import binascii
import codecs
import decimal
import enum
import logging
import os
import re
import typing
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from io import BytesIO
from typing import Iterator, Optional, Tuple, Union

from .misc import (
    PdfError,
    PdfReadError,
    PdfStreamError,
    PdfStrictReadError,
    PdfWriteError,
    is_regular_character,
    read_non_whitespace,
    read_until_delimiter,
    read_until_regex,
    skip_over_whitespace,
)

if typing.TYPE_CHECKING:
    from .crypt import StandardSecurityHandler

__all__ = [
    'Dereferenceable', 'Reference', 'TrailerReference', 'PdfObject',
    'IndirectObject', 'NullObject', 'BooleanObject', 'FloatObject',
    'NumberObject', 'ByteStringObject', 'TextStringObject', 'NameObject',
    'ArrayObject', 'DictionaryObject', 'StreamObject', 'read_object',
    'pdf_name', 'pdf_string', 'pdf_date', 'parse_pdf_date',
    'TextStringEncoding', 'EncryptedObjAccess', 'DecryptedObjectProxy',
]

OBJECT_PREFIXES = b'/<[tf(n%'
NUMBER_SIGNS = b'+-'
INDIRECT_PATTERN = re.compile(rb"(\d+)\s+(\d+)\s+R[^a-zA-Z]")

logger = logging.getLogger(__name__)


class EncryptedObjAccess(enum.Enum):
    """
    Defines what to do when an encrypted object is encountered when retrieving
    an object from a container.
    """

    PROXY = 0
    """
    Return the proxy object as-is.
    """

    TRANSPARENT = 1
    """
    Transparently decrypt the proxy's content. This is the default.
    """

    RAW = 2
    """
    Return the underlying raw object as written in the file.
    """


def _deproxy_decrypt(obj, eoa: EncryptedObjAccess):
    if isinstance(obj, DecryptedObjectProxy):
        if eoa == EncryptedObjAccess.TRANSPARENT:
            return obj.decrypted
        elif eoa == EncryptedObjAccess.RAW:
            return obj.raw_object
    return obj


class Dereferenceable:
    """
    Represents an opaque reference to a PDF object associated with
    a PDF handler (see :class:`~.rw_common.PdfHandler`).
    """

    def get_object(self) -> 'PdfObject':
        raise NotImplementedError

    def get_pdf_handler(self):
        raise NotImplementedError


class TrailerReference(Dereferenceable):
    """
    A reference to the trailer of a PDF document.

    :param reader:
        a :class:`~pdfsignatures.pdf_utils.reader.PdfFileReader`
    """

    def __init__(self, reader):
        self.reader = reader

    def get_object(self) -> 'PdfObject':
        return self.reader.trailer

    def get_pdf_handler(self):
        return self.reader


@dataclass(frozen=True)
class Reference(Dereferenceable):
    """
    A reference to an object with a certain ID and generation number, with
    a PDF handler attached to it.

    Dereferencing a :class:`.Reference` returns the most recent version of
    the object with that ID, taking all incremental updates into account.
    """

    idnum: int
    """
    The object's ID.
    """

    generation: int = 0
    """
    The object's generation number (usually `0`)
    """

    pdf: object = field(repr=False, hash=False, compare=False, default=None)
    """
    The PDF handler associated with this reference. Ignored for hashing and
    comparison purposes.
    """

    def get_object(self) -> 'PdfObject':
        if self.pdf is None:
            return NullObject()
        return self.pdf.get_object(self).get_object()

    def get_pdf_handler(self):
        return self.pdf


def read_object(stream, container_ref: 'Dereferenceable') -> 'PdfObject':
    """
    Read a PDF object from an input stream.

    :param stream:
        An input stream.
    :param container_ref:
        A reference to the indirect object (or trailer) containing the object
        being read. This is also used to find the PDF handler.
    :return:
        A :class:`.PdfObject`.
    """

    tok = stream.read(1)
    stream.seek(-1, os.SEEK_CUR)
    idx = OBJECT_PREFIXES.find(tok)
    if idx == 0:
        result = NameObject.read_from_stream(stream)
    elif idx == 1:
        # hexadecimal string OR dictionary
        lookahead = stream.read(2)
        stream.seek(-2, os.SEEK_CUR)
        if lookahead == b'<<':
            result = DictionaryObject.read_from_stream(stream, container_ref)
        else:
            result = read_hex_string_from_stream(stream)
    elif idx == 2:
        result = ArrayObject.read_from_stream(stream, container_ref)
    elif idx == 3 or idx == 4:
        result = BooleanObject.read_from_stream(stream)
    elif idx == 5:
        result = pdf_string(_read_string_literal_bytes(stream))
    elif idx == 6:
        result = NullObject.read_from_stream(stream)
    elif idx == 7:
        # comment
        while tok not in (b'\r', b'\n', b''):
            tok = stream.read(1)
        read_non_whitespace(stream, seek_back=True)
        result = read_object(stream, container_ref)
    elif not tok:
        raise PdfStreamError("Stream has ended unexpectedly")
    elif tok in NUMBER_SIGNS:
        result = NumberObject.read_from_stream(stream)
    else:
        # number object OR indirect reference
        lookahead = stream.read(20)
        stream.seek(-len(lookahead), os.SEEK_CUR)
        if INDIRECT_PATTERN.match(lookahead) is not None:
            result = IndirectObject.read_from_stream(stream, container_ref)
        else:
            result = NumberObject.read_from_stream(stream)

    result.container_ref = container_ref
    return result


class PdfObject:
    """Superclass for all PDF objects."""

    container_ref: Optional[Dereferenceable] = None
    """
    For objects read from a file, `container_ref` points to the unique
    addressable object containing this object (or the trailer).
    For newly created objects, `container_ref` is ``None``.
    """

    def get_object(self):
        """Resolves indirect references.

        :return: `self`, unless an instance of :class:`.IndirectObject`.
        """
        return self

    def write_to_stream(
        self,
        stream,
        handler: Optional['StandardSecurityHandler'] = None,
        container_ref: Optional[Reference] = None,
    ):
        """
        Render this object to an output stream.

        :param stream:
            An output stream.
        :param handler:
            Security handler to encrypt strings and streams with, if any.
        :param container_ref:
            Reference to the indirect object being written, used to derive
            the object's encryption key.
        """
        raise NotImplementedError


class NullObject(PdfObject):
    """
    PDF `null` object.

    All instances are treated as equal and falsy.
    """

    def write_to_stream(self, stream, handler=None, container_ref=None):
        stream.write(b"null")

    @staticmethod
    def read_from_stream(stream):
        nulltxt = stream.read(4)
        if nulltxt != b"null":
            raise PdfReadError("Could not read Null object")
        return NullObject()

    def __eq__(self, other):
        return self is other or isinstance(other, NullObject)

    def __hash__(self):
        return hash(None)

    def __bool__(self):
        return False


class BooleanObject(PdfObject):
    """PDF boolean value."""

    def __init__(self, value):
        self.value = value

    def write_to_stream(self, stream, handler=None, container_ref=None):
        stream.write(b"true" if self.value else b"false")

    @staticmethod
    def read_from_stream(stream):
        word = stream.read(4)
        if word == b"true":
            return BooleanObject(True)
        elif word == b"fals" and stream.read(1) == b"e":
            return BooleanObject(False)
        raise PdfReadError('Could not read Boolean object')

    def __bool__(self):
        return bool(self.value)

    def __eq__(self, other):
        return (
            isinstance(other, (BooleanObject, bool))
            and bool(self) == bool(other)
        )

    def __hash__(self):
        return hash(bool(self))

    def __repr__(self):
        return str(bool(self))


class ArrayObject(list, PdfObject):
    """
    PDF array object. This class extends from Python's list class,
    and supports its interface.

    Indirect references are resolved on item access; use :meth:`raw_get`
    to retrieve the unresolved value.
    """

    def __getitem__(self, index):
        return self.raw_get(index).get_object()

    def raw_get(
        self, index,
        decrypt: EncryptedObjAccess = EncryptedObjAccess.TRANSPARENT,
    ):
        """
        Get a value from an array without dereferencing.

        :param index:
            Index into the array.
        :param decrypt:
            What to do when retrieving encrypted objects; see
            :class:`.EncryptedObjAccess`.
        :return:
            A :class:`.PdfObject`.
        """
        val = list.__getitem__(self, index)
        return _deproxy_decrypt(val, decrypt)

    def raw_items(self):
        """
        Iterate over the array's entries without dereferencing.
        """
        return (self.raw_get(ix) for ix in range(len(self)))

    def write_to_stream(self, stream, handler=None, container_ref=None):
        stream.write(b"[")
        for ix in range(len(self)):
            stream.write(b" ")
            list.__getitem__(self, ix).write_to_stream(
                stream, handler, container_ref
            )
        stream.write(b" ]")

    @staticmethod
    def read_from_stream(stream, container_ref):
        arr = ArrayObject()
        tmp = stream.read(1)
        if tmp != b"[":
            raise PdfReadError("Could not read array")
        while True:
            peekahead = read_non_whitespace(stream)
            if peekahead == b"]":
                break
            stream.seek(-1, os.SEEK_CUR)
            arr.append(read_object(stream, container_ref))
        return arr


class IndirectObject(PdfObject, Dereferenceable):
    """
    Thin wrapper around a :class:`.Reference`, implementing both the
    :class:`.Dereferenceable` and :class:`.PdfObject` interfaces.
    """

    def __init__(self, idnum, generation, pdf):
        self.reference = Reference(idnum, generation, pdf)

    def get_object(self):
        """
        :return: The PDF object this reference points to.
        """
        obj = self.reference.get_object()
        return obj.get_object() if isinstance(obj, IndirectObject) else obj

    def get_pdf_handler(self):
        return self.reference.get_pdf_handler()

    @property
    def idnum(self) -> int:
        return self.reference.idnum

    @property
    def generation(self):
        return self.reference.generation

    def __repr__(self):
        return "IndirectObject(%r, %r)" % (self.idnum, self.generation)

    def __hash__(self):
        return hash((self.idnum, self.generation))

    def __eq__(self, other):
        return (
            isinstance(other, IndirectObject)
            and self.reference == other.reference
        )

    def __ne__(self, other):
        return not self.__eq__(other)

    def write_to_stream(self, stream, handler=None, container_ref=None):
        stream.write(b"%d %d R" % (self.idnum, self.generation))

    @staticmethod
    def read_from_stream(stream, container_ref: 'Dereferenceable'):
        def _read_int():
            digits = b""
            while True:
                tok = stream.read(1)
                if not tok:
                    raise PdfStreamError("Stream has ended unexpectedly")
                if tok.isspace():
                    if not digits:
                        continue
                    return int(digits)
                digits += tok

        idnum = _read_int()
        generation = _read_int()
        r = read_non_whitespace(stream)
        if r != b"R":
            raise PdfReadError(
                "Error reading indirect object reference at byte %s"
                % hex(stream.tell())
            )
        return IndirectObject(
            idnum, generation, container_ref.get_pdf_handler()
        )


class FloatObject(decimal.Decimal, PdfObject):
    """
    PDF Float object.

    Internally, these are treated as decimals.
    """

    # noinspection PyArgumentList,PyTypeChecker
    def __new__(cls, value="0", context=None):
        try:
            return decimal.Decimal.__new__(cls, str(value), context)
        except (ValueError, decimal.DecimalException):
            return decimal.Decimal.__new__(cls, str(value))

    def __repr__(self):
        if self == self.to_integral():
            return str(self.quantize(decimal.Decimal(1)))
        # avoid exponent notation, which is not valid PDF syntax
        return format(self, 'f')

    def write_to_stream(self, stream, handler=None, container_ref=None):
        stream.write(repr(self).encode('ascii'))


class NumberObject(int, PdfObject):
    """
    PDF number object. This is the PDF type for integer values.
    """

    NumberPattern = re.compile(b'[^+-.0-9]')

    # noinspection PyArgumentList
    def __new__(cls, value):
        return int.__new__(cls, int(value))

    def write_to_stream(self, stream, handler=None, container_ref=None):
        stream.write(b"%d" % self)

    @staticmethod
    def read_from_stream(stream):
        num = read_until_regex(
            stream, regex=NumberObject.NumberPattern, ignore_eof=True
        )
        try:
            if b'.' in num:
                return FloatObject(num.decode('ascii'))
            return NumberObject(num.decode('ascii'))
        except ValueError:
            raise PdfReadError(
                "Could not parse number %r at byte %s"
                % (num, hex(stream.tell()))
            )


def pdf_string(string: Union[str, bytes, bytearray]) \
        -> Union['ByteStringObject', 'TextStringObject']:
    """
    Encode a string as a :class:`.TextStringObject` if possible,
    or a :class:`.ByteStringObject` otherwise.

    :param string:
        A Python string or byte string.
    """
    if isinstance(string, str):
        return TextStringObject(string)
    elif isinstance(string, (bytes, bytearray)):
        guessed = _guess_enc_by_bom(string)
        try:
            retval = TextStringObject(guessed.decode(string))
            retval.autodetected_encoding = guessed
            return retval
        except UnicodeDecodeError:
            return ByteStringObject(string)
    raise TypeError("pdf_string should have str or bytes arg")


HEX_DIGITS = b'0123456789abcdefABCDEF'


def read_hex_string_from_stream(stream) \
        -> Union['ByteStringObject', 'TextStringObject']:
    """
    Read a hex string from a stream into a PDF string object.
    """
    stream.read(1)
    digits = bytearray()
    while True:
        tok = read_non_whitespace(stream)
        if tok == b">":
            break
        elif tok not in HEX_DIGITS:
            raise PdfStreamError(
                "Unexpected token in hex string: " + repr(tok)
            )
        digits += tok
    if len(digits) % 2:
        digits += b'0'
    return pdf_string(binascii.unhexlify(digits))


_STRING_ESCAPES = {
    b'n': b'\n', b'r': b'\r', b't': b'\t', b'b': b'\b', b'f': b'\f',
}


def _read_string_literal_bytes(stream) -> bytes:
    stream.read(1)
    parens = 1
    txt = BytesIO()
    while True:
        tok = stream.read(1)
        if not tok:
            raise PdfStreamError("Stream has ended unexpectedly")
        if tok == b"(":
            parens += 1
        elif tok == b")":
            parens -= 1
            if parens == 0:
                break
        elif tok == b"\\":
            tok = stream.read(1)
            if tok in _STRING_ESCAPES:
                tok = _STRING_ESCAPES[tok]
            elif tok in b"() /%<>[]#_&$\\":
                pass
            elif tok.isdigit():
                # up to three octal digits, high-order overflow is ignored
                for _ in range(2):
                    ntok = stream.read(1)
                    if ntok.isdigit():
                        tok += ntok
                    else:
                        stream.seek(-1, os.SEEK_CUR)
                        break
                tok = bytes((int(tok, base=8) & 0xff,))
            elif tok in b"\n\r":
                # escaped line break: consume the EOL, contribute nothing
                tok = stream.read(1)
                if tok not in b"\n\r":
                    stream.seek(-1, os.SEEK_CUR)
                tok = b''
            else:
                raise PdfReadError("Unexpected escaped string: " + repr(tok))
        txt.write(tok)
    return txt.getvalue()


class ByteStringObject(bytes, PdfObject):
    """PDF bytestring class."""

    original_bytes = property(lambda self: bytes(self))
    """
    For compatibility with :attr:`.TextStringObject.original_bytes`
    """

    def write_to_stream(self, stream, handler=None, container_ref=None):
        bytearr: bytes = self
        if handler is not None and container_ref is not None:
            cf = handler.get_string_filter()
            local_key = cf.derive_object_key(
                container_ref.idnum, container_ref.generation
            )
            bytearr = cf.encrypt(local_key, bytearr)
        stream.write(b"<")
        stream.write(binascii.hexlify(bytearr))
        stream.write(b">")


class TextStringEncoding(enum.Enum):
    """
    Encodings for PDF text strings.
    """

    PDF_DOC = None
    """
    PDFDocEncoding (one-byte character codes; PDF-specific).
    """

    UTF16BE = (codecs.BOM_UTF16_BE, 'utf-16be')
    """
    UTF-16BE encoding.
    """

    UTF8 = (codecs.BOM_UTF8, 'utf-8')
    """
    UTF-8 encoding (PDF 2.0)
    """

    UTF16LE = (codecs.BOM_UTF16_LE, 'utf-16le')
    """
    UTF-16LE encoding. Not valid PDF, but produced by some tools.
    """

    def encode(self, string: str) -> bytes:
        if self == TextStringEncoding.PDF_DOC:
            return encode_pdfdocencoding(string)
        bom, enc = self.value
        return bom + string.encode(enc)

    def decode(self, string: Union[bytes, bytearray]) -> str:
        if self == TextStringEncoding.PDF_DOC:
            return decode_pdfdocencoding(string)
        elif self == TextStringEncoding.UTF8:
            return string.decode('utf-8-sig')
        return string.decode('utf-16')


def _guess_enc_by_bom(encoded: Union[bytes, bytearray]) -> TextStringEncoding:
    if encoded.startswith(codecs.BOM_UTF16_BE):
        return TextStringEncoding.UTF16BE
    elif encoded.startswith(codecs.BOM_UTF16_LE):
        return TextStringEncoding.UTF16LE
    elif encoded.startswith(codecs.BOM_UTF8):
        return TextStringEncoding.UTF8
    return TextStringEncoding.PDF_DOC


class TextStringObject(str, PdfObject):
    """
    PDF text string object.
    """

    autodetected_encoding: Optional[TextStringEncoding] = None
    """
    Autodetected encoding when parsing the file.
    """

    force_output_encoding: Optional[TextStringEncoding] = None
    """
    Output encoding to use when serialising the string.
    The default is to try PDFDocEncoding first, and fall back to UTF-16BE.
    """

    @property
    def original_bytes(self):
        """
        Retrieve the original bytes of the string as specified in the
        source file.
        """
        if self.autodetected_encoding:
            return self.autodetected_encoding.encode(self)
        raise PdfError("No information about original bytes")

    def _encode(self) -> bytes:
        if self.force_output_encoding is not None:
            return self.force_output_encoding.encode(self)
        try:
            return encode_pdfdocencoding(self)
        except UnicodeEncodeError:
            return codecs.BOM_UTF16_BE + self.encode("utf-16be")

    def write_to_stream(self, stream, handler=None, container_ref=None):
        encoded = self._encode()
        if handler is not None and container_ref is not None:
            cf = handler.get_string_filter()
            local_key = cf.derive_object_key(
                container_ref.idnum, container_ref.generation
            )
            ByteStringObject(cf.encrypt(local_key, encoded)) \
                .write_to_stream(stream)
            return
        stream.write(b"(")
        for c in encoded:
            c_ = bytes((c,))
            if not c_.isalnum() and c != 0x20:
                stream.write(b"\\%03o" % c)
            else:
                stream.write(c_)
        stream.write(b")")


def _as_hex_digit(ascii_char):
    try:
        return int(chr(ascii_char), 16)
    except ValueError:
        raise PdfReadError(
            "Numeric escape in PDF name must use hexadecimal digits"
        )


def _decode_name(name_bytes: bytes) -> 'NameObject':
    """
    Decode the bytes that make up a name object (minus the initial /),
    expanding all #XX escapes along the way.
    """
    result = bytearray(b'/')
    name_iter = iter(name_bytes)
    for cur_byte in name_iter:
        if cur_byte == 0x23:
            try:
                digit1 = next(name_iter)
                digit2 = next(name_iter)
            except StopIteration:
                raise PdfReadError(
                    f"Unterminated escape in PDF name /{repr(name_bytes)}"
                )
            cur_byte = _as_hex_digit(digit1) * 16 + _as_hex_digit(digit2)
        elif not (0x21 <= cur_byte <= 0x7E) \
                or not is_regular_character(cur_byte):
            raise PdfReadError(
                f"Byte (0x{cur_byte:02x}) must be escaped in a PDF name"
            )
        result.append(cur_byte)
    # names are byte sequences; assume UTF-8 and fall back to Latin-1
    try:
        return NameObject(result.decode('utf8'))
    except UnicodeDecodeError:
        return NameObject(result.decode('latin1'))


class NameObject(str, PdfObject):
    """
    PDF name object. These are valid Python strings, but names and strings
    are treated differently in the PDF specification, so proper care is
    required.
    """

    def write_to_stream(self, stream, handler=None, container_ref=None):
        name_bytes = self.encode('utf8')
        if not name_bytes.startswith(b'/'):
            raise PdfWriteError(
                f"Could not serialise name object {repr(self)}, "
                f"must start with /"
            )
        stream.write(b'/')
        for cur_byte in name_bytes[1:]:
            if cur_byte == 0x23 or not (0x21 <= cur_byte <= 0x7E) \
                    or not is_regular_character(cur_byte):
                stream.write(b'#%02X' % cur_byte)
            else:
                stream.write(bytes((cur_byte,)))

    @staticmethod
    def read_from_stream(stream):
        name_start = stream.read(1)
        if name_start != b'/':
            raise PdfReadError("Name object should start with /")
        return _decode_name(read_until_delimiter(stream))


def _normalise_key(key):
    if not isinstance(key, NameObject):
        if isinstance(key, str):
            return NameObject(key)
        raise ValueError("key must be PdfName")
    return key


class DictionaryObject(dict, PdfObject):
    """
    A PDF dictionary object.

    Keys in a PDF dictionary are PDF names, and values are PDF objects.

    When accessing a key using the standard :meth:`__getitem__` syntax,
    :class:`.IndirectObject` references will be resolved.
    """

    def __init__(self, dict_data=None):
        if dict_data is not None:
            super().__init__(
                {_normalise_key(k): v for k, v in dict_data.items()}
            )
        else:
            super().__init__()

    def raw_get(
        self, key: Union[NameObject, str],
        decrypt: EncryptedObjAccess = EncryptedObjAccess.TRANSPARENT,
    ):
        """
        Get a value from a dictionary without dereferencing.

        :param key:
            Key to look up in the dictionary.
        :param decrypt:
            What to do when retrieving encrypted objects; see
            :class:`.EncryptedObjAccess`.
        :return:
            A :class:`.PdfObject`.
        """
        val = dict.__getitem__(self, key)
        return _deproxy_decrypt(val, decrypt)

    def __setitem__(self, key, value):
        key = _normalise_key(key)
        if not isinstance(value, PdfObject):
            raise ValueError("value must be PdfObject")
        return dict.__setitem__(self, key, value)

    def setdefault(self, key, value=None):
        key = _normalise_key(key)
        if not isinstance(value, PdfObject):
            raise ValueError("value must be PdfObject")
        return dict.setdefault(self, key, value)

    def __getitem__(self, key):
        return dict.__getitem__(self, key).get_object()

    def get(self, key, default=None):
        try:
            return self[key]
        except KeyError:
            return default

    def write_to_stream(self, stream, handler=None, container_ref=None):
        stream.write(b"<<\n")
        for key in list(self.keys()):
            key.write_to_stream(stream)
            stream.write(b" ")
            dict.__getitem__(self, key).write_to_stream(
                stream, handler, container_ref
            )
            stream.write(b"\n")
        stream.write(b">>")

    @staticmethod
    def read_from_stream(stream, container_ref: 'Dereferenceable'):
        tmp = stream.read(2)
        if tmp != b"<<":
            raise PdfReadError(
                "Dictionary read error at byte %s: "
                "stream must begin with '<<'" % hex(stream.tell())
            )
        data = {}
        handler = container_ref.get_pdf_handler()
        while True:
            tok = read_non_whitespace(stream)
            if tok == b">":
                stream.read(1)
                break
            stream.seek(-1, os.SEEK_CUR)
            key = read_object(stream, container_ref)
            if not isinstance(key, NameObject):
                raise PdfReadError(
                    "Dictionary key at byte %s is not a name"
                    % hex(stream.tell())
                )
            read_non_whitespace(stream, seek_back=True)
            value = read_object(stream, container_ref)
            if key not in data:
                data[key] = value
            else:
                err = (
                    "Multiple definitions in dictionary at byte "
                    "%s for key %s" % (hex(stream.tell()), key)
                )
                if getattr(handler, 'strict', False):
                    raise PdfStrictReadError(err)
                logger.warning(err)

        pos = stream.tell()
        s = read_non_whitespace(stream, allow_eof=True)
        if not (s == b's' and stream.read(5) == b'tream'):
            stream.seek(pos)
            return DictionaryObject(data)

        # this is a stream object, not a dictionary
        skip_over_whitespace(stream, stop_after_eol=True)
        try:
            length = data["/Length"]
        except KeyError:
            raise PdfReadError("Stream object without /Length entry")
        if isinstance(length, IndirectObject):
            t = stream.tell()
            length = handler.get_object(length.reference, never_decrypt=True)
            stream.seek(t)
        stream_data = stream.read(length)
        e = read_non_whitespace(stream)
        ndstream = stream.read(8)
        if (e + ndstream) != b"endstream":
            # some producers overstate /Length by one byte
            orig_endstream_pos = stream.tell()
            stream.seek(-10, os.SEEK_CUR)
            end = stream.read(9)
            if end == b"endstream":
                stream_data = stream_data[:-1]
            else:
                raise PdfReadError(
                    "Unable to find 'endstream' marker after "
                    "stream at byte %s." % hex(orig_endstream_pos)
                )
        return StreamObject(data, encoded_data=stream_data)


class StreamObject(DictionaryObject):
    """
    PDF stream object.

    A PDF stream is a dictionary object with a binary blob of data attached.
    A stream object can be initialised with encoded or decoded data; the
    other representation is computed on demand.

    .. note::
        The ``/Length`` entry is managed by this class and overwritten
        as necessary when writing.

    :param dict_data:
        The dictionary data for this stream object.
    :param stream_data:
        The (unencoded) stream data.
    :param encoded_data:
        The encoded stream data.
    """

    def __init__(
        self,
        dict_data: Optional[dict] = None,
        stream_data: Optional[bytes] = None,
        encoded_data: Optional[bytes] = None,
    ):
        super().__init__(dict_data)
        self._data = stream_data
        self._encoded_data = encoded_data

    def _filters(self) -> Iterator[Tuple[str, Optional[dict]]]:
        try:
            filter_arr = self['/Filter']
        except KeyError:
            return

        if isinstance(filter_arr, NameObject):
            filter_arr = (filter_arr,)
        elif not isinstance(filter_arr, ArrayObject):
            raise PdfStreamError(
                '/Filter should be a name object or an array of names.'
            )

        decode_params = self.get('/DecodeParms')
        if decode_params is None:
            decode_params = [None] * len(filter_arr)
        elif isinstance(decode_params, DictionaryObject):
            decode_params = [decode_params]
        else:
            decode_params = [p.get_object() for p in decode_params]
            decode_params += [None] * (len(filter_arr) - len(decode_params))

        for name, params in zip(filter_arr, decode_params):
            if isinstance(params, NullObject):
                params = None
            yield name, params

    def _stream_decoders(self):
        from . import filters

        for filter_type, params in self._filters():
            yield filters.get_generic_decoder(filter_type), params or {}

    @property
    def data(self) -> bytes:
        """
        Return the decoded stream data as bytes.

        :raises .misc.PdfStreamError:
            If the stream could not be decoded.
        """
        if self._data is None:
            data = self._encoded_data
            if data is None:
                raise PdfStreamError("No data available.")
            for decoder, decode_params in self._stream_decoders():
                data = decoder.decode(data, decode_params)
            self._data = bytes(data)
        return self._data

    @property
    def encoded_data(self) -> bytes:
        """
        Return the encoded stream data as bytes.
        """
        if self._encoded_data is None:
            data = self._data
            if data is None:
                raise PdfStreamError("No data available.")
            for decoder, decode_params in reversed(
                    tuple(self._stream_decoders())):
                data = decoder.encode(data, decode_params)
            self._encoded_data = data
        return self._encoded_data

    def apply_filter(self, filter_name, params=None):
        """
        Apply a new filter to this stream, prepending it to any existing
        filters (i.e. it is applied last when encoding).

        :param filter_name:
            Name of the filter.
        :param params:
            Parameters to the filter, written to ``/DecodeParms``.
        """
        data = self._data
        if data is None and self._encoded_data is not None:
            data = self.data
        cur_filters = list(self._filters())
        filter_name = pdf_name(filter_name)
        if not cur_filters:
            self['/Filter'] = filter_name
            if params:
                self['/DecodeParms'] = DictionaryObject(params)
        else:
            filter_names, param_sets = zip(*cur_filters)
            self['/Filter'] = ArrayObject((filter_name,) + filter_names)
            if params or any(param_sets):
                self['/DecodeParms'] = ArrayObject(
                    DictionaryObject(p) if p else NullObject()
                    for p in (params,) + param_sets
                )
        self._encoded_data = None
        self._data = data

    def compress(self):
        """
        Add a ``/FlateDecode`` filter, unless one is already present.
        Compression is applied when the stream is written.
        """
        if any(name == '/FlateDecode' for name, _ in self._filters()):
            return
        self.apply_filter('/FlateDecode')

    def _implicit_decrypt(self, handler, ref: Reference, decrypted_entries):
        cf = handler.get_stream_filter()
        local_key = cf.derive_object_key(ref.idnum, ref.generation)
        return StreamObject(
            decrypted_entries,
            encoded_data=cf.decrypt(local_key, self.encoded_data)
        )

    def write_to_stream(self, stream, handler=None, container_ref=None):
        data = self.encoded_data
        if handler is not None and container_ref is not None:
            cf = handler.get_stream_filter()
            local_key = cf.derive_object_key(
                container_ref.idnum, container_ref.generation
            )
            data = cf.encrypt(local_key, data)
        dict.__setitem__(self, NameObject("/Length"), NumberObject(len(data)))
        super().write_to_stream(stream, handler, container_ref)
        dict.__delitem__(self, "/Length")
        stream.write(b"\nstream\n")
        stream.write(data)
        stream.write(b"\nendstream")


def _build_pdfdoc_table():
    # Latin-1 everywhere, except for the ranges redefined below
    table = [chr(i) for i in range(256)]
    for i in range(0x18):
        table[i] = '\u0000'
    table[0x18:0x20] = '˘ˇˆ˙˝˛˚˜'
    table[0x7f] = '\u0000'
    table[0x80:0xa1] = (
        '•†‡…—–ƒ⁄'
        '‹›−‰„“”‘'
        '’‚™ﬁﬂŁŒŠ'
        'ŸŽıłœšž\u0000'
        '€'
    )
    table[0xad] = '\u0000'
    return tuple(table)


_pdfDocEncoding = _build_pdfdoc_table()
assert len(_pdfDocEncoding) == 256

_pdfDocEncoding_rev = {
    char: ix for ix, char in enumerate(_pdfDocEncoding) if char != '\u0000'
}


def encode_pdfdocencoding(unicode_string):
    def _build():
        for c in unicode_string:
            try:
                yield _pdfDocEncoding_rev[c]
            except KeyError:
                raise UnicodeEncodeError(
                    "pdfdocencoding", c, -1, -1,
                    "does not exist in translation table",
                )

    return bytes(_build())


def decode_pdfdocencoding(byte_array):
    def _build():
        for b in byte_array:
            c = _pdfDocEncoding[b]
            if c == '\u0000':
                raise UnicodeDecodeError(
                    "pdfdocencoding", bytes((b,)), -1, -1,
                    "does not exist in translation table",
                )
            yield c

    return ''.join(_build())


pdf_name = NameObject
PROXYABLE = (TextStringObject, ByteStringObject, DictionaryObject, ArrayObject)


def proxy_encrypted_obj(encrypted_obj, handler):
    if isinstance(encrypted_obj, PROXYABLE):
        return DecryptedObjectProxy(encrypted_obj, handler)
    return encrypted_obj


class DecryptedObjectProxy(PdfObject):
    """
    Internal proxy class that allows transparent on-demand decryption
    of objects.

    Decryption is deferred until the value is requested, since some
    descendants of an encrypted object (e.g. signature contents) are exempt
    from encryption and must be accessible in raw form.

    :param raw_object:
        A raw object, as parsed from a PDF file.
    :param handler:
        The security handler governing this object.
    """

    raw_object: PdfObject
    """
    The underlying raw object, in its encrypted state.
    """

    def __init__(self, raw_object: PdfObject, handler):
        self.raw_object = raw_object
        self._decrypted: Optional[PdfObject] = None
        self.handler = handler

    @property
    def decrypted(self) -> PdfObject:
        if self._decrypted is not None:
            return self._decrypted

        decrypted: PdfObject
        obj = self.raw_object
        handler = self.handler
        container_ref = obj.container_ref
        if not isinstance(container_ref, Reference):
            raise PdfReadError(
                "Proxyable objects must have a container ref pointing to a "
                f"numbered object, not '{container_ref}'."
            )  # pragma: nocover
        if isinstance(obj, (ByteStringObject, TextStringObject)):
            cf = handler.get_string_filter()
            local_key = cf.derive_object_key(
                container_ref.idnum, container_ref.generation
            )
            decrypted = pdf_string(cf.decrypt(local_key, obj.original_bytes))
        elif isinstance(obj, DictionaryObject):
            decrypted_entries = {
                dictkey: proxy_encrypted_obj(value, handler)
                for dictkey, value in obj.items()
            }
            if isinstance(obj, StreamObject):
                decrypted = obj._implicit_decrypt(
                    handler, container_ref, decrypted_entries
                )
            else:
                decrypted = DictionaryObject(decrypted_entries)
        elif isinstance(obj, ArrayObject):
            decrypted = ArrayObject(
                proxy_encrypted_obj(v, handler) for v in obj.raw_items()
            )
        else:  # pragma: nocover
            raise TypeError(f'Object of type {type(obj)} is not proxyable.')
        decrypted.container_ref = container_ref
        self._decrypted = decrypted
        return decrypted

    def write_to_stream(self, stream, handler=None, container_ref=None):
        self.decrypted.write_to_stream(stream, handler, container_ref)

    def get_object(self):
        return self.decrypted.get_object()

    @property
    def container_ref(self):
        return self.raw_object.container_ref

    @container_ref.setter
    def container_ref(self, value):
        self.raw_object.container_ref = value


ASN_DT_FORMAT = "D:%Y%m%d%H%M%S"


def pdf_date(dt: datetime) -> TextStringObject:
    """
    Convert a datetime object into a PDF date string.

    :param dt:
        The datetime object to convert, naive or timezone-aware.
    :return:
        A :class:`TextStringObject` representing the datetime passed in.
    """

    base_dt = dt.strftime(ASN_DT_FORMAT)
    utc_offset_string = ''
    utc_offset = dt.utcoffset()
    if utc_offset is not None:
        tz_seconds = utc_offset.total_seconds()
        if not tz_seconds:
            utc_offset_string = 'Z'
        else:
            sign = '+'
            if tz_seconds < 0:
                sign = '-'
                tz_seconds = abs(tz_seconds)
            hrs, tz_seconds = divmod(tz_seconds, 3600)
            mins = tz_seconds // 60
            # Adobe Reader expects a trailing apostrophe after the minutes
            utc_offset_string = sign + ("%02d'%02d'" % (hrs, mins))

    return TextStringObject(base_dt + utc_offset_string)


MIN_DATE_REGEX = re.compile(r'^D:(\d{4})')
TWO_DIGIT_START = re.compile(r'^(\d\d)')
UTC_OFFSET = re.compile(r"(\d\d)(?:'(\d\d))?'?")


def parse_pdf_date(date_str: str) -> datetime:
    """
    Parse a PDF date string (``D:YYYYMMDDHHmmSSOHH'mm'``).

    :raise PdfReadError: if the string is not a valid PDF date
    """
    m = MIN_DATE_REGEX.match(date_str)
    if not m:
        raise PdfReadError(f"{date_str} does not appear to be a date string.")
    year = int(m.group(1))

    date_remaining = date_str[6:]
    lower_order = [1, 1, 0, 0, 0]
    for ix in range(5):
        m = TWO_DIGIT_START.match(date_remaining)
        if not m:
            break
        lower_order[ix] = int(m.group(1))
        date_remaining = date_remaining[2:]
    month, day, hour, minute, second = lower_order

    tz_info = None
    if date_remaining:
        sgn = date_remaining[0]
        if sgn == 'Z' and len(date_remaining) == 1:
            tz_offset = timedelta(0)
        elif sgn in ('+', '-'):
            tz_spec = date_remaining[1:]
            tz_match = UTC_OFFSET.fullmatch(tz_spec)
            if not tz_match:
                raise PdfReadError(
                    f"Improper timezone specification in {date_str}: {tz_spec}"
                )
            tz_offset = timedelta(
                hours=int(tz_match.group(1)),
                minutes=int(tz_match.group(2) or 0)
            )
            if sgn == '-':
                tz_offset = -tz_offset
        else:
            raise PdfReadError(f"Improper trailing characters in {date_str}.")
        tz_info = timezone(tz_offset)

    try:
        return datetime(
            year=year, month=month, day=day, hour=hour, minute=minute,
            second=second, tzinfo=tz_info,
        )
    except ValueError as e:
        raise PdfReadError("Improper date value", e)
