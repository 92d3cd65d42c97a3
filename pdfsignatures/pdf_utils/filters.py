"""
Implementation of stream filters for PDF.

Only the filters that occur in document structure (cross-reference streams,
object streams, DSS payloads) are supported: ``/FlateDecode`` (with PNG and
TIFF predictors), ``/ASCIIHexDecode`` and ``/ASCII85Decode``.
"""
import base64
import binascii
import re
import zlib

from .misc import PdfStreamError

__all__ = [
    'Decoder', 'ASCII85Decode', 'ASCIIHexDecode', 'FlateDecode',
    'get_generic_decoder',
]


class Decoder:
    """
    General filter/decoder interface.
    """

    def decode(self, data: bytes, decode_params: dict) -> bytes:
        """
        Decode a stream.

        :param data:
            Data to decode.
        :param decode_params:
            Decoder parameters, sourced from the ``/DecodeParms`` entry
            associated with this filter.
        :return:
            Decoded data.
        """
        raise NotImplementedError

    def encode(self, data: bytes, decode_params: dict) -> bytes:
        """
        Encode a stream.

        :param data:
            Data to encode.
        :param decode_params:
            Encoder parameters, sourced from the ``/DecodeParms`` entry
            associated with this filter.
        :return:
            Encoded data.
        """
        raise NotImplementedError


def _paeth(left, up, up_left):
    p = left + up - up_left
    pa, pb, pc = abs(p - left), abs(p - up), abs(p - up_left)
    if pa <= pb and pa <= pc:
        return left
    elif pb <= pc:
        return up
    return up_left


def _png_decode(data: bytes, columns: int, bpp: int) -> bytes:
    rowlength = columns + 1
    if len(data) % rowlength:
        raise PdfStreamError(
            "PNG predictor data length is not a multiple of the row length"
        )
    output = bytearray()
    prev_row = bytearray(columns)
    for row_start in range(0, len(data), rowlength):
        filter_byte = data[row_start]
        row = bytearray(data[row_start + 1:row_start + rowlength])
        if filter_byte == 0:
            pass
        elif filter_byte == 1:
            for i in range(bpp, columns):
                row[i] = (row[i] + row[i - bpp]) % 256
        elif filter_byte == 2:
            for i in range(columns):
                row[i] = (row[i] + prev_row[i]) % 256
        elif filter_byte == 3:
            for i in range(columns):
                left = row[i - bpp] if i >= bpp else 0
                row[i] = (row[i] + (left + prev_row[i]) // 2) % 256
        elif filter_byte == 4:
            for i in range(columns):
                left = row[i - bpp] if i >= bpp else 0
                up_left = prev_row[i - bpp] if i >= bpp else 0
                row[i] = (row[i] + _paeth(left, prev_row[i], up_left)) % 256
        else:
            raise PdfStreamError("Unsupported PNG filter %r" % filter_byte)
        output += row
        prev_row = row
    return bytes(output)


def _tiff_decode(data: bytes, columns: int, bpp: int) -> bytes:
    output = bytearray(data)
    for row_start in range(0, len(output), columns):
        for i in range(row_start + bpp, min(row_start + columns, len(output))):
            output[i] = (output[i] + output[i - bpp]) % 256
    return bytes(output)


class FlateDecode(Decoder):
    """
    Implementation of the ``/FlateDecode`` filter.
    """

    def decode(self, data: bytes, decode_params):
        try:
            decoded = zlib.decompress(data)
        except zlib.error as e:
            raise PdfStreamError(f"Failed to inflate stream data: {e}")
        predictor = 1
        if decode_params:
            predictor = decode_params.get("/Predictor", 1)
        if predictor == 1:
            return decoded

        colors = decode_params.get('/Colors', 1)
        bpc = decode_params.get('/BitsPerComponent', 8)
        # bytes per pixel, at least 1
        bpp = max(1, (colors * bpc) // 8)
        row_bytes = (decode_params.get('/Columns', 1) * colors * bpc + 7) // 8
        if 10 <= predictor <= 15:
            return _png_decode(decoded, row_bytes, bpp)
        elif predictor == 2:
            return _tiff_decode(decoded, row_bytes, bpp)
        raise NotImplementedError(
            "Unsupported flatedecode predictor %r" % predictor
        )

    def encode(self, data, decode_params=None):
        # predictors are never applied on output
        return zlib.compress(data)


WS_REGEX = re.compile(rb'\s+')


class ASCIIHexDecode(Decoder):
    """
    Wrapper around :func:`binascii.unhexlify` that implements the
    :class:`.Decoder` interface.
    """

    def encode(self, data: bytes, decode_params=None) -> bytes:
        return binascii.hexlify(data) + b'>'

    def decode(self, data, decode_params=None):
        data = WS_REGEX.sub(b'', data.split(b'>', 1)[0])
        if len(data) % 2:
            data += b'0'
        try:
            return binascii.unhexlify(data)
        except binascii.Error as e:
            raise PdfStreamError(f"Invalid ASCIIHex data: {e}")


class ASCII85Decode(Decoder):
    """
    Base 85 filter, delegating to :func:`base64.a85encode` and
    :func:`base64.a85decode`.
    """

    def encode(self, data: bytes, decode_params=None) -> bytes:
        return base64.a85encode(data) + b'~>'

    def decode(self, data, decode_params=None):
        data = WS_REGEX.sub(b'', data.split(b'~>', 1)[0])
        if data.startswith(b'<~'):
            data = data[2:]
        try:
            return base64.a85decode(data)
        except ValueError as e:
            raise PdfStreamError(f"Invalid ASCII85 data: {e}")


DECODERS = {
    '/FlateDecode': FlateDecode,
    '/Fl': FlateDecode,
    '/ASCIIHexDecode': ASCIIHexDecode,
    '/AHx': ASCIIHexDecode,
    '/ASCII85Decode': ASCII85Decode,
    '/A85': ASCII85Decode,
}


def get_generic_decoder(name: str) -> Decoder:
    """
    Instantiate a specific stream filter decoder type by (PDF) name.

    :param name:
        Name of the decoder to instantiate.
    :raise NotImplementedError:
        If the filter is not supported.
    """

    try:
        cls = DECODERS[name]
    except KeyError:
        raise NotImplementedError(f"Stream filter '{name}' is not supported.")
    return cls()
