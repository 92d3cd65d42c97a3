"""
Utility for writing incremental updates to existing PDF files.
"""

import logging
import os
from typing import Optional, Union

from . import generic, misc
from .crypt import AuthResult
from .generic import pdf_name
from .reader import PdfFileReader
from .writer import BasePdfFileWriter

__all__ = ['IncrementalPdfFileWriter']

logger = logging.getLogger(__name__)


class IncrementalPdfFileWriter(BasePdfFileWriter):
    """Class to incrementally update existing files.

    This :class:`~.writer.BasePdfFileWriter` subclass encapsulates a
    :class:`~.reader.PdfFileReader` instance in addition to exposing an
    interface to add and modify PDF objects.

    Incremental updates to a PDF file append modifications to the end of the
    file. This is critical when the original file contents are not to be
    modified directly (e.g. when it contains digital signatures).

    :param input_stream:
        Input stream to read current revision from.
    :param prev:
        Explicitly pass in a PDF reader. This parameter is internal API.
    :param strict:
        Ingest the source file in strict mode. The default is ``True``.
    :param password:
        Password of an encrypted input document. If the input is encrypted
        and no password is given, the empty user password is tried.
    :raise misc.PasswordError:
        If the input is encrypted and the password does not unlock it.
    """

    IO_CHUNK_SIZE = misc.DEFAULT_CHUNK_SIZE

    def __init__(self, input_stream, prev: Optional[PdfFileReader] = None,
                 strict=True, password=None):
        self.input_stream = input_stream
        if prev is None:
            prev = PdfFileReader(input_stream, strict=strict)
        self.prev = prev
        self.trailer = trailer = prev.trailer
        root_ref = trailer.raw_get(
            '/Root', decrypt=generic.EncryptedObjAccess.RAW
        )
        try:
            info_ref = trailer.raw_get(
                '/Info', decrypt=generic.EncryptedObjAccess.RAW
            )
        except KeyError:
            # /Info is not a required entry
            info_ref = None
        super().__init__(
            root_ref, info_ref, self.__class__._handle_id(prev),
            obj_id_start=trailer['/Size'],
            stream_xrefs=prev.has_xref_stream,
        )
        self._resolves_objs_from = (self, prev)
        self.output_version = max(prev.input_version, self.output_version)

        self.security_handler = prev.security_handler
        if self.security_handler is not None:
            self._encrypt = prev.trailer.raw_get(
                "/Encrypt", decrypt=generic.EncryptedObjAccess.RAW
            )
            if not self.security_handler.is_authenticated():
                self.encrypt(password)

    @classmethod
    def _handle_id(cls, prev):
        # The first half of the ID feeds into the key derivation of the
        # legacy security handlers, so it must be preserved; the second half
        # identifies this revision.
        id2 = generic.ByteStringObject(os.urandom(16))
        try:
            id_arr = prev.trailer.raw_get(
                "/ID", decrypt=generic.EncryptedObjAccess.RAW
            ).get_object()
            id1 = generic.ByteStringObject(id_arr[0].original_bytes)
        except KeyError:
            id1 = generic.ByteStringObject(os.urandom(16))
        return generic.ArrayObject([id1, id2])

    def get_object(self, ido, **kwargs):
        try:
            return super().get_object(ido)
        except KeyError:
            return self.prev.get_object(ido, **kwargs)

    def mark_update(self, obj_ref: Union[generic.Reference,
                                         generic.IndirectObject]):
        ix = (obj_ref.generation, obj_ref.idnum)
        self.objects[ix] = obj_ref.get_object()

    def update_container(self, obj: generic.PdfObject):
        container_ref = obj.container_ref
        if container_ref is None:
            # the object was added by this writer, and will be written anyway
            return
        if isinstance(container_ref, generic.TrailerReference):
            # the trailer is always written
            return
        elif isinstance(container_ref, generic.Reference):
            self.mark_update(container_ref)
            return
        raise TypeError(f"Unexpected container reference {container_ref!r}")

    def update_root(self):
        self.mark_update(self._root)

    def _write_header(self, stream):
        # copy the original data to the output
        input_pos = self.input_stream.tell()
        self.input_stream.seek(0)
        misc.chunked_write(
            bytearray(self.IO_CHUNK_SIZE), self.input_stream, stream
        )
        self.input_stream.seek(input_pos)

    def _populate_trailer(self, trailer):
        trailer.update(self.trailer.flatten())
        super()._populate_trailer(trailer)
        trailer[pdf_name('/Prev')] = generic.NumberObject(
            self.prev.last_startxref
        )
        if self.prev.encrypted \
                and not self.security_handler.is_authenticated():
            # removing encryption in an incremental update is impossible
            raise misc.PdfWriteError(
                'Cannot update this document without encryption credentials '
                'from the original.'
            )

    def write(self, stream):
        if not self.objects and not self.object_streams:
            # just write the original and then bail
            self._write_header(stream)
            return
        super().write(stream)

    def encrypt(self, user_pwd=None) -> AuthResult:
        """Method to handle updates to encrypted files.

        The standard mandates that updates to encrypted files be effected using
        the same encryption settings. In particular, incremental updates
        cannot remove file encryption.

        :param user_pwd:
            The original file's user or owner password. If ``None``, the
            empty password is tried.
        :raises misc.PasswordError:
            Raised when the password does not unlock the file.
        """
        return self.prev.unlock(user_pwd)
