"""
Utility to read PDF files.

The reader keeps track of every revision of a document (i.e. every
incremental update), since locating signature placeholders and deciding
which signature to attach validation data to requires knowing in which
revision an object was last written.
"""
import logging
import os
import re
from io import BytesIO
from typing import Dict, Optional, Tuple, Union

from . import generic, misc
from .crypt import (
    AuthResult,
    AuthStatus,
    StandardSecurityHandler,
    build_security_handler,
)
from .misc import PdfHeaderError, PdfReadError, PdfStrictReadError
from .rw_common import PdfHandler
from .xref import (
    ObjStreamRef,
    XRefBuilder,
    XRefCache,
    read_object_header,
)

logger = logging.getLogger(__name__)


__all__ = ['PdfFileReader', 'process_data_at_eof']

header_regex = re.compile(b'%PDF-(\\d).(\\d)')


def read_next_end_line(stream):
    def _build():
        while True:
            # Prevent infinite loops in malformed PDFs
            if stream.tell() == 0:
                raise PdfReadError("Could not read malformed PDF file")
            x = stream.read(1)
            if stream.tell() < 2:
                raise PdfReadError("EOL marker not found")
            stream.seek(-2, os.SEEK_CUR)
            if x == b'\n' or x == b'\r':
                break
            yield ord(x)
        crlf = False
        while x == b'\n' or x == b'\r':
            x = stream.read(1)
            if x == b'\n' or x == b'\r':  # account for CR+LF
                stream.seek(-1, os.SEEK_CUR)
                crlf = True
            if stream.tell() < 2:
                raise PdfReadError("EOL marker not found")
            stream.seek(-2, os.SEEK_CUR)
        # if using CR+LF, go back 2 bytes, else 1
        stream.seek(2 if crlf else 1, os.SEEK_CUR)

    return bytes(reversed(tuple(_build())))


def process_data_at_eof(stream) -> int:
    """
    Auxiliary function that reads backwards from the current position
    in a stream to find the EOF marker and startxref value

    This is internal API.

    :param stream:
        A stream to read from
    :return:
        The value of the startxref pointer, if found.
        Otherwise a PdfReadError is raised.
    """

    # offset of last 1024 bytes of stream
    last_1k = stream.tell() - 1024 + 1
    line = b''
    while line[:5] != b"%%EOF":
        if stream.tell() < last_1k:
            raise PdfReadError("EOF marker not found")
        line = read_next_end_line(stream)

    # find startxref entry - the location of the xref table
    line = read_next_end_line(stream)
    try:
        startxref = int(line)
    except ValueError:
        # 'startxref' may be on the same line as the location
        if not line.startswith(b"startxref"):
            raise PdfReadError("startxref not found")
        try:
            startxref = int(line[9:].strip())
        except ValueError:
            raise PdfReadError("startxref value is not an integer")
        logger.warning("startxref on same line as offset")
    else:
        line = read_next_end_line(stream)
        if line[:9] != b"startxref":
            raise PdfReadError("startxref not found")

    return startxref


class PdfFileReader(PdfHandler):
    """Class implementing functionality to read a PDF file and cache
    certain data about it.

    :param stream:
        A binary file-like object supporting ``read`` and ``seek``.
    :param strict:
        Determines whether correctable problems (e.g. slightly wrong xref
        offsets) are fatal. Defaults to ``True``.
    """

    last_startxref = None
    has_xref_stream = False
    xrefs: XRefCache

    def __init__(self, stream, strict: bool = True):
        self.security_handler: Optional[StandardSecurityHandler] = None
        self.strict = strict
        self.resolved_objects: Dict[Tuple[int, int], generic.PdfObject] = {}
        self._header_version = None
        self.stream = stream
        self.xrefs, self.trailer = self.read()
        encrypt_dict = self._get_encryption_params()
        if encrypt_dict is not None:
            self.security_handler = build_security_handler(encrypt_dict)

    @property
    def input_version(self) -> Tuple[int, int]:
        return self._header_version

    def _get_object_from_stream(self, idnum, stmnum, idx):
        # read the entire object stream into memory
        stream_ref = generic.Reference(stmnum, 0, self)
        stream = stream_ref.get_object()
        if not isinstance(stream, generic.StreamObject) \
                or stream.get('/Type') != '/ObjStm':
            raise PdfReadError(f"Object {stmnum} is not an object stream")
        # /N is the number of indirect objects in the stream
        if not (0 <= idx < stream['/N']):
            if self.strict:
                raise PdfStrictReadError("Object stream does not contain index")
            else:
                return generic.NullObject()
        stream_data = BytesIO(stream.data)
        first_object = stream['/First']
        for i in range(stream['/N']):
            try:
                misc.read_non_whitespace(stream_data, seek_back=True)
                objnum = generic.NumberObject.read_from_stream(stream_data)
                misc.read_non_whitespace(stream_data, seek_back=True)
                offset = generic.NumberObject.read_from_stream(stream_data)
                misc.read_non_whitespace(stream_data, seek_back=True)
            except ValueError:
                if self.strict:
                    raise PdfStrictReadError(
                        "Object stream header possibly corrupted"
                    )
                else:
                    return generic.NullObject()
            if objnum != idnum:
                continue
            if self.strict and idx != i:
                raise PdfStrictReadError("Object is in wrong index.")
            stream_data.seek(first_object + offset)
            try:
                obj = generic.read_object(
                    stream_data, generic.Reference(idnum, 0, self),
                )
            except PdfReadError as e:
                logger.warning(
                    f"Invalid stream (index {i}) within object {idnum} 0: {e}"
                )
                if self.strict:
                    raise PdfStrictReadError(
                        "Can't read object stream: %s" % e
                    )
                obj = generic.NullObject()
            if isinstance(obj, (generic.StreamObject, generic.IndirectObject)):
                if self.strict:
                    raise PdfStrictReadError(
                        "Encountered forbidden object type in object stream"
                    )
            return obj

        if self.strict:
            raise PdfStrictReadError(
                "Object not found in stream, "
                "this is a fatal error in strict mode"
            )
        else:
            return generic.NullObject()

    def _get_encryption_params(self) -> Optional[generic.DictionaryObject]:
        try:
            encrypt_ref = self.trailer.raw_get(
                '/Encrypt', decrypt=generic.EncryptedObjAccess.RAW
            )
        except KeyError:
            return None
        if isinstance(encrypt_ref, generic.IndirectObject):
            return self.get_object(encrypt_ref.reference, never_decrypt=True)
        else:
            return encrypt_ref

    @property
    def root_ref(self) -> generic.Reference:
        root = self.trailer.raw_get(
            '/Root', decrypt=generic.EncryptedObjAccess.RAW
        )
        if not isinstance(root, generic.IndirectObject):
            raise PdfReadError("/Root must be an indirect reference")
        return root.reference

    @property
    def document_id(self) -> Tuple[bytes, bytes]:
        id_arr = self.trailer.raw_get(
            '/ID', decrypt=generic.EncryptedObjAccess.RAW
        ).get_object()
        return id_arr[0].original_bytes, id_arr[1].original_bytes

    @property
    def total_revisions(self) -> int:
        """
        :return:
            The total number of revisions made to this file.
        """
        return self.xrefs.total_revisions

    def get_object(self, ref, revision=None, never_decrypt=False,
                   transparent_decrypt=True):
        """
        Read an object from the input stream.

        :param ref:
            :class:`~.generic.Reference` to the object.
        :param revision:
            Revision number, to return the historical value of a reference.
            This always bypasses the cache.
            The oldest revision is numbered `0`.
        :param never_decrypt:
            Skip decryption step (only needed for parsing ``/Encrypt``)
        :param transparent_decrypt:
            If ``True``, encrypted objects are transparently decrypted.
            If ``False``, this method may return a proxy object that still
            allows access to the raw, encrypted value.
        :return:
            A :class:`~.generic.PdfObject`.
        :raises PdfReadError:
            Raised if there is an issue reading the object from the file.
        """
        # cross-reference streams are never encrypted
        if ref in self.xrefs.xref_stream_refs:
            never_decrypt = True
        if revision is None:
            obj = self.cache_get_indirect_object(ref.generation, ref.idnum)
            if obj is None:
                obj = self._read_object(
                    ref, self.xrefs[ref], never_decrypt=never_decrypt
                )
                # cache before (potential) decrypting
                self.cache_indirect_object(ref.generation, ref.idnum, obj)
        else:
            # never cache historical refs
            marker = self.xrefs.get_historical_ref(ref, revision)
            if marker is None:
                logger.warning(
                    f'Could not find object ({ref.idnum} {ref.generation}) '
                    f'in history at revision {revision}.'
                )
            obj = self._read_object(ref, marker, never_decrypt=never_decrypt)

        if transparent_decrypt and \
                isinstance(obj, generic.DecryptedObjectProxy):
            obj = obj.decrypted

        return obj

    def _read_object(self, ref: generic.Reference,
                     marker: Union[int, ObjStreamRef, None],
                     never_decrypt: bool = False):
        if marker is None:
            if self.strict:
                raise PdfStrictReadError(
                    f"Object addressed by {ref} not found in the current "
                    f"context. This is an error in strict mode."
                )
            else:
                logger.info(
                    f"Object addressed by {ref} not found in the current "
                    f"context, substituting null in non-strict mode."
                )
                obj = generic.NullObject()
                obj.container_ref = ref
                return obj
        elif isinstance(marker, ObjStreamRef):
            retval = self._get_object_from_stream(
                ref.idnum, marker.obj_stream_id, marker.ix_in_stream
            )
        else:
            self.stream.seek(marker)
            idnum, generation = read_object_header(
                self.stream, strict=self.strict
            )
            if idnum != ref.idnum or generation != ref.generation:
                raise PdfReadError(
                    f"Expected object ID ({ref.idnum} {ref.generation}) "
                    f"does not match actual ({idnum} {generation})."
                )
            retval = generic.read_object(
                self.stream, generic.Reference(idnum, generation, self)
            )
            misc.read_non_whitespace(self.stream, seek_back=True)
            obj_data_end = self.stream.tell() - 1
            endobj = self.stream.read(6)
            if endobj != b'endobj':
                if self.strict:
                    raise PdfStrictReadError(
                        f'Expected endobj marker at position {obj_data_end} '
                        f'but found {repr(endobj)}'
                    )

        # the /Encrypt dictionary is never encrypted, and objects inside
        # object streams were decrypted along with their container
        if not never_decrypt and not isinstance(marker, ObjStreamRef) \
                and self.encrypted:
            retval = generic.proxy_encrypted_obj(
                retval, self.security_handler
            )
        return retval

    def cache_get_indirect_object(self, generation, idnum):
        return self.resolved_objects.get((generation, idnum))

    def cache_indirect_object(self, generation, idnum, obj):
        self.resolved_objects[(generation, idnum)] = obj
        return obj

    def read(self):
        # first, read the header & PDF version number
        stream = self.stream
        stream.seek(0)
        input_version = None
        try:
            header = misc.read_until_whitespace(stream, maxchars=20)
            m = header_regex.match(header)
            if m is not None:
                input_version = (int(m.group(1)), int(m.group(2)))
        except (UnicodeDecodeError, ValueError):
            pass
        if input_version is None:
            raise PdfHeaderError('Illegal PDF header')
        self._header_version = input_version

        # start at the end:
        stream.seek(-1, os.SEEK_END)
        if not stream.tell():
            raise PdfReadError('Cannot read an empty file')

        # This needs to be recorded for incremental update purposes
        self.last_startxref = last_startxref = process_data_at_eof(stream)
        xref_builder = XRefBuilder(
            handler=self, stream=stream, strict=self.strict,
            last_startxref=last_startxref,
        )
        xref_sections = xref_builder.read_xrefs()
        xref_cache = XRefCache(self, xref_sections)
        self.has_xref_stream = xref_builder.has_xref_stream
        trailer = xref_builder.trailer
        if '/Root' not in trailer:
            raise PdfReadError("Trailer does not reference a document catalog")
        return xref_cache, trailer

    def decrypt(self, password: Union[str, bytes]) -> AuthResult:
        """
        Authenticate against the document's standard security handler.
        Both the user and the owner password are accepted.

        .. danger::
            The legacy encryption schemes used prior to PDF 2.0 are (very)
            weak, and are only supported for compatibility reasons.

        :param password: The password to match.
        :raise PdfReadError:
            If the document is not encrypted.
        """
        sh = self.security_handler
        if sh is None:
            raise PdfReadError("Document is not encrypted")
        id1 = None
        if '/ID' in self.trailer:
            id1 = self.document_id[0]
        return sh.authenticate(password, id1=id1)

    def unlock(self, password=None) -> Optional[AuthResult]:
        """
        Make sure the document's contents are accessible, authenticating
        against the security handler if necessary.

        :param password:
            The user or owner password. If ``None``, the empty password is
            tried. Ignored if the document is not encrypted.
        :return:
            The authentication result, or ``None`` if the document is not
            encrypted.
        :raise misc.PasswordError:
            If the document is encrypted and the password is incorrect.
        """
        if not self.encrypted:
            if password:
                logger.debug("Ignoring password for unencrypted document")
            return None
        result = self.decrypt(password if password is not None else '')
        if result.status == AuthStatus.FAILED:
            if password is None:
                raise misc.PasswordError(
                    "Document is encrypted, and a password is required"
                )
            raise misc.PasswordError("Incorrect password")
        return result

    @property
    def encrypted(self):
        """
        :return: ``True`` if a document is encrypted, ``False`` otherwise.
        """
        return self.security_handler is not None
