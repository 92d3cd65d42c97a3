"""
Utilities for writing PDF files.

:class:`BasePdfFileWriter` implements object bookkeeping and serialisation,
which is shared between :class:`PdfFileWriter` (fresh documents) and
:class:`~.incremental_writer.IncrementalPdfFileWriter` (updates to existing
documents).
"""

import logging
import os
from io import BytesIO
from typing import Dict, Iterable, List, Optional, Tuple, Union

from . import generic
from .crypt import StandardSecurityHandler
from .generic import pdf_name
from .misc import PdfError, PdfWriteError
from .rw_common import PdfHandler
from .xref import PositionDict, XRefStream, write_xref_table

__all__ = [
    'BasePdfFileWriter', 'ObjectStream', 'PageObject', 'PdfFileWriter',
]

logger = logging.getLogger(__name__)


OBJSTREAM_FORBIDDEN = (generic.StreamObject, generic.IndirectObject)


class ObjectStream:
    """
    Utility class to collect objects into a PDF object stream.

    .. warning::
        Object streams can only be used in files with a cross-reference
        stream, as opposed to a classical XRef table.

    .. danger::
        Use :meth:`.BasePdfFileWriter.prepare_object_stream` to create
        instances of object streams. The `__init__` function is internal API.
    """

    def __init__(self, compress=True):
        self._obj_refs: Dict[int, generic.PdfObject] = {}
        self.compress = compress
        self.ref: Optional[generic.IndirectObject] = None

    def __bool__(self):
        return bool(self._obj_refs)

    def __iter__(self):
        return iter(self._obj_refs.items())

    def add_object(self, idnum: int, obj: generic.PdfObject):
        """
        Add an object to an object stream.

        :param idnum:
            The object's ID number. The generation is always zero.
        :param obj:
            The object to embed into the object stream.
        :raise TypeError:
            Raised if ``obj`` is a stream or a bare reference.
        """

        if isinstance(obj, OBJSTREAM_FORBIDDEN):
            raise TypeError(
                'Stream objects and bare references cannot be embedded into '
                'object streams.'
            )
        self._obj_refs[idnum] = obj

    def as_pdf_object(self) -> generic.StreamObject:
        """
        Render the object stream to a PDF stream object.
        """
        stream_header = BytesIO()
        main_body = BytesIO()
        for idnum, obj in self._obj_refs.items():
            offset = main_body.tell()
            obj.write_to_stream(main_body, None)
            main_body.write(b'\n')
            stream_header.write(b'%d %d ' % (idnum, offset))

        sh_bytes = stream_header.getvalue()
        stream_object = generic.StreamObject(
            {
                pdf_name('/Type'): pdf_name('/ObjStm'),
                pdf_name('/N'): generic.NumberObject(len(self._obj_refs)),
                pdf_name('/First'): generic.NumberObject(len(sh_bytes)),
            },
            stream_data=sh_bytes + main_body.getvalue()
        )
        if self.compress:
            stream_object.compress()
        return stream_object


class BasePdfFileWriter(PdfHandler):
    """Base class for PDF writers."""

    output_version = (1, 7)
    """Output version to be declared in the output file."""

    stream_xrefs: bool
    """
    Boolean controlling whether or not the output file will contain
    its cross-references in stream format, or as a classical XRef table.

    For incremental updates, the writer adapts to the system used in the
    previous iteration of the document.
    """

    def __init__(self, root: Union[generic.IndirectObject,
                                   generic.DictionaryObject],
                 info: Optional[generic.IndirectObject],
                 document_id: generic.ArrayObject, obj_id_start: int = 0,
                 stream_xrefs: bool = True):
        self.objects: Dict[Tuple[int, int], generic.PdfObject] = {}
        self.object_streams: List[ObjectStream] = []
        self.objs_in_streams: Dict[int, generic.PdfObject] = {}
        self._lastobj_id = obj_id_start
        self._resolves_objs_from: Iterable[PdfHandler] = (self,)

        if isinstance(root, generic.IndirectObject):
            self._root = root
        else:
            self._root = self.add_object(root)

        self.security_handler: Optional[StandardSecurityHandler] = None
        self._encrypt: Optional[generic.IndirectObject] = None
        self._document_id = document_id
        self.stream_xrefs = stream_xrefs
        self._info = info

    @property
    def document_id(self) -> Tuple[bytes, bytes]:
        id_arr = self._document_id
        return id_arr[0].original_bytes, id_arr[1].original_bytes

    def mark_update(self, obj_ref: Union[generic.Reference,
                                         generic.IndirectObject]):
        """
        Mark an object reference to be updated.
        This is only relevant for incremental updates, but is included
        as a no-op by default for interoperability reasons.

        :param obj_ref:
            An indirect object instance or a reference.
        """
        pass

    def update_container(self, obj: generic.PdfObject):
        """
        Mark the container of an object (as indicated by the
        :attr:`~.generic.PdfObject.container_ref` attribute on
        :class:`~.generic.PdfObject`) for an update.

        As with :meth:`mark_update`, this only applies to incremental updates,
        but defaults to a no-op.

        :param obj:
            The object whose top-level container needs to be rewritten.
        """
        pass

    @property
    def root_ref(self) -> generic.Reference:
        """
        :return:
            A reference to the document catalog.
        """
        return self._root.reference

    def update_root(self):
        """
        Signal that the document catalog should be written to the output.
        Equivalent to calling :meth:`mark_update` with :attr:`root_ref`.
        """
        pass

    def get_object(self, ido, **kwargs):
        if ido.pdf not in self._resolves_objs_from:
            raise PdfError(
                f'Reference {ido} has no relation to this PDF writer.'
            )
        idnum = ido.idnum
        generation = ido.generation
        try:
            return self.objects[(generation, idnum)]
        except KeyError:
            if generation == 0:
                try:
                    return self.objs_in_streams[idnum]
                except KeyError:
                    pass
            raise KeyError(ido)

    def add_object(self, obj, obj_stream: Optional[ObjectStream] = None) \
            -> generic.IndirectObject:
        """
        Add a new object to this writer.

        :param obj:
            The object to add.
        :param obj_stream:
            An object stream to add the object to.
        :return:
            A :class:`~.generic.IndirectObject` instance referring to
            the object just added.
        """

        idnum = self._lastobj_id + 1
        if obj_stream is None:
            self.objects[(0, idnum)] = obj
        elif obj_stream in self.object_streams:
            obj_stream.add_object(idnum, obj)
            self.objs_in_streams[idnum] = obj
        else:
            raise PdfWriteError(
                f'Stream {repr(obj_stream)} is unknown to this PDF writer.'
            )
        self._lastobj_id = idnum
        return generic.IndirectObject(idnum, 0, self)

    def prepare_object_stream(self, compress=True) -> ObjectStream:
        """Prepare and return a new :class:`.ObjectStream` object.

        :param compress:
            Indicates whether the resulting object stream should be compressed.
        :return:
            An :class:`.ObjectStream` object.
        """
        if not self.stream_xrefs:
            raise PdfWriteError(
                'Object streams require Xref streams to be enabled.'
            )
        stream = ObjectStream(compress=compress)
        self.object_streams.append(stream)
        return stream

    def _write_header(self, stream):
        raise NotImplementedError

    def _assign_security_handler(self, sh: StandardSecurityHandler):
        self.security_handler = sh
        self._encrypt = self.add_object(sh.as_pdf_object())

    def _flush_obj_stream(self, obj_stm: ObjectStream):
        stream_ref = obj_stm.ref
        if obj_stm and not stream_ref:
            # register the object stream itself, to be written later
            obj_stm.ref = stream_ref = self.add_object(obj_stm.as_pdf_object())
        for ix, (idnum, obj) in enumerate(obj_stm):
            yield idnum, (stream_ref.idnum, ix)

    def _write_objects(self, stream, object_position_dict: PositionDict):
        for obj_stream in self.object_streams:
            for idnum, pos_record in self._flush_obj_stream(obj_stream):
                object_position_dict[(0, idnum)] = pos_record

        for ix in sorted(self.objects.keys()):
            generation, idnum = ix
            obj = self.objects[ix]
            object_position_dict[ix] = stream.tell()
            stream.write(('%d %d obj\n' % (idnum, generation)).encode('ascii'))
            handler = None
            # the encryption dictionary itself is never encrypted
            if self.security_handler is not None and not (
                isinstance(self._encrypt, generic.IndirectObject)
                and idnum == self._encrypt.idnum
            ):
                handler = self.security_handler
            container_ref = generic.Reference(idnum, generation, self)
            obj.write_to_stream(stream, handler, container_ref)
            stream.write(b'\nendobj\n')

    def _populate_trailer(self, trailer):
        trailer[pdf_name('/Root')] = self._root
        if self._info is not None:
            trailer[pdf_name('/Info')] = self._info
        if self._encrypt is not None:
            trailer[pdf_name('/Encrypt')] = self._encrypt
        trailer[pdf_name('/ID')] = self._document_id

    def write(self, stream):
        """
        Write the contents of this PDF writer to a stream.

        :param stream:
            A writable output stream.
        """
        self._write(stream)

    def _write(self, stream, skip_header: bool = False):
        object_positions: PositionDict = {}

        trailer: generic.DictionaryObject
        if self.stream_xrefs:
            trailer = XRefStream(object_positions)
            trailer.compress()
        else:
            trailer = generic.DictionaryObject()

        if not skip_header:
            self._write_header(stream)
        self._populate_trailer(trailer)
        self._write_objects(stream, object_positions)

        if self.stream_xrefs:
            xref_location = stream.tell()
            xrefs_id = self._lastobj_id + 1
            # the xref stream lists its own position
            object_positions[(0, xrefs_id)] = xref_location
            trailer[pdf_name('/Size')] = generic.NumberObject(xrefs_id + 1)
            stream.write(('%d %d obj\n' % (xrefs_id, 0)).encode('ascii'))
            trailer.write_to_stream(stream, None)
            stream.write(b'\nendobj\n')
        else:
            xref_location = write_xref_table(stream, object_positions)
            trailer[pdf_name('/Size')] = generic.NumberObject(
                self._lastobj_id + 1
            )
            stream.write(b'trailer\n')
            trailer.write_to_stream(stream, None)

        xref_pointer_string = '\nstartxref\n%s\n' % xref_location
        stream.write(xref_pointer_string.encode('ascii') + b'%%EOF\n')
        logger.debug(
            "Wrote %d objects, xref section at offset %d",
            len(object_positions), xref_location
        )

    def register_annotation(self, page_ref, annot_ref):
        """
        Register an annotation to be added to a page.
        This convenience function takes care of calling :meth:`mark_update`
        where necessary.

        :param page_ref:
            Reference to the page object involved.
        :param annot_ref:
            Reference to the annotation object to be added.
        """
        page_obj = page_ref.get_object()
        try:
            annot_arr_ref = page_obj.raw_get('/Annots')
            if isinstance(annot_arr_ref, generic.IndirectObject):
                annots = annot_arr_ref.get_object()
                self.mark_update(annot_arr_ref)
            else:
                # direct /Annots arrays require the page to be rewritten
                annots = annot_arr_ref
                self.mark_update(page_ref)
        except KeyError:
            annots = generic.ArrayObject()
            self.mark_update(page_ref)
            page_obj[pdf_name('/Annots')] = annots

        annots.append(annot_ref)

    def insert_page(self, new_page: generic.DictionaryObject) \
            -> generic.IndirectObject:
        """
        Append a page object to the root of the page tree.

        :param new_page:
            Page object to insert.
        :return:
            A reference to the newly inserted page.
        """
        if new_page.get('/Type') != '/Page':
            raise PdfWriteError('Not a page object')
        if '/Parent' in new_page:
            raise PdfWriteError('/Parent must not be set.')

        page_tree_root_ref = self.root.raw_get('/Pages')
        pages_obj = page_tree_root_ref.get_object()
        pages_obj[pdf_name('/Count')] = \
            generic.NumberObject(pages_obj['/Count'] + 1)
        new_page[pdf_name('/Parent')] = page_tree_root_ref
        new_page_ref = self.add_object(new_page)
        pages_obj['/Kids'].append(new_page_ref)
        self.update_container(pages_obj)
        return new_page_ref


class PageObject(generic.DictionaryObject):
    """Subclass of :class:`~.generic.DictionaryObject` that handles some of the
    initialisation boilerplate for page objects."""

    def __init__(self, contents: generic.IndirectObject, media_box,
                 resources=None):
        if not isinstance(contents, generic.IndirectObject):
            raise PdfWriteError('Contents must be an indirect reference')
        if len(media_box) != 4:
            raise ValueError('Media box must consist of 4 coordinates.')
        super().__init__({
            pdf_name('/Type'): pdf_name('/Page'),
            pdf_name('/MediaBox'): generic.ArrayObject(
                map(generic.NumberObject, media_box)
            ),
            pdf_name('/Resources'): resources or generic.DictionaryObject(),
            pdf_name('/Contents'): contents,
        })


class PdfFileWriter(BasePdfFileWriter):
    """Class to write new PDF files.

    :param stream_xrefs:
        Write a cross-reference stream instead of a classical table.
    :param init_page_tree:
        Create an empty page tree.
    """

    def __init__(self, stream_xrefs=True, init_page_tree=True):
        root = generic.DictionaryObject({
            pdf_name("/Type"): pdf_name("/Catalog"),
        })

        id1 = generic.ByteStringObject(os.urandom(16))
        id2 = generic.ByteStringObject(os.urandom(16))
        id_obj = generic.ArrayObject([id1, id2])

        super().__init__(root, None, id_obj, stream_xrefs=stream_xrefs)

        if init_page_tree:
            pages = generic.DictionaryObject({
                pdf_name("/Type"): pdf_name("/Pages"),
                pdf_name("/Count"): generic.NumberObject(0),
                pdf_name("/Kids"): generic.ArrayObject(),
            })
            root[pdf_name('/Pages')] = self.add_object(pages)

    def _write_header(self, stream):
        major, minor = self.output_version
        stream.write(f'%PDF-{major}.{minor}\n'.encode('ascii'))
        # flag the file as binary
        stream.write(b'%\xc2\xa5\xc2\xb1\xc3\xab\n')

    def set_info(self, info: generic.DictionaryObject):
        """
        Attach a document information dictionary.

        :param info:
            The info dictionary.
        """
        self._info = self.add_object(info)

    def encrypt(self, owner_pass, user_pass=None, **kwargs):
        """
        Mark this document to be encrypted with PDF 2.0 encryption (AES-256).

        :param owner_pass:
            The desired owner password.
        :param user_pass:
            The desired user password (defaults to the owner password
            if not specified)
        :param kwargs:
            Other keyword arguments to be passed to
            :meth:`.StandardSecurityHandler.build_from_pw`.
        """
        sh = StandardSecurityHandler.build_from_pw(
            owner_pass, user_pass, **kwargs
        )
        self._assign_security_handler(sh)

    def encrypt_legacy(self, owner_pass, user_pass=None, **kwargs):
        """
        Mark this document to be encrypted with one of the legacy revisions
        of the standard security handler. Only intended for testing
        interoperability with older documents.

        :param owner_pass:
            The desired owner password.
        :param user_pass:
            The desired user password.
        :param kwargs:
            Keyword arguments to be passed to
            :meth:`.StandardSecurityHandler.build_from_pw_legacy`.
        """
        sh = StandardSecurityHandler.build_from_pw_legacy(
            id1=self.document_id[0], desired_owner_pass=owner_pass,
            desired_user_pass=user_pass, **kwargs
        )
        self._assign_security_handler(sh)
