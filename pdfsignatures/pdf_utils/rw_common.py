"""Utilities common to reading and writing PDF files."""
from typing import Tuple

from . import generic, misc

__all__ = ['PdfHandler']

from .misc import PdfError


class PdfHandler:
    """Abstract class providing a general interface for quering objects
    in PDF readers and writers alike."""

    def get_object(self, ref: generic.Reference, **kwargs):
        """
        Retrieve the object associated with the provided reference from
        this PDF handler.

        :param ref:
            An instance of :class:`.generic.Reference`.
        :return:
            A PDF object.
        """
        raise NotImplementedError

    @property
    def root_ref(self) -> generic.Reference:
        """
        :return: A reference to the document catalog of this PDF handler.
        """
        raise NotImplementedError

    @property
    def root(self) -> generic.DictionaryObject:
        """
        :return: The document catalog of this PDF handler.
        """
        root = self.root_ref.get_object()
        if not isinstance(root, generic.DictionaryObject):
            raise misc.PdfReadError("Document catalog is not a dictionary")
        return root

    @property
    def document_id(self) -> Tuple[bytes, bytes]:
        raise NotImplementedError

    def find_page_for_modification(self, page_ix):
        """
        Retrieve the page with index ``page_ix`` from the page tree.

        :param page_ix:
            The (zero-indexed) number of the page to retrieve.
            A negative number counts pages from the back of the document,
            with index ``-1`` referring to the last page.
        :return:
            An :class:`~.generic.IndirectObject` pointing to the page.
        :raise PdfError:
            If the page does not exist.
        """
        try:
            page_tree_root_ref = self.root.raw_get('/Pages')
        except KeyError:
            raise misc.PdfReadError("Document catalog has no /Pages entry")
        if not isinstance(page_tree_root_ref, generic.IndirectObject):
            raise misc.PdfReadError("/Pages must be an indirect reference")
        page_tree_root = page_tree_root_ref.get_object()
        if not isinstance(page_tree_root, generic.DictionaryObject):
            raise misc.PdfReadError("Page tree root is not a dictionary")

        page_count = page_tree_root.get('/Count', 0)
        if page_ix < 0:
            page_ix = page_count + page_ix
        if not (0 <= page_ix < page_count):
            raise PdfError('Page index out of range')

        def _recurse(first_page_ix, pages_obj_ref, refs_seen):
            pages_obj = pages_obj_ref.get_object()
            cur_page_ix = first_page_ix
            for kid_ref in pages_obj['/Kids'].raw_items():
                if not isinstance(kid_ref, generic.IndirectObject):
                    raise misc.PdfReadError(
                        "Page tree node children must be indirect objects"
                    )
                if kid_ref.reference in refs_seen:
                    raise misc.PdfReadError("Circular reference in page tree")

                kid = kid_ref.get_object()
                node_type = kid.get('/Type')
                if node_type == '/Pages':
                    desc_count = kid['/Count']
                    if cur_page_ix <= page_ix < cur_page_ix + desc_count:
                        return _recurse(
                            cur_page_ix, kid_ref,
                            refs_seen | {kid_ref.reference}
                        )
                    cur_page_ix += desc_count
                elif node_type == '/Page':
                    if cur_page_ix == page_ix:
                        return kid_ref
                    cur_page_ix += 1
            # the /Count entries lied to us
            raise PdfError('Page not found')

        return _recurse(0, page_tree_root_ref, {page_tree_root_ref.reference})
