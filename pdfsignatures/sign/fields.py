"""
Utilities to deal with signature form fields, the AcroForm and document
certification (``/DocMDP``).
"""

import logging
from typing import Optional, Set

from pdfsignatures.pdf_utils import generic
from pdfsignatures.pdf_utils.generic import pdf_name, pdf_string
from pdfsignatures.pdf_utils.misc import OrderedEnum, PdfError, PdfReadError
from pdfsignatures.pdf_utils.rw_common import PdfHandler
from pdfsignatures.pdf_utils.writer import BasePdfFileWriter

from .general import ParameterError, SigningError

__all__ = [
    'CertificationLevel', 'SignatureFormField', 'enumerate_sig_fields',
    'enumerate_sig_fields_in', 'prepare_sig_field', 'ensure_sig_flags',
    'next_sig_field_name', 'docmdp_reference_dictionary', 'get_docmdp_sig',
]

logger = logging.getLogger(__name__)


class CertificationLevel(OrderedEnum):
    """
    Indicates the certification level of a signature, i.e. the ``/P``
    value of its ``/DocMDP`` transform parameters. ``NOT_CERTIFIED``
    produces an approval signature.

    Cf. Table 254  in ISO 32000-1.
    """

    NOT_CERTIFIED = 0

    CERTIFIED_NO_CHANGES_ALLOWED = 1
    """
    No changes to the document are allowed.

    .. warning::
        This does not apply to DSS updates.
    """

    CERTIFIED_FORM_FILLING = 2
    """
    Form filling & signing is allowed.
    """

    CERTIFIED_FORM_FILLING_AND_ANNOTATIONS = 3
    """
    Form filling, signing and commenting are allowed.
    """

    @property
    def certifies(self) -> bool:
        return self != CertificationLevel.NOT_CERTIFIED

    @classmethod
    def from_value(cls, value) -> 'CertificationLevel':
        """
        Convert user input to a certification level.

        :param value:
            A :class:`CertificationLevel`, or an integer between 0 and 3.
        :raise ParameterError:
            If the value does not denote a certification level.
        """
        if isinstance(value, CertificationLevel):
            return value
        if isinstance(value, bool) or not isinstance(value, int):
            raise ParameterError(
                f"Certification level must be an integer, not {value!r}"
            )
        try:
            return cls(value)
        except ValueError:
            raise ParameterError(
                f"Certification level must be between 0 and 3, not {value}"
            )


# lock bit + print bit
SIG_WIDGET_FLAGS = 0b10000100


class SignatureFormField(generic.DictionaryObject):
    """
    Signature field merged with an invisible widget annotation.

    :param field_name:
        The partial name of the field.
    :param include_on_page:
        Reference to the page the widget lives on.
    """

    def __init__(self, field_name, *, include_on_page=None):
        super().__init__({
            # Signature field properties
            pdf_name('/FT'): pdf_name('/Sig'),
            pdf_name('/T'): pdf_string(field_name),
            # Annotation properties: bare minimum
            pdf_name('/Type'): pdf_name('/Annot'),
            pdf_name('/Subtype'): pdf_name('/Widget'),
            pdf_name('/F'): generic.NumberObject(SIG_WIDGET_FLAGS),
            pdf_name('/Rect'): generic.ArrayObject(
                [generic.NumberObject(0)] * 4
            ),
        })
        self.page_ref = include_on_page
        if include_on_page is not None:
            self['/P'] = include_on_page

    def register_widget_annotation(self, writer: BasePdfFileWriter,
                                   sig_field_ref):
        writer.register_annotation(self.page_ref, sig_field_ref)


def enumerate_sig_fields(handler: PdfHandler, filled_status=None):
    """
    Enumerate signature fields.

    :param handler:
        The :class:`~.rw_common.PdfHandler` to operate on.
    :param filled_status:
        Optional boolean. If ``True`` (resp. ``False``) then all filled
        (resp. empty) fields are returned. If left ``None`` (the default), then
        all fields are returned.
    :return:
        A generator producing triples of the fully qualified field name,
        the field value (or ``None``) and a reference to the field.
    """

    try:
        fields = handler.root['/AcroForm']['/Fields']
    except KeyError:
        return

    yield from enumerate_sig_fields_in(fields, filled_status, refs_seen=set())


def enumerate_sig_fields_in(field_list, filled_status=None, with_name=None,
                            parent_name="", parents=None, *, refs_seen):
    if not isinstance(field_list, generic.ArrayObject):
        logger.warning(
            f"Values of type {type(field_list)} are not valid as field "
            f"lists, must be array objects -- skipping."
        )
        return

    parents = parents or ()
    for field_ref in field_list.raw_items():
        if not isinstance(field_ref, generic.IndirectObject):
            logger.warning(
                "Entries in field list must be indirect references -- skipping."
            )
            continue
        if field_ref.reference in refs_seen:
            raise PdfReadError("Circular reference in form tree")

        field = field_ref.get_object()
        if not isinstance(field, generic.DictionaryObject):
            logger.warning(
                "Entries in field list must be dictionary objects, not "
                f"{type(field)} -- skipping."
            )
            continue
        # bare widgets have no /T
        try:
            field_name = field['/T']
        except KeyError:
            continue
        fq_name = (
            field_name if not parent_name
            else ("%s.%s" % (parent_name, field_name))
        )
        explicitly_requested = with_name is not None and fq_name == with_name
        child_requested = explicitly_requested or (
            with_name is not None and with_name.startswith(fq_name + '.')
        )
        # /FT is inheritable, so go up the chain
        current_path = (field,) + parents
        for parent_field in current_path:
            try:
                field_type = parent_field['/FT']
                break
            except KeyError:
                continue
        else:
            field_type = None

        if field_type == '/Sig':
            field_value = field.get('/V')
            filled = field_value is not None
            status_check = filled_status is None or filled == filled_status
            name_check = with_name is None or explicitly_requested
            if status_check and name_check:
                yield fq_name, field_value, field_ref
        elif explicitly_requested:
            raise SigningError(
                'Field with name %s exists but is not a signature field'
                % fq_name
            )

        # if necessary, descend into the field hierarchy
        if with_name is None or (child_requested and not explicitly_requested):
            try:
                kids = field['/Kids']
            except KeyError:
                continue
            yield from enumerate_sig_fields_in(
                kids, parent_name=fq_name, parents=current_path,
                with_name=with_name, filled_status=filled_status,
                refs_seen=refs_seen | {field_ref.reference},
            )


def _collect_field_names(field_list, refs_seen: Set) -> Set[str]:
    names = set()
    if not isinstance(field_list, generic.ArrayObject):
        return names
    for field_ref in field_list.raw_items():
        if not isinstance(field_ref, generic.IndirectObject) \
                or field_ref.reference in refs_seen:
            continue
        field = field_ref.get_object()
        if not isinstance(field, generic.DictionaryObject):
            continue
        name = field.get('/T')
        if name is not None:
            names.add(str(name))
        names |= _collect_field_names(
            field.get('/Kids'), refs_seen | {field_ref.reference}
        )
    return names


def next_sig_field_name(handler: PdfHandler) -> str:
    """
    Pick a name of the form ``SignatureN`` that does not clash with any
    existing field name.

    :param handler:
        The :class:`~.rw_common.PdfHandler` to inspect.
    """
    try:
        fields = handler.root['/AcroForm']['/Fields']
    except KeyError:
        return 'Signature1'
    taken = _collect_field_names(fields, set())
    ix = 1
    while f'Signature{ix}' in taken:
        ix += 1
    return f'Signature{ix}'


def ensure_sig_flags(writer: BasePdfFileWriter, lock_sig_flags: bool = True):
    """
    Ensure the SigFlags setting is present in the AcroForm dictionary.

    :param writer:
        A PDF writer.
    :param lock_sig_flags:
        Whether to flag the document as append-only (``/SigFlags 3``).
        Otherwise, the ``SignaturesExist`` bit is added to whatever flags
        are already present.
    """

    form = writer.root['/AcroForm']
    orig_sig_flags = form.get('/SigFlags', 0)
    new_sig_flags = 3 if lock_sig_flags else (int(orig_sig_flags) | 1)
    if new_sig_flags != orig_sig_flags:
        form['/SigFlags'] = generic.NumberObject(new_sig_flags)
        writer.update_container(form)


def prepare_sig_field(sig_field_name, root,
                      update_writer: BasePdfFileWriter) \
        -> generic.IndirectObject:
    """
    Create a new signature field, and the AcroForm if necessary.
    The widget annotation is registered on the first page.

    .. danger::
        This function is internal API.

    :param sig_field_name:
        Name of the field to create.
    :param root:
        The document catalog.
    :param update_writer:
        The writer to house the new objects.
    :return:
        A reference to the new field.
    :raise SigningError:
        If a field with the same name exists.
    """

    try:
        form = root['/AcroForm']
    except KeyError:
        form = None

    if form is None:
        # no AcroForm present, so create one
        form = generic.DictionaryObject()
        root[pdf_name('/AcroForm')] = update_writer.add_object(form)
        fields = generic.ArrayObject()
        form[pdf_name('/Fields')] = fields
        update_writer.update_root()
    else:
        try:
            fields = form['/Fields']
        except KeyError:
            fields = form[pdf_name('/Fields')] = generic.ArrayObject()
            update_writer.update_container(form)
        existing = enumerate_sig_fields_in(
            fields, with_name=sig_field_name, refs_seen=set()
        )
        if next(existing, None) is not None:
            raise SigningError(
                'Signature field with name %s already exists.'
                % sig_field_name
            )

    try:
        page_ref = update_writer.find_page_for_modification(0)
    except (PdfError, KeyError) as e:
        raise PdfReadError(f"Could not locate the first page: {e}") from e
    sig_field = SignatureFormField(sig_field_name, include_on_page=page_ref)
    sig_field_ref = update_writer.add_object(sig_field)
    fields.append(sig_field_ref)
    update_writer.update_container(fields)
    sig_field.register_widget_annotation(update_writer, sig_field_ref)
    return sig_field_ref


def docmdp_reference_dictionary(level: CertificationLevel) \
        -> generic.DictionaryObject:
    """
    Build the signature reference dictionary for a certification signature.

    :param level:
        The certification level to encode.
    """
    if not level.certifies:
        raise ParameterError("Approval signatures have no /DocMDP reference")
    tp = generic.DictionaryObject({
        pdf_name('/Type'): pdf_name('/TransformParams'),
        pdf_name('/V'): pdf_name('/1.2'),
        pdf_name('/P'): generic.NumberObject(level.value),
    })
    return generic.DictionaryObject({
        pdf_name('/Type'): pdf_name('/SigRef'),
        pdf_name('/TransformMethod'): pdf_name('/DocMDP'),
        pdf_name('/TransformParams'): tp,
    })


def get_docmdp_sig(handler: PdfHandler) -> Optional[generic.DictionaryObject]:
    """
    Return the certification signature dictionary referenced from the
    catalog's ``/Perms`` entry, if there is one.
    """
    try:
        return handler.root['/Perms']['/DocMDP']
    except KeyError:
        return None
