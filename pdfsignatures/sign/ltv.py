"""
Long-term validation support: appending revocation information (CRLs and
OCSP responses) to the Document Security Store (DSS) of a signed document.
"""

import hashlib
import logging
from dataclasses import dataclass
from dataclasses import field as data_field
from io import BytesIO
from typing import IO, Dict, Iterable, List, Optional

from asn1crypto import crl as asn1_crl
from asn1crypto import ocsp as asn1_ocsp

from pdfsignatures.pdf_utils import generic
from pdfsignatures.pdf_utils.generic import pdf_name
from pdfsignatures.pdf_utils.incremental_writer import (
    IncrementalPdfFileWriter,
)
from pdfsignatures.pdf_utils.reader import PdfFileReader
from pdfsignatures.pdf_utils.writer import BasePdfFileWriter

from .digest import read_input_data
from .fields import enumerate_sig_fields
from .general import NoSignatureForLtvError, ParameterError
from .pdf_byterange import read_reserved_region

__all__ = [
    'VRI', 'DocumentSecurityStore', 'load_crl', 'load_ocsp_response',
    'find_latest_signature_contents', 'add_ltv',
]

logger = logging.getLogger(__name__)


def load_crl(der_bytes: bytes) -> asn1_crl.CertificateList:
    """
    Parse a DER-encoded CRL.

    :raise ParameterError:
        If the data is not a well-formed CRL.
    """
    try:
        crl = asn1_crl.CertificateList.load(der_bytes, strict=True)
        # force a full parse
        crl.native
    except (ValueError, TypeError) as e:
        raise ParameterError(f"Could not parse CRL: {e}") from e
    return crl


def load_ocsp_response(der_bytes: bytes) -> asn1_ocsp.OCSPResponse:
    """
    Parse a DER-encoded OCSP response.

    :raise ParameterError:
        If the data is not a well-formed OCSP response.
    """
    try:
        resp = asn1_ocsp.OCSPResponse.load(der_bytes, strict=True)
        resp.native
    except (ValueError, TypeError) as e:
        raise ParameterError(f"Could not parse OCSP response: {e}") from e
    return resp


@dataclass
class VRI:
    """
    VRI dictionary as defined in PAdES / ISO 32000-2.
    These dictionaries collect data that may be relevant for the validation of
    a specific signature.

    .. note::
        The data are stored as PDF indirect objects, not asn1crypto values.
        In particular, values are tied to a specific PDF handler.
    """

    certs: List[generic.IndirectObject] = data_field(default_factory=list)
    """
    Relevant certificates.
    """

    ocsps: List[generic.IndirectObject] = data_field(default_factory=list)
    """
    Relevant OCSP responses.
    """

    crls: List[generic.IndirectObject] = data_field(default_factory=list)
    """
    Relevant CRLs.
    """

    @classmethod
    def from_pdf_object(cls, vri_dict: generic.DictionaryObject) -> 'VRI':
        def _refs(key):
            try:
                arr = vri_dict[key]
            except KeyError:
                return []
            if not isinstance(arr, generic.ArrayObject):
                return []
            return [
                ref for ref in arr.raw_items()
                if isinstance(ref, generic.IndirectObject)
            ]

        return VRI(
            certs=_refs('/Cert'), ocsps=_refs('/OCSP'), crls=_refs('/CRL')
        )

    def extend(self, *, ocsps=(), crls=()):
        for ref in ocsps:
            if ref not in self.ocsps:
                self.ocsps.append(ref)
        for ref in crls:
            if ref not in self.crls:
                self.crls.append(ref)

    def as_pdf_object(self) -> generic.DictionaryObject:
        """
        :return:
            A PDF dictionary representing this VRI entry.
        """
        vri = generic.DictionaryObject({pdf_name('/Type'): pdf_name('/VRI')})
        if self.ocsps:
            vri[pdf_name('/OCSP')] = generic.ArrayObject(self.ocsps)
        if self.crls:
            vri[pdf_name('/CRL')] = generic.ArrayObject(self.crls)
        if self.certs:
            vri[pdf_name('/Cert')] = generic.ArrayObject(self.certs)
        return vri


def _ref_list(dss_dict: generic.DictionaryObject, key) \
        -> List[generic.IndirectObject]:
    try:
        arr = dss_dict[key]
    except KeyError:
        return []
    if not isinstance(arr, generic.ArrayObject):
        logger.warning(f"{key} entry in DSS is not an array -- ignoring.")
        return []
    return list(arr.raw_items())


class DocumentSecurityStore:
    """
    Representation of a DSS in Python.

    :param writer:
        The writer to which updates are written.
    :param certs:
        References to the certificates in the DSS.
    :param ocsps:
        References to the OCSP responses in the DSS.
    :param crls:
        References to the CRLs in the DSS.
    :param vri_entries:
        The VRI dictionary, keyed by signature identifier.
    :param backing_pdf_object:
        The DSS dictionary as read from the file, if there is one.
    """

    def __init__(self, writer: BasePdfFileWriter,
                 certs=None, ocsps=None, crls=None,
                 vri_entries=None, backing_pdf_object=None):
        self.vri_entries: Dict[str, generic.PdfObject] = \
            vri_entries if vri_entries is not None else {}
        self.certs = certs if certs is not None else []
        self.ocsps = ocsps if ocsps is not None else []
        self.crls = crls if crls is not None else []

        self.writer = writer
        self.backing_pdf_object = (
            backing_pdf_object if backing_pdf_object is not None
            else generic.DictionaryObject()
        )

        self._ocsps_seen = {
            ocsp_ref.get_object().data: ocsp_ref for ocsp_ref in self.ocsps
        }
        self._crls_seen = {
            crl_ref.get_object().data: crl_ref for crl_ref in self.crls
        }
        self._modified = False

    @property
    def modified(self):
        return self._modified

    def _mark_modified(self):
        if not self._modified:
            self._modified = True
            self.writer.update_container(self.backing_pdf_object)

    def _cms_objects_to_streams(self, objs, seen, dest):
        for obj in objs:
            obj_bytes = obj.dump()
            try:
                yield seen[obj_bytes]
            except KeyError:
                stream = generic.StreamObject(stream_data=obj_bytes)
                stream.compress()
                ref = self.writer.add_object(stream)
                self._mark_modified()
                seen[obj_bytes] = ref
                dest.append(ref)
                yield ref

    @staticmethod
    def sig_content_identifier(contents: bytes) -> generic.NameObject:
        """
        Hash the contents of a signature object to get the corresponding VRI
        identifier.

        :param contents:
            Signature contents, i.e. the decoded value of ``/Contents``
            including any padding.
        :return:
            A name object to put into the DSS.
        """
        ident = hashlib.sha1(contents).digest().hex().upper()
        return pdf_name('/' + ident)

    def register_vri(self, identifier, *, ocsps=(), crls=()):
        """
        Register validation information associated with a particular
        signature. Data already present in the DSS is not duplicated, and
        an existing VRI entry for the same signature is extended.

        :param identifier:
            Identifier of the signature object (see `sig_content_identifier`).
        :param ocsps:
            OCSP responses to add.
        :param crls:
            CRLs to add.
        """
        ocsp_refs = list(
            self._cms_objects_to_streams(ocsps, self._ocsps_seen, self.ocsps)
        )
        crl_refs = list(
            self._cms_objects_to_streams(crls, self._crls_seen, self.crls)
        )

        try:
            existing = self.vri_entries[identifier].get_object()
            vri = VRI.from_pdf_object(existing)
        except KeyError:
            vri = VRI()
        vri_before = vri.as_pdf_object()
        vri.extend(ocsps=ocsp_refs, crls=crl_refs)
        vri_dict = vri.as_pdf_object()
        if identifier in self.vri_entries and vri_dict == vri_before:
            logger.debug("VRI entry %s is already up to date", identifier)
            return
        self.vri_entries[identifier] = self.writer.add_object(vri_dict)
        self._mark_modified()

    def as_pdf_object(self) -> generic.DictionaryObject:
        """
        Convert the :class:`.DocumentSecurityStore` object to a python
        dictionary. This method also handles DSS updates.

        :return:
            A PDF object representing this DSS.
        """
        pdf_dict = self.backing_pdf_object
        pdf_dict[pdf_name('/Type')] = pdf_name('/DSS')
        if self.certs:
            pdf_dict[pdf_name('/Certs')] = generic.ArrayObject(self.certs)
        if self.vri_entries:
            pdf_dict[pdf_name('/VRI')] = generic.DictionaryObject(
                self.vri_entries
            )
        if self.ocsps:
            pdf_dict[pdf_name('/OCSPs')] = generic.ArrayObject(self.ocsps)
        if self.crls:
            pdf_dict[pdf_name('/CRLs')] = generic.ArrayObject(self.crls)
        return pdf_dict

    @classmethod
    def read_dss(cls, writer: BasePdfFileWriter) \
            -> Optional['DocumentSecurityStore']:
        """
        Read the current DSS of a document, if there is one.

        :param writer:
            PDF writer from which to read the DSS, and to which updates
            are written.
        :return:
            A :class:`DocumentSecurityStore` describing the current state of
            the DSS, or ``None`` if the document does not have one.
        """
        try:
            dss_dict = writer.root['/DSS']
        except KeyError:
            return None
        if not isinstance(dss_dict, generic.DictionaryObject):
            raise ParameterError("/DSS entry is not a dictionary")

        try:
            vri_dict = dss_dict['/VRI']
            vri_entries = {key: vri_dict.raw_get(key) for key in vri_dict}
        except KeyError:
            vri_entries = None

        # the DSS returned is backed by the original DSS object, so entries
        # we don't manage are preserved
        return cls(
            writer=writer, certs=_ref_list(dss_dict, '/Certs'),
            ocsps=_ref_list(dss_dict, '/OCSPs'),
            crls=_ref_list(dss_dict, '/CRLs'),
            vri_entries=vri_entries, backing_pdf_object=dss_dict
        )

    @classmethod
    def supply_dss_in_writer(cls, pdf_out: BasePdfFileWriter,
                             sig_contents: bytes, *, ocsps=(), crls=()) \
            -> 'DocumentSecurityStore':
        """
        Add or update a DSS, and associate the new information with the VRI
        entry tied to a signature.

        :param pdf_out:
            PDF writer to write to.
        :param sig_contents:
            Contents of the signature (used to compute the VRI hash).
        :param ocsps:
            OCSP responses to include, as asn1crypto values.
        :param crls:
            CRLs to include, as asn1crypto values.
        :return:
            A :class:`DocumentSecurityStore` object containing both the new
            and existing contents of the DSS (if any).
        """
        dss = cls.read_dss(pdf_out)
        created = dss is None
        if created:
            dss = cls(writer=pdf_out)

        identifier = cls.sig_content_identifier(sig_contents)
        dss.register_vri(identifier, ocsps=ocsps, crls=crls)
        dss_dict = dss.as_pdf_object()
        # an existing DSS was updated in place,
        # a fresh one still needs to be registered
        if created:
            dss_ref = pdf_out.add_object(dss_dict)
            pdf_out.root[pdf_name('/DSS')] = dss_ref
            pdf_out.update_root()
        return dss


def find_latest_signature_contents(reader: PdfFileReader,
                                   data: bytes) -> bytes:
    """
    Find the decoded ``/Contents`` of the most recently added signature that
    is not an empty placeholder.

    :param reader:
        A reader for the document.
    :param data:
        The raw file contents.
    :raise NoSignatureForLtvError:
        If the document does not contain a completed signature.
    """
    latest = None
    latest_revision = -1
    for field_name, sig_value, field_ref in \
            enumerate_sig_fields(reader, filled_status=True):
        if not isinstance(sig_value, generic.DictionaryObject) \
                or sig_value.get('/Type') != '/Sig':
            continue
        region = read_reserved_region(sig_value, data)
        if region is not None and region.is_empty(data):
            continue
        try:
            # signature contents are never encrypted
            contents = sig_value.raw_get(
                '/Contents', decrypt=generic.EncryptedObjAccess.RAW
            )
        except KeyError:
            continue
        if not isinstance(contents, (generic.ByteStringObject,
                                     generic.TextStringObject)):
            continue
        contents_bytes = contents.original_bytes
        if not contents_bytes.strip(b'\x00'):
            continue
        sig_value_raw = field_ref.get_object().raw_get('/V')
        sig_ref = (
            sig_value_raw.reference
            if isinstance(sig_value_raw, generic.IndirectObject)
            else field_ref.reference
        )
        try:
            revision = reader.xrefs.get_introducing_revision(sig_ref)
        except KeyError:
            revision = reader.total_revisions - 1
        if revision >= latest_revision:
            latest, latest_revision = contents_bytes, revision
            logger.debug(
                "Found signature in field %s (revision %d)",
                field_name, revision
            )
    if latest is None:
        raise NoSignatureForLtvError(
            "The document does not contain a completed signature to attach "
            "validation information to."
        )
    return latest


def add_ltv(pdf_out: IncrementalPdfFileWriter,
            crls: Iterable[bytes] = (), ocsps: Iterable[bytes] = (),
            output: Optional[IO] = None) -> IO:
    """
    Add CRLs and OCSP responses to the document's DSS, and associate them
    with the most recent signature through its VRI entry. The result is
    written as an incremental update.

    :param pdf_out:
        An incremental writer for the signed document.
    :param crls:
        DER-encoded CRLs.
    :param ocsps:
        DER-encoded OCSP responses.
    :param output:
        Output stream. If not specified, a :class:`.BytesIO` is used.
    :return:
        The output stream, rewound.
    :raise ParameterError:
        If one of the payloads cannot be parsed.
    :raise NoSignatureForLtvError:
        If the document is not signed.
    """
    crl_values = [load_crl(der) for der in crls]
    ocsp_values = [load_ocsp_response(der) for der in ocsps]

    reader = pdf_out.prev
    sig_contents = find_latest_signature_contents(
        reader, read_input_data(reader)
    )
    logger.debug(
        "Adding %d CRL(s) and %d OCSP response(s) for signature %s",
        len(crl_values), len(ocsp_values),
        DocumentSecurityStore.sig_content_identifier(sig_contents)
    )
    DocumentSecurityStore.supply_dss_in_writer(
        pdf_out, sig_contents, ocsps=ocsp_values, crls=crl_values
    )
    if output is None:
        output = BytesIO()
    pdf_out.write(output)
    output.seek(0)
    return output
