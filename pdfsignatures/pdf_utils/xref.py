"""
Internal utilities to handle the processing of cross-reference data and
document trailer data, both for reading and for writing.

This entire module is considered internal API.
"""

import enum
import logging
import os
import struct
from dataclasses import dataclass
from io import BytesIO
from itertools import chain
from typing import Dict, Iterator, List, Optional, Tuple, Union

from . import generic, misc
from .misc import PdfReadError, PdfStrictReadError, XRefChainError

__all__ = [
    'XRefCache', 'XRefBuilder', 'XRefType', 'XRefEntry', 'ObjStreamRef',
    'ObjectHeaderReadError', 'XRefSection', 'XRefSectionData',
    'XRefSectionType', 'XRefSectionMetaInfo', 'TrailerDictionary',
    'read_object_header', 'parse_xref_stream', 'parse_xref_table',
    'write_xref_table', 'XRefStream',
]

logger = logging.getLogger(__name__)


@enum.unique
class XRefType(enum.Enum):
    """
    Different types of cross-reference entries.
    """

    FREE = enum.auto()
    STANDARD = enum.auto()
    IN_OBJ_STREAM = enum.auto()


@dataclass(frozen=True)
class ObjStreamRef:
    """
    Identifies an object that's part of an object stream.
    """

    obj_stream_id: int
    """
    The ID number of the object stream (its generation number is presumed zero).
    """

    ix_in_stream: int
    """
    The index of the object in the stream.
    """


@dataclass(frozen=True)
class XRefEntry:
    """
    Value type representing a single cross-reference entry.
    """

    xref_type: XRefType
    location: Optional[Union[int, ObjStreamRef]]
    idnum: int
    generation: int = 0


def parse_xref_table(stream) -> Iterator[XRefEntry]:
    """
    Parse a single cross-reference table and yield its entries one by one.

    :param stream:
        A file-like object pointed to the start of the cross-reference table
        (right after the ``xref`` keyword).
    :return:
        A generator object yielding :class:`.XRefEntry` objects.
    """

    misc.read_non_whitespace(stream, seek_back=True)
    while True:
        num = generic.NumberObject.read_from_stream(stream)
        misc.read_non_whitespace(stream, seek_back=True)
        size = generic.NumberObject.read_from_stream(stream)
        misc.read_non_whitespace(stream, seek_back=True)
        for _ in range(size):
            line = stream.read(20)
            if len(line) < 20:
                raise PdfReadError("Cross-reference table is truncated")

            # Entries are 20 bytes, but some producers write CRLF-terminated
            # 21-byte lines, or use a single-character EOL.
            while line[0] in b"\r\n":
                stream.seek(-20 + 1, os.SEEK_CUR)
                line = stream.read(20)
            if line[-1] in b"0123456789t":
                stream.seek(-1, os.SEEK_CUR)

            try:
                offset, generation, marker = line[:18].split(b" ")
                offset, generation = int(offset), int(generation)
            except ValueError:
                raise PdfReadError(
                    f"Malformed cross-reference entry {line!r}"
                )
            if marker == b'n':
                yield XRefEntry(
                    xref_type=XRefType.STANDARD, location=offset,
                    idnum=num, generation=generation
                )
            elif marker == b'f':
                yield XRefEntry(
                    xref_type=XRefType.FREE, location=None,
                    idnum=num, generation=generation
                )
            else:
                raise PdfReadError(
                    f"Unknown cross-reference entry marker {marker!r}"
                )
            num += 1
        misc.read_non_whitespace(stream, seek_back=True)
        trailertag = stream.read(7)
        if trailertag == b"trailer":
            misc.read_non_whitespace(stream, seek_back=True)
            return
        # more subsections
        stream.seek(-7, os.SEEK_CUR)


def convert_to_int(d, size):
    if size <= 8:
        return struct.unpack(">q", bytes(8 - size) + d)[0]
    return int.from_bytes(d, 'big')


def parse_xref_stream(xref_stream: generic.StreamObject,
                      strict: bool = True) -> Iterator[XRefEntry]:
    """
    Parse a single cross-reference stream and yield its entries one by one.

    :param xref_stream:
        A :class:`~generic.StreamObject`.
    :param strict:
        Boolean indicating whether we're running in strict mode.
    :return:
        A generator object yielding :class:`.XRefEntry` objects.
    """

    stream_data = BytesIO(xref_stream.data)
    idx_pairs = xref_stream.get("/Index", [0, xref_stream.get("/Size")])
    entry_sizes = xref_stream.get("/W")
    if entry_sizes is None or len(entry_sizes) != 3:
        raise PdfReadError("Cross-reference stream has an invalid /W entry")

    def get_entry(ix):
        entry_width = entry_sizes[ix]
        if entry_width > 0:
            d = stream_data.read(entry_width)
            if len(d) >= entry_width:
                return convert_to_int(d, entry_width)
            raise PdfReadError(
                "XRef stream ended prematurely; incomplete entry: "
                f"expected to read {entry_width} bytes, but only got "
                f"{len(d)}."
            )
        # a zero width means the field takes its default value
        return 1 if ix == 0 else 0

    last_end = 0
    for start, size in misc.pair_iter(idx_pairs):
        if start < last_end:
            raise PdfReadError(
                "Subsections of a cross-reference stream must be increasing"
            )
        last_end = start + size
        for num in range(start, start + size):
            xref_type = get_entry(0)
            field1 = get_entry(1)
            field2 = get_entry(2)
            if xref_type == 1:
                yield XRefEntry(
                    xref_type=XRefType.STANDARD, idnum=num,
                    location=field1, generation=field2
                )
            elif xref_type == 2:
                yield XRefEntry(
                    xref_type=XRefType.IN_OBJ_STREAM, idnum=num,
                    location=ObjStreamRef(field1, field2)
                )
            elif xref_type == 0:
                yield XRefEntry(
                    xref_type=XRefType.FREE, idnum=num, generation=field2,
                    location=None
                )
            # unknown types are to be ignored

    if stream_data.read(1) and strict:
        raise PdfStrictReadError("Trailing data in cross-reference stream")


@enum.unique
class XRefSectionType(enum.Enum):
    STANDARD = enum.auto()
    STREAM = enum.auto()
    HYBRID_MAIN = enum.auto()
    HYBRID_STREAM = enum.auto()


@dataclass(frozen=True)
class XRefSectionMetaInfo:
    xref_section_type: XRefSectionType
    """
    The type of cross-reference section.
    """

    size: int
    """
    The highest object ID in scope for this xref section, plus one.
    """

    declared_startxref: int
    """
    Location pointed to by the startxref pointer (or /Prev) in that revision.
    """

    stream_ref: Optional[generic.Reference]
    """
    Reference to the relevant xref stream, if applicable.
    """


class XRefSectionData:
    """
    Internal class for bookkeeping on a single cross-reference section,
    independently of the others.
    """

    def __init__(self):
        self.freed: Dict[int, int] = {}
        self.standard_xrefs: Dict[int, Tuple[int, int]] = {}
        self.xrefs_in_objstm: Dict[int, ObjStreamRef] = {}
        self.hybrid: Optional[XRefSection] = None

    def try_resolve(self, ref) -> Optional[Union[int, ObjStreamRef]]:
        """
        Look up a reference in this section.

        :return:
            The location of the object, or ``None`` if it was freed in this
            section.
        :raise KeyError:
            If this section doesn't say anything about the reference.
        """
        if ref.generation == 0:
            try:
                return self.xrefs_in_objstm[ref.idnum]
            except KeyError:
                pass

        std_ref = self.standard_xrefs.get(ref.idnum, None)
        if std_ref is not None:
            if std_ref[0] == ref.generation:
                return std_ref[1]
            raise KeyError(ref)

        # free entries record the next generation number to be used
        freed_next_generation = self.freed.get(ref.idnum, None)
        if freed_next_generation is not None \
                and ref.generation == freed_next_generation - 1:
            return None

        if self.hybrid is not None:
            return self.hybrid.xref_data.try_resolve(ref)
        raise KeyError(ref)

    def process_entries(self, entries: Iterator[XRefEntry], strict: bool):
        highest_id = 0
        for xref_entry in entries:
            idnum = xref_entry.idnum
            generation = xref_entry.generation
            highest_id = max(idnum, highest_id)
            if generation > 0xffff:
                if strict:
                    raise PdfStrictReadError(
                        f"Illegal generation {generation} for "
                        f"object ID {idnum}."
                    )
                continue
            if idnum == 0:
                continue
            if xref_entry.xref_type == XRefType.STANDARD:
                self.standard_xrefs[idnum] = (generation, xref_entry.location)
            elif xref_entry.xref_type == XRefType.IN_OBJ_STREAM:
                self.xrefs_in_objstm[idnum] = xref_entry.location
            elif xref_entry.xref_type == XRefType.FREE:
                self.freed[idnum] = generation
        return highest_id

    def process_hybrid_entries(self, entries: Iterator[XRefEntry],
                               xref_meta_info: XRefSectionMetaInfo,
                               strict: bool):
        hybrid = XRefSectionData()
        hybrid.process_entries(entries, strict=strict)
        self.hybrid = XRefSection(xref_meta_info, hybrid)


@dataclass(frozen=True)
class XRefSection:
    """
    Describes a cross-reference section and how it is serialised into
    the PDF file.
    """

    meta_info: XRefSectionMetaInfo
    xref_data: XRefSectionData


def _check_xref_sizes(all_sections: List[XRefSection]):
    prev_size = 0
    for section in all_sections:
        sz = section.meta_info.size
        if sz < prev_size:
            raise PdfStrictReadError(
                f"XRef section sizes must be nondecreasing; found XRef section "
                f"of size {sz} after section of size {prev_size}."
            )
        prev_size = sz


class XRefBuilder:
    """
    Reads all cross-reference sections of a file, following the ``/Prev``
    chain backwards from the last ``startxref`` pointer.
    """

    err_limit = 10

    def __init__(self, handler, stream, strict: bool, last_startxref: int):
        self.handler = handler
        self.stream = stream
        self.strict = strict
        self.last_startxref = last_startxref
        self.sections = []

        self.trailer = TrailerDictionary()
        self.trailer.container_ref = generic.TrailerReference(handler)
        self.has_xref_stream = False

    def _read_xref_stream_object(self):
        stream = self.stream
        idnum, generation = read_object_header(stream, strict=self.strict)
        xrefstream_ref = generic.Reference(idnum, generation, pdf=self.handler)
        xrefstream = generic.read_object(stream, xrefstream_ref)
        if not isinstance(xrefstream, generic.StreamObject) \
                or xrefstream.raw_get("/Type") != "/XRef":
            raise XRefChainError(
                f"Object {idnum} {generation} is not a cross-reference stream"
            )
        return xrefstream_ref, xrefstream

    def _read_xref_stream(self, declared_startxref: int):
        xrefstream_ref, xrefstream = self._read_xref_stream_object()

        xref_section_data = XRefSectionData()
        xref_section_data.process_entries(
            parse_xref_stream(xrefstream, strict=self.strict),
            strict=self.strict
        )
        xref_meta_info = XRefSectionMetaInfo(
            xref_section_type=XRefSectionType.STREAM,
            size=int(xrefstream.raw_get('/Size')),
            declared_startxref=declared_startxref,
            stream_ref=xrefstream_ref
        )
        self.sections.append(XRefSection(xref_meta_info, xref_section_data))

        self.trailer.add_trailer_revision(xrefstream)
        return xrefstream.get('/Prev')

    def _read_xref_table(self, declared_startxref: int):
        stream = self.stream
        xref_section_data = XRefSectionData()
        highest = xref_section_data.process_entries(
            parse_xref_table(stream), strict=self.strict
        )

        new_trailer = generic.read_object(
            stream, generic.TrailerReference(self.handler)
        )
        if not isinstance(new_trailer, generic.DictionaryObject):
            raise XRefChainError("Trailer is not a dictionary")
        declared_size = int(new_trailer.raw_get('/Size'))

        if self.strict and highest >= declared_size:
            raise PdfStrictReadError(
                f"Xref table size mismatch: table allocated object with id "
                f"{highest}, but according to the trailer {declared_size - 1} "
                f"is the maximal allowed object id."
            )

        try:
            hybrid_xref_stm_loc = int(new_trailer.raw_get('/XRefStm'))
        except (KeyError, ValueError):
            hybrid_xref_stm_loc = None

        stream_ref = None
        xref_type = XRefSectionType.STANDARD
        if hybrid_xref_stm_loc is not None:
            stream_pos = stream.tell()
            stream.seek(hybrid_xref_stm_loc)
            stream_ref, xrefstream = self._read_xref_stream_object()
            hybrid_stream_meta = XRefSectionMetaInfo(
                xref_section_type=XRefSectionType.HYBRID_STREAM,
                size=int(xrefstream.raw_get('/Size')),
                declared_startxref=hybrid_xref_stm_loc,
                stream_ref=stream_ref
            )
            xref_section_data.process_hybrid_entries(
                parse_xref_stream(xrefstream), hybrid_stream_meta,
                strict=self.strict
            )
            stream.seek(stream_pos)
            xref_type = XRefSectionType.HYBRID_MAIN

        xref_meta_info = XRefSectionMetaInfo(
            xref_section_type=xref_type,
            size=declared_size,
            declared_startxref=declared_startxref,
            stream_ref=stream_ref,
        )
        self.sections.append(XRefSection(xref_meta_info, xref_section_data))

        self.trailer.add_trailer_revision(new_trailer)
        return new_trailer.get('/Prev')

    def _read_section(self, startxref, declared_startxref):
        """
        Read the section at ``startxref`` and return the location of the
        previous one, or ``None``. Raises :class:`ObjectHeaderReadError` or
        :class:`XRefChainError` if there is no xref data at ``startxref``.
        """
        stream = self.stream
        stream.seek(startxref)
        # common in linearised files
        misc.skip_over_whitespace(stream)
        x = stream.read(1)
        if x == b"x":
            if stream.read(3) != b"ref":
                raise XRefChainError("xref table read error")
            return self._read_xref_table(declared_startxref)
        elif x.isdigit():
            stream.seek(-1, os.SEEK_CUR)
            prev = self._read_xref_stream(declared_startxref)
            self.has_xref_stream = True
            return prev
        raise XRefChainError(
            f"No cross-reference data at offset {startxref}"
        )

    def read_xrefs(self) -> List[XRefSection]:
        """
        Read all cross-reference sections and their trailers.

        :return:
            The sections, in chronological order (oldest first).
        :raise XRefChainError:
            If the chain of sections cannot be resolved.
        """
        startxref = self.last_startxref
        visited = set()
        while startxref is not None:
            startxref = int(startxref)
            if startxref in visited:
                raise XRefChainError(
                    f"Cyclic /Prev chain: offset {startxref} visited twice"
                )
            visited.add(startxref)
            declared_startxref = startxref
            err_count = 0
            while True:
                try:
                    startxref = self._read_section(
                        startxref, declared_startxref
                    )
                    break
                except (ObjectHeaderReadError, XRefChainError) as e:
                    if self.strict or err_count >= self.err_limit:
                        raise XRefChainError(
                            f"Failed to read cross-reference section at "
                            f"offset {declared_startxref}: {e.msg}"
                        ) from e
                    logger.debug(
                        "Failed to read xref section, attempting to "
                        "correct...", exc_info=e
                    )
                    startxref = _attempt_startxref_correction(
                        self.stream, startxref
                    )
                    err_count += 1
                except (PdfReadError, ValueError, KeyError) as e:
                    if isinstance(e, PdfStrictReadError):
                        raise
                    raise XRefChainError(
                        f"Malformed cross-reference section at offset "
                        f"{declared_startxref}"
                    ) from e

        chrono_sections = list(reversed(self.sections))
        if self.strict:
            _check_xref_sizes(chrono_sections)
        return chrono_sections


class ObjectHeaderReadError(PdfReadError):
    pass


def _read_object_header(stream, strict):
    # Cross-reference tables are occasionally off by a few whitespace bytes.
    extra = False
    misc.skip_over_comment(stream)
    extra |= misc.skip_over_whitespace(stream)
    idnum = int(misc.read_until_whitespace(stream))
    extra |= misc.skip_over_whitespace(stream)
    generation = int(misc.read_until_whitespace(stream))
    misc.skip_over_whitespace(stream)
    if stream.read(3) != b'obj':
        raise ValueError("Missing 'obj' keyword")
    misc.read_non_whitespace(stream, seek_back=True)

    if extra and strict:
        logger.warning(
            f"Superfluous whitespace found in object header "
            f"{idnum} {generation}"
        )
    return idnum, generation


def read_object_header(stream, strict):
    pos = stream.tell()
    try:
        return _read_object_header(stream, strict)
    except ValueError as e:
        raise ObjectHeaderReadError(
            f"Failed to read object header at {pos}"
        ) from e


class TrailerDictionary(generic.PdfObject):
    """
    Merged view on all trailers in a document.

    Each trailer should contain all keys used in the preceding trailer,
    but documents don't always follow this rule, so lookups fall back to
    older revisions.
    """

    # These keys are not subject to inheritance rules.
    non_trailer_keys = {
        '/Length', '/Filter', '/DecodeParms', '/W', '/Type', '/Index',
        '/XRefStm', '/Prev'
    }

    def __init__(self):
        # trailer revisions in processing order; index 0 is the most recent
        self._trailer_revisions: List[generic.DictionaryObject] = []
        self._new_changes = generic.DictionaryObject()

    def add_trailer_revision(self, trailer_dict: generic.DictionaryObject):
        self._trailer_revisions.append(trailer_dict)

    def __getitem__(self, item):
        return self.raw_get(item).get_object()

    def get(self, key, default=None):
        try:
            return self[key]
        except KeyError:
            return default

    def raw_get(self, key,
                decrypt=generic.EncryptedObjAccess.TRANSPARENT,
                revision=None):
        revisions = self._trailer_revisions
        if revision is None:
            try:
                return self._new_changes.raw_get(key, decrypt)
            except KeyError:
                pass
        else:
            revisions = revisions[len(revisions) - 1 - revision:]

        if key in self.non_trailer_keys:
            return revisions[0].raw_get(key, decrypt)

        for trailer_rev in revisions:
            try:
                return trailer_rev.raw_get(key, decrypt)
            except KeyError:
                continue
        raise KeyError(key)

    def __setitem__(self, item, value):
        self._new_changes[item] = value

    def flatten(self, revision=None) -> generic.DictionaryObject:
        relevant_revisions = self._trailer_revisions
        if revision is not None:
            relevant_revisions = relevant_revisions[-revision - 1:]
        trailer = generic.DictionaryObject({
            k: v for trailer_rev in reversed(relevant_revisions)
            for k, v in trailer_rev.items()
        })
        if revision is None:
            trailer.update(self._new_changes)

        for key in self.non_trailer_keys:
            trailer.pop(key, None)
        return trailer

    def __contains__(self, item):
        try:
            self.raw_get(item, decrypt=generic.EncryptedObjAccess.RAW)
            return True
        except KeyError:
            return False

    def keys(self):
        return frozenset(chain(self._new_changes, *self._trailer_revisions))

    def __iter__(self):
        return iter(self.keys())

    def items(self):
        return self.flatten().items()

    def write_to_stream(self, stream, handler=None, container_ref=None):
        raise NotImplementedError(
            "TrailerDictionary object cannot be written directly"
        )


def _attempt_startxref_correction(stream, startxref):
    # look for an xref table slightly before or after the declared location
    stream.seek(max(startxref - 10, 0))
    tmp = stream.read(20)
    xref_loc = tmp.find(b"xref")
    if xref_loc != -1:
        return max(startxref - 10, 0) + xref_loc
    # otherwise, look for the start of an xref stream object nearby
    readback = 5
    stream.seek(max(startxref - readback, 0))
    tmp = stream.read(2 * readback)
    newline_loc = tmp.rfind(b"\n")
    if newline_loc != -1:
        stream.seek(max(startxref - readback, 0) + newline_loc)
        misc.skip_over_whitespace(stream)
        line_start = stream.tell()
        for look in range(5):
            if stream.read(1).isdigit():
                return line_start + look

    raise XRefChainError("Could not find xref table at specified location")


class XRefCache:
    """
    Internal class to parse & store information from the xref section(s) of a
    PDF document.

    Stores both the most recent status of all xrefs in addition to their
    historical values.
    """

    def __init__(self, reader, xref_sections: List[XRefSection]):
        self.reader = reader
        self._xref_sections = xref_sections
        self.xref_stream_refs = {
            section.meta_info.stream_ref for section in xref_sections
            if section.meta_info.stream_ref is not None
        } | {
            section.xref_data.hybrid.meta_info.stream_ref
            for section in xref_sections
            if section.xref_data.hybrid is not None
        }

    @property
    def total_revisions(self):
        return len(self._xref_sections)

    def get_introducing_revision(self, ref: generic.Reference) -> int:
        """
        Find the oldest revision in which an object was written.

        :raise KeyError: if no section defines the reference
        """
        for ix, section in enumerate(self._xref_sections):
            try:
                if section.xref_data.try_resolve(ref) is not None:
                    return ix
            except KeyError:
                pass
        raise KeyError(ref)

    def get_historical_ref(self, ref, revision) \
            -> Optional[Union[int, ObjStreamRef]]:
        """
        Look up the location of the value of an object as of some revision.

        :return:
            An integer offset, an object stream reference, or ``None`` if
            the reference does not resolve in the specified revision.
        """
        for section in reversed(self._xref_sections[:revision + 1]):
            try:
                return section.xref_data.try_resolve(ref)
            except KeyError:
                continue
        return None

    def __getitem__(self, ref):
        return self.get_historical_ref(ref, len(self._xref_sections) - 1)


PositionDict = Dict[Tuple[int, int], Union[int, Tuple[int, int]]]


def _contiguous_xref_chunks(position_dict: PositionDict):
    """
    Divide the positions, keyed by (generation, idnum), into runs of
    consecutive object IDs.
    """
    if not position_dict:
        return

    key_iter = sorted(position_dict.keys(), key=lambda t: t[1])
    (_, first_idnum), key_iter = misc.peek(key_iter)
    previous_idnum = None
    current_chunk = []
    for generation, idnum in key_iter:
        if current_chunk and idnum != previous_idnum + 1:
            yield first_idnum, current_chunk
            current_chunk = []
            first_idnum = idnum
        current_chunk.append((position_dict[(generation, idnum)], generation))
        previous_idnum = idnum
    yield first_idnum, current_chunk


NULL_XREF_ENTRY = b'0000000000 65535 f \n'


def write_xref_table(stream, position_dict: PositionDict) -> int:
    """
    Write a classic cross-reference table.

    :return:
        The offset of the ``xref`` keyword.
    """
    xref_location = stream.tell()
    stream.write(b'xref\n')
    subsections = _contiguous_xref_chunks(position_dict)

    def write_subsection(first_idnum, chunk):
        stream.write(b'%d %d\n' % (first_idnum, len(chunk)))
        for position, generation in chunk:
            stream.write(b"%010d %05d n \n" % (position, generation))

    try:
        first_idnum, subsection = next(subsections)
    except StopIteration:
        stream.write(b'0 1\n' + NULL_XREF_ENTRY)
        return xref_location

    if first_idnum == 1:
        # the head of the free list joins the first subsection
        stream.write(b'0 %d\n' % (len(subsection) + 1))
        stream.write(NULL_XREF_ENTRY)
        for position, generation in subsection:
            stream.write(b"%010d %05d n \n" % (position, generation))
    else:
        stream.write(b'0 1\n' + NULL_XREF_ENTRY)
        write_subsection(first_idnum, subsection)
    for first_idnum, subsection in subsections:
        write_subsection(first_idnum, subsection)
    return xref_location


class XRefStream(generic.StreamObject):
    """
    Cross-reference stream, rendered from a position dictionary when written.
    """

    def __init__(self, position_dict: PositionDict):
        super().__init__()
        self.position_dict = position_dict
        # type (1 byte), offset or objstm number (8), generation or index (2)
        self['/W'] = generic.ArrayObject(
            map(generic.NumberObject, (1, 8, 2))
        )
        self['/Type'] = generic.pdf_name('/XRef')

    def write_to_stream(self, stream, handler=None, container_ref=None):
        # cross-reference streams are never encrypted
        index = [0, 1]
        stream_content = BytesIO()
        stream_content.write(b'\x00' * 9 + b'\xff\xff')
        for first_idnum, subsection in \
                _contiguous_xref_chunks(self.position_dict):
            index += [first_idnum, len(subsection)]
            for position, generation in subsection:
                if isinstance(position, tuple):
                    obj_stream_num, ix = position
                    stream_content.write(
                        b'\x02' + struct.pack('>QH', obj_stream_num, ix)
                    )
                else:
                    stream_content.write(
                        b'\x01' + struct.pack('>QH', position, generation)
                    )
        self['/Index'] = generic.ArrayObject(map(generic.NumberObject, index))
        self._data = stream_content.getvalue()
        self._encoded_data = None
        super().write_to_stream(stream, None, None)
