"""
Build a byte-offset index into a serialized aggregation document (ORE map).

An ORE map can be many gigabytes in size, nearly all of it in the ``aggregates`` list of
its ``describes`` object.  The :py:class:`StreamingIndexer` makes a single forward pass
over the serialized document and produces two much smaller products:

* a *description*: every member of the ``describes`` object except ``aggregates``, and
* an *index*: a map from each aggregated resource's identifier to the byte offset of
  the opening brace of its JSON object within the document.

With these, an :py:class:`~sead.refrepo.ore.reader.IndexedReader` can later pull out
individual resources without parsing the document in full.  Note that offsets are
positions within one specific serialization of the document.
"""
import os, re, json, logging, bisect
from collections import OrderedDict
from collections.abc import Mapping

from ..constants import ID, IDENTIFIER, DESCRIBES, AGGREGATES
from ..exceptions import ParseError
from ..utils.io import write_atomically
from ..utils.logging import blab
from . import syslog

__all__ = [ 'JSONTokenScanner', 'OREIndex', 'StreamingIndexer', 'index_document' ]

DEF_BUFSIZE = 1024 * 1024

_STRUCT = re.compile(rb'["{}\[\]]')
_STR_SPECIAL = re.compile(rb'["\\]')
_SCALAR_END = re.compile(rb'[\s,:\]}]')
_WS = b' \t\r\n'

class JSONTokenScanner(object):
    """
    a forward-only scanner over a binary stream of JSON data that tracks the absolute
    byte offset of its current position.  It can step through the members of objects
    and the elements of arrays, skip over whole values without building them, and
    parse individual values on demand.  Only as much of the stream is held in memory as
    is needed to parse the value currently being read.
    """

    def __init__(self, stream, source=None, bufsize=DEF_BUFSIZE):
        """
        :param stream:   a binary file-like object open for reading
        :param str source:  a name for the stream, used in error messages
        :param int bufsize: the number of bytes to read from the stream at a time
        """
        self._strm = stream
        self.source = source
        self._bufsize = bufsize
        self._buf = b''
        self._pos = 0
        self._base = 0
        self._eof = False
        self._capture = None
        self._capfrom = 0

    @property
    def offset(self) -> int:
        """the absolute byte offset of the scanner's current position"""
        return self._base + self._pos

    def _fill(self):
        if self._eof:
            return False
        data = self._strm.read(self._bufsize)
        if not data:
            self._eof = True
            return False
        if self._capture is not None:
            self._capture += self._buf[self._capfrom:self._pos]
            self._capfrom = 0
        self._base += self._pos
        self._buf = self._buf[self._pos:] + data
        self._pos = 0
        return True

    def _error(self, msg, offset=None):
        if offset is None:
            offset = self.offset
        return ParseError("{0}: {1} (at byte {2})".format(self.source or "JSON stream", msg, offset),
                          source=self.source, offset=offset)

    def peek(self):
        """
        skip over any whitespace and return the next byte (as a bytes object of length 1)
        without consuming it, or None if the end of the stream was reached.
        """
        while True:
            buf = self._buf
            n = len(buf)
            p = self._pos
            while p < n and buf[p] in _WS:
                p += 1
            self._pos = p
            if p < n:
                return buf[p:p+1]
            if not self._fill():
                return None

    def _take(self):
        c = self.peek()
        if c is None:
            raise self._error("unexpected end of document")
        self._pos += 1
        return c

    def expect(self, token: bytes):
        """
        consume the next non-whitespace byte, requiring it to be the given token
        :raise ParseError:  if the next byte is something else
        """
        off = self.offset
        c = self._take()
        if c != token:
            raise self._error("expected '{0}' but found '{1}'".format(token.decode(), c.decode('latin-1')),
                              off)

    def skip_value(self):
        """
        consume the next JSON value without parsing it
        """
        c = self.peek()
        if c is None:
            raise self._error("unexpected end of document; value expected")
        if c == b'"':
            self._skip_string()
        elif c == b'{' or c == b'[':
            self._skip_container()
        elif c in (b'}', b']', b',', b':'):
            raise self._error("unexpected '{0}' where a value was expected".format(c.decode()))
        else:
            self._skip_scalar()

    def _skip_string(self):
        self._pos += 1
        while True:
            m = _STR_SPECIAL.search(self._buf, self._pos)
            if not m:
                self._pos = len(self._buf)
                if not self._fill():
                    raise self._error("unterminated string")
                continue
            i = m.start()
            if self._buf[i:i+1] == b'"':
                self._pos = i + 1
                return
            # a backslash escape; make sure the escaped character is buffered
            if i + 1 >= len(self._buf):
                self._pos = i
                if not self._fill():
                    raise self._error("unterminated string")
                continue
            self._pos = i + 2

    def _skip_container(self):
        self._pos += 1
        depth = 1
        while True:
            m = _STRUCT.search(self._buf, self._pos)
            if not m:
                self._pos = len(self._buf)
                if not self._fill():
                    raise self._error("unexpected end of document inside an object or array")
                continue
            i = m.start()
            c = self._buf[i:i+1]
            if c == b'"':
                self._pos = i
                self._skip_string()
            elif c == b'{' or c == b'[':
                depth += 1
                self._pos = i + 1
            else:
                depth -= 1
                self._pos = i + 1
                if depth == 0:
                    return

    def _skip_scalar(self):
        start = self.offset
        while True:
            m = _SCALAR_END.search(self._buf, self._pos)
            if m:
                self._pos = m.start()
                break
            self._pos = len(self._buf)
            if not self._fill():
                break
        if self.offset == start:
            raise self._error("empty value", start)

    def read_value(self):
        """
        consume and return the next JSON value, parsed into Python data (objects become
        OrderedDicts).
        """
        if self.peek() is None:
            raise self._error("unexpected end of document; value expected")
        start = self.offset
        self._capture = bytearray()
        self._capfrom = self._pos
        try:
            self.skip_value()
            self._capture += self._buf[self._capfrom:self._pos]
            raw = bytes(self._capture)
        finally:
            self._capture = None
        try:
            return json.loads(raw.decode('utf-8'), object_pairs_hook=OrderedDict)
        except ValueError as ex:
            raise ParseError(source=self.source, offset=start, cause=ex)

    def iter_members(self):
        """
        iterate over the members of the JSON object starting at the current position,
        yielding each member's name.  When control returns to this iterator, the caller
        must have consumed the member's value (via :py:meth:`skip_value` or
        :py:meth:`read_value`).
        """
        self.expect(b'{')
        if self.peek() == b'}':
            self._pos += 1
            return
        while True:
            if self.peek() != b'"':
                raise self._error("expected a member name")
            name = self.read_value()
            self.expect(b':')
            yield name
            off = self.offset
            c = self._take()
            if c == b'}':
                return
            if c != b',':
                raise self._error("expected ',' or '}' after member value", off)

    def iter_elements(self):
        """
        iterate over the elements of the JSON array starting at the current position,
        yielding the byte offset at which each element begins.  When control returns to
        this iterator, the caller must have consumed the element.
        """
        self.expect(b'[')
        if self.peek() == b']':
            self._pos += 1
            return
        while True:
            self.peek()
            yield self.offset
            off = self.offset
            c = self._take()
            if c == b']':
                return
            if c != b',':
                raise self._error("expected ',' or ']' after array element", off)

class OREIndex(object):
    """
    a map of aggregated resource identifiers to the byte offsets where their JSON
    objects begin in a serialized ORE map, along with the total length of that
    serialization.
    """

    def __init__(self, entries: Mapping=None, length: int=None):
        """
        :param Mapping entries:  the identifier-to-offset map
        :param int      length:  the total length of the indexed document in bytes
        """
        self.entries = OrderedDict(entries or [])
        self.length = length
        self._offsets = None

    def __contains__(self, id):
        return id in self.entries

    def __len__(self):
        return len(self.entries)

    def add(self, id, offset) -> bool:
        """
        add an entry, unless the identifier is already indexed
        :return:  True if the entry was added
        """
        if id in self.entries:
            return False
        self.entries[id] = offset
        self._offsets = None
        return True

    def offset_of(self, id) -> int:
        """return the offset for an identifier or None if it is not indexed"""
        return self.entries.get(id)

    def estimate_length(self, id) -> int:
        """
        return the estimated number of bytes occupied by the resource with the given
        identifier: the distance to the next larger offset in the index, or to the end of
        the document for the last resource.
        """
        off = self.entries[id]
        if self._offsets is None:
            self._offsets = sorted(set(self.entries.values()))
        i = bisect.bisect_right(self._offsets, off)
        if i < len(self._offsets):
            return self._offsets[i] - off
        if self.length is None:
            raise ParseError("Document length unknown; unable to estimate size of last resource")
        return self.length - off

    def to_json(self):
        return OrderedDict([("length", self.length), ("entries", self.entries)])

    @classmethod
    def from_json(cls, data: Mapping):
        if "entries" in data:
            return cls(data["entries"], data.get("length"))
        # a flat map of identifiers to offsets
        return cls(data)

    def save(self, path):
        write_atomically(path, lambda fd: json.dump(self.to_json(), fd))

    @classmethod
    def load(cls, path, doclength=None):
        """
        read a persisted index.  If the index does not record the document length,
        ``doclength`` is used.
        """
        try:
            with open(path) as fd:
                out = cls.from_json(json.load(fd, object_pairs_hook=OrderedDict))
        except ValueError as ex:
            raise ParseError("Unable to parse index file, {0}: {1}".format(path, str(ex)),
                             cause=ex, source=path)
        if out.length is None:
            out.length = doclength
        return out

class StreamingIndexer(object):
    """
    a class that builds the description and index for a serialized ORE map in a single
    forward pass over the document.

    Each aggregated resource is indexed under its ``@id``; if its ``Identifier`` differs,
    it is indexed under that as well.  A resource with neither is skipped (with a
    warning) and cannot be retrieved via the index.  If an identifier appears more than
    once, only the first occurrence is indexed.

    This class recognizes the following configuration parameters:

    :param int bufsize:  the number of bytes to read from the document at a time
    """

    def __init__(self, config: Mapping=None, log: logging.Logger=None):
        if config is None:
            config = {}
        self.cfg = config
        if not log:
            log = syslog.getChild("indexer")
        self.log = log

    def index(self, stream, source=None, descfile=None, indexfile=None):
        """
        index the ORE map that can be read from the given stream.

        :param stream:       a binary file-like object positioned at the start of the document
        :param str source:   a name for the document (for messages)
        :param str descfile: if provided, write the description as JSON to this file path
        :param str indexfile: if provided, write the index as JSON to this file path
        :return:  a 2-tuple containing the description (an OrderedDict) and the
                  :py:class:`OREIndex`
        :raise ParseError:  if the document is not well-formed where it was examined
        """
        scanner = JSONTokenScanner(stream, source, self.cfg.get('bufsize', DEF_BUFSIZE))
        if scanner.peek() != b'{':
            raise ParseError("{0}: document is not a JSON object".format(source or "ORE map"),
                             source=source, offset=scanner.offset)

        desc = None
        index = OREIndex()
        for name in scanner.iter_members():
            if name == DESCRIBES and desc is None:
                desc = self._index_describes(scanner, index)
            else:
                scanner.skip_value()

        if scanner.peek() is not None:
            raise ParseError("{0}: unexpected content after end of document".format(source or "ORE map"),
                             source=source, offset=scanner.offset)
        if desc is None:
            raise ParseError("{0}: document has no describes object".format(source or "ORE map"),
                             source=source)

        index.length = scanner.offset
        self.log.debug("Indexed %d aggregated resources in %s (%d bytes)",
                       len(index), source or "document", index.length)

        if descfile:
            write_atomically(descfile, lambda fd: json.dump(desc, fd))
        if indexfile:
            index.save(indexfile)

        return (desc, index)

    def _index_describes(self, scanner, index):
        if scanner.peek() != b'{':
            raise ParseError("describes is not a JSON object", source=scanner.source,
                             offset=scanner.offset)
        desc = OrderedDict()
        for name in scanner.iter_members():
            if name == AGGREGATES:
                self._index_aggregates(scanner, index)
            else:
                desc[name] = scanner.read_value()
        return desc

    def _index_aggregates(self, scanner, index):
        if scanner.peek() != b'[':
            raise ParseError("aggregates is not a JSON array", source=scanner.source,
                             offset=scanner.offset)
        for offset in scanner.iter_elements():
            if scanner.peek() != b'{':
                raise ParseError("expected an object in aggregates list", source=scanner.source,
                                 offset=offset)
            ids = self._read_ids(scanner)
            if not ids:
                self.log.warning("Aggregated resource at byte %d has no identifier; skipping", offset)
                continue
            for id in ids:
                if not index.add(id, offset):
                    self.log.warning("Duplicate identifier in aggregates (keeping first): %s", id)
            blab(self.log, "Indexed %s at %d", ids[0], offset)

    def _read_ids(self, scanner):
        # collect the identifier fields of an aggregated resource, skipping all else
        ids = []
        for name in scanner.iter_members():
            if name == ID or name == IDENTIFIER:
                val = scanner.read_value()
                if isinstance(val, str) and val and val not in ids:
                    if name == ID:
                        ids.insert(0, val)
                    else:
                        ids.append(val)
            else:
                scanner.skip_value()
        return ids

def index_document(docpath, descpath=None, indexpath=None, config=None, log=None):
    """
    index the ORE map in the given file, writing the description and index to the
    given paths.

    :return:  a 2-tuple containing the description and the :py:class:`OREIndex`
    """
    with open(docpath, 'rb') as fd:
        return StreamingIndexer(config, log).index(fd, os.path.basename(docpath), descpath, indexpath)
