"""
Random-access reading of resources from a large, previously indexed ORE map.

The :py:class:`IndexedReader` uses the index built by
:py:class:`~sead.refrepo.ore.index.StreamingIndexer` to pull individual aggregated
resources (optionally with their direct children) out of the serialized document.  The
document is read through a :py:class:`ForwardCursor`, which only moves forward; a lookup
of a resource located before the cursor's current position forces the cursor to start
over from the beginning of the document.  Reads are therefore cheapest when resources
are requested in the order they appear in the document (which is normally the order in
which they are listed in their parents' ``Has Part`` lists).

A reader (and its cursor) is not thread-safe; concurrent reads of the same document
should each use their own reader.
"""
import os, json, logging
from collections import OrderedDict
from collections.abc import Mapping, Callable

from ..constants import HAS_PART, HAS_PART_ALT, AGGREGATES
from ..exceptions import ParseError, NotFoundError
from ..model import as_list
from ..utils.logging import blab
from .index import OREIndex, StreamingIndexer
from . import syslog

__all__ = [ 'ForwardCursor', 'IndexedReader' ]

DEF_SKIP_CHUNK = 1024 * 1024

class ForwardCursor(object):
    """
    a cursor over a byte stream that can only move forward.  Moving to a position
    before the current one requires a :py:meth:`reset` to the start of the stream; the
    number of resets performed is tracked in :py:attr:`reset_count`.
    """

    def __init__(self, opener: Callable, log: logging.Logger=None):
        """
        :param Callable opener:  a function that takes no arguments and returns a newly
                                 opened binary stream positioned at the start of the document
        :param Logger log:       the logger to send messages to
        """
        self._open = opener
        self._strm = None
        self._pos = 0
        self.reset_count = 0
        if not log:
            log = syslog.getChild("cursor")
        self.log = log

    def _stream(self):
        if self._strm is None:
            self._strm = self._open()
            self._pos = 0
        return self._strm

    def current_position(self) -> int:
        """the byte offset of the next byte that will be read"""
        return self._pos

    def reset(self):
        """
        return the cursor to the start of the document by re-opening the stream
        """
        self.close()
        self.reset_count += 1
        self._stream()

    def skip_to(self, offset: int):
        """
        move the cursor to the given absolute byte offset.  If the offset is behind the
        current position, the cursor is first reset to the start of the document.
        :raise ParseError:  if the end of the document is reached before the offset
        """
        if offset < self._pos:
            self.log.warning("Backwards jump from byte %d to %d; resetting stream", self._pos, offset)
            self.reset()

        strm = self._stream()
        remaining = offset - self._pos
        if remaining <= 0:
            return
        if strm.seekable():
            strm.seek(remaining, os.SEEK_CUR)
            self._pos = offset
            return
        while remaining > 0:
            data = strm.read(min(remaining, DEF_SKIP_CHUNK))
            if not data:
                raise ParseError("End of document reached at byte {0} while skipping to {1}"
                                 .format(self._pos, offset), offset=self._pos)
            self._pos += len(data)
            remaining -= len(data)

    def read(self, size: int) -> bytes:
        """
        read up to ``size`` bytes from the current position, advancing the cursor.
        Fewer bytes are returned only if the end of the document is reached.
        """
        strm = self._stream()
        chunks = []
        remaining = size
        while remaining > 0:
            data = strm.read(remaining)
            if not data:
                break
            chunks.append(data)
            remaining -= len(data)
        out = b''.join(chunks)
        self._pos += len(out)
        return out

    def close(self):
        if self._strm is not None:
            self._strm.close()
            self._strm = None
        self._pos = 0

    def __enter__(self):
        return self

    def __exit__(self, e1, e2, e3):
        self.close()
        return False

class IndexedReader(object):
    """
    a reader for retrieving individual aggregated resources from an indexed ORE map.

    The index (and description) are loaded lazily on first use and cached for the life
    of the reader.  If index files are not provided, the document is indexed on first
    use (an expensive, full pass over the document).
    """

    def __init__(self, docpath: str, indexpath: str=None, descpath: str=None,
                 log: logging.Logger=None):
        """
        :param str docpath:    the path to the serialized ORE map
        :param str indexpath:  the path to the persisted index for the document
        :param str descpath:   the path to the persisted description for the document
        :param Logger log:     the logger to send messages to
        """
        self.docpath = docpath
        self.indexpath = indexpath
        self.descpath = descpath
        if not log:
            log = syslog.getChild("reader")
        self.log = log
        self._index = None
        self._desc = None
        self.cursor = ForwardCursor(lambda: open(self.docpath, 'rb'), self.log)
        self._decoder = json.JSONDecoder(object_pairs_hook=OrderedDict)

    @property
    def index(self) -> OREIndex:
        """the index for the document, loaded on first access"""
        if self._index is None:
            self._load()
        return self._index

    @property
    def reset_count(self) -> int:
        """the number of times the cursor had to restart from the beginning of the document"""
        return self.cursor.reset_count

    def _load(self):
        doclen = os.stat(self.docpath).st_size
        if self.indexpath and os.path.exists(self.indexpath):
            self._index = OREIndex.load(self.indexpath, doclen)
            if self.descpath and os.path.exists(self.descpath):
                with open(self.descpath) as fd:
                    self._desc = json.load(fd, object_pairs_hook=OrderedDict)
        if self._index is None or self._desc is None:
            self.log.info("Indexing %s", self.docpath)
            with open(self.docpath, 'rb') as fd:
                (self._desc, self._index) = \
                    StreamingIndexer(log=self.log).index(fd, os.path.basename(self.docpath),
                                                         self.descpath, self.indexpath)

    def get_description(self) -> Mapping:
        """
        return the description of the aggregation: all of its metadata except its list
        of aggregated resources.
        """
        if self._desc is None:
            self._load()
        return OrderedDict(self._desc)

    def get_aggregation_summary(self) -> Mapping:
        """
        return the description of the aggregation with its direct children resolved into
        its ``aggregates`` list.
        """
        out = self.get_description()
        return self._attach_children(out, True)

    def get_item(self, id: str, with_children: bool=False) -> Mapping:
        """
        return the JSON description of the aggregated resource with the given identifier.

        :param str            id:  the identifier of the resource
        :param bool with_children:  if True and the resource is a container, its direct
                                    children are resolved and attached as ``aggregates``
        :raise NotFoundError:  if the identifier is not in the index
        :raise ParseError:     if the bytes at the indexed location cannot be parsed as
                               a complete object (e.g. the index does not match the document)
        """
        index = self.index
        offset = index.offset_of(id)
        if offset is None:
            raise NotFoundError(id)
        size = index.estimate_length(id)

        self.cursor.skip_to(offset)
        data = self.cursor.read(size)
        if len(data) < size:
            self.log.error("Short read for %s: expected %d bytes, got %d", id, size, len(data))
            raise ParseError("Index does not match document: short read for " + id,
                             source=self.docpath, offset=offset)
        blab(self.log, "Read %d bytes for %s at %d", size, id, offset)

        try:
            (out, end) = self._decoder.raw_decode(data.decode('utf-8'))
        except (ValueError, UnicodeDecodeError) as ex:
            self.log.error("Unable to parse item %s at byte %d: %s", id, offset, str(ex))
            raise ParseError(source=self.docpath, offset=offset, cause=ex)
        if not isinstance(out, Mapping):
            raise ParseError("Indexed item is not a JSON object: " + id, source=self.docpath,
                             offset=offset)

        return self._attach_children(out, with_children)

    def _attach_children(self, node, with_children):
        children = node.get(HAS_PART, node.get(HAS_PART_ALT))
        if with_children and children is not None:
            node[AGGREGATES] = [self.get_item(c, False) for c in as_list(children)]
        elif AGGREGATES in node:
            del node[AGGREGATES]
        return node

    def close(self):
        self.cursor.close()

    def __enter__(self):
        return self

    def __exit__(self, e1, e2, e3):
        self.close()
        return False
