"""
Support for aggregation documents (ORE maps): indexing them for random access, reading
individual resources from them, and rewriting the links they contain.
"""
from .. import system as _sys

syslog = _sys.getSysLogger().getChild("ore")

from .index import JSONTokenScanner, OREIndex, StreamingIndexer, index_document
from .reader import ForwardCursor, IndexedReader
from .links import LinkRewriter, NoOpLinkRewriter, ReferenceLinkRewriter, RelocatingLinkRewriter
