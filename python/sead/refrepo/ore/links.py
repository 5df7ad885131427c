"""
Rewriting of the URLs embedded in an ORE map.

When an aggregation is packaged into a bag, the links in its ORE map (the document's own
URL, the aggregation's URL, and the content URL of each data file) still point into the
source system.  A :py:class:`LinkRewriter` converts them into links that resolve to the
copies held by this repository.
"""
from abc import ABCMeta, abstractmethod
from collections.abc import Mapping
from urllib.parse import quote, unquote

from ..constants import OREMAP_FILE, DATA_DIR

__all__ = [ 'LinkRewriter', 'NoOpLinkRewriter', 'ReferenceLinkRewriter', 'RelocatingLinkRewriter' ]

class LinkRewriter(object, metaclass=ABCMeta):
    """
    an interface for converting source-system links in an ORE map into repository links
    """

    @abstractmethod
    def rewrite_oremap_link(self, link: str, bagid: str) -> str:
        """
        return the new URL for the ORE map document itself
        :param str link:   the current URL
        :param str bagid:  the identifier of the aggregation being packaged
        """
        raise NotImplementedError()

    @abstractmethod
    def rewrite_aggregation_link(self, link: str, bagid: str) -> str:
        """
        return the new URL for the aggregation described by the ORE map
        """
        raise NotImplementedError()

    @abstractmethod
    def rewrite_data_link(self, link: str, resid: str, bagid: str, relpath: str) -> str:
        """
        return the new URL for a data file's content
        :param str   link:  the current content URL (``similarTo``)
        :param str  resid:  the identifier of the data resource
        :param str  bagid:  the identifier of the aggregation being packaged
        :param str relpath: the path to the file relative to the bag's data directory
        """
        raise NotImplementedError()

class NoOpLinkRewriter(LinkRewriter):
    """
    a LinkRewriter that leaves all links unchanged
    """
    def rewrite_oremap_link(self, link, bagid):
        return link
    def rewrite_aggregation_link(self, link, bagid):
        return link
    def rewrite_data_link(self, link, resid, bagid, relpath):
        return link

class ReferenceLinkRewriter(LinkRewriter):
    """
    a LinkRewriter that points links at this repository's read interface.  Given a base
    URL (e.g. ``https://repo.example.org/api/researchobjects/``), the links become:

    * ORE map:      ``<base><bagid>/meta/oremap.jsonld.txt``
    * aggregation:  ``<base><bagid>/meta/oremap.jsonld.txt#aggregation``
    * data file:    ``<base><bagid>/data/<relpath>`` with the path's slashes encoded
    """

    def __init__(self, base: str):
        if not base.endswith('/'):
            base += '/'
        self.base = base

    def _bagbase(self, bagid):
        return self.base + quote(bagid, safe='')

    def rewrite_oremap_link(self, link, bagid):
        return self._bagbase(bagid) + "/meta/" + OREMAP_FILE

    def rewrite_aggregation_link(self, link, bagid):
        return self.rewrite_oremap_link(link, bagid) + "#aggregation"

    def rewrite_data_link(self, link, resid, bagid, relpath):
        return self._bagbase(bagid) + "/" + DATA_DIR + "/" + quote(relpath, safe='')

class RelocatingLinkRewriter(LinkRewriter):
    """
    a LinkRewriter that moves the links of an already published aggregation to a new
    server.  Two styles of link are recognized:

    * repository links (containing ``/api/researchobjects/``): everything before that
      path is replaced with the new base;
    * source-system links (containing ``/resteasy/researchobjects/<bagid>/files/<id>``):
      the file identifier is looked up in the bag's identifier-to-path map and the link
      is replaced with a repository link to that path.

    Within the resulting ``data/`` path, slashes are encoded.  Links in an older form
    ending in ``oremap`` are converted to refer to ``meta/oremap.jsonld.txt``.  Other
    links are left unchanged.
    """
    API_PATH = "/api/researchobjects/"
    SOURCE_PATH = "/resteasy/researchobjects/"

    def __init__(self, base: str, pidmap: Mapping=None):
        """
        :param str   base:  the base URL of the new server (e.g. ``https://repo.example.org``)
        :param Mapping pidmap:  a map of resource identifiers to paths within the bag
        """
        self.base = base.rstrip('/')
        if pidmap is None:
            pidmap = {}
        self.pidmap = pidmap

    @staticmethod
    def _encode_data_path(path):
        off = path.find("/" + DATA_DIR + "/")
        if off < 0:
            return path
        off += len(DATA_DIR) + 2
        return path[:off] + path[off:].replace("/", "%2F")

    def relocate(self, location: str) -> str:
        """
        return the link converted to refer to the new server
        """
        if not location:
            return location
        out = location
        if self.SOURCE_PATH in location:
            rest = location[location.index(self.SOURCE_PATH) + len(self.SOURCE_PATH):]
            bagid = rest.split('/', 1)[0]
            fid = rest.split("/files/", 1)[-1].split("?", 1)[0]
            path = self.pidmap.get(unquote(fid))
            if path is not None:
                off = path.find("/" + DATA_DIR + "/")
                if off >= 0:
                    path = path[off:]
                out = self.base + self.API_PATH + bagid + self._encode_data_path(path)
        elif self.API_PATH in location:
            out = self.base + self._encode_data_path(location[location.index(self.API_PATH):])

        if out.endswith("oremap"):
            out = out[:-len("oremap")] + "meta/" + OREMAP_FILE
        elif out.endswith("oremap#aggregation"):
            out = out[:-len("oremap#aggregation")] + "meta/" + OREMAP_FILE + "#aggregation"
        return out

    def rewrite_oremap_link(self, link, bagid):
        return self.relocate(link)

    def rewrite_aggregation_link(self, link, bagid):
        return self.relocate(link)

    def rewrite_data_link(self, link, resid, bagid, relpath):
        return self.relocate(link)
