"""
The on-disk store of published bags and the read operations served from it.

Each published aggregation is stored as a zipped bag, ``<bagroot>.zip``, in a
directory determined by the SHA-1 hash of its identifier (see
:py:func:`~sead.refrepo.constants.bag_dir_for`).  Next to the bag, the store keeps three
cached files that support random access to the aggregation's ORE map without reading it
in full:

* ``<bagroot>.oremap.jsonld.txt``:  the ORE map, extracted from the bag;
* ``<bagroot>.desc.json``:  the aggregation's description (its metadata without the
  list of aggregated resources);
* ``<bagroot>.index.json``:  the byte-offset index of the aggregated resources.

These are created on first use and removed whenever the bag is replaced or changed.
"""
import os, json, shutil, zipfile, logging
from collections import OrderedDict
from collections.abc import Mapping
from typing import List, Tuple

import filelock

from .constants import *
from .exceptions import NotFoundError, ConfigurationException
from .model import AggregationDocument
from .ore import IndexedReader, LinkRewriter, RelocatingLinkRewriter, index_document
from .bagit.content import ZipMemberStream
from .utils import write_atomically
from .utils.logging import blab
from . import system

__all__ = [ 'RefRepositoryStore' ]

COPY_CHUNK_SIZE = 1024 * 1024

class RefRepositoryStore(object):
    """
    an interface to the repository's store of published bags.

    This class recognizes the following configuration parameters:

    :param str data_root:  (required) the root directory of the store
    """

    def __init__(self, config: Mapping, log: logging.Logger=None):
        if not config or not config.get('data_root'):
            raise ConfigurationException("Missing required config parameter: data_root")
        self.cfg = config
        self.root = self.cfg['data_root']
        if not log:
            log = system.getSysLogger().getChild("store")
        self.log = log

    def get_data_path(self, id: str) -> str:
        """return the directory where the bag for the given aggregation is stored"""
        return bag_dir_for(self.root, id)

    def get_bag_name_root(self, id: str) -> str:
        """return the name of the bag for the given aggregation"""
        return bag_name_for(id)

    def _path(self, id, ext):
        return os.path.join(self.get_data_path(id), self.get_bag_name_root(id) + ext)

    def get_bag_file(self, id: str) -> str:
        """
        return the path to the zipped bag for the given aggregation
        :raise NotFoundError:  if the bag does not exist
        """
        bagfile = self._path(id, ".zip")
        if not os.path.isfile(bagfile):
            raise NotFoundError(id, "No publication found with identifier " + id)
        return bagfile

    def exists(self, id: str) -> bool:
        """return True if a bag exists for the given aggregation"""
        return os.path.isfile(self._path(id, ".zip"))

    def _lock(self, id):
        return filelock.FileLock(self._path(id, ".zip.lock"))

    def ensure_index(self, id: str) -> Tuple[str, str, str]:
        """
        make sure the cached ORE map, description, and index exist for the given
        aggregation, creating them if necessary.

        :return:  a 3-tuple of the paths to the cached ORE map, description, and index
        :raise NotFoundError:  if the bag does not exist
        :raise ParseError:     if the ORE map cannot be indexed
        """
        bagfile = self.get_bag_file(id)
        mapfile = self._path(id, OREMAP_CACHE_EXT)
        descfile = self._path(id, DESC_CACHE_EXT)
        indexfile = self._path(id, INDEX_CACHE_EXT)

        if self._cache_current(bagfile, (mapfile, descfile, indexfile)):
            return (mapfile, descfile, indexfile)

        with self._lock(id):
            if not self._cache_current(bagfile, (mapfile, descfile, indexfile)):
                self.log.info("Creating description and index files for %s", id)
                self._extract_oremap(id, bagfile, mapfile)
                index_document(mapfile, descfile, indexfile, log=self.log)
                self.log.debug("Created desc/index files for %s", id)

        return (mapfile, descfile, indexfile)

    def _cache_current(self, bagfile, cachefiles):
        bagtime = os.stat(bagfile).st_mtime
        for f in cachefiles:
            if not os.path.exists(f) or os.stat(f).st_mtime < bagtime:
                return False
        return True

    def _extract_oremap(self, id, bagfile, mapfile):
        member = self.get_bag_name_root(id) + "/" + OREMAP_FILE
        try:
            with zipfile.ZipFile(bagfile) as zf:
                with zf.open(member) as src:
                    write_atomically(mapfile, lambda fd: shutil.copyfileobj(src, fd, COPY_CHUNK_SIZE), 'wb')
        except KeyError as ex:
            raise NotFoundError(id, "Bag for %s has no %s" % (id, OREMAP_FILE), cause=ex)

    def invalidate(self, id: str):
        """
        remove the cached files for the given aggregation so that they will be recreated
        from the current bag
        """
        for ext in (OREMAP_CACHE_EXT, DESC_CACHE_EXT, INDEX_CACHE_EXT):
            path = self._path(id, ext)
            if os.path.exists(path):
                os.remove(path)
                blab(self.log, "Removed %s", path)

    def open_reader(self, id: str) -> IndexedReader:
        """
        return a reader for the ORE map of the given aggregation.  The caller should
        close the reader when done with it.
        """
        (mapfile, descfile, indexfile) = self.ensure_index(id)
        return IndexedReader(mapfile, indexfile, descfile, log=self.log.getChild("reader"))

    def get_aggregation_summary(self, id: str) -> Mapping:
        """
        return the description of the aggregation with its direct children listed in
        its ``aggregates`` property
        :raise NotFoundError:  if the aggregation does not exist
        """
        with self.open_reader(id) as rdr:
            return rdr.get_aggregation_summary()

    def get_item(self, id: str, child_id: str) -> Mapping:
        """
        return the description of one resource within an aggregation; if the resource
        is a container, its direct children are listed in its ``aggregates`` property.
        :raise NotFoundError:  if the aggregation or the resource does not exist
        """
        with self.open_reader(id) as rdr:
            return rdr.get_item(child_id, True)

    def get_raw_archive(self, id: str):
        """
        return an open binary file for reading the zipped bag
        :raise NotFoundError:  if the aggregation does not exist
        """
        return open(self.get_bag_file(id), 'rb')

    def _open_member(self, id, member):
        bagfile = self.get_bag_file(id)
        zf = zipfile.ZipFile(bagfile)
        try:
            zf.getinfo(member)
        except KeyError as ex:
            zf.close()
            raise NotFoundError(id, "%s: file not found in publication %s" % (member, id), cause=ex)
        return ZipMemberStream(zf, member)

    def get_file(self, id: str, relpath: str):
        """
        return an open stream for reading a data file from the bag
        :param str relpath:  the path to the file relative to the bag's data directory
        :raise NotFoundError:  if the aggregation or the file does not exist
        """
        return self._open_member(id, "%s/%s/%s" % (self.get_bag_name_root(id), DATA_DIR,
                                                   relpath.lstrip('/')))

    def get_metadata_file(self, id: str, relpath: str):
        """
        return an open stream for reading a metadata (tag) file from the bag, such as
        ``bag-info.txt`` or ``oremap.jsonld.txt``
        :param str relpath:  the path to the file relative to the bag's root directory
        :raise ValueError:     if the path refers into the data directory
        :raise NotFoundError:  if the aggregation or the file does not exist
        """
        if relpath.lstrip('/').startswith(DATA_DIR):
            raise ValueError("Data files cannot be requested as metadata: " + relpath)
        return self._open_member(id, self.get_bag_name_root(id) + "/" + relpath.lstrip('/'))

    def get_manifest(self, id: str) -> List[Tuple[str, str]]:
        """
        return the mapping of resource identifiers to paths within the bag as a list of
        (identifier, path) pairs, in the order recorded in the bag
        :raise NotFoundError:  if the aggregation does not exist
        """
        with self.get_metadata_file(id, PID_MAPPING_TXT) as fd:
            text = fd.read().decode('utf-8')
        out = []
        for line in text.splitlines():
            if ' ' in line:
                (rid, path) = line.split(' ', 1)
                out.append((rid, path.strip()))
        return out

    def render_manifest(self, id: str) -> str:
        """
        return the identifier-to-path mapping as a plain-text table
        """
        manifest = self.get_manifest(id)
        width = max([len(rid) for rid, path in manifest] + [len("Identifier")])
        lines = ["{0:<{w}}  {1}".format("Identifier", "Path", w=width),
                 "{0:<{w}}  {1}".format("-" * len("Identifier"), "----", w=width)]
        lines += ["{0:<{w}}  {1}".format(rid, path, w=width) for rid, path in manifest]
        return "\n".join(lines) + "\n"

    def move(self, id: str, new_base: str, rewriter: LinkRewriter=None) -> Mapping:
        """
        rewrite the links in a published aggregation's ORE map to refer to a new server.
        The ORE map inside the bag is replaced; all other files in the bag are copied
        unchanged.

        :param str       new_base:  the base URL of the new server
        :param LinkRewriter rewriter:  the rewriter to apply (default: a
                                    :py:class:`~sead.refrepo.ore.RelocatingLinkRewriter`)
        :return:  the updated ORE map
        :raise NotFoundError:  if the aggregation does not exist
        """
        bagfile = self.get_bag_file(id)
        bagname = self.get_bag_name_root(id)
        mapmember = bagname + "/" + OREMAP_FILE
        self.log.info("Moving publication %s to server %s", id, new_base)

        with self._lock(id):
            with zipfile.ZipFile(bagfile) as zf:
                try:
                    oremap = AggregationDocument(json.loads(zf.read(mapmember).decode('utf-8'),
                                                            object_pairs_hook=OrderedDict))
                except KeyError as ex:
                    raise NotFoundError(id, "Bag for %s has no %s" % (id, OREMAP_FILE), cause=ex)
                pidmap = OrderedDict()
                pidfile = bagname + "/" + PID_MAPPING_TXT
                if pidfile in zf.namelist():
                    for line in zf.read(pidfile).decode('utf-8').splitlines():
                        if ' ' in line:
                            (rid, path) = line.split(' ', 1)
                            pidmap[rid] = path.strip()

            if not rewriter:
                rewriter = RelocatingLinkRewriter(new_base, pidmap)
            self._relocate(oremap, id, rewriter)
            self._replace_member(bagfile, mapmember, json.dumps(oremap.data, indent=2).encode('utf-8'))
            self.invalidate(id)

        return oremap.data

    def _relocate(self, oremap, id, rewriter):
        agg = oremap.describes
        oremap.id = rewriter.rewrite_oremap_link(oremap.id, id)
        if agg.external_identifier:
            agg[EXTERNAL_IDENTIFIER] = agg.external_identifier.replace("dx.doi", "doi")
        agg.id = rewriter.rewrite_aggregation_link(agg.id, id)
        for res in agg.aggregates:
            if not res.is_container and res.similar_to:
                res.similar_to = rewriter.rewrite_data_link(res.similar_to, res.id, id, None)

    def _replace_member(self, bagfile, member, content):
        # rewrite the zip file with a new version of one member
        def copy(fd):
            with zipfile.ZipFile(bagfile) as zin, \
                 zipfile.ZipFile(fd, 'w', zipfile.ZIP_DEFLATED, allowZip64=True) as zout:
                for zi in zin.infolist():
                    out = zipfile.ZipInfo(zi.filename, zi.date_time)
                    out.compress_type = zi.compress_type
                    out.external_attr = zi.external_attr
                    if zi.filename == member:
                        zout.writestr(out, content)
                    elif zi.is_dir():
                        zout.writestr(out, b'')
                    else:
                        out.file_size = zi.file_size
                        with zin.open(zi) as src, zout.open(out, 'w') as dst:
                            shutil.copyfileobj(src, dst, COPY_CHUNK_SIZE)
        write_atomically(bagfile, copy, 'wb')
