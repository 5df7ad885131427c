"""
A scatter-gather writer for zip archives.

Retrieving the content of a bag's data files is slow (it usually involves network
transfers) and is done in parallel, but a zip archive must be written sequentially.  The
:py:class:`ScatterGatherArchive` dispatches the preparation of file entries to a bounded
pool of worker threads.  Each worker retrieves one file's content into a
:py:class:`~sead.refrepo.bagit.content.ContentSink`, which compresses it into its own
temporary file on disk, and returns an :py:class:`EntryResult`; workers never write to
the archive.  A single thread then merges everything into one archive: directory entries
first (in the order they were added), then metadata files, then the prepared file
entries in the order they completed.  The prepared entries are copied in without being
decompressed or recompressed.
"""
import time, logging, zipfile, shutil
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List

from ..utils.logging import blab
from .content import ContentSink
from . import syslog

__all__ = [ 'EntryResult', 'ScatterGatherArchive' ]

COPY_CHUNK_SIZE = 1024 * 1024

class EntryResult(object):
    """
    the outcome of preparing one file entry for the archive.

    :ivar str      arcname:  the path to the file within the archive
    :ivar         context:   data attached by the submitter (returned unchanged)
    :ivar ContentSink sink:  the prepared content (None if preparation failed)
    :ivar str       source:  where the content came from ("local" or "remote")
    :ivar Exception  error:  the error that prevented (or compromised) preparation
    """

    def __init__(self, arcname: str, context=None, sink=None, source=None, error: Exception=None):
        self.arcname = arcname
        self.context = context
        self.sink = sink
        self.source = source
        self.error = error

    @property
    def ok(self) -> bool:
        """True if content is available to be written to the archive"""
        return self.sink is not None

    @property
    def size(self) -> int:
        return (self.sink and self.sink.size) or 0

    def hexdigest(self) -> str:
        return self.sink and self.sink.hexdigest()

    def discard(self):
        if self.sink:
            self.sink.close()
            self.sink = None

class ScatterGatherArchive(object):
    """
    a zip archive assembled from directories and metadata added by the calling thread
    and file entries prepared in parallel by worker threads.

    Typical use:

    .. code-block:: python

       with ScatterGatherArchive(4) as arch:
           arch.add_directory("bag/data/")
           arch.submit(prepare_func, job)   # prepare_func returns an EntryResult
           for result in arch.gather():
               ...                           # update bookkeeping
           arch.add_metadata("bag/bagit.txt", text)
           arch.write("bag.zip")
    """

    def __init__(self, num_threads: int=1, compression: int=zipfile.ZIP_DEFLATED,
                 compresslevel: int=None, log: logging.Logger=None):
        """
        :param int num_threads:    the maximum number of worker threads
        :param int compression:    the zip compression method
        :param int compresslevel:  the compression level (None for the default)
        """
        self.num_threads = max(1, num_threads)
        self.compression = compression
        self.compresslevel = compresslevel
        if not log:
            log = syslog.getChild("writer")
        self.log = log

        self._dirs = []
        self._meta = []
        self._futures = []
        self._results = []
        self._pool = None
        self._gathered = False

    def add_directory(self, arcname: str):
        """
        add a directory entry; directories are written in the order they are added
        """
        if not arcname.endswith('/'):
            arcname += '/'
        self._dirs.append(arcname)

    def add_metadata(self, arcname: str, content):
        """
        add a (small) file with the given content; metadata files are written after the
        directories, in the order they are added.
        :param str arcname:  the path to the file within the archive
        :param str|bytes content:  the content of the file (str is encoded as UTF-8)
        """
        if isinstance(content, str):
            content = content.encode('utf-8')
        self._meta.append((arcname, content))

    def new_sink(self, algorithm: str="sha1", tmpdir: str=None) -> ContentSink:
        """
        return a ContentSink that prepares content with this archive's compression
        :param str algorithm:  the name of the hash algorithm to compute
        :param str tmpdir:     the directory for the sink's temporary file
        """
        return ContentSink(algorithm, tmpdir, self.compression == zipfile.ZIP_DEFLATED,
                           self.compresslevel)

    def submit(self, func: Callable, *args, **kw):
        """
        schedule a call to ``func`` on a worker thread.  The function must return an
        :py:class:`EntryResult`; it must not raise an exception.
        """
        if self._gathered:
            raise RuntimeError("Entries cannot be submitted after gathering")
        if not self._pool:
            self._pool = ThreadPoolExecutor(max_workers=self.num_threads,
                                            thread_name_prefix="bagwriter")
        fut = self._pool.submit(func, *args, **kw)
        self._futures.append(fut)
        return fut

    @property
    def submitted(self) -> int:
        return len(self._futures)

    def gather(self):
        """
        wait for all submitted entries to be prepared, yielding each
        :py:class:`EntryResult` as it completes.
        """
        if self._gathered:
            for res in self._results:
                yield res
            return
        try:
            for fut in as_completed(self._futures):
                res = fut.result()
                self._results.append(res)
                yield res
        finally:
            self._gathered = True
            if self._pool:
                self._pool.shutdown(wait=True)
                self._pool = None

    @property
    def results(self) -> List[EntryResult]:
        """the gathered results in completion order"""
        return list(self._results)

    def write(self, dest, date_time=None):
        """
        merge all entries into a zip file.  Any entries not yet gathered will be.

        :param str|file dest:  the path of the output file or a writable binary file object
        :param tuple date_time:  the timestamp to give all entries (default: now)
        :return:  the number of file entries written
        """
        if not self._gathered:
            for res in self.gather():
                pass
        if not date_time:
            date_time = time.localtime(time.time())[:6]

        count = 0
        with zipfile.ZipFile(dest, 'w', self.compression, allowZip64=True,
                             compresslevel=self.compresslevel) as zf:
            for arcname in self._dirs:
                zi = zipfile.ZipInfo(arcname, date_time)
                zi.external_attr = (0o40755 << 16) | 0x10
                zf.writestr(zi, b'')
            blab(self.log, "Wrote %d directory entries", len(self._dirs))

            for arcname, content in self._meta:
                zi = zipfile.ZipInfo(arcname, date_time)
                zi.compress_type = self.compression
                zi.external_attr = 0o644 << 16
                zf.writestr(zi, content)

            for res in self._results:
                if not res.ok:
                    continue
                self._copy_prepared(zf, res, date_time)
                count += 1
                blab(self.log, "Wrote %s", res.arcname)

        self.log.debug("Archive written with %d files", count)
        return count

    def _copy_prepared(self, zf, res, date_time):
        # append an entry whose bytes were already compressed by a worker
        sink = res.sink.finish()
        zi = zipfile.ZipInfo(res.arcname, date_time)
        zi.compress_type = sink.compress_type
        zi.external_attr = 0o644 << 16
        zi.file_size = sink.size
        zi.compress_size = sink.compressed_size
        zi.CRC = sink.crc
        zip64 = max(sink.size, sink.compressed_size) > zipfile.ZIP64_LIMIT

        zi.header_offset = zf.fp.tell()
        zf._writecheck(zi)
        zf._didModify = True
        zf.fp.write(zi.FileHeader(zip64))
        shutil.copyfileobj(sink.open_raw(), zf.fp, COPY_CHUNK_SIZE)
        zf.start_dir = zf.fp.tell()
        zf.filelist.append(zi)
        zf.NameToInfo[zi.filename] = zi

    def close(self):
        """
        release the temporary files of all prepared entries
        """
        if self._pool:
            self._pool.shutdown(wait=True)
            self._pool = None
        for res in self._results:
            res.discard()

    def __enter__(self):
        return self

    def __exit__(self, e1, e2, e3):
        self.close()
        return False
