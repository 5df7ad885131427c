"""
Retrieval of the content of the data files being packaged.

Content is obtained either from a local, content-addressed cache (e.g. a previously
published bag of the same aggregation) or by fetching it from its source URL.  A
:py:class:`ContentResolver` prefers the local cache, falling back to a remote fetch with
retries.  Retrieved bytes are written to a :py:class:`ContentSink`, which compresses them into a
temporary file on disk, ready to be copied into a zip archive, and computes their hash
on the way through.
"""
import time, hashlib, logging, zipfile, tempfile, shutil, zlib
from abc import ABCMeta, abstractmethod
from collections.abc import Mapping

import requests

from ..constants import HASH_ALGORITHMS, HASH_TYPES, MANIFEST_TMPL
from ..exceptions import RetrievalError, ConfigurationException, StateException
from ..utils.logging import blab
from . import syslog

__all__ = [ 'RetryPolicy', 'ContentSink', 'LocalContentCache', 'BagContentCache', 'RemoteFetcher',
            'ContentResolver', 'ZipMemberStream', 'LOCAL', 'REMOTE' ]

LOCAL = "local"
REMOTE = "remote"

DEF_CHUNK_SIZE = 64 * 1024
DEF_TIMEOUT = 60

# errors that will not go away by trying again
_NO_RETRY = (requests.exceptions.InvalidURL, requests.exceptions.MissingSchema,
             requests.exceptions.InvalidSchema, requests.exceptions.InvalidHeader,
             requests.exceptions.URLRequired, requests.exceptions.TooManyRedirects)

class RetryPolicy(object):
    """
    the policy for retrying a failed fetch: a maximum number of attempts and an
    optional backoff between them.  The delay before retry ``n`` (counting from 1) is
    ``backoff * 2**(n-1)`` seconds; the default backoff of zero retries immediately.
    """

    def __init__(self, max_attempts: int=5, backoff: float=0.0):
        if max_attempts < 1:
            raise ConfigurationException("retry.max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff = backoff

    @classmethod
    def from_config(cls, config: Mapping):
        """
        create a policy from the ``retry`` parameter in the given configuration
        """
        cfg = (config or {}).get('retry', {})
        return cls(int(cfg.get('max_attempts', 5)), float(cfg.get('backoff', 0.0)))

    def delay(self, retry: int) -> float:
        if not self.backoff:
            return 0.0
        return self.backoff * (2 ** (retry - 1))

class ContentSink(object):
    """
    a writable destination for retrieved content that compresses the bytes into an
    on-disk temporary file as they arrive, computing along the way everything a zip entry
    header needs (the CRC-32, the sizes) as well as the hash used in the bag manifest.
    Once :py:meth:`finish` is called, the raw compressed bytes (from :py:meth:`open_raw`)
    can be copied into an archive as-is.  Memory use does not depend on the size of the
    content.
    """

    def __init__(self, algorithm: str="sha1", tmpdir: str=None, compress: bool=True,
                 compresslevel: int=None):
        """
        :param str algorithm:  the name of the hash algorithm (as known to hashlib)
        :param str tmpdir:     the directory to write the temporary file to
        :param bool compress:  if True, deflate the content; otherwise, store it as is
        :param int compresslevel:  the deflate level (None for zlib's default)
        """
        self.algorithm = algorithm
        self.compress = compress
        self.compresslevel = zlib.Z_DEFAULT_COMPRESSION if compresslevel is None else compresslevel
        self.file = tempfile.TemporaryFile(dir=tmpdir)
        self._start()

    def _start(self):
        self.digest = hashlib.new(self.algorithm)
        self.crc = 0
        self.size = 0
        self.compressed_size = 0
        self.finished = False
        self._deflater = None
        if self.compress:
            self._deflater = zlib.compressobj(self.compresslevel, zlib.DEFLATED, -zlib.MAX_WBITS)

    @property
    def compress_type(self) -> int:
        """the zip compression method of the prepared bytes"""
        return (self.compress and zipfile.ZIP_DEFLATED) or zipfile.ZIP_STORED

    def write(self, data: bytes):
        if self.finished:
            raise StateException("Content sink already finished")
        self.digest.update(data)
        self.crc = zlib.crc32(data, self.crc)
        self.size += len(data)
        if self._deflater:
            data = self._deflater.compress(data)
        if data:
            self.file.write(data)

    def finish(self):
        """
        flush the remaining compressed bytes to the temporary file; further writes are
        not allowed until :py:meth:`reset` is called.  Calling this more than once has no
        further effect.
        """
        if not self.finished:
            if self._deflater:
                self.file.write(self._deflater.flush())
                self._deflater = None
            self.file.flush()
            self.compressed_size = self.file.tell()
            self.finished = True
        return self

    def reset(self):
        """
        discard everything written so far (in preparation for a retry)
        """
        self.file.seek(0)
        self.file.truncate()
        self._start()

    def hexdigest(self) -> str:
        return self.digest.hexdigest()

    def open_raw(self):
        """
        finish the content and return the temporary file, rewound, for reading the
        compressed bytes
        """
        self.finish()
        self.file.seek(0)
        return self.file

    def iter_content(self, chunk_size: int=DEF_CHUNK_SIZE):
        """
        iterate through the original (uncompressed) content in chunks of at most
        chunk_size bytes
        """
        raw = self.open_raw()
        inflater = zlib.decompressobj(-zlib.MAX_WBITS) if self.compress else None
        while True:
            data = raw.read(chunk_size)
            if not data:
                break
            if not inflater:
                yield data
                continue
            while data:
                out = inflater.decompress(data, chunk_size)
                data = inflater.unconsumed_tail
                if out:
                    yield out
        if inflater:
            out = inflater.flush()
            if out:
                yield out

    def close(self):
        self.file.close()

class LocalContentCache(object, metaclass=ABCMeta):
    """
    an interface to a local store of file content, addressed by hash
    """

    @abstractmethod
    def lookup(self, hashtype: str, hashvalue: str):
        """
        return an open binary stream for the content with the given hash, or None if
        the content is not available locally.

        :param str hashtype:   the type of hash (e.g. "SHA1 Hash")
        :param str hashvalue:  the hex value of the hash
        """
        raise NotImplementedError()

class ZipMemberStream(object):
    """
    a readable stream for a zip file member that closes its ZipFile when closed
    """
    def __init__(self, zf, member):
        self._zf = zf
        try:
            self._strm = zf.open(member)
        except Exception:
            zf.close()
            raise

    def read(self, size=-1):
        return self._strm.read(size)

    def close(self):
        try:
            self._strm.close()
        finally:
            self._zf.close()

    def __enter__(self):
        return self

    def __exit__(self, e1, e2, e3):
        self.close()
        return False

class BagContentCache(LocalContentCache):
    """
    a LocalContentCache backed by the payload of a previously produced bag.  Content is
    located by looking up its hash in the bag's manifest.
    """

    def __init__(self, bagfile: str, log: logging.Logger=None):
        """
        :param str bagfile:  the path to the zipped bag
        """
        self.bagfile = bagfile
        if not log:
            log = syslog.getChild("localcache")
        self.log = log
        self.hashtype = None
        self._members = {}
        self._load_manifest()

    def _load_manifest(self):
        with zipfile.ZipFile(self.bagfile) as zf:
            names = zf.namelist()
            for ht in HASH_TYPES:
                manifest = [n for n in names if n.count('/') == 1 and
                            n.endswith('/' + MANIFEST_TMPL.format(HASH_ALGORITHMS[ht]))]
                if manifest:
                    self.hashtype = ht
                    with zf.open(manifest[0]) as fd:
                        for line in fd:
                            line = line.decode('utf-8').rstrip('\r\n')
                            if ' ' not in line:
                                continue
                            (hash, path) = line.split(' ', 1)
                            self._members.setdefault(hash, path.strip())
                    break
        self.log.debug("%d files available from %s", len(self._members), self.bagfile)

    def __len__(self):
        return len(self._members)

    def lookup(self, hashtype, hashvalue):
        if hashtype != self.hashtype:
            return None
        member = self._members.get(hashvalue)
        if not member:
            return None
        blab(self.log, "Found %s locally as %s", hashvalue, member)
        return ZipMemberStream(zipfile.ZipFile(self.bagfile), member)

class RemoteFetcher(object):
    """
    a class for retrieving content from a URL, with retries.

    This class recognizes the following configuration parameters:

    :param int  timeout:     the number of seconds to wait for a response (default: 60)
    :param str  auth_token:  a bearer token to send in an Authorization header
    :param int  chunk_size:  the number of bytes to read from a response at a time
    :param dict retry:       the retry policy (see :py:class:`RetryPolicy`)
    """

    def __init__(self, config: Mapping=None, policy: RetryPolicy=None, log: logging.Logger=None):
        if config is None:
            config = {}
        self.cfg = config
        if not policy:
            policy = RetryPolicy.from_config(config)
        self.policy = policy
        self.timeout = self.cfg.get('timeout', DEF_TIMEOUT)
        self.chunk_size = self.cfg.get('chunk_size', DEF_CHUNK_SIZE)
        if not log:
            log = syslog.getChild("fetcher")
        self.log = log

    def _headers(self):
        hdrs = {}
        if self.cfg.get('auth_token'):
            hdrs['Authorization'] = "Bearer " + self.cfg['auth_token']
        return hdrs

    def fetch(self, url: str, dest):
        """
        retrieve the content at the given URL, writing it to ``dest``.

        Transient failures (connection errors, timeouts, interrupted transfers, and
        non-200 responses) are retried up to the policy's maximum number of attempts;
        ``dest.reset()`` is called before each retry.  A malformed URL or a protocol
        error is not retried.

        :param str url:  the URL to retrieve
        :param     dest: a writable object with a ``reset()`` method (e.g. a ContentSink)
        :raise RetrievalError:  if the content could not be retrieved
        """
        attempt = 0
        problem = None
        while attempt < self.policy.max_attempts:
            attempt += 1
            if attempt > 1:
                dest.reset()
                wait = self.policy.delay(attempt - 1)
                if wait:
                    time.sleep(wait)

            blab(self.log, "Retrieving %s (attempt %d)", url, attempt)
            resp = None
            try:
                resp = requests.get(url, headers=self._headers(), stream=True, timeout=self.timeout)
                if resp.status_code != 200:
                    problem = "{0} {1}".format(resp.status_code, resp.reason)
                    self.log.debug("Attempt %d: %s returned %s", attempt, url, problem)
                    continue
                for chunk in resp.iter_content(self.chunk_size):
                    if chunk:
                        dest.write(chunk)
                return dest

            except _NO_RETRY as ex:
                self.log.error("Unable to retrieve %s: %s", url, str(ex))
                raise RetrievalError(url, cause=ex, attempts=attempt)
            except requests.RequestException as ex:
                self.log.warning("Attempt# %d: Unable to retrieve file: %s: %s", attempt, url, str(ex))
                problem = ex
            finally:
                if resp is not None:
                    resp.close()

        self.log.error("Final attempt failed for %s", url)
        msg = None
        if isinstance(problem, str):
            msg = "Unable to retrieve content from {0} after {1} attempts: {2}".format(url, attempt, problem)
            problem = None
        raise RetrievalError(url, msg=msg, cause=problem, attempts=attempt)

class ContentResolver(object):
    """
    a resolver for data file content that prefers a local cache over a remote fetch
    """

    def __init__(self, fetcher: RemoteFetcher=None, local: LocalContentCache=None,
                 log: logging.Logger=None):
        """
        :param RemoteFetcher   fetcher:  the fetcher to use to retrieve remote content
        :param LocalContentCache local:  the local cache to consult first (optional)
        """
        if not fetcher:
            fetcher = RemoteFetcher()
        self.fetcher = fetcher
        self.local = local
        if not log:
            log = syslog.getChild("resolver")
        self.log = log

    def lookup_local(self, hashtype: str, hashvalue: str):
        """
        return a stream for locally available content with the given hash, or None
        """
        if self.local is None or not hashvalue:
            return None
        return self.local.lookup(hashtype, hashvalue)

    def fetch(self, url: str, dest):
        """
        retrieve the content at the given URL into ``dest``
        :raise RetrievalError:  if the content could not be retrieved
        """
        return self.fetcher.fetch(url, dest)

    def retrieve(self, url: str, dest, hashtype: str=None, hashvalue: str=None) -> str:
        """
        retrieve content into ``dest``, from the local cache if a hash is given and the
        content is found there, otherwise from the given URL.

        :return:  LOCAL or REMOTE, indicating where the content came from
        :raise RetrievalError:  if the content could not be retrieved
        """
        strm = None
        try:
            strm = self.lookup_local(hashtype, hashvalue)
        except (OSError, zipfile.BadZipFile, KeyError) as ex:
            self.log.warning("Local lookup of %s failed: %s", hashvalue, str(ex))

        if strm is not None:
            try:
                with strm:
                    shutil.copyfileobj(strm, dest, DEF_CHUNK_SIZE)
                return LOCAL
            except (OSError, zipfile.BadZipFile) as ex:
                self.log.warning("Failed to read local copy of %s; trying remote: %s", hashvalue, str(ex))
                dest.reset()

        if not url:
            raise RetrievalError(msg="No content URL available" +
                                     ((hashvalue and " for " + hashvalue) or ""))
        self.fetch(url, dest)
        return REMOTE
