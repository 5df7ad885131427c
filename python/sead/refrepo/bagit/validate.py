"""
Validation of zipped BagIt bags produced by the :py:class:`~sead.refrepo.bagit.BagGenerator`.

The :py:class:`BagValidator` applies a series of tests to an open :py:class:`ZippedBag`:
the required tag files are present, every file listed in the payload manifest is present
with content matching its listed hash, the payload agrees with the declared aggregation
statistics, and the identifier mapping refers only to paths in the bag.  Problems are
recorded in the returned :py:class:`~sead.refrepo.utils.validate.ValidationResults`;
they are never raised.
"""
import hashlib, zipfile, logging
from collections import OrderedDict
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import List

from .. import def_num_threads
from ..constants import *
from ..model import AggregationStatistics
from ..exceptions import StateException
from ..utils.validate import ValidatorBase, ValidationResults, ALL, REQ, WARN, PROB
from ..utils.logging import blab
from . import syslog

__all__ = [ 'ZippedBag', 'BagValidator', 'validate_bag_file' ]

HASH_CHUNK_SIZE = 64 * 1024

class ZippedBag(object):
    """
    read access to the contents of a bag serialized as a zip file.  Paths given to the
    methods of this class are relative to the bag's root directory.
    """

    def __init__(self, bagfile: str, bag_name: str=None):
        """
        :param str bagfile:  the path to the zip file
        :param str bag_name: the name of the bag's root directory; if not given, it is
                             taken from the first entry in the file
        :raise StateException:  if the file is not a readable zip file or is empty
        """
        self.path = bagfile
        try:
            self.zf = zipfile.ZipFile(bagfile)
        except (OSError, zipfile.BadZipFile) as ex:
            raise StateException("%s: not a readable zip file: %s" % (bagfile, str(ex)), cause=ex)

        self._infos = OrderedDict([(zi.filename, zi) for zi in self.zf.infolist()])
        if not bag_name:
            if not self._infos:
                self.zf.close()
                raise StateException(bagfile + ": zip file is empty")
            bag_name = next(iter(self._infos)).split('/', 1)[0]
        self.bag_name = bag_name

    def member(self, relpath: str) -> str:
        """return the name of the zip entry for a path relative to the bag root"""
        return self.bag_name + "/" + relpath

    def exists(self, relpath: str) -> bool:
        return self.member(relpath) in self._infos

    def has_entry(self, name: str) -> bool:
        """return True if the zip file has an entry with the given full name"""
        return name in self._infos

    def entry_size(self, name: str) -> int:
        return self._infos[name].file_size

    def read_text(self, relpath: str) -> str:
        """
        return the contents of a (tag) file
        :raise KeyError:  if the file does not exist in the bag
        """
        return self.zf.read(self.member(relpath)).decode('utf-8')

    def payload_files(self) -> List[str]:
        """
        return the full entry names of the files in the bag's payload
        """
        pfx = self.member(DATA_DIR) + "/"
        return [n for n in self._infos if n.startswith(pfx) and not n.endswith('/')]

    def manifest_types(self) -> List[str]:
        """
        return the hash types (e.g. "SHA1 Hash") of the payload manifests in the bag
        """
        return [ht for ht in HASH_TYPES
                if self.exists(MANIFEST_TMPL.format(HASH_ALGORITHMS[ht]))]

    def read_manifest(self, hashtype: str) -> Mapping:
        """
        return the payload manifest for the given hash type as an ordered map of full
        entry names to hash values
        """
        out = OrderedDict()
        for line in self.read_text(MANIFEST_TMPL.format(HASH_ALGORITHMS[hashtype])).splitlines():
            if ' ' not in line:
                continue
            hash, path = line.split(' ', 1)
            out[path.strip()] = hash.strip()
        return out

    def read_pid_mapping(self) -> Mapping:
        """
        return the contents of ``pid-mapping.txt`` as an ordered map of identifiers to
        full entry names
        """
        out = OrderedDict()
        for line in self.read_text(PID_MAPPING_TXT).splitlines():
            if ' ' not in line:
                continue
            id, path = line.split(' ', 1)
            out[id] = path.strip()
        return out

    def close(self):
        self.zf.close()

    def __enter__(self):
        return self

    def __exit__(self, e1, e2, e3):
        self.close()
        return False

def _hash_member(bagfile, member, algorithm):
    # executed in a worker thread: each worker reads through its own handle
    digest = hashlib.new(algorithm)
    with zipfile.ZipFile(bagfile) as zf:
        with zf.open(member) as fd:
            for chunk in iter(lambda: fd.read(HASH_CHUNK_SIZE), b''):
                digest.update(chunk)
    return digest.hexdigest()

class BagValidator(ValidatorBase):
    """
    a validator for zipped bags.  Its tests are applied to an open :py:class:`ZippedBag`.

    The declared aggregation statistics to check the payload against can be given at
    construction or passed to :py:meth:`validate` as the ``stats`` keyword.

    This validator recognizes the following configuration parameters (in addition to
    ``include_tests`` and ``skip_tests``):

    :param int num_threads:  the number of threads to use to recompute the payload hashes
    """
    profile = ("BagIt", BAGIT_VERSION)

    def __init__(self, config: Mapping=None, stats: AggregationStatistics=None, log: logging.Logger=None):
        super(BagValidator, self).__init__(config)
        self.stats = stats
        if not log:
            log = syslog.getChild("validator")
        self.log = log
        self.num_threads = def_num_threads(self.cfg)

    def _target_name(self, bag):
        return getattr(bag, 'bag_name', str(bag))

    def test_bagit_txt(self, bag, want=ALL, out=None, **kw):
        """
        Test the bag declaration:
          2.1.1.  REQ: bagit.txt must be present and give the version and tag file encoding
        """
        if not out:
            out = ValidationResults(self._target_name(bag), want)
        if want & REQ == 0:
            return out

        t = self._err("2.1.1", "bagit.txt must be present with BagIt-Version and "
                               "Tag-File-Character-Encoding")
        comm = []
        if not bag.exists(BAGIT_TXT):
            comm.append("bagit.txt is missing")
        else:
            labels = [ln.split(':', 1)[0].strip() for ln in bag.read_text(BAGIT_TXT).splitlines()]
            for lab in ("BagIt-Version", "Tag-File-Character-Encoding"):
                if lab not in labels:
                    comm.append("bagit.txt is missing " + lab)
        out._add_applied(t, not comm, comm)
        return out

    def test_manifest(self, bag, want=ALL, out=None, **kw):
        """
        Test for the payload manifest:
          2.1.3.  REQ: exactly one of manifest-sha1.txt and manifest-sha512.txt must be present
        """
        if not out:
            out = ValidationResults(self._target_name(bag), want)
        if want & REQ == 0:
            return out

        t = self._err("2.1.3", "The bag must contain one payload manifest (manifest-sha1.txt "
                               "or manifest-sha512.txt)")
        found = bag.manifest_types()
        comm = None
        if not found:
            comm = "No payload manifest found"
        elif len(found) > 1:
            comm = "Multiple payload manifests found: " + \
                   ", ".join([MANIFEST_TMPL.format(HASH_ALGORITHMS[h]) for h in found])
        out._add_applied(t, len(found) == 1, comm)
        return out

    def test_payload_hashes(self, bag, want=ALL, out=None, **kw):
        """
        Test the payload against the manifest:
          3.1.  REQ: every file listed in the manifest must be present in the bag
          3.2.  REQ: the hash of each listed file must match the value in the manifest
        """
        if not out:
            out = ValidationResults(self._target_name(bag), want)
        if want & REQ == 0:
            return out

        types = bag.manifest_types()
        if not types:
            return out
        hashtype = types[0]
        manifest = bag.read_manifest(hashtype)
        self.log.info("Validating %d %s hashes in %s", len(manifest), hashtype, bag.bag_name)

        present = OrderedDict()
        missing = []
        for path, hash in manifest.items():
            if bag.has_entry(path):
                present[path] = hash
            else:
                missing.append(path)

        t = self._err("3.1", "All files listed in the manifest must be present")
        out._add_applied(t, not missing, [p + ": missing" for p in missing])

        algorithm = HASH_ALGORITHMS[hashtype]
        mismatched = []
        with ThreadPoolExecutor(max_workers=max(1, self.num_threads)) as pool:
            futs = [(path, hash, pool.submit(_hash_member, bag.path, path, algorithm))
                    for path, hash in present.items()]
            for path, hash, fut in futs:
                try:
                    found = fut.result()
                except (OSError, zipfile.BadZipFile) as ex:
                    mismatched.append("%s: unreadable: %s" % (path, str(ex)))
                    continue
                if found != hash:
                    self.log.warning("Hash mismatch for %s: listed %s, found %s", path, hash, found)
                    mismatched.append("%s: hash mismatch (expected %s, found %s)" % (path, hash, found))
                else:
                    blab(self.log, "Hash verified for %s", path)

        t = self._err("3.2", "The hash of each payload file must match its manifest value")
        out._add_applied(t, not mismatched, mismatched)
        return out

    def test_statistics(self, bag, want=ALL, out=None, stats=None, **kw):
        """
        Test the payload against the declared aggregation statistics:
          4.1.  WARN: the number of payload files should match the declared Number of Datasets
          4.2.  WARN: the total payload size should match the declared Total Size
        """
        if not out:
            out = ValidationResults(self._target_name(bag), want)
        if want & WARN == 0:
            return out
        if stats is None:
            stats = self.stats
        if stats is None:
            return out

        files = bag.payload_files()
        count = len(files)
        size = sum([bag.entry_size(f) for f in files])

        t = self._warn("4.1", "The number of payload files should match the declared Number of Datasets")
        out._add_applied(t, count == stats.count,
                         "Found %d files; %d declared" % (count, stats.count))
        t = self._warn("4.2", "The total size of the payload should match the declared Total Size")
        out._add_applied(t, size == stats.total_size,
                         "Found %d bytes; %d declared" % (size, stats.total_size))
        return out

    def test_pid_mapping(self, bag, want=ALL, out=None, **kw):
        """
        Test the identifier mapping:
          5.1.  WARN: every path in pid-mapping.txt should exist in the bag
        """
        if not out:
            out = ValidationResults(self._target_name(bag), want)
        if want & WARN == 0:
            return out

        t = self._warn("5.1", "Every path in pid-mapping.txt should exist in the bag")
        if not bag.exists(PID_MAPPING_TXT):
            out._add_applied(t, False, "pid-mapping.txt is missing")
            return out
        bad = [p + ": not found" for p in bag.read_pid_mapping().values() if not bag.has_entry(p)]
        out._add_applied(t, not bad, bad)
        return out

def validate_bag_file(bagfile: str, stats: AggregationStatistics=None, config: Mapping=None,
                      num_threads: int=None, bag_name: str=None) -> ValidationResults:
    """
    validate a zipped bag.

    :param str bagfile:  the path to the zip file
    :param AggregationStatistics stats:  the declared statistics to check the payload
                         against; if not given, the statistics are not checked
    :param Mapping config:  the configuration for the :py:class:`BagValidator`
    :param int num_threads: the number of threads to use to recompute the hashes
                         (overrides the configuration)
    :param str bag_name: the name of the bag's root directory (default: determined from
                         the zip file)
    :return ValidationResults:  the results of the validation
    :raise StateException:  if the file cannot be opened as a zip file
    """
    if config is None:
        config = {}
    if num_threads:
        config = dict(config)
        config['num_threads'] = num_threads
    validator = BagValidator(config, stats)
    with ZippedBag(bagfile, bag_name) as bag:
        results = validator.validate(bag, stats=stats)
    if results.ok():
        validator.log.info("%s: bag is valid", bag.bag_name)
    else:
        validator.log.warning("%s: bag failed %d validation tests", bag.bag_name,
                              results.count_failed(PROB))
    return results
