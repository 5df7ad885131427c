"""
Generation of a BagIt bag, serialized as a zip file, from a publication request and
the ORE map of the aggregation it asks to publish.

The :py:class:`BagGenerator` walks the aggregation's container hierarchy depth-first
from the aggregation itself.  Each container becomes a directory; each data file
becomes a payload entry whose content is retrieved, hashed and compressed by a pool of worker
threads.  Once all content is in hand, the tag files (the manifest, the identifier
mapping, ``bagit.txt``, ``bag-info.txt``) and the updated ORE map are added and the
whole bag is written out as a single zip file.
"""
import os, re, time, json, logging
from collections import OrderedDict
from collections.abc import Mapping
from urllib.parse import quote
from typing import List

import filelock

from .. import def_num_threads
from ..constants import *
from ..exceptions import (StructuralError, IdentityServiceError, RetrievalError, HashMismatchError,
                          ConfigurationException)
from ..model import AggregationDocument, PublicationRequest, as_list
from ..ore.links import LinkRewriter, NoOpLinkRewriter
from ..idmint import DOIPolicy, IdentifierMinter
from ..utils.logging import blab
from .ledger import ResourceUsageLedger
from .content import ContentResolver, RemoteFetcher, RetryPolicy
from .writer import ScatterGatherArchive, EntryResult
from .info import bagit_txt, bag_info_text, manifest_text, pid_mapping_text
from .validate import validate_bag_file
from . import syslog

__all__ = [ 'BagGenerator', 'BagResult', 'path_name' ]

PROGRESS_INTERVAL = 1000
UUID_ID_LENGTH = 24
UUID_PFX = "urn:uuid:"
DEF_PUBLISHER = "SEAD (http://sead-data.net)"

class BagResult(object):
    """
    a summary of a bag generation run.

    :ivar str          bag_name:  the name of the bag (the root directory within the zip file)
    :ivar str           bagfile:  the path to the zip file written
    :ivar str external_identifier:  the persistent identifier assigned to the aggregation
    :ivar str       landing_url:  the URL of the aggregation's landing page
    :ivar str          hashtype:  the type of hash used in the manifest (e.g. "SHA1 Hash")
    :ivar OrderedDict    pidmap:  a map of resource identifiers to their paths in the bag
    :ivar OrderedDict  manifest:  a map of payload paths to their hash values
    :ivar int        data_count:  the number of data files written
    :ivar int        total_size:  the total number of bytes in the data files written
    :ivar list         problems:  descriptions of the problems encountered
    :ivar ValidationResults validation:  the results of validating the bag (if it was)
    """

    def __init__(self, bag_name: str):
        self.bag_name = bag_name
        self.bagfile = None
        self.external_identifier = None
        self.landing_url = None
        self.hashtype = None
        self.pidmap = OrderedDict()
        self.manifest = OrderedDict()
        self.data_count = 0
        self.total_size = 0
        self.problems = []
        self.validation = None

    @property
    def ok(self) -> bool:
        """True if no problems were encountered during generation or validation"""
        return not self.problems and (self.validation is None or self.validation.ok())

    def all_problems(self) -> List[str]:
        """
        return the problems encountered during generation followed by the failures
        found by validation
        """
        out = list(self.problems)
        if self.validation:
            out += self.validation.problems()
        return out

    def report(self) -> str:
        """
        return a multi-line, human-readable summary of the problems encountered
        """
        probs = self.all_problems()
        if not probs:
            return "No problems detected"
        return "\n".join(probs)

class _LeafJob(object):
    # the work needed to bring one data file into the bag
    __slots__ = ('slot', 'resource', 'arcname', 'url', 'declared')

    def __init__(self, slot, resource, arcname, url, declared):
        self.slot = slot
        self.resource = resource
        self.arcname = arcname
        self.url = url
        self.declared = declared

class BagGenerator(object):
    """
    a class that packages an aggregation into a zipped BagIt bag.

    This class recognizes the following configuration parameters:

    :param str      repo_id:  the identifier for this repository (used in status messages)
    :param int  num_threads:  the number of threads to use for retrieving content
                              (default: the number of processors)
    :param bool allow_updates:  whether a republication may keep the DOI of the
                              publication it replaces
    :param str landing_base:  the base URL for the landing pages of published aggregations
    :param dict         doi:  the configuration for the DOI policy (see
                              :py:class:`~sead.refrepo.idmint.DOIPolicy`)
    :param dict       retry:  the retry policy for fetching remote content
    :param dict content_fetch:  the configuration for fetching remote content
                              (see :py:class:`~sead.refrepo.bagit.content.RemoteFetcher`)
    :param dict    bag_info:  additional labels to write into bag-info.txt
    :param str  working_dir:  the directory for the temporary files holding prepared
                              (compressed) content
    :param str    data_root:  the root directory for stored bags
    :param bool ignore_hashes:  if True, declared hash values are ignored and SHA-512
                              hashes are computed for all content
    """

    def __init__(self, request, oremap, config: Mapping=None, resolver: ContentResolver=None,
                 minter: IdentifierMinter=None, reporter=None, linkrewriter: LinkRewriter=None,
                 log: logging.Logger=None, expand_people=None):
        """
        :param PublicationRequest|dict request:  the publication request
        :param AggregationDocument|dict oremap:  the ORE map of the aggregation to package;
                                 it will be updated in place
        :param Mapping          config:  the configuration for the generator
        :param ContentResolver resolver: the resolver for data file content; if not
                                 provided, one that fetches all content remotely is created
        :param IdentifierMinter minter:  the minter to get the DOI from; if not provided,
                                 the identifier given in the request's preferences is used
        :param reporter:  an object with a ``send(stage, message)`` method for sending
                                 status updates
        :param LinkRewriter linkrewriter:  the rewriter for the links in the ORE map
        :param Callable expand_people:  a function that converts a list of person
                                 identifiers into a list of person descriptions
        """
        if not isinstance(request, PublicationRequest):
            request = PublicationRequest(request)
        if not isinstance(oremap, AggregationDocument):
            oremap = AggregationDocument(oremap)
        self.request = request
        self.oremap = oremap

        if config is None:
            config = {}
        self.cfg = config
        if not log:
            log = syslog.getChild("generator")
        self.log = log

        if not resolver:
            fetcher = RemoteFetcher(self.cfg.get('content_fetch', {}), RetryPolicy.from_config(self.cfg))
            resolver = ContentResolver(fetcher)
        self.resolver = resolver
        self.minter = minter
        self.reporter = reporter
        if not linkrewriter:
            linkrewriter = NoOpLinkRewriter()
        self.linkrewriter = linkrewriter
        self.expand_people = expand_people

        self.ignore_hashes = bool(self.cfg.get('ignore_hashes', False))
        self.num_threads = def_num_threads(self.cfg)
        self._hashpaths = {}

        self.bagid = self.oremap.describes.identifier
        if not self.bagid:
            raise StructuralError("Aggregation is missing its Identifier")
        self.bag_name = bag_name_for(self.bagid)

    def _send(self, stage, message):
        if self.reporter:
            self.reporter.send(stage, message)

    def _bag_path(self, *parts):
        return "/".join((self.bag_name,) + parts)

    @property
    def landing_url(self):
        """the URL of the aggregation's landing page (or None if no base is configured)"""
        base = self.cfg.get('landing_base')
        if not base:
            return None
        return base + quote(self.bagid, safe='')

    def _copy_preferences(self):
        agg = self.oremap.describes
        prefs = self.request.preferences
        agg[AGG_STATISTICS] = self.request.statistics.to_json()
        agg[LICENSE] = prefs.license
        agg[PURPOSE] = prefs.purpose
        self.oremap.data[PURPOSE] = prefs.purpose
        if prefs.access_rights:
            agg[ACCESS_RIGHTS] = prefs.access_rights

    def _mint_metadata(self):
        agg = self.oremap.describes
        publisher = DEF_PUBLISHER
        holders = [p.display_name for p in self.request.rights_holders]
        if holders:
            publisher = ", ".join(holders + [publisher])
        else:
            self.log.warning("Request has no Rights Holder")
        return OrderedDict([
            ("title", agg.title),
            ("creators", [p.display_name for p in agg.creators]),
            ("publisher", publisher),
            ("publicationYear", time.strftime("%Y")),
            ("description", agg.abstract)
        ])

    def assign_identifier(self) -> str:
        """
        obtain the persistent identifier for the aggregation: a new one from the minter,
        or the one being replaced if the DOI policy allows it to be reused.
        :raise IdentityServiceError:  if an identifier could not be obtained
        """
        prefs = self.request.preferences
        if not self.minter:
            extid = prefs.external_identifier or self.oremap.describes.external_identifier
            if not extid:
                raise IdentityServiceError("No identifier minter available and no External "
                                           "Identifier provided for " + self.bagid)
            return extid

        policy = DOIPolicy(self.cfg.get('doi', {}), self.cfg.get('allow_updates', False))
        allowed = policy.allowed_purposes(self.request.repository_profile)
        return policy.assign(self.minter, prefs.external_identifier, prefs.purpose,
                             self.landing_url, self._mint_metadata(), allowed)

    def generate(self, bagfile) -> BagResult:
        """
        package the aggregation into a zip file.

        Failures to retrieve individual files do not stop the run; they are recorded as
        problems in the returned result.  A failure to obtain an identifier or a
        problem with the structure of the aggregation stops the run before any output
        is written.

        :param str bagfile:  the path of the zip file to write
        :raise IdentityServiceError:  if an identifier could not be obtained
        :raise StructuralError:  if the aggregation's container hierarchy is inconsistent
        """
        self.log.info("Generating bag for %s", self.bagid)
        self._send(PENDING_STAGE, "%s is now processing this request" %
                   self.cfg.get('repo_id', "The repository"))

        agg = self.oremap.describes
        result = BagResult(self.bag_name)
        result.landing_url = self.landing_url
        self._copy_preferences()

        extid = self.assign_identifier()
        result.external_identifier = extid
        self.log.info("External Identifier: %s", extid)

        ledger = ResourceUsageLedger(agg.identifier, [r.identifier for r in agg.aggregates])
        resources = agg.aggregates
        self._hashpaths = {}

        with ScatterGatherArchive(self.num_threads, log=self.log.getChild("archive")) as archive:
            archive.add_directory(self._bag_path(DATA_DIR) + "/")
            jobs = []
            slot = ledger.claim(agg.identifier)
            hashtype = self._walk(agg, slot, self._bag_path(DATA_DIR) + "/", ledger, resources,
                                  archive, result, jobs)
            if not hashtype or self.ignore_hashes:
                hashtype = SHA512
            result.hashtype = hashtype
            self._dispatch(jobs, hashtype, archive)
            self._collect(jobs, hashtype, archive, ledger, result)

            self._finalize_oremap(extid)
            self._add_tag_files(archive, result)

            try:
                archive.write(bagfile)
            except Exception:
                if isinstance(bagfile, str) and os.path.exists(bagfile):
                    os.remove(bagfile)
                raise
        result.bagfile = bagfile if isinstance(bagfile, str) else None

        result.problems.extend(ledger.problems(result.pidmap))
        for slot in ledger.succeeded():
            res = resources[slot - 1] if slot > 0 else None
            if res and not res.is_container and result.pidmap.get(res.identifier) not in result.manifest:
                self.log.warning("Missing hash for: %s", res.identifier)

        self.log.info("Bag written for %s: %d files, %d bytes, %d problems", self.bagid,
                      result.data_count, result.total_size, len(result.problems))
        return result

    def _walk(self, container, cslot, curpath, ledger, resources, archive, result, jobs,
              hashtype=None):
        # depth-first traversal of the container hierarchy; the container's slot has been
        # claimed by the caller.  Returns the active hash type.
        curpath = curpath + self._path_name(container.title, container.identifier) + "/"
        archive.add_directory(curpath)
        result.pidmap[container.identifier] = curpath
        blab(self.log, "Container %s at %s (slot %d)", container.identifier, curpath, cslot)

        titles = set()
        for childid in container.has_part:
            if len(childid) == UUID_ID_LENGTH and not ledger.knows(childid):
                childid = UUID_PFX + childid
            slot = ledger.claim(childid)
            child = resources[slot - 1]

            if child.is_container:
                hashtype = self._walk(child, slot, curpath, ledger, resources, archive, result,
                                      jobs, hashtype)
                continue

            filename = self._path_name(child.filename, child.identifier)
            if filename in titles:
                self.log.warning("Multiple items with the same title in %s: %s", curpath, filename)
                self.log.warning("This will cause failure in hash and size validation.")
            else:
                titles.add(filename)
            path = curpath + filename

            declared = None
            if not self.ignore_hashes:
                for ht, val in child.hashes.items():
                    if hashtype and ht != hashtype:
                        self.log.warning("Multiple hash types in use (%s, %s); not supported",
                                         hashtype, ht)
                        continue
                    hashtype = ht
                    declared = val
                    break
            if declared:
                if declared in self._hashpaths:
                    self.log.warning("Possible duplicate/collision: %s has %s: %s (also at %s)",
                                     child.identifier, hashtype, declared, self._hashpaths[declared])
                else:
                    self._hashpaths[declared] = path
                result.manifest[path] = declared

            url = child.similar_to
            result.pidmap[child.identifier] = path
            relpath = path[len(self._bag_path(DATA_DIR))+1:]
            child.similar_to = self.linkrewriter.rewrite_data_link(url, child.id, self.bagid, relpath)
            jobs.append(_LeafJob(slot, child, path, url, declared))

        return hashtype

    def _path_name(self, name, resid):
        safe = path_name(name)
        if safe != name:
            self.log.warning("%s: name %s is not usable in a path; using %s", resid, repr(name), safe)
        return safe

    def _dispatch(self, jobs, hashtype, archive):
        tmpdir = self.cfg.get('working_dir')
        for job in jobs:
            archive.submit(self._prepare_entry, job, hashtype, archive, tmpdir)
        self.log.debug("Submitted %d files for retrieval", len(jobs))

    def _prepare_entry(self, job, hashtype, archive, tmpdir):
        # executed by a worker thread: the content is retrieved and compressed here
        try:
            sink = archive.new_sink(HASH_ALGORITHMS[hashtype], tmpdir)
        except OSError as ex:
            return EntryResult(job.arcname, job, error=ex)
        try:
            source = self.resolver.retrieve(job.url, sink, hashtype, job.declared)
            sink.finish()
        except (RetrievalError, OSError) as ex:
            sink.close()
            return EntryResult(job.arcname, job, error=ex)

        out = EntryResult(job.arcname, job, sink, source)
        if job.declared and sink.hexdigest() != job.declared:
            out.error = HashMismatchError(job.arcname, job.declared, sink.hexdigest())
        return out

    def _collect(self, jobs, hashtype, archive, ledger, result):
        done = 0
        for res in archive.gather():
            job = res.context
            done += 1
            if res.ok:
                result.data_count += 1
                result.total_size += res.size
                if not job.declared:
                    job.resource.data[hashtype] = res.hexdigest()
            if res.error:
                ledger.mark_failure(job.slot)
                self.log.warning("Problem with %s: %s", job.arcname, str(res.error))
                result.problems.append("{0} ({1}): {2}".format(job.resource.identifier,
                                                               job.arcname, str(res.error)))
            else:
                ledger.mark_success(job.slot)
            if done % PROGRESS_INTERVAL == 0:
                self.log.info("Retrieval in progress: %d files retrieved", done)

        # the manifest follows the order of the traversal
        manifest = OrderedDict()
        for job in jobs:
            if job.arcname in result.manifest:
                manifest[job.arcname] = result.manifest[job.arcname]
            elif hashtype in job.resource.data:
                manifest[job.arcname] = job.resource.data[hashtype]
        result.manifest = manifest

    def _finalize_oremap(self, extid):
        agg = self.oremap.describes
        for prop in (CREATOR, CONTACT):
            if agg.get(prop) is not None:
                people = as_list(agg.get(prop))
                if self.expand_people:
                    people = self.expand_people(people)
                agg[prop] = people

        agg[EXTERNAL_IDENTIFIER] = extid
        agg[PUBLICATION_DATE] = time.strftime("%Y-%m-%d")

        for term, uri in CONTEXT_TERMS.items():
            self.oremap.add_context_term(term, uri)
        for key in self.request.data.get(AGG_STATISTICS, {}):
            uri = _uri_for_key(self.request.data.get(CONTEXT), key)
            if uri:
                self.oremap.add_context_term(key, uri)

        self.oremap.id = self.linkrewriter.rewrite_oremap_link(self.oremap.id, self.bagid)
        agg.id = self.linkrewriter.rewrite_aggregation_link(agg.id, self.bagid)

    def _add_tag_files(self, archive, result):
        archive.add_metadata(self._bag_path(PID_MAPPING_TXT), pid_mapping_text(result.pidmap))
        if result.manifest:
            archive.add_metadata(self._bag_path(MANIFEST_TMPL.format(HASH_ALGORITHMS[result.hashtype])),
                                 manifest_text(result.manifest))
        else:
            self.log.warning("No hash values available: bag will not meet the BagIt requirements")
        archive.add_metadata(self._bag_path(BAGIT_TXT), bagit_txt())
        archive.add_metadata(self._bag_path(OREMAP_FILE), json.dumps(self.oremap.data, indent=2))
        archive.add_metadata(self._bag_path(BAG_INFO_TXT),
                             bag_info_text(self.oremap.describes, self.request,
                                           self.cfg.get('bag_info'), self.expand_people))

    def bag_file_path(self, store_dir: str=None) -> str:
        """
        return the path to the zip file for this aggregation within the store
        """
        if not store_dir:
            root = self.cfg.get('data_root')
            if not root:
                raise ConfigurationException("Missing required config parameter: data_root")
            store_dir = bag_dir_for(root, self.bagid)
        return os.path.join(store_dir, self.bag_name + ".zip")

    def generate_bag(self, store_dir: str=None, temp: bool=False) -> BagResult:
        """
        package the aggregation into a zip file in the store and validate it.

        :param str store_dir:  the directory to write the bag into; if not given, the
                               directory for the aggregation under the configured
                               ``data_root`` is used
        :param bool temp:      if True, the bag is first written to a temporary file which
                               replaces any existing bag only after validation; use this
                               when the existing bag is serving as a local content source.
        """
        bagfile = self.bag_file_path(store_dir)
        os.makedirs(os.path.dirname(bagfile), exist_ok=True)
        outfile = bagfile
        if temp:
            outfile += ".tmp"
            self.log.debug("Writing to %s", outfile)

        lock = filelock.FileLock(bagfile + ".lock")
        with lock:
            result = self.generate(outfile)
            result.validation = validate_bag_file(outfile, self.request.statistics,
                                                  self.cfg.get('validation'), self.num_threads)
            if temp:
                self.log.debug("Moving temporary zip into place")
                os.replace(outfile, bagfile)
            result.bagfile = bagfile

        if not result.validation.ok():
            self.log.warning("Bag for %s failed validation", self.bagid)
        return result

_unsafe_chars = re.compile(r'[/\\\x00]')

def path_name(name):
    """
    return a title or label made usable as a single component of a path within a bag:
    path separators (and NUL characters) are replaced with underscores, as is a name
    that is empty or made up only of dots.
    """
    name = _unsafe_chars.sub("_", name or "")
    if not name.strip("."):
        name = "_" * max(len(name), 1)
    return name

def _uri_for_key(context, key):
    for c in as_list(context):
        if isinstance(c, Mapping) and key in c:
            val = c[key]
            if isinstance(val, Mapping):
                val = val.get(ID)
            return val
    return None
