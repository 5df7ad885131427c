"""
The publishing service:  the orchestration of the publication of one request into the
reference store.
"""
import logging, zipfile
from collections.abc import Mapping
from typing import Callable

from ..constants import *
from ..exceptions import RepoException, PublicationDenied, NotFoundError
from ..model import PublicationRequest
from ..ore import ReferenceLinkRewriter, NoOpLinkRewriter
from ..bagit import (BagGenerator, BagContentCache, ContentResolver, RemoteFetcher,
                     RetryPolicy, validate_bag_file)
from ..idmint import IdentifierMinter, RegistryDOIMinter
from ..store import RefRepositoryStore
from ..utils.validate import ValidationResults
from .request import PubRequestSource
from .status import StatusReporter, create_status_reporter
from . import syslog

__all__ = [ 'Publisher' ]

FAILURE_MSG = "Processing of this request has failed. Further attempts to process this " \
              "request may or may not be made. Please contact the repository for further information."
DENIED_MSG = "This request has been denied as a replacement for the existing publication: {0}. " \
             "Please contact the repository for further information."
NO_LOCAL_MSG = "This request won't be processed due to a problem in finding local data copies: " \
               "{0}. Please contact the repository for further information."

class Publisher(object):
    """
    a class that publishes aggregations into the reference store.

    A publication proceeds as follows:

    1. the publication request and the ORE map are retrieved from the request source;
    2. if the request would replace an existing publication, approval is sought;
    3. if a previously published bag is to serve as a local source of content (given
       explicitly or via the request's ``alternateOf`` preference), it is opened; if it
       is missing or has no usable hashes, approval is sought to proceed with remote
       content only;
    4. the bag is generated into the store and validated;
    5. the outcome is reported through the status channel.

    This class recognizes the following configuration parameters, in addition to those
    of the :py:class:`~sead.refrepo.bagit.BagGenerator` and the
    :py:class:`~sead.refrepo.store.RefRepositoryStore`:

    :param bool auto_approve:  if True, requests needing approval are approved without
                               asking (default: False)
    :param dict       status:  the configuration of the status channel (see
                               :py:func:`~sead.refrepo.publish.status.create_status_reporter`)
    :param dict pubreq_service:  the configuration of the publication request service
    :param dict          doi:  the DOI policy configuration; if it includes a ``shoulder``,
                               a :py:class:`~sead.refrepo.idmint.RegistryDOIMinter` is used
                               by default.
    """

    def __init__(self, config: Mapping, source: PubRequestSource, reporter: StatusReporter=None,
                 minter: IdentifierMinter=None, approver: Callable=None,
                 store: RefRepositoryStore=None, log: logging.Logger=None):
        """
        :param Mapping          config:  the configuration for the service
        :param PubRequestSource source:  the source of publication requests
        :param StatusReporter reporter:  the channel for status updates; if not given, one is
                                         created from the configuration for each request
        :param IdentifierMinter minter:  the minter for DOIs
        :param Callable       approver:  a function that takes a question (a str) and returns
                                         True if the answer is yes
        :param RefRepositoryStore store: the store to publish into
        """
        if config is None:
            config = {}
        self.cfg = config
        self.source = source
        self.reporter = reporter
        if minter is None and self.cfg.get('doi', {}).get('shoulder'):
            minter = RegistryDOIMinter(self.cfg['doi'])
        self.minter = minter
        self.approver = approver
        if not store:
            store = RefRepositoryStore(self.cfg)
        self.store = store
        if not log:
            log = syslog.getChild("publisher")
        self.log = log

    def _reporter_for(self, id):
        if self.reporter:
            return self.reporter
        scfg = dict(self.cfg.get('status', {}))
        scfg.setdefault('pubreq_service', self.cfg.get('pubreq_service', {}))
        scfg.setdefault('reporter', self.cfg.get('repo_id', "SEAD Reference Repository"))
        return create_status_reporter(scfg, id, self.log.getChild("status"))

    def _approve(self, question):
        if self.approver:
            return bool(self.approver(question))
        if self.cfg.get('auto_approve', False):
            self.log.info("%s: approved automatically", question)
            return True
        self.log.warning("%s: no approver available; declining", question)
        return False

    def validate(self, id: str, request: PublicationRequest=None) -> ValidationResults:
        """
        validate the bag already stored for the given identifier
        :param PublicationRequest request:  if given, the payload is also checked against
                                 its declared statistics
        :raise NotFoundError:  if no bag is stored for the identifier
        """
        stats = request.statistics if request else None
        return validate_bag_file(self.store.get_bag_file(id), stats, self.cfg.get('validation'),
                                 self.cfg.get('num_threads'), self.store.get_bag_name_root(id))

    def publish(self, id: str, validate_only: bool=False, ignore_hashes: bool=False,
                local_source: str=None):
        """
        publish the aggregation requested by the publication request with the given
        identifier.

        :param str            id:  the identifier of the publication request (and of the
                                   aggregation)
        :param bool validate_only: if True, only validate the bag already stored for the
                                   identifier
        :param bool ignore_hashes: if True, ignore declared hash values and compute SHA-512
                                   hashes for all content
        :param str  local_source:  the identifier of a published aggregation whose bag should
                                   be used as a local source of content (overrides the
                                   request's ``alternateOf`` preference)
        :return:  a :py:class:`~sead.refrepo.bagit.BagResult` (or, if ``validate_only`` is
                  True, the :py:class:`~sead.refrepo.utils.validate.ValidationResults`)
        :raise PublicationDenied:  if approval needed for the request was not given
        :raise RepoException:      if the publication failed
        """
        if validate_only:
            results = self.validate(id)
            self.log.info("Validation of %s complete: %s", id, (results.ok() and "valid") or "invalid")
            return results

        reporter = self._reporter_for(id)
        request = self.source.get_request(id)
        oremap = self.source.get_oremap(request)

        local = self._check_repub(id, request, reporter, local_source)
        local_source = local_source or (local and request.preferences.alternate_of)

        cfg = dict(self.cfg)
        if ignore_hashes:
            cfg['ignore_hashes'] = True
        fcfg = dict(cfg.get('content_fetch', {}))
        token = self.source.auth_token(request)
        if token:
            fcfg['auth_token'] = token
        resolver = ContentResolver(RemoteFetcher(fcfg, RetryPolicy.from_config(cfg)), local)

        if cfg.get('landing_base'):
            rewriter = ReferenceLinkRewriter(cfg['landing_base'])
        else:
            rewriter = NoOpLinkRewriter()

        use_temp = bool(local_source) and local_source == id
        try:
            gen = BagGenerator(request, oremap, cfg, resolver, self.minter, reporter, rewriter,
                               self.log.getChild("generator"), self.source.expand_people)
            result = gen.generate_bag(self.store.get_data_path(id), use_temp)
        except RepoException as ex:
            self.log.exception("Publication of %s failed: %s", id, str(ex))
            reporter.send(FAILURE_STAGE, FAILURE_MSG)
            raise
        finally:
            self.store.invalidate(id)

        if result.all_problems():
            reporter.send(PROBLEM_STAGE, result.report())
        if result.validation is not None and not result.validation.ok():
            self.log.error("Bag for %s is not valid", id)
            reporter.send(FAILURE_STAGE, FAILURE_MSG)
        else:
            reporter.send(SUCCESS_STAGE, result.external_identifier)
            self.log.info("Publication of %s was successful; new publication is in %s", id,
                          result.bagfile)
            if local_source and local_source != id:
                self.log.info("New publication was intended to replace %s; the old publication, "
                              "in %s, could now be deleted", local_source,
                              self.store.get_data_path(local_source))
        return result

    def _check_repub(self, id, request, reporter, local_source):
        # ask approval for replacing an existing publication; return the local content cache
        prefs = request.preferences
        if prefs.external_identifier:
            question = "This publication is intended to replace %s." % prefs.external_identifier
            if not self.cfg.get('allow_updates', False):
                question += " NOTE: Since updates are not allowed, a new DOI will be generated."
            if not self._approve(question + " Proceed?"):
                reporter.send(FAILURE_STAGE, DENIED_MSG.format(prefs.external_identifier))
                raise PublicationDenied(id)

        if not local_source and prefs.alternate_of:
            local_source = prefs.alternate_of
            self.log.info("Setting local content source to alternateOf value: %s", local_source)
        if not local_source:
            return None

        self.log.info("Looking at %s for local content", local_source)
        cache = None
        try:
            cache = BagContentCache(self.store.get_bag_file(local_source),
                                    self.log.getChild("localcache"))
        except (NotFoundError, OSError, zipfile.BadZipFile) as ex:
            self.log.warning("Local content source not available: %s", str(ex))
        if cache is not None and cache.hashtype:
            self.log.info("Proceeding with %s for local content", local_source)
            return cache

        question = "Original publication not found or has no usable hash entries: %s. " \
                   "Proceed (using remote content)?" % self.store.get_data_path(local_source)
        if not self._approve(question):
            reporter.send(FAILURE_STAGE, NO_LOCAL_MSG.format(local_source))
            raise PublicationDenied(id, "Local content source unavailable: " + local_source)
        return None
