"""
Sources of publication requests:  a publication request names an aggregation to publish,
the repository it is sent to, the publication preferences, and the location of the
aggregation's ORE map.

Two implementations of the :py:class:`PubRequestSource` interface are provided:
:py:class:`C3PRClient` retrieves requests from the SEAD C3PR publication request service;
:py:class:`FilePubRequestSource` reads them from local JSON files.
"""
import time, logging
from collections import OrderedDict
from collections.abc import Mapping
from abc import ABCMeta, abstractmethod
from urllib.parse import quote
from typing import List

import requests

from ..exceptions import NotFoundError, RemoteServiceError, ConfigurationException, StateException
from ..model import PublicationRequest, AggregationDocument
from ..bagit.content import RetryPolicy
from ..utils import read_json
from ..utils.logging import blab
from . import syslog

__all__ = [ 'PubRequestSource', 'C3PRClient', 'FilePubRequestSource' ]

class PubRequestSource(object, metaclass=ABCMeta):
    """
    an interface for retrieving publication requests and the ORE maps they refer to
    """

    @abstractmethod
    def get_request(self, id: str) -> PublicationRequest:
        """
        return the publication request with the given identifier.  If the request names a
        repository whose profile is known, the profile is attached to the returned
        request as its ``repository_profile``.
        :raise NotFoundError:  if the request does not exist
        """
        raise NotImplementedError()

    @abstractmethod
    def get_oremap(self, request: PublicationRequest) -> AggregationDocument:
        """
        return the ORE map for the aggregation that the given request asks to publish
        :raise NotFoundError:  if the ORE map cannot be found
        """
        raise NotImplementedError()

    def get_repository(self, request: PublicationRequest) -> Mapping:
        """
        return the profile of the repository the request was sent to, or None if it is
        not known
        """
        return None

    def expand_people(self, people: List) -> List:
        """
        convert a list of person identifiers into a list of person descriptions.  An
        identifier that cannot be expanded is returned unchanged.  This implementation
        returns the list as given.
        """
        return list(people)

    def auth_token(self, request: PublicationRequest) -> str:
        """
        return the bearer token to use when retrieving content for the given request, or
        None if no token is available
        """
        return request.bearer_token

class C3PRClient(PubRequestSource):
    """
    a client for the SEAD C3PR publication request service.

    This class recognizes the following configuration parameters:

    :param str service_endpoint:  (required) the base URL of the service (e.g.
                                  ``https://sead-test.ncsa.illinois.edu/c3pr/``)
    :param str auth_token:        the default bearer token used to retrieve content when a
                                  request does not provide one
    :param bool proxy:            if True, the ORE map is retrieved through the service
                                  endpoint rather than from the URL given in the request
    :param int timeout:           the number of seconds to wait for a response (default: 60)
    :param dict retry:            the retry policy for retrieving documents (see
                                  :py:class:`~sead.refrepo.bagit.content.RetryPolicy`)
    """

    def __init__(self, config: Mapping, log: logging.Logger=None):
        self.cfg = config
        ep = self.cfg.get('service_endpoint')
        if not ep:
            raise ConfigurationException("Missing required config parameter: service_endpoint")
        if not ep.endswith('/'):
            ep += '/'
        self.baseurl = ep
        self.timeout = self.cfg.get('timeout', 60)
        self.policy = RetryPolicy.from_config(self.cfg)
        if not log:
            log = syslog.getChild("c3pr")
        self.log = log

    def _url(self, coll, id):
        return self.baseurl + "api/" + coll + "/" + quote(id, safe='')

    def _retrieve(self, url, id):
        hdrs = { "Accept": "application/json" }
        attempt = 0
        while True:
            attempt += 1
            blab(self.log, "Retrieving %s (attempt %d)", url, attempt)
            try:
                resp = requests.get(url, headers=hdrs, timeout=self.timeout)
                try:
                    if resp.status_code == 404:
                        raise NotFoundError(id)
                    elif resp.status_code >= 500 and attempt < self.policy.max_attempts:
                        self.log.warning("Attempt# %d: %s returned %s %s", attempt, url,
                                         resp.status_code, resp.reason)
                    elif resp.status_code != 200:
                        raise RemoteServiceError(url, resp.status_code, resp.reason)
                    else:
                        return resp.json(object_pairs_hook=OrderedDict)
                finally:
                    resp.close()

            except ValueError as ex:
                raise RemoteServiceError(url, msg="Unable to parse response from %s as JSON "
                                                  "(is service URL correct?)" % url, cause=ex)
            except requests.RequestException as ex:
                if attempt >= self.policy.max_attempts:
                    raise RemoteServiceError(url, cause=ex)
                self.log.warning("Attempt# %d: Unable to retrieve %s: %s", attempt, url, str(ex))

            wait = self.policy.delay(attempt)
            if wait:
                time.sleep(wait)

    def get_request(self, id):
        self.log.debug("Retrieving publication request %s", id)
        req = PublicationRequest(self._retrieve(self._url("researchobjects", id), id))
        req.repository_profile = self.get_repository(req)
        return req

    def get_repository(self, request):
        repo = request.repository
        if not repo:
            return None
        try:
            return self._retrieve(self._url("repositories", repo), repo)
        except (NotFoundError, RemoteServiceError) as ex:
            self.log.warning("Unable to retrieve profile for repository %s: %s", repo, str(ex))
            return None

    def _oremap_url(self, request):
        url = request.oremap_url
        if not url:
            raise StateException("Publication request does not give the location of its ORE map")
        if self.cfg.get('proxy') and "api" in url:
            url = self.baseurl + url[url.index("api"):]
        return url

    def get_oremap(self, request):
        url = self._oremap_url(request)
        self.log.debug("Retrieving ORE map from %s", url)
        return AggregationDocument(self._retrieve(url, url))

    def expand_people(self, people):
        out = []
        for person in people:
            if not isinstance(person, str):
                out.append(person)
                continue
            try:
                out.append(self._retrieve(self._url("people", person), person))
            except (NotFoundError, RemoteServiceError) as ex:
                blab(self.log, "Adding unexpanded person: %s (%s)", person, str(ex))
                out.append(person)
        return out

    def auth_token(self, request):
        return request.bearer_token or self.cfg.get('auth_token')

class FilePubRequestSource(PubRequestSource):
    """
    a PubRequestSource that reads the publication request and ORE map from local JSON
    files, optionally deferring to another source for whatever is not given as a file.
    """

    def __init__(self, reqfile: str=None, oremapfile: str=None, delegate: PubRequestSource=None,
                 repo_profile: Mapping=None):
        """
        :param str      reqfile:  the path to the publication request file
        :param str   oremapfile:  the path to the ORE map file
        :param PubRequestSource delegate:  the source to consult for what is not provided
                                  as a file (including the expansion of people)
        :param Mapping repo_profile:  the profile of the repository the request was sent to
        """
        self.reqfile = reqfile
        self.oremapfile = oremapfile
        self.delegate = delegate
        self.repo_profile = repo_profile

    def _read(self, path):
        try:
            return read_json(path)
        except FileNotFoundError as ex:
            raise NotFoundError(path, cause=ex)
        except ValueError as ex:
            raise StateException("%s: not valid JSON: %s" % (path, str(ex)), cause=ex)

    def get_request(self, id):
        if not self.reqfile:
            if not self.delegate:
                raise NotFoundError(id, "No publication request file given for " + id)
            return self.delegate.get_request(id)
        req = PublicationRequest(self._read(self.reqfile))
        req.repository_profile = self.get_repository(req)
        return req

    def get_repository(self, request):
        if self.repo_profile is not None:
            return self.repo_profile
        if self.delegate:
            return self.delegate.get_repository(request)
        return None

    def get_oremap(self, request):
        if not self.oremapfile:
            if not self.delegate:
                raise NotFoundError(request.oremap_url, "No ORE map file given")
            return self.delegate.get_oremap(request)
        return AggregationDocument(self._read(self.oremapfile))

    def expand_people(self, people):
        if self.delegate:
            return self.delegate.expand_people(people)
        return list(people)

    def auth_token(self, request):
        if self.delegate:
            return self.delegate.auth_token(request)
        return request.bearer_token
