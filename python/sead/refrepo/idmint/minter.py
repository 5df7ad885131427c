"""
Minters for the DOIs assigned to published aggregations, along with the policy that
decides whether a publication gets a new DOI or reuses the one it is replacing.
"""
import random, string, time
from collections import OrderedDict
from collections.abc import Mapping
from abc import ABCMeta, abstractmethod
from typing import List

from ..constants import DOI_RESOLVER, DOI_PREFIX_PAT, DEF_PURPOSE, TEST_PURPOSE
from ..exceptions import IdentityServiceError, ConfigurationException
from .registry import IDRegistry, CachingIDRegistry
from . import syslog

__all__ = [ 'IdentifierMinter', 'RegistryDOIMinter', 'DOIPolicy', 'DOIDecision', 'normalize_doi',
            'MINT', 'UPDATE' ]

MINT = "mint"
UPDATE = "update"

DOI_PFX = "doi:"
LOCAL_KEY_LENGTH = 6
_LOCAL_KEY_CHARS = string.ascii_uppercase + string.digits

def normalize_doi(id: str) -> str:
    """
    convert a DOI given as a resolver URL (``http(s)://dx.doi.org/...`` or
    ``http(s)://doi.org/...``) to the form ``doi:...``.  Other values are returned
    unchanged.
    """
    if not id:
        return id
    if DOI_PREFIX_PAT.match(id):
        return DOI_PFX + DOI_PREFIX_PAT.sub('', id)
    return id

def _bare_doi(id):
    if id and id.startswith(DOI_PFX):
        return id[len(DOI_PFX):]
    return id

class IdentifierMinter(object, metaclass=ABCMeta):
    """
    an interface to a service that issues persistent identifiers.  Both operations
    return the bare DOI (e.g. ``10.5072/FK2ABC123``).
    """

    @abstractmethod
    def mint(self, shoulder: str, target_url: str, metadata: Mapping) -> str:
        """
        issue a new identifier beginning with the given shoulder and resolving to the
        given URL
        :raise IdentityServiceError:  if the identifier could not be issued
        """
        raise NotImplementedError()

    @abstractmethod
    def update(self, identifier: str, target_url: str, metadata: Mapping) -> str:
        """
        update the target and metadata of an existing identifier
        :raise IdentityServiceError:  if the identifier could not be updated
        """
        raise NotImplementedError()

class RegistryDOIMinter(IdentifierMinter):
    """
    a minter that creates DOIs by appending a random key of 6 uppercase alphanumeric
    characters to a shoulder, recording each one in an :py:class:`IDRegistry` so that
    none is issued twice.  The registry stands in for the external DOI service: the
    target URL and metadata given for an identifier are stored as its data.

    This class recognizes the following configuration parameters:

    :param int max_tries:  the number of random keys to try before giving up on finding
                           an unused one (default: 100)
    """

    def __init__(self, config: Mapping=None, registry: IDRegistry=None):
        if config is None:
            config = {}
        self.cfg = config
        if registry is None:
            registry = CachingIDRegistry(self.cfg.get('registry_dir'), self.cfg.get('registry', {}), "doi")
        self.registry = registry
        self.max_tries = self.cfg.get('max_tries', 100)
        self._rand = random.SystemRandom()
        self.log = syslog.getChild("minter")

    def _local_key(self):
        return "".join([self._rand.choice(_LOCAL_KEY_CHARS) for i in range(LOCAL_KEY_LENGTH)])

    def _record(self, target_url, metadata):
        return OrderedDict([("target", target_url), ("metadata", dict(metadata or {})),
                            ("date", time.strftime("%Y-%m-%dT%H:%M:%S"))])

    def mint(self, shoulder, target_url, metadata):
        if not shoulder:
            raise IdentityServiceError("No DOI shoulder configured")
        with self.registry.lock:
            for i in range(self.max_tries):
                doi = shoulder + self._local_key()
                if self.registry.registered(doi):
                    continue
                try:
                    self.registry.registerID(doi, self._record(target_url, metadata))
                except (ValueError, OSError) as ex:
                    raise IdentityServiceError("Failed to register new DOI, " + doi, cause=ex)
                self.log.info("Minted %s for %s", doi, target_url)
                return doi

        raise IdentityServiceError("Unable to find an unused DOI with shoulder %s after %d tries" %
                                   (shoulder, self.max_tries))

    def update(self, identifier, target_url, metadata):
        doi = _bare_doi(normalize_doi(identifier))
        try:
            with self.registry.lock:
                if self.registry.registered(doi):
                    self.registry.update_data(doi, self._record(target_url, metadata))
                else:
                    self.registry.registerID(doi, self._record(target_url, metadata))
        except (ValueError, OSError) as ex:
            raise IdentityServiceError("Failed to update DOI, " + doi, cause=ex)
        self.log.info("Updated %s to point to %s", doi, target_url)
        return doi

class DOIDecision(object):
    """
    the outcome of applying the DOI policy to a publication: either MINT a new DOI with
    the given shoulder or UPDATE the existing DOI.
    """

    def __init__(self, action: str, shoulder: str, existing: str=None):
        self.action = action
        self.shoulder = shoulder
        self.existing = existing

    def __repr__(self):
        return "DOIDecision(%s, %s, %s)" % (self.action, self.shoulder, self.existing)

class DOIPolicy(object):
    """
    the rules for deciding whether a publication gets a new DOI or reuses the DOI of
    the publication it replaces.

    This class recognizes the following configuration parameters:

    :param str         shoulder:  (required) the prefix for production DOIs (e.g. "10.5072/FK2")
    :param str    test_shoulder:  the prefix for DOIs minted for testing (default: shoulder)
    :param str         resolver:  the base URL for resolving DOIs (default: https://doi.org/)
    :param list allowed_purposes: the publication purposes this repository may mint
                                  identifiers for (default: ["Production"])
    :param bool   allow_updates:  if True, a publication that replaces an existing one
                                  within the same shoulder keeps its DOI (default: False)
    """

    def __init__(self, config: Mapping=None, allow_updates: bool=None):
        if config is None:
            config = {}
        self.cfg = config
        self.shoulder = self.cfg.get('shoulder')
        self.test_shoulder = self.cfg.get('test_shoulder', self.shoulder)
        self.resolver = self.cfg.get('resolver', DOI_RESOLVER)
        if not self.resolver.endswith('/'):
            self.resolver += '/'
        if allow_updates is None:
            allow_updates = self.cfg.get('allow_updates', False)
        self.allow_updates = bool(allow_updates)
        self.log = syslog.getChild("policy")

    def allowed_purposes(self, repo_profile: Mapping=None) -> List[str]:
        """
        return the list of purposes identifiers may be minted for.  A purpose listed in
        the repository profile overrides the configured list.
        """
        if repo_profile and repo_profile.get("Purpose"):
            purp = repo_profile["Purpose"]
            return purp if isinstance(purp, list) else [purp]
        return list(self.cfg.get('allowed_purposes', [DEF_PURPOSE]))

    def decide(self, existing: str=None, purpose: str=DEF_PURPOSE, allowed: List[str]=None) -> DOIDecision:
        """
        decide whether to mint a new DOI or to update an existing one.

        :param str existing:  the DOI of the publication being replaced, if any
        :param str  purpose:  the purpose of the publication ("Production" or "Testing")
        :param list allowed:  the purposes permitted (default: :py:meth:`allowed_purposes`)
        :raise IdentityServiceError:  if the purpose is not permitted, or if an update was
                              requested for a DOI outside the selected shoulder
        """
        if not purpose:
            purpose = DEF_PURPOSE
        if allowed is None:
            allowed = self.allowed_purposes()
        if purpose not in allowed:
            raise IdentityServiceError("Repository not allowed to mint %s identifier" % purpose)

        if purpose.lower() == TEST_PURPOSE.lower():
            shoulder = self.test_shoulder
        else:
            if purpose.lower() != DEF_PURPOSE.lower():
                self.log.warning("Unknown Purpose Preference: %s", purpose)
            shoulder = self.shoulder
        if not shoulder:
            raise ConfigurationException("Missing required config parameter: doi.shoulder")

        existing = normalize_doi(existing)
        if existing and not self.allow_updates:
            self.log.warning("Update of existing identifier, %s, requested but not allowed; "
                             "a new DOI will be minted", existing)
        if existing and self.allow_updates:
            if _bare_doi(existing).startswith(shoulder):
                return DOIDecision(UPDATE, shoulder, existing)
            self.log.warning("Request to update an existing DOI that does not match requested "
                             "shoulder: %s : %s", existing, shoulder)
            raise IdentityServiceError("Cannot update doi due to shoulder conflict: " + existing)

        return DOIDecision(MINT, shoulder)

    def assign(self, minter: IdentifierMinter, existing: str=None, purpose: str=DEF_PURPOSE,
               target_url: str=None, metadata: Mapping=None, allowed: List[str]=None) -> str:
        """
        apply the policy and carry out its decision with the given minter, returning the
        resolvable URL for the resulting DOI.
        :raise IdentityServiceError:  if the policy forbids the assignment or the minter fails
        """
        decision = self.decide(existing, purpose, allowed)
        try:
            if decision.action == UPDATE:
                doi = minter.update(decision.existing, target_url, metadata)
            else:
                doi = minter.mint(decision.shoulder, target_url, metadata)
        except IdentityServiceError:
            raise
        except Exception as ex:
            raise IdentityServiceError("Identifier service failure: " + str(ex), cause=ex)

        self.log.debug("Assigned DOI: %s%s", self.resolver, _bare_doi(doi))
        return self.resolver + _bare_doi(doi)
