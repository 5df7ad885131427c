"""
Minting and registration of the persistent identifiers (DOIs) assigned to published
aggregations.
"""
from ... import refrepo as _repo

_IDSUBSYSNAME = "Identifier Minting"
_IDSUBSYSABBREV = "IDMint"

class IDMintSystem(_repo.RepoSystem):
    """
    a SystemInfoMixin providing static information about the identifier minting system
    """
    def __init__(self):
        super(IDMintSystem, self).__init__(_IDSUBSYSNAME, _IDSUBSYSABBREV)

system = IDMintSystem()
syslog = system.getSysLogger()

from .registry import IDRegistry, CachingIDRegistry
from .minter import (IdentifierMinter, RegistryDOIMinter, DOIPolicy, DOIDecision, normalize_doi,
                     MINT, UPDATE)
