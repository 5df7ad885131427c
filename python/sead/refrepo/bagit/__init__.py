"""
Packaging of aggregations into BagIt bags (serialized as zip files) and validation of
the bags produced.

The bag layout is::

    <bagroot>/bagit.txt
    <bagroot>/bag-info.txt
    <bagroot>/manifest-sha1.txt  (or manifest-sha512.txt)
    <bagroot>/pid-mapping.txt
    <bagroot>/oremap.jsonld.txt
    <bagroot>/data/<container titles.../><file label>

where ``<bagroot>`` is the aggregation identifier with non-word characters replaced by
underscores.
"""
from ... import refrepo as _repo

_BAGSUBSYSNAME = "Packaging"
_BAGSUBSYSABBREV = "Bag"

class PackagingSystem(_repo.RepoSystem):
    """
    a SystemInfoMixin providing static information about the packaging system
    """
    def __init__(self):
        super(PackagingSystem, self).__init__(_BAGSUBSYSNAME, _BAGSUBSYSABBREV)

system = PackagingSystem()
syslog = system.getSysLogger()

from .ledger import ResourceUsageLedger, UNUSED, SUCCESS, FAILURE
from .content import (RetryPolicy, ContentSink, LocalContentCache, BagContentCache, RemoteFetcher,
                      ContentResolver, ZipMemberStream)
from .writer import ScatterGatherArchive, EntryResult
from .generator import BagGenerator, BagResult
from .validate import BagValidator, ZippedBag, validate_bag_file
