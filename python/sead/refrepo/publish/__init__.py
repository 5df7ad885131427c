"""
Orchestration of publication: retrieving a publication request and the ORE map it refers
to, deciding whether the request may proceed, packaging the aggregation into a bag in
the reference store, and reporting the outcome to the requester through a status
channel.
"""
from ... import refrepo as _repo

_PUBSUBSYSNAME = "Publishing"
_PUBSUBSYSABBREV = "Pub"

class PublishingSystem(_repo.RepoSystem):
    """
    a SystemInfoMixin providing static information about the publishing system
    """
    def __init__(self):
        super(PublishingSystem, self).__init__(_PUBSUBSYSNAME, _PUBSUBSYSABBREV)

system = PublishingSystem()
syslog = system.getSysLogger()

from .status import (StatusReporter, LogStatusReporter, FileStatusReporter, HTTPStatusReporter,
                     create_status_reporter)
from .request import PubRequestSource, C3PRClient, FilePubRequestSource
from .service import Publisher
