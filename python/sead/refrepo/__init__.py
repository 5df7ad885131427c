"""
Provide the functionality of the SEAD Reference Repository: packaging of published
aggregations ("ORE maps") into BagIt bags and indexed, random-access reading of the
aggregation documents stored within them.
"""
import os

from .constants import *
from ..base import SystemInfoMixin

try:
    from .version import __version__
except ImportError:
    __version__ = "(unset)"

_REPOSYSNAME = "SEAD Reference Repository"
_REPOSYSABBREV = "RefRepo"

class RepoSystem(SystemInfoMixin):
    """
    A SystemInfoMixin representing the overall reference repository system.
    """
    def __init__(self, subsysname="", subsysabbrev=""):
        super(RepoSystem, self).__init__(_REPOSYSNAME, _REPOSYSABBREV, subsysname, subsysabbrev,
                                         __version__)

system = RepoSystem()

def def_num_threads(config=None):
    """
    return the number of worker threads to use for parallel content retrieval and
    validation: the ``num_threads`` config parameter if set, otherwise the number of
    available processors.
    """
    if config and config.get('num_threads'):
        return int(config['num_threads'])
    return os.cpu_count() or 1
