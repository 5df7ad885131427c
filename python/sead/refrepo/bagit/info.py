"""
Generation of the bag's tag files: ``bagit.txt``, ``bag-info.txt``, the payload manifest
and ``pid-mapping.txt``.
"""
import time, textwrap
from collections import OrderedDict
from collections.abc import Mapping
from typing import Callable, List

from ..constants import *
from ..model import Aggregation, PublicationRequest, Person, single_value

__all__ = [ 'CRLF', 'bagit_txt', 'bag_info_text', 'manifest_text', 'pid_mapping_text', 'human_size' ]

CRLF = "\r\n"
INFO_WRAP_WIDTH = 78

_ONE_KB = 1024
_ONE_MB = _ONE_KB * _ONE_KB
_ONE_GB = _ONE_KB * _ONE_MB
_ONE_TB = _ONE_KB * _ONE_GB

def human_size(nbytes: int) -> str:
    """
    return a human-readable rendering of a byte count, rounded down to a whole number
    of the largest fitting unit (e.g. "1 GB", "12 MB", "512 bytes").
    """
    for unit, size in (("TB", _ONE_TB), ("GB", _ONE_GB), ("MB", _ONE_MB), ("KB", _ONE_KB)):
        if nbytes // size > 0:
            return "{0} {1}".format(nbytes // size, unit)
    return "{0} bytes".format(nbytes)

def bagit_txt() -> str:
    return "BagIt-Version: {0}\nTag-File-Character-Encoding: UTF-8".format(BAGIT_VERSION)

def _wrap(text):
    lines = textwrap.wrap(text, INFO_WRAP_WIDTH, break_long_words=True) or [""]
    return (CRLF + " ").join(lines)

def bag_info_text(agg: Aggregation, request: PublicationRequest, repo_info: Mapping=None,
                  expand_people: Callable=None, bagging_date: str=None) -> str:
    """
    render the contents of the bag-info.txt file.  Lines are terminated with CRLF.

    :param Aggregation      agg:  the aggregation being packaged (with its External
                                  Identifier already set)
    :param PublicationRequest request:  the publication request
    :param Mapping    repo_info:  additional labels describing the repository (e.g.
                                  Source-Organization, Organization-Address, Contact-Email),
                                  written in the order given
    :param Callable expand_people:  a function that converts a list of person identifiers
                                  into a list of person descriptions (used for the request's
                                  Rights Holder when the aggregation has no Contact)
    :param str     bagging_date:  the date to record (default: today, as yyyy-mm-dd)
    """
    lines = []
    if agg.get(PRIMARY_SOURCE):
        lines.append(("Source-Organization", single_value(agg.get(PRIMARY_SOURCE))))

    contacts = agg.contacts
    if not contacts and request.data.get(RIGHTS_HOLDER):
        holders = request.rights_holders
        if expand_people:
            holders = [Person(p) for p in expand_people([h.data for h in holders])]
        contacts = holders
    for person in contacts:
        lines.append(("Contact-Name", person.display_name))
        if person.email:
            lines.append(("Contact-Email", person.email))

    if repo_info:
        for label, val in repo_info.items():
            lines.append((label, str(val)))

    lines.append(("External-Description", _wrap(agg.abstract)))
    if not bagging_date:
        bagging_date = time.strftime("%Y-%m-%d")
    lines.append(("Bagging-Date", bagging_date))
    lines.append(("External-Identifier", agg.external_identifier or ""))

    stats = request.statistics
    lines.append(("Bag-Size", human_size(stats.total_size)))
    lines.append(("Payload-Oxum", "{0}.{1}".format(stats.total_size, stats.count)))
    lines.append(("Internal-Sender-Identifier", agg.identifier))

    return "".join(["{0}: {1}{2}".format(lab, val, CRLF) for lab, val in lines])

def manifest_text(hashes: Mapping) -> str:
    """
    render a payload manifest from a map of bag paths to hash values
    """
    return "".join(["{0} {1}\n".format(h, p) for p, h in hashes.items()])

def pid_mapping_text(pidmap: Mapping) -> str:
    """
    render the identifier-to-path mapping from a map of identifiers to bag paths
    """
    return "".join(["{0} {1}\n".format(id, p) for id, p in pidmap.items()])
