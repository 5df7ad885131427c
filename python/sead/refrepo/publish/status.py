"""
This module provides the channel through which the progress and outcome of a publication
effort are reported back to the requester.

A status update consists of a stage label (one of the stages defined in this module) and
a message for display to the end user.  Delivery of status updates is best-effort:  a
failure to deliver an update is logged but never interrupts the publication.
"""
import json, os, time, logging
from collections import OrderedDict
from collections.abc import Mapping
from abc import ABCMeta, abstractmethod
from urllib.parse import quote

import requests

from ..constants import PENDING_STAGE, SUCCESS_STAGE, FAILURE_STAGE, PROBLEM_STAGE, INFO_STAGE
from ..exceptions import ConfigurationException
from ..utils import append_json_line, read_json_lines
from . import syslog

__all__ = [ 'StatusReporter', 'LogStatusReporter', 'FileStatusReporter', 'HTTPStatusReporter',
            'create_status_reporter', 'stages' ]

stages = [ PENDING_STAGE, SUCCESS_STAGE, FAILURE_STAGE, PROBLEM_STAGE, INFO_STAGE ]

DEF_REPORTER = "SEAD Reference Repository"

class StatusReporter(object, metaclass=ABCMeta):
    """
    an interface for sending status updates about the publication of one request.
    """

    def __init__(self, id: str, reporter: str=DEF_REPORTER, log: logging.Logger=None):
        """
        :param str       id:  the identifier of the request (or aggregation) being published
        :param str reporter:  the name to identify the repository to the recipient by
        """
        self.id = id
        self.reporter = reporter
        if not log:
            log = syslog.getChild("status")
        self.log = log

    def send(self, stage: str, message: str) -> bool:
        """
        send a status update.

        :param str   stage:  one of the stages defined in this module (e.g. "Success")
        :param str message:  the message to display to the end user
        :return:  True if the update was delivered
        :raise ValueError:  if the stage is not recognized
        """
        if stage not in stages:
            raise ValueError("Not a recognized status stage: " + str(stage))
        try:
            self._deliver(stage, message)
            return True
        except Exception as ex:
            self.log.warning("Failed to send %s status for %s: %s", stage, self.id, str(ex))
            return False

    @abstractmethod
    def _deliver(self, stage, message):
        raise NotImplementedError()

    def _update(self, stage, message):
        return OrderedDict([("reporter", self.reporter), ("stage", stage), ("message", message)])

class LogStatusReporter(StatusReporter):
    """
    a StatusReporter that simply records updates to the log
    """

    def _deliver(self, stage, message):
        level = logging.INFO
        if stage in (FAILURE_STAGE, PROBLEM_STAGE):
            level = logging.WARNING
        self.log.log(level, "%s status for %s: %s", stage, self.id, message)

class FileStatusReporter(StatusReporter):
    """
    a StatusReporter that appends its updates as JSON lines to a file.  Each line records
    the request identifier, the reporter, the stage, the message, and the time of the
    update.

    This class recognizes the following configuration parameters:

    :param str statusdir:  (required) the directory to write status files into; each
                           request's updates go to a file named after its identifier
    """

    def __init__(self, id: str, config: Mapping, reporter: str=DEF_REPORTER, log: logging.Logger=None):
        super(FileStatusReporter, self).__init__(id, reporter, log)
        statusdir = config.get('statusdir')
        if not statusdir:
            raise ConfigurationException("Missing required config parameter: status.statusdir")
        self.statusfile = os.path.join(statusdir, _safe_name(id) + ".status.json")

    def _deliver(self, stage, message):
        data = self._update(stage, message)
        data['id'] = self.id
        data['time'] = time.strftime("%Y-%m-%dT%H:%M:%S")
        os.makedirs(os.path.dirname(self.statusfile), exist_ok=True)
        append_json_line(self.statusfile, data)

    def history(self):
        """
        return the list of status updates sent so far, oldest first
        """
        if not os.path.exists(self.statusfile):
            return []
        return read_json_lines(self.statusfile)

class HTTPStatusReporter(StatusReporter):
    """
    a StatusReporter that POSTs its updates as JSON to the publication request service
    at ``<service_endpoint>api/researchobjects/<id>/status``.

    This class recognizes the following configuration parameters:

    :param str service_endpoint:  (required) the base URL of the publication request service
    :param str auth_token:        a bearer token to authorize with
    :param int timeout:           the number of seconds to wait for a response (default: 30)
    """

    def __init__(self, id: str, config: Mapping, reporter: str=DEF_REPORTER, log: logging.Logger=None):
        super(HTTPStatusReporter, self).__init__(id, reporter, log)
        self.cfg = config
        ep = self.cfg.get('service_endpoint')
        if not ep:
            raise ConfigurationException("Missing required config parameter: service_endpoint")
        if not ep.endswith('/'):
            ep += '/'
        self.url = ep + "api/researchobjects/" + quote(id, safe='') + "/status"
        self.timeout = self.cfg.get('timeout', 30)

    def _deliver(self, stage, message):
        hdrs = { "Content-Type": "application/json", "Accept": "application/json" }
        if self.cfg.get('auth_token'):
            hdrs['Authorization'] = "Bearer " + self.cfg['auth_token']
        resp = requests.post(self.url, data=json.dumps(self._update(stage, message)),
                             headers=hdrs, timeout=self.timeout)
        try:
            if resp.status_code != 200:
                self.log.warning("Status service returned %s %s for %s", resp.status_code,
                                 resp.reason, self.id)
                raise RuntimeError("status update rejected: {0} {1}".format(resp.status_code,
                                                                            resp.reason))
            self.log.debug("Sent %s status for %s", stage, self.id)
        finally:
            resp.close()

def _safe_name(id):
    return "".join([(c.isalnum() and c) or "_" for c in id])

def create_status_reporter(config: Mapping, id: str, log: logging.Logger=None) -> StatusReporter:
    """
    create the StatusReporter selected by the configuration.

    :param dict config:  the ``status`` configuration; its ``type`` parameter selects the
                         channel: "log" (default), "file", or "http".  For "http", the
                         ``service_endpoint`` and ``auth_token`` default to those given in
                         a ``pubreq_service`` parameter.
    :param str      id:  the identifier for the request being published
    """
    if config is None:
        config = {}
    reporter = config.get('reporter', DEF_REPORTER)
    tp = config.get('type', 'log')
    if tp == 'log':
        return LogStatusReporter(id, reporter, log)
    if tp == 'file':
        return FileStatusReporter(id, config, reporter, log)
    if tp == 'http':
        cfg = dict(config.get('pubreq_service', {}))
        cfg.update([(k, v) for k, v in config.items() if k != 'pubreq_service'])
        return HTTPStatusReporter(id, cfg, reporter, log)
    raise ConfigurationException("Unrecognized status channel type: " + str(tp))
