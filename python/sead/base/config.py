"""
Utilities for loading configuration data and setting up logging.

Configuration in the SEAD repository packages is plain, nested dictionary data that is
passed explicitly into the constructors of the classes that need it.  This module
provides the means to read such data from YAML or JSON files and to merge layers of
configuration together.
"""
import os, json, logging, copy
from collections.abc import Mapping

import yaml

NORMAL = logging.DEBUG + 5
logging.addLevelName(NORMAL, "NORMAL")

global_logdir = None
global_logfile = None
_log_handler = None

__all__ = [ 'ConfigurationException', 'load_from_file', 'merge_config', 'configure_log',
            'NORMAL', 'DEF_FORMAT' ]

DEF_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"

class ConfigurationException(Exception):
    """
    an exception indicating a problem with the configuration data provided to a
    component (e.g. a missing required parameter or an illegal value).
    """
    def __init__(self, msg=None, cause=None, sys=None):
        if not msg:
            msg = "Configuration error"
            if cause:
                msg += ": " + str(cause)
        super(ConfigurationException, self).__init__(msg)
        self.cause = cause
        self.system = sys

def load_from_file(configfile):
    """
    read the configuration from the given file and return it as a dictionary.
    The file is expected to contain either YAML or JSON data; the format is
    determined from the file extension (.json for JSON, anything else is read
    as YAML, a superset of JSON).

    :param str configfile:  the path to the configuration file
    :rtype: dict
    """
    try:
        with open(configfile) as fd:
            if configfile.endswith('.json'):
                return json.load(fd)
            out = yaml.safe_load(fd)
    except (OSError, ValueError, yaml.YAMLError) as ex:
        raise ConfigurationException("Unable to read config file, {0}: {1}".format(configfile, str(ex)),
                                     cause=ex)
    if out is None:
        out = {}
    if not isinstance(out, Mapping):
        raise ConfigurationException(configfile + ": config data is not an object")
    return out

def merge_config(primary, defconf):
    """
    do a deep merge of a primary configuration on top of a default configuration.
    Values in primary override those in defconf; nested dictionaries are merged
    recursively.  Neither input is changed; a new dictionary is returned.

    :param dict primary:  the configuration whose values take precedence
    :param dict defconf:  the default configuration to merge into
    """
    out = copy.deepcopy(defconf)
    for key, val in primary.items():
        if isinstance(val, Mapping) and isinstance(out.get(key), Mapping):
            out[key] = merge_config(val, out[key])
        else:
            out[key] = copy.deepcopy(val)
    return out

def configure_log(logfile=None, level=None, format=None, config=None, addstderr=False):
    """
    configure the root logger to send messages to a log file.  This is intended to be
    called once by an application (e.g. a command-line script); library code never
    calls it.

    :param str logfile:  the path to the log file; if relative, it is taken relative
                         to the configured ``logdir`` (or the current directory).
                         If not given, the ``logfile`` config parameter is used.
    :param int   level:  the logging level for the file handler (default: from the
                         ``loglevel`` config parameter, else NORMAL)
    :param str  format:  the message format (default: DEF_FORMAT)
    :param dict config:  configuration data that may contain ``logdir``, ``logfile``,
                         and ``loglevel``
    :param bool addstderr:  if True, also send messages to standard error
    """
    global global_logdir, global_logfile, _log_handler
    if not config:
        config = {}
    if not logfile:
        logfile = config.get('logfile', 'refrepo.log')
    if not os.path.isabs(logfile):
        global_logdir = config.get('logdir', os.getcwd())
        logfile = os.path.join(global_logdir, logfile)
    else:
        global_logdir = os.path.dirname(logfile)
    global_logfile = logfile

    if level is None:
        level = config.get('loglevel', NORMAL)
        if isinstance(level, str):
            level = logging.getLevelName(level)
    if not format:
        format = config.get('logformat', DEF_FORMAT)

    root = logging.getLogger()
    if _log_handler:
        root.removeHandler(_log_handler)
        _log_handler.close()

    _log_handler = logging.FileHandler(logfile)
    _log_handler.setLevel(level)
    _log_handler.setFormatter(logging.Formatter(format))
    root.addHandler(_log_handler)
    root.setLevel(min(level, root.level or logging.WARNING))

    if addstderr:
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter(format))
        root.addHandler(handler)

    return root
