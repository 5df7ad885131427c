"""
Registries that record the identifiers that have been issued so that they are never
issued twice.
"""
import os, json, threading
from collections import OrderedDict, ChainMap
from collections.abc import Mapping
from abc import ABCMeta, abstractmethod

from ..exceptions import StateException
from ..utils import LockedFile
from . import syslog

__all__ = [ 'IDRegistry', 'CachingIDRegistry' ]

DEF_STORE_FILE = "issued-ids.tsv"

class IDRegistry(object, metaclass=ABCMeta):
    """
    an interface to a store of issued identifiers and the data associated with them
    """

    @abstractmethod
    def registerID(self, id, data=None):
        """
        record the given identifier as issued, along with optional data describing it
        :raises ValueError:  if the id is already registered
        """
        raise NotImplementedError()

    @abstractmethod
    def registered(self, id) -> bool:
        """return True if the identifier has been issued"""
        raise NotImplementedError()

    @abstractmethod
    def get_data(self, id):
        """return the data recorded for an identifier (None if it has not been issued)"""
        raise NotImplementedError()

class CachingIDRegistry(IDRegistry):
    """
    a registry kept in memory and, when given a directory, saved to a file there.

    Each line of the saved file holds one identifier, a tab, and the identifier's data
    encoded as JSON.  The file is only ever appended to; when an identifier appears more
    than once, the last line wins.

    Supported configuration parameters:

    ``id_store_file``
        the name of the file in the parent directory (default: ``issued-ids.tsv``, prefixed
        with the registry's name and a hyphen when it has one)
    ``cache_on_register``
        if True (the default), each registration is written out as it happens; otherwise,
        registrations accumulate until :py:meth:`cache_data` is called.
    """

    def __init__(self, parentdir: str=None, config: Mapping=None, name: str=None):
        """
        :param str  parentdir:  the directory to save the registry in; if None, the registry
                                  lives only in memory
        :param Mapping config:  the registry's configuration
        :param str       name:  a name distinguishing this registry from others in the same
                                  directory
        :raise StateException:  if parentdir is given but is not an existing directory
        :raise TypeError:       if config is not a dictionary
        """
        if parentdir and not os.path.isdir(parentdir):
            raise StateException("%s: Not an existing directory" % parentdir)
        config = config or {}
        if not isinstance(config, Mapping):
            raise TypeError("Configuration not a dictionary: " + str(type(config)))

        self.cfg = config
        self.name = name
        self.cache_immediately = config.get('cache_on_register', True)
        self.log = syslog.getChild(":".join([type(self).__name__] + ([name] if name else [])))
        self.lock = threading.RLock()

        self.uncached = OrderedDict()
        self.cached = {}
        self.data = ChainMap(self.uncached, self.cached)

        self.store = None
        if parentdir:
            filename = config.get('id_store_file')
            if not filename:
                filename = (name and "-".join([name, DEF_STORE_FILE])) or DEF_STORE_FILE
            self.store = os.path.join(parentdir, filename)

            if os.path.exists(self.store):
                self.reload_data()
                if not self.cached:
                    self.log.warning("%s: registry file holds no identifiers", self.store)

    def reload_data(self):
        """
        replace the saved identifiers held in memory with the contents of the registry file
        """
        with self.lock:
            with LockedFile(self.store) as fd:
                self.cached = dict(self._read_entry(line) for line in fd if line.strip())
            self.data = ChainMap(self.uncached, self.cached)

    def _read_entry(self, line):
        id, _, encoded = line.rstrip("\n").partition("\t")
        try:
            return (id, json.loads(encoded))
        except ValueError:
            self.log.warning("%s: data for %s is not JSON; keeping it as text", self.store, id)
            return (id, encoded)

    def cache_data(self):
        """
        write out all registrations not yet saved to the registry file
        """
        if not self.store:
            return
        with self.lock:
            if not self.uncached:
                self.log.debug("Nothing new to save")
                return
            with LockedFile(self.store, 'a') as fd:
                while self.uncached:
                    id, data = self.uncached.popitem(last=False)
                    fd.write("%s\t%s\n" % (id, json.dumps(data)))
                    self.cached[id] = data

    def _record(self, id, data):
        self.uncached[id] = data
        if self.cache_immediately:
            self.cache_data()

    def registerID(self, id, data=None):
        """
        record the given identifier as issued

        :param str   id:  the identifier to reserve
        :param dict data: data to record with it (default: an empty dictionary)
        :raises ValueError:  if the identifier was already registered
        """
        with self.lock:
            if id in self.data:
                raise ValueError("id is already registered: " + id)
            self._record(id, {} if data is None else data)

    def update_data(self, id, data):
        """
        replace the data recorded with an already registered identifier
        :raises ValueError:  if the id has not been registered
        """
        with self.lock:
            if id not in self.data:
                raise ValueError("id is not registered: " + id)
            self.cached.pop(id, None)
            self._record(id, data)

    def get_data(self, id):
        return self.data.get(id)

    def registered(self, id):
        return id in self.data

    def iter(self):
        """
        iterate through the registered identifiers
        """
        return iter(self.data.keys())

    def __len__(self):
        return len(self.data)
