"""
Utility functions and classes for reading and writing the repository's small state files
(identifier registries, status logs, cached indexes).
"""
from collections import OrderedDict
import json, os, threading, tempfile
try:
    import fcntl
except ImportError:
    fcntl = None

from ..exceptions import StateException
from .logging import blab, utilslog
log = utilslog

__all__ = [ 'LockedFile', 'read_json', 'read_json_lines', 'append_json_line', 'write_atomically' ]

class _ReadWriteLock(object):
    # many readers or one writer, within this process
    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    def acquire(self, exclusive):
        with self._cond:
            if exclusive:
                while self._writer or self._readers:
                    self._cond.wait()
                self._writer = True
            else:
                while self._writer:
                    self._cond.wait()
                self._readers += 1

    def release(self, exclusive):
        with self._cond:
            if exclusive:
                self._writer = False
            elif self._readers > 0:
                self._readers -= 1
            self._cond.notify_all()

class LockedFile(object):
    """
    a file opened under a lock that guards it against simultaneous access from other
    threads and (where ``fcntl`` is available) other processes.  A file opened for
    reading gets a shared lock; one opened in any mode that can modify it gets an
    exclusive lock.

    Typical use is via the with statement:

    .. code-block:: python

       with LockedFile(statusfile, 'a') as fd:
           fd.write(line)
    """
    _locks = {}
    _locks_guard = threading.Lock()

    @classmethod
    def _lock_for(cls, filepath):
        key = os.path.abspath(filepath)
        with cls._locks_guard:
            return cls._locks.setdefault(key, _ReadWriteLock())

    def __init__(self, filename, mode='r'):
        self.mode = mode
        self._fname = filename
        self._fo = None
        self._exclusive = False
        self._lock = self._lock_for(filename)

    @property
    def fo(self):
        """
        the open file object or None if the file is not currently open
        """
        return self._fo

    def open(self, mode=None):
        """
        open the file, waiting as necessary for the lock appropriate to the mode.  If mode
        is not provided, the mode given at construction is used.
        :raise StateException:  if this file is already open
        :raise OSError:         if the file cannot be opened
        """
        if self._fo:
            raise StateException(str(self._fname)+": file is already open")
        if mode:
            self.mode = mode

        self._exclusive = any([c in self.mode for c in "wa+"])
        self._lock.acquire(self._exclusive)
        try:
            fo = open(self._fname, self.mode)
        except Exception:
            self._lock.release(self._exclusive)
            raise

        if fcntl:
            fcntl.lockf(fo, (self._exclusive and fcntl.LOCK_EX) or fcntl.LOCK_SH)
        self._fo = fo
        return fo

    def close(self):
        if not self._fo:
            return
        try:
            self._fo.close()
        finally:
            self._fo = None
            self._lock.release(self._exclusive)

    def __enter__(self):
        return self.open()

    def __exit__(self, e1, e2, e3):
        self.close()
        return False

    def __del__(self):
        self.close()

def read_json(jsonfile, nolock=False):
    """
    read the JSON data from the specified file, preserving the order of object members

    :param str   jsonfile:  the path to the JSON file to read.
    :param bool  nolock:    if True, read the file without acquiring a shared lock
    :raise OSError:     if the file cannot be read
    :raise ValueError:  if JSON format errors are detected.
    """
    if nolock:
        with open(jsonfile) as fd:
            return json.load(fd, object_pairs_hook=OrderedDict)

    with LockedFile(jsonfile) as fd:
        blab(log, "Reading %s under shared lock", jsonfile)
        return json.load(fd, object_pairs_hook=OrderedDict)

def append_json_line(destfile, data):
    """
    append a JSON object as a single line to a JSON-lines file, creating the file (but not
    its parent directory) if necessary.
    :raise StateException:  if the record could not be written
    """
    try:
        with LockedFile(destfile, 'a') as fd:
            fd.write(json.dumps(data))
            fd.write("\n")
    except OSError as ex:
        raise StateException("{0}: Failed to append record: {1}".format(destfile, str(ex)), cause=ex)

def read_json_lines(srcfile):
    """
    return the list of JSON objects stored one per line in the given file; blank lines
    are ignored.
    :raise ValueError:  if a line cannot be parsed
    """
    with LockedFile(srcfile) as fd:
        return [json.loads(line, object_pairs_hook=OrderedDict) for line in fd if line.strip()]

def write_atomically(destfile, writer, mode='w'):
    """
    write a file by first writing to a temporary file in the same directory and then
    renaming it into place, so that readers never see a partially written file.

    :param str    destfile:  the path of the file to (over-)write
    :param Callable writer:  a function that takes an open file object and writes the
                             file's contents to it
    :param str        mode:  the mode to open the temporary file with ('w' or 'wb')
    """
    parent = os.path.dirname(os.path.abspath(destfile))
    fd, tmpf = tempfile.mkstemp(dir=parent, prefix="." + os.path.basename(destfile) + ".")
    try:
        with os.fdopen(fd, mode) as fo:
            writer(fo)
        os.replace(tmpf, destfile)
    except Exception:
        if os.path.exists(tmpf):
            os.remove(tmpf)
        raise
