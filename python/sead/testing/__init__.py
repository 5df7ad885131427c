"""
Utilities for use in unit tests: management of temporary directories and files.

Tests typically call :py:func:`ensure_tmpdir` in ``setUpModule()``, :py:func:`rmtmpdir` in
``tearDownModule()``, and use a :py:class:`Tempfiles` instance to create per-test
directories that are cleaned up in ``tearDown()``.
"""
import os, shutil

__all__ = [ 'tmpdir', 'ensure_tmpdir', 'rmtmpdir', 'Tempfiles' ]

tmpname = "_test"

def tmpdir(uselocal=False, tmpname=tmpname):
    """
    return the path to a directory where temporary test files can be written.
    The parent directory is taken from the ``SEAD_TEST_TMPDIR`` environment
    variable, then ``TMPDIR``, falling back to the current directory.  Note that
    the returned directory may not exist yet (see :py:func:`ensure_tmpdir`).
    """
    base = None
    if not uselocal:
        base = os.environ.get('SEAD_TEST_TMPDIR') or os.environ.get('TMPDIR')
    if not base:
        base = os.getcwd()
    return os.path.join(base, "%s-%d" % (tmpname, os.getpid()))

def ensure_tmpdir(basedir=None, dirname=None):
    """
    ensure the existence of a temporary directory for tests and return its path.
    """
    tdir = tmpdir()
    if basedir:
        if not dirname:
            dirname = tmpname + str(os.getpid())
        tdir = os.path.join(basedir, dirname)
    if not os.path.exists(tdir):
        os.makedirs(tdir)
    return tdir

def rmtmpdir(basedir=None, dirname=None):
    """
    remove the temporary directory (and all its contents) created by ensure_tmpdir()
    """
    tdir = tmpdir()
    if basedir:
        if not dirname:
            dirname = tmpname + str(os.getpid())
        tdir = os.path.join(basedir, dirname)
    if os.path.exists(tdir):
        shutil.rmtree(tdir)

class Tempfiles(object):
    """
    a manager of temporary files and directories created by a test.  All
    tracked files are removed with a call to clean().
    """

    def __init__(self, tempdir=None):
        if not tempdir:
            tempdir = ensure_tmpdir()
        self._root = tempdir
        self._files = set()

    @property
    def root(self):
        """the directory where temporary files are created"""
        return self._root

    def __call__(self, child):
        return os.path.join(self._root, child)

    def track(self, filename):
        """
        register a file or directory (relative to the root) for removal by clean()
        """
        self._files.add(filename)
        return self(filename)

    def mkdir(self, dirname):
        """
        create a directory under the root and track it for removal
        """
        d = self.track(dirname)
        if not os.path.exists(d):
            os.makedirs(d)
        return d

    def clean(self):
        """
        remove all the tracked files and directories
        """
        for i in range(len(self._files)):
            filen = self._files.pop()
            path = os.path.join(self._root, filen)
            if os.path.exists(path):
                if os.path.isdir(path):
                    shutil.rmtree(path)
                else:
                    os.remove(path)

    def __del__(self):
        self.clean()
