"""
Base classes and utilities shared by the SEAD repository packages.
"""
import logging

class SystemInfoMixin(object):
    """
    a mixin providing static information about a system (or subsystem) in which a
    component operates.  This information is used to tag log messages and exceptions
    with the part of the system they originate from.
    """

    def __init__(self, sysname, sysabbrev, subsysname, subsysabbrev, version):
        self._sysname = sysname
        self._sysabbrev = sysabbrev
        self._subname = subsysname
        self._subabbrev = subsysabbrev
        self._ver = version

    @property
    def system_name(self):
        """the full name of the overall system"""
        return self._sysname
    @property
    def system_abbrev(self):
        """the abbreviated name of the overall system"""
        return self._sysabbrev
    @property
    def subsystem_name(self):
        """the full name of the subsystem (may be an empty string)"""
        return self._subname
    @property
    def subsystem_abbrev(self):
        """the abbreviated name of the subsystem (may be an empty string)"""
        return self._subabbrev
    @property
    def system_version(self):
        """the version of the software providing this system"""
        return self._ver

    def getSysLogger(self):
        """
        return the Logger that serves as the root for all messages coming from this
        (sub)system.
        """
        out = logging.getLogger(self.system_abbrev)
        if self.subsystem_abbrev:
            out = out.getChild(self.subsystem_abbrev)
        return out

    def __str__(self):
        out = self.system_name
        if self.subsystem_name:
            out += ": " + self.subsystem_name
        return out
