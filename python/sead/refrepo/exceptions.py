"""
Exceptions raised by the reference repository.

All exceptions derive from :py:class:`RepoException`, which records the underlying
cause (if any) and the (sub)system in which the problem occurred.  Read-path failures
(:py:class:`ParseError`, :py:class:`NotFoundError`) are raised to the caller with no
partial result; per-resource write failures (:py:class:`RetrievalError`,
:py:class:`HashMismatchError`) are contained and reported; structural and identifier
failures (:py:class:`StructuralError`, :py:class:`IdentityServiceError`) abort a
packaging run.
"""
from ..base.config import ConfigurationException

__all__ = [ 'RepoException', 'StateException', 'ConfigurationException', 'ParseError',
            'NotFoundError', 'RetrievalError', 'HashMismatchError', 'StructuralError',
            'IdentityServiceError', 'PublicationDenied', 'RemoteServiceError' ]

class RepoException(Exception):
    """
    the base exception for errors raised by the reference repository.
    """
    def __init__(self, msg=None, cause=None, sys=None):
        """
        create the exception.

        :param str   msg:  A message to override the default.
        :param Exception cause:  a caught exception that represents the underlying cause of the problem.
        :param SystemInfoMixin sys: a SystemInfoMixin instance for the system under which the exception
                           occurred
        """
        if not msg:
            if cause:
                msg = str(cause)
            else:
                msg = "Unknown reference repository error"
        super(RepoException, self).__init__(msg)
        self.cause = cause
        if not sys:
            from . import system
            sys = system
        self.system = sys

class StateException(RepoException):
    """
    An exception indicating that a component is in a state that does not allow the
    requested operation.
    """
    def __init__(self, msg=None, cause=None, sys=None):
        if not msg and not cause:
            msg = "Illegal state for requested operation"
        super(StateException, self).__init__(msg, cause, sys)

class ParseError(RepoException):
    """
    An exception indicating that an aggregation document (or a portion of one) could not
    be parsed.  This includes a mismatch between a document and its byte-offset index.
    """
    def __init__(self, msg=None, cause=None, source=None, offset=None, sys=None):
        """
        :param str source:  a name for the document being parsed
        :param int offset:  the byte offset where the problem was detected
        """
        if not msg:
            msg = "Unable to parse aggregation document"
            if source:
                msg += " " + str(source)
            if offset is not None:
                msg += " at byte " + str(offset)
            if cause:
                msg += ": " + str(cause)
        super(ParseError, self).__init__(msg, cause, sys)
        self.source = source
        self.offset = offset

class NotFoundError(RepoException):
    """
    An exception indicating that a requested identifier or file path does not exist.
    """
    def __init__(self, id=None, msg=None, cause=None, sys=None):
        """
        :param str id:  the identifier or path that could not be found
        """
        if not msg:
            if id:
                msg = "Not found: " + str(id)
            else:
                msg = "Requested item not found"
        super(NotFoundError, self).__init__(msg, cause, sys)
        self.id = id

class RetrievalError(RepoException):
    """
    An exception indicating that the content of a resource could not be retrieved (e.g.
    the remote fetch exhausted its retry budget).
    """
    def __init__(self, url=None, msg=None, cause=None, attempts=None, sys=None):
        """
        :param str   url:  the URL that could not be retrieved
        :param int attempts:  the number of attempts made
        """
        if not msg:
            msg = "Unable to retrieve content"
            if url:
                msg += " from " + url
            if attempts:
                msg += " after %d attempt%s" % (attempts, (attempts > 1 and "s") or "")
            if cause:
                msg += ": " + str(cause)
        super(RetrievalError, self).__init__(msg, cause, sys)
        self.url = url
        self.attempts = attempts

class HashMismatchError(RepoException):
    """
    An exception indicating that a computed hash does not match the one declared for
    a file (or that two distinct resources share one hash value).
    """
    def __init__(self, path=None, expected=None, found=None, msg=None, cause=None, sys=None):
        if not msg:
            msg = "Hash mismatch"
            if path:
                msg += " for " + path
            if expected or found:
                msg += ": expected {0}, found {1}".format(expected, found)
        super(HashMismatchError, self).__init__(msg, cause, sys)
        self.path = path
        self.expected = expected
        self.found = found

class StructuralError(RepoException):
    """
    An exception indicating that an aggregation is structurally inconsistent (e.g. an
    identifier referenced more often than it is declared, or a missing required field).
    """
    def __init__(self, msg=None, cause=None, id=None, sys=None):
        if not msg:
            msg = "Structural problem in aggregation"
            if id:
                msg += " for " + id
        super(StructuralError, self).__init__(msg, cause, sys)
        self.id = id

class IdentityServiceError(RepoException):
    """
    An exception indicating a failure to mint or update a persistent identifier,
    including a violation of the identifier namespace policy.
    """
    def __init__(self, msg=None, cause=None, sys=None):
        if not msg:
            msg = "Identifier minting failed"
            if cause:
                msg += ": " + str(cause)
        super(IdentityServiceError, self).__init__(msg, cause, sys)

class PublicationDenied(RepoException):
    """
    An exception indicating that a request to replace an existing publication was not
    approved.
    """
    def __init__(self, id=None, msg=None, sys=None):
        if not msg:
            msg = "Republication not approved"
            if id:
                msg += " for " + id
        super(PublicationDenied, self).__init__(msg, None, sys)
        self.id = id

class RemoteServiceError(RepoException):
    """
    An exception indicating that a remote service (e.g. the publication request service)
    responded with an error or could not be reached.
    """
    def __init__(self, resource=None, status=None, reason=None, msg=None, cause=None, sys=None):
        """
        :param str resource:  the URL or identifier of the resource being accessed
        :param int   status:  the HTTP status code returned, if any
        :param str   reason:  the HTTP status message returned, if any
        """
        if not msg:
            msg = "Remote service failure"
            if resource:
                msg += " while accessing " + resource
            if status:
                msg += ": {0} {1}".format(status, reason or "")
            elif cause:
                msg += ": " + str(cause)
        super(RemoteServiceError, self).__init__(msg.rstrip(), cause, sys)
        self.resource = resource
        self.status = status
        self.reason = reason
