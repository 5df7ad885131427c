"""
A small framework for checking the integrity of the archives the repository produces.

A validator applies a series of tests to a target (such as a zipped bag).  Each test
checks one requirement of a named profile (e.g. the BagIt conventions) and is
categorized by how serious its failure is:

* ``REQ``:   a requirement; failure means the target is invalid
* ``WARN``:  a warning; failure suggests a problem the target can still live with
* ``REC``:   a recommendation; failure is informational

A :py:class:`ValidatorBase` subclass implements each test as a method whose name starts
with ``test_``; :py:meth:`~ValidatorBase.validate` runs them and collects their outcomes,
as :py:class:`ValidationIssue` instances, into a :py:class:`ValidationResults`.
"""
__all__ = [ "Validator", "ValidationResults", "ValidationTest", "ValidationIssue",
            "ERROR", "REQ", "WARN", "REC", "ALL", "PROB", "ValidatorBase" ]

from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Mapping
from typing import Union, List

REQ   = 1
ERROR = REQ  # synonym for REQ
WARN  = 2
REC   = 4
ALL   = REQ | WARN | REC
PROB  = REQ | WARN
issuetypes = [ REQ, WARN, REC ]
type_labels = OrderedDict([ (REQ, "requirement"), (WARN, "warning"), (REC, "recommendation") ])

Comments = Union[str, List[str], None]

class ValidationTest:
    """
    the definition of a test:  which requirement of which profile it checks and how
    serious a failure is.
    """
    REQ   = REQ
    ERROR = REQ
    WARN  = WARN
    REC   = REC

    def __init__(self, profile: str, profver: str, idlabel: str='', issuetype=ERROR, spec: str=''):
        """
        :param str   profile:  the name of the conventions the requirement comes from
        :param str   profver:  the version of those conventions ('' for none in particular)
        :param str   idlabel:  the label of the requirement within the profile
        :param int issuetype:  one of REQ, WARN, or REC
        :param str      spec:  a statement of what must be true to pass
        :raise ValueError:  if issuetype is not recognized
        """
        self._prof = profile
        self._pver = profver
        self._lab = idlabel
        self._spec = spec
        self.type = issuetype

    @property
    def profile(self):
        return self._prof

    @property
    def profile_version(self):
        return self._pver

    @property
    def label(self):
        return self._lab

    @property
    def type(self):
        """the severity of a failure of this test: REQ, WARN, or REC"""
        return self._type

    @type.setter
    def type(self, issuetype):
        if issuetype not in type_labels:
            raise ValueError("Unrecognized validation issue type: "+str(issuetype))
        self._type = issuetype

    @property
    def specification(self):
        """the statement of the requirement being tested"""
        return self._spec

class ValidationIssue(ValidationTest):
    """
    the outcome of applying a test, with optional comments (e.g. naming the files that
    caused a failure)
    """

    def __init__(self, profile, profver, idlabel='', issuetype=ERROR, spec='',
                 passed: bool=True, comments: Comments=None):
        super(ValidationIssue, self).__init__(profile, profver, idlabel, issuetype, spec)
        self._passed = passed
        if isinstance(comments, str):
            comments = [ comments ]
        self._comm = [str(c) for c in (comments or [])]

    @classmethod
    def from_test(cls, test: ValidationTest, passed: bool=True, comments: Comments=None):
        """
        create the issue recording an application of the given test
        """
        return cls(test.profile, test.profile_version, test.label, test.type,
                   test.specification, passed, comments)

    def add_comment(self, text):
        self._comm.append(str(text))

    @property
    def comments(self):
        return tuple(self._comm)

    def passed(self):
        return self._passed

    def failed(self):
        return not self._passed

    @property
    def summary(self):
        """
        one line giving the outcome, e.g. ``REQUIREMENT: BagIt 0.97 3.2: <requirement>``
        """
        status = (self._passed and "PASSED") or type_labels[self.type].upper()
        out = " ".join([status+":", self.profile, self.profile_version, self.label])
        if self.specification:
            out += ": " + self.specification
        return out

    @property
    def description(self):
        """
        the summary followed by each comment on its own indented line
        """
        return "\n  ".join([self.summary] + self._comm)

    def __str__(self):
        if self._comm and self._comm[0]:
            return "%s (%s)" % (self.summary, self._comm[0])
        return self.summary

    def to_json_obj(self):
        """
        return the issue as a JSON-ready mapping
        """
        return OrderedDict([
            ("type", type_labels[self.type]),
            ("profile_name", self.profile),
            ("profile_version", self.profile_version),
            ("label", self.label),
            ("spec", self.specification),
            ("passed", self._passed),
            ("comments", list(self._comm))
        ])


class ValidationResults(object):
    """
    the collected outcomes of the tests applied to one target
    """
    REQ   = REQ
    ERROR = REQ
    WARN  = WARN
    REC   = REC
    ALL   = ALL
    PROB  = PROB

    def __init__(self, targetname, want=ALL):
        """
        :param str targetname:  the name of the validated target
        :param int       want:  the issue types (OR-ed together) that must all pass for
                                :py:meth:`ok` to return True
        """
        self.target = targetname
        self.want = want
        self.results = OrderedDict([(t, []) for t in issuetypes])

    def applied(self, issuetype=ALL):
        """
        return the outcomes of the tests of the given types (OR-ed together), requirements
        first, then warnings, then recommendations
        """
        out = []
        for t, issues in self.results.items():
            if t & issuetype:
                out.extend(issues)
        return out

    def count_applied(self, issuetype=ALL):
        return len(self.applied(issuetype))

    def failed(self, issuetype=ALL):
        return [i for i in self.applied(issuetype) if i.failed()]

    def count_failed(self, issuetype=ALL):
        return len(self.failed(issuetype))

    def passed(self, issuetype=ALL):
        return [i for i in self.applied(issuetype) if i.passed()]

    def count_passed(self, issuetype=ALL):
        return len(self.passed(issuetype))

    def ok(self):
        """
        return True if no test of the wanted types failed
        """
        return not self.failed(self.want)

    def problems(self, issuetype=PROB):
        """
        return the descriptions (with comments) of the failed tests of the given types
        """
        return [i.description for i in self.failed(issuetype)]

    def _add_applied(self, test: ValidationTest, passed: bool, comments: Comments=None):
        """
        record the outcome of applying a test and return it as a ValidationIssue
        """
        issue = ValidationIssue.from_test(test, passed, comments)
        self.results[issue.type].append(issue)
        return issue

class Validator(ABC):
    """
    the interface for validating a target
    """

    def __init__(self, config: Mapping=None):
        self.cfg = config if config is not None else {}

    @abstractmethod
    def validate(self, target, want: int=ALL, results: ValidationResults=None,
                 targetname: str=None, **kw):
        """
        apply this validator's tests to the target.

        :param int want:  the issue types (OR-ed together) that determine the outcome
        :param ValidationResults results:  the container to add the outcomes to (and to
                          return); if not given, a new one is created
        :param str targetname:  the name to record for the target (default: ``str(target)``)
        :param kw:        extra parameters passed through to each test
        :return ValidationResults:
        """
        raise NotImplementedError()

    def _target_name(self, target):
        return str(target)

class ValidatorBase(Validator):
    """
    a Validator whose tests are its methods named ``test_*``.  Each is called with the
    target, the ``want`` flags, the ValidationResults to add outcomes to, and any extra
    keyword parameters given to :py:meth:`validate`.

    The configuration may limit the tests run with either ``include_tests`` (a list of
    the method names to run) or ``skip_tests`` (a list of method names not to run).
    """
    profile = (None, None)

    def all_test_methods(self):
        """
        return the names of all the test methods in the order they are run (alphabetical)
        """
        return sorted([name for name in dir(self) if name.startswith('test_')])

    def the_test_methods(self):
        """
        return the names of the test methods to run, as filtered by the configuration
        """
        tests = self.all_test_methods()
        if "include_tests" in self.cfg:
            keep = set(self.cfg['include_tests'])
            return [t for t in tests if t in keep]
        if "skip_tests" in self.cfg:
            skip = set(self.cfg['skip_tests'])
            return [t for t in tests if t not in skip]
        return tests

    def validate(self, target, want=ALL, results: ValidationResults=None,
                 targetname: str=None, **kw):
        out = results or ValidationResults(targetname or self._target_name(target), want)

        for name in self.the_test_methods():
            try:
                getattr(self, name)(target, want, out, **kw)
            except Exception as ex:
                # a test that cannot run counts as a failed requirement
                out._add_applied(ValidationTest(self.profile[0], self.profile[1],
                                                "%s execution failure" % name, REQ),
                                 False, "test method, %s, raised an exception: %s" % (name, str(ex)))
        return out

    def define_test(self, label, desc, type):
        """
        return a ValidationTest within this validator's profile
        """
        return ValidationTest(self.profile[0], self.profile[1], label, type, desc)

    def _err(self, label, desc):
        return self.define_test(label, desc, REQ)

    def _warn(self, label, desc):
        return self.define_test(label, desc, WARN)

    def _rec(self, label, desc):
        return self.define_test(label, desc, REC)
