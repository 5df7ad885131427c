"""
The in-memory model of an aggregation graph: an :py:class:`AggregationDocument` (the
"ORE map") describing one :py:class:`Aggregation`, which in turn aggregates a flat list
of :py:class:`AggregatedResource` instances organized into a container hierarchy via
their ``Has Part`` lists.

The model classes wrap the JSON data they were read from (available via the ``data``
property); fields that are not modeled explicitly are preserved there unchanged.
Setting a modeled property updates the underlying JSON data.
"""
from collections import OrderedDict
from collections.abc import Mapping
from enum import Enum
from typing import List, Union

from .constants import *
from .exceptions import StructuralError

__all__ = [ 'ResourceType', 'Person', 'AggregationStatistics', 'AggregatedResource', 'Aggregation',
            'AggregationDocument', 'Preferences', 'PublicationRequest', 'as_list', 'single_value',
            'strip_quotes' ]

def as_list(value) -> list:
    """
    return the given value as a list: None becomes an empty list, a single value
    becomes a list of one.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]

def single_value(value, sep=",") -> str:
    """
    return a single string for a value that may have been provided as a list of
    strings; multiple values are joined so that no information is lost.
    """
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return sep.join([str(v) for v in value])
    return str(value)

def strip_quotes(value: str) -> str:
    """
    remove surrounding double quotes from a value (as found on some hash values)
    """
    if value and len(value) > 1 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value

class ResourceType(Enum):
    """
    the variant of an aggregated resource
    """
    CONTAINER = "container"
    DATA = "data"

    @classmethod
    def of(cls, resource: Mapping):
        """
        determine the variant of a resource described by the given JSON object.  A
        resource with a ``Has Part`` list is a container, as is one whose ``@type``
        names a known collection type; all others are data (leaf) resources.
        """
        if HAS_PART in resource or HAS_PART_ALT in resource:
            return cls.CONTAINER
        for tp in as_list(resource.get(TYPE)):
            if tp in CONTAINER_TYPES:
                return cls.CONTAINER
        return cls.DATA

class Person(object):
    """
    a person associated with an aggregation (e.g. a creator or contact).  A person
    is given either as a bare string (a name or an identifier) or as a structured
    description with ``givenName``, ``familyName``, ``@id``, and ``email`` fields.
    """

    def __init__(self, data: Union[str, Mapping]):
        self.data = data

    @property
    def structured(self) -> bool:
        return isinstance(self.data, Mapping)

    @property
    def display_name(self) -> str:
        if not self.structured:
            return str(self.data)
        parts = [self.data.get('givenName'), self.data.get('familyName')]
        out = " ".join([p for p in parts if p])
        return out or self.data.get('name', self.id or '')

    @property
    def id(self):
        if not self.structured:
            return None
        return self.data.get(ID) or self.data.get('id')

    @property
    def email(self):
        if not self.structured:
            return None
        return self.data.get('email')

    def __str__(self):
        return self.display_name

class AggregationStatistics(object):
    """
    the declared size of an aggregation: the number of data files and their total
    size in bytes.
    """

    def __init__(self, count: int=0, total_size: int=0):
        self.count = count
        self.total_size = total_size

    @classmethod
    def from_json(cls, data: Mapping):
        if not data:
            return cls()
        return cls(int(data.get(NUM_DATASETS, 0) or 0), int(data.get(TOTAL_SIZE, 0) or 0))

    def to_json(self):
        return OrderedDict([(NUM_DATASETS, self.count), (TOTAL_SIZE, self.total_size)])

class _Described(object):
    # common accessors for JSON-backed nodes

    def __init__(self, data: Mapping):
        if not isinstance(data, Mapping):
            raise StructuralError("Resource description is not a JSON object: " + repr(data)[:80])
        self._data = data

    @property
    def data(self):
        """the underlying JSON data"""
        return self._data

    @property
    def id(self):
        return self._data.get(ID)

    @id.setter
    def id(self, val):
        self._data[ID] = val

    @property
    def identifier(self):
        """the source system identifier (``Identifier``, falling back to ``@id``)"""
        return self._data.get(IDENTIFIER, self._data.get(ID))

    @property
    def title(self):
        return single_value(self._data.get(TITLE))

    @property
    def has_part(self) -> List[str]:
        return as_list(self._data.get(HAS_PART, self._data.get(HAS_PART_ALT)))

    def get(self, key, default=None):
        return self._data.get(key, default)

class AggregatedResource(_Described):
    """
    one node (container or data file) aggregated within an aggregation
    """

    def __init__(self, data: Mapping):
        super(AggregatedResource, self).__init__(data)
        self.type = ResourceType.of(data)

    @property
    def is_container(self) -> bool:
        return self.type == ResourceType.CONTAINER

    @property
    def label(self):
        return single_value(self._data.get(LABEL))

    @property
    def filename(self):
        """the name to give the resource's file within a bag: its Label, else its Title"""
        return self.label or self.title

    @property
    def similar_to(self):
        return self._data.get(SIMILAR_TO)

    @similar_to.setter
    def similar_to(self, url):
        self._data[SIMILAR_TO] = url

    @property
    def size(self):
        sz = self._data.get(SIZE)
        try:
            return int(sz)
        except (TypeError, ValueError):
            return None

    @property
    def hashes(self) -> Mapping:
        """
        the declared hashes as a map of hash type (e.g. "SHA1 Hash") to value
        """
        out = OrderedDict()
        for ht in HASH_TYPES:
            if self._data.get(ht):
                out[ht] = strip_quotes(single_value(self._data[ht]))
        return out

class Aggregation(_Described):
    """
    the dataset or collection being published
    """

    def __init__(self, data: Mapping):
        super(Aggregation, self).__init__(data)
        self._resources = None

    @property
    def aggregates(self) -> List[AggregatedResource]:
        if self._resources is None:
            self._resources = [AggregatedResource(r) for r in as_list(self._data.get(AGGREGATES))]
        return self._resources

    @property
    def creators(self) -> List[Person]:
        return [Person(p) for p in as_list(self._data.get(CREATOR))]

    @property
    def contacts(self) -> List[Person]:
        return [Person(p) for p in as_list(self._data.get(CONTACT))]

    @property
    def abstract(self):
        return single_value(self._data.get(ABSTRACT))

    @property
    def license(self):
        return self._data.get(LICENSE)

    @property
    def purpose(self):
        return self._data.get(PURPOSE)

    @property
    def access_rights(self):
        return self._data.get(ACCESS_RIGHTS)

    @property
    def external_identifier(self):
        return self._data.get(EXTERNAL_IDENTIFIER)

    @property
    def statistics(self) -> AggregationStatistics:
        return AggregationStatistics.from_json(self._data.get(AGG_STATISTICS))

    def __setitem__(self, key, val):
        self._data[key] = val

class AggregationDocument(object):
    """
    an ORE map: a JSON-LD document describing one aggregation
    """

    def __init__(self, data: Mapping):
        if not isinstance(data, Mapping) or not isinstance(data.get(DESCRIBES), Mapping):
            raise StructuralError("ORE map is missing its describes object")
        self._data = data
        self.describes = Aggregation(data[DESCRIBES])

    @property
    def data(self):
        return self._data

    @property
    def id(self):
        return self._data.get(ID)

    @id.setter
    def id(self, val):
        self._data[ID] = val

    @property
    def type(self):
        return self._data.get(TYPE)

    @property
    def context(self):
        return self._data.get(CONTEXT)

    def add_context_term(self, term: str, uri: str) -> bool:
        """
        define a term in this document's context if it is not already defined.  When
        the context is a list of partial mappings, the term is checked for in all of
        them and added to the first mapping.

        :return:  True if the term was added
        """
        ctx = self._data.get(CONTEXT)
        if ctx is None:
            ctx = OrderedDict()
            self._data[CONTEXT] = ctx

        maps = [c for c in as_list(ctx) if isinstance(c, Mapping)]
        for m in maps:
            if term in m:
                return False

        if maps:
            maps[0][term] = uri
        elif isinstance(ctx, list):
            ctx.append(OrderedDict([(term, uri)]))
        else:
            self._data[CONTEXT] = [ctx, OrderedDict([(term, uri)])]
        return True

class Preferences(object):
    """
    the publication preferences attached to a publication request
    """

    def __init__(self, data: Mapping=None):
        if data is None:
            data = OrderedDict()
        self.data = data

    @property
    def license(self):
        return self.data.get(LICENSE, DEF_LICENSE)

    @property
    def purpose(self):
        return self.data.get(PURPOSE, DEF_PURPOSE)

    @property
    def access_rights(self):
        return self.data.get(ACCESS_RIGHTS)

    @property
    def external_identifier(self):
        return self.data.get(EXTERNAL_IDENTIFIER)

    @property
    def alternate_of(self):
        return self.data.get(ALTERNATE_OF)

class PublicationRequest(object):
    """
    a request to publish an aggregation, carrying its preferences and declared statistics
    """

    def __init__(self, data: Mapping):
        if not isinstance(data, Mapping):
            raise StructuralError("Publication request is not a JSON object")
        self.data = data
        self.preferences = Preferences(data.get(PREFERENCES))
        self.statistics = AggregationStatistics.from_json(data.get(AGG_STATISTICS))

        # the profile of the repository the request was sent to, when known
        self.repository_profile = None

    @property
    def rights_holders(self) -> List[Person]:
        return [Person(p) for p in as_list(self.data.get(RIGHTS_HOLDER))]

    @property
    def repository(self):
        return self.data.get(REPOSITORY)

    @property
    def bearer_token(self):
        return self.data.get(BEARER_TOKEN)

    @property
    def oremap_url(self):
        agg = self.data.get(AGGREGATION)
        if isinstance(agg, Mapping):
            return agg.get(ID)
        return None

    @property
    def replaces_existing(self) -> bool:
        """True if this request would replace an existing publication"""
        return bool(self.preferences.external_identifier)
