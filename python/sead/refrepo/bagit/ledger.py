"""
Tracking of which aggregated resources were used while packaging an aggregation.
"""
from collections.abc import Mapping
from typing import List

from ..exceptions import StructuralError

UNUSED  = None
SUCCESS = True
FAILURE = False

__all__ = [ 'ResourceUsageLedger', 'UNUSED', 'SUCCESS', 'FAILURE' ]

class ResourceUsageLedger(object):
    """
    a record of the state of each resource referenced while packaging an aggregation.

    The ledger has one slot for the aggregation itself (slot 0) followed by one slot for
    each entry in the aggregation's ``aggregates`` list, in list order.  Each slot is in
    one of three states: UNUSED (not yet referenced from any ``Has Part`` list), SUCCESS,
    or FAILURE.  Because an identifier can (erroneously) appear more than once in the
    ``aggregates`` list, a claim on an identifier takes the first slot with that
    identifier that is still unused.
    """

    def __init__(self, root_id: str, child_ids: List[str]):
        """
        :param str   root_id:   the identifier of the aggregation
        :param list child_ids:  the identifiers of the aggregated resources in list order
        """
        self._ids = [root_id] + list(child_ids)
        self._state = [UNUSED] * len(self._ids)
        self._slots = {}
        for i, id in enumerate(self._ids):
            self._slots.setdefault(id, []).append(i)

    def __len__(self):
        return len(self._ids)

    def identifier(self, slot: int) -> str:
        """return the identifier associated with a slot"""
        return self._ids[slot]

    def state(self, slot: int):
        """return the state of a slot: UNUSED, SUCCESS, or FAILURE"""
        return self._state[slot]

    def knows(self, id: str) -> bool:
        """return True if the identifier appears in the ledger"""
        return id in self._slots

    def claim(self, id: str) -> int:
        """
        claim the next unused slot for the given identifier and return its index.  The
        slot is provisionally marked as SUCCESS.
        :raise StructuralError:  if the identifier is unknown or all of its slots have
                                 already been claimed
        """
        slots = self._slots.get(id)
        if not slots:
            raise StructuralError("Referenced resource not found in aggregation: " + id, id=id)
        for slot in slots:
            if self._state[slot] is UNUSED:
                self._state[slot] = SUCCESS
                return slot
        raise StructuralError("Resource referenced more times than it is aggregated: " + id, id=id)

    def mark_success(self, slot: int):
        self._state[slot] = SUCCESS

    def mark_failure(self, slot: int):
        self._state[slot] = FAILURE

    def unused(self) -> List[int]:
        """return the slots that were never claimed"""
        return [i for i, s in enumerate(self._state) if s is UNUSED]

    def failed(self) -> List[int]:
        """return the slots whose resources could not be included"""
        return [i for i, s in enumerate(self._state) if s is FAILURE]

    def succeeded(self) -> List[int]:
        return [i for i, s in enumerate(self._state) if s is SUCCESS]

    def problems(self, pathmap: Mapping=None) -> List[str]:
        """
        return human-readable descriptions of the unused and failed slots

        :param Mapping pathmap:  a map of identifiers to bag paths; when an identifier is
                                 found there, its path is included in the description
        """
        if pathmap is None:
            pathmap = {}

        def name(slot):
            id = self._ids[slot]
            if id in pathmap:
                return "{0} ({1})".format(id, pathmap[id])
            return id

        out = []
        for slot in self.unused():
            out.append(name(slot) + " was not used")
        for slot in self.failed():
            out.append(name(slot) + " was not included successfully")
        return out
