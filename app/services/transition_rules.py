"""
Load status transition rules.

The table is a directed graph keyed by status: each entry lists the
statuses reachable in one hop. It is built once at import time, is
read-only, and is shared by reference. Same-status requests are not
edges in this graph; the lifecycle service handles them separately.
"""
from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Union

from app.models.load import LoadStatus

logger = logging.getLogger(__name__)

S = LoadStatus

TRANSITION_RULES: Mapping[LoadStatus, Tuple[LoadStatus, ...]] = MappingProxyType({
    S.CREATED: (S.PENDING, S.CANCELLED),
    S.PENDING: (S.OPTIMIZING, S.AVAILABLE, S.CANCELLED),
    S.OPTIMIZING: (S.AVAILABLE, S.CANCELLED),
    S.AVAILABLE: (S.RESERVED, S.CANCELLED, S.EXPIRED),
    S.RESERVED: (S.ASSIGNED, S.AVAILABLE, S.CANCELLED),
    S.ASSIGNED: (S.IN_TRANSIT, S.CANCELLED),
    S.IN_TRANSIT: (S.AT_PICKUP, S.DELAYED, S.CANCELLED),
    S.AT_PICKUP: (S.LOADED, S.EXCEPTION, S.CANCELLED),
    S.LOADED: (S.IN_TRANSIT, S.CANCELLED),
    S.DELAYED: (S.IN_TRANSIT, S.CANCELLED),
    S.EXCEPTION: (S.RESOLVED, S.CANCELLED),
    S.RESOLVED: (S.AT_PICKUP, S.AT_DROPOFF, S.CANCELLED),
    S.AT_DROPOFF: (S.DELIVERED, S.EXCEPTION, S.CANCELLED),
    S.DELIVERED: (S.COMPLETED, S.EXCEPTION),
    S.COMPLETED: (),
    S.CANCELLED: (),
    S.EXPIRED: (S.AVAILABLE,),
})

INITIAL_STATUS = S.CREATED

StatusLike = Union[LoadStatus, str]


def parse_status(value: StatusLike) -> Optional[LoadStatus]:
    """Return the LoadStatus for ``value``, or None if it is not a known status."""
    if isinstance(value, LoadStatus):
        return value
    try:
        return LoadStatus(value)
    except ValueError:
        return None


class TransitionRuleTable:
    """Lookup wrapper over an adjacency map of load statuses."""

    def __init__(self, rules: Mapping[LoadStatus, Tuple[LoadStatus, ...]] = TRANSITION_RULES) -> None:
        missing = [status.value for status in LoadStatus if status not in rules]
        if missing:
            raise ValueError(f"Transition rules missing entries for: {', '.join(missing)}")
        self._rules = rules

    def allowed(self, from_status: StatusLike, to_status: StatusLike) -> bool:
        """True if ``to_status`` is one hop from ``from_status``. Unknown statuses are never allowed."""
        source = parse_status(from_status)
        target = parse_status(to_status)
        if source is None or target is None:
            return False
        result = target in self._rules[source]
        logger.debug(f"Validating status transition from {source.value} to {target.value}: {result}")
        return result

    def next_statuses(self, status: StatusLike) -> Tuple[LoadStatus, ...]:
        source = parse_status(status)
        if source is None:
            return ()
        return self._rules[source]

    def is_terminal(self, status: StatusLike) -> bool:
        source = parse_status(status)
        return source is not None and not self._rules[source]

    def terminal_statuses(self) -> List[LoadStatus]:
        return [status for status in LoadStatus if not self._rules[status]]

    def edges(self) -> Iterator[Tuple[LoadStatus, LoadStatus]]:
        for source in LoadStatus:
            for target in self._rules[source]:
                yield source, target

    def as_dict(self) -> Dict[str, List[str]]:
        """Serialize as ``{status: [next statuses]}`` in declaration order."""
        return {
            source.value: [target.value for target in self._rules[source]]
            for source in LoadStatus
        }


# Process-wide table shared by every service instance
DEFAULT_RULE_TABLE = TransitionRuleTable()


def get_rule_table() -> TransitionRuleTable:
    return DEFAULT_RULE_TABLE
