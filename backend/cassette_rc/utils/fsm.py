from __future__ import annotations
"""Table-driven state machines for status lifecycles.

Two shapes are supported:

TransitionValidator -- adjacency map ``current -> {allowed targets}``, used where a
caller names the target (service orders, repair tickets, PM tasks):

    PM_FSM = TransitionValidator({
        'SCHEDULED': {'IN_PROGRESS', 'CANCELLED'},
        'IN_PROGRESS': {'COMPLETED'},
        'COMPLETED': set(),
    }, entity='PreventiveMaintenance')
    PM_FSM.assert_can_transition(current_status, target_status)

EventTable -- ``event -> {current: new}``, used where the same target state is
reached from different triggers (cassettes):

    CASSETTE = EventTable({'QC_PASS': {'IN_REPAIR': 'READY_FOR_PICKUP'}})
    CASSETTE.resolve('IN_REPAIR', 'QC_PASS')  # -> 'READY_FOR_PICKUP'
"""
from typing import Dict, Set, Iterable, Optional, Type
from cassette_rc.errors import InvalidTransition, IllegalCassetteTransition


class TransitionValidator:
    def __init__(self, graph: Dict[str, Set[str]], field_name: str = 'status', entity: str = ''):
        self.graph = graph
        self.field_name = field_name
        self.entity = entity

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.graph.get(current, set())

    def assert_can_transition(self, current: str, target: str):
        if not self.can_transition(current, target):
            label = f"{self.entity} {self.field_name}".strip()
            raise InvalidTransition(f"Invalid {label} transition {current} -> {target}")
        return True

    def is_terminal(self, status: str) -> bool:
        return not self.graph.get(status)

    def as_dict(self) -> Dict[str, list]:
        return {k: sorted(v) for k, v in self.graph.items()}


class EventTable:
    def __init__(self, table: Dict[str, Dict[str, str]], external: Iterable[str] = (), entity: str = '',
                 error: Type[InvalidTransition] = IllegalCassetteTransition):
        self.table = table
        self.external = frozenset(external)
        self.entity = entity
        self.error = error

    def resolve(self, current: str, event: str, external: bool = False) -> str:
        """Return the status ``event`` leads to from ``current`` or raise."""
        if event not in self.table:
            raise self.error(f"Unknown {self.entity} event {event}")
        if external and event not in self.external:
            raise self.error(f"{self.entity} event {event} is not externally callable")
        target: Optional[str] = self.table[event].get(current)
        if target is None:
            raise self.error(f"{self.entity} in status {current} does not accept {event}")
        return target

    def accepts(self, current: str, event: str) -> bool:
        return current in self.table.get(event, {})

    def as_dict(self) -> Dict[str, Dict[str, str]]:
        return {event: dict(edges) for event, edges in self.table.items()}


__all__ = ['TransitionValidator', 'EventTable']
