"""
Lifecycle tables

Each entity lifecycle is a table of event -> (allowed source states, target
state). Views ask it which actions to offer, services ask it which requests
to accept.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Union
import logging

from finhub.core.exceptions import ConflictError

logger = logging.getLogger(__name__)

State = Union[str, Enum]


def _value(state: State) -> str:
    return state.value if isinstance(state, Enum) else str(state)


@dataclass(frozen=True)
class Transition:
    event: str
    sources: FrozenSet[str]
    target: str
    label: str
    # Derived transitions (expiry, overdue) happen upstream and are never offered as actions
    user_action: bool = True


class StateMachine:
    def __init__(self, name: str, transitions: Iterable[Transition]):
        self.name = name
        self._transitions: Dict[str, Transition] = {}
        for transition in transitions:
            self._transitions[transition.event] = transition

    def get(self, event: str) -> Transition:
        try:
            return self._transitions[event]
        except KeyError:
            raise ConflictError(f"Unknown {self.name} action '{event}'")

    def can(self, state: State, event: str) -> bool:
        transition = self._transitions.get(event)
        return transition is not None and _value(state) in transition.sources

    def available(self, state: State) -> List[Transition]:
        """User-facing transitions legal from state, in table order"""
        current = _value(state)
        return [t for t in self._transitions.values() if t.user_action and current in t.sources]

    def is_terminal(self, state: State) -> bool:
        current = _value(state)
        return not any(current in t.sources for t in self._transitions.values())

    def transition(self, state: State, event: str) -> str:
        """
        Return the state reached by applying event.

        Repeating an event whose target is already the current state is a
        no-op; any other illegal event raises ConflictError.
        """
        transition = self.get(event)
        current = _value(state)
        if current in transition.sources:
            logger.info("%s %s: %s -> %s", self.name, event, current, transition.target)
            return transition.target
        if current == transition.target:
            return current
        article = "an" if self.name[:1] in "aeiou" else "a"
        raise ConflictError(
            f"Cannot {transition.label.lower()} {article} {self.name} that is {current.replace('_', ' ')}"
        )

    def target_of(self, event: str) -> Optional[str]:
        transition = self._transitions.get(event)
        return transition.target if transition else None
