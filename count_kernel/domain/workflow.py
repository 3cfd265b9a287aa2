"""
Count lifecycle state machine (``count_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects describing the physical count lifecycle::

    READY --start--> IN_PROGRESS --complete--> COMPLETED
                       |    ^
                       +----+ add_item / delete_item

Completing a count archives it and spawns the next READY template, so the
facility always holds exactly one count in its current slot.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* At most one count per facility is ever IN_PROGRESS: ``start`` is only
  allowed out of READY.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class CountStatus(str, Enum):
    """Lifecycle states of a physical count."""

    READY = "READY"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class CountAction(str, Enum):
    """Lifecycle operations on a count."""

    START = "start"
    ADD_ITEM = "add_item"
    DELETE_ITEM = "delete_item"
    COMPLETE = "complete"


@dataclass(frozen=True)
class Transition:
    """A valid state transition."""
    from_state: CountStatus
    to_state: CountStatus
    action: CountAction


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle."""
    name: str
    description: str
    initial_state: CountStatus
    states: tuple[CountStatus, ...]
    transitions: tuple[Transition, ...]

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(f"initial_state {self.initial_state} not in states")
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(f"transition {t.action} references unknown state")

    def transition_for(
        self, from_state: CountStatus, action: CountAction
    ) -> Transition | None:
        """Return the transition for ``action`` out of ``from_state``, if any."""
        for t in self.transitions:
            if t.from_state == from_state and t.action == action:
                return t
        return None

    def allows(self, from_state: CountStatus, action: CountAction) -> bool:
        return self.transition_for(from_state, action) is not None


# -----------------------------------------------------------------------------
# Count Workflow
# -----------------------------------------------------------------------------

COUNT_WORKFLOW = Workflow(
    name="physical_count",
    description="Physical inventory count lifecycle",
    initial_state=CountStatus.READY,
    states=(
        CountStatus.READY,
        CountStatus.IN_PROGRESS,
        CountStatus.COMPLETED,
    ),
    transitions=(
        Transition(CountStatus.READY, CountStatus.IN_PROGRESS, CountAction.START),
        Transition(CountStatus.IN_PROGRESS, CountStatus.IN_PROGRESS, CountAction.ADD_ITEM),
        Transition(CountStatus.IN_PROGRESS, CountStatus.IN_PROGRESS, CountAction.DELETE_ITEM),
        Transition(CountStatus.IN_PROGRESS, CountStatus.COMPLETED, CountAction.COMPLETE),
    ),
)
