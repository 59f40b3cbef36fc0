from enum import Enum

TERMINAL_STAGES = {"urgent_complete", "callback_complete"}


class Stage(Enum):
    INITIAL = "initial"
    URGENT_DETAILS = "urgent_details"
    COLLECT_ADDRESS = "collect_address"
    NON_URGENT_CALLBACK = "non_urgent_callback"
    SCHEDULE_CALLBACK = "schedule_callback"
    URGENT_COMPLETE = "urgent_complete"
    CALLBACK_COMPLETE = "callback_complete"

    @property
    def is_terminal(self) -> bool:
        return self.value in TERMINAL_STAGES


TRANSITIONS = {
    Stage.INITIAL: {Stage.URGENT_DETAILS, Stage.NON_URGENT_CALLBACK},
    Stage.URGENT_DETAILS: {Stage.COLLECT_ADDRESS},
    Stage.COLLECT_ADDRESS: {Stage.URGENT_COMPLETE},
    Stage.NON_URGENT_CALLBACK: {Stage.SCHEDULE_CALLBACK},
    Stage.SCHEDULE_CALLBACK: {Stage.CALLBACK_COMPLETE},
    Stage.URGENT_COMPLETE: set(),
    Stage.CALLBACK_COMPLETE: set(),
}


def can_advance(current: Stage, new: Stage) -> bool:
    return new in TRANSITIONS.get(current, set())


class InvalidTransition(ValueError):
    """Raised when a stage change does not follow a forward edge."""

    def __init__(self, call_id: str, current: Stage, new: Stage):
        super().__init__(f"{call_id}: cannot move from {current.value} to {new.value}")
        self.call_id = call_id
        self.current = current
        self.new = new
