"""
维护阶段状态机

每个阶段一个状态枚举, 每个状态带有可读的标签和描述。
状态只能按转换表前进; 唯一的回退是 Error/Cancelled → PreFlight (重试)。
"""

import logging
from enum import Enum
from typing import Dict, FrozenSet, Generic, List, TypeVar

from ..utils.errors import InvalidTransitionError

logger = logging.getLogger(__name__)


class DownPhaseState(str, Enum):
    """下线阶段状态"""
    INIT = "init"
    CONFIRM = "confirm"
    NOTHING_TO_DO = "nothing_to_do"
    DECLINED = "declined"
    PRE_FLIGHT = "pre_flight"
    CORDONING = "cordoning"
    SETTING_SAFETY_FLAG = "setting_safety_flag"
    SCALING_OPERATOR = "scaling_operator"
    DISCOVERING_WORKLOADS = "discovering_workloads"
    SCALING_WORKLOADS = "scaling_workloads"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def label(self) -> str:
        return _DOWN_TEXT[self][0]

    @property
    def description(self) -> str:
        return _DOWN_TEXT[self][1]

    @property
    def is_terminal(self) -> bool:
        return self in _DOWN_TERMINAL


class UpPhaseState(str, Enum):
    """上线阶段状态"""
    INIT = "init"
    CONFIRM = "confirm"
    NOTHING_TO_DO = "nothing_to_do"
    DECLINED = "declined"
    PRE_FLIGHT = "pre_flight"
    UNCORDONING = "uncordoning"
    RESTORING_WORKLOADS = "restoring_workloads"
    SCALING_OPERATOR = "scaling_operator"
    UNSETTING_SAFETY_FLAG = "unsetting_safety_flag"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def label(self) -> str:
        return _UP_TEXT[self][0]

    @property
    def description(self) -> str:
        return _UP_TEXT[self][1]

    @property
    def is_terminal(self) -> bool:
        return self in _UP_TERMINAL


_DOWN_TEXT = {
    DownPhaseState.INIT: ("Initializing", "Preparing down phase workflow..."),
    DownPhaseState.CONFIRM: ("Awaiting Confirmation", "Review the impact and confirm to proceed"),
    DownPhaseState.NOTHING_TO_DO: ("Nothing To Do", "All deployments are already scaled down"),
    DownPhaseState.DECLINED: ("Declined", "The operator declined the plan; nothing was changed"),
    DownPhaseState.PRE_FLIGHT: ("Pre-flight Checks", "Validating cluster prerequisites and permissions"),
    DownPhaseState.CORDONING: ("Cordoning Node", "Marking node as unschedulable to prevent new pods"),
    DownPhaseState.SETTING_SAFETY_FLAG: ("Setting Safety Flag", "Setting Ceph flag to prevent rebalancing"),
    DownPhaseState.SCALING_OPERATOR: ("Scaling Operator", "Scaling down rook-ceph-operator to prevent reconciliation"),
    DownPhaseState.DISCOVERING_WORKLOADS: ("Discovering Deployments", "Finding Rook-Ceph deployments running on this node"),
    DownPhaseState.SCALING_WORKLOADS: ("Scaling Deployments", "Scaling down deployments to 0 replicas"),
    DownPhaseState.COMPLETE: ("Complete", "All operations completed successfully"),
    DownPhaseState.CANCELLED: ("Cancelled", "Execution was cancelled before the next change"),
    DownPhaseState.ERROR: ("Error", "An error occurred during the operation"),
}

_UP_TEXT = {
    UpPhaseState.INIT: ("Initializing", "Preparing up phase workflow..."),
    UpPhaseState.CONFIRM: ("Awaiting Confirmation", "Review the restore plan and confirm to proceed"),
    UpPhaseState.NOTHING_TO_DO: ("Nothing To Do", "All deployments are already scaled up"),
    UpPhaseState.DECLINED: ("Declined", "The operator declined the plan; nothing was changed"),
    UpPhaseState.PRE_FLIGHT: ("Pre-flight Checks", "Validating cluster prerequisites and permissions"),
    UpPhaseState.UNCORDONING: ("Uncordoning Node", "Uncordoning node to allow pod scheduling"),
    UpPhaseState.RESTORING_WORKLOADS: ("Restoring Deployments", "Scaling deployments back to their original replicas"),
    UpPhaseState.SCALING_OPERATOR: ("Scaling Operator", "Scaling up rook-ceph-operator to resume management"),
    UpPhaseState.UNSETTING_SAFETY_FLAG: ("Unsetting Safety Flag", "Unsetting Ceph flag to allow rebalancing"),
    UpPhaseState.COMPLETE: ("Complete", "All operations completed successfully"),
    UpPhaseState.CANCELLED: ("Cancelled", "Execution was cancelled before the next change"),
    UpPhaseState.ERROR: ("Error", "An error occurred during the operation"),
}

_DOWN_TERMINAL = frozenset({
    DownPhaseState.NOTHING_TO_DO,
    DownPhaseState.DECLINED,
    DownPhaseState.COMPLETE,
    DownPhaseState.CANCELLED,
    DownPhaseState.ERROR,
})

_UP_TERMINAL = frozenset({
    UpPhaseState.NOTHING_TO_DO,
    UpPhaseState.DECLINED,
    UpPhaseState.COMPLETE,
    UpPhaseState.CANCELLED,
    UpPhaseState.ERROR,
})


def _linear(steps: List, error, cancelled) -> Dict:
    """执行步骤依次前进, 每一步都可以进入 Error 或 Cancelled"""
    table = {}
    for current, following in zip(steps, steps[1:]):
        table[current] = frozenset({following, error, cancelled})
    return table


DOWN_TRANSITIONS: Dict[DownPhaseState, FrozenSet[DownPhaseState]] = {
    DownPhaseState.INIT: frozenset({DownPhaseState.CONFIRM, DownPhaseState.NOTHING_TO_DO}),
    DownPhaseState.CONFIRM: frozenset({DownPhaseState.PRE_FLIGHT, DownPhaseState.DECLINED}),
    **_linear(
        [
            DownPhaseState.PRE_FLIGHT,
            DownPhaseState.CORDONING,
            DownPhaseState.SETTING_SAFETY_FLAG,
            DownPhaseState.SCALING_OPERATOR,
            DownPhaseState.DISCOVERING_WORKLOADS,
            DownPhaseState.SCALING_WORKLOADS,
            DownPhaseState.COMPLETE,
        ],
        DownPhaseState.ERROR,
        DownPhaseState.CANCELLED,
    ),
    DownPhaseState.ERROR: frozenset({DownPhaseState.PRE_FLIGHT}),
    DownPhaseState.CANCELLED: frozenset({DownPhaseState.PRE_FLIGHT}),
}

UP_TRANSITIONS: Dict[UpPhaseState, FrozenSet[UpPhaseState]] = {
    UpPhaseState.INIT: frozenset({UpPhaseState.CONFIRM, UpPhaseState.NOTHING_TO_DO}),
    UpPhaseState.CONFIRM: frozenset({UpPhaseState.PRE_FLIGHT, UpPhaseState.DECLINED}),
    **_linear(
        [
            UpPhaseState.PRE_FLIGHT,
            UpPhaseState.UNCORDONING,
            UpPhaseState.RESTORING_WORKLOADS,
            UpPhaseState.SCALING_OPERATOR,
            UpPhaseState.UNSETTING_SAFETY_FLAG,
            UpPhaseState.COMPLETE,
        ],
        UpPhaseState.ERROR,
        UpPhaseState.CANCELLED,
    ),
    UpPhaseState.ERROR: frozenset({UpPhaseState.PRE_FLIGHT}),
    UpPhaseState.CANCELLED: frozenset({UpPhaseState.PRE_FLIGHT}),
}

S = TypeVar("S", DownPhaseState, UpPhaseState)


class PhaseStateMachine(Generic[S]):
    """单一当前状态 + 转换表校验"""

    def __init__(self, initial: S, transitions: Dict[S, FrozenSet[S]]):
        self._state = initial
        self._transitions = transitions
        self.history: List[S] = [initial]

    @property
    def state(self) -> S:
        return self._state

    def can_transition(self, target: S) -> bool:
        return target in self._transitions.get(self._state, frozenset())

    def transition(self, target: S) -> S:
        if not self.can_transition(target):
            raise InvalidTransitionError(self._state.value, target.value)
        logger.debug("state %s -> %s", self._state.value, target.value)
        self._state = target
        self.history.append(target)
        return target


def down_state_machine() -> PhaseStateMachine[DownPhaseState]:
    return PhaseStateMachine(DownPhaseState.INIT, DOWN_TRANSITIONS)


def up_state_machine() -> PhaseStateMachine[UpPhaseState]:
    return PhaseStateMachine(UpPhaseState.INIT, UP_TRANSITIONS)
