from __future__ import annotations

from typing import Dict, Set

from .models import InitializationState

INIT_TRANSITIONS: Dict[InitializationState, Set[InitializationState]] = {
    InitializationState.uninitialized: {
        InitializationState.ready,
        InitializationState.degraded_ready,
    },
    InitializationState.ready: {InitializationState.ready, InitializationState.degraded_ready},
    InitializationState.degraded_ready: {
        InitializationState.ready,
        InitializationState.degraded_ready,
    },
}


def validate_init_transition(current: InitializationState, new: InitializationState) -> bool:
    return new in INIT_TRANSITIONS.get(current, set())


def is_servable(state: InitializationState) -> bool:
    return state in {InitializationState.ready, InitializationState.degraded_ready}
