from __future__ import annotations

import itertools

import pytest

from couriercore.domain.lifecycle import (
    ALL_STATUSES,
    STATUS_CANCELLED,
    STATUS_CREATED,
    STATUS_DELIVERED,
    STATUS_FLOW,
    STATUS_IN_TRANSIT,
    STATUS_OUT_FOR_DELIVERY,
    STATUS_PICKED_UP,
    allowed_transitions,
    can_transition,
    is_terminal,
    next_status,
)


LEGAL = {
    (STATUS_CREATED, STATUS_PICKED_UP),
    (STATUS_PICKED_UP, STATUS_IN_TRANSIT),
    (STATUS_IN_TRANSIT, STATUS_OUT_FOR_DELIVERY),
    (STATUS_OUT_FOR_DELIVERY, STATUS_DELIVERED),
    (STATUS_CREATED, STATUS_CANCELLED),
    (STATUS_PICKED_UP, STATUS_CANCELLED),
    (STATUS_IN_TRANSIT, STATUS_CANCELLED),
    (STATUS_OUT_FOR_DELIVERY, STATUS_CANCELLED),
}


@pytest.mark.parametrize("current,new", sorted(itertools.product(ALL_STATUSES, repeat=2)))
def test_transition_table_is_closed(current: str, new: str) -> None:
    assert can_transition(current, new) is ((current, new) in LEGAL)


def test_terminal_states_have_no_successors() -> None:
    assert is_terminal(STATUS_DELIVERED)
    assert is_terminal(STATUS_CANCELLED)
    assert allowed_transitions(STATUS_DELIVERED) == frozenset()
    assert allowed_transitions(STATUS_CANCELLED) == frozenset()


def test_next_status_walks_the_delivery_path() -> None:
    walked = [STATUS_CREATED]
    while (step := next_status(walked[-1])) is not None:
        walked.append(step)
    assert tuple(walked) == STATUS_FLOW


def test_unknown_status_has_no_transitions() -> None:
    assert allowed_transitions("Lost") == frozenset()
    assert next_status("Lost") is None
    assert not can_transition("Lost", STATUS_CANCELLED)
