from hotline.stages import Stage, TRANSITIONS, can_advance


def test_all_seven_stages_exist():
    expected = {
        "initial", "urgent_details", "collect_address",
        "non_urgent_callback", "schedule_callback",
        "urgent_complete", "callback_complete",
    }
    assert {s.value for s in Stage} == expected


def test_terminal_stages():
    assert Stage.URGENT_COMPLETE.is_terminal
    assert Stage.CALLBACK_COMPLETE.is_terminal
    assert not Stage.INITIAL.is_terminal
    assert not Stage.COLLECT_ADDRESS.is_terminal


def test_terminal_stages_have_no_exits():
    assert TRANSITIONS[Stage.URGENT_COMPLETE] == set()
    assert TRANSITIONS[Stage.CALLBACK_COMPLETE] == set()


def test_forward_edges_only():
    assert can_advance(Stage.INITIAL, Stage.URGENT_DETAILS)
    assert can_advance(Stage.INITIAL, Stage.NON_URGENT_CALLBACK)
    assert can_advance(Stage.COLLECT_ADDRESS, Stage.URGENT_COMPLETE)
    assert not can_advance(Stage.COLLECT_ADDRESS, Stage.INITIAL)
    assert not can_advance(Stage.URGENT_DETAILS, Stage.SCHEDULE_CALLBACK)
    assert not can_advance(Stage.INITIAL, Stage.URGENT_COMPLETE)


def test_every_stage_has_transition_entry():
    assert set(TRANSITIONS) == set(Stage)
