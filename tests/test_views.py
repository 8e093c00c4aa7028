import linear_tui as lt


def test_views_cycle_forward():
    state = lt.AppState()
    seen = []
    for _ in range(3):
        state.next_view()
        seen.append(state.current_view)
    assert seen == [lt.View.PROJECTS, lt.View.TEAMS, lt.View.ISSUES]


def test_views_cycle_backward():
    state = lt.AppState()
    state.previous_view()
    assert state.current_view is lt.View.TEAMS
    state.previous_view()
    assert state.current_view is lt.View.PROJECTS


def test_next_and_previous_are_inverse():
    for view in lt.View:
        assert view.next().previous() is view
        assert view.previous().next() is view


def test_initial_state():
    state = lt.AppState()
    assert state.current_view is lt.View.ISSUES
    assert state.current_team is None
    assert state.show_help is False
    assert state.show_details is False
    assert state.loading is False
    assert len(state.issues) == 0
