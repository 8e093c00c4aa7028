import datetime as dt

import linear_tui as lt

from helpers import NOW, make_issue, make_project, make_team, make_user


def frame_lines(state, width=100, height=30, **kwargs):
    frags = lt.build_frame(state, width, height, now=NOW, **kwargs)
    return ''.join(text for _, text in frags).split('\n')


def loaded_state():
    team = make_team()
    state = lt.AppState(current_team=team)
    state.teams.replace([team, make_team('team-b', 'Beta', 'BET', description=None)])
    state.issues.replace([
        make_issue(1, team=team, priority=4, assignee=make_user('user-2', 'Grace Hopper', 'grace')),
        make_issue(2, team=team, state=lt.IssueState(id='s', name='Done', color='#0f0', type='completed')),
        make_issue(3, team=team, priority=None),
    ])
    state.projects.replace([make_project(), make_project('p2', 'Infra', status_type='paused', lead=None)])
    return state


def test_frame_has_exact_height_and_fits_width():
    for height in (8, 30):
        lines = frame_lines(loaded_state(), width=80, height=height)
        assert len(lines) == height
        assert all(lt._display_width(line) <= 80 for line in lines)


def test_tabs_and_status_bar():
    lines = frame_lines(loaded_state())
    assert 'Linear TUI' in lines[0]
    assert '1 Issues' in lines[0] and '3 Teams' in lines[0]
    assert 'Team: Alpha' in lines[-1]
    assert "Press 'q' to quit" in lines[-1]


def test_status_bar_without_team():
    lines = frame_lines(lt.AppState())
    assert 'No team selected' in lines[-1]


def test_issues_view_lists_rows_with_marker_on_selection():
    state = loaded_state()
    state.issues.select_next()
    text = '\n'.join(frame_lines(state))
    assert '🎯 Linear Issues - Alpha (ALP)' in text
    assert 'Total Issues: 3' in text
    assert 'Assigned: 1' in text
    selected = [line for line in text.split('\n') if line.startswith('➤ ')]
    assert len(selected) == 1
    assert 'ALP-2' in selected[0]
    assert 'Selected: ALP-2 - Issue number 2 | Team: ALP | Creator: ada' in text
    assert 'grace' in text
    assert '3h ago' in text


def test_issues_view_with_out_of_range_cursor():
    state = loaded_state()
    state.issues.select_previous()
    state.issues.replace([make_issue(9)])
    text = '\n'.join(frame_lines(state))
    assert 'No issue selected' in text
    assert '➤ ' not in text


def test_projects_view():
    state = loaded_state()
    state.current_view = lt.View.PROJECTS
    text = '\n'.join(frame_lines(state))
    assert '🚀 Linear Projects' in text
    assert 'With Leads: 1' in text
    assert 'No lead' in text
    assert 'Paused' in text


def test_teams_view():
    state = loaded_state()
    state.current_view = lt.View.TEAMS
    text = '\n'.join(frame_lines(state))
    assert 'Linear Teams' in text
    assert 'With Descriptions: 1' in text
    assert 'No description' in text
    assert 'Core platform' in text


def test_empty_lists_render_placeholders():
    state = lt.AppState()
    assert 'No issues found' in '\n'.join(frame_lines(state))
    state.current_view = lt.View.PROJECTS
    assert 'No projects found' in '\n'.join(frame_lines(state))
    state.current_view = lt.View.TEAMS
    assert 'No teams found' in '\n'.join(frame_lines(state))


def test_help_overlay_replaces_body():
    state = loaded_state()
    state.show_help = True
    text = '\n'.join(frame_lines(state, height=40))
    assert 'Navigation:' in text
    assert 'Quit application' in text
    assert 'Total Issues' not in text


def test_detail_view_without_description():
    state = loaded_state()
    state.issues.select(2)
    state.issues.items[2].description = None
    state.show_details = True
    text = '\n'.join(frame_lines(state))
    assert 'ALP-3 - Issue number 3' in text
    assert 'No description available' in text
    assert '❓ None' in text


def test_status_message_and_loading_in_status_bar():
    state = loaded_state()
    state.loading = True
    state.status_line = 'Refresh failed: boom'
    state.last_refresh = NOW - dt.timedelta(minutes=5)
    last = frame_lines(state, width=200)[-1]
    assert 'Loading' in last
    assert 'Updated 5m ago' in last
    assert 'Refresh failed: boom' in last


def test_long_selection_scrolls_into_view():
    team = make_team()
    state = lt.AppState(current_team=team)
    state.issues.replace([make_issue(n, team=team) for n in range(1, 60)])
    state.issues.select(58)
    lines = frame_lines(state, height=20)
    selected = [line for line in lines if line.startswith('➤ ')]
    assert len(selected) == 1
    assert 'ALP-59' in selected[0]


def test_format_duration_since():
    assert lt.format_duration_since(NOW - dt.timedelta(days=3, hours=2), NOW) == '3d ago'
    assert lt.format_duration_since(NOW - dt.timedelta(hours=5), NOW) == '5h ago'
    assert lt.format_duration_since(NOW - dt.timedelta(minutes=7), NOW) == '7m ago'
    assert lt.format_duration_since(NOW - dt.timedelta(seconds=20), NOW) == 'now'


def test_format_priority():
    assert lt.format_priority(4) == '🔴 Urgent'
    assert lt.format_priority(3) == '🟡 High'
    assert lt.format_priority(2) == '🔵 Medium'
    assert lt.format_priority(1) == '⚪ Low'
    assert lt.format_priority(0) == '❓ None'
    assert lt.format_priority(None) == '❓ None'


def test_truncate_and_pad_are_width_aware():
    assert lt._truncate('abcdef', 4) == 'abc…'
    assert lt._truncate('abc', 4) == 'abc'
    assert lt._display_width(lt._pad_display('日本語テキスト', 6)) == 6
    assert lt._pad_display('ab', 4, 'right') == '  ab'


def test_wrap_text_keeps_paragraphs():
    lines = lt.wrap_text('one two three four\n\nfive', 9)
    assert lines == ['one two', 'three', 'four', '', 'five']
