import os
import sys

import pytest

ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

import linear_tui as lt  # noqa: E402

from helpers import FakeClient, FakeTerminal, make_issue, make_project, make_team  # noqa: E402


@pytest.fixture(autouse=True)
def _no_env_api_key(monkeypatch):
    monkeypatch.delenv('LINEAR_API_KEY', raising=False)


@pytest.fixture
def teams():
    return [
        make_team('team-a', 'Alpha', 'ALP'),
        make_team('team-b', 'Beta', 'BET', description=None),
    ]


@pytest.fixture
def client(teams):
    return FakeClient(
        teams=teams,
        issues={
            'team-a': [make_issue(n, team=teams[0]) for n in range(1, 4)],
            'team-b': [make_issue(n, team=teams[1]) for n in range(10, 12)],
        },
        projects={
            'team-a': [make_project('p1', 'Roadmap'), make_project('p2', 'Infra', lead=None)],
            'team-b': [make_project('p3', 'Billing')],
        },
    )


@pytest.fixture
def cfg():
    return lt.Config(refresh_interval=3600, tick_rate=0.01)


@pytest.fixture
def terminal():
    return FakeTerminal()


@pytest.fixture
def app(client, cfg, terminal):
    opened = []

    def opener(url):
        opened.append(url)
        return True

    tui = lt.TuiApp(client, cfg, terminal=terminal, opener=opener)
    tui.opened = opened
    return tui
