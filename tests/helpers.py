import asyncio
import datetime as dt
import threading

import linear_tui as lt


NOW = dt.datetime(2024, 1, 10, 12, 0, tzinfo=dt.timezone.utc)


def make_user(uid='user-1', name='Ada Lovelace', display_name='ada'):
    return lt.User(id=uid, name=name, display_name=display_name, email=f'{display_name}@example.com')


def make_team(tid='team-a', name='Alpha', key='ALP', description='Core platform'):
    return lt.Team(id=tid, name=name, key=key, description=description)


def make_issue(number=1, team=None, **overrides):
    team = team or make_team()
    base = dict(
        id=f'issue-{team.key}-{number}',
        identifier=f'{team.key}-{number}',
        title=f'Issue number {number}',
        url=f'https://linear.app/acme/issue/{team.key}-{number}',
        state=lt.IssueState(id='state-todo', name='Todo', color='#e2e2e2', type='unstarted'),
        creator=make_user(),
        team=team,
        created_at=NOW - dt.timedelta(days=2),
        updated_at=NOW - dt.timedelta(hours=3),
        description='Something is broken.',
        priority=2,
        assignee=None,
    )
    base.update(overrides)
    return lt.Issue(**base)


_DEFAULT_LEAD = object()


def make_project(pid='p1', name='Roadmap', status_type='started', lead=_DEFAULT_LEAD):
    return lt.Project(
        id=pid,
        name=name,
        status=lt.ProjectStatus(name=status_type.title(), color='#00ff00', type=status_type),
        description=None,
        lead=make_user() if lead is _DEFAULT_LEAD else lead,
    )


def user_node(**overrides):
    node = {'id': 'user-1', 'name': 'Ada Lovelace', 'email': 'ada@example.com',
            'displayName': 'ada', 'avatarUrl': None}
    node.update(overrides)
    return node


def team_node(**overrides):
    node = {'id': 'team-a', 'name': 'Alpha', 'key': 'ALP', 'description': 'Core platform'}
    node.update(overrides)
    return node


def issue_node(**overrides):
    node = {
        'id': 'issue-1',
        'title': 'Fix login',
        'description': 'Users cannot log in.',
        'identifier': 'ALP-1',
        'priority': 3,
        'url': 'https://linear.app/acme/issue/ALP-1',
        'createdAt': '2024-01-08T10:00:00.000Z',
        'updatedAt': '2024-01-10T09:30:00.000Z',
        'state': {'id': 'state-1', 'name': 'In Progress', 'color': '#f2c94c', 'type': 'started'},
        'assignee': None,
        'creator': user_node(),
        'team': team_node(),
    }
    node.update(overrides)
    return node


def project_node(**overrides):
    node = {
        'id': 'proj-1',
        'name': 'Roadmap',
        'description': None,
        'status': {'name': 'Planned', 'color': '#bec2c8', 'type': 'planned'},
        'lead': user_node(),
    }
    node.update(overrides)
    return node


class FakeClient:
    """In-memory stand-in for LinearClient that records every call."""

    def __init__(self, teams=None, issues=None, projects=None, viewer=None):
        self.teams = list(teams or [])
        self.issues = dict(issues or {})
        self.projects = dict(projects or {})
        self.viewer = viewer or make_user()
        self.calls = []
        self.fail = {}
        self._lock = threading.Lock()

    def _record(self, name, *args):
        with self._lock:
            self.calls.append((name,) + args)
        err = self.fail.get(name)
        if err is not None:
            raise err

    def calls_to(self, name):
        return [c for c in self.calls if c[0] == name]

    def get_viewer(self):
        self._record('get_viewer')
        return self.viewer

    def get_teams(self):
        self._record('get_teams')
        return list(self.teams)

    def get_issues(self, team_id=None, first=None):
        self._record('get_issues', team_id, first)
        nodes = list(self.issues.get(team_id, []))
        return lt.IssuesConnection(nodes=nodes, page_info=lt.PageInfo())

    def get_projects(self, team_id=None):
        self._record('get_projects', team_id)
        return list(self.projects.get(team_id, []))


class ScriptedKeyReader:
    """Hands out one batch of keys per read, then idles until the timeout."""

    def __init__(self, batches=None):
        self.batches = list(batches or [])
        self.reads = 0

    async def read(self, timeout):
        self.reads += 1
        if self.batches:
            batch = self.batches.pop(0)
            await asyncio.sleep(0)
            return list(batch)
        await asyncio.sleep(timeout)
        return []


class FakeTerminal:
    """Records frames instead of drawing them and tracks enter/exit."""

    def __init__(self, keys=None, rows=30, columns=120):
        self.reader = ScriptedKeyReader(keys)
        self.rows = rows
        self.columns = columns
        self.frames = []
        self.entered = False
        self.exited = False

    def __enter__(self):
        self.entered = True
        return self

    def __exit__(self, *exc):
        self.exited = True

    def key_reader(self):
        return self.reader

    def size(self):
        return self.rows, self.columns

    def draw(self, fragments):
        self.frames.append(fragments)

    def last_text(self):
        return ''.join(text for _, text in self.frames[-1])
