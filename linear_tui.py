#!/usr/bin/env python3
# linear_tui: Terminal dashboard for Linear issues, projects and teams
#
# Hotkeys
#   1/2/3      jump to Issues / Projects / Teams
#   Tab        next view (Shift-Tab: previous view)
#   j/k, ↓/↑   move selection (wraps around)
#   Enter      (Teams) make the selected team active and reload its data
#   v          (Issues) open the selected issue in the browser
#   d          (Issues) toggle the detail view
#   r          refresh the current view
#   ?          show/hide help
#   q, Ctrl-C  quit
#
# Data is refreshed automatically every `refresh_interval` seconds (30 by default).
#
# Config (YAML, default ~/.config/ltui/config.yaml, written with defaults on first run)
#   api_key: lin_api_...
#   refresh_interval: 30
#   default_team_id: null
#   refresh_errors: fatal     # or "report" to keep running after a failed refresh
#
# Environment
# - LINEAR_API_KEY (Personal API key; also read from a .env file)

from __future__ import annotations

import argparse
import asyncio
import contextlib
import datetime as dt
import functools
import logging
import os
import sys
import textwrap
import time
import unicodedata
import webbrowser
from dataclasses import asdict, dataclass, field
from enum import Enum
from logging.handlers import RotatingFileHandler
from typing import Callable, Dict, Generic, Iterable, List, Optional, Sequence, Tuple, TypeVar

import requests
import yaml
from prompt_toolkit import print_formatted_text
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.input import Input, create_input
from prompt_toolkit.keys import Keys
from prompt_toolkit.output import Output, create_output
from prompt_toolkit.styles import Style
from prompt_toolkit.styles.base import ANSI_COLOR_NAMES
from prompt_toolkit.utils import get_cwidth


logger = logging.getLogger('ltui')

LINEAR_API_URL = "https://api.linear.app/graphql"
DEFAULT_CONFIG_DIR = os.path.expanduser("~/.config/ltui")
TICK_RATE = 0.25          # seconds the input poller waits for a key before emitting a tick
REFRESH_INTERVAL = 30.0   # seconds between automatic refreshes
ISSUES_PAGE_SIZE = 50
REFRESH_ERROR_MODES = ("fatal", "report")


# -----------------------------
# Errors
# -----------------------------
class LinearError(RuntimeError):
    """Any failure talking to the Linear API."""


class AuthenticationError(LinearError):
    pass


class NetworkError(LinearError):
    pass


class ProtocolError(LinearError):
    """The response could not be read as the expected record shape."""


class ConfigError(ValueError):
    pass


# -----------------------------
# Config
# -----------------------------
@dataclass
class ThemeConfig:
    primary_color: str = "blue"
    secondary_color: str = "cyan"
    background_color: str = "black"
    text_color: str = "white"


@dataclass
class Config:
    api_key: Optional[str] = None
    refresh_interval: float = REFRESH_INTERVAL
    tick_rate: float = TICK_RATE
    default_team_id: Optional[str] = None
    issues_page_size: int = ISSUES_PAGE_SIZE
    refresh_errors: str = "fatal"
    theme: ThemeConfig = field(default_factory=ThemeConfig)


def default_config_path() -> str:
    return os.path.join(DEFAULT_CONFIG_DIR, "config.yaml")


def _positive(raw: dict, key: str, default, cast):
    value = raw.get(key)
    if value is None:
        return default
    try:
        value = cast(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Config: '{key}' must be a number, got {raw.get(key)!r}")
    if value <= 0:
        raise ConfigError(f"Config: '{key}' must be positive, got {value!r}")
    return value


def _optional_str(raw: dict, key: str) -> Optional[str]:
    value = raw.get(key)
    if value is None or value == "":
        return None
    return str(value)


def _parse_config(raw: dict) -> Config:
    theme_raw = raw.get("theme") or {}
    if not isinstance(theme_raw, dict):
        raise ConfigError("Config: 'theme' must be a mapping")
    theme = ThemeConfig()
    for name in asdict(theme):
        if theme_raw.get(name):
            setattr(theme, name, str(theme_raw[name]))
    mode = str(raw.get("refresh_errors") or "fatal").lower()
    if mode not in REFRESH_ERROR_MODES:
        raise ConfigError(f"Config: 'refresh_errors' must be one of {', '.join(REFRESH_ERROR_MODES)}")
    return Config(
        api_key=_optional_str(raw, "api_key"),
        refresh_interval=_positive(raw, "refresh_interval", REFRESH_INTERVAL, float),
        tick_rate=_positive(raw, "tick_rate", TICK_RATE, float),
        default_team_id=_optional_str(raw, "default_team_id"),
        issues_page_size=_positive(raw, "issues_page_size", ISSUES_PAGE_SIZE, int),
        refresh_errors=mode,
        theme=theme,
    )


def load_config(path: Optional[str] = None) -> Config:
    """Read the YAML config, writing a default one first if the file is missing."""
    path = path or default_config_path()
    if not os.path.isfile(path):
        cfg = Config()
        try:
            d = os.path.dirname(os.path.abspath(path))
            os.makedirs(d, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                yaml.safe_dump(asdict(cfg), f, sort_keys=False)
        except OSError as e:
            raise ConfigError(f"Could not write default config file {path}: {e}") from e
        logger.info("Wrote default config to %s", path)
        return cfg
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Could not read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse config file {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return _parse_config(raw)


def load_dotenv_token() -> Optional[str]:
    """Load LINEAR_API_KEY from a .env file (current dir or script dir) if present."""
    candidates = [os.getcwd(), os.path.dirname(os.path.abspath(__file__))]
    for base in candidates:
        path = os.path.join(base, ".env")
        if not os.path.isfile(path):
            continue
        try:
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith('#') or '=' not in line:
                        continue
                    k, v = line.split('=', 1)
                    v = v.strip().strip('"').strip("'")
                    if k.strip() == "LINEAR_API_KEY" and v:
                        return v
        except OSError:
            logger.warning("Could not read %s", path)
    return None


def resolve_api_key(cli_key: Optional[str], cfg: Config) -> Optional[str]:
    return cli_key or os.environ.get("LINEAR_API_KEY") or load_dotenv_token() or cfg.api_key


def _color(name: str) -> str:
    if name.startswith("#") or name.startswith("ansi"):
        return name
    ansi = "ansi" + name.lower()
    return ansi if ansi in ANSI_COLOR_NAMES else name


def build_style(theme: ThemeConfig) -> Style:
    primary = _color(theme.primary_color)
    secondary = _color(theme.secondary_color)
    background = _color(theme.background_color)
    text = _color(theme.text_color)
    try:
        return Style.from_dict({
            'app-title': f'{secondary} bold',
            'tab': text,
            'tab.selected': 'ansiyellow bold underline',
            'rule': primary,
            'title': f'{secondary} bold',
            'label': 'ansiyellow',
            'muted': 'ansigray',
            'value': 'ansigreen bold',
            'text': text,
            'header': f'{primary} bold',
            'marker': 'ansiyellow',
            'selected': 'reverse',
            'key': secondary,
            'good': 'ansigreen',
            'warn': 'ansiyellow',
            'bad': 'ansired',
            'info': 'ansiblue',
            'status': f'bg:{primary} {background}',
            'status.team': f'bg:{primary} {background} bold',
            'status.message': f'bg:{primary} ansiyellow',
        })
    except (AssertionError, ValueError) as e:
        raise ConfigError(f"Config: invalid theme color ({e})") from e


# -----------------------------
# Logging
# -----------------------------
def setup_logging(log_level: str = 'ERROR', log_path: Optional[str] = None) -> logging.Logger:
    """Send the 'ltui' logger to a rotating file; the terminal belongs to the UI."""
    if log_path is None:
        log_path = os.path.join(DEFAULT_CONFIG_DIR, 'ltui.log')
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    d = os.path.dirname(os.path.abspath(log_path))
    os.makedirs(d, exist_ok=True)
    fh = RotatingFileHandler(log_path, maxBytes=2000000, backupCount=2, encoding='utf-8')
    lvl = getattr(logging, str(log_level).upper(), logging.ERROR)
    if not isinstance(lvl, int):
        lvl = logging.ERROR
    fh.setLevel(lvl)
    fh.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(message)s'))
    logger.addHandler(fh)
    return logger


# -----------------------------
# Records
# -----------------------------
def _parse_ts(raw: object) -> dt.datetime:
    if not isinstance(raw, str):
        raise ValueError(f"expected ISO timestamp, got {raw!r}")
    s = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
    ts = dt.datetime.fromisoformat(s)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=dt.timezone.utc)
    return ts


@dataclass
class User:
    id: str
    name: str
    display_name: str
    email: Optional[str] = None
    avatar_url: Optional[str] = None

    @classmethod
    def from_node(cls, node: Dict) -> "User":
        return cls(
            id=node["id"],
            name=node["name"],
            display_name=node["displayName"],
            email=node.get("email"),
            avatar_url=node.get("avatarUrl"),
        )


@dataclass
class Team:
    id: str
    name: str
    key: str
    description: Optional[str] = None

    @classmethod
    def from_node(cls, node: Dict) -> "Team":
        return cls(id=node["id"], name=node["name"], key=node["key"], description=node.get("description"))


@dataclass
class IssueState:
    id: str
    name: str
    color: str
    type: str

    @classmethod
    def from_node(cls, node: Dict) -> "IssueState":
        return cls(id=node["id"], name=node["name"], color=node["color"], type=node["type"])


@dataclass
class Issue:
    id: str
    identifier: str
    title: str
    url: str
    state: IssueState
    creator: User
    team: Team
    created_at: dt.datetime
    updated_at: dt.datetime
    description: Optional[str] = None
    priority: Optional[int] = None
    assignee: Optional[User] = None

    @classmethod
    def from_node(cls, node: Dict) -> "Issue":
        priority = node.get("priority")
        return cls(
            id=node["id"],
            identifier=node["identifier"],
            title=node["title"],
            url=node["url"],
            state=IssueState.from_node(node["state"]),
            creator=User.from_node(node["creator"]),
            team=Team.from_node(node["team"]),
            created_at=_parse_ts(node["createdAt"]),
            updated_at=_parse_ts(node["updatedAt"]),
            description=node.get("description"),
            priority=int(priority) if priority is not None else None,
            assignee=User.from_node(node["assignee"]) if node.get("assignee") else None,
        )


@dataclass
class ProjectStatus:
    name: str
    color: str
    type: str

    @classmethod
    def from_node(cls, node: Dict) -> "ProjectStatus":
        return cls(name=node["name"], color=node["color"], type=node["type"])


@dataclass
class Project:
    id: str
    name: str
    status: ProjectStatus
    description: Optional[str] = None
    lead: Optional[User] = None

    @classmethod
    def from_node(cls, node: Dict) -> "Project":
        return cls(
            id=node["id"],
            name=node["name"],
            status=ProjectStatus.from_node(node["status"]),
            description=node.get("description"),
            lead=User.from_node(node["lead"]) if node.get("lead") else None,
        )


@dataclass
class PageInfo:
    has_next_page: bool = False
    has_previous_page: bool = False
    start_cursor: Optional[str] = None
    end_cursor: Optional[str] = None

    @classmethod
    def from_node(cls, node: Dict) -> "PageInfo":
        return cls(
            has_next_page=bool(node["hasNextPage"]),
            has_previous_page=bool(node["hasPreviousPage"]),
            start_cursor=node.get("startCursor"),
            end_cursor=node.get("endCursor"),
        )


@dataclass
class IssuesConnection:
    nodes: List[Issue]
    page_info: PageInfo


R = TypeVar("R")


def _parse(parser: Callable[[Dict], R], node: object, what: str) -> R:
    try:
        return parser(node)  # type: ignore[arg-type]
    except (KeyError, TypeError, ValueError) as e:
        raise ProtocolError(f"Unexpected {what} shape in response: {e!r}") from e


def _parse_nodes(parser: Callable[[Dict], R], connection: object, what: str) -> List[R]:
    nodes = _parse(lambda c: c["nodes"], connection, what)
    if not isinstance(nodes, list):
        raise ProtocolError(f"Unexpected {what} shape in response: nodes is not a list")
    return [_parse(parser, n, what) for n in nodes]


# -----------------------------
# Linear GraphQL client
# -----------------------------
_USER_FIELDS = "id name email displayName avatarUrl"
_TEAM_FIELDS = "id name key description"
_ISSUE_FIELDS = f"""id title description identifier priority url createdAt updatedAt
      state {{ id name color type }}
      assignee {{ {_USER_FIELDS} }}
      creator {{ {_USER_FIELDS} }}
      team {{ {_TEAM_FIELDS} }}"""
_PROJECT_FIELDS = f"""id name description
      status {{ name color type }}
      lead {{ {_USER_FIELDS} }}"""

GQL_VIEWER = f"""query {{ viewer {{ {_USER_FIELDS} }} }}"""

GQL_TEAMS = f"""query {{ teams {{ nodes {{ {_TEAM_FIELDS} }} }} }}"""

GQL_ISSUES = f"""query($filter: IssueFilter, $first: Int) {{
  issues(filter: $filter, first: $first, orderBy: updatedAt) {{
    nodes {{ {_ISSUE_FIELDS} }}
    pageInfo {{ hasNextPage hasPreviousPage startCursor endCursor }}
  }}
}}"""

GQL_PROJECTS = f"""query {{ projects {{ nodes {{ {_PROJECT_FIELDS} }} }} }}"""

GQL_TEAM_PROJECTS = f"""query($teamId: String!) {{
  team(id: $teamId) {{ projects {{ nodes {{ {_PROJECT_FIELDS} }} }} }}
}}"""

GQL_MUTATION_CREATE_ISSUE = f"""mutation($input: IssueCreateInput!) {{
  issueCreate(input: $input) {{ success issue {{ {_ISSUE_FIELDS} }} }}
}}"""

RETRYABLE_HTTP = (429, 502, 503, 504)


def _session(api_key: str) -> requests.Session:
    s = requests.Session()
    # Personal API keys go in verbatim; OAuth tokens would need a Bearer prefix.
    s.headers["Authorization"] = api_key
    s.headers["Content-Type"] = "application/json"
    return s


def _graphql_raw(session: requests.Session, url: str, query: str, variables: Optional[Dict[str, object]]) -> Dict:
    r = session.post(url, json={"query": query, "variables": variables}, timeout=60)
    if r.status_code == 401:
        raise AuthenticationError("Linear rejected the API key (HTTP 401)")
    r.raise_for_status()
    try:
        body = r.json()
    except ValueError as e:
        raise ProtocolError("Failed to parse GraphQL response") from e
    if not isinstance(body, dict):
        raise ProtocolError("GraphQL response is not a JSON object")
    return body


def _retry_sleep(seconds: float, on_wait: Optional[Callable[[str], None]] = None) -> None:
    msg = f"Rate limited; waiting {int(seconds)}s…"
    if on_wait:
        on_wait(msg)
    else:
        logger.info(msg)
    time.sleep(max(0.0, seconds))


def _parse_retry_after_seconds(resp: Optional[requests.Response]) -> Optional[int]:
    if resp is None or resp.headers is None:
        return None
    ra = resp.headers.get('Retry-After')
    if ra:
        try:
            return int(float(ra))
        except ValueError:
            pass
    # Linear reports the reset instant in epoch milliseconds
    reset = resp.headers.get('X-RateLimit-Requests-Reset')
    if reset:
        try:
            return max(1, int(int(reset) / 1000 - time.time()))
        except ValueError:
            pass
    return None


def _is_rate_limited(errors: List[object]) -> bool:
    for e in errors:
        if not isinstance(e, dict):
            continue
        ext = e.get("extensions") or {}
        if not isinstance(ext, dict):
            continue
        if str(ext.get("code", "")).upper() in ("RATELIMITED", "RATE_LIMITED"):
            return True
    return False


def _graphql_with_backoff(
    session: requests.Session,
    url: str,
    query: str,
    variables: Optional[Dict[str, object]],
    on_wait: Optional[Callable[[str], None]] = None,
    max_total_wait: int = 60,
) -> Dict:
    """Call GraphQL, retrying rate limits and transient failures within a wait budget.

    - Retries HTTP 429/502/503/504 honoring Retry-After, else exponential backoff.
    - Retries timeouts and connection errors.
    - Retries RATELIMITED GraphQL errors delivered with HTTP 200/400.
    Everything that cannot be retried becomes a LinearError subclass.
    """
    backoff = 2
    total_wait = 0
    while True:
        try:
            resp = _graphql_raw(session, url, query, variables)
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status == 400 and e.response is not None:
                # Linear reports GraphQL validation/auth errors with HTTP 400 and a JSON body.
                try:
                    body = e.response.json()
                except ValueError:
                    body = None
                if isinstance(body, dict) and body.get("errors"):
                    resp = body
                else:
                    raise NetworkError(f"HTTP error: {status} - {e.response.text}") from e
            elif status in RETRYABLE_HTTP:
                wait_s = _parse_retry_after_seconds(e.response)
                if wait_s is None:
                    wait_s = backoff
                    backoff = min(30, backoff * 2)
                if total_wait + wait_s > max_total_wait:
                    raise NetworkError(f"HTTP error: {status} (gave up after {total_wait}s of retries)") from e
                _retry_sleep(wait_s, on_wait)
                total_wait += wait_s
                continue
            else:
                body = e.response.text if e.response is not None else ""
                raise NetworkError(f"HTTP error: {status} - {body}") from e
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            wait_s = backoff
            backoff = min(30, backoff * 2)
            if total_wait + wait_s > max_total_wait:
                raise NetworkError(f"Failed to send GraphQL request: {e}") from e
            _retry_sleep(wait_s, on_wait)
            total_wait += wait_s
            continue
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Failed to send GraphQL request: {e}") from e

        errs = resp.get("errors") or []
        if not isinstance(errs, list):
            raise ProtocolError("GraphQL 'errors' is not a list")
        if errs and _is_rate_limited(errs):
            wait_s = backoff
            backoff = min(30, backoff * 2)
            if total_wait + wait_s > max_total_wait:
                return resp
            _retry_sleep(wait_s, on_wait)
            total_wait += wait_s
            continue
        return resp


class LinearClient:
    """Blocking client for the handful of Linear queries the dashboard needs."""

    def __init__(self, api_key: str, url: str = LINEAR_API_URL, session: Optional[requests.Session] = None,
                 max_total_wait: int = 60):
        if not api_key:
            raise AuthenticationError("Linear Personal API Key is required")
        self.url = url
        self.session = session or _session(api_key)
        self.max_total_wait = max_total_wait

    def execute(self, query: str, variables: Optional[Dict[str, object]] = None) -> Dict:
        resp = _graphql_with_backoff(self.session, self.url, query, variables, max_total_wait=self.max_total_wait)
        errs = resp.get("errors") or []
        if errs:
            codes = {str(e["extensions"].get("code", "")).upper() for e in errs
                     if isinstance(e, dict) and isinstance(e.get("extensions"), dict)}
            messages = ", ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errs)
            if "AUTHENTICATION_ERROR" in codes:
                raise AuthenticationError(f"Authentication failed: {messages}")
            raise LinearError(f"GraphQL errors: {messages}")
        data = resp.get("data")
        if not isinstance(data, dict):
            raise ProtocolError("GraphQL response contained no data")
        return data

    def get_viewer(self) -> User:
        data = self.execute(GQL_VIEWER)
        return _parse(lambda d: User.from_node(d["viewer"]), data, "viewer")

    def get_teams(self) -> List[Team]:
        data = self.execute(GQL_TEAMS)
        teams = _parse_nodes(Team.from_node, data.get("teams"), "teams")
        logger.debug("Fetched %d teams", len(teams))
        return teams

    def get_issues(self, team_id: Optional[str] = None, first: Optional[int] = None) -> IssuesConnection:
        variables: Dict[str, object] = {"first": first or ISSUES_PAGE_SIZE}
        if team_id:
            variables["filter"] = {"team": {"id": {"eq": team_id}}}
        data = self.execute(GQL_ISSUES, variables)
        conn = data.get("issues")
        nodes = _parse_nodes(Issue.from_node, conn, "issues")
        page_info = _parse(lambda c: PageInfo.from_node(c["pageInfo"]), conn, "issues")
        logger.debug("Fetched %d issues (team=%s)", len(nodes), team_id)
        return IssuesConnection(nodes=nodes, page_info=page_info)

    def get_projects(self, team_id: Optional[str] = None) -> List[Project]:
        if team_id:
            data = self.execute(GQL_TEAM_PROJECTS, {"teamId": team_id})
            team = data.get("team")
            if team is None:
                raise LinearError(f"Team {team_id} not found")
            projects = _parse_nodes(Project.from_node, _parse(lambda t: t["projects"], team, "team"), "projects")
        else:
            data = self.execute(GQL_PROJECTS)
            projects = _parse_nodes(Project.from_node, data.get("projects"), "projects")
        logger.debug("Fetched %d projects (team=%s)", len(projects), team_id)
        return projects

    def create_issue(self, team_id: str, title: str, description: Optional[str] = None) -> Issue:
        if not (team_id and title):
            raise LinearError("Creating an issue needs a team id and a title")
        variables = {"input": {"teamId": team_id, "title": title, "description": description}}
        data = self.execute(GQL_MUTATION_CREATE_ISSUE, variables)
        payload = data.get("issueCreate") or {}
        if not payload.get("success"):
            raise LinearError("Failed to create issue")
        node = payload.get("issue")
        if not node:
            raise LinearError("Issue creation succeeded but no issue data returned")
        return _parse(Issue.from_node, node, "issue")


# -----------------------------
# Selection model & view state
# -----------------------------
T = TypeVar("T")


class SelectableList(Generic[T]):
    """Ordered items plus a wraparound cursor.

    The cursor is sticky: replacing the items never resets or clamps it, so after
    shrinking the list it may point past the end, in which case nothing is selected
    until navigation or selection brings it back in range.
    """

    def __init__(self, items: Optional[Iterable[T]] = None):
        self.items: List[T] = []
        self.cursor: Optional[int] = None
        if items is not None:
            self.replace(items)

    def __len__(self) -> int:
        return len(self.items)

    def select_next(self) -> None:
        if not self.items:
            return
        if self.cursor is None or self.cursor >= len(self.items) - 1:
            self.cursor = 0
        else:
            self.cursor += 1

    def select_previous(self) -> None:
        if not self.items:
            return
        if self.cursor is None:
            self.cursor = 0
        elif self.cursor == 0 or self.cursor > len(self.items) - 1:
            self.cursor = len(self.items) - 1
        else:
            self.cursor -= 1

    def select(self, index: int) -> None:
        if 0 <= index < len(self.items):
            self.cursor = index

    def selected(self) -> Optional[T]:
        if self.cursor is None or not (0 <= self.cursor < len(self.items)):
            return None
        return self.items[self.cursor]

    def replace(self, items: Iterable[T]) -> None:
        self.items = list(items)
        if self.items and self.cursor is None:
            self.cursor = 0


class View(Enum):
    ISSUES = "Issues"
    PROJECTS = "Projects"
    TEAMS = "Teams"

    def next(self) -> "View":
        order = list(View)
        return order[(order.index(self) + 1) % len(order)]

    def previous(self) -> "View":
        order = list(View)
        return order[(order.index(self) - 1) % len(order)]


VIEW_KEYS = {'1': View.ISSUES, '2': View.PROJECTS, '3': View.TEAMS}
QUIT_KEYS = ('q', 'c-c')


@dataclass
class AppState:
    current_view: View = View.ISSUES
    current_team: Optional[Team] = None
    show_help: bool = False
    show_details: bool = False
    loading: bool = False
    status_line: str = ""
    last_refresh: Optional[dt.datetime] = None
    issues: SelectableList[Issue] = field(default_factory=SelectableList)
    projects: SelectableList[Project] = field(default_factory=SelectableList)
    teams: SelectableList[Team] = field(default_factory=SelectableList)

    def next_view(self) -> None:
        self.current_view = self.current_view.next()

    def previous_view(self) -> None:
        self.current_view = self.current_view.previous()


# -----------------------------
# Events
# -----------------------------
@dataclass(frozen=True)
class AppEvent:
    kind: str                  # 'key' | 'tick' | 'refresh' | 'quit'
    key: Optional[str] = None

    @classmethod
    def for_key(cls, name: str) -> "AppEvent":
        return cls('key', name)


TICK = AppEvent('tick')
REFRESH = AppEvent('refresh')
QUIT = AppEvent('quit')

_CLOSED = object()

_KEY_NAMES = {
    Keys.ControlI: 'tab',
    Keys.BackTab: 's-tab',
    Keys.ControlM: 'enter',
    Keys.ControlJ: 'enter',
}
_IGNORED_KEYS = (Keys.CPRResponse, Keys.Ignore, Keys.Vt100MouseEvent)


def key_name(key: object) -> str:
    """Normalize a prompt_toolkit key ('c-i', Keys.Up, 'j', ...) to a binding name."""
    if key in _KEY_NAMES:
        return _KEY_NAMES[key]  # type: ignore[index]
    if isinstance(key, Keys):
        return key.value
    return str(key)


class KeyReader:
    """Bounded wait for keystrokes on a prompt_toolkit Input (must be in raw mode)."""

    def __init__(self, inp: Input):
        self._input = inp
        self._ready: Optional[asyncio.Event] = None
        self._attachment: Optional[contextlib.AbstractContextManager] = None

    def _on_ready(self) -> None:
        if self._ready is not None:
            self._ready.set()

    async def read(self, timeout: float) -> List[str]:
        """Return the keys typed within ``timeout`` seconds; empty on timeout."""
        if self._attachment is None:
            self._ready = asyncio.Event()
            self._attachment = self._input.attach(self._on_ready)
            self._attachment.__enter__()
        assert self._ready is not None
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except asyncio.TimeoutError:
            # a lone Escape stays buffered until flushed
            presses = self._input.flush_keys()
        else:
            self._ready.clear()
            presses = self._input.read_keys()
        return [key_name(kp.key) for kp in presses if kp.key not in _IGNORED_KEYS]

    def close(self) -> None:
        if self._attachment is not None:
            self._attachment.__exit__(None, None, None)
            self._attachment = None
            self._ready = None


class EventHandler:
    """Merges keyboard input, idle ticks and the refresh timer into one FIFO stream.

    Two producer tasks write into an unbounded asyncio.Queue; the session loop is the
    only consumer. ``close()`` refuses further sends so producers stop on their next
    attempt, and cancels them outright.
    """

    def __init__(self, tick_rate: float = TICK_RATE, refresh_interval: float = REFRESH_INTERVAL):
        self.tick_rate = tick_rate
        self.refresh_interval = refresh_interval
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._error: Optional[BaseException] = None
        self._tasks: List[asyncio.Task] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self, reader) -> None:
        self._tasks.append(asyncio.create_task(self._poll_input(reader)))
        self._tasks.append(asyncio.create_task(self._refresh_timer()))

    def send(self, event: AppEvent) -> bool:
        if self._closed:
            return False
        self._queue.put_nowait(event)
        return True

    async def next(self) -> AppEvent:
        if self._closed and self._queue.empty():
            return self._closed_event()
        item = await self._queue.get()
        if item is _CLOSED:
            return self._closed_event()
        return item

    def _closed_event(self) -> AppEvent:
        if self._error is not None:
            err, self._error = self._error, None
            raise err
        return QUIT

    async def _poll_input(self, reader) -> None:
        try:
            while True:
                keys = await reader.read(self.tick_rate)
                events = [AppEvent.for_key(k) for k in keys] or [TICK]
                for ev in events:
                    if not self.send(ev):
                        return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Input poller failed")
            self._error = e
            self.close()

    async def _refresh_timer(self) -> None:
        while True:
            await asyncio.sleep(self.refresh_interval)
            if not self.send(REFRESH):
                return

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()

    async def wait_closed(self) -> None:
        pending = [t for t in self._tasks if t is not asyncio.current_task()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []


# -----------------------------
# Formatting helpers
# -----------------------------
Fragments = List[Tuple[str, str]]


def format_duration_since(when: dt.datetime, now: Optional[dt.datetime] = None) -> str:
    now = now or dt.datetime.now(dt.timezone.utc)
    secs = int((now - when).total_seconds())
    if secs >= 86400:
        return f"{secs // 86400}d ago"
    if secs >= 3600:
        return f"{secs // 3600}h ago"
    if secs >= 60:
        return f"{secs // 60}m ago"
    return "now"


PRIORITY_LABELS = {4: "🔴 Urgent", 3: "🟡 High", 2: "🔵 Medium", 1: "⚪ Low"}
PRIORITY_ICONS = {4: "🔴", 3: "🟠", 2: "🟢", 1: "🔵"}
ISSUE_STATE_STYLES = {"completed": "class:good", "started": "class:warn", "unstarted": "class:muted", "canceled": "class:bad"}
PROJECT_STATE_STYLES = {"completed": "class:good", "started": "class:warn", "planned": "class:info",
                        "paused": "class:muted", "canceled": "class:bad"}


def format_priority(priority: Optional[int]) -> str:
    return PRIORITY_LABELS.get(priority or 0, "❓ None")


def _char_width(ch: str) -> int:
    if unicodedata.combining(ch) or unicodedata.category(ch) == "Cf":
        return 0
    return max(1, get_cwidth(ch))


def _display_width(text: str) -> int:
    return sum(_char_width(ch) for ch in text)


def _sanitize_cell_text(s: Optional[str]) -> str:
    return (s or "").replace("\n", " ").replace("\r", " ").replace("\t", " ")


def _truncate(s: Optional[str], maxlen: int) -> str:
    """Truncate to a maximum display width, ending with an ellipsis when cut."""
    s = _sanitize_cell_text(s)
    if maxlen <= 0:
        return ""
    if _display_width(s) <= maxlen:
        return s
    out: List[str] = []
    width = 0
    for ch in s:
        ch_w = _char_width(ch)
        if width + ch_w + 1 > maxlen:
            break
        out.append(ch)
        width += ch_w
    return "".join(out) + "…"


def _pad_display(text: Optional[str], width: int, align: str = "left") -> str:
    raw = _truncate(text, width)
    pad = max(0, width - _display_width(raw))
    if align == "right":
        return " " * pad + raw
    if align == "center":
        left = pad // 2
        return (" " * left) + raw + (" " * (pad - left))
    return raw + (" " * pad)


def wrap_text(text: str, width: int) -> List[str]:
    lines: List[str] = []
    for para in text.split("\n"):
        if not para.strip():
            lines.append("")
            continue
        lines.extend(textwrap.wrap(para, width=max(1, width)) or [""])
    return lines


def _clip_line(line: Fragments, width: int) -> Fragments:
    out: Fragments = []
    used = 0
    for style, text in line:
        w = _display_width(text)
        if used + w <= width:
            out.append((style, text))
            used += w
            continue
        out.append((style, _truncate(text, width - used)))
        break
    return out


def _visible_range(count: int, cursor: Optional[int], rows: int) -> Tuple[int, int]:
    rows = max(1, rows)
    if cursor is None or cursor < rows:
        return 0, min(count, rows)
    start = min(cursor, count - 1) - rows + 1
    return max(0, start), min(count, max(0, start) + rows)


# -----------------------------
# Frame builders
# -----------------------------
def build_tabs(state: AppState, width: int) -> Fragments:
    frags: Fragments = [("class:app-title", " Linear TUI "), ("class:rule", "│")]
    for idx, view in enumerate(View, start=1):
        style = "class:tab.selected" if view is state.current_view else "class:tab"
        frags.append((style, f" {idx} {view.value} "))
        frags.append(("class:rule", "│"))
    return frags


def _overview_counts(label: str, counts: Sequence[Tuple[str, str, int]]) -> Fragments:
    frags: Fragments = [("class:muted", f"{label} - ")]
    for style, icon, n in counts:
        frags.append((style, f"{icon}{n} "))
    return frags


def _list_rows(items: SelectableList, rows: int, render_row: Callable[[object, bool], Fragments]) -> List[Fragments]:
    start, end = _visible_range(len(items), items.cursor, rows)
    lines: List[Fragments] = []
    for i in range(start, end):
        is_selected = i == items.cursor
        marker = ("class:marker", "➤ " if is_selected else "  ")
        line = [marker] + render_row(items.items[i], is_selected)
        if is_selected:
            line = [(f"{style} class:selected" if style else "class:selected", text) for style, text in line]
        lines.append(line)
    return lines


def build_issues_lines(state: AppState, width: int, height: int, now: Optional[dt.datetime] = None) -> List[Fragments]:
    issues = state.issues.items
    team = state.current_team
    title = "🎯 Linear Issues" + (f" - {team.name} ({team.key})" if team else "")
    by_state = {k: sum(1 for i in issues if i.state.type == k) for k in ("completed", "started", "unstarted", "canceled")}
    by_prio = {p: sum(1 for i in issues if (i.priority or 0) == p) for p in (4, 3, 2, 1)}
    assigned = sum(1 for i in issues if i.assignee is not None)
    lines: List[Fragments] = [
        [("class:title", title)],
        [("class:label", "Total Issues: "), ("class:value", str(len(issues))),
         ("", "  |  "), ("class:label", "Assigned: "), ("class:good", str(assigned)),
         ("", " | "), ("class:label", "Unassigned: "), ("class:bad", str(len(issues) - assigned))],
        _overview_counts("States", [
            ("class:good", "✓", by_state["completed"]), ("class:warn", "▶", by_state["started"]),
            ("class:muted", "○", by_state["unstarted"]), ("class:bad", "✗", by_state["canceled"])]),
        _overview_counts("Priority", [
            ("class:bad", "🔥", by_prio[4]), ("class:warn", "⚠", by_prio[3]),
            ("class:info", "●", by_prio[2]), ("class:muted", "▪", by_prio[1])]),
        [],
    ]
    if not issues:
        lines.append([("class:muted", "No issues found")])
        return lines

    id_w, prio_w, state_w, assignee_w, updated_w = 10, 3, 14, 18, 8
    title_w = max(10, width - 2 - (id_w + prio_w + state_w + assignee_w + updated_w) - 5 * 3)
    lines.append([("", "  "), ("class:header", " │ ".join([
        _pad_display("ID", id_w, "right"), _pad_display("P", prio_w, "center"), _pad_display("TITLE", title_w),
        _pad_display("STATE", state_w, "right"), _pad_display("ASSIGNEE", assignee_w),
        _pad_display("UPDATED", updated_w, "right")]))])

    def render_row(issue: Issue, _selected: bool) -> Fragments:
        assignee = issue.assignee.display_name if issue.assignee else "Unassigned"
        return [
            ("class:key", _pad_display(issue.identifier, id_w, "right")), ("", " │ "),
            ("", _pad_display(PRIORITY_ICONS.get(issue.priority or 0, "⚪"), prio_w, "center")), ("", " │ "),
            ("class:text", _pad_display(issue.title, title_w)), ("", " │ "),
            (ISSUE_STATE_STYLES.get(issue.state.type, "class:text"), _pad_display(issue.state.name, state_w, "right")),
            ("", " │ "),
            ("class:muted", _pad_display(assignee, assignee_w)), ("", " │ "),
            ("class:muted", _pad_display(format_duration_since(issue.updated_at, now), updated_w, "right")),
        ]

    rows = height - len(lines) - 2
    lines.extend(_list_rows(state.issues, rows, render_row))
    lines.append([])
    selected = state.issues.selected()
    if selected is not None:
        status = (f"Selected: {selected.identifier} - {selected.title} | Team: {selected.team.key} | "
                  f"Creator: {selected.creator.display_name}")
    else:
        status = "No issue selected"
    lines.append([("class:muted", f"{status} | Issues ({len(issues)}) | Press ? for help")])
    return lines


def build_issue_detail_lines(state: AppState, width: int, height: int) -> List[Fragments]:
    issue = state.issues.selected()
    if issue is None:
        return [[("class:title", "Issue Details")], [], [("class:muted", "No issue selected")]]
    state_style = ISSUE_STATE_STYLES.get(issue.state.type, "class:text")
    assignee = issue.assignee.display_name if issue.assignee else "Unassigned"
    lines: List[Fragments] = [
        [("class:key bold", f"{issue.identifier} - "), ("class:text bold", issue.title)],
        [("class:muted", "Priority: "), ("class:warn", format_priority(issue.priority)),
         ("", "  |  "), ("class:muted", "State: "), (state_style, issue.state.name)],
        [("class:muted", "Assignee: "), ("class:text", assignee),
         ("", "  |  "), ("class:muted", "Creator: "), ("class:text", issue.creator.display_name)],
        [("class:muted", "URL: "), ("class:info", issue.url)],
        [],
        [("class:title", "Description")],
    ]
    body = wrap_text(issue.description or "No description available", width - 2)
    room = max(0, height - len(lines) - 2)
    lines.extend([("class:text", " " + ln)] for ln in body[:room])
    lines.append([])
    lines.append([("class:muted", "Press 'd' to return to list view | Press 'v' to open in browser | Press ? for help")])
    return lines


def build_projects_lines(state: AppState, width: int, height: int) -> List[Fragments]:
    projects = state.projects.items
    by_status = {k: sum(1 for p in projects if p.status.type == k)
                 for k in ("completed", "started", "planned", "paused", "canceled")}
    with_leads = sum(1 for p in projects if p.lead is not None)
    lines: List[Fragments] = [
        [("class:title", "🚀 Linear Projects")],
        [("class:label", "Total Projects: "), ("class:value", str(len(projects))),
         ("", "  |  "), ("class:label", "With Leads: "), ("class:good", str(with_leads)),
         ("", " | "), ("class:label", "Without: "), ("class:bad", str(len(projects) - with_leads))],
        _overview_counts("Status", [
            ("class:good", "✓", by_status["completed"]), ("class:warn", "▶", by_status["started"]),
            ("class:info", "📋", by_status["planned"]), ("class:muted", "⏸", by_status["paused"]),
            ("class:bad", "✗", by_status["canceled"])]),
        [],
    ]
    if not projects:
        lines.append([("class:muted", "No projects found")])
        return lines
    status_w, lead_w = 12, 24
    name_w = max(10, width - 2 - status_w - lead_w - 2 * 3)
    lines.append([("", "  "), ("class:header", " │ ".join([
        _pad_display("NAME", name_w), _pad_display("STATUS", status_w, "right"), _pad_display("LEAD", lead_w)]))])

    def render_row(project: Project, _selected: bool) -> Fragments:
        lead = project.lead.display_name if project.lead else "No lead"
        return [
            ("class:text", _pad_display(project.name, name_w)), ("", " │ "),
            (PROJECT_STATE_STYLES.get(project.status.type, "class:text"), _pad_display(project.status.name, status_w, "right")),
            ("", " │ "),
            ("class:muted", _pad_display(lead, lead_w)),
        ]

    lines.extend(_list_rows(state.projects, height - len(lines) - 2, render_row))
    lines.append([])
    selected = state.projects.selected()
    if selected is not None:
        status = f"Selected: {selected.name} - {selected.status.name}"
    else:
        status = "No project selected"
    lines.append([("class:muted", f"{status} | Projects ({len(projects)}) | Press ? for help")])
    return lines


def build_teams_lines(state: AppState, width: int, height: int) -> List[Fragments]:
    teams = state.teams.items
    described = sum(1 for t in teams if t.description)
    lines: List[Fragments] = [
        [("class:title", "👥 Linear Teams")],
        [("class:label", "Total Teams: "), ("class:value", str(len(teams))),
         ("", "  |  "), ("class:label", "With Descriptions: "), ("class:good", str(described)),
         ("", " | "), ("class:label", "Without: "), ("class:bad", str(len(teams) - described))],
        [],
    ]
    if not teams:
        lines.append([("class:muted", "No teams found")])
        return lines
    key_w, name_w = 8, 24
    desc_w = max(10, width - 2 - key_w - name_w - 2 * 3 - 2)
    active_id = state.current_team.id if state.current_team else None
    lines.append([("", "  "), ("class:header", " │ ".join([
        _pad_display("KEY", key_w, "right"), _pad_display("NAME", name_w), _pad_display("DESCRIPTION", desc_w)]))])

    def render_row(team: Team, _selected: bool) -> Fragments:
        active = "● " if team.id == active_id else "  "
        return [
            ("class:key", _pad_display(team.key, key_w, "right")), ("", " │ "),
            ("class:text", _pad_display(team.name, name_w)), ("", " │ "),
            ("class:good", active),
            ("class:muted", _pad_display(team.description or "No description", desc_w)),
        ]

    lines.extend(_list_rows(state.teams, height - len(lines) - 2, render_row))
    lines.append([])
    selected = state.teams.selected()
    if selected is not None:
        status = f"Selected: {selected.key} - {selected.name} | Enter to activate"
    else:
        status = "No team selected"
    lines.append([("class:muted", f"{status} | Teams ({len(teams)}) | Press ? for help")])
    return lines


HELP_SECTIONS = [
    ("Navigation:", [("Tab/Shift+Tab", "Switch between views"), ("j/k, ↓/↑", "Navigate up/down")]),
    ("Actions:", [("r", "Refresh data"), ("Enter", "Activate selected team (in teams view)"),
                  ("v", "Open issue in browser (in issues view)"), ("d", "Toggle issue details view (in issues view)")]),
    ("Views:", [("1", "Issues view"), ("2", "Projects view"), ("3", "Teams view")]),
    ("Other:", [("?", "Show/hide this help"), ("q/Ctrl+C", "Quit application")]),
]


def build_help_lines() -> List[Fragments]:
    lines: List[Fragments] = [[("class:title", "Help")], []]
    for heading, entries in HELP_SECTIONS:
        lines.append([("class:label", heading)])
        for keys, text in entries:
            lines.append([("", "  "), ("class:key", _pad_display(keys, 14)), ("class:text", text)])
        lines.append([])
    return lines


def build_status_bar(state: AppState, width: int, viewer: Optional[User] = None,
                     now: Optional[dt.datetime] = None) -> Fragments:
    team = f" Team: {state.current_team.name} " if state.current_team else " No team selected "
    frags: Fragments = [("class:status.team", team), ("class:status", " | ")]
    if state.loading:
        frags.append(("class:status.message", "⟳ Loading… "))
        frags.append(("class:status", "| "))
    if viewer is not None:
        frags.append(("class:status", f"{viewer.display_name} | "))
    if state.last_refresh is not None:
        frags.append(("class:status", f"Updated {format_duration_since(state.last_refresh, now)} | "))
    frags.append(("class:status", "Press '?' for help | Press 'q' to quit"))
    if state.status_line:
        frags.append(("class:status.message", "  " + state.status_line))
    used = sum(_display_width(t) for _, t in frags)
    if used < width:
        frags.append(("class:status", " " * (width - used)))
    return frags


def build_frame(state: AppState, width: int, height: int, viewer: Optional[User] = None,
                now: Optional[dt.datetime] = None) -> Fragments:
    """Return exactly ``height`` lines of (style, text) fragments, each at most ``width`` cells."""
    width = max(20, width)
    height = max(5, height)
    body_height = height - 4
    if state.show_help:
        body = build_help_lines()
    elif state.current_view is View.ISSUES:
        if state.show_details:
            body = build_issue_detail_lines(state, width, body_height)
        else:
            body = build_issues_lines(state, width, body_height, now)
    elif state.current_view is View.PROJECTS:
        body = build_projects_lines(state, width, body_height)
    else:
        body = build_teams_lines(state, width, body_height)
    body = body[:body_height] + [[] for _ in range(body_height - len(body))]
    rule: Fragments = [("class:rule", "─" * width)]
    lines = [build_tabs(state, width), rule] + body + [rule, build_status_bar(state, width, viewer, now)]
    frags: Fragments = []
    for i, line in enumerate(lines):
        if i:
            frags.append(("", "\n"))
        frags.extend(_clip_line(line, width))
    return frags


# -----------------------------
# Terminal
# -----------------------------
class Terminal:
    """Alternate-screen, raw-mode terminal held for the lifetime of a session."""

    def __init__(self, style: Optional[Style] = None, output: Optional[Output] = None, inp: Optional[Input] = None):
        self.style = style
        self.output = output
        self.input = inp
        self._stack: Optional[contextlib.ExitStack] = None
        self._reader: Optional[KeyReader] = None

    def __enter__(self) -> "Terminal":
        if self.output is None:
            self.output = create_output()
        if self.input is None:
            self.input = create_input()
        stack = contextlib.ExitStack()
        stack.enter_context(self.input.raw_mode())
        stack.callback(self._restore)
        try:
            self.output.enter_alternate_screen()
            self.output.hide_cursor()
            self.output.flush()
        except BaseException:
            stack.close()
            raise
        self._stack = stack
        return self

    def _restore(self) -> None:
        if self._reader is not None:
            self._reader.close()
            self._reader = None
        out = self.output
        out.reset_attributes()
        out.quit_alternate_screen()
        out.show_cursor()
        out.flush()

    def __exit__(self, *exc) -> None:
        stack, self._stack = self._stack, None
        if stack is not None:
            stack.close()

    def key_reader(self) -> KeyReader:
        if self._reader is None:
            self._reader = KeyReader(self.input)
        return self._reader

    def size(self) -> Tuple[int, int]:
        sz = self.output.get_size()
        return sz.rows, sz.columns

    def draw(self, fragments: Fragments) -> None:
        out = self.output
        out.erase_screen()
        out.cursor_goto(0, 0)
        print_formatted_text(FormattedText(fragments), style=self.style, output=out, end="")
        out.flush()


# -----------------------------
# Session controller
# -----------------------------
class TuiApp:
    """Owns the session state and turns events into state changes and fetches."""

    def __init__(self, client: LinearClient, cfg: Optional[Config] = None, terminal=None,
                 events: Optional[EventHandler] = None, opener: Optional[Callable[[str], bool]] = None,
                 viewer: Optional[User] = None):
        self.cfg = cfg or Config()
        self.client = client
        self.state = AppState()
        self.terminal = terminal if terminal is not None else Terminal(style=build_style(self.cfg.theme))
        self.events = events if events is not None else EventHandler(self.cfg.tick_rate, self.cfg.refresh_interval)
        self.opener = opener or webbrowser.open
        self.viewer = viewer

    async def run(self) -> None:
        with self.terminal:
            self.events.start(self.terminal.key_reader())
            try:
                await self.load_initial_data()
                while True:
                    self.draw()
                    event = await self.events.next()
                    if not await self.handle_event(event):
                        break
            finally:
                self.events.close()
                await self.events.wait_closed()
        logger.info("Session ended")

    def draw(self) -> None:
        rows, cols = self.terminal.size()
        self.terminal.draw(build_frame(self.state, cols, rows, self.viewer))

    def _set_loading(self, loading: bool) -> None:
        self.state.loading = loading
        if loading:
            self.draw()

    async def _fetch(self, fn: Callable[..., R], *args) -> R:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    # -- dispatch --------------------------------------------------------
    async def handle_event(self, event: AppEvent) -> bool:
        """Apply one event; False ends the session."""
        if event.kind == 'quit':
            return False
        if event.kind == 'key':
            return await self.handle_key(event.key or "")
        if event.kind == 'refresh':
            logger.debug("Periodic refresh (%s)", self.state.current_view.value)
            await self._guarded(self.refresh_current_view)
        # ticks only trigger a redraw
        return True

    async def handle_key(self, key: str) -> bool:
        state = self.state
        if key in QUIT_KEYS:
            return False
        if key == '?':
            state.show_help = not state.show_help
            return True
        if state.show_help:
            return True
        if key == 'r':
            await self._guarded(self.refresh_current_view)
        elif key in VIEW_KEYS:
            state.current_view = VIEW_KEYS[key]
        elif key == 'tab':
            state.next_view()
        elif key == 's-tab':
            state.previous_view()
        else:
            await self.handle_view_input(key)
        return True

    async def handle_view_input(self, key: str) -> None:
        state = self.state
        view = state.current_view
        if view is View.ISSUES:
            lst = state.issues
        elif view is View.PROJECTS:
            lst = state.projects
        else:
            lst = state.teams
        if key in ('j', 'down'):
            lst.select_next()
        elif key in ('k', 'up'):
            lst.select_previous()
        elif view is View.ISSUES and key == 'v':
            self.open_selected_issue()
        elif view is View.ISSUES and key == 'd':
            state.show_details = not state.show_details
        elif view is View.TEAMS and key == 'enter':
            team = state.teams.selected()
            if team is not None:
                logger.info("Switching to team %s (%s)", team.key, team.id)
                await self._guarded(functools.partial(self.activate_team, team))

    async def activate_team(self, team: Team) -> None:
        await self.load_team_data(team)
        self.state.current_view = View.ISSUES

    def open_selected_issue(self) -> None:
        issue = self.state.issues.selected()
        if issue is None:
            self.state.status_line = "No issue selected"
            return
        try:
            opened = self.opener(issue.url)
        except (webbrowser.Error, OSError) as e:
            logger.exception("Failed to open %s", issue.url)
            self.state.status_line = f"Failed to open issue in browser: {e}"
            return
        if opened is False:
            self.state.status_line = f"Failed to open issue in browser: {issue.url}"
        else:
            self.state.status_line = f"Opened {issue.identifier} in browser"

    async def _guarded(self, action: Callable[[], "asyncio.Future"]) -> None:
        """Run a main-loop fetch; errors end the session unless configured to report."""
        try:
            await action()
        except LinearError as e:
            if self.cfg.refresh_errors != "report":
                raise
            logger.exception("Refresh failed")
            self.state.status_line = f"Refresh failed: {e}"
        else:
            self.state.status_line = ""

    # -- data ------------------------------------------------------------
    async def load_initial_data(self) -> None:
        self._set_loading(True)
        try:
            teams = await self._fetch(self.client.get_teams)
            self.state.teams.replace(teams)
            logger.info("Loaded %d teams", len(teams))
            team = self._initial_team()
            if team is not None:
                await self.load_team_data(team)
        finally:
            self._set_loading(False)

    def _initial_team(self) -> Optional[Team]:
        teams = self.state.teams.items
        if not teams:
            return None
        wanted = self.cfg.default_team_id
        for idx, team in enumerate(teams):
            if wanted and team.id == wanted:
                self.state.teams.select(idx)
                return team
        return teams[0]

    async def load_team_data(self, team: Optional[Team] = None) -> None:
        """Fetch issues and projects of ``team`` (default: the active one); apply both or neither.

        The team only becomes active once both fetches succeed.
        """
        team = team or self.state.current_team
        if team is None:
            return
        self._set_loading(True)
        try:
            results = await asyncio.gather(
                self._fetch(self.client.get_issues, team.id, self.cfg.issues_page_size),
                self._fetch(self.client.get_projects, team.id),
                return_exceptions=True,
            )
        finally:
            self._set_loading(False)
        for res in results:
            if isinstance(res, BaseException):
                raise res
        issues, projects = results
        self.state.current_team = team
        self.state.issues.replace(issues.nodes)
        self.state.projects.replace(projects)
        self.state.last_refresh = dt.datetime.now(dt.timezone.utc)
        logger.info("Loaded %d issues and %d projects for %s", len(issues.nodes), len(projects), team.key)

    async def refresh_current_view(self) -> None:
        if self.state.current_view is View.TEAMS:
            self._set_loading(True)
            try:
                teams = await self._fetch(self.client.get_teams)
            finally:
                self._set_loading(False)
            self.state.teams.replace(teams)
            self.state.last_refresh = dt.datetime.now(dt.timezone.utc)
        else:
            await self.load_team_data()


# -----------------------------
# Connection test
# -----------------------------
def run_connection_test(client: LinearClient, out=None) -> int:
    """Exercise the API without starting the dashboard; returns an exit status."""
    out = out or sys.stdout

    def say(msg: str = "") -> None:
        print(msg, file=out)

    say("Testing Linear API connection...\n")
    say("1. Testing authentication...")
    try:
        user = client.get_viewer()
    except LinearError as e:
        say(f"❌ Authentication failed: {e}")
        return 1
    say("✅ Authentication successful!")
    say(f"   User: {user.display_name} ({user.name})")
    if user.email:
        say(f"   Email: {user.email}")

    say("\n2. Testing teams fetch...")
    try:
        teams = client.get_teams()
    except LinearError as e:
        say(f"❌ Teams fetch failed: {e}")
        return 1
    say(f"✅ Teams fetch successful! Found {len(teams)} teams:")
    for team in teams[:3]:
        say(f"   - {team.name} ({team.key})")
        if team.description:
            say(f"     Description: {team.description}")

    say("\n3. Testing issues fetch...")
    try:
        issues = client.get_issues(None, 5)
    except LinearError as e:
        say(f"❌ Issues fetch failed: {e}")
        return 1
    say(f"✅ Issues fetch successful! Found {len(issues.nodes)} issues")
    say("\nAll API tests completed!")
    return 0


# -----------------------------
# CLI
# -----------------------------
def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="ltui", description="Terminal UI for Linear issues, projects and teams")
    ap.add_argument("-a", "--apikey", help="Linear Personal API Key (default: LINEAR_API_KEY)")
    ap.add_argument("-c", "--config", help="Path to YAML config (default: ~/.config/ltui/config.yaml)")
    ap.add_argument("-d", "--debug", action="store_true", help="Enable debug logging")
    ap.add_argument("--log-level", default="ERROR", help="File log level (DEBUG, INFO, WARNING, ERROR)")
    ap.add_argument("--test", action="store_true", help="Test API calls and exit without starting the UI")
    args = ap.parse_args(argv)

    try:
        cfg = load_config(args.config)
        style = build_style(cfg.theme)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    log_dir = os.path.dirname(os.path.abspath(args.config)) if args.config else DEFAULT_CONFIG_DIR
    setup_logging("DEBUG" if args.debug else args.log_level, os.path.join(log_dir, "ltui.log"))

    api_key = resolve_api_key(args.apikey, cfg)
    if not api_key:
        print("Error: Linear Personal API Key is required. Set LINEAR_API_KEY environment variable "
              "or provide --apikey", file=sys.stderr)
        return 1
    client = LinearClient(api_key)

    if args.test:
        return run_connection_test(client)

    try:
        viewer = client.get_viewer()
    except LinearError as e:
        logger.exception("Authentication failed")
        print(f"Error: Failed to authenticate with Linear API. Please check your Personal API Key. ({e})",
              file=sys.stderr)
        return 1

    app = TuiApp(client, cfg, terminal=Terminal(style=style), viewer=viewer)
    try:
        asyncio.run(app.run())
    except LinearError as e:
        logger.exception("Session aborted")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
