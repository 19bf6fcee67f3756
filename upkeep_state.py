#!/usr/bin/env python3
"""
upkeep_state.py — the state tree owned by the event loop: per-tab view
state, checked rows, the confirmation gate and the output log.
"""

import enum
import threading
from dataclasses import dataclass

from upkeep_core import ActionKind, _


class Tab(enum.Enum):
    UPDATES = "updates"
    INSTALLED = "installed"
    ORPHANS = "orphans"
    REBUILDS = "rebuilds"
    SEARCH = "search"

    @property
    def label(self):
        return {
            Tab.UPDATES: _("Updates"),
            Tab.INSTALLED: _("Installed"),
            Tab.ORPHANS: _("Orphans"),
            Tab.REBUILDS: _("Rebuilds"),
            Tab.SEARCH: _("Search"),
        }[self]


TAB_ORDER = (Tab.UPDATES, Tab.INSTALLED, Tab.ORPHANS, Tab.REBUILDS, Tab.SEARCH)
FILTERABLE_TABS = (Tab.UPDATES, Tab.INSTALLED)
SELECTABLE_TABS = (Tab.UPDATES, Tab.INSTALLED, Tab.ORPHANS, Tab.SEARCH)


class TaskKind(enum.Enum):
    SEARCH = "search"
    INFO = "info"
    REFRESH = "refresh"
    ACTION = "action"

    @property
    def label(self):
        return {
            TaskKind.SEARCH: _("search"),
            TaskKind.INFO: _("details"),
            TaskKind.REFRESH: _("refresh"),
            TaskKind.ACTION: _("action"),
        }[self]


class LoadState(enum.Enum):
    EMPTY = "empty"
    LOADING = "loading"
    LOADED = "loaded"
    LOADED_WITH_ERROR = "loaded-with-error"


class TabState:
    """Mutable view state of one tab. Items are replaced, never edited."""

    def __init__(self, tab):
        self.tab = tab
        self.items = ()
        self.load_state = LoadState.EMPTY
        self.error = None
        self.filter_text = ""
        self.filter_mode = False
        self.cursor = 0
        self.query = ""
        self.info = None
        self.info_loading = False
        self.info_error = None

    @property
    def filterable(self):
        return self.tab in FILTERABLE_TABS

    def visible(self):
        if not self.filter_text or not self.filterable:
            return list(self.items)
        needle = self.filter_text.lower()
        return [item for item in self.items if needle in item.name.lower()]

    def current(self):
        rows = self.visible()
        if 0 <= self.cursor < len(rows):
            return rows[self.cursor]
        return None

    def clamp_cursor(self):
        count = len(self.visible())
        self.cursor = min(max(self.cursor, 0), max(count - 1, 0))

    def move_cursor(self, delta):
        """Move within the visible rows. Returns True when the cursor moved."""
        count = len(self.visible())
        if count == 0:
            self.cursor = 0
            return False
        new = min(max(self.cursor + delta, 0), count - 1)
        moved = new != self.cursor
        self.cursor = new
        return moved

    def keys(self):
        return [item.key for item in self.items]

    def begin_loading(self):
        self.load_state = LoadState.LOADING

    def merge_loaded(self, items):
        self.items = tuple(items)
        self.load_state = LoadState.LOADED
        self.error = None
        self.clamp_cursor()

    def merge_failed(self, message):
        # Previous items stay visible underneath the error banner.
        self.load_state = LoadState.LOADED_WITH_ERROR
        self.error = message

    def clear(self):
        self.items = ()
        self.load_state = LoadState.EMPTY
        self.error = None
        self.cursor = 0
        self.info = None
        self.info_loading = False
        self.info_error = None


class SelectionManager:
    """
    Checked rows per tab, keyed by package name so that a refresh that
    reorders the list cannot move the checks to other packages.
    """

    def __init__(self, tabs):
        self._tabs = tabs
        self._selected = {tab: set() for tab in SELECTABLE_TABS}

    def selected(self, tab):
        return frozenset(self._selected.get(tab, ()))

    def is_selected(self, tab, key):
        return key in self._selected.get(tab, ())

    def count(self, tab):
        return len(self._selected.get(tab, ()))

    def toggle(self, tab, key):
        chosen = self._selected.get(tab)
        if chosen is None or key not in self._tabs[tab].keys():
            return False
        if key in chosen:
            chosen.remove(key)
        else:
            chosen.add(key)
        return True

    def select_all(self, tab):
        chosen = self._selected.get(tab)
        if chosen is None:
            return
        for item in self._tabs[tab].visible():
            if tab is Tab.SEARCH and item.installed:
                continue
            chosen.add(item.key)

    def select_none(self, tab):
        chosen = self._selected.get(tab)
        if chosen is None:
            return
        for item in self._tabs[tab].visible():
            chosen.discard(item.key)

    def discard(self, tab, keys):
        chosen = self._selected.get(tab)
        if chosen is not None:
            chosen.difference_update(keys)

    def resolve(self, tab):
        """The checked records of a tab, in sequence order."""
        chosen = self._selected.get(tab, ())
        return [item for item in self._tabs[tab].items if item.key in chosen]

    def prune(self, tab, current_ids):
        chosen = self._selected.get(tab)
        if chosen is None:
            return set()
        stale = chosen - set(current_ids)
        chosen -= stale
        return stale


class Severity(enum.Enum):
    DANGER = "danger"
    WARNING = "warning"


ACTION_SEVERITY = {
    ActionKind.REMOVE: Severity.DANGER,
    ActionKind.REMOVE_WITH_DEPS: Severity.DANGER,
    ActionKind.UPDATE_ALL: Severity.WARNING,
    ActionKind.UPDATE: Severity.WARNING,
    ActionKind.REINSTALL: Severity.WARNING,
    ActionKind.REBUILD: Severity.WARNING,
    ActionKind.INSTALL: Severity.WARNING,
    ActionKind.RUN_FIX: Severity.WARNING,
    ActionKind.CLEAN_CACHE: Severity.WARNING,
}


@dataclass(frozen=True)
class ActionIntent:
    kind: ActionKind
    tab: Tab
    targets: tuple
    command: tuple
    preview: str


@dataclass(frozen=True)
class PendingConfirmation:
    intent: ActionIntent
    style: Severity
    created_at: float


YES_KEYS = frozenset(("y", "Y", "enter"))
NO_KEYS = frozenset(("n", "N", "esc"))


class ConfirmationGate:
    """
    Idle, or awaiting a yes/no on exactly one frozen ActionIntent. While
    awaiting, keys other than yes/no are ignored.
    """

    def __init__(self):
        self.pending = None

    @property
    def awaiting(self):
        return self.pending is not None

    def open(self, intent, style, now):
        if self.pending is not None:
            return False
        self.pending = PendingConfirmation(intent, style, now)
        return True

    def handle_key(self, key):
        """Returns the intent when confirmed; None when cancelled or ignored."""
        if self.pending is None:
            return None
        if key in YES_KEYS:
            intent = self.pending.intent
            self.pending = None
            return intent
        if key in NO_KEYS:
            self.pending = None
        return None

    def cancel(self):
        self.pending = None


class LogBuffer:
    MAX_LINES = 2000

    def __init__(self):
        self.lock = threading.Lock()
        self._lines = []

    def append(self, text):
        if text is None:
            return
        with self.lock:
            self._lines.extend(str(text).splitlines() or [""])
            if len(self._lines) > self.MAX_LINES:
                self._lines = self._lines[-self.MAX_LINES:]

    def lines(self):
        with self.lock:
            return list(self._lines)

    def __len__(self):
        with self.lock:
            return len(self._lines)
