#!/usr/bin/env python3
"""
upkeep_controller.py — input handling and result reconciliation.

UpkeepController is everything the event loop does apart from talking to
curses: it turns keys into state changes, debounced triggers and background
tasks, and merges finished tasks back into the tab state. It is driven by
two calls per loop iteration, handle_key() for each key and pump() once.
"""

import time
import logging
from functools import partial

from upkeep_core import MIN_QUERY_LEN, ActionKind, GatewayError, _, ngettext
from upkeep_state import (
    ACTION_SEVERITY,
    TAB_ORDER,
    ActionIntent,
    ConfirmationGate,
    LoadState,
    LogBuffer,
    SelectionManager,
    Tab,
    TabState,
    TaskKind,
)
from upkeep_tasks import INFO_DEBOUNCE, SEARCH_DEBOUNCE, Debouncer, TaskDispatcher

logger = logging.getLogger(__name__)

# Tabs refreshed again once an action of the given kind has succeeded
FOLLOW_UP_REFRESHES = {
    ActionKind.UPDATE_ALL: (Tab.UPDATES, Tab.INSTALLED),
    ActionKind.UPDATE: (Tab.UPDATES, Tab.INSTALLED),
    ActionKind.REMOVE: (Tab.INSTALLED, Tab.ORPHANS),
    ActionKind.REMOVE_WITH_DEPS: (Tab.INSTALLED, Tab.ORPHANS),
    ActionKind.REINSTALL: (Tab.INSTALLED,),
    ActionKind.REBUILD: (Tab.INSTALLED,),
    ActionKind.INSTALL: (Tab.INSTALLED, Tab.SEARCH),
    ActionKind.RUN_FIX: (Tab.REBUILDS,),
    ActionKind.CLEAN_CACHE: (),
    ActionKind.EXPORT: (),
}

# Tabs loaded on first visit rather than at startup
LAZY_TABS = (Tab.INSTALLED, Tab.ORPHANS)


def _printable(key):
    return len(key) == 1 and key.isprintable()


class UpkeepController:

    def __init__(self, gateway, dispatcher=None, clock=time.monotonic):
        self.gateway = gateway
        self.clock = clock
        self.dispatcher = dispatcher or TaskDispatcher(clock=clock)
        self.search_debouncer = Debouncer(SEARCH_DEBOUNCE, clock=clock)
        self.info_debouncer = Debouncer(INFO_DEBOUNCE, clock=clock)

        self.tabs = {tab: TabState(tab) for tab in TAB_ORDER}
        self.selection = SelectionManager(self.tabs)
        self.gate = ConfirmationGate()
        self.log = LogBuffer()

        self.current_tab = Tab.UPDATES
        self.show_info = True
        self.log_visible = False
        self.log_scroll = 0
        self.log_page = 10
        self.running = True
        self.status_message = _("Ready")
        self.is_error_status = False
        self.running_action = None

    @property
    def state(self):
        return self.tabs[self.current_tab]

    def start(self):
        for tab in (Tab.UPDATES, Tab.INSTALLED, Tab.REBUILDS):
            self.refresh(tab)

    def quit(self):
        """Leave the loop unless an action is still running. Returns True when quitting."""
        if self.running_action is not None:
            self.set_status(_("Wait for {} to finish before quitting")
                            .format(self.running_action.kind.describe()), error=True)
            return False
        # Never leave with a destructive action half-confirmed.
        self.gate.cancel()
        self.running = False
        return True

    def set_status(self, msg, error=False):
        self.status_message = str(msg)
        self.is_error_status = error
        if error and not self.log_visible:
            self.log_visible = True
            self.log_scroll = 0

    def busy(self):
        return self.dispatcher.busy()

    def activity(self):
        """Labels of the tasks in flight, oldest first."""
        tasks = sorted(self.dispatcher.live_tasks(), key=lambda t: t.started_at)
        return ["{} {}".format(t.tab.label, t.kind.label) for t in tasks]

    # -------------------------
    # Task launching
    # -------------------------

    def _refresh_work(self, tab):
        return {
            Tab.UPDATES: self.gateway.updates,
            Tab.INSTALLED: self.gateway.installed,
            Tab.ORPHANS: self.gateway.orphans,
            Tab.REBUILDS: self.gateway.rebuild_checks,
        }[tab]

    def refresh(self, tab):
        if tab is Tab.SEARCH:
            query = self.tabs[Tab.SEARCH].query
            if len(query) >= MIN_QUERY_LEN:
                self.search_debouncer.cancel(Tab.SEARCH, TaskKind.SEARCH)
                self._search_now(query)
            return
        self.tabs[tab].begin_loading()
        self.dispatcher.spawn(tab, TaskKind.REFRESH, self._refresh_work(tab))

    def _search_now(self, query):
        self.tabs[Tab.SEARCH].begin_loading()
        self.dispatcher.spawn(Tab.SEARCH, TaskKind.SEARCH, partial(self.gateway.search, query))

    def _query_changed(self):
        state = self.tabs[Tab.SEARCH]
        if len(state.query) >= MIN_QUERY_LEN:
            self.search_debouncer.register(Tab.SEARCH, TaskKind.SEARCH, state.query)
            return
        # Too short to search: drop everything that is pending or in flight.
        self.search_debouncer.cancel(Tab.SEARCH, TaskKind.SEARCH)
        self.dispatcher.cancel_stale(Tab.SEARCH, TaskKind.SEARCH)
        self._drop_info(Tab.SEARCH)
        state.clear()
        self.selection.prune(Tab.SEARCH, ())

    def _arm_info(self):
        tab = self.current_tab
        if not self.show_info or tab is Tab.REBUILDS:
            return
        record = self.state.current()
        if record is None:
            self._drop_info(tab)
            return
        state = self.state
        if state.info is None or state.info.name != record.name:
            # The old error belongs to another row
            state.info_error = None
            state.info_loading = True
        fallback = record if tab is Tab.SEARCH else None
        self.info_debouncer.register(tab, TaskKind.INFO, (record.name, fallback))

    def _drop_info(self, tab):
        self.info_debouncer.cancel(tab, TaskKind.INFO)
        self.dispatcher.cancel_stale(tab, TaskKind.INFO)
        state = self.tabs[tab]
        state.info = None
        state.info_loading = False
        state.info_error = None

    def _fetch_info(self, tab, name, fallback):
        self.tabs[tab].info_loading = True
        self.dispatcher.spawn(tab, TaskKind.INFO, partial(self.gateway.info, name, fallback))

    def pump(self, now=None):
        """Fire due debounce timers and merge finished tasks. Returns True if anything happened."""
        now = self.clock() if now is None else now
        changed = False
        for trigger in self.search_debouncer.tick(now):
            self._search_now(trigger.payload)
            changed = True
        for trigger in self.info_debouncer.tick(now):
            name, fallback = trigger.payload
            self._fetch_info(trigger.tab, name, fallback)
            changed = True
        for completion in self.dispatcher.poll():
            self.merge(completion)
            changed = True
        return changed

    # -------------------------
    # Result reconciliation
    # -------------------------

    def merge(self, completion):
        kind = completion.kind
        if kind is TaskKind.REFRESH or kind is TaskKind.SEARCH:
            self._merge_list(completion.tab, completion.outcome)
        elif kind is TaskKind.INFO:
            self._merge_info(completion.tab, completion.outcome)
        elif kind is TaskKind.ACTION:
            self._merge_action(completion.tab, completion.outcome)

    def _merge_list(self, tab, outcome):
        state = self.tabs[tab]
        if not outcome.ok:
            state.merge_failed(outcome.message)
            self.log.append(_("{} failed: {}").format(tab.label, outcome.message))
            self.set_status(_("{} failed: {}").format(tab.label, outcome.message), error=True)
            return

        state.merge_loaded(outcome.value)
        self.selection.prune(tab, state.keys())
        if tab is Tab.SEARCH:
            count = len(state.items)
            self.set_status(ngettext("Found {} package matching '{}'",
                                     "Found {} packages matching '{}'", count).format(count, state.query))
        if tab is self.current_tab:
            self._arm_info()

    def _merge_info(self, tab, outcome):
        state = self.tabs[tab]
        state.info_loading = False
        if outcome.ok:
            state.info = outcome.value
            state.info_error = None
        else:
            state.info_error = outcome.message

    def _merge_action(self, tab, outcome):
        intent = self.running_action
        self.running_action = None
        state = self.tabs[tab]

        if not outcome.ok:
            # Targets stay checked so the action can be retried as is.
            state.error = outcome.message
            if state.load_state is LoadState.LOADED:
                state.load_state = LoadState.LOADED_WITH_ERROR
            self.log.append(_("{} failed: {}").format(intent.kind.describe(), outcome.message))
            self.set_status(_("{} failed: {}").format(intent.kind.describe(), outcome.message), error=True)
            return

        state.error = None
        self.selection.discard(tab, intent.targets)
        self.log.append(_("{} completed successfully.").format(intent.kind.describe()))
        self.set_status(_("{} completed successfully").format(intent.kind.describe()))
        for follow_up in FOLLOW_UP_REFRESHES[intent.kind]:
            self.refresh(follow_up)

    # -------------------------
    # Actions & confirmation
    # -------------------------

    def _targets_for(self, kind):
        tab = self.current_tab
        state = self.state
        if kind in (ActionKind.UPDATE_ALL, ActionKind.CLEAN_CACHE, ActionKind.EXPORT):
            return ()
        if kind is ActionKind.RUN_FIX:
            current = state.current()
            return (current.name,) if current is not None else None

        records = self.selection.resolve(tab)
        if not records:
            current = state.current()
            records = [current] if current is not None else []
        if tab is Tab.SEARCH:
            records = [r for r in records if not r.installed]
        return tuple(r.name for r in records) or None

    def request_action(self, kind):
        if self.running_action is not None:
            logger.debug("Refusing %s while %s is running", kind.value, self.running_action.kind.value)
            self.set_status(_("Another operation is still running"), error=True)
            return False

        targets = self._targets_for(kind)
        if targets is None:
            return False

        rebuild = None
        if kind is ActionKind.RUN_FIX:
            rebuild = self.state.current().rebuild_command
        try:
            command = self.gateway.action_command(kind, targets, rebuild=rebuild)
        except GatewayError as e:
            self.set_status(str(e), error=True)
            return False

        intent = ActionIntent(
            kind=kind,
            tab=self.current_tab,
            targets=targets,
            command=tuple(command),
            preview=self.gateway.preview(command) if command else "",
        )
        if kind is ActionKind.EXPORT:
            self._start_action(intent)
            return True
        return self.gate.open(intent, ACTION_SEVERITY[kind], self.clock())

    def _start_action(self, intent):
        logger.debug("Starting %s on %s: %s", intent.kind.value, intent.tab.value, intent.preview)
        self.running_action = intent
        self.log.append(_("--- {} ---").format(intent.kind.describe()))
        self.set_status(_("Running: {}").format(intent.kind.describe()))
        self.dispatcher.spawn(intent.tab, TaskKind.ACTION, partial(self.gateway.run_action, intent, self.log.append))

    def _handle_gate_key(self, key):
        intent = self.gate.handle_key(key)
        if intent is not None:
            self._start_action(intent)
        elif not self.gate.awaiting:
            self.set_status(_("Cancelled"))

    # -------------------------
    # Navigation
    # -------------------------

    def switch_tab(self, delta):
        old = self.state
        old.filter_mode = False
        old.filter_text = ""
        old.clamp_cursor()
        self.info_debouncer.cancel(old.tab, TaskKind.INFO)

        index = TAB_ORDER.index(self.current_tab)
        self.current_tab = TAB_ORDER[(index + delta) % len(TAB_ORDER)]
        if self.current_tab in LAZY_TABS and self.state.load_state is LoadState.EMPTY:
            self.refresh(self.current_tab)
        self._arm_info()

    def move_cursor(self, delta):
        if self.state.move_cursor(delta):
            self._arm_info()

    def toggle_current(self):
        current = self.state.current()
        if current is not None:
            self.selection.toggle(self.current_tab, current.key)

    def toggle_info(self):
        self.show_info = not self.show_info
        if self.show_info:
            self._arm_info()
        else:
            for tab in TAB_ORDER:
                self._drop_info(tab)

    def toggle_log(self):
        self.log_visible = not self.log_visible
        self.log_scroll = 0

    def scroll_log(self, delta):
        max_scroll = max(0, len(self.log) - self.log_page)
        self.log_scroll = min(max_scroll, max(0, self.log_scroll + delta))

    # -------------------------
    # Keys
    # -------------------------

    def handle_key(self, key):
        if self.gate.awaiting:
            self._handle_gate_key(key)
            return

        if key == "pgup":
            self.scroll_log(self.log_page)
            return
        if key == "pgdn":
            self.scroll_log(-self.log_page)
            return

        if self.is_error_status and key not in ("q", "esc"):
            self.set_status(_("Ready"))

        state = self.state
        if state.filter_mode:
            self._handle_filter_key(state, key)
        elif self.current_tab is Tab.SEARCH:
            self._handle_search_key(state, key)
        else:
            self._handle_normal_key(key)

    def _handle_filter_key(self, state, key):
        if key == "esc":
            state.filter_mode = False
            state.filter_text = ""
            state.clamp_cursor()
        elif key == "F":
            state.filter_mode = False
        elif key == "down":
            self.move_cursor(1)
        elif key == "up":
            self.move_cursor(-1)
        elif key == " ":
            self.toggle_current()
        elif key == "backspace":
            state.filter_text = state.filter_text[:-1]
            state.clamp_cursor()
        elif _printable(key):
            state.filter_text += key
            state.clamp_cursor()

    def _handle_search_key(self, state, key):
        if key == "esc":
            if state.query:
                state.query = ""
                self._query_changed()
            else:
                self.quit()
        elif key == "tab":
            self.switch_tab(1)
        elif key == "backtab":
            self.switch_tab(-1)
        elif key == "down":
            self.move_cursor(1)
        elif key == "up":
            self.move_cursor(-1)
        elif key == " ":
            self.toggle_current()
        elif key == "enter":
            self.request_action(ActionKind.INSTALL)
        elif key == "?":
            self.toggle_info()
        elif key == "backspace":
            state.query = state.query[:-1]
            self._query_changed()
        elif _printable(key):
            state.query += key
            self._query_changed()

    def _handle_normal_key(self, key):
        tab = self.current_tab
        if key in ("q", "esc"):
            self.quit()
        elif key == "tab":
            self.switch_tab(1)
        elif key == "backtab":
            self.switch_tab(-1)
        elif key in ("j", "down"):
            self.move_cursor(1)
        elif key in ("k", "up"):
            self.move_cursor(-1)
        elif key == " ":
            self.toggle_current()
        elif key == "a":
            self.selection.select_all(tab)
        elif key == "n":
            self.selection.select_none(tab)
        elif key == "r":
            self.refresh(tab)
        elif key == "f" and self.state.filterable:
            self.state.filter_mode = True
        elif key == "?":
            self.toggle_info()
        elif key == "l":
            self.toggle_log()
        elif key == "enter":
            if tab is Tab.UPDATES:
                self.request_action(ActionKind.UPDATE_ALL)
            elif tab is Tab.REBUILDS:
                self.request_action(ActionKind.RUN_FIX)
        elif key == "u" and tab is Tab.UPDATES:
            self.request_action(ActionKind.UPDATE)
        elif key == "c" and tab is Tab.UPDATES:
            self.request_action(ActionKind.CLEAN_CACHE)
        elif key == "d" and tab in (Tab.INSTALLED, Tab.ORPHANS):
            self.request_action(ActionKind.REMOVE)
        elif key == "D" and tab in (Tab.INSTALLED, Tab.ORPHANS):
            self.request_action(ActionKind.REMOVE_WITH_DEPS)
        elif key == "i" and tab is Tab.INSTALLED:
            self.request_action(ActionKind.REINSTALL)
        elif key == "I" and tab is Tab.INSTALLED:
            self.request_action(ActionKind.REBUILD)
        elif key == "e" and tab is Tab.INSTALLED:
            self.request_action(ActionKind.EXPORT)
