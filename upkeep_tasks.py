#!/usr/bin/env python3
"""
upkeep_tasks.py — background task coordination for the upkeep TUI.

Debounce timers and task generation tokens are the same mechanism: a table
of keyed slots where issuing a new entry for a key supersedes whatever was
live for it. Only the event loop thread touches these tables; worker threads
talk back exclusively through the dispatcher's completion queue.
"""

import time
import queue
import logging
import threading
from collections import namedtuple
from dataclasses import dataclass
from typing import Any, Optional

from upkeep_core import GatewayError

logger = logging.getLogger(__name__)

# Seconds of quiet before a search query is sent
SEARCH_DEBOUNCE = 0.35
# Seconds of quiet after cursor movement before the info pane is fetched
INFO_DEBOUNCE = 0.1


Task = namedtuple("Task", "tab kind token started_at")
Completion = namedtuple("Completion", "token kind tab outcome")
Trigger = namedtuple("Trigger", "tab kind payload")


class SupersedeTable:
    """
    Keyed slots holding at most one live entry each. issue() mints a new
    token for the key and replaces the live entry; older tokens for the same
    key stop being current immediately.
    """

    def __init__(self):
        self._counters = {}
        self._live = {}

    def issue(self, key, value=None):
        token = self._counters.get(key, 0) + 1
        self._counters[key] = token
        self._live[key] = (token, value)
        return token

    def is_current(self, key, token):
        entry = self._live.get(key)
        return entry is not None and entry[0] == token

    def retire(self, key, token):
        """Remove the live entry for key if token is still the current one."""
        if not self.is_current(key, token):
            return False
        del self._live[key]
        return True

    def invalidate(self, key):
        self._live.pop(key, None)

    def live(self):
        return [(key, token, value) for key, (token, value) in list(self._live.items())]

    def __contains__(self, key):
        return key in self._live

    def __len__(self):
        return len(self._live)


@dataclass(frozen=True)
class TaskOutcome:
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self):
        return self.error is None

    @property
    def message(self):
        return str(self.error) if self.error is not None else ""


def _start_daemon_thread(fn):
    # Daemon so that quitting never waits on a slow pacman or network call.
    threading.Thread(target=fn, daemon=True).start()


class TaskDispatcher:
    """
    Owns every in-flight background operation, keyed by (tab, kind).

    spawn() runs work on a worker thread and returns its generation token.
    poll() drains finished tasks and returns only those whose token is still
    the live one for their key; superseded results, successes and failures
    alike, are dropped there.
    """

    def __init__(self, start_worker=None, clock=time.monotonic):
        self._tokens = SupersedeTable()
        self._done = queue.Queue()
        self._start_worker = start_worker or _start_daemon_thread
        self._clock = clock

    def spawn(self, tab, kind, work):
        key = (tab, kind)
        token = self._tokens.issue(key, self._clock())
        done = self._done

        def run():
            try:
                outcome = TaskOutcome(value=work())
            except GatewayError as e:
                outcome = TaskOutcome(error=e)
            except Exception as e:
                logger.exception("%s task for %s crashed", kind, tab)
                outcome = TaskOutcome(error=e)
            done.put(Completion(token, kind, tab, outcome))

        self._start_worker(run)
        return token

    def poll(self):
        ready = []
        while True:
            try:
                item = self._done.get_nowait()
            except queue.Empty:
                break
            if self._tokens.retire((item.tab, item.kind), item.token):
                ready.append(item)
            else:
                logger.debug("Dropping stale %s result #%d for %s", item.kind, item.token, item.tab)
        return ready

    def cancel_stale(self, tab, kind):
        self._tokens.invalidate((tab, kind))

    def is_live(self, tab, kind):
        return (tab, kind) in self._tokens

    def live_tasks(self):
        return [Task(key[0], key[1], token, started) for key, token, started in self._tokens.live()]

    def busy(self):
        return len(self._tokens) > 0


class Debouncer:
    """
    Coalesces bursts of register() calls per (tab, kind) into one Trigger,
    released by tick() once the last registration's deadline has passed.
    """

    def __init__(self, delay, clock=time.monotonic):
        self.delay = delay
        self._timers = SupersedeTable()
        self._clock = clock

    def register(self, tab, kind, payload, delay=None, now=None):
        now = self._clock() if now is None else now
        deadline = now + (self.delay if delay is None else delay)
        self._timers.issue((tab, kind), (deadline, payload))

    def tick(self, now=None):
        now = self._clock() if now is None else now
        fired = []
        for key, token, (deadline, payload) in self._timers.live():
            if deadline <= now and self._timers.retire(key, token):
                fired.append(Trigger(key[0], key[1], payload))
        return fired

    def cancel(self, tab, kind):
        self._timers.invalidate((tab, kind))

    def pending(self, tab, kind):
        return (tab, kind) in self._timers
