import subprocess
from typing import Dict, List

import pytest

from upkeep_controller import UpkeepController
from upkeep_core import CommandRunner, GatewayError, NonZeroExit, PackageRecord, ProcessSpawnFailed
from upkeep_tasks import TaskDispatcher


class FakeClock:
    def __init__(self, t: float = 0.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


class FakeRunner(CommandRunner):
    """CommandRunner whose commands are answered from a table instead of a shell."""

    def __init__(self, responses=None, stream=None):
        super().__init__(["sudo", "-n"], timeout=5)
        self.responses: Dict[tuple, tuple] = dict(responses or {})
        self.stream = stream or {}
        self.calls: List[List[str]] = []
        self.detached: List[bool] = []

    def run_sync(self, cmd_list, timeout=None):
        self.calls.append(list(cmd_list))
        key = tuple(cmd_list)
        if key not in self.responses:
            raise ProcessSpawnFailed("no such command: {}".format(cmd_list[0]))
        code, out, *rest = self.responses[key]
        return subprocess.CompletedProcess(list(cmd_list), code, out, rest[0] if rest else "")

    def run_streaming(self, cmd_list, on_line, detach=False):
        self.calls.append(list(cmd_list))
        self.detached.append(detach)
        code, lines = self.stream.get(tuple(cmd_list), (0, []))
        for line in lines:
            on_line(line)
        return code


class FakeAur:
    def __init__(self, info=None, search=None, error=None):
        self._info = info or {}
        self._search = search or []
        self.error = error
        self.info_calls = []

    def info(self, names):
        names = list(names)
        self.info_calls.append(names)
        if self.error:
            raise self.error
        return {n: self._info[n] for n in names if n in self._info}

    def search(self, query):
        if self.error:
            raise self.error
        return list(self._search)


class FakeGateway:
    """Stands in for CommandGateway in controller tests. Values or exceptions per call."""

    def __init__(self):
        self.results = {
            "updates": [],
            "installed": [],
            "orphans": [],
            "rebuild_checks": [],
        }
        self.search_results = {}
        self.info_results = {}
        self.search_calls = []
        self.info_calls = []
        self.actions = []
        self.action_error = None

    def _answer(self, name):
        value = self.results[name]
        if isinstance(value, Exception):
            raise value
        return list(value)

    def updates(self):
        return self._answer("updates")

    def installed(self):
        return self._answer("installed")

    def orphans(self):
        return self._answer("orphans")

    def rebuild_checks(self):
        return self._answer("rebuild_checks")

    def search(self, query):
        self.search_calls.append(query)
        return list(self.search_results.get(query, []))

    def info(self, name, fallback=None):
        self.info_calls.append(name)
        if name in self.info_results:
            return self.info_results[name]
        if fallback is not None:
            return fallback
        raise GatewayError("no info for {}".format(name))

    def action_command(self, kind, targets=(), rebuild=None):
        if rebuild is not None:
            return ["sh", "-c", rebuild]
        return ["yay", kind.value] + list(targets)

    @staticmethod
    def preview(command):
        return " ".join(command)

    def run_action(self, intent, on_line):
        self.actions.append(intent)
        on_line("running " + intent.preview)
        if self.action_error is not None:
            raise self.action_error
        return 0


def pkg(name, version="1.0-1", **kw):
    return PackageRecord(name=name, version=version, **kw)


class Harness:
    """A controller whose worker threads are started by hand."""

    def __init__(self):
        self.clock = FakeClock()
        self.workers = []
        self.gateway = FakeGateway()
        self.dispatcher = TaskDispatcher(start_worker=self.workers.append, clock=self.clock)
        self.controller = UpkeepController(self.gateway, dispatcher=self.dispatcher, clock=self.clock)

    def run_all(self):
        """Run every worker not yet run, in start order, then merge."""
        while self.workers:
            self.workers.pop(0)()
        self.controller.pump(self.clock.t)

    def keys(self, *names):
        for name in names:
            self.controller.handle_key(name)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def harness():
    return Harness()


@pytest.fixture
def failing_action():
    return NonZeroExit(["yay", "-R"], 1, "error: target not found: foo\n")
