import pytest

from conftest import Harness, pkg
from upkeep_core import ActionKind, GatewayError, RebuildCheckResult, RebuildStatus
from upkeep_state import LoadState, Severity, Tab, TaskKind


def _load(h, tab, items):
    h.gateway.results[{
        Tab.UPDATES: "updates",
        Tab.INSTALLED: "installed",
        Tab.ORPHANS: "orphans",
        Tab.REBUILDS: "rebuild_checks",
    }[tab]] = items
    h.controller.refresh(tab)
    h.run_all()


def test_refresh_goes_loading_then_loaded(harness):
    h = harness
    h.gateway.results["updates"] = [pkg("foo", new_version="2"), pkg("bar", new_version="3")]
    h.controller.refresh(Tab.UPDATES)
    state = h.controller.tabs[Tab.UPDATES]
    assert state.load_state is LoadState.LOADING
    assert len(h.workers) == 1

    h.run_all()
    assert state.load_state is LoadState.LOADED
    assert [r.name for r in state.items] == ["foo", "bar"]


def test_refresh_with_nothing_to_update(harness):
    _load(harness, Tab.UPDATES, [])
    state = harness.controller.tabs[Tab.UPDATES]
    assert state.load_state is LoadState.LOADED
    assert state.items == ()
    assert state.error is None


def test_failed_refresh_keeps_previous_list(harness):
    h = harness
    _load(h, Tab.INSTALLED, [pkg("foo"), pkg("bar")])
    h.gateway.results["installed"] = GatewayError("pacman: unable to lock database")
    h.controller.refresh(Tab.INSTALLED)
    h.run_all()

    state = h.controller.tabs[Tab.INSTALLED]
    assert state.load_state is LoadState.LOADED_WITH_ERROR
    assert state.error == "pacman: unable to lock database"
    assert [r.name for r in state.items] == ["foo", "bar"]
    assert h.controller.is_error_status
    assert h.controller.log_visible


def test_start_loads_eager_tabs_only(harness):
    h = harness
    h.controller.start()
    assert h.controller.tabs[Tab.UPDATES].load_state is LoadState.LOADING
    assert h.controller.tabs[Tab.INSTALLED].load_state is LoadState.LOADING
    assert h.controller.tabs[Tab.REBUILDS].load_state is LoadState.LOADING
    assert h.controller.tabs[Tab.ORPHANS].load_state is LoadState.EMPTY
    assert len(h.workers) == 3


def test_orphans_load_on_first_visit(harness):
    h = harness
    h.keys("tab")
    assert h.controller.current_tab is Tab.INSTALLED
    h.run_all()
    h.keys("tab")
    assert h.controller.current_tab is Tab.ORPHANS
    assert h.controller.tabs[Tab.ORPHANS].load_state is LoadState.LOADING


def test_refresh_prunes_selection(harness):
    h = harness
    h.controller.current_tab = Tab.INSTALLED
    _load(h, Tab.INSTALLED, [pkg("foo"), pkg("bar")])
    h.keys(" ", "j", " ")
    assert h.controller.selection.selected(Tab.INSTALLED) == frozenset({"foo", "bar"})

    _load(h, Tab.INSTALLED, [pkg("bar"), pkg("baz")])
    assert h.controller.selection.selected(Tab.INSTALLED) == frozenset({"bar"})


def test_remove_end_to_end(harness):
    h = harness
    ctl = h.controller
    ctl.current_tab = Tab.INSTALLED
    _load(h, Tab.INSTALLED, [pkg("foo"), pkg("bar"), pkg("baz")])

    h.keys(" ", "j", " ", "d")
    assert ctl.gate.awaiting
    assert ctl.gate.pending.style is Severity.DANGER
    assert ctl.gate.pending.intent.targets == ("foo", "bar")

    h.keys("n")
    assert not ctl.gate.awaiting
    assert not h.dispatcher.is_live(Tab.INSTALLED, TaskKind.ACTION)
    assert ctl.selection.selected(Tab.INSTALLED) == frozenset({"foo", "bar"})

    h.keys("d")
    # Changing the selection now must not change what gets removed.
    ctl.selection.toggle(Tab.INSTALLED, "baz")
    h.keys("y")
    assert h.dispatcher.is_live(Tab.INSTALLED, TaskKind.ACTION)

    h.workers.pop(0)()
    ctl.pump(h.clock.t)
    (intent,) = h.gateway.actions
    assert intent.kind is ActionKind.REMOVE
    assert intent.targets == ("foo", "bar")
    assert ctl.selection.selected(Tab.INSTALLED) == frozenset({"baz"})
    assert ctl.running_action is None
    assert "running yay remove foo bar" in ctl.log.lines()

    # Follow-up refreshes for the lists the removal touched.
    assert h.dispatcher.is_live(Tab.INSTALLED, TaskKind.REFRESH)
    assert h.dispatcher.is_live(Tab.ORPHANS, TaskKind.REFRESH)


def test_gate_swallows_other_keys(harness):
    h = harness
    ctl = h.controller
    ctl.current_tab = Tab.INSTALLED
    _load(h, Tab.INSTALLED, [pkg("foo"), pkg("bar")])
    h.keys("d")
    before = len(h.workers)
    h.keys("j", " ", "a", "q", "tab", "r")
    assert ctl.gate.awaiting
    assert ctl.running
    assert ctl.current_tab is Tab.INSTALLED
    assert ctl.state.cursor == 0
    assert ctl.selection.count(Tab.INSTALLED) == 0
    assert len(h.workers) == before


def test_action_failure_keeps_selection(harness, failing_action):
    h = harness
    ctl = h.controller
    ctl.current_tab = Tab.INSTALLED
    _load(h, Tab.INSTALLED, [pkg("foo"), pkg("bar")])
    h.gateway.action_error = failing_action

    h.keys(" ", "d", "y")
    h.run_all()

    state = ctl.tabs[Tab.INSTALLED]
    assert ctl.selection.selected(Tab.INSTALLED) == frozenset({"foo"})
    assert state.load_state is LoadState.LOADED_WITH_ERROR
    assert "target not found" in state.error
    assert ctl.is_error_status
    assert not h.dispatcher.is_live(Tab.INSTALLED, TaskKind.REFRESH)


def test_only_one_action_at_a_time(harness):
    h = harness
    ctl = h.controller
    h.keys("enter", "y")
    assert ctl.running_action is not None
    assert not ctl.request_action(ActionKind.CLEAN_CACHE)
    assert not ctl.gate.awaiting


def test_quit_cancels_pending_confirmation(harness):
    h = harness
    ctl = h.controller
    h.keys("enter")
    assert ctl.gate.awaiting
    assert ctl.quit()
    assert not ctl.gate.awaiting
    assert not ctl.running
    assert h.gateway.actions == []


def test_quit_waits_for_running_action(harness):
    h = harness
    ctl = h.controller
    ctl.current_tab = Tab.INSTALLED
    _load(h, Tab.INSTALLED, [pkg("foo")])
    h.keys("d", "y")
    assert ctl.running_action is not None

    h.keys("q")
    assert ctl.running
    assert ctl.is_error_status
    assert "Remove" in ctl.status_message

    h.run_all()
    assert ctl.running_action is None
    h.keys("q")
    assert not ctl.running


@pytest.mark.parametrize("older", [
    [pkg("stale", new_version="9")],
    GatewayError("pacman: unable to lock database"),
])
def test_superseded_refresh_result_is_dropped(harness, older):
    h = harness
    ctl = h.controller
    _load(h, Tab.UPDATES, [pkg("foo", new_version="2")])
    state = ctl.tabs[Tab.UPDATES]

    ctl.refresh(Tab.UPDATES)
    ctl.refresh(Tab.UPDATES)
    assert len(h.workers) == 2

    h.gateway.results["updates"] = older
    h.workers.pop(0)()
    ctl.pump(h.clock.t)
    assert state.load_state is LoadState.LOADING
    assert [r.name for r in state.items] == ["foo"]
    assert state.error is None
    assert not ctl.is_error_status
    assert not any("failed" in line for line in ctl.log.lines())

    h.gateway.results["updates"] = [pkg("bar", new_version="3")]
    h.workers.pop(0)()
    ctl.pump(h.clock.t)
    assert state.load_state is LoadState.LOADED
    assert [r.name for r in state.items] == ["bar"]


def test_activity_lists_tasks_oldest_first(harness):
    h = harness
    ctl = h.controller
    assert ctl.activity() == []
    h.clock.t = 1.0
    ctl.refresh(Tab.UPDATES)
    h.clock.t = 2.0
    ctl.refresh(Tab.REBUILDS)
    h.clock.t = 3.0
    ctl.refresh(Tab.UPDATES)
    assert ctl.activity() == ["Rebuilds refresh", "Updates refresh"]

    h.run_all()
    assert ctl.activity() == []


def test_search_is_debounced(harness):
    h = harness
    ctl = h.controller
    h.gateway.search_results["vim"] = [pkg("vim"), pkg("vim-airline")]
    h.keys("backtab")
    assert ctl.current_tab is Tab.SEARCH

    for t, key in ((0.0, "v"), (0.1, "i"), (0.2, "m")):
        h.clock.t = t
        h.keys(key)
    assert h.workers == []

    ctl.pump(0.5)
    assert h.workers == []
    ctl.pump(0.6)
    assert len(h.workers) == 1
    h.workers.pop(0)()
    ctl.pump(0.6)

    assert h.gateway.search_calls == ["vim"]
    state = ctl.tabs[Tab.SEARCH]
    assert [r.name for r in state.items] == ["vim", "vim-airline"]
    assert state.load_state is LoadState.LOADED


def test_short_query_clears_results(harness):
    h = harness
    ctl = h.controller
    h.gateway.search_results["vim"] = [pkg("vim")]
    ctl.current_tab = Tab.SEARCH
    h.keys("v", "i", "m")
    ctl.pump(10.0)
    h.run_all()
    assert ctl.tabs[Tab.SEARCH].items

    h.keys("backspace", "backspace")
    state = ctl.tabs[Tab.SEARCH]
    assert state.query == "v"
    assert state.items == ()
    assert state.load_state is LoadState.EMPTY
    assert not ctl.search_debouncer.pending(Tab.SEARCH, TaskKind.SEARCH)


def test_search_typing_q_does_not_quit(harness):
    h = harness
    ctl = h.controller
    ctl.current_tab = Tab.SEARCH
    h.keys("q")
    assert ctl.running
    assert ctl.tabs[Tab.SEARCH].query == "q"
    h.keys("esc")
    assert ctl.tabs[Tab.SEARCH].query == ""
    h.keys("esc")
    assert not ctl.running


def test_install_skips_installed_results(harness):
    h = harness
    ctl = h.controller
    h.gateway.search_results["vi"] = [pkg("vi", installed=True), pkg("vim")]
    ctl.current_tab = Tab.SEARCH
    h.keys("v", "i")
    ctl.pump(10.0)
    h.run_all()
    ctl.selection.select_all(Tab.SEARCH)
    ctl.selection.toggle(Tab.SEARCH, "vi")
    h.keys("enter")
    assert ctl.gate.pending.intent.targets == ("vim",)
    assert ctl.gate.pending.style is Severity.WARNING


def test_filter_spawns_nothing(harness):
    h = harness
    ctl = h.controller
    ctl.current_tab = Tab.INSTALLED
    _load(h, Tab.INSTALLED, [pkg("firefox"), pkg("foo"), pkg("bash")])
    ctl.pump(100.0)
    h.run_all()
    assert h.gateway.info_calls == ["firefox"]

    h.keys("f", "o", "o")
    assert ctl.state.filter_mode
    assert [r.name for r in ctl.state.visible()] == ["foo"]
    ctl.pump(200.0)
    assert h.workers == []
    assert h.gateway.info_calls == ["firefox"]

    h.keys("esc")
    assert not ctl.state.filter_mode
    assert len(ctl.state.visible()) == 3


def test_info_follows_cursor_after_debounce(harness):
    h = harness
    ctl = h.controller
    ctl.current_tab = Tab.INSTALLED
    info = pkg("bar", description="A bar")
    h.gateway.info_results["bar"] = info
    _load(h, Tab.INSTALLED, [pkg("foo"), pkg("bar")])

    h.clock.t = 1.0
    h.keys("j")
    ctl.pump(1.05)
    assert h.workers == []
    ctl.pump(1.2)
    h.run_all()
    assert h.gateway.info_calls == ["bar"]
    assert ctl.state.info is info


def test_info_error_cleared_when_cursor_moves(harness):
    h = harness
    ctl = h.controller
    ctl.current_tab = Tab.INSTALLED
    _load(h, Tab.INSTALLED, [pkg("foo"), pkg("bar")])
    ctl.pump(5.0)
    h.run_all()
    assert ctl.state.info_error == "no info for foo"

    h.keys("j")
    assert ctl.state.info_error is None
    assert ctl.state.info_loading

    info = pkg("bar", description="A bar")
    h.gateway.info_results["bar"] = info
    ctl.pump(10.0)
    h.run_all()
    assert ctl.state.info is info
    assert not ctl.state.info_loading


def test_info_toggle_off_drops_pending(harness):
    h = harness
    ctl = h.controller
    ctl.current_tab = Tab.INSTALLED
    _load(h, Tab.INSTALLED, [pkg("foo"), pkg("bar")])
    h.keys("?")
    assert not ctl.show_info
    ctl.pump(50.0)
    assert h.workers == []


def test_rebuild_fix_uses_check_command(harness):
    h = harness
    ctl = h.controller
    ctl.current_tab = Tab.REBUILDS
    result = RebuildCheckResult("obs", RebuildStatus.NEEDS_REBUILD, "yay -S --rebuild obs-studio", "ABI mismatch")
    _load(h, Tab.REBUILDS, [result])
    h.keys("enter")
    intent = ctl.gate.pending.intent
    assert intent.kind is ActionKind.RUN_FIX
    assert intent.command == ("sh", "-c", "yay -S --rebuild obs-studio")


def test_export_skips_confirmation(harness):
    h = harness
    ctl = h.controller
    ctl.current_tab = Tab.INSTALLED
    _load(h, Tab.INSTALLED, [pkg("foo")])
    h.keys("e")
    assert not ctl.gate.awaiting
    assert ctl.running_action.kind is ActionKind.EXPORT


def test_error_status_cleared_by_next_key(harness):
    h = harness
    ctl = h.controller
    ctl.set_status("boom", error=True)
    h.keys("j")
    assert not ctl.is_error_status


def test_log_scrolling_is_bounded(harness):
    ctl = harness.controller
    for i in range(30):
        ctl.log.append(str(i))
    ctl.log_page = 10
    harness.keys("pgup", "pgup", "pgup")
    assert ctl.log_scroll == 20
    harness.keys("pgdn", "pgdn", "pgdn")
    assert ctl.log_scroll == 0


def test_new_harness_is_idle():
    h = Harness()
    assert not h.controller.busy()
    assert h.controller.status_message
