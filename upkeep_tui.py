#!/usr/bin/env python3
"""
upkeep_tui.py — curses front end for upkeep

Draws the tab bar, package lists, info pane, output log and the
confirmation dialog, and feeds keys to UpkeepController. All background
work happens in the controller's worker threads; this module only ever
runs on the main thread.
"""

import curses
import curses.ascii
import logging
import time
import traceback
import sys

from upkeep_core import (
    CommandGateway,
    ConfigError,
    ConfigLoader,
    MIN_QUERY_LEN,
    RebuildStatus,
    __version__,
    _,
    ngettext,
)
from upkeep_controller import UpkeepController
from upkeep_state import TAB_ORDER, LoadState, Severity, Tab

MIN_HEIGHT = 20
MIN_WIDTH = 80

COLOR_BAR = 1
COLOR_ERROR = 2
COLOR_WARNING = 3
COLOR_OK = 4


class Spinner:
    """Braille spinner shown next to the status line while work is in flight."""

    FRAMES = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]

    def __init__(self):
        self._frame_index = 0

    def get_current_frame(self):
        return self.FRAMES[self._frame_index]

    def advance(self):
        self._frame_index = (self._frame_index + 1) % len(self.FRAMES)
        return self.get_current_frame()


_KEY_NAMES = {
    curses.KEY_UP: "up",
    curses.KEY_DOWN: "down",
    curses.KEY_PPAGE: "pgup",
    curses.KEY_NPAGE: "pgdn",
    curses.KEY_BTAB: "backtab",
    curses.KEY_ENTER: "enter",
    curses.KEY_BACKSPACE: "backspace",
    9: "tab",
    10: "enter",
    13: "enter",
    27: "esc",
    127: "backspace",
    8: "backspace",
}


def key_name(ch):
    """Translate a curses key code into the names UpkeepController understands."""
    if ch in _KEY_NAMES:
        return _KEY_NAMES[ch]
    if 0 <= ch < 256 and curses.ascii.isprint(ch):
        return chr(ch)
    return None


class LogBufferHandler(logging.Handler):
    """Sends log records to the output pane instead of the terminal."""

    def __init__(self, buffer, level=logging.INFO):
        super().__init__(level)
        self.buffer = buffer

    def emit(self, record):
        try:
            self.buffer.append(self.format(record))
        except Exception:
            self.handleError(record)


def _fit(text, width):
    text = str(text)
    if width <= 0:
        return ""
    if len(text) > width:
        return text[:max(0, width - 1)] + "…"
    return text


def _wrap(text, width):
    lines = []
    for paragraph in str(text).splitlines() or [""]:
        while len(paragraph) > width > 0:
            lines.append(paragraph[:width])
            paragraph = paragraph[width:]
        lines.append(paragraph)
    return lines


class UpkeepTUI:

    def __init__(self, stdscr, controller):
        self.stdscr = stdscr
        self.controller = controller
        self.spinner = Spinner()

        self.list_win = None
        self.info_win = None
        self.log_win = None
        self.list_scroll_offset = 0
        self.visible_rows = 0

        curses.curs_set(0)
        self.stdscr.nodelay(True)
        self.stdscr.keypad(True)
        curses.start_color()
        curses.init_pair(COLOR_BAR, curses.COLOR_BLACK, curses.COLOR_WHITE)
        curses.init_pair(COLOR_ERROR, curses.COLOR_RED, curses.COLOR_BLACK)
        curses.init_pair(COLOR_WARNING, curses.COLOR_YELLOW, curses.COLOR_BLACK)
        curses.init_pair(COLOR_OK, curses.COLOR_GREEN, curses.COLOR_BLACK)

    # -------------------------
    # Drawing
    # -------------------------

    def _put(self, win, y, x, text, attr=curses.A_NORMAL):
        try:
            win.addstr(y, x, text, attr)
        except curses.error:
            pass

    def _window(self, win, h, w, y, x):
        if win is None:
            return curses.newwin(h, w, y, x)
        win.resize(h, w)
        win.mvwin(y, x)
        return win

    def draw(self):
        ctl = self.controller
        self.stdscr.erase()
        h, w = self.stdscr.getmaxyx()

        if h < MIN_HEIGHT or w < MIN_WIDTH:
            self._put(self.stdscr, 0, 0, _("Terminal too small! Min {}x{}.").format(MIN_HEIGHT, MIN_WIDTH))
            self.stdscr.refresh()
            return

        self.draw_tab_bar(w)
        self.draw_status(w)
        self.draw_input_line(w)

        top = 4
        footer_h = 1
        content_bottom = h - footer_h
        if ctl.log_visible:
            total = content_bottom - top
            list_h = max(6, int(total * 0.6))
            log_h = max(3, total - list_h)
        else:
            list_h = max(6, content_bottom - top - 1)
            log_h = 0
        log_y = top + list_h

        info_w = w * 2 // 5 if ctl.show_info else 0
        list_w = w - info_w

        try:
            self.list_win = self._window(self.list_win, list_h, list_w, top, 0)
            self.draw_list(self.list_win, list_h, list_w)
            if info_w:
                self.info_win = self._window(self.info_win, list_h, info_w, top, list_w)
                self.draw_info(self.info_win, list_h, info_w)
            if log_h:
                self.log_win = self._window(self.log_win, log_h, w, log_y, 0)
                self.draw_log(self.log_win, log_h, w)
            else:
                indicator = _("Output log (press 'l' to expand)")
                self._put(self.stdscr, log_y, 0, "─" * (w - 1))
                self._put(self.stdscr, log_y, 2, _fit(indicator, w - 4), curses.A_DIM)
        except curses.error:
            pass

        self._put(self.stdscr, h - 1, 0, self.footer().ljust(w - 1)[:w - 1], curses.A_DIM)

        try:
            self.stdscr.noutrefresh()
            self.list_win.noutrefresh()
            if info_w:
                self.info_win.noutrefresh()
            if log_h:
                self.log_win.noutrefresh()
            curses.doupdate()
        except curses.error:
            pass

        if ctl.gate.awaiting:
            self.draw_confirmation(h, w)

    def draw_tab_bar(self, w):
        ctl = self.controller
        bar = curses.color_pair(COLOR_BAR)
        self._put(self.stdscr, 0, 0, " " * (w - 1), bar)
        x = 0
        for tab in TAB_ORDER:
            label = tab.label
            count = ctl.selection.count(tab)
            if count:
                label = "{} ({})".format(label, count)
            seg = "  {}  ".format(label)
            attr = curses.A_REVERSE | curses.A_BOLD if tab is ctl.current_tab else bar
            self._put(self.stdscr, 0, x, seg[:max(0, w - 1 - x)], attr)
            x += len(seg)
        version = "upkeep {}".format(__version__)
        if x + len(version) + 2 < w:
            self._put(self.stdscr, 0, w - len(version) - 2, version, bar)

    def draw_status(self, w):
        ctl = self.controller
        busy = ctl.busy()
        prefix = ""
        if busy and not ctl.is_error_status:
            prefix = self.spinner.get_current_frame() + " "
        text = prefix + ctl.status_message
        attr = curses.color_pair(COLOR_ERROR) if ctl.is_error_status else curses.A_NORMAL
        self._put(self.stdscr, 2, 1, _fit(text, w - 30), attr)

        activity = ctl.activity()
        if activity:
            self._put(self.stdscr, 1, 1, _fit(_("Working: ") + ", ".join(activity), w - 2), curses.A_DIM)

        selected = ctl.selection.count(ctl.current_tab)
        if selected:
            right = ngettext("{} selected", "{} selected", selected).format(selected)
            self._put(self.stdscr, 2, w - len(right) - 2, right, curses.A_BOLD)

    def draw_input_line(self, w):
        ctl = self.controller
        state = ctl.state
        if ctl.current_tab is Tab.SEARCH:
            text = _("Search: ") + state.query
            if len(state.query) < MIN_QUERY_LEN:
                text += "  " + _("(type at least two characters)")
            self._put(self.stdscr, 3, 1, _fit(text, w - 2), curses.A_BOLD)
        elif state.filter_mode or state.filter_text:
            attr = curses.A_BOLD if state.filter_mode else curses.A_DIM
            self._put(self.stdscr, 3, 1, _fit(_("Filter: ") + state.filter_text, w - 2), attr)

    def _row_text(self, tab, item):
        if tab is Tab.REBUILDS:
            status = {
                RebuildStatus.OK: _("ok"),
                RebuildStatus.NEEDS_REBUILD: _("rebuild"),
                RebuildStatus.ERROR: _("error"),
            }[item.status]
            return "{:10.10} {:28.28} {}".format(status, item.name, item.detail)
        if tab is Tab.UPDATES:
            return "{:30.30} {:18.18} -> {:18.18} {}".format(item.name, item.version, item.new_version, item.origin)
        if tab is Tab.SEARCH:
            mark = _("installed") if item.installed else ""
            return "{:28.28} {:16.16} {:10.10} {:10.10} {}".format(
                item.name, item.version, item.origin, mark, item.description)
        return "{:34.34} {:22.22} {}".format(item.name, item.version, item.origin)

    def _header_text(self, tab):
        if tab is Tab.REBUILDS:
            return "{:10.10} {:28.28} {}".format(_("Status"), _("Check"), _("Detail"))
        if tab is Tab.UPDATES:
            return "{:30.30} {:18.18}    {:18.18} {}".format(_("Name"), _("Installed"), _("Available"), _("Source"))
        if tab is Tab.SEARCH:
            return "{:28.28} {:16.16} {:10.10} {:10.10} {}".format(
                _("Name"), _("Version"), _("Source"), "", _("Description"))
        return "{:34.34} {:22.22} {}".format(_("Name"), _("Version"), _("Source"))

    def draw_list(self, win, list_h, list_w):
        ctl = self.controller
        state = ctl.state
        tab = ctl.current_tab
        inner = list_w - 2

        win.erase()
        win.border()
        title = " {} ".format(tab.label)
        if state.load_state is LoadState.LOADING:
            title = " {} {} ".format(tab.label, self.spinner.get_current_frame())
        self._put(win, 0, 2, title, curses.A_BOLD)

        y = 1
        if state.error:
            self._put(win, y, 1, _fit("! " + state.error, inner), curses.color_pair(COLOR_ERROR) | curses.A_BOLD)
            y += 1

        self._put(win, y, 1, _fit("    " + self._header_text(tab), inner), curses.A_BOLD)
        y += 1

        rows = state.visible()
        self.visible_rows = max(0, list_h - 1 - y)
        if not rows:
            if state.load_state is LoadState.LOADING:
                message = _("Loading...")
            elif tab is Tab.SEARCH and len(state.query) < MIN_QUERY_LEN:
                message = _("Type to search the repositories and the AUR")
            elif state.load_state is LoadState.EMPTY:
                message = ""
            elif state.filter_text:
                message = _("No packages match the filter")
            else:
                message = _("Nothing to show")
            self._put(win, y + 1, 3, _fit(message, inner - 3), curses.A_DIM)
            return

        if state.cursor < self.list_scroll_offset:
            self.list_scroll_offset = state.cursor
        elif state.cursor >= self.list_scroll_offset + self.visible_rows:
            self.list_scroll_offset = state.cursor - self.visible_rows + 1
        self.list_scroll_offset = max(0, min(self.list_scroll_offset, len(rows) - 1))

        for i in range(self.visible_rows):
            index = i + self.list_scroll_offset
            if index >= len(rows):
                break
            item = rows[index]
            if tab is Tab.REBUILDS:
                box = "   "
            else:
                box = "[x]" if ctl.selection.is_selected(tab, item.key) else "[ ]"
            line = "{} {}".format(box, self._row_text(tab, item))

            attr = curses.A_NORMAL
            if tab is Tab.REBUILDS and item.status is RebuildStatus.NEEDS_REBUILD:
                attr = curses.color_pair(COLOR_WARNING)
            elif tab is Tab.REBUILDS and item.status is RebuildStatus.ERROR:
                attr = curses.color_pair(COLOR_ERROR)
            elif tab is Tab.REBUILDS:
                attr = curses.color_pair(COLOR_OK)
            elif tab is Tab.SEARCH and item.installed:
                attr = curses.A_DIM
            if index == state.cursor:
                attr = curses.A_REVERSE
            self._put(win, y + i, 1, _fit(line, inner).ljust(inner), attr)

    def _info_lines(self, state):
        tab = state.tab
        current = state.current()
        if current is None:
            return []
        if tab is Tab.REBUILDS:
            return [
                (_("Check"), current.name),
                (_("Status"), current.status.value),
                (_("Detail"), current.detail or "-"),
                (_("Fix"), current.rebuild_command),
            ]
        if state.info_error:
            return [(_("Error"), state.info_error)]
        record = state.info
        if record is None or record.name != current.name:
            return [(None, _("Loading...") if state.info_loading else "")]
        fields = [
            (_("Name"), record.name),
            (_("Version"), record.version),
            (_("Source"), record.origin),
            (_("Description"), record.description),
            (_("Size"), record.size),
            (_("Install reason"), record.install_reason),
            (_("Installed on"), record.install_date),
            (_("Built on"), record.build_date),
            (_("Maintainer"), record.maintainer),
            (_("Votes"), record.votes),
            (_("URL"), record.url),
        ]
        return [(label, value) for label, value in fields if value not in (None, "")]

    def draw_info(self, win, info_h, info_w):
        ctl = self.controller
        win.erase()
        win.border()
        self._put(win, 0, 2, " " + _("Details") + " ", curses.A_BOLD)

        inner = info_w - 2
        y = 1
        for label, value in self._info_lines(ctl.state):
            if y >= info_h - 1:
                break
            if label is None:
                self._put(win, y, 1, _fit(value, inner), curses.A_DIM)
                y += 1
                continue
            self._put(win, y, 1, _fit(label + ":", inner), curses.A_BOLD)
            y += 1
            for part in _wrap(value, inner - 2):
                if y >= info_h - 1:
                    break
                self._put(win, y, 3, part)
                y += 1

    def draw_log(self, win, log_h, w):
        ctl = self.controller
        lines = ctl.log.lines()
        height = max(0, log_h - 2)
        ctl.log_page = max(1, height)

        win.erase()
        win.border()
        header = _("Output log")
        if ctl.log_scroll > 0:
            scrolled = ngettext("Scrolled up: {} line.", "Scrolled up: {} lines.", ctl.log_scroll).format(ctl.log_scroll)
            header = _("{} ({} PgUp/PgDn to navigate)").format(header, scrolled)
        self._put(win, 0, 2, _fit(header, w - 4))

        start = max(0, len(lines) - (ctl.log_scroll + height))
        for i, line in enumerate(lines[start:start + height]):
            self._put(win, 1 + i, 1, _fit(line, w - 2))

    def draw_confirmation(self, h, w):
        pending = self.controller.gate.pending
        intent = pending.intent
        danger = pending.style is Severity.DANGER
        color = curses.color_pair(COLOR_ERROR if danger else COLOR_WARNING)

        win_w = min(w - 4, 76)
        inner = win_w - 4
        body = []
        if intent.targets:
            body.append(ngettext("{} package:", "{} packages:", len(intent.targets)).format(len(intent.targets)))
            names = ", ".join(intent.targets)
            body.extend("  " + part for part in _wrap(names, inner - 2)[:6])
            body.append("")
        body.append(_("Command:"))
        body.extend("  " + part for part in _wrap(intent.preview, inner - 2)[:4])

        win_h = len(body) + 6
        y = max(0, (h - win_h) // 2)
        x = max(0, (w - win_w) // 2)
        try:
            win = curses.newwin(win_h, win_w, y, x)
            win.erase()
            win.attrset(color | curses.A_BOLD)
            win.border()
            win.attrset(curses.A_NORMAL)
            title = _("Danger") if danger else _("Confirm")
            self._put(win, 0, 2, " {}: {} ".format(title, intent.kind.describe()), color | curses.A_BOLD)
            for i, line in enumerate(body):
                self._put(win, 2 + i, 2, _fit(line, inner))
            prompt = _("Proceed? [y/Enter] yes   [n/Esc] no")
            self._put(win, win_h - 2, 2, _fit(prompt, inner), curses.A_BOLD)
            win.refresh()
        except curses.error:
            pass

    def footer(self):
        ctl = self.controller
        tab = ctl.current_tab
        if ctl.gate.awaiting:
            return _("Confirm: y/Enter=yes | n/Esc=no")
        if ctl.state.filter_mode:
            return _("FILTER: type to narrow | Up/Down=move | Space=select | F=done | Esc=clear")
        if tab is Tab.SEARCH:
            return _("SEARCH: type to search | Space=select | Enter=install | ?=info | Tab=next | Esc=clear/quit")
        common = _("Tab=switch | Space=select | a/n=all/none | r=refresh | ?=info | l=log | q=quit")
        extra = {
            Tab.UPDATES: _("Enter=update all | u=update | c=clean cache | f=filter"),
            Tab.INSTALLED: _("d/D=remove | i=reinstall | I=rebuild | e=export | f=filter"),
            Tab.ORPHANS: _("d/D=remove"),
            Tab.REBUILDS: _("Enter=run fix"),
        }[tab]
        return "{} | {}".format(extra, common)

    # -------------------------
    # Main loop
    # -------------------------

    def run(self):
        ctl = self.controller
        ctl.start()
        while ctl.running:
            try:
                ctl.pump()
                self.spinner.advance()

                ch = self.stdscr.getch()
                while ch != -1:
                    if ch == curses.KEY_RESIZE:
                        self.stdscr.clear()
                    else:
                        name = key_name(ch)
                        if name is not None:
                            ctl.handle_key(name)
                    if not ctl.running:
                        break
                    ch = self.stdscr.getch()

                self.draw()
                time.sleep(0.03)
            except KeyboardInterrupt:
                ctl.quit()

        curses.curs_set(1)


def run_tui(stdscr, controller):
    app = UpkeepTUI(stdscr, controller)
    app.run()


def main():
    if "--version" in sys.argv[1:]:
        print("upkeep {}".format(__version__))
        return 0

    try:
        config = ConfigLoader.load()
    except ConfigError as e:
        print(_("Configuration error: {}").format(e), file=sys.stderr)
        sys.exit(1)

    gateway = CommandGateway(config)
    # sudo may prompt here, while the terminal is still ours
    if not gateway.runner.cache_credentials():
        print(_("Warning: sudo credentials are not cached; privileged actions will fail"), file=sys.stderr)
    controller = UpkeepController(gateway)

    handler = LogBufferHandler(controller.log)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(logging.INFO)

    print(_("Starting upkeep..."))
    try:
        curses.wrapper(run_tui, controller)
    except Exception:
        traceback.print_exc()
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
