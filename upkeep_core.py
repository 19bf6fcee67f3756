#!/usr/bin/env python3

import os
import sys
import enum
import shlex
import shutil
import logging
import datetime
import subprocess
import gettext
import locale
from dataclasses import dataclass, field, replace
from typing import List, Optional

import requests
from packaging import version as pkg_version

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

__version__ = "0.4.0"

logger = logging.getLogger(__name__)

# -------------------------
# Set up locale and translation
# -------------------------

try:
    locale.setlocale(locale.LC_ALL, '')
    gettext.bindtextdomain('upkeep', '/usr/share/locale')
    gettext.textdomain('upkeep')
    _ = gettext.gettext
    ngettext = gettext.ngettext
except locale.Error:
    logger.warning("Could not set up locale, using untranslated strings")
    _ = lambda s: s
    ngettext = lambda s, p, n: s if n == 1 else p

# -------------------------
# Data model
# -------------------------

ORIGIN_AUR = "AUR"
ORIGIN_REPO = "repo"

# Shorter search queries are never sent
MIN_QUERY_LEN = 2

# AUR helpers that take the privilege command through --sudo/--sudoflags
SUDO_FLAG_HELPERS = ("yay", "paru")


@dataclass(frozen=True)
class PackageRecord:
    """
    Immutable snapshot of one package as reported by pacman or the AUR.
    Lists of records are replaced wholesale on refresh, never patched.
    """
    name: str
    version: str = ""
    origin: str = ORIGIN_REPO
    description: str = ""
    size: str = ""
    install_reason: Optional[str] = None
    install_date: Optional[str] = None
    build_date: Optional[str] = None
    url: Optional[str] = None
    maintainer: Optional[str] = None
    votes: Optional[int] = None
    new_version: str = ""
    installed: bool = False

    @property
    def key(self):
        return self.name

    @property
    def is_aur(self):
        return self.origin == ORIGIN_AUR


@dataclass(frozen=True)
class RebuildCheck:
    name: str
    command: tuple
    error_patterns: tuple
    rebuild: str


class RebuildStatus(enum.Enum):
    OK = "ok"
    NEEDS_REBUILD = "needs-rebuild"
    ERROR = "error"


@dataclass(frozen=True)
class RebuildCheckResult:
    name: str
    status: RebuildStatus
    rebuild_command: str
    detail: str = ""

    @property
    def key(self):
        return self.name


class ActionKind(enum.Enum):
    UPDATE_ALL = "update-all"
    UPDATE = "update"
    REMOVE = "remove"
    REMOVE_WITH_DEPS = "remove-with-deps"
    REINSTALL = "reinstall"
    REBUILD = "rebuild"
    INSTALL = "install"
    RUN_FIX = "run-fix"
    CLEAN_CACHE = "clean-cache"
    EXPORT = "export"

    def describe(self):
        return {
            ActionKind.UPDATE_ALL: _("Update all packages"),
            ActionKind.UPDATE: _("Update"),
            ActionKind.REMOVE: _("Remove"),
            ActionKind.REMOVE_WITH_DEPS: _("Remove with dependencies"),
            ActionKind.REINSTALL: _("Reinstall"),
            ActionKind.REBUILD: _("Rebuild from source"),
            ActionKind.INSTALL: _("Install"),
            ActionKind.RUN_FIX: _("Run rebuild"),
            ActionKind.CLEAN_CACHE: _("Clean package cache"),
            ActionKind.EXPORT: _("Export package lists"),
        }[self]

# -------------------------
# Failures
# -------------------------


class GatewayError(Exception):
    """An external operation failed. The message is shown to the user."""


class ProcessSpawnFailed(GatewayError):
    pass


class NonZeroExit(GatewayError):
    def __init__(self, cmd, code, output=""):
        self.cmd = list(cmd)
        self.code = code
        self.output = output or ""
        message = _("{} exited with status {}").format(self.cmd[0] if self.cmd else "?", code)
        last = [ln.strip() for ln in self.output.splitlines() if ln.strip()]
        if last:
            message = "{}: {}".format(message, last[-1])
        super().__init__(message)


class CommandTimeout(GatewayError):
    pass


class ParseFailed(GatewayError):
    pass


class RpcFailed(GatewayError):
    pass


class ConfigError(Exception):
    pass

# -------------------------
# Core Command Runner
# -------------------------


def get_elevation_cmd():
    if os.getuid() == 0:
        return None
    elif shutil.which("pkexec"):
        return ["pkexec"]
    elif shutil.which("sudo"):
        return ["sudo", "-n"]
    return None



def _non_interactive(elevation_cmd):
    # sudo must never prompt while curses owns the terminal
    cmd = list(elevation_cmd)
    if os.path.basename(cmd[0]) == "sudo" and "-n" not in cmd[1:] and "--non-interactive" not in cmd[1:]:
        cmd.insert(1, "-n")
    return cmd


class CommandRunner:
    """
    Runs external commands on the calling thread. Callers are worker
    threads owned by the task dispatcher, never the event loop.
    """

    def __init__(self, elevation_cmd=None, timeout=None):
        """
        :param elevation_cmd: List like ["pkexec"] or ["sudo", "-n"] or None
        :param timeout: Default bounded wait in seconds for run_sync
        """
        self.elevation_cmd = _non_interactive(elevation_cmd) if elevation_cmd else None
        self.timeout = timeout

    def cache_credentials(self):
        """
        Let sudo ask for its password on the real terminal before curses
        takes it over. Later elevated commands run with -n and reuse the
        cached timestamp. Returns False when the prompt failed.
        """
        if os.getuid() == 0 or not self.elevation_cmd:
            return True
        if os.path.basename(self.elevation_cmd[0]) != "sudo":
            return True
        try:
            return subprocess.run([self.elevation_cmd[0], "-v"]).returncode == 0
        except OSError as e:
            logger.warning("Could not run %s: %s", self.elevation_cmd[0], e)
            return False

    def elevate(self, cmd_list):
        final = list(cmd_list)
        if os.getuid() != 0:
            if not self.elevation_cmd:
                raise ProcessSpawnFailed(_("No elevation helper available"))
            final = self.elevation_cmd + final
        return final

    def run_sync(self, cmd_list, timeout=None):
        """Run a command to completion and return the CompletedProcess."""
        final = list(cmd_list)
        try:
            return subprocess.run(
                final,
                text=True,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=timeout or self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandTimeout(_("{} timed out after {}s").format(final[0], e.timeout)) from e
        except OSError as e:
            raise ProcessSpawnFailed(_("Could not run {}: {}").format(final[0], e)) from e

    def run_checked(self, cmd_list, ok_codes=(0,), timeout=None):
        res = self.run_sync(cmd_list, timeout=timeout)
        if res.returncode not in ok_codes:
            raise NonZeroExit(cmd_list, res.returncode, (res.stdout or "") + (res.stderr or ""))
        return res

    def run_streaming(self, cmd_list, on_line, detach=False):
        """
        Run a command, handing each line of combined stdout/stderr to
        on_line as it arrives. Returns the exit status.

        With detach the command gets its own session and no controlling
        terminal, so it cannot prompt on top of the curses screen.
        """
        final = list(cmd_list)
        try:
            process = subprocess.Popen(
                final,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
                start_new_session=detach,
            )
        except OSError as e:
            raise ProcessSpawnFailed(_("Could not run {}: {}").format(final[0], e)) from e

        for line in iter(process.stdout.readline, ''):
            on_line(line.rstrip("\n"))
        process.stdout.close()
        return process.wait()

# -------------------------
# AUR RPC client
# -------------------------


def _format_timestamp(ts):
    if ts is None:
        return None
    try:
        return datetime.datetime.fromtimestamp(int(ts)).strftime("%Y-%m-%d")
    except (TypeError, ValueError, OverflowError, OSError):
        return str(ts)


class AurClient:
    RPC_URL = "https://aur.archlinux.org/rpc/v5"
    BATCH_SIZE = 100

    def __init__(self, timeout=10, session=None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": "upkeep/{}".format(__version__)})

    def _get(self, path, params=None):
        url = "{}/{}".format(self.RPC_URL, path)
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
            resp.raise_for_status()
        except requests.Timeout as e:
            raise CommandTimeout(_("AUR request timed out")) from e
        except requests.RequestException as e:
            raise RpcFailed(_("AUR request failed: {}").format(e)) from e
        try:
            data = resp.json()
        except ValueError as e:
            raise ParseFailed(_("Invalid JSON from the AUR")) from e

        if not isinstance(data, dict):
            raise ParseFailed(_("Unexpected AUR response"))
        if data.get("type") == "error":
            raise RpcFailed(_("AUR error: {}").format(data.get("error", "")))
        return data.get("results") or []

    def info(self, names):
        """Return {name: result-dict} for every name the AUR knows about."""
        found = {}
        names = list(names)
        for start in range(0, len(names), self.BATCH_SIZE):
            batch = names[start:start + self.BATCH_SIZE]
            params = [("arg[]", n) for n in batch]
            for result in self._get("info", params):
                found[result.get("Name", "")] = result
        return found

    def search(self, query):
        path = "search/{}".format(requests.utils.quote(query, safe=""))
        return self._get(path, {"by": "name-desc"})

    @staticmethod
    def to_record(result, installed=False):
        return PackageRecord(
            name=result.get("Name", ""),
            version=result.get("Version", ""),
            origin=ORIGIN_AUR,
            description=result.get("Description") or "",
            url=result.get("URL"),
            maintainer=result.get("Maintainer"),
            votes=result.get("NumVotes"),
            build_date=_format_timestamp(result.get("LastModified")),
            installed=installed,
        )

# -------------------------
# Output parsers
# -------------------------


def parse_update_lines(output, origin=ORIGIN_REPO):
    """Parse "name old -> new" lines from checkupdates or an AUR helper."""
    records = []
    for line in output.splitlines():
        if " -> " not in line:
            continue
        parts = line.split()
        if len(parts) >= 4:
            records.append(PackageRecord(
                name=parts[0], version=parts[1], new_version=parts[3],
                origin=origin, installed=True,
            ))
    return records


def parse_name_version(output):
    pairs = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 2:
            pairs.append((parts[0], parts[1]))
    return pairs


def parse_search_output(output):
    """
    Parse `pacman -Ss` output:

        repo/name version [installed]
            Description text
    """
    records = []
    lines = output.splitlines()
    i = 0
    while i < len(lines):
        line = lines[i]
        i += 1
        if line.startswith(" ") or "/" not in line:
            continue
        parts = line.split()
        if len(parts) < 2 or "/" not in parts[0]:
            continue
        repository, name = parts[0].split("/", 1)
        description = ""
        if i < len(lines) and lines[i].startswith("    "):
            description = lines[i].strip()
            i += 1
        records.append(PackageRecord(
            name=name,
            version=parts[1],
            origin=repository,
            description=description,
            installed="[installed" in line,
        ))
    return records


_INFO_FIELDS = {
    "Name": "name",
    "Version": "version",
    "Description": "description",
    "Repository": "origin",
    "Installed Size": "size",
    "Install Date": "install_date",
    "Install Reason": "install_reason",
    "URL": "url",
    "Build Date": "build_date",
}


def parse_info_output(output, installed):
    """Parse `pacman -Qi` / `pacman -Si` key-value output into a record."""
    values = {}
    for line in output.splitlines():
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip()
        value = value.strip()
        if key == "Download Size" and not installed:
            values["size"] = value
        elif key in _INFO_FIELDS:
            values.setdefault(_INFO_FIELDS[key], value)

    if not values.get("name"):
        return None
    values.setdefault("origin", "")
    return PackageRecord(installed=installed, **values)

# -------------------------
# Command Gateway
# -------------------------


class CommandGateway:
    """
    Every external operation the coordinator needs, each a plain blocking
    call that returns a result or raises a GatewayError.
    """

    def __init__(self, config, runner=None, aur=None):
        self.config = config
        self.runner = runner or CommandRunner(config.elevation, timeout=config.command_timeout)
        self.aur = aur or AurClient(timeout=config.aur_timeout)

    # --- version comparison ---

    def is_newer(self, new, old):
        if new == old:
            return False
        try:
            res = self.runner.run_sync(["vercmp", new, old])
        except ProcessSpawnFailed:
            try:
                return pkg_version.parse(new) > pkg_version.parse(old)
            except pkg_version.InvalidVersion:
                return new != old
        return res.stdout.strip() == "1"

    # --- queries ---

    def foreign_packages(self):
        res = self.runner.run_checked(["pacman", "-Qm"], ok_codes=(0, 1))
        return parse_name_version(res.stdout)

    def _repo_updates(self):
        res = self.runner.run_checked(["checkupdates", "--nocolor"], ok_codes=(0, 2))
        if res.returncode == 2:
            return []
        return parse_update_lines(res.stdout)

    def _aur_updates(self):
        local = self.foreign_packages()
        if not local:
            return []
        try:
            remote = self.aur.info(name for name, _ver in local)
        except GatewayError as e:
            logger.info("AUR RPC unavailable (%s), asking %s", e, self.config.aur_helper)
            res = self.runner.run_checked([self.config.aur_helper, "-Qua"], ok_codes=(0, 1))
            return parse_update_lines(res.stdout, origin=ORIGIN_AUR)

        updates = []
        for name, local_ver in local:
            result = remote.get(name)
            if result is None:
                continue
            remote_ver = result.get("Version", "")
            if self.is_newer(remote_ver, local_ver):
                updates.append(PackageRecord(
                    name=name, version=local_ver, new_version=remote_ver,
                    origin=ORIGIN_AUR, installed=True,
                    description=result.get("Description") or "",
                ))
        return updates

    def updates(self):
        return self._repo_updates() + self._aur_updates()

    def installed(self):
        explicit = self.runner.run_checked(["pacman", "-Qe"])
        foreign = {name for name, _ver in self.foreign_packages()}
        return [
            PackageRecord(
                name=name, version=ver, installed=True,
                origin=ORIGIN_AUR if name in foreign else ORIGIN_REPO,
            )
            for name, ver in parse_name_version(explicit.stdout)
        ]

    def orphans(self):
        res = self.runner.run_sync(["pacman", "-Qdt"])
        if res.returncode != 0:
            if not res.stdout.strip():
                return []
            raise NonZeroExit(["pacman", "-Qdt"], res.returncode, res.stderr)
        foreign = {name for name, _ver in self.foreign_packages()}
        return [
            PackageRecord(
                name=name, version=ver, installed=True, install_reason="dependency",
                origin=ORIGIN_AUR if name in foreign else ORIGIN_REPO,
            )
            for name, ver in parse_name_version(res.stdout)
        ]

    def rebuild_checks(self):
        return [self._run_check(check) for check in self.config.checks]

    def _run_check(self, check):
        try:
            res = self.runner.run_sync(list(check.command))
        except GatewayError as e:
            return RebuildCheckResult(check.name, RebuildStatus.ERROR, check.rebuild, str(e))
        stderr = res.stderr or ""
        for pattern in check.error_patterns:
            if pattern in stderr:
                return RebuildCheckResult(check.name, RebuildStatus.NEEDS_REBUILD, check.rebuild, pattern)
        return RebuildCheckResult(check.name, RebuildStatus.OK, check.rebuild)

    def search(self, query):
        if len(query) < MIN_QUERY_LEN:
            return []

        res = self.runner.run_checked(["pacman", "-Ss", query], ok_codes=(0, 1))
        results = parse_search_output(res.stdout)

        try:
            aur_results = self.aur.search(query)
        except GatewayError as e:
            logger.info("AUR search failed: %s", e)
            aur_results = []

        if aur_results:
            installed = set(self.runner.run_checked(["pacman", "-Qq"]).stdout.split())
            repo_names = {r.name for r in results}
            results.extend(
                AurClient.to_record(r, installed=r.get("Name") in installed)
                for r in aur_results
                if r.get("Name") not in repo_names
            )

        results.sort(key=lambda r: (r.installed, r.name))
        return results

    def _pacman_info(self, flag, name):
        res = self.runner.run_sync(["pacman", flag, name])
        if res.returncode != 0:
            return None
        return parse_info_output(res.stdout, installed=(flag == "-Qi"))

    def info(self, name, fallback=None):
        record = self._pacman_info("-Qi", name)
        if record is not None and not record.origin:
            repo = self._pacman_info("-Si", name)
            if repo is not None and repo.origin:
                record = replace(record, origin=repo.origin)
            elif name in {n for n, _ver in self.foreign_packages()}:
                try:
                    aur = self.aur.info([name]).get(name, {})
                except GatewayError as e:
                    logger.info("AUR info for %s unavailable: %s", name, e)
                    aur = {}
                record = replace(
                    record, origin=ORIGIN_AUR,
                    maintainer=aur.get("Maintainer"), votes=aur.get("NumVotes"),
                )
        if record is None:
            record = self._pacman_info("-Si", name)
        if record is None:
            try:
                result = self.aur.info([name]).get(name)
            except GatewayError:
                if fallback is None:
                    raise
                result = None
            if result is not None:
                record = AurClient.to_record(result)
        if record is None:
            record = fallback
        if record is None:
            raise ParseFailed(_("No information found for {}").format(name))
        return record

    # --- actions ---

    def action_command(self, kind, targets=(), rebuild=None):
        """Build the argv an action will run. The result is shown verbatim in the confirmation preview."""
        helper = self.config.aur_helper
        targets = list(targets)
        if kind is ActionKind.UPDATE_ALL:
            cmd = [helper, "-Syu", "--noconfirm"]
        elif kind is ActionKind.UPDATE:
            cmd = [helper, "-S", "--needed", "--noconfirm"] + targets
        elif kind is ActionKind.REMOVE:
            cmd = [helper, "-R", "--noconfirm"] + targets
        elif kind is ActionKind.REMOVE_WITH_DEPS:
            cmd = [helper, "-Rns", "--noconfirm"] + targets
        elif kind in (ActionKind.REINSTALL, ActionKind.INSTALL):
            cmd = [helper, "-S", "--noconfirm"] + targets
        elif kind is ActionKind.REBUILD:
            cmd = [helper, "-S", "--rebuild", "--noconfirm"] + targets
        elif kind is ActionKind.RUN_FIX:
            return ["sh", "-c", rebuild or ""]
        elif kind is ActionKind.CLEAN_CACHE:
            return self.runner.elevate(["paccache", "-r"])
        elif kind is ActionKind.EXPORT:
            return []
        else:
            raise ValueError(kind)

        name = os.path.basename(helper)
        if name == "pacman":
            cmd = self.runner.elevate(cmd)
        elif name in SUDO_FLAG_HELPERS and os.getuid() != 0 and self.runner.elevation_cmd:
            # Route the helper's own privilege step through the non-interactive prefix
            sudo = self.runner.elevation_cmd
            extra = ["--sudo", sudo[0]]
            if sudo[1:]:
                extra += ["--sudoflags", " ".join(sudo[1:])]
            cmd = cmd[:1] + extra + cmd[1:]
        return cmd

    @staticmethod
    def preview(command):
        return shlex.join(command)

    def run_action(self, intent, on_line):
        if intent.kind is ActionKind.EXPORT:
            pkg_path, aur_path, n_official, n_aur = self.export_package_lists()
            on_line(_("Wrote {} official packages to {}").format(n_official, pkg_path))
            on_line(_("Wrote {} AUR packages to {}").format(n_aur, aur_path))
            return 0

        on_line("$ " + self.preview(intent.command))
        returncode = self.runner.run_streaming(
            intent.command, on_line, detach=intent.kind is ActionKind.RUN_FIX
        )
        if returncode != 0:
            raise NonZeroExit(intent.command, returncode)
        return returncode

    def export_package_lists(self, dest_dir=None, today=None):
        dest_dir = dest_dir or os.path.join(self.config.config_dir, "backups")
        today = today or datetime.date.today()

        explicit = self.runner.run_checked(["pacman", "-Qqe"]).stdout.split()
        foreign = set(self.runner.run_checked(["pacman", "-Qqm"], ok_codes=(0, 1)).stdout.split())
        official = [p for p in explicit if p not in foreign]
        aur = [p for p in explicit if p in foreign]

        stamp = today.strftime("%Y-%m-%d")
        pkg_path = os.path.join(dest_dir, "packages-{}.txt".format(stamp))
        aur_path = os.path.join(dest_dir, "aur-{}.txt".format(stamp))
        try:
            os.makedirs(dest_dir, exist_ok=True)
            for path, names in ((pkg_path, official), (aur_path, aur)):
                with open(path, "w") as f:
                    f.writelines(name + "\n" for name in names)
        except OSError as e:
            raise GatewayError(_("Could not write package lists: {}").format(e)) from e
        return pkg_path, aur_path, len(official), len(aur)

# -------------------------
# Configuration
# -------------------------

DEFAULT_CONFIG_TEXT = """\
# upkeep configuration

# AUR helper used for updates, installs and removals (default: yay)
# Alternatives: paru, pikaur, or plain pacman for repository packages only.
aur_helper = "yay"

# Command prefix for operations that need root.
# Leave unset to use pkexec, or sudo -n when pkexec is missing.
# elevation = ["sudo", "-n"]

# Seconds to wait for a query command before giving up.
command_timeout = 60

# Seconds to wait for the AUR RPC.
aur_timeout = 10
"""

DEFAULT_CHECKS_TEXT = """\
# upkeep rebuild checks
#
# Each [[check]] table runs a command and looks for error patterns in its
# stderr. A match means the application needs rebuilding.
#
#   name           - Display name for the check
#   command        - Command to run, as a list of arguments
#   error_patterns - Strings in stderr that indicate a rebuild is needed
#   rebuild        - Shell command that fixes the issue

# [[check]]
# name = "obs-studio"
# command = ["timeout", "3", "obs", "--help"]
# error_patterns = ["ABI mismatch", "symbol lookup error"]
# rebuild = "yay -S --rebuild obs-studio"
"""


@dataclass
class Config:
    aur_helper: str = "yay"
    elevation: Optional[List[str]] = None
    command_timeout: float = 60
    aur_timeout: float = 10
    checks: List[RebuildCheck] = field(default_factory=list)
    config_dir: str = ""


class ConfigLoader:

    @staticmethod
    def config_dir():
        base = os.environ.get("XDG_CONFIG_HOME") or os.path.join(os.path.expanduser("~"), ".config")
        return os.path.join(base, "upkeep")

    @staticmethod
    def _read_toml(path, default_text):
        if not os.path.exists(path):
            try:
                os.makedirs(os.path.dirname(path), exist_ok=True)
                with open(path, "w") as f:
                    f.write(default_text)
            except OSError as e:
                logger.warning("Could not write default %s: %s", path, e)
            return {}
        try:
            with open(path, "rb") as f:
                return tomllib.load(f)
        except OSError as e:
            raise ConfigError(_("Cannot read {}: {}").format(path, e)) from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(_("Invalid TOML in {}: {}").format(path, e)) from e

    @staticmethod
    def _string_list(value, what, path):
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ConfigError(_("{} in {} must be a list of strings").format(what, path))
        return tuple(value)

    @staticmethod
    def parse_checks(data, path):
        entries = data.get("check", [])
        if not isinstance(entries, list):
            raise ConfigError(_("'check' in {} must be an array of tables").format(path))

        checks = []
        for i, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise ConfigError(_("Check #{} in {} must be a table").format(i + 1, path))
            missing = [k for k in ("name", "command", "error_patterns", "rebuild") if k not in entry]
            if missing:
                raise ConfigError(_("Check #{} in {} is missing: {}").format(i + 1, path, ", ".join(missing)))
            command = ConfigLoader._string_list(entry["command"], "command", path)
            if not command:
                raise ConfigError(_("Check '{}' in {} has an empty command").format(entry["name"], path))
            checks.append(RebuildCheck(
                name=str(entry["name"]),
                command=command,
                error_patterns=ConfigLoader._string_list(entry["error_patterns"], "error_patterns", path),
                rebuild=str(entry["rebuild"]),
            ))
        return checks

    @staticmethod
    def load(config_dir=None):
        config_dir = config_dir or ConfigLoader.config_dir()
        config_path = os.path.join(config_dir, "config.toml")
        checks_path = os.path.join(config_dir, "checks.toml")

        data = ConfigLoader._read_toml(config_path, DEFAULT_CONFIG_TEXT)
        config = Config(config_dir=config_dir)

        helper = data.get("aur_helper", config.aur_helper)
        if not isinstance(helper, str) or not helper.strip():
            raise ConfigError(_("'aur_helper' in {} must be a non-empty string").format(config_path))
        config.aur_helper = helper.strip()

        if data.get("elevation") is not None:
            config.elevation = list(ConfigLoader._string_list(data["elevation"], "elevation", config_path))
        else:
            config.elevation = get_elevation_cmd()

        for key in ("command_timeout", "aur_timeout"):
            if key in data:
                value = data[key]
                if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                    raise ConfigError(_("'{}' in {} must be a positive number").format(key, config_path))
                setattr(config, key, value)

        config.checks = ConfigLoader.parse_checks(
            ConfigLoader._read_toml(checks_path, DEFAULT_CHECKS_TEXT), checks_path
        )
        return config
