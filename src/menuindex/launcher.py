"""Launching applications inside a session scope.

The preferred path asks the session manager to start the command in a new,
named unit. If that request fails or does not answer in time, the process is
started directly (detached, new session) and the outcome carries a
``ScopeUnavailableError`` warning instead of failing the launch.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import re
import secrets
import shlex
import shutil
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import structlog

from menuindex.errors import (
    AppNotFoundError,
    NoTerminalError,
    ScopeUnavailableError,
    SpawnFailedError,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping, Sequence

    from menuindex.config import LaunchSettings
    from menuindex.index import AppIndex
    from menuindex.models.entry import AppEntry

    Spawner = Callable[[list[str], str | None], Awaitable[None]]

log = structlog.get_logger()

# %f %F %u %U take files/URLs, which the launcher never passes; the rest are
# informational or deprecated and are dropped as well.
_FIELD_CODE = re.compile(r"%(.)")
_STRIPPED_CODES = frozenset("fFuUdDnNvmick")

# (executable, arguments that introduce the command to run)
TERMINAL_CANDIDATES: list[tuple[str, list[str]]] = [
    ("x-terminal-emulator", ["-e"]),
    ("gnome-terminal", ["--"]),
    ("konsole", ["-e"]),
    ("xfce4-terminal", ["-x"]),
    ("alacritty", ["-e"]),
    ("kitty", []),
    ("foot", []),
    ("wezterm", ["start", "--"]),
    ("xterm", ["-e"]),
]


def expand_exec(template: str) -> list[str]:
    """Turn an ``Exec`` value into argv with no file or URL arguments."""
    try:
        tokens = shlex.split(template)
    except ValueError as exc:
        raise SpawnFailedError(f"invalid Exec line {template!r}: {exc}") from exc

    def replace(match: re.Match[str]) -> str:
        code = match[1]
        if code == "%":
            return "%"
        if code in _STRIPPED_CODES:
            return ""
        return match[0]

    argv = []
    for token in tokens:
        expanded = _FIELD_CODE.sub(replace, token)
        # A token that consisted only of field codes disappears entirely
        if expanded or not token:
            argv.append(expanded)
    return argv


def find_terminal(
    configured: Sequence[str] | None = None,
    *,
    environ: Mapping[str, str] = os.environ,
    which: Callable[[str], str | None] = shutil.which,
) -> list[str]:
    """Argv prefix that runs a command inside a terminal emulator."""
    if configured:
        if which(configured[0]) is None:
            raise NoTerminalError(f"configured terminal {configured[0]!r} is not installed")
        return list(configured)

    if terminal := environ.get("TERMINAL"):
        prefix = shlex.split(terminal)
        if prefix and which(prefix[0]) is not None:
            # Known emulators take their own run-command arguments; others get -e
            args = dict(TERMINAL_CANDIDATES).get(os.path.basename(prefix[0]), ["-e"])
            return [*prefix, *args]

    for executable, args in TERMINAL_CANDIDATES:
        if which(executable) is not None:
            return [executable, *args]
    raise NoTerminalError("no terminal emulator found")


def scope_name(identity: str, launcher: str = "menuindex") -> str:
    """Unit name following the ``app-<launcher>-<id>-<random>`` convention.

    Characters outside ``[A-Za-z0-9:_.]`` (including ``-``) are escaped as
    ``\\xNN`` so the identity can be recovered from the name.
    """
    escaped: list[str] = []
    for ch in identity:
        if ch.isascii() and (ch.isalnum() or ch in ":_."):
            escaped.append(ch)
        else:
            escaped.extend(f"\\x{b:02x}" for b in ch.encode())
    return f"app-{launcher}-{''.join(escaped)}-{secrets.token_hex(4)}"


# ---------------------------------------------------------------------------
# Session manager
# ---------------------------------------------------------------------------


class SessionManager(Protocol):
    async def run_in_scope(self, scope_name: str, argv: list[str], cwd: str | None) -> None:
        """Start ``argv`` in a new unit named ``scope_name``.

        Raises ``ScopeUnavailableError`` if the unit could not be created.
        """
        ...


class SystemdRunSessionManager:
    """Asks the user's systemd instance to run the command via ``systemd-run``.

    ``--service-type=exec`` makes ``systemd-run`` return as soon as the
    process has been executed, which gives a request/response round trip.
    """

    def __init__(
        self, executable: str = "systemd-run", passthrough_env: Sequence[str] = ()
    ) -> None:
        self.executable = executable
        self.passthrough_env = list(passthrough_env)

    def command(self, scope_name: str, argv: list[str], cwd: str | None) -> list[str]:
        cmd = [
            self.executable,
            "--user",
            "--quiet",
            "--collect",
            "--service-type=exec",
            f"--unit={scope_name}",
        ]
        if cwd:
            cmd.append(f"--working-directory={cwd}")
        for var in self.passthrough_env:
            if var in os.environ:
                cmd.append(f"--setenv={var}={os.environ[var]}")
        return [*cmd, "--", *argv]

    async def run_in_scope(self, scope_name: str, argv: list[str], cwd: str | None) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command(scope_name, argv, cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ScopeUnavailableError(
                f"cannot run {self.executable}: {exc.strerror or exc}"
            ) from exc

        try:
            _, stderr = await proc.communicate()
        except asyncio.CancelledError:
            # Timed out: do not leave the request behind
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            reason = stderr.decode(errors="replace").strip() or f"exit status {proc.returncode}"
            raise ScopeUnavailableError(f"{self.executable} failed: {reason}")


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LaunchOutcome:
    identity: str
    argv: list[str]
    scope_name: str | None = None
    scoped: bool = False
    warning: ScopeUnavailableError | None = None


class LaunchDispatcher:
    def __init__(
        self,
        snapshot: Callable[[], AppIndex],
        settings: LaunchSettings,
        *,
        session_manager: SessionManager | None = None,
        spawner: Spawner | None = None,
        terminal_finder: Callable[[Sequence[str] | None], list[str]] = find_terminal,
    ) -> None:
        self._snapshot = snapshot
        self._settings = settings
        self._session_manager = session_manager
        self._spawner = spawner or self._spawn_direct
        self._terminal_finder = terminal_finder
        self._reapers: set[asyncio.Task[int]] = set()

    def command_for(self, entry: AppEntry) -> list[str]:
        argv = expand_exec(entry.exec)
        if not argv:
            raise SpawnFailedError(f"{entry.identity}: Exec expands to an empty command")
        if entry.terminal:
            argv = [*self._terminal_finder(self._settings.terminal), *argv]
        return argv

    async def launch(self, identity: str) -> LaunchOutcome:
        """Start the application ``identity`` from the current index.

        Raises ``AppNotFoundError``, ``NoTerminalError`` or ``SpawnFailedError``.
        A missing session scope is reported through ``LaunchOutcome.warning``.
        """
        entry = self._snapshot().get(identity)
        if entry is None:
            raise AppNotFoundError(f"{identity} is not in the application index")

        argv = self.command_for(entry)
        cwd = entry.working_dir or None
        warning: ScopeUnavailableError | None = None

        if self._session_manager is not None and self._settings.use_scopes:
            scope = scope_name(identity)
            timeout = self._settings.scope_timeout_seconds
            try:
                async with asyncio.timeout(timeout):
                    await self._session_manager.run_in_scope(scope, argv, cwd)
            except ScopeUnavailableError as exc:
                warning = exc
            except TimeoutError:
                warning = ScopeUnavailableError(f"session manager did not answer within {timeout}s")
            except OSError as exc:
                warning = ScopeUnavailableError(f"session manager request failed: {exc}")
            else:
                log.info("app_launched", identity=identity, scope=scope, argv=argv)
                return LaunchOutcome(identity, argv, scope_name=scope, scoped=True)
            log.warning("scope_unavailable", identity=identity, scope=scope, reason=warning.message)

        await self._spawner(argv, cwd)
        log.info("app_launched", identity=identity, scope=None, argv=argv)
        return LaunchOutcome(identity, argv, warning=warning)

    async def _spawn_direct(self, argv: list[str], cwd: str | None) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as exc:
            raise SpawnFailedError(f"cannot start {argv[0]}: {exc.strerror or exc}") from exc

        # Reap the child when it exits; the application may outlive us
        reaper = asyncio.create_task(proc.wait())
        self._reapers.add(reaper)
        reaper.add_done_callback(self._reapers.discard)

    async def aclose(self) -> None:
        for reaper in list(self._reapers):
            reaper.cancel()
        self._reapers.clear()
