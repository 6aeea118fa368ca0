"""Unit tests for menuindex.launcher."""

from __future__ import annotations

import asyncio
import shutil
from types import MappingProxyType

import pytest

from menuindex.config import LaunchSettings
from menuindex.errors import (
    AppNotFoundError,
    ErrorCode,
    NoTerminalError,
    ScopeUnavailableError,
    SpawnFailedError,
)
from menuindex.index import AppIndex
from menuindex.launcher import (
    LaunchDispatcher,
    SystemdRunSessionManager,
    expand_exec,
    find_terminal,
    scope_name,
)
from menuindex.models.entry import AppEntry


class FakeSessionManager:
    def __init__(self, *, error: Exception | None = None, delay: float = 0) -> None:
        self.error = error
        self.delay = delay
        self.calls: list[tuple[str, list[str], str | None]] = []

    async def run_in_scope(self, scope_name: str, argv: list[str], cwd: str | None) -> None:
        self.calls.append((scope_name, argv, cwd))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error


class FakeSpawner:
    def __init__(self) -> None:
        self.calls: list[tuple[list[str], str | None]] = []

    async def __call__(self, argv: list[str], cwd: str | None) -> None:
        self.calls.append((argv, cwd))


def installed(*names: str):
    return lambda name: f"/usr/bin/{name}" if name in names else None


@pytest.fixture()
def index(sample_entries: list[AppEntry]) -> AppIndex:
    entries = {e.identity: e for e in sample_entries}
    entries["editor"] = AppEntry(
        identity="editor", name="Editor", exec="edit --new %F", working_dir="/srv/docs"
    )
    return AppIndex(MappingProxyType(entries), version=1)


@pytest.fixture()
def spawner() -> FakeSpawner:
    return FakeSpawner()


def make_dispatcher(
    index: AppIndex,
    spawner: FakeSpawner,
    session_manager: FakeSessionManager | None = None,
    **settings: object,
) -> LaunchDispatcher:
    launch_settings = LaunchSettings(scope_timeout_seconds=0.2, **settings)
    return LaunchDispatcher(
        lambda: index,
        launch_settings,
        session_manager=session_manager,
        spawner=spawner,
        terminal_finder=lambda configured: list(configured or ["xterm", "-e"]),
    )


# ---------------------------------------------------------------------------
# Exec expansion
# ---------------------------------------------------------------------------


class TestExpandExec:
    def test_file_and_url_codes_removed(self) -> None:
        assert expand_exec("firefox %u") == ["firefox"]
        assert expand_exec("gimp-2.10 %U") == ["gimp-2.10"]
        assert expand_exec("app %f %F") == ["app"]

    def test_deprecated_and_informational_codes_removed(self) -> None:
        assert expand_exec("app %i %c %k %d %D %n %N %v %m") == ["app"]

    def test_code_inside_token(self) -> None:
        assert expand_exec("app --open=%u") == ["app", "--open="]

    def test_literal_percent(self) -> None:
        assert expand_exec('sh -c "echo 100%%"') == ["sh", "-c", "echo 100%"]

    def test_unknown_code_kept(self) -> None:
        assert expand_exec("app %z") == ["app", "%z"]

    def test_quoting(self) -> None:
        assert expand_exec('"/opt/My App/run" --flag "two words"') == [
            "/opt/My App/run",
            "--flag",
            "two words",
        ]

    def test_explicit_empty_argument_kept(self) -> None:
        assert expand_exec('app ""') == ["app", ""]

    def test_unbalanced_quote(self) -> None:
        with pytest.raises(SpawnFailedError):
            expand_exec('app "unterminated')


# ---------------------------------------------------------------------------
# Terminal lookup
# ---------------------------------------------------------------------------


class TestFindTerminal:
    def test_configured(self) -> None:
        assert find_terminal(["foot", "-e"], environ={}, which=installed("foot")) == ["foot", "-e"]

    def test_configured_but_missing(self) -> None:
        with pytest.raises(NoTerminalError):
            find_terminal(["foot"], environ={}, which=installed("xterm"))

    def test_terminal_env(self) -> None:
        result = find_terminal(None, environ={"TERMINAL": "kitty"}, which=installed("kitty"))
        assert result == ["kitty"]

    def test_terminal_env_uses_known_arguments(self) -> None:
        environ = {"TERMINAL": "/usr/bin/wezterm"}
        result = find_terminal(None, environ=environ, which=installed("/usr/bin/wezterm"))
        assert result == ["/usr/bin/wezterm", "start", "--"]

    def test_terminal_env_unknown_gets_dash_e(self) -> None:
        environ = {"TERMINAL": "st -f mono"}
        result = find_terminal(None, environ=environ, which=installed("st"))
        assert result == ["st", "-f", "mono", "-e"]

    def test_terminal_env_not_installed_falls_through(self) -> None:
        result = find_terminal(None, environ={"TERMINAL": "nope"}, which=installed("konsole"))
        assert result == ["konsole", "-e"]

    def test_candidate_order(self) -> None:
        which = installed("xterm", "gnome-terminal")
        assert find_terminal(None, environ={}, which=which) == ["gnome-terminal", "--"]

    def test_none_installed(self) -> None:
        with pytest.raises(NoTerminalError) as exc_info:
            find_terminal(None, environ={}, which=installed())
        assert exc_info.value.code == ErrorCode.NO_TERMINAL


# ---------------------------------------------------------------------------
# Scope names
# ---------------------------------------------------------------------------


class TestScopeName:
    def test_format(self) -> None:
        name = scope_name("org.mozilla.firefox")
        prefix, _, suffix = name.rpartition("-")
        assert prefix == "app-menuindex-org.mozilla.firefox"
        assert len(suffix) == 8
        int(suffix, 16)

    def test_dash_is_escaped(self) -> None:
        assert scope_name("kde4-konsole").startswith("app-menuindex-kde4\\x2dkonsole-")

    def test_unique(self) -> None:
        assert scope_name("htop") != scope_name("htop")


# ---------------------------------------------------------------------------
# systemd-run session manager
# ---------------------------------------------------------------------------


class TestSystemdRunSessionManager:
    def test_command(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DISPLAY", ":1")
        monkeypatch.delenv("WAYLAND_DISPLAY", raising=False)
        manager = SystemdRunSessionManager("systemd-run", ["DISPLAY", "WAYLAND_DISPLAY"])
        assert manager.command("app-menuindex-x-1", ["x", "--y"], "/tmp") == [
            "systemd-run",
            "--user",
            "--quiet",
            "--collect",
            "--service-type=exec",
            "--unit=app-menuindex-x-1",
            "--working-directory=/tmp",
            "--setenv=DISPLAY=:1",
            "--",
            "x",
            "--y",
        ]

    async def test_missing_executable(self) -> None:
        manager = SystemdRunSessionManager("/nonexistent/systemd-run")
        with pytest.raises(ScopeUnavailableError):
            await manager.run_in_scope("app-menuindex-x-1", ["x"], None)

    @pytest.mark.skipif(shutil.which("false") is None, reason="needs false(1)")
    async def test_non_zero_exit(self) -> None:
        manager = SystemdRunSessionManager(shutil.which("false"))
        with pytest.raises(ScopeUnavailableError):
            await manager.run_in_scope("app-menuindex-x-1", ["x"], None)

    @pytest.mark.skipif(shutil.which("true") is None, reason="needs true(1)")
    async def test_success(self) -> None:
        manager = SystemdRunSessionManager(shutil.which("true"))
        await manager.run_in_scope("app-menuindex-x-1", ["x"], None)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class TestLaunchDispatcher:
    async def test_scoped_launch(self, index: AppIndex, spawner: FakeSpawner) -> None:
        manager = FakeSessionManager()
        outcome = await make_dispatcher(index, spawner, manager).launch("org.mozilla.firefox")
        assert outcome.scoped is True
        assert outcome.warning is None
        assert outcome.argv == ["firefox"]
        assert outcome.scope_name.startswith("app-menuindex-org.mozilla.firefox-")
        assert manager.calls == [(outcome.scope_name, ["firefox"], None)]
        assert spawner.calls == []

    async def test_working_directory(self, index: AppIndex, spawner: FakeSpawner) -> None:
        manager = FakeSessionManager()
        await make_dispatcher(index, spawner, manager).launch("editor")
        (_, argv, cwd) = manager.calls[0]
        assert argv == ["edit", "--new"]
        assert cwd == "/srv/docs"

    async def test_scope_failure_falls_back(self, index: AppIndex, spawner: FakeSpawner) -> None:
        manager = FakeSessionManager(error=ScopeUnavailableError("no user bus"))
        outcome = await make_dispatcher(index, spawner, manager).launch("org.mozilla.firefox")
        assert outcome.scoped is False
        assert outcome.warning is not None
        assert outcome.warning.code == ErrorCode.SCOPE_UNAVAILABLE
        assert spawner.calls == [(["firefox"], None)]

    async def test_scope_timeout_falls_back(self, index: AppIndex, spawner: FakeSpawner) -> None:
        manager = FakeSessionManager(delay=5)
        outcome = await make_dispatcher(index, spawner, manager).launch("org.mozilla.firefox")
        assert isinstance(outcome.warning, ScopeUnavailableError)
        assert spawner.calls == [(["firefox"], None)]

    async def test_os_error_falls_back(self, index: AppIndex, spawner: FakeSpawner) -> None:
        manager = FakeSessionManager(error=ConnectionRefusedError())
        outcome = await make_dispatcher(index, spawner, manager).launch("htop")
        assert isinstance(outcome.warning, ScopeUnavailableError)
        assert len(spawner.calls) == 1

    async def test_scopes_disabled(self, index: AppIndex, spawner: FakeSpawner) -> None:
        manager = FakeSessionManager()
        dispatcher = make_dispatcher(index, spawner, manager, use_scopes=False)
        outcome = await dispatcher.launch("org.mozilla.firefox")
        assert manager.calls == []
        assert outcome.warning is None
        assert spawner.calls == [(["firefox"], None)]

    async def test_terminal_entry(self, index: AppIndex, spawner: FakeSpawner) -> None:
        outcome = await make_dispatcher(index, spawner).launch("htop")
        assert outcome.argv == ["xterm", "-e", "htop"]

    async def test_configured_terminal(self, index: AppIndex, spawner: FakeSpawner) -> None:
        outcome = await make_dispatcher(index, spawner, terminal=["foot"]).launch("htop")
        assert outcome.argv == ["foot", "htop"]

    async def test_no_terminal(self, index: AppIndex, spawner: FakeSpawner) -> None:
        def no_terminal(configured: object) -> list[str]:
            raise NoTerminalError("no terminal emulator found")

        dispatcher = LaunchDispatcher(
            lambda: index, LaunchSettings(), spawner=spawner, terminal_finder=no_terminal
        )
        with pytest.raises(NoTerminalError):
            await dispatcher.launch("htop")
        assert spawner.calls == []

    async def test_unknown_identity(self, index: AppIndex, spawner: FakeSpawner) -> None:
        with pytest.raises(AppNotFoundError) as exc_info:
            await make_dispatcher(index, spawner).launch("org.example.Missing")
        assert exc_info.value.recoverable is True
        assert spawner.calls == []

    async def test_empty_command(self, spawner: FakeSpawner) -> None:
        entry = AppEntry(identity="empty", name="Empty", exec="%u")
        index = AppIndex(MappingProxyType({"empty": entry}))
        with pytest.raises(SpawnFailedError):
            await make_dispatcher(index, spawner).launch("empty")

    async def test_direct_spawn_missing_executable(self) -> None:
        entry = AppEntry(identity="ghost", name="Ghost", exec="/nonexistent/ghost")
        index = AppIndex(MappingProxyType({"ghost": entry}))
        dispatcher = LaunchDispatcher(lambda: index, LaunchSettings(use_scopes=False))
        with pytest.raises(SpawnFailedError):
            await dispatcher.launch("ghost")

    @pytest.mark.skipif(shutil.which("true") is None, reason="needs true(1)")
    async def test_direct_spawn(self) -> None:
        entry = AppEntry(identity="true", name="True", exec="true")
        index = AppIndex(MappingProxyType({"true": entry}))
        dispatcher = LaunchDispatcher(lambda: index, LaunchSettings(use_scopes=False))
        outcome = await dispatcher.launch("true")
        assert outcome.argv == ["true"]
        await dispatcher.aclose()
