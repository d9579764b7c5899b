"""Tests for window detection parsing, the clipboard tools and listener fan-out."""

import asyncio
import subprocess

from voice_overlay import clipboard, window_service
from voice_overlay.clipboard import SystemClipboard
from voice_overlay.models import Bounds, WindowInfo
from voice_overlay.overlay import CompositeListener, UIEvent
from voice_overlay.window_service import WindowService, parse_osascript_window, parse_xdotool_geometry


def test_xdotool_geometry():
    output = "WINDOW=6291463\nX=-10\nY=40\nWIDTH=1280\nHEIGHT=720\nSCREEN=0\n"
    assert parse_xdotool_geometry(output) == Bounds(-10, 40, 1280, 720)
    assert parse_xdotool_geometry("X=0\nY=0\n") is None
    assert parse_xdotool_geometry("X=0\nY=0\nWIDTH=0\nHEIGHT=10") is None


def test_osascript_window():
    info = parse_osascript_window("Terminal|zsh 80x24|0,25,800,600")
    assert info == WindowInfo(title="zsh 80x24", owner="Terminal", bounds=Bounds(0, 25, 800, 600))
    assert parse_osascript_window("Finder||0,0,0,0").bounds is None
    assert parse_osascript_window("") is None


def test_x11_detection(monkeypatch):
    replies = {
        "getactivewindow": "6291463",
        "getwindowname": "vim notes.md",
        "getwindowgeometry": "X=0\nY=0\nWIDTH=640\nHEIGHT=480",
    }

    def fake_run(args):
        if args[1] == "getwindowpid":
            raise subprocess.CalledProcessError(1, args)
        return replies[args[1]]

    monkeypatch.setattr(window_service, "_run", fake_run)
    info = asyncio.run(WindowService(platform="linux").get_active_window())
    assert info == WindowInfo(title="vim notes.md", owner="", bounds=Bounds(0, 0, 640, 480))


def test_detection_failure_returns_none(monkeypatch):
    def fake_run(args):
        raise subprocess.TimeoutExpired(args, 2)

    monkeypatch.setattr(window_service, "_run", fake_run)
    assert asyncio.run(WindowService(platform="linux").get_active_window()) is None
    assert asyncio.run(WindowService(platform="win32").get_active_window()) is None


class FakeProcess:
    def __init__(self, command, returncode, received):
        self.command = command
        self.returncode = returncode
        self.received = received

    def communicate(self, input=None, timeout=None):
        self.received.append((self.command[0], input))
        return b"", b""

    def kill(self):
        pass


def patch_popen(monkeypatch, installed):
    received = []

    def fake_popen(command, **kwargs):
        if command[0] not in installed:
            raise FileNotFoundError(command[0])
        return FakeProcess(command, installed[command[0]], received)

    monkeypatch.setattr(clipboard.subprocess, "Popen", fake_popen)
    return received


def test_clipboard_falls_through_missing_tools(monkeypatch):
    received = patch_popen(monkeypatch, {"xclip": 0})
    assert SystemClipboard().copy("ls -la")
    assert received == [("xclip", b"ls -la")]


def test_clipboard_failure_tries_next_tool(monkeypatch):
    received = patch_popen(monkeypatch, {"wl-copy": 1, "pbcopy": 0})
    assert SystemClipboard().copy("x")
    assert [name for name, _ in received] == ["wl-copy", "pbcopy"]


def test_clipboard_without_tools(monkeypatch):
    patch_popen(monkeypatch, {})
    assert not SystemClipboard().copy("x")
    assert not SystemClipboard().copy("")


def test_composite_listener_fans_out():
    seen = []

    class Listener:
        def __init__(self, name):
            self.name = name

        def handle(self, event, payload=None):
            seen.append((self.name, event, payload))

    composite = CompositeListener([Listener("a")])
    composite.add(Listener("b"))
    composite.handle(UIEvent.STREAMING_CHUNK, "Use")
    assert seen == [("a", UIEvent.STREAMING_CHUNK, "Use"), ("b", UIEvent.STREAMING_CHUNK, "Use")]
