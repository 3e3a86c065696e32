"""Adversarial tests — extensions that crash, hang, lie, or change on disk.

An extension is untrusted code in its own process.  Whatever it does,
the core gets an ExtensionError for that ecosystem and carries on.
"""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from vouchsafe.extensions.protocol import ExtensionError
from vouchsafe.extensions.registry import ExtensionRegistry

_HANDSHAKE_REPLY = """
import sys
from vouchsafe.extensions.protocol import read_frame, write_frame

read_frame(sys.stdin.buffer)
write_frame(sys.stdout.buffer, {reply!r})
sys.stdin.buffer.read()
"""


def _registry(tmp_dir: Path, timeout: float = 15.0) -> ExtensionRegistry:
    return ExtensionRegistry(tmp_dir / "extensions.json", bin_dir=tmp_dir / "bin", timeout=timeout)


@pytest.fixture
def project(tmp_dir: Path) -> Path:
    root = tmp_dir / "project"
    root.mkdir()
    return root


class TestMisbehavingHandshake:
    def test_crash_on_start(self, tmp_dir, write_raw_script):
        script = write_raw_script("crash", """
            import sys
            sys.stderr.write("fatal: cannot start\\n")
            sys.exit(3)
        """)
        with pytest.raises(ExtensionError):
            _registry(tmp_dir).add(str(script))

    def test_hang_times_out(self, tmp_dir, write_raw_script):
        script = write_raw_script("hang", """
            import time
            time.sleep(120)
        """)
        started = time.monotonic()
        with pytest.raises(ExtensionError, match="Timed out"):
            _registry(tmp_dir, timeout=1.0).add(str(script))
        assert time.monotonic() - started < 30

    @pytest.mark.parametrize("garbage", [
        b"\x00\x00\x00\x05hello",
        b"Hello from a chatty script\n",
    ])
    def test_non_protocol_output(self, tmp_dir, write_raw_script, garbage):
        script = write_raw_script("chatty", f"""
            import sys
            sys.stdout.buffer.write({garbage!r})
            sys.stdout.buffer.flush()
            sys.stdin.buffer.read()
        """)
        with pytest.raises(ExtensionError):
            _registry(tmp_dir).add(str(script))

    @pytest.mark.parametrize("reply, message", [
        ({"type": "handshake", "protocol_version": 99, "ecosystem_id": "demo",
          "capabilities": ["discover"]}, "version mismatch"),
        ({"type": "handshake", "protocol_version": 1, "ecosystem_id": "demo",
          "capabilities": ["describe"]}, "lacks"),
        ({"type": "handshake", "protocol_version": 1, "ecosystem_id": "Bad Id!",
          "capabilities": ["discover"]}, "Invalid handshake"),
        ({"type": "response", "id": 1, "result": {}}, "Invalid handshake"),
    ])
    def test_bad_handshake_replies(self, tmp_dir, write_raw_script, reply, message):
        script = write_raw_script("liar", _HANDSHAKE_REPLY.format(reply=reply))
        registry = _registry(tmp_dir)
        with pytest.raises(ExtensionError, match=message):
            registry.add(str(script))
        assert registry.list_entries() == []


class TestMisbehavingCalls:
    def test_hang_during_discover(self, tmp_dir, write_extension, project):
        script = write_extension("slow", body="""
            def discover(self, root):
                import time
                time.sleep(120)
                return []
        """)
        _registry(tmp_dir).add(str(script))

        registry = _registry(tmp_dir, timeout=5.0)
        started = time.monotonic()
        outcome = registry.discover_all(project)

        assert outcome.packages == {}
        assert "Timed out" in outcome.failures[0].reason
        assert time.monotonic() - started < 60

    def test_extension_dying_mid_call(self, tmp_dir, write_extension, project):
        script = write_extension("dies", body="""
            def discover(self, root):
                import os
                os._exit(9)
        """)
        registry = _registry(tmp_dir)
        registry.add(str(script))
        with pytest.raises(ExtensionError, match="exited early"):
            registry.discover("demo", project)

    def test_cancel_all_kills_running_extensions(self, tmp_dir, write_extension, project):
        script = write_extension("slow", body="""
            def discover(self, root):
                import time
                time.sleep(120)
                return []
        """)
        registry = _registry(tmp_dir, timeout=60.0)
        registry.add(str(script))

        errors: list[BaseException] = []

        def run() -> None:
            try:
                registry.discover("demo", project)
            except ExtensionError as exc:
                errors.append(exc)

        worker = threading.Thread(target=run)
        worker.start()
        deadline = time.monotonic() + 20
        while not registry._live and time.monotonic() < deadline:
            time.sleep(0.05)
        registry.cancel_all()
        worker.join(timeout=20)

        assert not worker.is_alive()
        assert len(errors) == 1


class TestExecutablePinning:
    def test_modified_executable_refused(self, tmp_dir, write_extension, project):
        script = write_extension("pinned")
        registry = _registry(tmp_dir)
        registry.add(str(script))

        with script.open("a", encoding="utf-8") as fh:
            fh.write("\n# injected\n")

        with pytest.raises(ExtensionError, match="changed since install"):
            registry.discover("demo", project)

    def test_deleted_executable_refused(self, tmp_dir, write_extension, project):
        script = write_extension("pinned")
        registry = _registry(tmp_dir)
        registry.add(str(script))
        script.unlink()

        with pytest.raises(ExtensionError, match="unreadable"):
            registry.discover("demo", project)

    def test_other_ecosystems_unaffected(self, tmp_dir, write_extension, project):
        registry = _registry(tmp_dir)
        good = write_extension("good", ecosystem="good")
        bad = write_extension("bad", ecosystem="bad")
        registry.add(str(good))
        registry.add(str(bad))
        bad.write_text("raise SystemExit(1)\n", encoding="utf-8")

        outcome = registry.discover_all(project)

        assert list(outcome.packages) == ["good"]
        assert [f.ecosystem_id for f in outcome.failures] == ["bad"]
