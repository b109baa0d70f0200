import json
import socket
import tempfile
import threading
import time
import unittest
from pathlib import Path


class TestParseRequest(unittest.TestCase):
    def test_rejections(self) -> None:
        from pomo.daemon.server import parse_request

        for line, message in (
            (b"", "Empty request."),
            (b"   ", "Empty request."),
            (b"{nope", "Invalid JSON request."),
            (b"[1, 2]", "Invalid JSON request."),
            (b'{"Options": 5}', "Invalid JSON request."),
            (b"{}", "Missing command."),
            (b'{"Command": "  "}', "Missing command."),
            (b'{"Command": null}', "Missing command."),
        ):
            req, early = parse_request(line)
            self.assertIsNone(req, line)
            self.assertFalse(early.ok)
            self.assertEqual(early.message, message, line)

    def test_wire_names_are_pascal_case(self) -> None:
        from pomo.daemon.server import parse_request

        req, early = parse_request(b'{"Command": "start", "Options": {"--work": "1", "--force": null}, "Extra": 1}')
        self.assertIsNone(early)
        self.assertEqual(req.command, "start")
        self.assertEqual(req.option("--work"), "1")
        self.assertTrue(req.has_option("--force"))
        self.assertFalse(req.has_option("--cycles"))
        self.assertEqual(req.to_wire()["Command"], "start")


class ResidentHarness:
    """A real resident (service + control loop + IPC server) on a temp socket."""

    def __init__(self, home: Path, *, handler=None, execute_timeout_s: float = 2.0) -> None:
        from pomo.daemon.loop import ControlLoop
        from pomo.daemon.notify import LoggingNotifier
        from pomo.daemon.resident import PomodoroService
        from pomo.daemon.server import DaemonPaths, IpcServer
        from pomo.kernel.store import Store

        self.paths = DaemonPaths(home=home)
        self.store = Store(home)
        self.service = PomodoroService(self.store, notifier=LoggingNotifier())
        self.loop = ControlLoop(tick=self.service.tick, interval_s=0.2)
        self.server = IpcServer(
            self.paths.sock_path,
            loop=self.loop,
            handler=handler or self.service.handle_request,
            execute_timeout_s=execute_timeout_s,
        )
        self._threads = [
            threading.Thread(target=self.loop.run, daemon=True),
            threading.Thread(target=self.server.serve_forever, daemon=True),
        ]

    def start(self) -> None:
        for t in self._threads:
            t.start()

    def __enter__(self) -> "ResidentHarness":
        self.start()
        if not self.server.wait_ready(5.0):
            raise RuntimeError("ipc server did not start")
        return self

    def __exit__(self, *exc) -> None:
        self.server.stop()
        self.loop.stop()
        for t in self._threads:
            t.join(timeout=5.0)


class TestIpcRoundTrip(unittest.TestCase):
    def setUp(self) -> None:
        # AF_UNIX paths are short; keep the temp dir shallow.
        self._td = tempfile.TemporaryDirectory(prefix="pomo-", dir="/tmp")
        self.addCleanup(self._td.cleanup)
        self.home = Path(self._td.name)

    def _raw(self, paths, payload: bytes) -> dict:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as s:
            s.settimeout(5.0)
            s.connect(str(paths.sock_path))
            s.sendall(payload)
            buf = b""
            while b"\n" not in buf:
                chunk = s.recv(4096)
                if not chunk:
                    break
                buf += chunk
        return json.loads(buf.decode("utf-8"))

    def test_not_running_is_none(self) -> None:
        from pomo.contracts.v1 import IpcRequest
        from pomo.daemon.server import DaemonPaths, send_request, try_send

        paths = DaemonPaths(home=self.home)
        self.assertIsNone(send_request(IpcRequest(command="ping"), paths=paths))
        ok, resp = try_send(IpcRequest(command="ping"), paths=paths)
        self.assertFalse(ok)
        self.assertEqual(resp.message, "Not running.")

    def test_start_with_options_reaches_the_store(self) -> None:
        from pomo.contracts.v1 import IpcRequest
        from pomo.daemon.server import send_request

        with ResidentHarness(self.home) as r:
            resp = send_request(IpcRequest(command="ping"), paths=r.paths)
            self.assertTrue(resp.ok)
            self.assertEqual(resp.message, "pong")

            resp = send_request(IpcRequest(command="start", options={"--work": "1"}), paths=r.paths)
            self.assertTrue(resp.ok, resp.message)
            self.assertEqual(r.store.try_load_state().work_seconds, 60)

            resp = send_request(IpcRequest(command="status"), paths=r.paths)
            self.assertTrue(resp.ok)
            self.assertEqual(json.loads(resp.payload)["state"]["WorkSeconds"], 60)

            resp = send_request(IpcRequest(command="start"), paths=r.paths)
            self.assertFalse(resp.ok)

    def test_protocol_errors_get_a_response(self) -> None:
        with ResidentHarness(self.home) as r:
            self.assertEqual(self._raw(r.paths, b"this is not json\n")["Message"], "Invalid JSON request.")
            self.assertEqual(self._raw(r.paths, b'{"Options": {}}\n')["Message"], "Missing command.")

            doc = self._raw(r.paths, b'{"Command": "fly"}\n')
            self.assertEqual(doc, {"Ok": False, "Message": "Unknown IPC command: fly", "Payload": None})

            # The server keeps serving after bad input.
            self.assertTrue(self._raw(r.paths, b'{"Command": "ping"}\n')["Ok"])

    def test_slow_command_times_out(self) -> None:
        from pomo.contracts.v1 import IpcRequest, IpcResponse
        from pomo.daemon.server import send_request

        def slow(req):
            time.sleep(0.5)
            return IpcResponse(ok=True, message="late"), False

        with ResidentHarness(self.home, handler=slow, execute_timeout_s=0.1) as r:
            resp = send_request(IpcRequest(command="ping"), paths=r.paths)
            self.assertFalse(resp.ok)
            self.assertEqual(resp.message, "Pomodoro command timed out.")

    def test_command_exception_becomes_failed_response(self) -> None:
        from pomo.contracts.v1 import IpcRequest
        from pomo.daemon.server import send_request

        def broken(req):
            raise RuntimeError("disk full")

        with ResidentHarness(self.home, handler=broken) as r:
            resp = send_request(IpcRequest(command="start"), paths=r.paths)
            self.assertFalse(resp.ok)
            self.assertEqual(resp.message, "disk full")
            # The loop survives and keeps executing commands.
            self.assertTrue(r.loop.call(lambda: True, timeout_s=2.0))

    def test_server_rebinds_when_socket_file_is_removed(self) -> None:
        from pomo.contracts.v1 import IpcRequest
        from pomo.daemon.server import send_request

        with ResidentHarness(self.home) as r:
            self.assertTrue(send_request(IpcRequest(command="ping"), paths=r.paths).ok)
            r.paths.sock_path.unlink()

            resp = None
            deadline = time.monotonic() + 5.0
            while resp is None and time.monotonic() < deadline:
                time.sleep(0.1)
                resp = send_request(IpcRequest(command="ping"), paths=r.paths)
            self.assertIsNotNone(resp)
            self.assertEqual(resp.message, "pong")
            self.assertTrue(r.paths.sock_path.exists())

    def test_bind_failure_is_retried_after_backoff(self) -> None:
        from pomo.contracts.v1 import IpcRequest
        from pomo.daemon.server import send_request

        r = ResidentHarness(self.home)
        # A plain file where the socket directory belongs makes every bind fail.
        r.paths.daemon_dir.write_text("", encoding="utf-8")
        r.start()
        try:
            self.assertFalse(r.server.wait_ready(0.6))
            r.paths.daemon_dir.unlink()
            self.assertTrue(r.server.wait_ready(5.0))
            self.assertEqual(send_request(IpcRequest(command="ping"), paths=r.paths).message, "pong")
        finally:
            r.__exit__(None, None, None)

    def test_exit_stops_server_and_loop(self) -> None:
        from pomo.contracts.v1 import IpcRequest
        from pomo.daemon.server import send_request

        with ResidentHarness(self.home) as r:
            resp = send_request(IpcRequest(command="exit"), paths=r.paths)
            self.assertTrue(resp.ok)
            deadline = time.monotonic() + 5.0
            while r.paths.sock_path.exists() and time.monotonic() < deadline:
                time.sleep(0.05)
            self.assertFalse(r.paths.sock_path.exists())
            self.assertTrue(r.loop.stopped)
            self.assertIsNone(send_request(IpcRequest(command="ping"), paths=r.paths))


class TestClientReplies(unittest.TestCase):
    """The client against a bare socket that answers with a canned reply."""

    def setUp(self) -> None:
        from pomo.daemon.server import DaemonPaths

        self._td = tempfile.TemporaryDirectory(prefix="pomo-", dir="/tmp")
        self.addCleanup(self._td.cleanup)
        self.paths = DaemonPaths(home=Path(self._td.name))
        self.paths.daemon_dir.mkdir(parents=True)

    def _reply_with(self, reply: bytes):
        from pomo.contracts.v1 import IpcRequest
        from pomo.daemon.server import send_request

        listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        listener.bind(str(self.paths.sock_path))
        listener.listen(1)
        received = []

        def serve() -> None:
            conn, _ = listener.accept()
            with conn:
                received.append(conn.recv(65536))
                if reply:
                    conn.sendall(reply)

        t = threading.Thread(target=serve, daemon=True)
        t.start()
        try:
            resp = send_request(IpcRequest(command="status"), paths=self.paths)
        finally:
            t.join(timeout=5.0)
            listener.close()
            self.paths.sock_path.unlink()
        self.assertEqual(json.loads(received[0].decode("utf-8"))["Command"], "status")
        return resp

    def test_blank_reply(self) -> None:
        self.assertEqual(self._reply_with(b"\n").message, "No response.")

    def test_closed_without_reply(self) -> None:
        resp = self._reply_with(b"")
        self.assertFalse(resp.ok)
        self.assertEqual(resp.message, "No response.")

    def test_garbage_reply(self) -> None:
        resp = self._reply_with(b"garbage\n")
        self.assertFalse(resp.ok)
        self.assertEqual(resp.message, "Invalid response.")

    def test_reply_missing_ok_flag(self) -> None:
        self.assertEqual(self._reply_with(b'{"Message": "x"}\n').message, "Invalid response.")

    def test_valid_reply(self) -> None:
        resp = self._reply_with(b'{"Ok": true, "Message": "Work 1/4 - 10:00 left", "Payload": null}\n')
        self.assertTrue(resp.ok)
        self.assertEqual(resp.message, "Work 1/4 - 10:00 left")


class TestControlLoop(unittest.TestCase):
    def test_posted_work_runs_on_loop_thread(self) -> None:
        from pomo.daemon.loop import ControlLoop

        loop = ControlLoop(interval_s=0.05)
        t = threading.Thread(target=loop.run, daemon=True)
        t.start()
        try:
            name = loop.call(lambda: threading.current_thread().name, timeout_s=2.0)
            self.assertEqual(name, t.name)
            with self.assertRaises(ZeroDivisionError):
                loop.call(lambda: 1 / 0, timeout_s=2.0)
        finally:
            loop.stop()
            t.join(timeout=2.0)

    def test_stop_cancels_pending_work(self) -> None:
        from pomo.daemon.loop import ControlLoop

        loop = ControlLoop(interval_s=0.05)
        loop.stop()
        fut = loop.post(lambda: 1)
        loop.run()
        self.assertTrue(fut.cancelled())

    def test_tick_failures_are_contained(self) -> None:
        from pomo.daemon.loop import ControlLoop

        calls = []

        def tick():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")

        loop = ControlLoop(tick=tick, interval_s=0.05)
        t = threading.Thread(target=loop.run, daemon=True)
        t.start()
        deadline = time.monotonic() + 5.0
        while len(calls) < 3 and time.monotonic() < deadline:
            time.sleep(0.02)
        loop.stop()
        t.join(timeout=2.0)
        self.assertGreaterEqual(len(calls), 3)


if __name__ == "__main__":
    unittest.main()
