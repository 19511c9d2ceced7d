import json
import logging
import re
import threading

from e2e_harness.log_sink import LogSink, LogSource, sanitize_test_name

LINE = re.compile(r"^\[(\d{4}-\d{2}-\d{2}T[^\]]+)\] \[(TEST|FRONTEND|BACKEND)\] (.*)$")


def test_sanitize_test_name():
    assert sanitize_test_name("tests/test_login.py::test_bad password") == "tests_test_login.py__test_bad_password"
    assert sanitize_test_name('a<b>c"d|e?f*g\\h') == "a_b_c_d_e_f_g_h"
    assert sanitize_test_name("   ") == "unnamed"
    assert len(sanitize_test_name("x" * 400)) == 150


def test_write_appends_timestamped_lines_per_source(tmp_path):
    sink = LogSink(tmp_path / "logs", "login / works")
    sink.test("Starting test")
    sink.backend("listening\n\ncompiled")
    sink.frontend("VITE ready")

    assert sink.path == tmp_path / "logs" / "login___works.log"
    lines = sink.path.read_text(encoding="utf-8").splitlines()
    parsed = [LINE.match(line).groups()[1:] for line in lines]
    assert parsed == [
        ("TEST", "Starting test"),
        ("BACKEND", "listening"),
        ("BACKEND", "compiled"),
        ("FRONTEND", "VITE ready"),
    ]


def test_write_accepts_source_names(tmp_path):
    sink = LogSink(tmp_path, "source names")
    sink.write("raw", "BACKEND")

    assert "[BACKEND] raw" in sink.path.read_text(encoding="utf-8")


def test_write_errors_are_swallowed(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file in the way")
    sink = LogSink(blocker, "unwritable")

    sink.test("this must not raise")
    sink.write_block("Test Result", {"outcome": "passed"})

    assert not sink.path.exists()


def test_records_are_mirrored_to_logging(tmp_path, caplog):
    sink = LogSink(tmp_path, "mirror")

    with caplog.at_level(logging.DEBUG, logger="e2e_harness.testlog"):
        sink.write("mirrored line", LogSource.FRONTEND)

    assert "[mirror] [FRONTEND] mirrored line" in caplog.text


def test_write_block_appends_json(tmp_path):
    sink = LogSink(tmp_path, "block")
    sink.test("before")
    sink.write_block("Test Result", {"outcome": "failed", "duration_ms": 12})

    text = sink.path.read_text(encoding="utf-8")
    head, block = text.split("=== Test Result ===\n")
    assert "before" in head
    assert json.loads(block) == {"outcome": "failed", "duration_ms": 12}


def test_concurrent_writers_do_not_interleave(tmp_path):
    sink = LogSink(tmp_path, "threads")

    def worker(n):
        for i in range(50):
            sink.backend(f"worker {n} line {i}")

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    lines = sink.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 200
    assert all(LINE.match(line) for line in lines)
