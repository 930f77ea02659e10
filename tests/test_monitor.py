import io
import random

import monitor
from conftest import FakeNotifier, FakeProcess
from monitor import (
    INITIALIZING,
    BuildMonitor,
    ProgressSnapshot,
    build_succeeded,
    fetch_progress,
    tail,
)


def _monitor(session, notifier, log_path, sleeps=None):
    return BuildMonitor(
        session,
        notifier,
        str(log_path),
        interval=120,
        sleep=(sleeps.append if sleeps is not None else lambda s: None),
        rng=random.Random(1),
        out=io.StringIO(),
    )


def test_fetch_progress_takes_last_marker(tmp_path):
    log = tmp_path / "build.log"
    log.write_text("[ 45% 120/260] target foo\n[ 46% 122/260] target bar\n")

    progress = fetch_progress(str(log))

    assert progress == ProgressSnapshot(46, 122, 260)
    assert str(progress) == "46% (122/260)"


def test_fetch_progress_last_match_on_a_line_wins(tmp_path):
    log = tmp_path / "build.log"
    log.write_text("[ 10% 1/10] outer 99% 9/10 inner\n")

    assert str(fetch_progress(str(log))) == "99% (9/10)"


def test_fetch_progress_only_reads_last_30_lines(tmp_path):
    log = tmp_path / "build.log"
    lines = ["[ 12% 12/100] early\n"] + ["noise\n"] * 30
    log.write_text("".join(lines))

    assert fetch_progress(str(log)) == INITIALIZING


def test_fetch_progress_marker_inside_window(tmp_path):
    log = tmp_path / "build.log"
    lines = ["[ 12% 12/100] early\n"] + ["noise\n"] * 29
    log.write_text("".join(lines))

    assert str(fetch_progress(str(log))) == "12% (12/100)"


def test_fetch_progress_missing_or_empty_log(tmp_path):
    assert fetch_progress(str(tmp_path / "nope.log")) == INITIALIZING

    empty = tmp_path / "empty.log"
    empty.write_text("")
    assert fetch_progress(str(empty)) == INITIALIZING


def test_fetch_progress_ignores_incomplete_marker(tmp_path):
    log = tmp_path / "build.log"
    log.write_text("[ 46% 122/")

    assert fetch_progress(str(log)) == INITIALIZING


def test_build_succeeded_is_substring_test(tmp_path):
    ok = tmp_path / "ok.log"
    ok.write_text("junk\n[100% 9/9] done\n#### build completed successfully (01:02:03) ####\n")
    bad = tmp_path / "bad.log"
    bad.write_text("[ 99% 259/260] almost\nFAILED: something\n")

    assert build_succeeded(str(ok))
    assert not build_succeeded(str(bad))
    assert not build_succeeded(str(tmp_path / "missing.log"))


def test_unchanged_snapshot_edits_once(tmp_path, session, notifier):
    log = tmp_path / "build.log"
    log.write_text("[ 46% 122/260] x\n")
    mon = _monitor(session, notifier, log)

    assert mon.poll() is True
    assert mon.poll() is False
    assert len(notifier.captions) == 1
    msg_id, caption = notifier.captions[0]
    assert msg_id == 42
    assert "46% (122/260)" in caption
    for part in ("LineageOS", "lavender", "14", "Unofficial"):
        assert part in caption


def test_initializing_never_edits(tmp_path, session, notifier):
    mon = _monitor(session, notifier, tmp_path / "build.log")

    assert mon.poll() is False
    assert mon.poll() is False
    assert notifier.captions == []
    assert "Initializing..." in mon.out.getvalue()


def test_each_transition_edits_once(tmp_path, session, notifier):
    log = tmp_path / "build.log"
    mon = _monitor(session, notifier, log)

    mon.poll()
    log.write_text("[  1% 1/100] a\n")
    mon.poll()
    log.write_text("[  1% 1/100] a\n[  2% 2/100] b\n")
    mon.poll()
    mon.poll()

    assert len(notifier.captions) == 2
    assert "1% (1/100)" in notifier.captions[0][1]
    assert "2% (2/100)" in notifier.captions[-1][1]


def test_console_mirrors_every_poll(tmp_path, session, notifier):
    log = tmp_path / "build.log"
    log.write_text("[ 46% 122/260] x\n")
    mon = _monitor(session, notifier, log)

    mon.poll()
    mon.poll()

    assert mon.out.getvalue().count("Build progress: 46% (122/260)\r") == 2


def test_failed_edit_does_not_stop_polling(tmp_path, session):
    notifier = FakeNotifier(fail_edits=True)
    log = tmp_path / "build.log"
    log.write_text("[ 46% 122/260] x\n")
    mon = _monitor(session, notifier, log)

    assert mon.poll() is True
    assert mon.poll() is False
    assert mon.last_reported == ProgressSnapshot(46, 122, 260)


def test_run_polls_until_process_exits(tmp_path, session, notifier):
    log = tmp_path / "build.log"
    contents = iter(
        [
            "starting\n",
            "[ 10% 10/100] a\n",
            "[ 10% 10/100] a\n",
            "[ 50% 50/100] b\n",
        ]
    )
    process = FakeProcess(4, code=3, on_poll=lambda: log.write_text(next(contents)))
    sleeps = []
    mon = _monitor(session, notifier, log, sleeps)

    code = mon.run(process)

    assert code == 3
    assert process.waited
    assert sleeps == [120] * 4
    assert len(notifier.captions) == 2
    assert "10% (10/100)" in notifier.captions[0][1]
    assert "50% (50/100)" in notifier.captions[1][1]


def test_run_with_finished_process_never_polls_log(tmp_path, session, notifier):
    sleeps = []
    mon = _monitor(session, notifier, tmp_path / "build.log", sleeps)

    assert mon.run(FakeProcess(0, code=0)) == 0
    assert sleeps == []
    assert notifier.captions == []


class _CountingFile:
    def __init__(self, f, counter):
        self.f = f
        self.counter = counter

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.f.close()

    def seek(self, *args):
        return self.f.seek(*args)

    def read(self, size=-1):
        data = self.f.read(size)
        self.counter.append(len(data))
        return data


def test_fetch_progress_reads_only_the_tail(tmp_path, monkeypatch):
    log = tmp_path / "build.log"
    with open(log, "w") as f:
        f.write("noise\n" * 200000)
        f.write("[ 46% 122/260] target\n")
    reads = []
    real_open = open
    monkeypatch.setattr(
        monitor,
        "open",
        lambda path, mode="r", **kw: _CountingFile(real_open(path, mode, **kw), reads),
        raising=False,
    )

    assert str(fetch_progress(str(log))) == "46% (122/260)"
    assert sum(reads) <= 8192
    assert log.stat().st_size > 1000000


def test_tail_drops_cut_first_line(tmp_path):
    log = tmp_path / "build.log"
    log.write_text("x" * 5000 + " 12% 1/9\n" + "".join(f"line {i}\n" for i in range(40)))

    lines = tail(str(log), 30, block=64)

    assert len(lines) == 30
    assert lines[0] == "line 10"
    assert lines[-1] == "line 39"


def test_tail_short_file_without_trailing_newline(tmp_path):
    log = tmp_path / "build.log"
    log.write_text("a\nb\n[ 46% 122/260] c")

    assert tail(str(log)) == ["a", "b", "[ 46% 122/260] c"]


def test_snapshot_keeps_raw_marker():
    assert ProgressSnapshot(46, 122, 260).raw == "46% 122/260"
