import io
import time

import pytest

from tailf.decoder import StreamDecoder
from tailf.events import TargetFile
from tailf.position import PositionStore
from tailf.session import SessionState, TailSession


@pytest.fixture
def wait_until():
    """Poll a predicate until it holds or the timeout expires. Returns the last result."""
    def _wait(predicate, timeout: float = 3.0, interval: float = 0.02) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()
    return _wait


@pytest.fixture
def log_file(tmp_path):
    f = tmp_path / "app.log"
    f.write_bytes(b"")
    return f


@pytest.fixture
def start_session(wait_until):
    """Build a session, run it on a thread, and always shut it down after the test."""
    started: list[TailSession] = []

    def _start(path, sink=None, source_charset="utf-8", dest_charset="utf-8",
               position_file=None, reset=False, buffer_size=1024 * 1024):
        sink = sink if sink is not None else io.BytesIO()
        store = PositionStore(str(position_file), reset=reset) if position_file else PositionStore()
        session = TailSession(
            TargetFile(str(path)), sink,
            StreamDecoder(source_charset, dest_charset, buffer_size), store,
        )
        session.start()
        started.append(session)
        # First pass runs right away; wait until the loop is parked again
        assert wait_until(lambda: session.state is SessionState.SUSPENDED)
        return session, sink

    yield _start

    for session in started:
        session.shutdown()
        session.join(timeout=2)
