import io
import logging
import datetime
import pathlib
import numpy as np
import pytest


LOG_DIR = pathlib.Path(__file__).parent / "test-logs"

# fitmesh loggers do not propagate to the root logger, so capture both
_CAPTURED = ("", "fitmesh")


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    # Attach the TestReport (with .outcome) to the item so fixtures can see the
    # outcome in teardown. Use a hookwrapper to get the report object.
    outcome = yield
    rep = outcome.get_result()
    setattr(item, "rep_" + rep.when, rep)


@pytest.fixture(autouse=True)
def capture_test_logs(request):
    """Capture logging for each test into an in-memory buffer and write it to
    a file only when the test fails.

    This keeps successful test runs quiet while preserving full debug logs for
    debugging failing tests.
    """
    buf = io.StringIO()
    handler = logging.StreamHandler(buf)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))

    saved = []
    for name in _CAPTURED:
        log = logging.getLogger(name)
        saved.append((log, list(log.handlers), log.level))
        for h in list(log.handlers):
            log.removeHandler(h)
        log.addHandler(handler)
        log.setLevel(logging.DEBUG)

    try:
        yield
    finally:
        # restore logger state first
        for log, handlers, level in saved:
            log.removeHandler(handler)
            log.setLevel(level)
            for h in handlers:
                log.addHandler(h)

        # Decide whether to persist logs: write only when the test call phase failed
        rep = getattr(request.node, "rep_call", None)
        if rep is not None and getattr(rep, "outcome", None) == "failed":
            LOG_DIR.mkdir(exist_ok=True)
            nodeid = request.node.nodeid.replace("::", "__").replace("/", "_")
            ts = datetime.datetime.now().strftime("%Y%m%dT%H%M%S")
            fname = LOG_DIR / ("{}__{}.log".format(nodeid, ts))
            with open(fname, "w", encoding="utf-8") as f:
                f.write("=== Test: {}\n".format(request.node.nodeid))
                f.write("=== Timestamp: {}\n\n".format(ts))
                f.write(buf.getvalue())


@pytest.fixture
def rng():
    """Seeded generator so perturbed coordinates are reproducible."""
    return np.random.default_rng(1234)
