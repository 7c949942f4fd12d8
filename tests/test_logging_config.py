import logging

import pytest

from shesim.logging_config import setup_logging


@pytest.fixture
def restore_logging():
    names = ("shesim", "shesim.operators", "py.warnings", "matplotlib")
    saved = {
        n: (logging.getLogger(n).level, logging.getLogger(n).propagate, list(logging.getLogger(n).handlers))
        for n in names
    }
    yield
    logging.captureWarnings(False)
    for n, (level, propagate, handlers) in saved.items():
        lg = logging.getLogger(n)
        for h in list(lg.handlers):
            lg.removeHandler(h)
            h.close()
        for h in handlers:
            lg.addHandler(h)
        lg.setLevel(level)
        lg.propagate = propagate


def test_repeated_setup_does_not_duplicate_handlers(restore_logging, tmp_path):
    setup_logging(logging.INFO)
    logger = setup_logging(logging.INFO, log_file=str(tmp_path / "run.log"))
    assert len(logger.handlers) == 2
    assert len(logging.getLogger("py.warnings").handlers) == 2
    assert logging.getLogger("py.warnings").handlers == logger.handlers


def test_solver_debug_is_opt_in(restore_logging):
    setup_logging(logging.DEBUG)
    assert logging.getLogger("shesim.operators").level == logging.INFO
    setup_logging(logging.DEBUG, solver_level=logging.DEBUG)
    assert logging.getLogger("shesim.operators").level == logging.DEBUG


def test_iterations_reach_the_log_file(restore_logging, tmp_path):
    path = tmp_path / "run.log"
    setup_logging(logging.INFO, log_file=str(path))
    logging.getLogger("shesim.algorithm.gummel").info("Gummel iteration   1: residual = 1.000e-03")
    for h in logging.getLogger("shesim").handlers:
        h.flush()

    text = path.read_text(encoding="utf-8")
    assert "shesim.algorithm.gummel - INFO - Gummel iteration" in text
