"""
Logging setup for simulation scripts.

Library modules only create loggers via logging.getLogger(__name__) under the
'shesim' namespace; experiments/ call setup_logging() once at start-up.

What a run logs:
  - shesim.algorithm.gummel: one INFO line per Gummel iteration and the final state
  - shesim.operators.*: per-solve DEBUG lines (sizes, linear residuals), and
    warnings such as skipped inelastic SHE coupling or unknown solver options
  - py.warnings: scipy's SparseEfficiencyWarning / MatrixRankWarning from
    spsolve, routed through logging so they land next to the iteration that
    caused them
"""
import logging
import sys
from typing import Optional

FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATEFMT = "%H:%M:%S"


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    *,
    solver_level: Optional[int] = None,
) -> logging.Logger:
    """
    Attach console (and optional file) handlers to the 'shesim' logger.

    Args:
        level: Level of the 'shesim' namespace (e.g. logging.INFO shows the
            Gummel residual history).
        log_file: Optional path; the file is overwritten on every run.
        solver_level: Separate level for 'shesim.operators'. The sparse and
            SHE solves log at DEBUG once per carrier and iteration, which
            drowns the iteration history; pass logging.DEBUG to see them.
            Defaults to max(level, logging.INFO).

    Returns the configured 'shesim' logger. Calling it again replaces the
    handlers instead of duplicating them.
    """
    logger = logging.getLogger("shesim")
    logger.setLevel(level)
    logger.propagate = False

    logging.getLogger("shesim.operators").setLevel(
        max(level, logging.INFO) if solver_level is None else solver_level
    )

    formatter = logging.Formatter(FORMAT, datefmt=DATEFMT)
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="w", encoding="utf-8"))

    warnings_logger = logging.getLogger("py.warnings")
    for lg in (logger, warnings_logger):
        for h in list(lg.handlers):
            lg.removeHandler(h)
            h.close()

    for h in handlers:
        h.setFormatter(formatter)
        logger.addHandler(h)
        warnings_logger.addHandler(h)
    logging.captureWarnings(True)

    # matplotlib's font manager is chatty at DEBUG
    logging.getLogger("matplotlib").setLevel(max(level, logging.WARNING))

    logger.debug("logging to %s", log_file or "stdout")
    return logger
