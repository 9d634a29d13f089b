"""Logging configuration for ledger processes.

Provides dual output (stdout + file) with configurable level via LOG_LEVEL env var.
Default: INFO. Set LOG_LEVEL=WARNING for production.

Money movements are logged at DEBUG by the component that makes them. To
trace them without turning on DEBUG for everything (SQL, retries, audit),
list the components in LEDGER_DEBUG, e.g. LEDGER_DEBUG=credit,reversal, or
LEDGER_DEBUG=all.
"""

import logging
import os
import sys
from pathlib import Path

# Map string level names to logging constants
LOG_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# LEDGER_DEBUG names and the loggers they switch to DEBUG
LEDGER_DEBUG_COMPONENTS = {
    "billing": "unitledger.services.billing_service",
    "credit": "unitledger.services.credit_service",
    "distribution": "unitledger.services.distribution_service",
    "ledger": "unitledger.services.ledger_service",
    "penalty": "unitledger.services.penalty_service",
    "period": "unitledger.services.period_ledger",
    "reversal": "unitledger.services.reversal_service",
    "store": "unitledger.services.document_store",
}


def get_log_level() -> int:
    """Get logging level from LOG_LEVEL environment variable.

    Returns:
        Logging level constant (default: INFO)
    """
    level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    return LOG_LEVEL_MAP.get(level_str, logging.INFO)


def get_debug_components() -> tuple[list[str], list[str]]:
    """Parse the LEDGER_DEBUG environment variable.

    Returns:
        (known component names, unknown names), each in the order given
    """
    raw = os.getenv("LEDGER_DEBUG", "")
    names = [name.strip().lower() for name in raw.split(",") if name.strip()]
    if "all" in names:
        known = list(LEDGER_DEBUG_COMPONENTS)
    else:
        known = [n for n in names if n in LEDGER_DEBUG_COMPONENTS]
    unknown = [n for n in names if n != "all" and n not in LEDGER_DEBUG_COMPONENTS]
    return known, unknown


def setup_ledger_logging(log_file: str = "logs/ledger.log") -> None:
    """
    Configure root logger for ledger commands.

    Args:
        log_file: Path to log file (default: logs/ledger.log)

    Behavior:
        - Every logger writes to stdout and to the log file
        - Existing root handlers are replaced, so repeated calls do not duplicate output
        - Components named in LEDGER_DEBUG log at DEBUG whatever LOG_LEVEL says;
          the others fall back to LOG_LEVEL
    """
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(
        fmt="[%(asctime)s] %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    log_level = get_log_level()
    debug_components, unknown = get_debug_components()
    handler_level = logging.DEBUG if debug_components else log_level

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(handler_level)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    file_handler = logging.FileHandler(log_path)
    file_handler.setLevel(handler_level)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    for name, logger_name in LEDGER_DEBUG_COMPONENTS.items():
        logging.getLogger(logger_name).setLevel(logging.DEBUG if name in debug_components else logging.NOTSET)

    if unknown:
        logging.getLogger(__name__).warning(
            "Ignoring unknown LEDGER_DEBUG component(s): %s (known: %s)",
            ", ".join(unknown),
            ", ".join(LEDGER_DEBUG_COMPONENTS),
        )


__all__ = ["LOG_LEVEL_MAP", "LEDGER_DEBUG_COMPONENTS", "get_log_level", "get_debug_components", "setup_ledger_logging"]
