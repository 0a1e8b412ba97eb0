"""Process exit statuses for `graceserve serve`.

0 is a clean shutdown, 1-9 are generic failures, 10-19 mean the
configuration was rejected before anything started, and 40-49 are
server start/stop failures.
"""

from enum import IntEnum


class ExitCode(IntEnum):
    SUCCESS = 0

    GENERAL_ERROR = 1  # any other ServerError, e.g. a failed force close
    INTERRUPTED = 2  # Ctrl+C before the server was up

    CONFIG_ERROR = 11

    START_FAILED = 40  # bind failure or address in use
    STOP_FAILED = 41  # grace period ran out
