"""Logging adapter handed to the backup engine."""

import logging


class EngineLogger:
    """
    Operator log for the backup engine.

    ``log`` is for expected events (skips, progress), ``log_error`` for
    failures and records the full traceback.
    """

    def __init__(self, logger: logging.Logger = None):
        self.logger = logger or logging.getLogger('serverbackup.backup')

    def log(self, message: str):
        self.logger.info(message)

    def log_error(self, error: BaseException, message: str = None):
        self.logger.error(message or f"Backup error: {error}", exc_info=error)
