"""
Logging utilities for the snapshot deadlock detection system.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, Union
import json


class DeadlockLogger:
    """
    Specialized logger for deadlock detection system with structured output.
    """

    def __init__(self, name: str = "snapshot_deadlock", level: Optional[int] = logging.INFO,
                 log_dir: Optional[Union[str, Path]] = None):
        self.logger = logging.getLogger(name)
        if level is not None:
            self.logger.setLevel(level)

        # Child loggers propagate to the package logger's handlers
        if '.' not in name and not self.logger.handlers:
            self._setup_handlers(log_dir)

    def _setup_handlers(self, log_dir: Optional[Union[str, Path]]):
        """Set up a console handler, plus a file handler when a log directory is given."""
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%H:%M:%S'
        ))
        self.logger.addHandler(console_handler)

        if log_dir is not None:
            self.add_file_handler(log_dir)

    def add_file_handler(self, log_dir: Union[str, Path]):
        """Attach a daily log file handler for detailed logs."""
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(
            log_path / f"deadlock_detection_{datetime.now().strftime('%Y%m%d')}.log"
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s'
        ))
        self.logger.addHandler(file_handler)

    def log_detection_start(self, strategy_name: str, config: Dict[str, Any]):
        """Log the start of deadlock detection."""
        self.logger.info(f"Starting deadlock detection with strategy: {strategy_name}")
        self.logger.debug(f"Detection configuration: {json.dumps(config, indent=2, default=str)}")

    def log_candidate(self, candidate: 'DeadlockCandidate'):
        """Log a deadlock candidate with structured information."""
        self.logger.info(
            f"Deadlock candidate #{candidate.id}: {candidate.title} "
            f"[Severity: {candidate.severity.name}, score {candidate.score:.1f}]"
        )
        if candidate.cross_process:
            self.logger.info("Candidate spans multiple processes")
        self.logger.debug(f"Cycle path: {' -> '.join(node.label for node in candidate.cycle_path)}")

    def log_root_cause(self, summary: 'RootCauseSummary'):
        self.logger.info(
            f"Root cause {summary.owner}: {summary.blocked_group_count} blocked group(s), "
            f"{summary.total_edge_count} edge(s), worst wait {summary.worst_wait_secs:.2f}s "
            f"[Severity: {summary.severity.name}]"
        )

    def log_strategy_execution(self, strategy_name: str, execution_time: float, nodes_analyzed: int):
        """Log strategy execution metrics."""
        self.logger.info(
            f"Strategy '{strategy_name}' completed in {execution_time:.3f}s "
            f"(analyzed {nodes_analyzed} entities)"
        )

    def log_error(self, error: Exception, context: Optional[str] = None):
        """Log errors with context information."""
        context_msg = f" in {context}" if context else ""
        self.logger.error(f"Error occurred{context_msg}: {str(error)}", exc_info=True)

    def log_warning(self, message: str, details: Optional[Dict[str, Any]] = None):
        """Log warnings with optional details."""
        self.logger.warning(message)
        if details:
            self.logger.debug(f"Warning details: {json.dumps(details, indent=2, default=str)}")

    def set_level(self, level: int):
        """Set logging level."""
        self.logger.setLevel(level)
        for handler in self.logger.handlers:
            handler.setLevel(level)


# Global logger instance
logger = DeadlockLogger()


def get_logger(name: Optional[str] = None, log_dir: Optional[Union[str, Path]] = None) -> DeadlockLogger:
    """
    Get a logger instance for the deadlock detection system.

    Args:
        name: Optional name for the logger. If None, returns the global logger.
        log_dir: Optional directory for a daily log file.

    Returns:
        DeadlockLogger instance
    """
    if log_dir is not None:
        logger.add_file_handler(log_dir)
    if name:
        return DeadlockLogger(f"snapshot_deadlock.{name}", level=None)
    return logger


def set_log_level(level: str):
    """
    Set the global log level.

    Args:
        level: Log level ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logger.set_level(numeric_level)


def log_system_info():
    """Log system information for debugging purposes."""
    import platform
    import psutil

    logger.logger.info("=== System Information ===")
    logger.logger.info(f"Platform: {platform.platform()}")
    logger.logger.info(f"Python: {platform.python_version()}")
    logger.logger.info(f"CPU cores: {psutil.cpu_count()}")
    logger.logger.info(f"Memory: {psutil.virtual_memory().total // (1024**3)} GB")
    logger.logger.info("==========================")
