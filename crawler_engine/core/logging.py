"""
Logging System for the Crawler Engine

Provides logging with file rotation, different log levels and structured
context for monitoring crawls and extraction runs.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Dict, Any
import json


ROOT_LOGGER_NAME = 'crawler_engine'


class LoggingManager:
    """
    Centralized logging manager with file rotation and structured logging
    """

    def __init__(self):
        self.logger: logging.Logger = logging.getLogger(ROOT_LOGGER_NAME)
        self.file_handler: Optional[logging.handlers.RotatingFileHandler] = None
        self.console_handler: Optional[logging.StreamHandler] = None
        self._setup_complete = False

    def setup_logging(self, level: str = "INFO", log_file: Optional[str] = "./logs/crawler.log",
                      max_size: str = "10MB", backup_count: int = 5) -> None:
        """
        Set up logging system with file rotation and console output

        Args:
            level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_file: Path to log file, or None for console only
            max_size: Maximum size before rotation (e.g., "10MB")
            backup_count: Number of backup files to keep
        """
        self.logger.setLevel(getattr(logging, level.upper()))

        # Re-running setup replaces previous handlers
        self.close()
        self.logger.handlers.clear()

        detailed_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        console_formatter = logging.Formatter(
            '%(asctime)s - %(levelname)s - %(message)s',
            datefmt='%H:%M:%S'
        )

        if log_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            self.file_handler = logging.handlers.RotatingFileHandler(
                log_file, maxBytes=self._parse_size(max_size), backupCount=backup_count, encoding='utf-8'
            )
            self.file_handler.setLevel(logging.DEBUG)
            self.file_handler.setFormatter(detailed_formatter)
            self.logger.addHandler(self.file_handler)

        self.console_handler = logging.StreamHandler(sys.stdout)
        self.console_handler.setLevel(getattr(logging, level.upper()))
        self.console_handler.setFormatter(console_formatter)
        self.logger.addHandler(self.console_handler)

        self._setup_complete = True
        self.logger.info("Logging system initialized")

    def _parse_size(self, size_str: str) -> int:
        """Parse size string like '10MB' to bytes"""
        size_str = size_str.upper().strip()

        if size_str.endswith('KB'):
            return int(size_str[:-2]) * 1024
        elif size_str.endswith('MB'):
            return int(size_str[:-2]) * 1024 * 1024
        elif size_str.endswith('GB'):
            return int(size_str[:-2]) * 1024 * 1024 * 1024
        else:
            return int(size_str)

    def get_logger(self, name: Optional[str] = None) -> logging.Logger:
        """Get the package logger, or a child of it for a module name"""
        if not name or name == ROOT_LOGGER_NAME:
            return self.logger
        if name.startswith(ROOT_LOGGER_NAME + '.'):
            return logging.getLogger(name)
        return self.logger.getChild(name)

    def is_setup(self) -> bool:
        return self._setup_complete

    def log_error(self, error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
        """Log an error with context information"""
        context_str = ""
        if context:
            context_str = f" | Context: {json.dumps(context, default=str)}"

        self.logger.error(f"Error: {str(error)}{context_str}", exc_info=error)

    def log_warning(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        """Log a warning with optional context"""
        context_str = ""
        if context:
            context_str = f" | Context: {json.dumps(context, default=str)}"

        self.logger.warning(f"{message}{context_str}")

    def log_progress(self, current: int, total: int, message: str = "") -> None:
        """Log progress information"""
        percentage = (current / total) * 100 if total > 0 else 0
        progress_msg = f"Progress: {current}/{total} ({percentage:.1f}%)"
        if message:
            progress_msg += f" - {message}"

        self.logger.info(progress_msg)

    def generate_summary_report(self, stats: Dict[str, Any]) -> str:
        """Generate and log a summary report of a crawl run"""
        report_lines = [
            "=" * 60,
            "CRAWL SESSION SUMMARY",
            "=" * 60,
            f"Start Time: {stats.get('start_time', 'Unknown')}",
            f"End Time: {stats.get('end_time', 'Unknown')}",
            f"Total Duration: {stats.get('duration', 'Unknown')}",
            "",
            "SOURCES:",
            f"  Total Sources: {stats.get('total_sources', 0)}",
            f"  Successful: {stats.get('successful_sources', 0)}",
            f"  Failed: {stats.get('failed_sources', 0)}",
            f"  Success Rate: {stats.get('success_rate', 0):.1f}%",
            "",
            "EXTRACTION:",
            f"  Items Extracted: {stats.get('items_extracted', 0)}",
            f"  Chunks Processed: {stats.get('chunks_processed', 0)}",
            f"  Failed Chunks: {stats.get('failed_chunks', 0)}",
        ]

        if stats.get('errors'):
            report_lines.extend([
                "",
                "ERRORS ENCOUNTERED:",
            ])
            for error in stats.get('errors', [])[:10]:  # Show first 10 errors
                report_lines.append(f"  - {error}")

            if len(stats.get('errors', [])) > 10:
                report_lines.append(f"  ... and {len(stats.get('errors', [])) - 10} more errors")

        report_lines.append("=" * 60)

        report = "\n".join(report_lines)
        self.logger.info(f"Session Summary:\n{report}")

        return report

    def close(self) -> None:
        """Close logging handlers"""
        if self.file_handler:
            self.file_handler.close()
            self.logger.removeHandler(self.file_handler)
            self.file_handler = None
        if self.console_handler:
            self.logger.removeHandler(self.console_handler)
            self.console_handler = None


# Global logging manager instance
logging_manager = LoggingManager()


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get the package logger or one of its children"""
    return logging_manager.get_logger(name)


def setup_logging(level: str = "INFO", log_file: Optional[str] = "./logs/crawler.log",
                  max_size: str = "10MB", backup_count: int = 5) -> None:
    """Set up global logging system"""
    logging_manager.setup_logging(level, log_file, max_size, backup_count)
