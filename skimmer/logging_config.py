"""
Logging setup for Skimmer.

Three daily files sit under the log directory next to console output:
``skimmer.log`` takes everything at the configured level, ``skimmer_errors.log``
takes errors only, and ``skimmer_activity.log`` takes the per-tick activity
records. Rotated main-log files are gzipped once they age past a cutoff.
"""

import sys
import gzip
import shutil
import logging
from pathlib import Path
from datetime import datetime, timedelta
from typing import Optional
from logging.handlers import TimedRotatingFileHandler

MAIN_LOG = "skimmer.log"
ERROR_LOG = "skimmer_errors.log"
ACTIVITY_LOG = "skimmer_activity.log"

FILE_FORMAT = '%(asctime)s | %(levelname)-8s | %(component)-15s | %(message)s'
CONSOLE_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'


class CompressingTimedRotatingFileHandler(TimedRotatingFileHandler):
    """Daily rotation that gzips rotated siblings older than ``compress_after_days``."""

    def __init__(self, *args, compress_after_days: int = 7, **kwargs):
        super().__init__(*args, **kwargs)
        self.compress_after_days = compress_after_days

    def doRollover(self):
        super().doRollover()
        self._gzip_stale_rotations()

    def _stale_rotations(self):
        current = Path(self.baseFilename)
        threshold = (datetime.now() - timedelta(days=self.compress_after_days)).timestamp()
        for candidate in current.parent.glob(current.name + ".*"):
            if candidate.suffix == ".gz":
                continue
            try:
                if candidate.stat().st_mtime < threshold:
                    yield candidate
            except OSError:
                # Removed by backupCount pruning between glob and stat
                continue

    def _gzip_stale_rotations(self):
        for rotated in self._stale_rotations():
            target = Path(str(rotated) + ".gz")
            try:
                with open(rotated, 'rb') as src, gzip.open(target, 'wb') as dst:
                    shutil.copyfileobj(src, dst)
                rotated.unlink()
            except OSError as e:
                # The logging system cannot report on itself
                print(f"Could not gzip {rotated}: {e}", file=sys.stderr)
                target.unlink(missing_ok=True)


class StructuredFormatter(logging.Formatter):
    """
    Adds ``%(component)s`` (last dotted segment of the logger name) and
    appends any ``extra_context`` mapping as ``key=value`` pairs.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.component = record.name.rsplit('.', 1)[-1]
        line = super().format(record)
        context = getattr(record, 'extra_context', None)
        if context:
            line += " | " + " | ".join(f"{key}={value}" for key, value in context.items())
        return line


def _file_handler(
    path: Path,
    level: int,
    formatter: logging.Formatter,
    retention_days: int,
    compress_after_days: Optional[int] = None,
) -> TimedRotatingFileHandler:
    options = dict(when='midnight', interval=1, backupCount=retention_days, encoding='utf-8')
    if compress_after_days is None:
        handler = TimedRotatingFileHandler(str(path), **options)
    else:
        handler = CompressingTimedRotatingFileHandler(
            str(path), compress_after_days=compress_after_days, **options
        )
    handler.suffix = "%Y-%m-%d"
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    log_dir: str = "logs",
    log_level: str = "INFO",
    console_level: str = "INFO",
    enable_compression: bool = True,
    compress_after_days: int = 7,
    retention_days: int = 30,
) -> logging.Logger:
    """
    Replace the root logger's handlers with the console and file handlers.

    Args:
        log_dir: Created if missing
        log_level: Threshold for ``skimmer.log``
        console_level: Threshold for stdout
        enable_compression: Gzip rotated ``skimmer.log`` files
        compress_after_days: Age at which a rotated file is gzipped
        retention_days: Rotated files kept per log

    Returns:
        The root logger
    """
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)

    file_formatter = StructuredFormatter(fmt=FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.getLevelName(console_level.upper()))
    console.setFormatter(StructuredFormatter(fmt=CONSOLE_FORMAT, datefmt='%H:%M:%S'))
    root.addHandler(console)

    root.addHandler(_file_handler(
        directory / MAIN_LOG,
        logging.getLevelName(log_level.upper()),
        file_formatter,
        retention_days,
        compress_after_days if enable_compression else None,
    ))
    root.addHandler(_file_handler(directory / ERROR_LOG, logging.ERROR, file_formatter, retention_days))

    activity = _file_handler(directory / ACTIVITY_LOG, logging.INFO, file_formatter, retention_days)
    activity.addFilter(logging.Filter('skimmer.activity'))
    root.addHandler(activity)

    root.info(
        "Logging to %s (file level %s, console level %s, keep %d days, gzip %s)",
        directory.resolve(),
        log_level,
        console_level,
        retention_days,
        f"after {compress_after_days} days" if enable_compression else "off",
    )
    return root


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_with_context(logger: logging.Logger, level: int, message: str, **context):
    """Log ``message``; any keyword arguments are rendered by StructuredFormatter."""
    logger.log(level, message, extra={'extra_context': context} if context else {})


class ActivityLogger:
    """
    Records agent activity (ticks, trades, replenishments, payouts)
    with a structured format for later analysis.
    """

    def __init__(self):
        self.logger = logging.getLogger('skimmer.activity')

    def log_evaluation_tick(
        self,
        unit: Optional[str],
        outcome: str,
        net_value: Optional[float] = None,
        rotation_index: Optional[int] = None,
    ):
        context = {'unit': unit, 'outcome': outcome}
        if net_value is not None:
            context['net_value'] = f"{net_value:.4f}"
        if rotation_index is not None:
            context['rotation_index'] = rotation_index
        log_with_context(self.logger, logging.INFO, "Evaluation tick", **context)

    def log_trade(
        self,
        purpose: str,
        input_unit: str,
        output_unit: str,
        success: bool,
        tx_id: Optional[str] = None,
        error: Optional[str] = None,
    ):
        context = {
            'purpose': purpose,
            'input': input_unit,
            'output': output_unit,
            'success': success,
        }
        if tx_id:
            context['tx'] = tx_id
        if error:
            context['error'] = error

        level = logging.INFO if success else logging.ERROR
        message = f"Trade {'succeeded' if success else 'failed'}: {purpose}"
        log_with_context(self.logger, level, message, **context)

    def log_replenishment(
        self,
        outcome: str,
        balance: Optional[float] = None,
        source_unit: Optional[str] = None,
        amount: Optional[float] = None,
    ):
        context = {'outcome': outcome}
        if balance is not None:
            context['reserve_balance'] = f"{balance:.6f}"
        if source_unit:
            context['source'] = source_unit
        if amount is not None:
            context['amount'] = f"{amount:.6f}"
        log_with_context(self.logger, logging.INFO, "Replenishment tick", **context)

    def log_dispatch(
        self,
        outcome: str,
        pending: float,
        net: float,
        succeeded: int,
        failed: int,
        skipped: int,
    ):
        level = logging.WARNING if failed else logging.INFO
        log_with_context(
            self.logger,
            level,
            f"Payout dispatch {outcome}",
            pending=f"{pending:.2f}",
            net=f"{net:.2f}",
            succeeded=succeeded,
            failed=failed,
            skipped=skipped,
        )

    def log_error(
        self,
        component: str,
        error_type: str,
        error_message: str,
        **context
    ):
        context.update({
            'component': component,
            'error_type': error_type,
        })
        log_with_context(self.logger, logging.ERROR, error_message, **context)


_activity_logger: Optional[ActivityLogger] = None


def get_activity_logger() -> ActivityLogger:
    """Get the process-wide activity logger."""
    global _activity_logger
    if _activity_logger is None:
        _activity_logger = ActivityLogger()
    return _activity_logger
