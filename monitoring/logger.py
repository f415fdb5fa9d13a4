"""
Structured logging for the Super Token Scorer
Console, rotating file and JSON outputs plus analysis-specific records
"""

import json
import logging
import sys
import traceback
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

# Custom log level for finished analyses
ANALYSIS_LOG = 25  # Between INFO and WARNING

logging.addLevelName(ANALYSIS_LOG, "ANALYSIS")

logger = logging.getLogger(__name__)


class StructuredLogger:
    """
    Structured logging system with multiple outputs
    """

    def __init__(self, name: str = "SuperTokenScorer", config: Optional[Dict] = None):
        """Initialize structured logger"""
        self.name = name

        default_config = self._default_config()
        if config:
            default_config.update({k: v for k, v in config.items() if v is not None})

        self.config = default_config
        self.setup_logging()

    def _default_config(self) -> Dict:
        """Default logging configuration"""
        return {
            "log_level": "INFO",
            "log_dir": "logs",
            "max_file_size": 10 * 1024 * 1024,  # 10MB
            "backup_count": 5,
            "format": "json",  # json or text
            "outputs": ["console", "file"],
            "error_tracking": True,
        }

    @classmethod
    def from_config(cls, logging_config, name: str = "SuperTokenScorer") -> "StructuredLogger":
        """Build from a config.config_manager.LoggingConfig"""
        outputs = ["file"] + (["console"] if logging_config.console else [])
        return cls(name, {
            "log_level": logging_config.level,
            "log_dir": logging_config.log_dir,
            "format": logging_config.format,
            "outputs": outputs,
        })

    def _get_formatter(self, output_type: str):
        """Get appropriate formatter for output type"""
        if self.config["format"] == "json" and output_type != "console":
            return JsonFormatter()
        elif output_type == "analysis":
            return AnalysisFormatter()
        else:
            return ColoredFormatter() if output_type == "console" else StandardFormatter()

    def log_analysis(self, score) -> None:
        """
        Log a finished token analysis

        Args:
            score: SuperTokenScore of the analysis
        """
        analysis_logger = logging.getLogger(f"{self.name}.analysis")

        analysis_data = {
            "token": score.token_address,
            "symbol": score.token_symbol,
            "super_score": score.super_score,
            "risk_level": score.global_risk_level.value,
            "red_flags": len(score.all_red_flags),
            "critical": score.has_critical_flag(),
            "unavailable_providers": list(score.unavailable_providers),
            "analysis_time_ms": score.analysis_time_ms,
            "cached": score.cached,
            "stale_fallback": score.stale_fallback,
        }

        analysis_logger.log(
            ANALYSIS_LOG,
            f"Analysis {analysis_data['symbol']}: {analysis_data['super_score']}/100 "
            f"{analysis_data['risk_level']} in {analysis_data['analysis_time_ms']}ms",
            extra={"analysis_data": analysis_data},
        )

    def log_error(self, error: Exception, context: Dict) -> None:
        """
        Log error with context

        Args:
            error: Exception that occurred
            context: Dictionary containing error context
        """
        error_logger = logging.getLogger(f"{self.name}.errors")

        error_data = {
            "error_type": type(error).__name__,
            "error_message": str(error),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "context": context,
            "traceback": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
        }

        if isinstance(error, (ValueError, TypeError, KeyError)):
            error_logger.warning(
                f"Validation error in {context.get('function', 'unknown')}: {error}",
                extra={"error_data": error_data}
            )
        elif isinstance(error, (ConnectionError, TimeoutError)):
            error_logger.error(
                f"Network error in {context.get('function', 'unknown')}: {error}",
                extra={"error_data": error_data}
            )
        else:
            error_logger.error(
                f"Unexpected error in {context.get('function', 'unknown')}: {error}",
                extra={"error_data": error_data},
            )

        if self.config.get("error_tracking") and "file" in self.config["outputs"]:
            self._save_error_to_file(error_data)

    def setup_logging(self, config: Optional[Dict] = None) -> None:
        """
        Setup logging configuration

        Args:
            config: Optional configuration dictionary
        """
        if config:
            self.config.update(config)

        root = logging.getLogger()
        root.setLevel(getattr(logging, self.config["log_level"].upper()))
        root.handlers = []

        if "console" in self.config["outputs"]:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(self._get_formatter("console"))
            root.addHandler(console_handler)

        if "file" in self.config["outputs"]:
            log_dir = Path(self.config["log_dir"])
            log_dir.mkdir(parents=True, exist_ok=True)

            file_handler = RotatingFileHandler(
                log_dir / f"{self.name}.log",
                maxBytes=self.config["max_file_size"],
                backupCount=self.config["backup_count"]
            )
            file_handler.setFormatter(self._get_formatter("file"))
            root.addHandler(file_handler)

            if self.config["error_tracking"]:
                error_handler = RotatingFileHandler(
                    log_dir / f"{self.name}_errors.log",
                    maxBytes=self.config["max_file_size"],
                    backupCount=self.config["backup_count"]
                )
                error_handler.setLevel(logging.ERROR)
                error_handler.setFormatter(self._get_formatter("file"))
                root.addHandler(error_handler)

            analysis_handler = RotatingFileHandler(
                log_dir / f"{self.name}_analyses.log",
                maxBytes=self.config["max_file_size"],
                backupCount=self.config["backup_count"]
            )
            analysis_handler.setLevel(ANALYSIS_LOG)
            analysis_handler.addFilter(lambda record: hasattr(record, "analysis_data"))
            analysis_handler.setFormatter(self._get_formatter("analysis"))
            root.addHandler(analysis_handler)

        if config:
            logger.info(f"Logging reconfigured with: {config}")

    def _save_error_to_file(self, error_data: Dict) -> None:
        """Append the error to errors.json, keeping the last 1000"""
        error_file = Path(self.config["log_dir"]) / "errors.json"
        try:
            errors = []
            if error_file.exists():
                with open(error_file, 'r') as f:
                    errors = json.load(f)
            errors.append(error_data)
            errors = errors[-1000:]
            with open(error_file, 'w') as f:
                json.dump(errors, f, indent=2, default=str)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to save error to file: {e}")


class JsonFormatter(logging.Formatter):
    """JSON log formatter"""

    def format(self, record):
        log_obj: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'analysis_data'):
            log_obj["analysis"] = record.analysis_data

        if hasattr(record, 'error_data'):
            log_obj["error"] = record.error_data

        return json.dumps(log_obj, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored console formatter"""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'ANALYSIS': '\033[35m',  # Magenta
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[41m'   # Red Background
    }
    RESET = '\033[0m'

    def __init__(self):
        super().__init__('%(asctime)s - %(name)s - %(levelname)s - %(message)s', datefmt='%H:%M:%S')

    def format(self, record):
        # Color a copy so other handlers keep the plain level name
        record = logging.makeLogRecord(record.__dict__)
        log_color = self.COLORS.get(record.levelname, '')
        record.levelname = f"{log_color}{record.levelname}{self.RESET}"
        return super().format(record)


class StandardFormatter(logging.Formatter):
    """Standard text formatter"""

    def __init__(self):
        super().__init__(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )


class AnalysisFormatter(logging.Formatter):
    """One line per finished analysis"""

    def format(self, record):
        if hasattr(record, 'analysis_data'):
            a = record.analysis_data
            return (
                f"{record.created:.0f} | {a['token']} | {a['symbol']} | "
                f"{a['super_score']} | {a['risk_level']} | flags: {a['red_flags']} | "
                f"{a['analysis_time_ms']}ms | cached: {a['cached']}"
            )
        return super().format(record)
