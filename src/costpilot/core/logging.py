"""Logging setup: console/file handlers, JSON formatting, audit trail"""

import logging
import logging.handlers
import json
import re
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


# Extra attributes copied into structured records when present
CONTEXT_FIELDS = (
    'recommendation_id', 'resource_id', 'resource_type', 'waste_kind',
    'attempt', 'status', 'user', 'action', 'result', 'details',
)


class StructuredFormatter(logging.Formatter):
    """JSON structured logging formatter"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "thread_name": record.threadName,
        }

        for name in CONTEXT_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        return json.dumps(log_data, default=str)


class SecurityFilter(logging.Filter):
    """Redact secrets and bearer tokens from log messages"""

    SENSITIVE_PATTERNS = [
        'password', 'secret', 'token', 'api_key',
        'access_key', 'private_key', 'credential', 'authorization'
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if not isinstance(record.msg, str):
            return True

        message = record.msg
        lowered = message.lower()
        # tokens first, before "authorization: Bearer" is rewritten below
        if 'bearer ' in lowered:
            message = re.sub(r'(?i)bearer\s+[\w\-\.=]+', 'Bearer ***REDACTED***', message)
        for pattern in self.SENSITIVE_PATTERNS:
            if pattern in lowered:
                message = self._redact_message(message, pattern)

        record.msg = message
        return True

    def _redact_message(self, message: str, pattern: str) -> str:
        patterns = [
            rf'{pattern}["\']?\s*[:=]\s*["\']?([^"\'\s,}}]+)',
            rf'"?{pattern}"?\s*:\s*"([^"]+)"',
        ]

        for p in patterns:
            message = re.sub(p, f'{pattern}=***REDACTED***', message, flags=re.IGNORECASE)

        return message


def rotating_file_handler(path: Path, formatter: logging.Formatter,
                          backup_count: int = 5) -> logging.Handler:
    """10MB rotating file handler, creating the parent directory"""
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(path, maxBytes=10 * 1024 * 1024,
                                                   backupCount=backup_count)
    handler.setFormatter(formatter)
    return handler


class AuditLogger:
    """Audit trail for approve, reject and execute decisions"""

    def __init__(self, log_file: Optional[Path] = None):
        self.logger = logging.getLogger('costpilot.audit')
        self.logger.setLevel(logging.INFO)

        if log_file:
            self.logger.addHandler(rotating_file_handler(log_file, StructuredFormatter(), backup_count=10))

    def log_event(self, action: str, user: str, recommendation_id: Optional[str] = None,
                  result: str = "success", details: Optional[Dict[str, Any]] = None):
        """Log an audit event"""
        extra = {
            'user': user,
            'action': action,
            'recommendation_id': recommendation_id,
            'result': result,
            'details': details or {},
        }

        if result == "success":
            self.logger.info(f"Audit: {action} {recommendation_id} by {user}", extra=extra)
        else:
            self.logger.warning(f"Audit: {action} {recommendation_id} by {user} {result}", extra=extra)


# Chatty client libraries kept at WARNING
QUIET_LOGGERS = ('boto3', 'botocore', 'urllib3', 'httpx', 'uvicorn.access')


class LoggerManager:
    """Centralized logger management"""

    def __init__(self):
        self.loggers: Dict[str, logging.Logger] = {}
        self.audit_logger: Optional[AuditLogger] = None

    def setup_logging(self,
                      level: str = "INFO",
                      log_file: Optional[Path] = None,
                      structured: bool = False,
                      console: bool = True,
                      audit_file: Optional[Path] = None,
                      format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'):
        """Replace the root handlers with console and/or file output"""
        formatter = StructuredFormatter() if structured else logging.Formatter(format)
        handlers = []
        if console:
            stream = logging.StreamHandler(sys.stderr)
            stream.setFormatter(formatter)
            handlers.append(stream)
        if log_file:
            handlers.append(rotating_file_handler(log_file, formatter))

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        root_logger.handlers = []
        for handler in handlers:
            handler.addFilter(SecurityFilter())
            root_logger.addHandler(handler)

        self.audit_logger = AuditLogger(audit_file)

        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    def get_logger(self, name: str) -> logging.Logger:
        return self.loggers.setdefault(name, logging.getLogger(name))

    def get_audit_logger(self) -> AuditLogger:
        if self.audit_logger is None:
            self.audit_logger = AuditLogger()
        return self.audit_logger


logger_manager = LoggerManager()


def setup_logging(**kwargs):
    logger_manager.setup_logging(**kwargs)


def setup_logging_from_settings(logging_config) -> None:
    """Apply a ``LoggingConfig`` section"""
    logger_manager.setup_logging(
        level=logging_config.level,
        log_file=logging_config.file,
        structured=logging_config.structured,
        console=logging_config.console,
        audit_file=logging_config.audit_file,
        format=logging_config.format,
    )


def get_logger(name: str) -> logging.Logger:
    return logger_manager.get_logger(name)


def get_audit_logger() -> AuditLogger:
    """Shared audit logger, created on first use when logging was never set up"""
    return logger_manager.get_audit_logger()
