import re
from typing import Optional, Dict, Any

class ExporterException(Exception):
    """Base exception for all billing exporter errors."""
    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

class AdapterError(ExporterException):
    """
    Raised when an object store or directory service call fails.
    Error messages are sanitized to avoid leaking request ids and credentials.
    """
    def __init__(self, message: str, code: str = "adapter_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(self._sanitize(message), code=code, details=details)

    @staticmethod
    def _sanitize(msg: str) -> str:
        """Remove request ids and credential fragments from cloud error strings."""
        msg = re.sub(r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}', '[REDACTED_ID]', msg, flags=re.IGNORECASE)
        msg = re.sub(r'(?i)(access_key|secret_key|token|password|signature)=[^&\s]+', r'\1=[REDACTED]', msg)
        if "AccessDenied" in msg or "Unauthorized" in msg:
            return "Permission denied: ensure the exporter credentials have the required read permissions."
        return msg

class ReportParseError(ExporterException):
    """Raised when a whole billing report cannot be parsed."""
    def __init__(self, message: str, origin_key: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="report_parse_error", details=details)
        self.origin_key = origin_key

class ConfigurationError(ExporterException):
    """Raised when application configuration is invalid or missing."""
    def __init__(self, message: str, code: str = "config_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)

class SourceQueryError(ExporterException):
    """
    Raised by a billing source when one stage of a query pass fails.
    The stage name tells the caller where the pass stopped; no counter was touched.
    """
    def __init__(self, source: str, stage: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{source}: {stage} failed: {message}", code="source_query_error", details=details)
        self.source = source
        self.stage = stage
