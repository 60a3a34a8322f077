"""
🏗️ Service Layer - Base Service Interface
==========================================

Common result type and base class for services. Services wire the core
components together and are what the Flask routes talk to.
"""

import logging
from abc import ABC
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class ServiceResult:
    """Standardized result object for service operations."""
    success: bool
    data: Optional[Any] = None
    message: Optional[str] = None
    error_code: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        result: Dict[str, Any] = {
            "success": self.success,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.data is not None:
            result["data"] = self.data
        if self.message:
            result["message"] = self.message
        if self.error_code:
            result["error_code"] = self.error_code
        return result


class BaseService(ABC):
    """Base class for services with shared result helpers."""

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(f"spotiswitch.service.{name}")
        self._initialized = False

    def is_initialized(self) -> bool:
        return self._initialized

    def health_check(self) -> ServiceResult:
        if not self._initialized:
            return self._error_result(f"{self.name} service not initialized", "NOT_INITIALIZED")
        return self._success_result({"status": "healthy", "service": self.name})

    def _handle_error(self, error: Exception, operation: str) -> ServiceResult:
        """Log an unexpected failure and turn it into an error result."""
        error_msg = f"Error in {self.name}.{operation}: {error}"
        self.logger.error(error_msg, exc_info=True)
        return self._error_result(error_msg, "OPERATION_FAILED")

    def _success_result(self, data: Any = None, message: Optional[str] = None) -> ServiceResult:
        return ServiceResult(success=True, data=data, message=message)

    def _error_result(self, message: str, error_code: str = "ERROR", data: Any = None) -> ServiceResult:
        return ServiceResult(success=False, data=data, message=message, error_code=error_code)


__all__ = ["BaseService", "ServiceResult"]
