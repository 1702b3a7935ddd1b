"""
Error taxonomy for the monitoring pipeline and a collector for contained failures.

Nothing raised here is fatal to the process. State-machine errors tell the caller
which earlier pipeline stage to run; fetch and price failures are downgraded to
empty or zero-valued results inside the aggregator and the price oracle, and are
recorded in ``error_collector`` so they stay observable.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import structlog

logger = structlog.get_logger()


class MonitorError(Exception):
    """Base class for every error raised by the monitoring pipeline"""

    status_code = 500


class ValidationError(MonitorError):
    """Malformed wallet address or parameters"""

    status_code = 400


class NotConfiguredError(MonitorError):
    """No wallet / protocol configuration yet; run initialize first"""

    status_code = 409


class NoPositionsError(MonitorError):
    """Configured but no positions known; run discovery or add a position"""

    status_code = 409


class PreconditionError(MonitorError):
    """An evaluation step ran before the data it needs was computed"""

    status_code = 409


class ProtocolFetchError(MonitorError):
    """A protocol data source failed, timed out or is unknown"""

    def __init__(self, protocol_id: str, message: str):
        super().__init__(f"{protocol_id}: {message}")
        self.protocol_id = protocol_id


class PriceLookupFailure(MonitorError):
    """The price oracle could not produce a price for an asset"""

    def __init__(self, asset: str, message: str):
        super().__init__(f"{asset}: {message}")
        self.asset = asset


class ErrorCollector:
    """Collects contained errors for observability"""

    def __init__(self, max_errors: int = 1000):
        self.errors: List[Dict] = []
        self.error_counts: Dict[str, int] = {}
        self.max_errors = max_errors

    def record_error(self, error: Exception, context: Optional[Dict[str, Any]] = None):
        """Record an error with context"""
        error_type = type(error).__name__
        self.errors.append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "type": error_type,
            "message": str(error),
            "context": context or {},
        })

        if len(self.errors) > self.max_errors:
            self.errors = self.errors[-self.max_errors:]

        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1

        logger.warning(
            "Error recorded",
            error_type=error_type,
            error_message=str(error),
            context=context,
        )

    def get_error_summary(self, hours: int = 24) -> Dict:
        """Get error summary for the last N hours"""
        cutoff_time = datetime.now(timezone.utc) - timedelta(hours=hours)

        recent_errors = [
            error for error in self.errors
            if datetime.fromisoformat(error["timestamp"]) > cutoff_time
        ]

        error_types: Dict[str, Dict] = {}
        for error in recent_errors:
            entry = error_types.setdefault(error["type"], {"count": 0, "examples": []})
            entry["count"] += 1
            if len(entry["examples"]) < 3:
                entry["examples"].append({
                    "message": error["message"],
                    "timestamp": error["timestamp"],
                    "context": error["context"],
                })

        return {
            "time_window_hours": hours,
            "total_errors": len(recent_errors),
            "error_types": error_types,
        }

    def clear(self):
        self.errors.clear()
        self.error_counts.clear()


# Global error collector
error_collector = ErrorCollector()
