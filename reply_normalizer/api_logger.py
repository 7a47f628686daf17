# reply_normalizer/api_logger.py
"""Call logging for the completion fetcher.

Every completion call is recorded with its request, the raw model output,
the normalized answer shown to the user, latency and any error. Entries are
kept in memory for the session and appended to a JSONL file when the call
finishes, so misbehaving responses can be replayed through the normalizer
later (see scripts/normalize_responses.py).
"""
import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, asdict

from .config import LOG_DIR


# Log file naming pattern
LOG_FILE_PREFIX = "api_calls"


# ------------------- Data Classes -------------------

@dataclass
class APICallLog:
    """A single completion call."""
    call_id: str
    timestamp: str
    provider: str
    model: str
    model_key: str
    messages: List[Dict[str, str]]
    parameters: Dict[str, Any]
    response: Optional[str] = None
    normalized: Optional[str] = None
    fallback_used: bool = False
    error: Optional[str] = None
    status_code: Optional[int] = None
    latency_ms: int = 0
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=2, default=str, ensure_ascii=False)


# ------------------- API Logger Class -------------------

class APILogger:
    """Session logger for completion calls.

    Tracks per call:
    - Timestamps (ISO format)
    - Request parameters (model, messages, sampling settings)
    - Raw response and normalized answer
    - Whether the fallback message replaced the answer
    - Latency and error information
    """

    def __init__(
        self,
        log_dir: Optional[Path] = None,
        session_id: Optional[str] = None,
        enable_file_logging: bool = True,
        enable_console_logging: bool = True,
    ):
        """Initialize the API logger.

        Args:
            log_dir: Directory for log files. Defaults to results/logs/
            session_id: Unique identifier for this session
            enable_file_logging: Whether to write logs to files
            enable_console_logging: Whether to log to console
        """
        self.log_dir = Path(log_dir) if log_dir else LOG_DIR
        self.session_id = session_id or self._generate_session_id()
        self.enable_file_logging = enable_file_logging
        self.enable_console_logging = enable_console_logging

        self._call_logs: List[APICallLog] = []
        self._call_count = 0

        self._setup_logging()

        if self.enable_file_logging:
            self._ensure_log_dir()

    def _generate_session_id(self) -> str:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        short_uuid = uuid.uuid4().hex[:8]
        return f"session_{timestamp}_{short_uuid}"

    def _setup_logging(self) -> None:
        """Configure Python logging for API calls."""
        self.logger = logging.getLogger(f"api_logger.{self.session_id}")
        self.logger.setLevel(logging.DEBUG)

        # Clear existing handlers
        self.logger.handlers = []

        if self.enable_console_logging:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.INFO)
            console_format = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            )
            console_handler.setFormatter(console_format)
            self.logger.addHandler(console_handler)

    def _ensure_log_dir(self) -> None:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.logger.debug(f"Log directory ensured: {self.log_dir}")

    def get_log_file_path(self) -> Path:
        """Path of the JSONL file for this session."""
        return self.log_dir / f"{LOG_FILE_PREFIX}_{self.session_id}.jsonl"

    def _write_log_entry(self, log_entry: APICallLog) -> None:
        if not self.enable_file_logging:
            return

        with open(self.get_log_file_path(), "a", encoding="utf-8") as f:
            f.write(json.dumps(log_entry.to_dict(), default=str, ensure_ascii=False) + "\n")

    def _find(self, call_id: str) -> Optional[APICallLog]:
        for log_entry in self._call_logs:
            if log_entry.call_id == call_id:
                return log_entry
        return None

    def log_call_start(
        self,
        provider: str,
        model: str,
        model_key: str,
        messages: List[Dict[str, str]],
        parameters: Dict[str, Any],
    ) -> str:
        """Log the start of a completion call.

        Args:
            provider: API provider (deepseek, openai)
            model: Model name sent upstream
            model_key: Model configuration key
            messages: List of message dicts with role and content
            parameters: Sampling parameters (max_tokens, temperature, top_p)

        Returns:
            call_id: Unique identifier for this call
        """
        self._call_count += 1
        call_id = f"{self.session_id}_call_{self._call_count:06d}"

        self._call_logs.append(APICallLog(
            call_id=call_id,
            timestamp=datetime.now().isoformat(),
            provider=provider,
            model=model,
            model_key=model_key,
            messages=messages,
            parameters=parameters,
        ))

        self.logger.info(f"API call started: {call_id} | {provider}/{model}")

        return call_id

    def log_call_success(
        self,
        call_id: str,
        response: str,
        latency_ms: int,
        normalized: Optional[str] = None,
        fallback_used: bool = False,
    ) -> None:
        """Log a finished call together with the answer shown to the user.

        Args:
            call_id: The call ID returned from log_call_start
            response: Raw model output
            latency_ms: Time taken for the call in milliseconds
            normalized: Normalized answer, None when normalization was skipped
            fallback_used: Whether the fallback message replaced the answer
        """
        log_entry = self._find(call_id)
        if log_entry is None:
            self.logger.warning(f"Call ID not found for success logging: {call_id}")
            return

        log_entry.response = response
        log_entry.normalized = normalized
        log_entry.fallback_used = fallback_used
        log_entry.latency_ms = latency_ms
        log_entry.success = True

        self._write_log_entry(log_entry)

        self.logger.info(
            f"API call success: {call_id} | latency={latency_ms}ms | "
            f"response_len={len(response)} | fallback={fallback_used}"
        )

    def log_call_failure(
        self,
        call_id: str,
        error: str,
        latency_ms: int,
        status_code: Optional[int] = None,
    ) -> None:
        """Log a failed call.

        Args:
            call_id: The call ID returned from log_call_start
            error: Error message or exception string
            latency_ms: Time taken before failure in milliseconds
            status_code: Upstream HTTP status, when there was one
        """
        log_entry = self._find(call_id)
        if log_entry is None:
            self.logger.warning(f"Call ID not found for failure logging: {call_id}")
            return

        log_entry.error = error
        log_entry.status_code = status_code
        log_entry.latency_ms = latency_ms
        log_entry.success = False

        self._write_log_entry(log_entry)

        self.logger.error(
            f"API call failed: {call_id} | latency={latency_ms}ms | "
            f"status={status_code} | error={error[:100]}"
        )

    def get_call_logs(self) -> List[APICallLog]:
        """Get all logged API calls for this session."""
        return self._call_logs.copy()

    def get_call_count(self) -> int:
        return self._call_count

    def get_success_rate(self) -> float:
        if not self._call_logs:
            return 0.0
        successful = sum(1 for log in self._call_logs if log.success)
        return successful / len(self._call_logs)

    def get_average_latency(self) -> float:
        """Average latency of successful calls."""
        successful_logs = [log for log in self._call_logs if log.success]
        if not successful_logs:
            return 0.0
        return sum(log.latency_ms for log in successful_logs) / len(successful_logs)

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all calls in this session."""
        return {
            "session_id": self.session_id,
            "total_calls": self._call_count,
            "successful_calls": sum(1 for log in self._call_logs if log.success),
            "failed_calls": sum(1 for log in self._call_logs if not log.success),
            "fallback_answers": sum(1 for log in self._call_logs if log.fallback_used),
            "success_rate": self.get_success_rate(),
            "average_latency_ms": self.get_average_latency(),
            "log_file": str(self.get_log_file_path()) if self.enable_file_logging else None,
        }

    def save_summary(self, path: Optional[Path] = None) -> Path:
        """Save the session summary to a JSON file.

        Args:
            path: Optional path for the summary file

        Returns:
            Path to the saved summary file
        """
        if path is None:
            path = self.log_dir / f"summary_{self.session_id}.json"

        summary = self.get_summary()
        summary["generated_at"] = datetime.now().isoformat()

        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(summary, f, indent=2, default=str)

        self.logger.info(f"Summary saved to: {path}")
        return Path(path)


# ------------------- Global Logger Instance -------------------

_global_logger: Optional[APILogger] = None


def get_api_logger() -> APILogger:
    """Get or create the global API logger instance."""
    global _global_logger
    if _global_logger is None:
        _global_logger = APILogger()
    return _global_logger


def set_api_logger(logger: APILogger) -> None:
    """Set the global API logger instance."""
    global _global_logger
    _global_logger = logger


def reset_api_logger() -> None:
    """Reset the global API logger (creates a new instance on next get)."""
    global _global_logger
    _global_logger = None
