"""
Error handling and recovery mechanisms for the mat-curator pipeline.

This module defines the exception hierarchy used across the curation run,
the retry/backoff helpers used around external calls, and the node decorator
that converts unexpected failures inside a workflow node into a recorded
run-level error instead of an unhandled crash.

Quota exhaustion is deliberately kept out of every retry path: it is an
expected condition that halts the run cleanly.
"""

import logging
import time
import random
from typing import Callable, Any, Optional, Dict, Tuple, Type
from functools import wraps
from datetime import datetime

logger = logging.getLogger(__name__)


class CurationError(Exception):
    """Base exception for curation pipeline errors."""
    pass


class QuotaExhaustedError(CurationError):
    """Raised when the external catalog quota is exhausted. Halts the run."""

    def __init__(self, message: str = "YouTube API quota exhausted", operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


class CatalogAPIError(CurationError):
    """Raised for ordinary (non-quota) external catalog failures."""
    pass


class AuthenticationError(CurationError):
    """Raised when external API authentication fails."""
    pass


class EvaluationError(CurationError):
    """Raised when the AI evaluation service cannot be reached."""
    pass


class KnowledgeBaseError(CurationError):
    """Raised when the knowledge base is unreachable or corrupt."""
    pass


class RetryConfig:
    """Configuration for retry mechanisms."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter


class ErrorContext:
    """Context information for error handling."""

    def __init__(
        self,
        node_name: str,
        operation: str,
        video_id: Optional[str] = None,
        target: Optional[str] = None,
        additional_context: Optional[Dict[str, Any]] = None
    ):
        self.node_name = node_name
        self.operation = operation
        self.video_id = video_id
        self.target = target
        self.additional_context = additional_context or {}
        self.timestamp = datetime.now().isoformat()

    def describe(self) -> str:
        """Render the context as a log prefix."""
        parts = [f"{self.node_name}:{self.operation}"]
        if self.target:
            parts.append(f"target={self.target}")
        if self.video_id:
            parts.append(f"video={self.video_id}")
        return "[" + " ".join(parts) + "]"


def calculate_retry_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate delay for retry attempt using exponential backoff with jitter.

    Args:
        attempt: Current attempt number (1-based)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    if attempt <= 1:
        return 0

    delay = config.base_delay * (config.exponential_base ** (attempt - 2))
    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_range = delay * 0.1
        delay += random.uniform(-jitter_range, jitter_range)

    return max(0, delay)


def retry_with_backoff(
    config: RetryConfig,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    context: Optional[ErrorContext] = None,
    sleep: Callable[[float], None] = time.sleep
):
    """
    Decorator for retrying operations with exponential backoff.

    QuotaExhaustedError is re-raised immediately regardless of ``exceptions``.

    Args:
        config: Retry configuration
        exceptions: Tuple of exceptions to retry on
        context: Error context for logging
        sleep: Sleep function (injectable for tests)

    Returns:
        Decorator function
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            last_exception = None

            for attempt in range(1, config.max_attempts + 1):
                try:
                    if attempt > 1:
                        delay = calculate_retry_delay(attempt, config)
                        if delay > 0:
                            logger.info(f"Retrying {func.__name__} in {delay:.2f}s (attempt {attempt}/{config.max_attempts})")
                            sleep(delay)

                    result = func(*args, **kwargs)

                    if attempt > 1:
                        logger.info(f"Retry successful for {func.__name__} on attempt {attempt}")

                    return result

                except QuotaExhaustedError:
                    raise
                except exceptions as e:
                    last_exception = e

                    error_msg = f"Attempt {attempt}/{config.max_attempts} failed for {func.__name__}: {str(e)}"
                    if context:
                        error_msg = f"{context.describe()} {error_msg}"

                    if attempt < config.max_attempts:
                        logger.warning(error_msg)
                    else:
                        logger.error(f"All retry attempts exhausted: {error_msg}")

            raise last_exception

        return wrapper
    return decorator


def handle_node_error(node_name: str):
    """
    Decorator for workflow nodes.

    Unexpected exceptions are logged and turned into a ``fatal_error`` state
    update so the run reports ``success=False`` with a populated error.
    QuotaExhaustedError never reaches this layer because the curation node
    handles it as a regular halt.

    Args:
        node_name: Name of the node for error context

    Returns:
        Decorator function
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(self, state) -> Dict[str, Any]:
            start_time = datetime.now()
            try:
                logger.debug(f"Starting {node_name} node")
                updates = func(self, state)
                duration = (datetime.now() - start_time).total_seconds()
                logger.debug(f"Completed {node_name} node in {duration:.2f}s")
                return updates
            except Exception as e:
                duration = (datetime.now() - start_time).total_seconds()
                error_msg = f"{node_name} node failed after {duration:.2f}s: {str(e)}"
                logger.error(error_msg, exc_info=True)
                return {
                    "errors": list(state.errors) + [error_msg],
                    "fatal_error": f"{type(e).__name__}: {e}",
                }
        return wrapper
    return decorator


def log_processing_metrics(state, node_name: str) -> None:
    """
    Log processing metrics for monitoring and debugging.

    Args:
        state: Current curation state
        node_name: Name of the current node
    """
    metrics = {
        'node': node_name,
        'timestamp': datetime.now().isoformat(),
        'targets_selected': len(state.targets),
        'targets_curated': state.targets_completed,
        'videos_added': sum(s.videos_added for s in state.target_stats),
        'quota_exhausted': state.quota_exhausted,
        'error_count': len(state.errors),
    }
    logger.debug(f"Processing metrics: {metrics}")
