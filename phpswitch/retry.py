"""
Declarative retry policies for package manager commands.

A RetryPolicy is an ordered list of fallback strategies. Each strategy says
which failure output it applies to, whether the user must confirm it first,
and which action to run instead. execute_with_policy is the single executor.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from typing import Callable

from .brew import CommandResult
from .common import vlog
from .errors import ExternalCommandError
from .logging_config import get_logger
from .render import confirm, show_status


def is_retryable_error(exit_code: int, stderr: str) -> bool:
    """
    Determine if an error is transient and the same command can be repeated.

    Args:
        exit_code: Process exit code
        stderr: Standard error output

    Returns:
        True if error is transient and should be retried
    """
    text = stderr.lower()

    # Network-related errors
    if any(indicator in text for indicator in [
        "connection refused",
        "connection timed out",
        "connection reset",
        "temporary failure",
        "could not resolve host",
        "failed to download",
    ]):
        return True

    # Homebrew lock contention
    if any(indicator in text for indicator in [
        "another active homebrew process",
        "has already locked",
        "resource busy",
    ]):
        return True

    return exit_code == 75  # EX_TEMPFAIL


def calculate_backoff_delay(attempt: int, base_delay: float = 1.0, max_delay: float = 30.0) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        attempt: Retry attempt number (0-indexed)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds

    Returns:
        Delay in seconds with jitter applied
    """
    delay = min(base_delay * (2 ** attempt), max_delay)
    jitter = delay * 0.2 * (random.random() * 2 - 1)
    return max(0.1, delay + jitter)


@dataclass(frozen=True)
class RetryStrategy:
    """
    One fallback step of a retry policy.

    Attributes:
        name: Short identifier for logs
        action: Runs the fallback and returns its result
        patterns: Output fragments that select this strategy (empty = any failure)
        prompt: Confirmation question; None runs without asking
        default: Answer assumed for an empty confirmation response
    """
    name: str
    action: Callable[[], CommandResult]
    patterns: tuple[str, ...] = ()
    prompt: str | None = None
    default: bool = True

    def matches(self, result: CommandResult) -> bool:
        if not self.patterns:
            return True
        return any(result.contains(pattern) for pattern in self.patterns)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Ordered fallbacks for one operation.

    Attributes:
        description: What the operation does ("install php@8.2")
        strategies: Fallbacks tried in order, each at most once
        max_transient_retries: Repeats of the original command on transient errors
        manual_command: Command the user can run by hand when everything fails
    """
    description: str
    strategies: tuple[RetryStrategy, ...] = field(default_factory=tuple)
    max_transient_retries: int = 2
    manual_command: str | None = None


def execute_with_policy(
    operation: Callable[[], CommandResult],
    policy: RetryPolicy,
    assume_yes: bool = False,
    confirm_fn: Callable[..., bool] = confirm,
    sleep: Callable[[float], None] = time.sleep,
) -> CommandResult:
    """
    Run an operation and walk its retry policy until something succeeds.

    Transient failures repeat the original operation with backoff. Other
    failures select the first unused strategy whose patterns match; a
    strategy with a prompt only runs after confirmation.

    Args:
        operation: Primary command
        policy: Fallback policy
        assume_yes: Confirm every prompt automatically
        confirm_fn: Confirmation function (injectable for tests)
        sleep: Sleep function (injectable for tests)

    Returns:
        The successful CommandResult

    Raises:
        ExternalCommandError: If the operation and every applicable fallback failed
    """
    logger = get_logger()
    result = operation()

    for attempt in range(policy.max_transient_retries):
        if result.success or not is_retryable_error(result.exit_code, result.stderr):
            break
        delay = calculate_backoff_delay(attempt)
        vlog(f"Transient failure during {policy.description}, retrying after {delay:.1f}s")
        sleep(delay)
        result = operation()

    used: set[str] = set()
    while not result.success:
        strategy = next(
            (s for s in policy.strategies if s.name not in used and s.matches(result)),
            None,
        )
        if strategy is None:
            break
        used.add(strategy.name)

        if strategy.prompt and not confirm_fn(strategy.prompt, default=strategy.default, assume_yes=assume_yes):
            logger.info(f"Skipped fallback '{strategy.name}' for {policy.description}")
            break

        show_status("info", f"Trying fallback '{strategy.name}' for {policy.description}...")
        result = strategy.action()

    if result.success:
        return result

    remediation = None
    if policy.manual_command:
        remediation = f"Try running manually: {policy.manual_command}"
    raise ExternalCommandError(
        f"Failed to {policy.description}: {result.error_message or 'unknown error'}",
        result=result,
        remediation=remediation,
    )
