"""
PHP-FPM service handling after a switch.

Other PHP services are stopped so only the selected version serves requests;
the selected version's service is restarted if it was running.
"""

from __future__ import annotations

import time

from .brew import CommandResult, Homebrew
from .common import vlog
from .errors import ExternalCommandError
from .logging_config import get_logger
from .retry import RetryPolicy, RetryStrategy, execute_with_policy
from .render import show_status
from .versions import VersionIdentifier

STARTED = "started"


def stop_other_services(brew: Homebrew, version: VersionIdentifier) -> list[str]:
    """
    Stop every running PHP service except the one for version.

    Returns:
        Names of services that were stopped
    """
    stopped = []
    for service, status in brew.services_list().items():
        if service == version.formula or status != STARTED:
            continue
        result = brew.service_action("stop", service)
        if result.success:
            stopped.append(service)
            vlog(f"Stopped PHP-FPM service {service}")
        else:
            get_logger().warning(f"Could not stop {service}: {result.error_message}")
    return stopped


def restart_policy(brew: Homebrew, service: str) -> RetryPolicy:
    """Fallbacks for a failed `brew services restart`."""

    def stop_then_start() -> CommandResult:
        brew.service_action("stop", service)
        time.sleep(2)
        return brew.service_action("start", service)

    return RetryPolicy(
        description=f"restart {service}",
        strategies=(
            RetryStrategy(
                name="stop-start",
                action=stop_then_start,
                patterns=("already started",),
                prompt="Service reports as already started. Stop and start it?",
            ),
            RetryStrategy(
                name="sudo",
                action=lambda: brew.service_action("restart", service, sudo=True),
                patterns=("permission denied",),
                prompt="Permission denied. Retry with sudo?",
            ),
        ),
        manual_command=f"brew services restart {service}",
    )


def restart_service(brew: Homebrew, version: VersionIdentifier, assume_yes: bool = False) -> bool:
    """
    Stop other PHP services and restart the target service if it was running.

    Failures are reported as warnings; the switch itself already succeeded.

    Returns:
        True if the target service was restarted
    """
    stop_other_services(brew, version)

    service = version.formula
    if brew.services_list().get(service) != STARTED:
        vlog(f"PHP-FPM service {service} is not running, nothing to restart")
        return False

    show_status("info", f"Restarting PHP-FPM service {service}...")
    try:
        execute_with_policy(
            lambda: brew.service_action("restart", service),
            restart_policy(brew, service),
            assume_yes=assume_yes,
        )
    except ExternalCommandError as e:
        show_status("warning", e.message)
        if e.remediation:
            show_status("info", e.remediation)
        return False

    show_status("success", f"PHP-FPM service {service} restarted")
    return True
