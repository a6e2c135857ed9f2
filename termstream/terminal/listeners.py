"""
Event bus listeners: desktop notifications and diagnostics logging.
"""

import logging
import subprocess
import sys
from typing import TYPE_CHECKING, Callable, List

from .events import (
    BusEvent,
    CommandFinishedEvent,
    CommandStartedEvent,
    CwdChangedEvent,
    EventBus,
    PtyCreatedEvent,
    PtyExitedEvent,
    TitleChangedEvent,
    Unsubscribe,
)

if TYPE_CHECKING:
    from .registry import SessionRegistry

logger = logging.getLogger(__name__)

NOTIFICATION_TITLE = "termstream"

Notifier = Callable[[str, str], None]


class BaseBusListener:
    """Base class for bus listeners; register it with ``subscribe_all``."""

    def on_pty_created(self, event: PtyCreatedEvent) -> None:
        """Called when a session is created."""

    def on_pty_exited(self, event: PtyExitedEvent) -> None:
        """Called when a session exits or is killed."""

    def on_cwd_changed(self, event: CwdChangedEvent) -> None:
        """Called when the shell reports a new working directory."""

    def on_title_changed(self, event: TitleChangedEvent) -> None:
        """Called when the shell reports a new window title."""

    def on_command_started(self, event: CommandStartedEvent) -> None:
        """Called when a command starts running."""

    def on_command_finished(self, event: CommandFinishedEvent) -> None:
        """Called when a command finishes."""

    def __call__(self, event: BusEvent) -> None:
        """Main event dispatcher - routes events to appropriate handlers."""
        if isinstance(event, PtyCreatedEvent):
            self.on_pty_created(event)
        elif isinstance(event, PtyExitedEvent):
            self.on_pty_exited(event)
        elif isinstance(event, CwdChangedEvent):
            self.on_cwd_changed(event)
        elif isinstance(event, TitleChangedEvent):
            self.on_title_changed(event)
        elif isinstance(event, CommandStartedEvent):
            self.on_command_started(event)
        elif isinstance(event, CommandFinishedEvent):
            self.on_command_finished(event)


class DiagnosticsListener(BaseBusListener):
    """Logs every bus event at debug level."""

    def __call__(self, event: BusEvent) -> None:
        logger.debug(f"Bus event {event.event_type.value}: {event.to_dict()}")


def send_desktop_notification(title: str, message: str) -> None:
    """Post a desktop notification without waiting for it (macOS only)."""
    if sys.platform != "darwin":
        return

    def quote(text: str) -> str:
        return text.replace("\\", "\\\\").replace('"', '\\"')

    script = f'display notification "{quote(message)}" with title "{quote(title)}"'
    try:
        subprocess.Popen(
            ["osascript", "-e", script],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except OSError as e:
        logger.warning(f"Failed to post notification: {e}")


class CommandNotifier(BaseBusListener):
    """
    Notifies the desktop when a long-running command finishes in a session
    nobody is watching.
    """

    def __init__(
        self,
        registry: "SessionRegistry",
        min_duration_ms: int = 5000,
        notify: Notifier = send_desktop_notification,
    ):
        self._registry = registry
        self._min_duration_ms = min_duration_ms
        self._notify = notify

    def on_command_finished(self, event: CommandFinishedEvent) -> None:
        session = self._registry.get(event.name)
        if session is None or session.viewer_count > 0:
            return
        if event.duration_ms <= self._min_duration_ms:
            return

        if event.exit_code == 0:
            status = "finished"
        else:
            status = f"failed (exit {event.exit_code})"
        self._notify(NOTIFICATION_TITLE, f"{event.command} {status}")


def install_default_listeners(
    bus: EventBus, registry: "SessionRegistry", notify_min_duration_ms: int = 5000
) -> List[Unsubscribe]:
    """Subscribe the notifier and the diagnostics logger to ``bus``."""
    return [
        bus.subscribe_all(CommandNotifier(registry, notify_min_duration_ms), "notifier"),
        bus.subscribe_all(DiagnosticsListener(), "diagnostics"),
    ]
