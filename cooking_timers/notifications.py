"""
notifications.py
────────────────
One-shot completion alerts keyed by timer id.

The engine only ever arms and disarms alerts.  It never waits for one to
fire: a timer's completion is derived from the wall clock, so a late or lost
alert only delays what the user sees.
"""

import os
import logging
import platform
import subprocess
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

AlertCallback = Callable[[str, str, str], None]


class NotificationScheduler(ABC):

    @abstractmethod
    def schedule(self, timer_id: str, fire_after_seconds: int, title: str, body: str) -> None:
        """Arm a one-shot alert, replacing any alert already armed for `timer_id`."""

    @abstractmethod
    def cancel(self, timer_id: str) -> None:
        """Disarm the alert for `timer_id`; no-op when none is armed."""


class LocalAlertScheduler(NotificationScheduler):
    """
    Arms one daemon threading.Timer per timer id.  When it fires, an OS desktop
    notification is sent and `on_alert(timer_id, title, body)` is called on the
    alert thread.
    """

    def __init__(self, on_alert: Optional[AlertCallback] = None, desktop: bool = True):
        self._alerts: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()
        self._on_alert = on_alert
        self._desktop = desktop

    def schedule(self, timer_id: str, fire_after_seconds: int, title: str, body: str) -> None:
        alert = threading.Timer(
            max(0, fire_after_seconds),
            self._fire,
            args=(timer_id, title, body),
        )
        alert.daemon = True
        alert.name = f"alert-{timer_id}"
        with self._lock:
            previous = self._alerts.pop(timer_id, None)
            if previous is not None:
                previous.cancel()
            self._alerts[timer_id] = alert
        alert.start()
        logger.debug(f"Alert armed for {timer_id} in {fire_after_seconds}s")

    def cancel(self, timer_id: str) -> None:
        with self._lock:
            alert = self._alerts.pop(timer_id, None)
        if alert is not None:
            alert.cancel()
            logger.debug(f"Alert disarmed for {timer_id}")

    def is_armed(self, timer_id: str) -> bool:
        with self._lock:
            return timer_id in self._alerts

    def armed_ids(self) -> List[str]:
        with self._lock:
            return list(self._alerts)

    def shutdown(self) -> None:
        with self._lock:
            alerts = list(self._alerts.values())
            self._alerts.clear()
        for alert in alerts:
            alert.cancel()

    def _fire(self, timer_id: str, title: str, body: str) -> None:
        # Runs on the threading.Timer thread; a replacement alert may already
        # own the slot, so only clear it if it is still ours.
        with self._lock:
            if self._alerts.get(timer_id) is threading.current_thread():
                del self._alerts[timer_id]

        logger.info(f"Alert fired for {timer_id}: {body}")
        if self._desktop:
            send_os_notification(title, body)

        if self._on_alert:
            try:
                self._on_alert(timer_id, title, body)
            except Exception:
                logger.exception(f"Alert callback failed for {timer_id}")


def send_os_notification(title: str, body: str) -> None:
    """
    Cross-platform OS desktop notification via subprocess.

    Linux  → notify-send (libnotify / D-Bus IPC)
    macOS  → osascript (AppleScript bridge)
    Windows→ PowerShell NotifyIcon balloon

    Title and body come from user-chosen timer names, so they travel as
    separate argv entries or environment variables, never inside script text.
    """
    system = platform.system()
    env = None
    if system == "Linux":
        command = ["notify-send", "--icon=dialog-information", "--expire-time=8000", "--", title, body]
    elif system == "Darwin":
        command = [
            "osascript",
            "-e", "on run argv",
            "-e", 'display notification (item 2 of argv) with title (item 1 of argv) sound name "Glass"',
            "-e", "end run",
            title, body,
        ]
    elif system == "Windows":
        ps_cmd = (
            "Add-Type -AssemblyName System.Windows.Forms; "
            "$n = New-Object System.Windows.Forms.NotifyIcon; "
            "$n.Icon = [System.Drawing.SystemIcons]::Information; "
            "$n.Visible = $true; "
            "$n.ShowBalloonTip(5000, $env:TIMER_ALERT_TITLE, $env:TIMER_ALERT_BODY, "
            "[System.Windows.Forms.ToolTipIcon]::Info)"
        )
        command = ["powershell", "-WindowStyle", "Hidden", "-Command", ps_cmd]
        env = dict(os.environ, TIMER_ALERT_TITLE=title, TIMER_ALERT_BODY=body)
    else:
        logger.warning(f"No desktop notifier for platform {system}")
        return

    try:
        subprocess.Popen(command, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, env=env)
    except OSError as e:
        # e.g. notify-send not installed
        logger.warning(f"Desktop notification unavailable ({command[0]}): {e}")
