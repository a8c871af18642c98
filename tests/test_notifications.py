import subprocess
import threading

import pytest

from cooking_timers import notifications
from cooking_timers.notifications import LocalAlertScheduler, send_os_notification


def test_alert_fires_callback_and_disarms() -> None:
    fired = threading.Event()
    seen = []

    def on_alert(timer_id, title, body):
        seen.append((timer_id, title, body))
        fired.set()

    alerts = LocalAlertScheduler(on_alert=on_alert, desktop=False)
    alerts.schedule("pasta", 0, "Timer Complete!", "Pasta is done")

    assert fired.wait(timeout=5)
    assert seen == [("pasta", "Timer Complete!", "Pasta is done")]
    assert not alerts.is_armed("pasta")


def test_schedule_replaces_and_cancel_disarms() -> None:
    fired = []
    alerts = LocalAlertScheduler(on_alert=lambda *args: fired.append(args), desktop=False)

    alerts.schedule("rice", 600, "t", "first")
    alerts.schedule("rice", 900, "t", "second")
    assert alerts.armed_ids() == ["rice"]

    alerts.cancel("rice")
    alerts.cancel("rice")
    assert not alerts.is_armed("rice")
    assert fired == []


def test_shutdown_disarms_everything() -> None:
    alerts = LocalAlertScheduler(desktop=False)
    alerts.schedule("a", 600, "t", "b")
    alerts.schedule("b", 600, "t", "b")
    alerts.shutdown()
    assert alerts.armed_ids() == []


def test_failing_callback_is_contained() -> None:
    done = threading.Event()

    def on_alert(timer_id, title, body):
        done.set()
        raise RuntimeError("socket gone")

    alerts = LocalAlertScheduler(on_alert=on_alert, desktop=False)
    alerts.schedule("tea", 0, "t", "b")
    assert done.wait(timeout=5)


def test_linux_desktop_notification(monkeypatch: pytest.MonkeyPatch) -> None:
    launched = []
    monkeypatch.setattr(notifications.platform, "system", lambda: "Linux")
    monkeypatch.setattr(notifications.subprocess, "Popen", lambda cmd, **kw: launched.append(cmd))

    send_os_notification("Timer Complete!", "Eggs is done")

    assert launched == [[
        "notify-send", "--icon=dialog-information", "--expire-time=8000", "--",
        "Timer Complete!", "Eggs is done",
    ]]


def test_missing_notifier_is_not_fatal(monkeypatch: pytest.MonkeyPatch) -> None:
    def missing(cmd, **kw):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(notifications.platform, "system", lambda: "Darwin")
    monkeypatch.setattr(notifications.subprocess, "Popen", missing)

    send_os_notification("Timer Complete!", "Eggs is done")


_QUOTED_BODY = 'Mom\'s "secret" sauce" & do shell script "rm -rf ~" is done'


def _capture_popen(monkeypatch: pytest.MonkeyPatch, system: str) -> list:
    launched = []
    monkeypatch.setattr(notifications.platform, "system", lambda: system)
    monkeypatch.setattr(notifications.subprocess, "Popen", lambda cmd, **kw: launched.append((cmd, kw)))
    return launched


def test_macos_passes_text_as_script_arguments(monkeypatch: pytest.MonkeyPatch) -> None:
    launched = _capture_popen(monkeypatch, "Darwin")

    send_os_notification("Timer Complete!", _QUOTED_BODY)

    (command, kwargs), = launched
    assert command[-2:] == ["Timer Complete!", _QUOTED_BODY]
    assert all(_QUOTED_BODY not in part for part in command[:-2])
    assert kwargs["stdout"] == subprocess.DEVNULL


def test_windows_passes_text_through_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    launched = _capture_popen(monkeypatch, "Windows")

    send_os_notification("Timer Complete!", _QUOTED_BODY)

    (command, kwargs), = launched
    assert all(_QUOTED_BODY not in part for part in command)
    assert kwargs["env"]["TIMER_ALERT_BODY"] == _QUOTED_BODY
    assert kwargs["env"]["TIMER_ALERT_TITLE"] == "Timer Complete!"
    assert kwargs["stderr"] == subprocess.DEVNULL


def test_linux_keeps_dash_leading_name_as_body(monkeypatch: pytest.MonkeyPatch) -> None:
    launched = _capture_popen(monkeypatch, "Linux")

    send_os_notification("Timer Complete!", "--urgency=critical is done")

    (command, _), = launched
    assert command[-3:] == ["--", "Timer Complete!", "--urgency=critical is done"]
