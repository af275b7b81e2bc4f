"""Cross-platform desktop notifications via OS-native commands.

- macOS: terminal-notifier (brew install terminal-notifier), osascript fallback
- Linux: notify-send (libnotify)
- Windows: PowerShell toast (best-effort)

No pip dependencies required. Desktops have no app badge, so the unread
count rides along in the notification subtitle.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys

from ..exceptions import NotificationError
from .base import NotificationSink, ScheduledNotification

logger = logging.getLogger("runwatch")

# Command each platform needs on PATH before we claim permission.
_REQUIRED_COMMAND = {
    "darwin": "osascript",
    "linux": "notify-send",
    "win32": "powershell",
}


class DesktopSink(NotificationSink):
    """Fire-and-forget desktop banners."""

    def __init__(self) -> None:
        super().__init__()
        self._platform = sys.platform
        # On macOS, prefer terminal-notifier (reliable banners) over osascript
        self._has_terminal_notifier = (
            self._platform == "darwin"
            and shutil.which("terminal-notifier") is not None
        )

    async def request_permission(self) -> bool:
        command = _REQUIRED_COMMAND.get(self._platform)
        if command is None:
            logger.debug(f"Desktop notifications unsupported on {self._platform}")
            return False
        if self._has_terminal_notifier:
            return True
        return shutil.which(command) is not None

    async def schedule(self, notification: ScheduledNotification) -> None:
        title = notification.title
        body = notification.body
        subtitle = f"{self.badge} unread" if self.badge else ""
        try:
            logger.info(f"Desktop notification: {title}")
            if self._platform == "darwin":
                self._notify_macos(title, body, subtitle)
            elif self._platform == "linux":
                self._notify_linux(title, body, subtitle)
            elif self._platform == "win32":
                self._notify_windows(title, body)
            else:
                raise NotificationError(
                    f"Desktop notifications unsupported on {self._platform}"
                )
        except OSError as e:
            raise NotificationError(f"Desktop notification error: {e}") from e

    # ── Platform backends ──────────────────────────────────────

    def _notify_macos(self, title: str, body: str, subtitle: str) -> None:
        if self._has_terminal_notifier:
            args = [
                "terminal-notifier",
                "-title", title,
                "-message", body,
                "-sound", "default",
                "-group", "runwatch",
            ]
            if subtitle:
                args += ["-subtitle", subtitle]
            subprocess.Popen(args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        else:
            script = (
                f'display notification "{_escape(body)}" '
                f'with title "{_escape(title)}"'
            )
            if subtitle:
                script += f' subtitle "{_escape(subtitle)}"'
            subprocess.Popen(
                ["osascript", "-e", script],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )

    def _notify_linux(self, title: str, body: str, subtitle: str) -> None:
        if subtitle:
            body = f"{body}\n{subtitle}"
        subprocess.Popen(
            ["notify-send", "--app-name=runwatch", title, body],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )

    def _notify_windows(self, title: str, body: str) -> None:
        ps_script = (
            "[Windows.UI.Notifications.ToastNotificationManager, "
            "Windows.UI.Notifications, ContentType = WindowsRuntime] "
            "| Out-Null; "
            "$xml = [Windows.UI.Notifications.ToastNotificationManager]::"
            "GetTemplateContent("
            "[Windows.UI.Notifications.ToastTemplateType]::ToastText02); "
            "$texts = $xml.GetElementsByTagName('text'); "
            f"$texts[0].AppendChild($xml.CreateTextNode('{_escape_ps(title)}'))"
            " | Out-Null; "
            f"$texts[1].AppendChild($xml.CreateTextNode('{_escape_ps(body)}'))"
            " | Out-Null; "
            "$toast = [Windows.UI.Notifications.ToastNotification]::new($xml); "
            "[Windows.UI.Notifications.ToastNotificationManager]::"
            "CreateToastNotifier('runwatch').Show($toast)"
        )
        subprocess.Popen(
            ["powershell", "-Command", ps_script],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )


def _escape(text: str) -> str:
    """Escape backslashes and double quotes for an AppleScript string."""
    return text.replace("\\", "\\\\").replace('"', '\\"')


def _escape_ps(text: str) -> str:
    """Double single quotes for a PowerShell single-quoted string."""
    return text.replace("'", "''")
