"""
Channel transports: native push, email, in-app banner.

PRIVACY: payloads carry only display text and a deep link, never audio.
"""

import os
import subprocess
import threading
import time
from collections import deque
from typing import Optional, Callable, Deque, Dict, Any, List

import requests

from .delivery import Channel, NotificationPayload, Transport
from .engine_config import DeliveryConfig
from .errors import ErrorKind


RESEND_API_KEY_ENV = "RESEND_API_KEY"


class TerminalNotifierTransport(Transport):
    """
    macOS push via terminal-notifier.

    Install: brew install terminal-notifier
    Clicking the notification opens the recording deep link.
    """

    def __init__(self, sound: str = "default"):
        self.sound = sound
        self.last_posted: Optional[Dict[str, Any]] = None

    def send(self, channel: Channel, user_id: str, payload: NotificationPayload) -> Optional[ErrorKind]:
        cmd = [
            "terminal-notifier",
            "-title", payload.title,
            "-message", payload.body,
            "-open", payload.url,
            "-group", payload.tag,
            "-sound", self.sound
        ]

        try:
            # Non-blocking: give it 0.1s to detect immediate failures
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True
            )
            try:
                _, stderr = proc.communicate(timeout=0.1)
                if proc.returncode:
                    print(f"  [NOTIFICATION] Error: {stderr.strip()}")
                    return ErrorKind.TRANSPORT_FAILURE
                if stderr:
                    print(f"  [NOTIFICATION] Warning: {stderr.strip()}")
            except subprocess.TimeoutExpired:
                # Still running, notification was posted
                pass
        except FileNotFoundError:
            print("  [NOTIFICATION] Error: terminal-notifier not found")
            return ErrorKind.TRANSPORT_FAILURE
        except OSError as e:
            print(f"  [NOTIFICATION] Error: {e}")
            return ErrorKind.TRANSPORT_FAILURE

        self.last_posted = {
            "user_id": user_id,
            "title": payload.title,
            "posted_at": time.time()
        }
        return None


class ResendEmailTransport(Transport):
    """
    Email via the Resend HTTP API.

    API key comes from RESEND_API_KEY unless passed explicitly.
    """

    def __init__(
        self,
        config: Optional[DeliveryConfig] = None,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        self.config = config or DeliveryConfig()
        self.api_key = api_key if api_key is not None else os.environ.get(RESEND_API_KEY_ENV)
        self.session = session or requests.Session()

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

    def render_html(self, payload: NotificationPayload) -> str:
        """HTML body with the record button."""
        return f"""
        <div style="font-family: sans-serif; max-width: 480px; margin: 0 auto; text-align: center;">
          <h1>{payload.title}</h1>
          <p>{payload.body}</p>
          <p>
            <a href="{payload.url}"
               style="display: inline-block; padding: 12px 24px; background: #111; color: #fff;
                      text-decoration: none; border-radius: 8px;">
              Record Your Pitch Now
            </a>
          </p>
          <p style="color: #888; font-size: 12px;">This prompt expires in 2 minutes.</p>
        </div>
        """

    def build_request(self, payload: NotificationPayload) -> Dict[str, Any]:
        return {
            "from": self.config.email_from,
            "to": [payload.recipient],
            "subject": self.config.email_subject,
            "html": self.render_html(payload)
        }

    def send(self, channel: Channel, user_id: str, payload: NotificationPayload) -> Optional[ErrorKind]:
        if not self.api_key:
            print(f"  [EMAIL] Error: {RESEND_API_KEY_ENV} not set")
            return ErrorKind.TRANSPORT_FAILURE
        if not payload.recipient:
            print(f"  [EMAIL] Error: no email address for {user_id}")
            return ErrorKind.TRANSPORT_FAILURE

        try:
            response = self.session.post(
                self.config.email_api_url,
                headers=self.headers,
                json=self.build_request(payload),
                timeout=self.config.http_timeout_sec
            )
            response.raise_for_status()
            return None
        except requests.exceptions.Timeout:
            print("  [EMAIL] Error: Resend request timed out")
            return ErrorKind.TRANSPORT_FAILURE
        except requests.exceptions.RequestException as e:
            print(f"  [EMAIL] Error: {e}")
            return ErrorKind.TRANSPORT_FAILURE


class InAppBannerTransport(Transport):
    """
    In-app banner queue.

    Only delivers while the app is open; the UI pops banners off the queue.
    """

    def __init__(self, is_app_open: Optional[Callable[[], bool]] = None, max_banners: int = 20):
        self.is_app_open = is_app_open or (lambda: True)
        self._lock = threading.Lock()
        self.banners: Deque[NotificationPayload] = deque(maxlen=max_banners)

    def send(self, channel: Channel, user_id: str, payload: NotificationPayload) -> Optional[ErrorKind]:
        if not self.is_app_open():
            return ErrorKind.TRANSPORT_FAILURE
        with self._lock:
            self.banners.append(payload)
        return None

    def pop_banners(self) -> List[NotificationPayload]:
        """Take all pending banners."""
        with self._lock:
            banners = list(self.banners)
            self.banners.clear()
        return banners
