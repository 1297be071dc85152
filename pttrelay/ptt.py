"""
Push-to-Talk hotkey bound to a PttSession.

Uses keyboard library for global hotkey detection.
"""

import time
import threading
import logging

from .session import PttSession

logger = logging.getLogger(__name__)

try:
    import keyboard
    KEYBOARD_AVAILABLE = True
except ImportError:
    KEYBOARD_AVAILABLE = False
    logger.warning("keyboard library not available - PTT hotkey disabled")


class PushToTalkKey:
    """
    Global key hook: hold to record, release to send.

    Key-repeat "down" events while held are ignored; edges closer together
    than the debounce window are dropped.
    """

    def __init__(self, session: PttSession, ptt_key: str = "F8", debounce_ms: int = 50):
        """
        Args:
            session: Session driven by the key
            ptt_key: Key to use for PTT (e.g., 'F8', 'ctrl+space')
            debounce_ms: Debounce duration in milliseconds
        """
        self.session = session
        self.ptt_key = ptt_key
        self.debounce_ms = debounce_ms
        self._pressed = False
        self._last_event_time = float("-inf")
        self._lock = threading.Lock()
        self._active = False

    def _handle_key_event(self, event):
        now_ms = time.monotonic() * 1000

        with self._lock:
            if now_ms - self._last_event_time < self.debounce_ms:
                return

            if event.event_type == 'down' and not self._pressed:
                self._pressed = True
                self._last_event_time = now_ms
                action = self.session.start
            elif event.event_type == 'up' and self._pressed:
                self._pressed = False
                self._last_event_time = now_ms
                action = self.session.stop
            else:
                return

        logger.debug(f"PTT {event.event_type}: {self.ptt_key}")
        try:
            action()
        except Exception as e:
            logger.error(f"Error handling PTT {event.event_type}: {e}")

    def start(self) -> bool:
        """
        Start listening for the hotkey.

        Returns:
            True if the hook is installed
        """
        if not KEYBOARD_AVAILABLE:
            logger.error("Cannot start PTT - keyboard library not available")
            return False

        if self._active:
            return True

        try:
            keyboard.hook_key(self.ptt_key, self._handle_key_event)
        except Exception as e:
            logger.error(f"Failed to hook PTT key {self.ptt_key}: {e}")
            return False

        self._active = True
        logger.info(f"PTT hotkey active: {self.ptt_key}")
        return True

    def stop(self):
        """Remove the hook. A held key is treated as released."""
        if not self._active:
            return

        try:
            keyboard.unhook_key(self.ptt_key)
        except Exception as e:
            logger.error(f"Error removing PTT hook: {e}")
        self._active = False

        with self._lock:
            was_pressed, self._pressed = self._pressed, False
        if was_pressed:
            self.session.stop()
        logger.info("PTT hotkey stopped")

    def is_pressed(self) -> bool:
        with self._lock:
            return self._pressed

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
