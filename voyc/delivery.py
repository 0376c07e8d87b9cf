"""Delivery of final text to the focused application."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any

import pyperclip

if TYPE_CHECKING:
    from voyc.config import DeliveryConfig

logger = logging.getLogger(__name__)


class DeliveryOutcome(str, Enum):
    AUTO_PASTE = "auto_paste"
    CLIPBOARD_ONLY = "clipboard_only"
    FAILED = "failed"

    @property
    def succeeded(self) -> bool:
        return self != DeliveryOutcome.FAILED


def _keyboard_controller() -> Any:
    # pynput needs a display server at import time
    from pynput.keyboard import Controller

    return Controller()


def _paste_modifiers(terminal: bool) -> list[Any]:
    from pynput.keyboard import Key

    return [Key.ctrl, Key.shift] if terminal else [Key.ctrl]


class Delivery(ABC):
    """Hands text to the desktop. Blocking; call from a worker thread."""

    @abstractmethod
    def deliver(self, text: str, terminal: bool = False) -> DeliveryOutcome:
        ...


class ClipboardDelivery(Delivery):
    """Copies text to the system clipboard and leaves pasting to the user."""

    def deliver(self, text: str, terminal: bool = False) -> DeliveryOutcome:
        try:
            pyperclip.copy(text)
        except pyperclip.PyperclipException as e:
            logger.error("Failed to copy text to clipboard: %s", e)
            return DeliveryOutcome.FAILED
        return DeliveryOutcome.CLIPBOARD_ONLY


class PasteDelivery(ClipboardDelivery):
    """
    Copies text to the clipboard, then simulates the paste shortcut.

    Terminals take Ctrl+Shift+V. If key simulation is unavailable the text
    still sits on the clipboard and the outcome is ``CLIPBOARD_ONLY``.
    """

    def __init__(self, paste_delay_s: float = 0.05, controller: Any = None) -> None:
        self._paste_delay_s = paste_delay_s
        self._controller = controller

    def deliver(self, text: str, terminal: bool = False) -> DeliveryOutcome:
        outcome = super().deliver(text, terminal)
        if outcome == DeliveryOutcome.FAILED:
            return outcome

        try:
            self._paste(terminal)
        except Exception as e:
            logger.warning("Paste simulation failed, text left on clipboard: %s", e)
            return DeliveryOutcome.CLIPBOARD_ONLY
        return DeliveryOutcome.AUTO_PASTE

    def _paste(self, terminal: bool) -> None:
        modifiers = _paste_modifiers(terminal)
        if self._controller is None:
            self._controller = _keyboard_controller()

        # Give the clipboard owner a moment before the target reads it
        time.sleep(self._paste_delay_s)
        for key in modifiers:
            self._controller.press(key)
        try:
            self._controller.press("v")
            self._controller.release("v")
        finally:
            for key in reversed(modifiers):
                self._controller.release(key)


class TypedDelivery(ClipboardDelivery):
    """Types text into the focused window, keeping a clipboard copy as backup."""

    def __init__(self, type_delay_s: float = 0.05, controller: Any = None) -> None:
        self._type_delay_s = type_delay_s
        self._controller = controller

    def deliver(self, text: str, terminal: bool = False) -> DeliveryOutcome:
        outcome = super().deliver(text, terminal)
        try:
            if self._controller is None:
                self._controller = _keyboard_controller()
            time.sleep(self._type_delay_s)
            self._controller.type(text)
        except Exception as e:
            logger.error("Failed to type text: %s", e)
            return outcome
        return DeliveryOutcome.AUTO_PASTE


def create_delivery(config: "DeliveryConfig") -> Delivery:
    from voyc.config import DeliveryMode

    if config.mode == DeliveryMode.CLIPBOARD:
        return ClipboardDelivery()
    if config.mode == DeliveryMode.TYPE:
        return TypedDelivery(config.paste_delay_s)
    return PasteDelivery(config.paste_delay_s)
