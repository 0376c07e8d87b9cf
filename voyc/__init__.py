"""
Voyc - Voice Dictation for the Linux Desktop

Captures a burst of speech, transcribes it with a cloud speech-to-text
service, optionally refines the text with a language model and pastes it
into the focused application.
"""

__version__ = "1.0.0"

from voyc.config import Config
from voyc.orchestrator import DictationOrchestrator
from voyc.state import DictationState, DictationStateMachine

__all__ = [
    "Config",
    "DictationOrchestrator",
    "DictationState",
    "DictationStateMachine",
    "__version__",
]
