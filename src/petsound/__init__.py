"""
Пакет petsound: потоковая классификация звука с микрофона.
"""
from petsound.audio import AudioBuffer, AudioSource, FileSource, MicrophoneSource
from petsound.classification import (
    ClassificationResult,
    SoundClassifier,
    StreamingClassifier,
    TFLiteSoundClassifier,
)
from petsound.errors import (
    AlreadyRunning,
    DeviceUnavailable,
    InferenceError,
    InferenceTimeout,
    PermissionDenied,
    PetSoundError,
)
from petsound.session import ErrorStream, ResultChannel, SessionController, SessionState

__version__ = "0.1.0"

__all__ = [
    "AudioBuffer",
    "AudioSource",
    "MicrophoneSource",
    "FileSource",
    "ClassificationResult",
    "SoundClassifier",
    "StreamingClassifier",
    "TFLiteSoundClassifier",
    "ResultChannel",
    "ErrorStream",
    "SessionController",
    "SessionState",
    "PetSoundError",
    "PermissionDenied",
    "DeviceUnavailable",
    "AlreadyRunning",
    "InferenceError",
    "InferenceTimeout",
]
