"""
Модуль захвата аудио: источники и буферы.
"""
from petsound.audio.buffer import AudioBuffer, AnalysisWindow
from petsound.audio.capture import AudioSource, MicrophoneSource, list_input_devices
from petsound.audio.file_source import FileSource

__all__ = [
    "AudioBuffer",
    "AnalysisWindow",
    "AudioSource",
    "MicrophoneSource",
    "FileSource",
    "list_input_devices",
]
