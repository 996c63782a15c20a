"""
Захват аудио с микрофона через PortAudio (sounddevice).
"""
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

import numpy as np

from petsound.audio.buffer import AudioBuffer
from petsound.errors import DeviceUnavailable, PermissionDenied, PetSoundError
from petsound.utils.logging import get_logger

logger = get_logger("audio.capture")

BufferCallback = Callable[[AudioBuffer], None]
ErrorCallback = Callable[[PetSoundError], None]

# Фрагменты сообщений PortAudio/CoreAudio/ALSA об отказе в доступе
_PERMISSION_MARKERS = ("permission", "not permitted", "access denied", "unauthorized", "not authorized")


def _load_sounddevice():
    """Импортирует sounddevice (требует системную библиотеку PortAudio)."""
    try:
        import sounddevice
    except OSError as e:
        raise DeviceUnavailable(f"PortAudio library not found ({e})") from e
    return sounddevice


class AudioSource(ABC):
    """Абстрактный источник блоков AudioBuffer."""

    sample_rate: int

    @abstractmethod
    def start(self, on_buffer: BufferCallback, on_error: Optional[ErrorCallback] = None) -> None:
        """
        Начинает доставку блоков.

        Args:
            on_buffer: Вызывается для каждого блока в порядке поступления.
            on_error: Вызывается, если захват оборвался во время работы.

        Raises:
            DeviceUnavailable: Устройство не открывается.
            PermissionDenied: Нет разрешения на захват.
        """
        ...

    @abstractmethod
    def stop(self) -> None:
        """Останавливает доставку и освобождает устройство. Идемпотентен."""
        ...

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Удерживает ли источник устройство."""
        ...


class MicrophoneSource(AudioSource):
    """
    Источник звука с устройства ввода.
    Многоканальный вход сводится в моно.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        block_size: int = 8192,
        device: int | str | None = None,
    ) -> None:
        """
        Args:
            sample_rate: Частота дискретизации.
            channels: Количество каналов устройства.
            block_size: Кадров в одном callback.
            device: Индекс или имя устройства (None — по умолчанию).
        """
        self.sample_rate = sample_rate
        self.channels = channels
        self.block_size = block_size
        self.device = device

        self._lock = threading.Lock()
        self._stream = None
        self._stopping = False
        self._position = 0

    @property
    def is_running(self) -> bool:
        return self._stream is not None

    def _translate_error(self, error: Exception) -> PetSoundError:
        message = str(error)
        if any(marker in message.lower() for marker in _PERMISSION_MARKERS):
            return PermissionDenied(message)
        return DeviceUnavailable(message)

    def start(self, on_buffer: BufferCallback, on_error: Optional[ErrorCallback] = None) -> None:
        sd = _load_sounddevice()

        with self._lock:
            if self._stream is not None:
                raise DeviceUnavailable("capture stream is already open")

            try:
                sd.check_input_settings(
                    device=self.device,
                    channels=self.channels,
                    samplerate=self.sample_rate,
                    dtype="float32",
                )
            except (ValueError, sd.PortAudioError) as e:
                raise self._translate_error(e) from e

            self._stopping = False
            self._position = 0

            def callback(indata: np.ndarray, frames: int, time_info, status) -> None:
                if status:
                    logger.warning("audio_status", status=str(status))
                if indata.shape[1] == 1:
                    samples = indata[:, 0].copy()
                else:
                    samples = indata.mean(axis=1).astype(np.float32)
                buffer = AudioBuffer(
                    samples=samples,
                    frame_position=self._position,
                    sample_rate=self.sample_rate,
                )
                self._position += frames
                on_buffer(buffer)

            def finished() -> None:
                if self._stopping:
                    return
                logger.error("audio_stream_lost", device=self.device)
                if on_error is not None:
                    on_error(DeviceUnavailable("audio stream stopped unexpectedly"))

            stream = None
            try:
                stream = sd.InputStream(
                    samplerate=self.sample_rate,
                    blocksize=self.block_size,
                    device=self.device,
                    channels=self.channels,
                    dtype="float32",
                    callback=callback,
                    finished_callback=finished,
                )
                stream.start()
            except sd.PortAudioError as e:
                if stream is not None:
                    self._stopping = True
                    stream.close()
                raise self._translate_error(e) from e

            self._stream = stream

        logger.info(
            "capture_started",
            device=self.device,
            sample_rate=self.sample_rate,
            channels=self.channels,
            block_size=self.block_size,
        )

    def stop(self) -> None:
        with self._lock:
            stream, self._stream = self._stream, None
            if stream is None:
                return
            self._stopping = True
            try:
                stream.stop()
            finally:
                stream.close()
        logger.info("capture_stopped", device=self.device, frames=self._position)


def list_input_devices() -> list[dict]:
    """Возвращает список устройств ввода: index, name, channels, default_samplerate."""
    sd = _load_sounddevice()
    devices = []
    for index, info in enumerate(sd.query_devices()):
        if info["max_input_channels"] <= 0:
            continue
        devices.append(
            {
                "index": index,
                "name": info["name"],
                "channels": info["max_input_channels"],
                "default_samplerate": info["default_samplerate"],
            }
        )
    return devices
