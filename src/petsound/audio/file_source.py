"""
Виртуальное устройство: проигрывает звуковой файл блоками.
Удобно для отладки модели без микрофона.
"""
import threading
import time
from pathlib import Path
from typing import BinaryIO, Optional

import numpy as np
import soundfile as sf

from petsound.audio.buffer import AudioBuffer
from petsound.audio.capture import AudioSource, BufferCallback, ErrorCallback
from petsound.errors import DeviceUnavailable, PermissionDenied
from petsound.utils.logging import get_logger

logger = get_logger("audio.file_source")


class FileSource(AudioSource):
    """Читает файл (WAV, FLAC, OGG) и отдаёт моно-блоки в фоновом потоке."""

    def __init__(self, path: Path, block_size: int = 8192, realtime: bool = True) -> None:
        """
        Args:
            path: Путь к звуковому файлу.
            block_size: Кадров в одном блоке.
            realtime: Выдерживать темп реального времени между блоками.
        """
        self.path = Path(path)
        self.block_size = block_size
        self.realtime = realtime
        self.sample_rate = 0

        self._lock = threading.Lock()
        self._file: Optional[sf.SoundFile] = None
        self._handle: Optional[BinaryIO] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._finished = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._file is not None

    def _open(self) -> sf.SoundFile:
        # Файл открываем сами: libsndfile сводит все ошибки ОС к LibsndfileError,
        # а отказ в доступе нужно отличать от битого или отсутствующего файла
        try:
            handle = open(self.path, "rb")
        except PermissionError as e:
            raise PermissionDenied(str(self.path)) from e
        except OSError as e:
            raise DeviceUnavailable(f"cannot open {self.path}: {e}") from e

        try:
            audio_file = sf.SoundFile(handle)
        except (sf.LibsndfileError, RuntimeError) as e:
            handle.close()
            raise DeviceUnavailable(f"cannot decode {self.path}: {e}") from e
        self._handle = handle
        return audio_file

    def start(self, on_buffer: BufferCallback, on_error: Optional[ErrorCallback] = None) -> None:
        with self._lock:
            if self._file is not None:
                raise DeviceUnavailable(f"{self.path} is already playing")
            audio_file = self._open()
            self._file = audio_file
            self.sample_rate = audio_file.samplerate
            self._stop_event.clear()
            self._finished.clear()
            self._thread = threading.Thread(
                target=self._run,
                args=(audio_file, on_buffer, on_error),
                name=f"petsound-file-{self.path.name}",
                daemon=True,
            )
            self._thread.start()

        logger.info(
            "file_playback_started",
            path=str(self.path),
            sample_rate=self.sample_rate,
            frames=audio_file.frames,
        )

    def _run(self, audio_file: sf.SoundFile, on_buffer: BufferCallback, on_error: Optional[ErrorCallback]) -> None:
        position = 0
        block_seconds = self.block_size / self.sample_rate
        next_deadline = time.monotonic()
        try:
            for block in audio_file.blocks(blocksize=self.block_size, dtype="float32", always_2d=True):
                if self._stop_event.is_set():
                    break
                samples = block[:, 0].copy() if block.shape[1] == 1 else block.mean(axis=1).astype(np.float32)
                on_buffer(AudioBuffer(samples=samples, frame_position=position, sample_rate=self.sample_rate))
                position += len(samples)
                if self.realtime:
                    next_deadline += block_seconds
                    self._stop_event.wait(max(0.0, next_deadline - time.monotonic()))
        except (sf.LibsndfileError, RuntimeError) as e:
            if not self._stop_event.is_set():
                logger.error("file_playback_failed", path=str(self.path), error=str(e))
                if on_error is not None:
                    on_error(DeviceUnavailable(f"error reading {self.path}: {e}"))
        finally:
            self._finished.set()
            logger.info("file_playback_finished", path=str(self.path), frames=position)

    def wait_finished(self, timeout: Optional[float] = None) -> bool:
        """Ждёт окончания файла. Возвращает True, если файл дочитан."""
        return self._finished.wait(timeout)

    def stop(self) -> None:
        with self._lock:
            audio_file, self._file = self._file, None
            if audio_file is None:
                return
            self._stop_event.set()
            thread, self._thread = self._thread, None
            handle, self._handle = self._handle, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)
        audio_file.close()
        if handle is not None:
            handle.close()
