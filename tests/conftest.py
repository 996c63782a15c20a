"""Root conftest — общие фейки и фикстуры для тестов petsound.

Реальные устройство и модель не нужны: источник и классификатор подменяются
фейками, которые управляются из теста.
"""
import threading
import time
from typing import Callable, List, Optional

import numpy as np
import pytest

from petsound.audio.buffer import AudioBuffer
from petsound.audio.capture import AudioSource
from petsound.classification.classifier import SoundClassifier


class FakeSource(AudioSource):
    """Источник, который отдаёт блоки по команде теста."""

    def __init__(self, sample_rate: int = 16000, fail_with: Optional[Exception] = None):
        self.sample_rate = sample_rate
        self.fail_with = fail_with
        self.start_calls = 0
        self.stop_calls = 0
        self.acquired = False
        self._on_buffer = None
        self._on_error = None
        self._position = 0

    @property
    def is_running(self) -> bool:
        return self.acquired

    def start(self, on_buffer, on_error=None) -> None:
        self.start_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        self.acquired = True
        self._on_buffer = on_buffer
        self._on_error = on_error
        self._position = 0

    def stop(self) -> None:
        self.stop_calls += 1
        self.acquired = False

    def push(self, samples) -> AudioBuffer:
        """Доставляет блок так, как это сделал бы callback устройства."""
        samples = np.asarray(samples, dtype=np.float32)
        buffer = AudioBuffer(samples=samples, frame_position=self._position, sample_rate=self.sample_rate)
        self._position += len(samples)
        self._on_buffer(buffer)
        return buffer

    def emit_error(self, error) -> None:
        self._on_error(error)


class FakeClassifier(SoundClassifier):
    """
    Классификатор, который запоминает окна.

    respond — функция window -> predictions (может бросать исключение).
    gate — если задан, classify ждёт его перед ответом.
    """

    def __init__(
        self,
        predictions=None,
        respond: Optional[Callable] = None,
        window_size: Optional[int] = None,
        gate: Optional[threading.Event] = None,
    ):
        self.predictions = predictions if predictions is not None else [("dog", 0.9), ("cat", 0.1)]
        self.respond = respond
        self.window_size = window_size
        self.gate = gate
        self.entered = threading.Event()
        self.windows: List[np.ndarray] = []

    def classify(self, window):
        self.windows.append(np.array(window, copy=True))
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5.0)
        if self.respond is not None:
            return self.respond(window)
        return list(self.predictions)


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Ждёт, пока predicate не станет истинным."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def make_buffer(samples, frame_position: int = 0, sample_rate: int = 16000) -> AudioBuffer:
    return AudioBuffer(samples=np.asarray(samples, dtype=np.float32), frame_position=frame_position, sample_rate=sample_rate)


@pytest.fixture
def fake_source():
    return FakeSource()


@pytest.fixture
def fake_classifier():
    return FakeClassifier()
