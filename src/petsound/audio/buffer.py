"""
Буферы аудио: неизменяемый блок от устройства и окно анализа.
"""
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class AudioBuffer:
    """
    Блок моно PCM float32 от источника звука.

    frame_position — номер первого сэмпла блока от начала захвата.
    """

    samples: np.ndarray
    frame_position: int
    sample_rate: int

    def __post_init__(self) -> None:
        samples = np.asarray(self.samples, dtype=np.float32)
        if samples.ndim != 1:
            raise ValueError(f"AudioBuffer expects mono samples, got shape {samples.shape}")
        if self.frame_position < 0:
            raise ValueError("frame_position must be non-negative")
        if samples.flags.writeable:
            samples = samples.copy()
            samples.setflags(write=False)
        object.__setattr__(self, "samples", samples)

    @property
    def end_position(self) -> int:
        """Позиция сэмпла сразу за блоком."""
        return self.frame_position + len(self.samples)

    @property
    def duration(self) -> float:
        """Длительность блока в секундах."""
        return len(self.samples) / self.sample_rate

    def __len__(self) -> int:
        return len(self.samples)


class AnalysisWindow:
    """Накапливает сэмплы до размера окна модели."""

    def __init__(self, size: int) -> None:
        if size <= 0:
            raise ValueError("window size must be positive")
        self.size = size
        self._chunks: List[np.ndarray] = []
        self._count = 0
        self._start_position: Optional[int] = None

    @property
    def start_position(self) -> Optional[int]:
        """Позиция первого сэмпла в окне (None, если окно пустое)."""
        return self._start_position

    @property
    def end_position(self) -> Optional[int]:
        """Позиция, с которой должен начинаться следующий блок."""
        if self._start_position is None:
            return None
        return self._start_position + self._count

    def append(self, samples: np.ndarray, frame_position: int) -> None:
        """Добавляет сэмплы, начинающиеся с frame_position."""
        if len(samples) == 0:
            return
        if self._start_position is None:
            self._start_position = frame_position
        self._chunks.append(samples)
        self._count += len(samples)

    def is_full(self) -> bool:
        """Хватает ли сэмплов на одно окно."""
        return self._count >= self.size

    def take(self, hop: int) -> Tuple[np.ndarray, int]:
        """
        Забирает копию полного окна и сдвигает начало на hop сэмплов.

        Returns:
            (окно длиной size, позиция его первого сэмпла)
        """
        if not self.is_full():
            raise ValueError("window is not full yet")
        data = np.concatenate(self._chunks) if len(self._chunks) > 1 else self._chunks[0]
        window = np.array(data[: self.size], dtype=np.float32, copy=True)
        start = self._start_position

        rest = data[hop:]
        if len(rest):
            self._chunks = [rest]
            self._count = len(rest)
            self._start_position = start + hop
        else:
            self.clear()
        return window, start

    def clear(self) -> None:
        """Очищает окно."""
        self._chunks = []
        self._count = 0
        self._start_position = None

    def is_empty(self) -> bool:
        """Проверяет, пусто ли окно."""
        return self._count == 0

    def __len__(self) -> int:
        return self._count
