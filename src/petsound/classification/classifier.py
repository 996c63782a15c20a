"""
Классификаторы звука — внешняя модель за минимальным интерфейсом.
"""
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Tuple

import numpy as np

from petsound.utils.logging import get_logger

logger = get_logger("classification.classifier")

Prediction = Tuple[str, float]


class SoundClassifier(ABC):
    """Абстрактный классификатор окна аудио."""

    # Размер окна, который ожидает модель (None — не важно)
    window_size: Optional[int] = None

    @abstractmethod
    def classify(self, window: np.ndarray) -> List[Prediction]:
        """
        Классифицирует окно моно float32 сэмплов.

        Returns:
            Список (label, confidence). Порядок не важен.
        """
        pass


class FunctionClassifier(SoundClassifier):
    """Оборачивает обычную функцию window -> [(label, confidence)]."""

    def __init__(self, func: Callable[[np.ndarray], Sequence[Prediction]], window_size: Optional[int] = None):
        self._func = func
        self.window_size = window_size

    def classify(self, window: np.ndarray) -> List[Prediction]:
        return list(self._func(window))


def load_labels(path: Path) -> List[str]:
    """
    Читает файл меток: одна метка на строку.
    Поддерживает формат Teachable Machine ("0 Background Noise").
    """
    labels = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            parts = line.split(" ", 1)
            if len(parts) == 2 and parts[0].isdigit():
                line = parts[1].strip()
            labels.append(line)
    return labels


class TFLiteSoundClassifier(SoundClassifier):
    """Классификатор на TensorFlow Lite модели (tflite-runtime)."""

    def __init__(
        self,
        model_path: Path,
        labels_path: Optional[Path] = None,
        labels: Optional[Sequence[str]] = None,
        normalize: bool = True,
        interpreter: Any = None,
    ):
        """
        Args:
            model_path: Путь к .tflite модели.
            labels_path: Файл меток (если labels не переданы).
            labels: Метки в порядке выходов модели.
            normalize: Нормировать окно по пиковой амплитуде.
            interpreter: Готовый интерпретатор (по умолчанию создаётся из model_path).
        """
        self.model_path = Path(model_path)
        if labels is None:
            if labels_path is None:
                raise ValueError("labels or labels_path must be provided")
            labels = load_labels(Path(labels_path))
        self.labels = list(labels)
        self.normalize = normalize

        if interpreter is None:
            try:
                from tflite_runtime.interpreter import Interpreter
            except ImportError:
                raise ImportError("tflite-runtime package required. Install: pip install tflite-runtime")
            interpreter = Interpreter(model_path=str(self.model_path))

        self._interpreter = interpreter
        self._interpreter.allocate_tensors()
        self._input = self._interpreter.get_input_details()[0]
        self._output = self._interpreter.get_output_details()[0]
        self._input_shape = tuple(int(d) for d in self._input["shape"])
        self.window_size = self._input_shape[-1]

        logger.info(
            "tflite_model_loaded",
            model_path=str(self.model_path),
            window_size=self.window_size,
            labels=len(self.labels),
        )

    def classify(self, window: np.ndarray) -> List[Prediction]:
        audio = np.asarray(window, dtype=np.float32)
        if len(audio) != self.window_size:
            raise ValueError(f"model expects {self.window_size} samples, got {len(audio)}")

        if self.normalize:
            peak = float(np.max(np.abs(audio)))
            if peak > 0:
                audio = audio / peak

        self._interpreter.set_tensor(self._input["index"], audio.reshape(self._input_shape))
        self._interpreter.invoke()
        scores = np.asarray(self._interpreter.get_tensor(self._output["index"])[0])

        # Квантованный выход (uint8/int8) переводим обратно в вероятности
        scale, zero_point = self._output.get("quantization", (0.0, 0))
        if scale:
            scores = scale * (scores.astype(np.float32) - zero_point)

        if len(scores) != len(self.labels):
            raise ValueError(f"model returned {len(scores)} scores for {len(self.labels)} labels")

        predictions = [(label, float(score)) for label, score in zip(self.labels, scores)]
        predictions.sort(key=lambda p: p[1], reverse=True)
        return predictions
