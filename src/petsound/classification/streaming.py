"""
Потоковый классификатор: копит сэмплы в окне и запускает модель на каждом полном окне.

По умолчанию окна не перекрываются (hop == window): после срабатывания окно
очищается, остаток блока переносится в следующее окно.
"""
import math
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Callable, Iterable, List, Optional

import numpy as np

from petsound.audio.buffer import AnalysisWindow, AudioBuffer
from petsound.classification.classifier import Prediction, SoundClassifier
from petsound.classification.result import UNCERTAIN_LABEL, ClassificationResult
from petsound.errors import InferenceError, InferenceTimeout
from petsound.utils.logging import get_logger

logger = get_logger("classification.streaming")

ErrorHandler = Callable[[InferenceError], None]


def _log_inference_error(error: InferenceError) -> None:
    logger.error("inference_failed", timestamp=error.timestamp, error=error.detail)


def top_prediction(predictions: Iterable[Prediction]) -> Optional[Prediction]:
    """
    Выбирает класс с максимальной уверенностью.

    Raises:
        ValueError: Метка или уверенность некорректны.
    """
    best: Optional[Prediction] = None
    for item in predictions:
        label, confidence = item
        confidence = float(confidence)
        if not math.isfinite(confidence) or not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence for {label!r} out of range: {confidence}")
        if best is None or confidence > best[1]:
            best = (str(label), confidence)
    return best


class StreamingClassifier:
    """
    Окно анализа + вызов модели + политика порога уверенности.

    consume() вызывается только из одного потока анализа.
    """

    def __init__(
        self,
        classifier: SoundClassifier,
        window_size: int = 8192,
        hop_size: Optional[int] = None,
        confidence_threshold: float = 0.5,
        uncertain_label: str = UNCERTAIN_LABEL,
        inference_timeout: Optional[float] = None,
        on_error: Optional[ErrorHandler] = None,
    ) -> None:
        """
        Args:
            classifier: Модель (window -> [(label, confidence)]).
            window_size: Размер окна в сэмплах.
            hop_size: Шаг окна. None — равен window_size (без перекрытия).
            confidence_threshold: Уверенность <= порога превращается в uncertain_label.
            uncertain_label: Метка для неуверенных результатов.
            inference_timeout: Таймаут вызова модели в секундах (None — без таймаута).
            on_error: Получает InferenceError по каждому упавшему окну.
        """
        hop_size = window_size if hop_size is None else hop_size
        if not 0 < hop_size <= window_size:
            raise ValueError(f"hop_size must be in (0, {window_size}], got {hop_size}")
        if not 0.0 <= confidence_threshold <= 1.0:
            raise ValueError("confidence_threshold must be in [0, 1]")

        self.classifier = classifier
        self.window_size = window_size
        self.hop_size = hop_size
        self.confidence_threshold = confidence_threshold
        self.uncertain_label = uncertain_label
        self.inference_timeout = inference_timeout
        self._on_error = on_error or _log_inference_error

        self._window = AnalysisWindow(window_size)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._hung: Optional[Future] = None
        self.inference_calls = 0
        self.inference_errors = 0

    @property
    def pending_samples(self) -> int:
        """Сколько сэмплов накоплено в текущем окне."""
        return len(self._window)

    def consume(self, buffer: AudioBuffer) -> List[ClassificationResult]:
        """
        Добавляет блок в окно и классифицирует все заполненные окна.

        Returns:
            Результаты в порядке окон (может быть пустым).
        """
        if len(buffer) == 0:
            return []

        expected = self._window.end_position
        if expected is not None and buffer.frame_position != expected:
            logger.warning(
                "window_discontinuity",
                expected=expected,
                got=buffer.frame_position,
                discarded=len(self._window),
            )
            self._window.clear()

        self._window.append(buffer.samples, buffer.frame_position)

        results = []
        while self._window.is_full():
            window, timestamp = self._window.take(self.hop_size)
            try:
                result = self._infer(window, timestamp)
            except InferenceError as e:
                self.inference_errors += 1
                self._on_error(e)
                continue
            if result is not None:
                results.append(result)
        return results

    def _infer(self, window: np.ndarray, timestamp: int) -> Optional[ClassificationResult]:
        self.inference_calls += 1
        try:
            predictions = self._run_classifier(window, timestamp)
            top = top_prediction(predictions)
        except InferenceError:
            raise
        except Exception as e:
            raise InferenceError(cause=e, timestamp=timestamp) from e

        if top is None:
            logger.debug("no_prediction", timestamp=timestamp)
            return None

        label, confidence = top
        if confidence <= self.confidence_threshold:
            label = self.uncertain_label

        result = ClassificationResult(label=label, confidence=confidence, timestamp=timestamp)
        logger.debug("window_classified", label=label, confidence=confidence, timestamp=timestamp)
        return result

    def _run_classifier(self, window: np.ndarray, timestamp: int) -> List[Prediction]:
        if self.inference_timeout is None:
            return self.classifier.classify(window)

        if self._hung is not None and not self._hung.done():
            # Модель ещё считает окно, не уложившееся в таймаут: второй вызов не запускаем
            logger.warning("inference_skipped_busy", timestamp=timestamp)
            raise InferenceError(timestamp=timestamp, detail="model is still busy with a timed-out window")
        self._hung = None

        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="petsound-inference")
        future = self._executor.submit(self.classifier.classify, window)
        try:
            return future.result(timeout=self.inference_timeout)
        except FutureTimeoutError:
            self._hung = future
            raise InferenceTimeout(self.inference_timeout, timestamp=timestamp)

    def reset(self) -> None:
        """Сбрасывает накопленное окно."""
        self._window.clear()

    def close(self) -> None:
        """Сбрасывает окно и освобождает пул таймаута."""
        self.reset()
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        self._hung = None
