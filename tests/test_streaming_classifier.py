"""
Тесты потокового классификатора (окно + порог уверенности).
"""
import threading
import time

import numpy as np
import pytest

from conftest import FakeClassifier, make_buffer, wait_until
from petsound.classification.streaming import StreamingClassifier, top_prediction
from petsound.errors import InferenceError, InferenceTimeout


def feed(streaming, chunks):
    """Подаёт блоки подряд, возвращает все результаты."""
    results = []
    position = 0
    for chunk in chunks:
        results.extend(streaming.consume(make_buffer(chunk, frame_position=position)))
        position += len(chunk)
    return results


class TestWindowing:
    """Окна без перекрытия."""

    def test_two_full_buffers_fire_twice(self):
        """16384 сэмпла двумя блоками по 8192 — ровно 2 вызова, каждый на свой блок."""
        classifier = FakeClassifier()
        streaming = StreamingClassifier(classifier, window_size=8192)
        first = np.linspace(-1, 0, 8192, dtype=np.float32)
        second = np.linspace(0, 1, 8192, dtype=np.float32)

        results = feed(streaming, [first, second])

        assert len(classifier.windows) == 2
        assert np.array_equal(classifier.windows[0], first)
        assert np.array_equal(classifier.windows[1], second)
        assert [r.timestamp for r in results] == [0, 8192]

    @pytest.mark.parametrize("seed", [0, 1, 2, 3])
    def test_calls_equal_floor_of_total_over_window(self, seed):
        """Количество вызовов = floor(N / W), окна смежные и идут по порядку."""
        rng = np.random.default_rng(seed)
        window_size = 1000
        sizes = rng.integers(1, 2500, size=20)
        signal = rng.standard_normal(int(sizes.sum())).astype(np.float32)
        chunks = np.split(signal, np.cumsum(sizes)[:-1])

        classifier = FakeClassifier()
        streaming = StreamingClassifier(classifier, window_size=window_size)
        results = feed(streaming, chunks)

        calls = len(signal) // window_size
        assert len(classifier.windows) == calls
        assert np.array_equal(np.concatenate(classifier.windows), signal[: calls * window_size])
        assert [r.timestamp for r in results] == [i * window_size for i in range(calls)]
        assert streaming.pending_samples == len(signal) - calls * window_size

    def test_partial_window_does_not_fire(self):
        """Неполное окно не классифицируется."""
        classifier = FakeClassifier()
        streaming = StreamingClassifier(classifier, window_size=100)

        assert feed(streaming, [np.zeros(99)]) == []
        assert classifier.windows == []

    def test_window_is_a_copy(self):
        """Модель получает копию, а не буфер устройства."""
        seen = []
        classifier = FakeClassifier(respond=lambda w: seen.append(w) or [("dog", 0.9)])
        streaming = StreamingClassifier(classifier, window_size=4)
        buffer = make_buffer([1, 2, 3, 4])

        streaming.consume(buffer)

        assert seen[0].flags.writeable
        assert not np.shares_memory(seen[0], buffer.samples)

    def test_overlapping_hop(self):
        """hop < window: floor((N - W) / H) + 1 окон."""
        classifier = FakeClassifier()
        streaming = StreamingClassifier(classifier, window_size=4, hop_size=2)

        results = feed(streaming, [np.arange(10)])

        assert len(classifier.windows) == 4
        assert [r.timestamp for r in results] == [0, 2, 4, 6]
        assert np.array_equal(classifier.windows[1], np.arange(2, 6))

    @pytest.mark.parametrize("hop", [0, -1, 9])
    def test_invalid_hop_rejected(self, hop):
        with pytest.raises(ValueError):
            StreamingClassifier(FakeClassifier(), window_size=8, hop_size=hop)

    def test_discontinuity_resets_window(self):
        """Разрыв позиций (потерянный блок) сбрасывает частичное окно."""
        classifier = FakeClassifier()
        streaming = StreamingClassifier(classifier, window_size=4)

        streaming.consume(make_buffer([1, 1], frame_position=0))
        streaming.consume(make_buffer([2, 2], frame_position=10))
        results = streaming.consume(make_buffer([3, 3], frame_position=12))

        assert len(classifier.windows) == 1
        assert np.array_equal(classifier.windows[0], [2, 2, 3, 3])
        assert results[0].timestamp == 10

    def test_reset_discards_pending(self):
        streaming = StreamingClassifier(FakeClassifier(), window_size=4)
        streaming.consume(make_buffer([1, 2, 3]))

        streaming.reset()

        assert streaming.pending_samples == 0


class TestConfidencePolicy:
    """Порог уверенности и выбор топ-класса."""

    @pytest.mark.parametrize(
        "confidence, expected",
        [(0.3, "Uncertain"), (0.5, "Uncertain"), (0.0, "Uncertain"), (0.51, "dog"), (1.0, "dog")],
    )
    def test_threshold_mapping(self, confidence, expected):
        """Уверенность <= 0.5 — Uncertain, иначе имя класса."""
        classifier = FakeClassifier(predictions=[("dog", confidence)])
        streaming = StreamingClassifier(classifier, window_size=2)

        (result,) = streaming.consume(make_buffer([0.1, 0.2]))

        assert result.label == expected
        assert result.confidence == pytest.approx(confidence)

    def test_unordered_predictions_take_max(self):
        classifier = FakeClassifier(predictions=[("cat", 0.2), ("dog", 0.7), ("bird", 0.1)])
        streaming = StreamingClassifier(classifier, window_size=2)

        (result,) = streaming.consume(make_buffer([0, 0]))

        assert result.label == "dog"

    def test_custom_threshold_and_label(self):
        classifier = FakeClassifier(predictions=[("cat", 0.8)])
        streaming = StreamingClassifier(classifier, window_size=2, confidence_threshold=0.9, uncertain_label="?")

        (result,) = streaming.consume(make_buffer([0, 0]))

        assert result.label == "?"

    def test_empty_predictions_give_no_result(self):
        classifier = FakeClassifier(predictions=[])
        streaming = StreamingClassifier(classifier, window_size=2)

        assert streaming.consume(make_buffer([0, 0])) == []
        assert streaming.inference_calls == 1

    def test_top_prediction_accepts_numpy_scores(self):
        assert top_prediction([("a", np.float32(0.25)), ("b", np.float64(0.75))]) == ("b", 0.75)

    def test_top_prediction_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            top_prediction([("a", 1.5)])


class TestInferenceErrors:
    """Ошибки модели не останавливают обработку."""

    def test_error_reported_and_processing_continues(self):
        calls = {"n": 0}

        def respond(window):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("model exploded")
            return [("cat", 0.8)]

        errors = []
        streaming = StreamingClassifier(FakeClassifier(respond=respond), window_size=2, on_error=errors.append)

        results = feed(streaming, [[0, 0, 1, 1]])

        assert len(errors) == 1
        assert isinstance(errors[0], InferenceError)
        assert isinstance(errors[0].cause, RuntimeError)
        assert errors[0].timestamp == 0
        assert [r.timestamp for r in results] == [2]
        assert streaming.inference_errors == 1

    def test_malformed_output_is_inference_error(self):
        errors = []
        classifier = FakeClassifier(predictions=[("dog", float("nan"))])
        streaming = StreamingClassifier(classifier, window_size=2, on_error=errors.append)

        assert streaming.consume(make_buffer([0, 0])) == []
        assert isinstance(errors[0].cause, ValueError)

    def test_timeout(self):
        """Модель дольше таймаута — InferenceTimeout, после её возврата окна снова обрабатываются."""
        gate = threading.Event()
        released = threading.Event()
        calls = {"n": 0}

        def respond(window):
            calls["n"] += 1
            if calls["n"] == 1:
                gate.wait(5.0)
                released.set()
            return [("dog", 0.9)]

        errors = []
        streaming = StreamingClassifier(
            FakeClassifier(respond=respond),
            window_size=2,
            inference_timeout=0.05,
            on_error=errors.append,
        )
        try:
            assert streaming.consume(make_buffer([0, 0], frame_position=0)) == []
            gate.set()
            assert released.wait(2.0)
            assert wait_until(lambda: streaming._hung is None or streaming._hung.done())
            results = streaming.consume(make_buffer([1, 1], frame_position=2))
        finally:
            gate.set()
            streaming.close()

        assert len(errors) == 1
        assert isinstance(errors[0], InferenceTimeout)
        assert errors[0].timestamp == 0
        assert [r.timestamp for r in results] == [2]

    def test_window_skipped_while_model_busy(self):
        """Пока зависший вызов не вернулся, модель повторно не вызывается."""
        gate = threading.Event()
        calls = {"n": 0}

        def respond(window):
            calls["n"] += 1
            gate.wait(5.0)
            return [("dog", 0.9)]

        errors = []
        streaming = StreamingClassifier(
            FakeClassifier(respond=respond),
            window_size=2,
            inference_timeout=0.05,
            on_error=errors.append,
        )
        try:
            results = feed(streaming, [[0, 0, 1, 1, 2, 2]])
            assert calls["n"] == 1
        finally:
            gate.set()
            streaming.close()

        assert results == []
        assert isinstance(errors[0], InferenceTimeout)
        assert [type(e) for e in errors[1:]] == [InferenceError, InferenceError]
        assert [e.timestamp for e in errors] == [0, 2, 4]
        assert "busy" in errors[1].detail

    def test_classify_never_runs_concurrently(self):
        lock = threading.Lock()
        state = {"active": 0, "max": 0}

        def respond(window):
            with lock:
                state["active"] += 1
                state["max"] = max(state["max"], state["active"])
            time.sleep(0.3)
            with lock:
                state["active"] -= 1
            return [("dog", 0.9)]

        streaming = StreamingClassifier(
            FakeClassifier(respond=respond),
            window_size=2,
            inference_timeout=0.05,
            on_error=lambda error: None,
        )
        try:
            feed(streaming, [[0, 0]])
            time.sleep(0.1)
            streaming.consume(make_buffer([1, 1], frame_position=2))
            assert wait_until(lambda: state["active"] == 0)
            streaming.consume(make_buffer([2, 2], frame_position=4))
            assert wait_until(lambda: state["active"] == 0)
        finally:
            streaming.close()

        assert state["max"] == 1

    def test_default_handler_logs_without_raising(self):
        classifier = FakeClassifier(respond=lambda w: 1 / 0)
        streaming = StreamingClassifier(classifier, window_size=2)

        assert streaming.consume(make_buffer([0, 0])) == []
