"""
Управление сессией захвата и классификации.

Жизненный цикл: IDLE -> STARTING -> RUNNING -> STOPPING -> IDLE,
из STARTING или RUNNING — FAILED при фатальной ошибке. Из FAILED, как и из IDLE,
можно снова вызвать start().

Потоки:
- поток захвата (callback устройства) только кладёт блоки в ограниченную очередь;
- один поток анализа на сессию последовательно прогоняет блоки через окно и модель;
- наблюдатель читает ResultChannel независимо.

Каждая сессия получает свой идентификатор. Результаты и ошибки публикуются под
блокировкой контроллера и только если сессия всё ещё активна, поэтому после
возврата из stop() запоздавший результат старой сессии никуда не попадёт.
Подписчики ErrorStream вызываются в его собственном потоке доставки, вне блокировки
контроллера.
"""
import queue
import threading
import time
import uuid
from contextlib import ExitStack
from dataclasses import asdict, dataclass, field
from enum import Enum
from functools import partial
from typing import Optional

from petsound.audio.buffer import AudioBuffer
from petsound.audio.capture import AudioSource
from petsound.classification.classifier import SoundClassifier
from petsound.classification.result import ClassificationResult
from petsound.classification.streaming import StreamingClassifier
from petsound.errors import (
    AlreadyRunning,
    DeviceUnavailable,
    InferenceError,
    PetSoundError,
)
from petsound.session.channel import ErrorStream, ResultChannel
from petsound.utils.config import settings
from petsound.utils.logging import get_logger

logger = get_logger("session.controller")

# Период опроса очереди потоком анализа (секунды)
_WORKER_POLL_INTERVAL = 0.1


class SessionState(Enum):
    """Состояния сессии."""
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"


@dataclass
class SessionStats:
    """Счётчики одной сессии."""
    buffers_received: int = 0
    buffers_dropped: int = 0
    inference_calls: int = 0
    inference_errors: int = 0
    results_published: int = 0
    stale_dropped: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class _Session:
    session_id: str
    queue: queue.Queue
    classifier: StreamingClassifier
    cancelled: threading.Event = field(default_factory=threading.Event)
    stats: SessionStats = field(default_factory=SessionStats)
    worker: Optional[threading.Thread] = None
    started_at: float = field(default_factory=time.time)


class SessionController:
    """
    Связывает AudioSource -> StreamingClassifier -> ResultChannel.

    Использование:
        controller = SessionController(MicrophoneSource(), TFLiteSoundClassifier(...))
        with controller:
            result = controller.current_result()
    """

    def __init__(
        self,
        source: AudioSource,
        classifier: SoundClassifier,
        result_channel: Optional[ResultChannel] = None,
        error_stream: Optional[ErrorStream] = None,
        window_size: Optional[int] = None,
        hop_size: Optional[int] = None,
        confidence_threshold: Optional[float] = None,
        uncertain_label: Optional[str] = None,
        inference_timeout: Optional[float] = None,
        queue_size: Optional[int] = None,
        join_timeout: Optional[float] = None,
    ) -> None:
        """
        Args:
            source: Источник звука (устройство принадлежит контроллеру).
            classifier: Модель.
            result_channel: Канал результатов (по умолчанию новый).
            error_stream: Поток ошибок (по умолчанию новый).
            window_size: Размер окна. По умолчанию — подсказка модели или settings.
            hop_size: Шаг окна. По умолчанию settings.CLASSIFIER_HOP_SIZE.
            confidence_threshold: Порог уверенности.
            uncertain_label: Метка неуверенного результата.
            inference_timeout: Таймаут модели в секундах.
            queue_size: Ёмкость очереди между захватом и анализом.
            join_timeout: Сколько ждать поток анализа при stop().
        """
        self._source = source
        self._classifier = classifier
        self._results = result_channel or ResultChannel()
        self._errors = error_stream or ErrorStream()

        self.window_size = window_size or getattr(classifier, "window_size", None) or settings.CLASSIFIER_WINDOW_SIZE
        self.hop_size = hop_size if hop_size is not None else settings.CLASSIFIER_HOP_SIZE
        self.confidence_threshold = (
            confidence_threshold if confidence_threshold is not None else settings.CLASSIFIER_CONFIDENCE_THRESHOLD
        )
        self.uncertain_label = uncertain_label or settings.CLASSIFIER_UNCERTAIN_LABEL
        self.inference_timeout = inference_timeout if inference_timeout is not None else settings.INFERENCE_TIMEOUT
        self.queue_size = queue_size or settings.HANDOFF_QUEUE_SIZE
        self.join_timeout = join_timeout if join_timeout is not None else settings.WORKER_JOIN_TIMEOUT

        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._failure: Optional[PetSoundError] = None
        self._session: Optional[_Session] = None
        self._last_stats: Optional[SessionStats] = None

    # ------------------------------------------------------------------
    # Наблюдение
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def failure_reason(self) -> Optional[PetSoundError]:
        """Ошибка, переведшая сессию в FAILED."""
        with self._lock:
            return self._failure

    @property
    def session_id(self) -> Optional[str]:
        with self._lock:
            return self._session.session_id if self._session else None

    @property
    def results(self) -> ResultChannel:
        return self._results

    @property
    def errors(self) -> ErrorStream:
        return self._errors

    def current_result(self) -> Optional[ClassificationResult]:
        """Последний результат классификации."""
        return self._results.current()

    def stats(self) -> dict:
        """Счётчики активной (или последней) сессии."""
        with self._lock:
            session = self._session
            if session is not None:
                stats = session.stats
                stats.inference_calls = session.classifier.inference_calls
            else:
                stats = self._last_stats or SessionStats()
            return stats.to_dict()

    # ------------------------------------------------------------------
    # Жизненный цикл
    # ------------------------------------------------------------------

    def start(self) -> str:
        """
        Запускает сессию.

        Допустим из IDLE и из FAILED: FAILED не терминально, это повторная
        попытка после отказа устройства. Отдельного сброса в IDLE не требуется,
        устройство упавшей сессии освобождается перед новой попыткой.

        Returns:
            Идентификатор новой сессии.

        Raises:
            AlreadyRunning: Сессия уже запускается или работает.
            PermissionDenied, DeviceUnavailable: Устройство не получено
                (сессия переходит в FAILED, ошибка также уходит в ErrorStream).
        """
        with self._lock:
            if self._state in (SessionState.STARTING, SessionState.RUNNING, SessionState.STOPPING):
                raise AlreadyRunning(f"session is {self._state.value}")

            if self._state is SessionState.FAILED:
                # Устройство упавшей сессии могло ещё не освободиться
                self._source.stop()

            session = self._new_session()
            self._state = SessionState.STARTING
            self._failure = None
            self._session = session
            self._results.clear()

            logger.info(
                "session_starting",
                session_id=session.session_id,
                window_size=self.window_size,
                hop_size=session.classifier.hop_size,
                confidence_threshold=self.confidence_threshold,
            )

            try:
                with ExitStack() as stack:
                    stack.callback(session.cancelled.set)
                    session.worker.start()
                    stack.callback(self._source.stop)
                    self._source.start(
                        on_buffer=partial(self._handoff, session),
                        on_error=partial(self._on_source_error, session),
                    )
                    stack.pop_all()
            except PetSoundError as e:
                self._fail_start(session, e)
                raise
            except Exception as e:
                error = DeviceUnavailable(str(e))
                self._fail_start(session, error)
                raise error from e

            if self._session is not session:
                # Устройство отказало прямо во время start()
                raise self._failure

            self._state = SessionState.RUNNING
            logger.info("session_started", session_id=session.session_id)
            return session.session_id

    def stop(self) -> None:
        """
        Останавливает сессию. Вне RUNNING — ничего не делает.

        Устройство освобождается сразу; поток анализа ждём не дольше join_timeout,
        незавершённый вызов модели бросаем.
        """
        with self._lock:
            if self._state is not SessionState.RUNNING:
                logger.debug("stop_ignored", state=self._state.value)
                return

            session = self._session
            self._state = SessionState.STOPPING
            self._session = None
            session.cancelled.set()
            try:
                self._source.stop()
            finally:
                session.stats.inference_calls = session.classifier.inference_calls
                self._last_stats = session.stats
                self._state = SessionState.IDLE

        worker = session.worker
        if worker is not None and worker is not threading.current_thread():
            worker.join(self.join_timeout)
            if worker.is_alive():
                logger.warning("analysis_worker_abandoned", session_id=session.session_id)

        logger.info(
            "session_stopped",
            session_id=session.session_id,
            duration=round(time.time() - session.started_at, 3),
            **session.stats.to_dict(),
        )

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()

    # ------------------------------------------------------------------
    # Внутреннее
    # ------------------------------------------------------------------

    def _new_session(self) -> _Session:
        session_id = uuid.uuid4().hex
        session: Optional[_Session] = None

        def on_error(error: InferenceError) -> None:
            self._on_inference_error(session, error)

        classifier = StreamingClassifier(
            self._classifier,
            window_size=self.window_size,
            hop_size=self.hop_size,
            confidence_threshold=self.confidence_threshold,
            uncertain_label=self.uncertain_label,
            inference_timeout=self.inference_timeout,
            on_error=on_error,
        )
        session = _Session(
            session_id=session_id,
            queue=queue.Queue(maxsize=self.queue_size),
            classifier=classifier,
        )
        session.worker = threading.Thread(
            target=self._run_worker,
            args=(session,),
            name=f"petsound-analysis-{session_id[:8]}",
            daemon=True,
        )
        return session

    def _fail_start(self, session: _Session, error: PetSoundError) -> None:
        self._session = None
        self._state = SessionState.FAILED
        self._failure = error
        self._last_stats = session.stats
        logger.error(
            "session_start_failed",
            session_id=session.session_id,
            error_type=type(error).__name__,
            error=str(error),
        )
        self._errors.report(error)

    def _handoff(self, session: _Session, buffer: AudioBuffer) -> None:
        """Вызывается в потоке захвата: не блокируется, при переполнении выбрасывает самый старый блок."""
        if session.cancelled.is_set():
            return
        session.stats.buffers_received += 1
        try:
            session.queue.put_nowait(buffer)
            return
        except queue.Full:
            pass

        try:
            session.queue.get_nowait()
            session.stats.buffers_dropped += 1
        except queue.Empty:
            pass
        try:
            session.queue.put_nowait(buffer)
        except queue.Full:
            session.stats.buffers_dropped += 1
        logger.warning(
            "buffer_dropped",
            session_id=session.session_id,
            dropped=session.stats.buffers_dropped,
        )

    def _run_worker(self, session: _Session) -> None:
        logger.debug("analysis_worker_started", session_id=session.session_id)
        try:
            while not session.cancelled.is_set():
                try:
                    buffer = session.queue.get(timeout=_WORKER_POLL_INTERVAL)
                except queue.Empty:
                    continue
                for result in session.classifier.consume(buffer):
                    self._publish(session, result)
        except Exception as e:
            logger.exception("analysis_worker_crashed", session_id=session.session_id)
            self._fail_session(session, InferenceError(cause=e))
        finally:
            session.classifier.close()
            logger.debug("analysis_worker_finished", session_id=session.session_id)

    def _is_active(self, session: _Session) -> bool:
        return self._session is session and self._state is SessionState.RUNNING

    def _publish(self, session: _Session, result: ClassificationResult) -> None:
        with self._lock:
            if not self._is_active(session):
                session.stats.stale_dropped += 1
                logger.debug("stale_result_dropped", session_id=session.session_id, timestamp=result.timestamp)
                return
            session.stats.results_published += 1
            self._results.publish(result)

    def _on_inference_error(self, session: _Session, error: InferenceError) -> None:
        with self._lock:
            if not self._is_active(session):
                session.stats.stale_dropped += 1
                logger.debug("stale_error_dropped", session_id=session.session_id, error=str(error))
                return
            session.stats.inference_errors += 1
            logger.warning(
                "inference_failed",
                session_id=session.session_id,
                timestamp=error.timestamp,
                error_type=type(error).__name__,
                error=error.detail,
            )
            self._errors.report(error)

    def _on_source_error(self, session: _Session, error: PetSoundError) -> None:
        self._fail_session(session, error)

    def _fail_session(self, session: _Session, error: PetSoundError) -> None:
        """Фатальная ошибка во время работы: FAILED + освобождение устройства."""
        with self._lock:
            if self._session is not session:
                logger.debug("stale_failure_ignored", session_id=session.session_id, error=str(error))
                return
            self._session = None
            session.cancelled.set()
            session.stats.inference_calls = session.classifier.inference_calls
            self._last_stats = session.stats
            self._state = SessionState.FAILED
            self._failure = error
            logger.error(
                "session_failed",
                session_id=session.session_id,
                error_type=type(error).__name__,
                error=str(error),
            )
            self._errors.report(error)

        # Ошибка может прийти из callback самого устройства, поэтому освобождаем его в отдельном потоке
        threading.Thread(target=self._release_source, name="petsound-release", daemon=True).start()

    def _release_source(self) -> None:
        with self._lock:
            if self._session is not None:
                return
            try:
                self._source.stop()
            except Exception:
                logger.exception("source_release_failed")
