"""
Каналы от потока анализа к наблюдателю (UI, CLI).

ResultChannel — одна ячейка "последнее значение": промежуточные результаты
схлопываются, читатель всегда видит самый свежий.
ErrorStream — упорядоченная доставка ошибок: каждая ошибка попадает к
каждому подписчику (в отдельном потоке) и в очередь на чтение ровно один раз.
"""
import threading
from collections import deque
from typing import Callable, List, Optional, Tuple

from petsound.classification.result import ClassificationResult
from petsound.errors import PetSoundError
from petsound.utils.logging import get_logger

logger = get_logger("session.channel")

ErrorListener = Callable[[PetSoundError], None]


class ResultChannel:
    """Потокобезопасная ячейка с последним результатом классификации."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._latest: Optional[ClassificationResult] = None
        self._version = 0

    def publish(self, result: ClassificationResult) -> None:
        """Заменяет текущее значение."""
        with self._cond:
            self._latest = result
            self._version += 1
            self._cond.notify_all()

    def current(self) -> Optional[ClassificationResult]:
        """Последний опубликованный результат или None."""
        with self._cond:
            return self._latest

    @property
    def version(self) -> int:
        """Количество публикаций с момента создания."""
        with self._cond:
            return self._version

    def wait_for_update(
        self,
        last_version: int = 0,
        timeout: Optional[float] = None,
    ) -> Tuple[int, Optional[ClassificationResult]]:
        """
        Ждёт публикации новее last_version.

        Returns:
            (версия, результат). При таймауте версия не меняется.
        """
        with self._cond:
            self._cond.wait_for(lambda: self._version > last_version, timeout=timeout)
            return self._version, self._latest

    def clear(self) -> None:
        """Сбрасывает значение (версия продолжает расти)."""
        with self._cond:
            self._latest = None
            self._version += 1
            self._cond.notify_all()


class ErrorStream:
    """
    Поток ошибок для наблюдателя: подписка и/или чтение из очереди.

    report() только ставит ошибку в очередь и никогда не вызывает подписчиков
    сам: их вызывает отдельный поток доставки, поэтому медленный подписчик не
    задерживает ни анализ, ни stop(). Очередь на чтение ограничена maxlen;
    если её не вычитывают, самая старая ошибка вытесняется с записью в лог.
    """

    def __init__(self, maxlen: int = 100) -> None:
        self._cond = threading.Condition()
        self._pending: deque = deque()
        self._maxlen = maxlen
        self._listeners: List[ErrorListener] = []
        self._outbox: deque = deque()
        self._dispatcher: Optional[threading.Thread] = None

    def subscribe(self, listener: ErrorListener) -> Callable[[], None]:
        """Подписывает listener. Возвращает функцию отписки."""
        with self._cond:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._cond:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def report(self, error: PetSoundError) -> None:
        """Кладёт ошибку в очередь и передаёт потоку доставки. Не блокируется."""
        with self._cond:
            if len(self._pending) >= self._maxlen:
                evicted = self._pending.popleft()
                logger.warning(
                    "error_evicted",
                    error_type=type(evicted).__name__,
                    error=str(evicted),
                    maxlen=self._maxlen,
                )
            self._pending.append(error)
            if self._listeners:
                self._outbox.append((error, list(self._listeners)))
                self._ensure_dispatcher()
            self._cond.notify_all()

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Ждёт, пока подписчики получат все ошибки, сообщённые до вызова.

        Returns:
            False, если не дождались за timeout.
        """
        if threading.current_thread() is self._dispatcher:
            return not self._outbox
        with self._cond:
            return self._cond.wait_for(lambda: not self._outbox, timeout=timeout)

    def get(self, timeout: Optional[float] = None) -> Optional[PetSoundError]:
        """Забирает самую старую ошибку, ждёт до timeout. None — ошибок нет."""
        with self._cond:
            if not self._cond.wait_for(lambda: len(self._pending) > 0, timeout=timeout):
                return None
            return self._pending.popleft()

    def drain(self) -> List[PetSoundError]:
        """Забирает все накопленные ошибки."""
        with self._cond:
            errors = list(self._pending)
            self._pending.clear()
            return errors

    def __len__(self) -> int:
        with self._cond:
            return len(self._pending)

    def _ensure_dispatcher(self) -> None:
        if self._dispatcher is None:
            self._dispatcher = threading.Thread(
                target=self._dispatch_loop,
                name="petsound-error-listeners",
                daemon=True,
            )
            self._dispatcher.start()

    def _dispatch_loop(self) -> None:
        while True:
            with self._cond:
                self._cond.wait_for(lambda: len(self._outbox) > 0)
                error, listeners = self._outbox[0]

            for listener in listeners:
                try:
                    listener(error)
                except Exception:
                    logger.exception("error_listener_failed", error_type=type(error).__name__)

            with self._cond:
                # Ошибка уходит из outbox только после доставки: на этом держится flush()
                self._outbox.popleft()
                self._cond.notify_all()
