"""Ошибки конвейера классификации звука.

Иерархия:
- PetSoundError
  - PermissionDenied — нет разрешения на захват (фатально для сессии)
  - DeviceUnavailable — устройство не открывается или пропало (фатально)
  - AlreadyRunning — повторный start() при активной сессии
  - InferenceError — модель упала на конкретном окне (не фатально)
    - InferenceTimeout — модель не уложилась в таймаут
"""
from typing import Optional


class PetSoundError(Exception):
    """Базовое исключение проекта."""

    user_message = "Unexpected error"
    fatal = True

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail or self.user_message)

    def describe(self) -> str:
        """Текст для показа пользователю."""
        if self.detail:
            return f"{self.user_message}: {self.detail}"
        return self.user_message


class PermissionDenied(PetSoundError):
    """Доступ к микрофону (или файлу) не выдан."""

    user_message = "Microphone access denied."

    def describe(self) -> str:
        return self.user_message


class DeviceUnavailable(PetSoundError):
    """Устройство захвата недоступно или занято."""

    user_message = "Audio device unavailable"


class AlreadyRunning(PetSoundError):
    """Сессия уже запущена."""

    user_message = "Session is already running"


class InferenceError(PetSoundError):
    """Ошибка модели на одном окне анализа."""

    user_message = "Classification failed for this sample"
    fatal = False

    def __init__(
        self,
        cause: Optional[BaseException] = None,
        timestamp: Optional[int] = None,
        detail: str = "",
    ) -> None:
        self.cause = cause
        self.timestamp = timestamp
        if not detail and cause is not None:
            detail = f"{type(cause).__name__}: {cause}"
        super().__init__(detail)


class InferenceTimeout(InferenceError):
    """Модель не вернула результат за отведённое время."""

    user_message = "Classification timed out for this sample"

    def __init__(self, timeout: float, timestamp: Optional[int] = None) -> None:
        self.timeout = timeout
        super().__init__(timestamp=timestamp, detail=f"no result after {timeout:.2f}s")
