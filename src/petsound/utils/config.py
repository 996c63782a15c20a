"""Конфигурация приложения."""
from pathlib import Path
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Настройки приложения."""

    # Audio
    AUDIO_SAMPLE_RATE: int = 16000
    AUDIO_CHANNELS: int = 1
    AUDIO_BLOCK_SIZE: int = 8192  # кадров на один callback устройства
    AUDIO_DEVICE: int | str | None = None  # индекс или имя; None — устройство по умолчанию

    # Classifier
    CLASSIFIER_WINDOW_SIZE: int = 8192
    CLASSIFIER_HOP_SIZE: int | None = None  # None — окна без перекрытия
    CLASSIFIER_CONFIDENCE_THRESHOLD: float = 0.5
    CLASSIFIER_UNCERTAIN_LABEL: str = "Uncertain"

    # Inference
    INFERENCE_TIMEOUT: float | None = None  # секунды, None — без ограничения
    MODEL_PATH: Path | None = None
    LABELS_PATH: Path | None = None

    # Session
    HANDOFF_QUEUE_SIZE: int = 32
    WORKER_JOIN_TIMEOUT: float = 1.0

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator("AUDIO_DEVICE", mode="before")
    @classmethod
    def parse_device_index(cls, value):
        # "3" из окружения — это индекс устройства, а не имя
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
            if value.isdigit():
                return int(value)
        return value

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Глобальный экземпляр настроек
settings = Settings()
