"""Результат классификации одного окна."""
from dataclasses import dataclass

UNCERTAIN_LABEL = "Uncertain"


@dataclass(frozen=True)
class ClassificationResult:
    """
    label — метка класса или UNCERTAIN_LABEL.
    confidence — уверенность модели в топ-классе, 0..1.
    timestamp — позиция первого сэмпла окна (в кадрах от начала сессии).
    """

    label: str
    confidence: float
    timestamp: int

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")

    def describe(self, uncertain_label: str = UNCERTAIN_LABEL) -> str:
        """Текст для отображения: "dog (87% Confidence)" или "Uncertain"."""
        if self.label == uncertain_label:
            return self.label
        return f"{self.label} ({int(self.confidence * 100)}% Confidence)"

    def to_dict(self) -> dict:
        return {"label": self.label, "confidence": self.confidence, "timestamp": self.timestamp}
