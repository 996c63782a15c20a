"""
Классификация: интерфейс модели, TFLite-реализация и потоковое окно.
"""
from petsound.classification.classifier import (
    FunctionClassifier,
    SoundClassifier,
    TFLiteSoundClassifier,
    load_labels,
)
from petsound.classification.result import UNCERTAIN_LABEL, ClassificationResult
from petsound.classification.streaming import StreamingClassifier, top_prediction

__all__ = [
    "SoundClassifier",
    "FunctionClassifier",
    "TFLiteSoundClassifier",
    "load_labels",
    "ClassificationResult",
    "UNCERTAIN_LABEL",
    "StreamingClassifier",
    "top_prediction",
]
