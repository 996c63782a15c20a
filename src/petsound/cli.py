"""
Командная строка: живая классификация звука с микрофона или из файла.

Использование:
    petsound listen --model model.tflite --labels labels.txt
    petsound listen --model model.tflite --labels labels.txt --file barking.wav
    petsound devices
"""
import argparse
import sys
import time
from pathlib import Path
from typing import Optional

from petsound.audio import AudioSource, FileSource, MicrophoneSource, list_input_devices
from petsound.classification import SoundClassifier, TFLiteSoundClassifier
from petsound.errors import PetSoundError
from petsound.session import SessionController, SessionState
from petsound.utils.config import settings
from petsound.utils.logging import get_logger, setup_logging

logger = get_logger("cli")

# Сколько ждать новых результатов после конца файла (секунды)
_FILE_DRAIN_TIMEOUT = 1.0
# Сколько ждать доставки ошибок подписчикам перед выходом (секунды)
_ERROR_FLUSH_TIMEOUT = 1.0


def _parse_device(value: str) -> int | str:
    return int(value) if value.isdigit() else value


def build_parser() -> argparse.ArgumentParser:
    """Парсер аргументов."""
    parser = argparse.ArgumentParser(prog="petsound", description="Real-time pet sound classifier")
    parser.add_argument("--log-level", default=None, help="Log level (default: LOG_LEVEL setting)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    listen = subparsers.add_parser("listen", help="Classify live audio")
    listen.add_argument("--model", type=Path, default=settings.MODEL_PATH, help="Path to .tflite model")
    listen.add_argument("--labels", type=Path, default=settings.LABELS_PATH, help="Labels file")
    listen.add_argument("--file", type=Path, default=None, help="Play a sound file instead of the microphone")
    listen.add_argument("--device", type=_parse_device, default=settings.AUDIO_DEVICE, help="Input device index or name")
    listen.add_argument("--sample-rate", type=int, default=settings.AUDIO_SAMPLE_RATE, help="Capture sample rate")
    listen.add_argument("--window-size", type=int, default=None, help="Samples per analysis window")
    listen.add_argument("--hop-size", type=int, default=None, help="Window hop (default: window size)")
    listen.add_argument(
        "--threshold",
        type=float,
        default=settings.CLASSIFIER_CONFIDENCE_THRESHOLD,
        help="Confidence at or below this value is reported as Uncertain",
    )
    listen.add_argument("--duration", type=float, default=None, help="Stop after N seconds")

    subparsers.add_parser("devices", help="List audio input devices")
    return parser


def build_source(args: argparse.Namespace) -> AudioSource:
    """Микрофон или файл, в зависимости от аргументов."""
    if args.file is not None:
        return FileSource(args.file, block_size=settings.AUDIO_BLOCK_SIZE)
    return MicrophoneSource(
        sample_rate=args.sample_rate,
        channels=settings.AUDIO_CHANNELS,
        block_size=settings.AUDIO_BLOCK_SIZE,
        device=args.device,
    )


def build_classifier(args: argparse.Namespace) -> SoundClassifier:
    """Загружает TFLite модель."""
    if args.model is None:
        raise ValueError("model path is required (--model or MODEL_PATH)")
    return TFLiteSoundClassifier(args.model, labels_path=args.labels)


def format_result(result, sample_rate: int, uncertain_label: str) -> str:
    """Строка вывода: "[   1.02s] dog (87% Confidence)"."""
    seconds = result.timestamp / sample_rate if sample_rate else 0.0
    return f"[{seconds:8.2f}s] {result.describe(uncertain_label)}"


def run_listen(args: argparse.Namespace) -> int:
    """Запускает сессию и печатает результаты до остановки."""
    try:
        classifier = build_classifier(args)
    except (ImportError, OSError, ValueError) as e:
        print(f"❌ Cannot load model: {e}", file=sys.stderr)
        return 1

    source = build_source(args)
    controller = SessionController(
        source,
        classifier,
        window_size=args.window_size,
        hop_size=args.hop_size,
        confidence_threshold=args.threshold,
    )
    controller.errors.subscribe(lambda error: print(f"⚠️  {error.describe()}", file=sys.stderr))

    try:
        controller.start()
    except PetSoundError:
        controller.errors.flush(timeout=_ERROR_FLUSH_TIMEOUT)
        return 1

    if isinstance(source, FileSource) and source.sample_rate != args.sample_rate:
        logger.warning("sample_rate_mismatch", file_rate=source.sample_rate, expected=args.sample_rate)

    print("🎧 Listening... (Ctrl+C to stop)")
    deadline = time.monotonic() + args.duration if args.duration else None
    version = controller.results.version
    try:
        while controller.state is SessionState.RUNNING:
            if deadline is not None and time.monotonic() >= deadline:
                break
            file_done = isinstance(source, FileSource) and source.wait_finished(0)
            timeout = _FILE_DRAIN_TIMEOUT if file_done else 0.2
            new_version, result = controller.results.wait_for_update(version, timeout=timeout)
            if new_version == version:
                if file_done:
                    break
                continue
            version = new_version
            if result is not None:
                print(format_result(result, source.sample_rate, controller.uncertain_label), flush=True)
    except KeyboardInterrupt:
        print("\nStopped.")
    finally:
        controller.stop()
        controller.errors.flush(timeout=_ERROR_FLUSH_TIMEOUT)

    stats = controller.stats()
    print(
        f"✅ Windows classified: {stats['inference_calls']}, "
        f"errors: {stats['inference_errors']}, dropped buffers: {stats['buffers_dropped']}"
    )
    return 1 if controller.state is SessionState.FAILED else 0


def run_devices(args: argparse.Namespace) -> int:
    """Печатает устройства ввода."""
    try:
        devices = list_input_devices()
    except PetSoundError as e:
        print(f"❌ {e.describe()}", file=sys.stderr)
        return 1
    if not devices:
        print("No input devices found")
        return 0
    for device in devices:
        print(
            f"{device['index']:3d}  {device['name']}  "
            f"({device['channels']} ch, {device['default_samplerate']:.0f} Hz)"
        )
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Точка входа."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    if args.command == "listen":
        return run_listen(args)
    return run_devices(args)


if __name__ == "__main__":
    sys.exit(main())
