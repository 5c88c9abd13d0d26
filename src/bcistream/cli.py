"""
Command-line demo: a synthetic EEG stream, a small filter chain and a toy
model predicting in the background.

Run from project root:

    python main.py
    python main.py --seconds 5 --update-freq 4
    python main.py --config online.yaml --expression chain.yaml
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading
import time
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import numpy as np

from .config.runtime import OnlineConfig, load_config
from .core.models import Chunk, Marker
from .core.stream import StreamRegistry, new_stream
from .online.background import start_background
from .online.predictor import OUTPUT_FORMATS, PredictorRegistry
from .online.timers import ThreadTimerDriver
from .pipeline.expression import Expression, RawData, flt, load_expression

logger = logging.getLogger(__name__)

DEMO_LABELS = ("C3", "Cz", "C4", "Pz")


@dataclass
class AlphaPowerModel:
    """Two-class toy model: is alpha power above ``threshold``?"""

    expression: Expression
    threshold: float = 0.5
    window: float = 1.0
    classes: tuple[float, ...] = (1.0, 2.0)

    def predict(self, chunk: Chunk) -> np.ndarray:
        power = float(np.mean(chunk.data ** 2)) if not chunk.is_empty else 0.0
        p_high = 1.0 / (1.0 + np.exp(-(power - self.threshold) * 4.0))
        return np.array([[1.0 - p_high, p_high]])


def default_expression(labels: Sequence[str] = DEMO_LABELS) -> Expression:
    raw = RawData(channel_labels=tuple(labels))
    return flt("bandpass", flt("rereference", raw), 8.0, 12.0)


class SyntheticSource:
    """Append alpha-modulated noise to a stream from a background thread."""

    def __init__(self, streams: StreamRegistry, name: str, srate: float, block_s: float = 0.1, seed: int = 0) -> None:
        self.streams = streams
        self.name = name
        self.srate = float(srate)
        self.block = max(1, int(round(block_s * srate)))
        self.block_s = block_s
        self._rng = np.random.default_rng(seed)
        self._t = 0
        self.stop_event = threading.Event()
        self.thread = threading.Thread(target=self._run, name="BciStreamSyntheticSource", daemon=True)

    def start(self) -> None:
        self.thread.start()

    def stop(self) -> None:
        self.stop_event.set()
        self.thread.join(2.0)

    def _run(self) -> None:
        while not self.stop_event.wait(self.block_s):
            t = (self._t + np.arange(self.block)) / self.srate
            # alpha bursts alternate every 4 s
            gain = 1.5 if int(t[0] // 4.0) % 2 == 0 else 0.2
            alpha = gain * np.sin(2 * np.pi * 10.0 * t)
            data = alpha[None, :] * np.array([[1.0], [0.5], [1.0], [2.0]])
            data = data + 0.3 * self._rng.standard_normal((len(DEMO_LABELS), self.block))
            markers = ()
            if self._t % int(self.srate * 2) < self.block:
                markers = (Marker("tick", 1.0),)
            self.streams.get(self.name).append(data, markers)
            self._t += self.block


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="bcistream online prediction demo")
    parser.add_argument("--seconds", type=float, default=10.0, help="Demo duration in seconds (default: 10)")
    parser.add_argument("--srate", type=float, default=250.0, help="Synthetic sampling rate in Hz (default: 250)")
    parser.add_argument(
        "--update-freq",
        type=float,
        default=None,
        help="Predictions per second (default: from config, 10)",
    )
    parser.add_argument(
        "--output-format",
        choices=OUTPUT_FORMATS,
        default=None,
        help="Prediction output format (default: from config, distribution)",
    )
    parser.add_argument("--config", type=str, default=None, help="YAML file with an 'online' block")
    parser.add_argument("--expression", type=str, default=None, help="YAML filter expression to use instead")
    parser.add_argument("--threshold", type=float, default=0.5, help="Alpha power threshold of the toy model")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level")
    return parser


def run_demo(args: argparse.Namespace, config: Optional[OnlineConfig] = None) -> list[Any]:
    cfg = config or load_config(args.config)
    streams = StreamRegistry()
    new_stream(
        streams,
        "demo",
        args.srate,
        DEMO_LABELS,
        buffer_seconds=cfg.buffer_seconds,
        marker_capacity=cfg.marker_capacity,
    )
    expression = load_expression(args.expression) if args.expression else default_expression()
    model = AlphaPowerModel(expression, threshold=args.threshold)

    results: list[Any] = []

    def write_result(value: Any) -> None:
        results.append(value)
        print(np.array2string(np.asarray(value), precision=3), flush=True)

    source = SyntheticSource(streams, "demo", args.srate)
    source.start()
    kwargs: dict[str, Any] = {}
    if args.update_freq is not None:
        kwargs["update_freq"] = args.update_freq
    if args.output_format is not None:
        kwargs["output_format"] = args.output_format
    scheduler = start_background(
        write_result,
        streams,
        "demo",
        model,
        predictor_name="demo",
        predictors=PredictorRegistry(),
        driver=ThreadTimerDriver(),
        config=cfg,
        **kwargs,
    )
    try:
        deadline = time.monotonic() + max(0.0, float(args.seconds))
        while scheduler.running and time.monotonic() < deadline:
            time.sleep(0.05)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        scheduler.cancel()
        source.stop()
    return results


def main(argv: Sequence[str] | None = None) -> None:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    args = _build_arg_parser().parse_args(raw_argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_demo(args)


if __name__ == "__main__":
    main()
