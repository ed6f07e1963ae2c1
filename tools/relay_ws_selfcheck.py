#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import wave
from pathlib import Path
from typing import Any, Dict, List

import numpy as np
import websockets

from livetranslate.debug.event_selfcheck import analyze_client_events, summarize_result

SAMPLE_RATE = 24000


def _read_pcm16_mono_wav(path: Path) -> np.ndarray:
    with wave.open(str(path), "rb") as wf:
        channels = wf.getnchannels()
        sample_width = wf.getsampwidth()
        sample_rate = wf.getframerate()
        if channels != 1:
            raise ValueError(f"wav must be mono, got channels={channels}")
        if sample_width != 2:
            raise ValueError(f"wav must be 16-bit PCM, got sampwidth={sample_width}")
        if sample_rate != SAMPLE_RATE:
            raise ValueError(f"wav must be {SAMPLE_RATE}Hz, got sample_rate={sample_rate}")
        return np.frombuffer(wf.readframes(wf.getnframes()), dtype="<i2")


def _chunk_samples(samples: np.ndarray, frame_samples: int) -> List[List[int]]:
    step = max(1, int(frame_samples))
    return [samples[i : i + step].astype(int).tolist() for i in range(0, len(samples), step) if len(samples[i : i + step])]


async def _recv_loop(ws, events: List[Dict[str, Any]], stop: asyncio.Event) -> None:
    while not stop.is_set():
        try:
            raw = await asyncio.wait_for(ws.recv(), timeout=0.5)
        except asyncio.TimeoutError:
            continue
        except websockets.ConnectionClosed:
            break
        if isinstance(raw, bytes):
            continue
        events.append(json.loads(raw))


async def _replay_wav(
    ws_url: str,
    wav_path: Path,
    frame_samples: int,
    input_language: str,
    output_language: str,
    realtime_factor: float,
    tail_sec: float,
) -> List[Dict[str, Any]]:
    frames = _chunk_samples(_read_pcm16_mono_wav(wav_path), frame_samples)
    events: List[Dict[str, Any]] = []
    stop = asyncio.Event()

    async with websockets.connect(ws_url, max_size=16 * 1024 * 1024) as ws:
        recv_task = asyncio.create_task(_recv_loop(ws, events, stop))
        await ws.send(json.dumps({"type": "start", "inputLanguage": input_language, "outputLanguage": output_language}))
        sleep_sec = max(0.0, (frame_samples / SAMPLE_RATE) / max(0.01, float(realtime_factor)))

        for frame in frames:
            await ws.send(json.dumps({"type": "audio", "data": frame}))
            if sleep_sec > 0:
                await asyncio.sleep(sleep_sec)

        # let the last segments drain through translation
        await asyncio.sleep(max(0.0, float(tail_sec)))
        await ws.send(json.dumps({"type": "stop"}))
        stop.set()
        await recv_task

    return events


def _load_events_jsonl(path: Path) -> List[Dict[str, Any]]:
    events: List[Dict[str, Any]] = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            text = line.strip()
            if not text:
                continue
            events.append(json.loads(text))
    return events


def _save_events_jsonl(path: Path, events: List[Dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        for event in events:
            f.write(json.dumps(event, ensure_ascii=False) + "\n")


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Replay a WAV through the relay and check client event ordering.")
    p.add_argument("--ws-url", default="ws://127.0.0.1:3000/ws")
    p.add_argument("--wav", default="", help="24kHz/mono/16-bit PCM wav for replay")
    p.add_argument("--input-language", default="sv")
    p.add_argument("--output-language", default="en")
    p.add_argument("--frame-samples", type=int, default=4096)
    p.add_argument("--realtime-factor", type=float, default=1.0, help="1.0=realtime, 2.0=2x faster")
    p.add_argument("--tail-sec", type=float, default=5.0, help="wait after the last frame before stop")
    p.add_argument("--events-jsonl", default="", help="save replayed events to jsonl; or load existing when --wav omitted")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    events_path = Path(args.events_jsonl).expanduser() if args.events_jsonl else None

    if args.wav:
        events = asyncio.run(
            _replay_wav(
                ws_url=str(args.ws_url),
                wav_path=Path(args.wav).expanduser(),
                frame_samples=int(args.frame_samples),
                input_language=str(args.input_language),
                output_language=str(args.output_language),
                realtime_factor=float(args.realtime_factor),
                tail_sec=float(args.tail_sec),
            )
        )
        if events_path is not None:
            _save_events_jsonl(events_path, events)
    else:
        if events_path is None:
            raise SystemExit("provide --wav for replay, or --events-jsonl to load existing events")
        events = _load_events_jsonl(events_path)

    result = analyze_client_events(events)
    print(summarize_result(result))
    if not result.clean:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
