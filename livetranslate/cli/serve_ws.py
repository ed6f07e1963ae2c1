# coding=utf-8
# Copyright 2026 The Alibaba Qwen team.
# SPDX-License-Identifier: Apache-2.0
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
Live transcription/translation relay over WebSocket.
"""
import argparse
import asyncio
import logging
import os
from contextlib import suppress
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Callable, Dict, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from livetranslate.clients.realtime_upstream import (
    REALTIME_MODEL,
    REALTIME_URL,
    TRANSCRIPTION_MODEL,
    RealtimeUpstream,
)
from livetranslate.clients.translator import OpenAIAPITranslator
from livetranslate.streaming.commit_policy import FrameCommitPolicy
from livetranslate.streaming.errors import ProtocolError
from livetranslate.streaming.events import ClientEventEmitter
from livetranslate.streaming.protocol import (
    DEFAULT_MAX_FRAME_SAMPLES,
    LANGUAGE_NAMES,
    SAMPLE_RATE,
    SessionConfig,
    normalize_language,
    parse_client_message,
)
from livetranslate.streaming.relay import SessionRelay
from livetranslate.streaming.segment_policy import SpeakerChangePolicy

logger = logging.getLogger(__name__)


def _upstream_factory_from_args(args: argparse.Namespace) -> Callable[[], RealtimeUpstream]:
    def _factory() -> RealtimeUpstream:
        return RealtimeUpstream(
            api_key=str(getattr(args, "openai_api_key", "") or ""),
            url=str(getattr(args, "realtime_url", REALTIME_URL) or REALTIME_URL),
            model=str(getattr(args, "realtime_model", REALTIME_MODEL) or REALTIME_MODEL),
            transcription_model=str(getattr(args, "transcription_model", TRANSCRIPTION_MODEL) or TRANSCRIPTION_MODEL),
        )

    return _factory


def _default_session_config(args: argparse.Namespace) -> SessionConfig:
    return SessionConfig(
        input_language=normalize_language(getattr(args, "default_input_language", None), "sv"),
        output_language=normalize_language(getattr(args, "default_output_language", None), "en"),
    )


def _create_app(
    args: argparse.Namespace,
    translator: Optional[Any] = None,
    upstream_factory: Optional[Callable[[], Any]] = None,
) -> FastAPI:
    app = FastAPI(title="Live Translate Relay")
    runtime = SimpleNamespace(active_connections=0, total_sessions=0)
    make_upstream = upstream_factory or _upstream_factory_from_args(args)
    default_config = _default_session_config(args)
    max_connections = max(1, int(getattr(args, "max_connections", 16)))
    idle_timeout_sec = max(1.0, float(getattr(args, "idle_timeout_sec", 300.0)))
    silence_threshold_ms = float(getattr(args, "silence_threshold_ms", 2000.0))
    commit_every_frames = int(getattr(args, "commit_every_frames", 100))

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "active_connections": runtime.active_connections,
        }

    @app.websocket("/ws")
    @app.websocket("/")
    async def ws_stream(websocket: WebSocket) -> None:
        if runtime.active_connections >= max_connections:
            await websocket.accept()
            await websocket.send_json({"type": "error", "message": "too many active connections"})
            await websocket.close(code=1013)
            return

        await websocket.accept()
        runtime.active_connections += 1
        runtime.total_sessions += 1
        peer = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else "unknown"

        emitter = ClientEventEmitter(websocket.send_json, peer=peer)
        relay = SessionRelay(
            emitter,
            make_upstream,
            translator,
            default_config=default_config,
            speaker_policy=SpeakerChangePolicy(silence_threshold_ms=silence_threshold_ms),
            commit_policy=FrameCommitPolicy(commit_every_frames=commit_every_frames, sample_rate=SAMPLE_RATE),
            translation_timeout_sec=float(getattr(args, "translation_timeout_sec", 15.0)),
            translation_retries=int(getattr(args, "translation_retries", 0)),
            max_frame_samples=int(getattr(args, "max_frame_samples", DEFAULT_MAX_FRAME_SAMPLES)),
            peer=peer,
            trace_log=bool(getattr(args, "relay_trace_log", False)),
        )
        logger.info(
            "ws open peer=%s active=%d input=%s output=%s",
            peer,
            runtime.active_connections,
            default_config.input_language,
            default_config.output_language,
        )

        try:
            while True:
                try:
                    msg = await asyncio.wait_for(websocket.receive(), timeout=idle_timeout_sec)
                except asyncio.TimeoutError:
                    await emitter.error("idle timeout")
                    break

                if msg.get("type") == "websocket.disconnect":
                    break

                text = msg.get("text")
                if text is None:
                    relay.stats.last_error = "binary frame"
                    await emitter.error("binary frames are not supported, send JSON text messages")
                    continue

                try:
                    await relay.on_client_message(parse_client_message(text))
                except ProtocolError as e:
                    relay.stats.last_error = str(e)
                    await emitter.error(e.message)

        except WebSocketDisconnect:
            pass
        except Exception as e:
            relay.stats.last_error = str(e)
            logger.exception("ws handler failed peer=%s", peer)
            with suppress(Exception):
                await emitter.error(f"Server error: {e}")
        finally:
            try:
                await relay.close()
            except Exception:
                logger.exception("relay close failed peer=%s", peer)
            finally:
                runtime.active_connections = max(0, runtime.active_connections - 1)
            with suppress(Exception):
                await websocket.close(code=1000)
            logger.info(
                "ws close peer=%s active=%d forwarded=%d dropped=%d sent=%s",
                peer,
                runtime.active_connections,
                relay.stats.forwarded_frames,
                relay.stats.dropped_frames,
                dict(emitter.sent),
            )

    return app


def _build_translator(args: argparse.Namespace) -> Optional[OpenAIAPITranslator]:
    api_key = str(args.translation_api_key or args.openai_api_key or "").strip()
    if not api_key and args.translation_api_base_url.startswith("https://api.openai.com"):
        logger.warning("translation disabled: no API key configured")
        return None
    return OpenAIAPITranslator(
        base_url=args.translation_api_base_url,
        model=args.translation_api_model,
        api_key=api_key,
        max_tokens=args.translation_max_tokens,
        timeout_sec=args.translation_timeout_sec,
    )


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Live Translate relay (HTTP + WebSocket)")
    p.add_argument("--host", default="0.0.0.0", help="Bind host")
    p.add_argument("--port", type=int, default=int(os.environ.get("PORT", "3000")), help="Bind port")
    p.add_argument(
        "--openai-api-key",
        default=os.environ.get("OPENAI_API_KEY", ""),
        help="API key for the realtime transcription service (default: $OPENAI_API_KEY)",
    )
    p.add_argument("--realtime-url", default=REALTIME_URL, help="Realtime transcription WebSocket URL")
    p.add_argument("--realtime-model", default=REALTIME_MODEL, help="Realtime session model")
    p.add_argument("--transcription-model", default=TRANSCRIPTION_MODEL, help="Input audio transcription model")
    p.add_argument(
        "--default-input-language",
        default="sv",
        choices=sorted(LANGUAGE_NAMES),
        help="Input language used when start does not name one",
    )
    p.add_argument(
        "--default-output-language",
        default="en",
        choices=sorted(LANGUAGE_NAMES),
        help="Output language used when start does not name one",
    )
    p.add_argument(
        "--silence-threshold-ms",
        type=float,
        default=2000.0,
        help="Silence longer than this between segments is treated as a speaker change",
    )
    p.add_argument(
        "--commit-every-frames",
        type=int,
        default=100,
        help="Force an upstream transcription checkpoint every N forwarded audio frames",
    )
    p.add_argument(
        "--translation-api-base-url",
        default="https://api.openai.com",
        help="OpenAI-compatible translation API base URL",
    )
    p.add_argument("--translation-api-model", default="gpt-4o-mini", help="Translation model name")
    p.add_argument(
        "--translation-api-key",
        default="",
        help="Bearer token for the translation API (default: the realtime API key)",
    )
    p.add_argument("--translation-max-tokens", type=int, default=1000, help="Translation max generation tokens")
    p.add_argument(
        "--translation-timeout-sec",
        type=float,
        default=15.0,
        help="Timeout seconds for each translation or gloss call",
    )
    p.add_argument(
        "--translation-retries",
        type=int,
        default=0,
        help="Extra attempts for a failed sentence translation (bounded to 3)",
    )
    p.add_argument("--idle-timeout-sec", type=float, default=300.0, help="Close idle websocket after timeout")
    p.add_argument("--max-connections", type=int, default=16, help="Maximum active websocket connections")
    p.add_argument(
        "--max-frame-samples",
        type=int,
        default=DEFAULT_MAX_FRAME_SAMPLES,
        help="Maximum samples accepted in a single audio message",
    )
    p.add_argument(
        "--relay-trace-log",
        default=False,
        action=argparse.BooleanOptionalAction,
        help="Emit structured relay trace logs for session state transitions",
    )
    p.add_argument("--ssl-certfile", default=None, help="Path to TLS certificate file (enables HTTPS/WSS)")
    p.add_argument("--ssl-keyfile", default=None, help="Path to TLS private key file")
    p.add_argument("--log-level", default="info", choices=["critical", "error", "warning", "info", "debug"])
    return p.parse_args()


def main() -> None:
    load_dotenv()
    args = parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if not args.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set, sessions will report a configuration error on start")

    translator = _build_translator(args)
    if translator is not None:
        logger.info("translator ready base_url=%s model=%s", args.translation_api_base_url, args.translation_api_model)

    app = _create_app(args, translator=translator)
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        ssl_certfile=args.ssl_certfile,
        ssl_keyfile=args.ssl_keyfile,
    )


if __name__ == "__main__":
    main()
