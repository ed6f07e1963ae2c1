# coding=utf-8
from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import suppress
from types import SimpleNamespace
from typing import Any, Callable, Dict, Optional

from livetranslate.streaming.commit_policy import FrameCommitPolicy
from livetranslate.streaming.errors import (
    ConfigurationError,
    ProtocolError,
    TranscriptionFailure,
    UpstreamLinkError,
)
from livetranslate.streaming.events import ClientEventEmitter
from livetranslate.streaming.pipeline import Notice, Partial, TranscriptPipeline
from livetranslate.streaming.protocol import (
    DEFAULT_MAX_FRAME_SAMPLES,
    ClientMessage,
    SessionConfig,
    encode_pcm16le,
    pcm_to_base64,
    resolve_session_config,
)
from livetranslate.streaming.segment_policy import SpeakerChangePolicy
from livetranslate.streaming.turn_transcript import Segment, TurnTranscript
from livetranslate.streaming.upstream_events import (
    ERROR,
    SPEECH_STARTED,
    SPEECH_STOPPED,
    TRANSCRIPTION_COMPLETED,
    TRANSCRIPTION_DELTA,
    TRANSCRIPTION_FAILED,
    UpstreamEvent,
)

logger = logging.getLogger(__name__)

UpstreamFactory = Callable[[], Any]


class SessionRelay:
    """
    Per-connection relay between one client channel and one upstream link.

    The relay exclusively owns its emitter and its upstream link. It has three
    sub-states: idle (no link), linked, and inert (credentials missing, nothing
    is ever forwarded again). Times are monotonic seconds from ``clock``.
    """

    def __init__(
        self,
        emitter: ClientEventEmitter,
        upstream_factory: UpstreamFactory,
        translator: Optional[Any] = None,
        *,
        default_config: Optional[SessionConfig] = None,
        speaker_policy: Optional[SpeakerChangePolicy] = None,
        commit_policy: Optional[FrameCommitPolicy] = None,
        translation_timeout_sec: float = 15.0,
        translation_retries: int = 0,
        max_frame_samples: int = DEFAULT_MAX_FRAME_SAMPLES,
        clock: Callable[[], float] = time.monotonic,
        peer: str = "unknown",
        trace_log: bool = False,
    ) -> None:
        self.emitter = emitter
        self.upstream_factory = upstream_factory
        self.config = default_config or SessionConfig()
        self.speaker_policy = speaker_policy or SpeakerChangePolicy()
        self.commit_policy = commit_policy or FrameCommitPolicy()
        self.max_frame_samples = max(1, int(max_frame_samples))
        self.clock = clock
        self.peer = peer
        self.trace_log = bool(trace_log)
        self.pipeline = TranscriptPipeline(
            emitter,
            translator,
            timeout_sec=translation_timeout_sec,
            retries=translation_retries,
            peer=peer,
            trace=self._trace_event,
        )

        self.upstream: Optional[Any] = None
        self._reader_task: Optional[asyncio.Task] = None
        self.inert = False
        self.closed = False
        self.turn = TurnTranscript()
        self.last_speech_activity = self.clock()
        # silence before each utterance, keyed by upstream item id
        self.speech_gaps: Dict[str, float] = {}
        self.frames_since_commit = 0
        self.samples_since_commit = 0
        self.segment_seq = 0
        self.stats = SimpleNamespace(
            start_msgs=0,
            stop_msgs=0,
            forwarded_frames=0,
            dropped_frames=0,
            commits=0,
            speaker_changes=0,
            transcription_failures=0,
            upstream_errors=0,
            last_error="",
        )
        self._trace_seq = 0
        self._trace_t0 = time.monotonic()

    def _trace_event(self, event: str, **payload: Any) -> None:
        if not self.trace_log:
            return
        self._trace_seq += 1
        row: Dict[str, Any] = {
            "topic": "relay",
            "session": self.peer,
            "event": str(event or ""),
            "trace_seq": int(self._trace_seq),
            "elapsed_ms": int((time.monotonic() - self._trace_t0) * 1000),
            "generation": int(self.pipeline.generation),
            "linked": self.linked,
        }
        if payload:
            row.update(payload)
        logger.info("relay_trace %s", json.dumps(row, ensure_ascii=False, separators=(",", ":")))

    @property
    def linked(self) -> bool:
        return self.upstream is not None

    # -- client side -----------------------------------------------------

    async def on_client_message(self, msg: ClientMessage) -> None:
        if msg.type == "audio":
            await self._handle_audio(msg.payload)
        elif msg.type == "start":
            await self.start(msg.payload)
        elif msg.type == "stop":
            await self.stop()
        elif msg.type == "configure":
            self.configure(msg.payload)
        else:
            raise ProtocolError(f"unknown message type: {msg.type}")

    async def start(self, payload: Optional[Dict[str, Any]] = None) -> None:
        self.stats.start_msgs += 1
        if self.inert or self.closed:
            self._trace_event("start_ignored", inert=self.inert)
            return
        if self.upstream is not None:
            self._trace_event("start_noop")
            return

        config = resolve_session_config(payload or {}, self.config)
        try:
            upstream = self.upstream_factory()
        except ConfigurationError as e:
            self.inert = True
            self.stats.last_error = str(e)
            logger.error("upstream not configured peer=%s err=%s", self.peer, e)
            self._trace_event("start_config_error", error=str(e))
            await self.emitter.error(e.message)
            return

        try:
            await upstream.connect(config)
        except UpstreamLinkError as e:
            self.stats.upstream_errors += 1
            self.stats.last_error = str(e)
            logger.warning("upstream connect failed peer=%s err=%s", self.peer, e)
            self._trace_event("start_link_error", error=str(e))
            with suppress(UpstreamLinkError):
                await upstream.close()
            await self.emitter.error(e.message)
            return

        self.config = config
        self.upstream = upstream
        self._reset_turn_state()
        self.last_speech_activity = self.clock()
        self._reader_task = asyncio.create_task(self._read_upstream(upstream))
        logger.info(
            "session started peer=%s input=%s output=%s",
            self.peer,
            config.input_language,
            config.output_language,
        )
        self._trace_event("started", input_language=config.input_language, output_language=config.output_language)

    def configure(self, payload: Dict[str, Any]) -> None:
        self.config = resolve_session_config(payload, self.config)
        self._trace_event(
            "configured",
            input_language=self.config.input_language,
            output_language=self.config.output_language,
        )

    async def _handle_audio(self, payload: Dict[str, Any]) -> None:
        upstream = self.upstream
        if upstream is None:
            self.stats.dropped_frames += 1
            if self.stats.dropped_frames == 1 or self.stats.dropped_frames % 100 == 0:
                logger.info("audio dropped without upstream peer=%s dropped=%d", self.peer, self.stats.dropped_frames)
            return

        raw = encode_pcm16le(payload.get("data"), max_samples=self.max_frame_samples)
        if not raw:
            return
        try:
            await upstream.append_audio(pcm_to_base64(raw))
            self.stats.forwarded_frames += 1
            self.frames_since_commit += 1
            self.samples_since_commit += len(raw) // 2
            decision = self.commit_policy.evaluate(self.frames_since_commit, self.samples_since_commit)
            if decision.should_commit:
                await upstream.commit()
                self.stats.commits += 1
                self._trace_event("commit", reason=decision.reason, buffered_sec=round(decision.buffered_sec, 3))
                self.frames_since_commit = 0
                self.samples_since_commit = 0
        except UpstreamLinkError as e:
            await self._on_link_lost(upstream, e)
            return
        if self.stats.forwarded_frames % 500 == 0:
            logger.info("audio forwarded peer=%s frames=%d", self.peer, self.stats.forwarded_frames)

    async def stop(self) -> None:
        self.stats.stop_msgs += 1
        dropped = await self.pipeline.cancel()
        await self._teardown_upstream()
        turn = self.turn.snapshot()
        self._reset_turn_state()
        self._trace_event("stopped", pipeline_dropped=int(dropped), turn=turn)

    async def close(self) -> None:
        """Client went away: stop everything and drop any later writes."""
        if self.closed:
            return
        self.closed = True
        self.emitter.close()
        await self.pipeline.cancel()
        await self._teardown_upstream()
        turn = self.turn.snapshot()
        self._reset_turn_state()
        logger.info(
            "session closed peer=%s forwarded=%d dropped=%d commits=%d segments=%d speaker_changes=%d turn=%s last_error=%s",
            self.peer,
            self.stats.forwarded_frames,
            self.stats.dropped_frames,
            self.stats.commits,
            self.segment_seq,
            self.stats.speaker_changes,
            turn,
            self.stats.last_error,
        )

    def _reset_turn_state(self) -> None:
        self.turn.reset()
        self.frames_since_commit = 0
        self.samples_since_commit = 0
        self.speech_gaps.clear()

    async def _teardown_upstream(self) -> None:
        upstream, self.upstream = self.upstream, None
        reader, self._reader_task = self._reader_task, None
        if upstream is not None:
            with suppress(UpstreamLinkError):
                await upstream.close()
        if reader is not None and reader is not asyncio.current_task():
            if not reader.done():
                reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("upstream reader ended with error peer=%s err=%s", self.peer, e)

    async def _on_link_lost(self, upstream: Any, error: UpstreamLinkError) -> None:
        if self.upstream is not upstream:
            return
        self.stats.upstream_errors += 1
        self.stats.last_error = str(error)
        logger.warning("upstream link lost peer=%s err=%s", self.peer, error)
        self._trace_event("link_lost", error=str(error))
        await self._teardown_upstream()
        self.frames_since_commit = 0
        self.samples_since_commit = 0
        try:
            await self.emitter.error(error.message)
        except Exception as e:
            # client channel already gone
            logger.warning("link loss not delivered peer=%s err=%s", self.peer, e)

    # -- upstream side ---------------------------------------------------

    async def _read_upstream(self, upstream: Any) -> None:
        try:
            async for evt in upstream.events():
                if self.upstream is not upstream:
                    break
                await self.on_upstream_event(evt)
        except UpstreamLinkError as e:
            await self._on_link_lost(upstream, e)
        except Exception as e:
            logger.exception("upstream reader failed peer=%s", self.peer)
            await self._on_link_lost(upstream, UpstreamLinkError(f"upstream reader failed: {e}"))

    async def on_upstream_event(self, evt: UpstreamEvent) -> None:
        now = self.clock()
        if evt.kind == SPEECH_STARTED:
            gap = max(0.0, now - self.last_speech_activity)
            self.speech_gaps[evt.item_id] = max(self.speech_gaps.get(evt.item_id, 0.0), gap)
            self._touch(now)
        elif evt.kind == SPEECH_STOPPED:
            self._touch(now)
            # Server VAD commits the buffer itself.
            self.frames_since_commit = 0
            self.samples_since_commit = 0
        elif evt.kind == TRANSCRIPTION_DELTA:
            if evt.text:
                self.pipeline.submit(Partial(text=evt.text, generation=self.pipeline.generation))
        elif evt.kind == TRANSCRIPTION_COMPLETED:
            self.on_transcript_completed(evt.text, now, item_id=evt.item_id)
        elif evt.kind == TRANSCRIPTION_FAILED:
            self.stats.transcription_failures += 1
            self.speech_gaps.pop(evt.item_id, None)
            failure = TranscriptionFailure(evt.message or "transcription failed")
            logger.warning("transcription failed peer=%s err=%s", self.peer, failure)
            self._notify(f"Transcription failed: {failure.message}")
        elif evt.kind == ERROR:
            self.stats.upstream_errors += 1
            self.stats.last_error = evt.message
            logger.warning("upstream error peer=%s message=%s", self.peer, evt.message)
            self._notify(evt.message or "Unknown error")

    def _notify(self, message: str) -> None:
        # same queue as partials and segments
        self.pipeline.submit(Notice(message=message, generation=self.pipeline.generation))

    def _touch(self, now: float) -> None:
        self.last_speech_activity = max(self.last_speech_activity, now)

    def on_transcript_completed(
        self,
        text: str,
        now: Optional[float] = None,
        *,
        item_id: str = "",
    ) -> Optional[Segment]:
        """
        Segment a finalized transcript and queue it for the pipeline.

        The silence before the utterance is the gap recorded when its own
        speech started (looked up by ``item_id``), or the time since the last
        speech activity, whichever is larger.
        """
        cur = str(text or "").strip()
        gap_sec = self.speech_gaps.pop(item_id, 0.0)
        if not cur:
            return None
        ts = self.clock() if now is None else now
        silence_sec = max(gap_sec, ts - self.last_speech_activity)
        decision = self.speaker_policy.evaluate(
            silence_ms=silence_sec * 1000.0,
            has_running_text=not self.turn.is_empty(),
        )
        if decision.speaker_change:
            self.turn.next_turn()
            self.stats.speaker_changes += 1
        self.turn.append(cur)
        self._touch(ts)

        self.segment_seq += 1
        segment = Segment(
            seq=self.segment_seq,
            text=cur,
            speaker=self.turn.speaker,
            speaker_change=decision.speaker_change,
            source_language=self.config.input_language,
            target_language=self.config.output_language,
            generation=self.pipeline.generation,
        )
        self._trace_event(
            "segment",
            seq=segment.seq,
            speaker=segment.speaker,
            speaker_change=decision.speaker_change,
            reason=decision.reason,
            silence_ms=int(decision.silence_ms),
            text_chars=len(cur),
        )
        self.pipeline.submit(segment)
        return segment
