# coding=utf-8
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import suppress
from dataclasses import dataclass
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Union

from livetranslate.streaming.errors import TranslationFailure
from livetranslate.streaming.events import ClientEventEmitter
from livetranslate.streaming.turn_transcript import Segment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Partial:
    text: str
    generation: int = 0


@dataclass(frozen=True)
class Notice:
    """Client error raised by an upstream event, kept in dispatch order."""

    message: str
    generation: int = 0


Job = Union[Partial, Notice, Segment]
TraceFn = Callable[..., None]


class TranscriptPipeline:
    """
    Ordered per-session job queue for transcript segments.

    One worker task emits, per segment: speaker_change (if flagged), the final
    transcript, the sentence translation and then the gloss. Segment N's events
    are all emitted before segment N+1's start. ``cancel`` bumps the generation
    so results of calls still running in worker threads are discarded.
    """

    def __init__(
        self,
        emitter: ClientEventEmitter,
        translator: Optional[Any],
        *,
        timeout_sec: float = 15.0,
        retries: int = 0,
        peer: str = "unknown",
        trace: Optional[TraceFn] = None,
    ) -> None:
        self.emitter = emitter
        self.translator = translator
        self.timeout_sec = max(0.1, float(timeout_sec))
        self.retries = max(0, min(3, int(retries)))
        self.peer = peer
        self._trace = trace
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self.generation = 0
        self.stats = SimpleNamespace(
            segments=0,
            partials=0,
            notices=0,
            translations=0,
            translation_calls=0,
            translation_failures=0,
            short_circuits=0,
            glosses=0,
            gloss_failures=0,
            stale_dropped=0,
        )

    def _trace_event(self, event: str, **payload: Any) -> None:
        if self._trace is not None:
            self._trace(event, **payload)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def submit(self, job: Job) -> None:
        self._queue.put_nowait(job)
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._worker())

    async def join(self) -> None:
        """Wait until every submitted job has been processed."""
        await self._queue.join()

    async def cancel(self) -> int:
        self.generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        if task is not None:
            with suppress(asyncio.CancelledError):
                await task
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
            dropped += 1
        return dropped

    def _is_stale(self, job: Job) -> bool:
        return int(job.generation) != int(self.generation)

    async def _worker(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                if self._is_stale(job):
                    self.stats.stale_dropped += 1
                elif isinstance(job, Partial):
                    self.stats.partials += 1
                    await self.emitter.transcript(job.text, False)
                elif isinstance(job, Notice):
                    self.stats.notices += 1
                    await self.emitter.error(job.message)
                else:
                    await self.process_segment(job)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("pipeline job failed peer=%s err=%s", self.peer, e)
            finally:
                self._queue.task_done()

    async def process_segment(self, segment: Segment) -> None:
        self.stats.segments += 1
        if segment.speaker_change:
            await self.emitter.speaker_change()
        await self.emitter.transcript(segment.text, True)

        if segment.same_language:
            self.stats.short_circuits += 1
            await self.emitter.translation(segment.text)
            return

        try:
            translated = await self._translate_sentence(segment)
        except TranslationFailure as e:
            self.stats.translation_failures += 1
            logger.warning("translation failed peer=%s seq=%d err=%s", self.peer, segment.seq, e)
            self._trace_event("translation_failed", seq=segment.seq, error=str(e))
            if not self._is_stale(segment):
                if self.translator is None:
                    await self.emitter.error("Translation unavailable - translation service not configured")
                else:
                    await self.emitter.error("Translation failed")
            return
        if self._is_stale(segment):
            self.stats.stale_dropped += 1
            return
        self.stats.translations += 1
        await self.emitter.translation(translated)

        words = await self._gloss(segment)
        if words is None or self._is_stale(segment):
            return
        self.stats.glosses += 1
        await self.emitter.word_translation(words)

    async def _call(self, fn: Callable[..., Any], segment: Segment) -> Any:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(
                    fn,
                    segment.text,
                    source_language=segment.source_language,
                    target_language=segment.target_language,
                ),
                timeout=self.timeout_sec,
            )
        except asyncio.TimeoutError as e:
            raise TranslationFailure(f"translation call timed out after {self.timeout_sec:.1f}s") from e
        except TranslationFailure:
            raise
        except Exception as e:
            raise TranslationFailure(str(e)) from e

    async def _translate_sentence(self, segment: Segment) -> str:
        if self.translator is None:
            raise TranslationFailure("translation service not configured")
        last_error: Optional[TranslationFailure] = None
        for attempt in range(1 + self.retries):
            self.stats.translation_calls += 1
            t0 = time.monotonic()
            try:
                out = await self._call(self.translator.translate, segment)
            except TranslationFailure as e:
                last_error = e
                self._trace_event("translation_attempt_failed", seq=segment.seq, attempt=attempt + 1, error=str(e))
                continue
            latency = time.monotonic() - t0
            if latency >= 1.0:
                logger.info(
                    "translation latency peer=%s sec=%.2f seq=%d src_chars=%d",
                    self.peer,
                    latency,
                    segment.seq,
                    len(segment.text),
                )
            translated = str(out or "").strip()
            if not translated:
                last_error = TranslationFailure("translation service returned empty text")
                continue
            self._trace_event("translation_done", seq=segment.seq, latency_ms=int(latency * 1000))
            return translated
        raise last_error or TranslationFailure()

    async def _gloss(self, segment: Segment) -> Optional[List[Dict[str, str]]]:
        gloss_fn = getattr(self.translator, "gloss", None)
        if gloss_fn is None:
            return None
        try:
            words = await self._call(gloss_fn, segment)
        except TranslationFailure as e:
            self.stats.gloss_failures += 1
            logger.warning("gloss failed peer=%s seq=%d err=%s", self.peer, segment.seq, e)
            self._trace_event("gloss_failed", seq=segment.seq, error=str(e))
            return None
        return list(words or [])
