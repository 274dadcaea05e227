from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator, Mapping
from concurrent.futures import ThreadPoolExecutor
from functools import partial

from spotmix.audio.decode import decode_audio
from spotmix.audio.sources import fetch_source
from spotmix.model.types import SampleBuffer

log = logging.getLogger(__name__)


class _DurationTable(Mapping[str, float]):
    """Read-only source -> seconds view that decodes on first access."""

    def __init__(self, cache: "DecodeCache") -> None:
        self._cache = cache

    def __getitem__(self, source: str) -> float:
        return self._cache.get(source).duration

    def __iter__(self) -> Iterator[str]:
        return iter(self._cache.sources())

    def __len__(self) -> int:
        return len(self._cache)


class DecodeCache:
    """Thread-safe cache of decoded buffers keyed by source reference.

    Each source is fetched and decoded at most once while cached; concurrent
    requests for the same source wait on the first decode.
    """

    def __init__(
        self,
        *,
        sample_rate: int,
        channels: int = 2,
        fetch: Callable[[str], bytes] | None = None,
        ffmpeg_bin: str = "ffmpeg",
        fetch_timeout_seconds: float = 30.0,
        workers: int = 4,
    ) -> None:
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.ffmpeg_bin = ffmpeg_bin
        self.workers = max(1, int(workers))
        self._fetch = fetch or partial(fetch_source, timeout=fetch_timeout_seconds)
        self._buffers: dict[str, SampleBuffer] = {}
        self._key_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffers)

    def __contains__(self, source: object) -> bool:
        with self._lock:
            return source in self._buffers

    def sources(self) -> list[str]:
        with self._lock:
            return list(self._buffers)

    def _key_lock(self, source: str) -> threading.Lock:
        with self._lock:
            return self._key_locks.setdefault(source, threading.Lock())

    def get(self, source: str) -> SampleBuffer:
        with self._lock:
            hit = self._buffers.get(source)
        if hit is not None:
            return hit

        with self._key_lock(source):
            with self._lock:
                hit = self._buffers.get(source)
            if hit is not None:
                return hit

            data = self._fetch(source)
            buf = decode_audio(
                data,
                sample_rate=self.sample_rate,
                channels=self.channels,
                ffmpeg_bin=self.ffmpeg_bin,
                source=source,
            )
            log.debug("decoded %s: %.3fs", source, buf.duration)
            with self._lock:
                self._buffers[source] = buf
            return buf

    def decode_all(self, sources: Iterable[str]) -> dict[str, SampleBuffer]:
        """Decode every distinct source in parallel; the first failure propagates."""

        uniq = list(dict.fromkeys(sources))
        if not uniq:
            return {}
        with ThreadPoolExecutor(max_workers=min(self.workers, len(uniq))) as pool:
            futures = {src: pool.submit(self.get, src) for src in uniq}
            out = {src: fut.result() for src, fut in futures.items()}
        log.info("decoded %d sources", len(out))
        return out

    @property
    def durations(self) -> Mapping[str, float]:
        return _DurationTable(self)

    def evict(self, source: str) -> bool:
        with self._lock:
            self._key_locks.pop(source, None)
            return self._buffers.pop(source, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._buffers.clear()
            self._key_locks.clear()
