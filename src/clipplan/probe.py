"""Source probing — natural size, framerate, duration, and audio presence.

Time-based media is probed with moviepy, still images with Pillow. Results
are cached per (path, modification time) in an explicit ProbeCache that the
caller threads through each render; concurrent requests for the same file
share one in-flight probe.
"""

import math
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from moviepy import AudioFileClip, VideoFileClip
from PIL import Image, UnidentifiedImageError

from .errors import ProbeError


IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".bmp", ".tif", ".tiff"}

AUDIO_EXTENSIONS = {".mp3", ".wav", ".m4a", ".aac", ".flac", ".ogg", ".opus"}

# Still images have no native rate; they are looped at this many fps.
IMAGE_FRAMERATE = 60


@dataclass(frozen=True)
class ProbeInfo:
    width: int
    height: int
    framerate: float
    duration: float  # NaN for still images
    aspect_ratio: float
    has_audio: bool
    kind: str  # "video" | "image" | "audio"


def image_info(width: int, height: int) -> ProbeInfo:
    """ProbeInfo for a still image of the given size."""
    return ProbeInfo(
        width=width,
        height=height,
        framerate=IMAGE_FRAMERATE,
        duration=math.nan,
        aspect_ratio=width / height if height else math.nan,
        has_audio=False,
        kind="image",
    )


# ── Probing ───────────────────────────────────────────────────────


def probe_file(path: str | Path) -> ProbeInfo:
    """Read metadata for one source file.

    Raises:
        ProbeError: File missing, unreadable, or without a video/audio stream.
    """
    path = Path(path)
    if not path.exists():
        raise ProbeError(f"Source file not found: {path}")

    suffix = path.suffix.lower()
    if suffix in IMAGE_EXTENSIONS:
        try:
            with Image.open(path) as img:
                width, height = img.size
        except (OSError, UnidentifiedImageError) as e:
            raise ProbeError(f"Cannot read image {path}: {e}") from e
        return image_info(width, height)

    if suffix in AUDIO_EXTENSIONS:
        try:
            clip = AudioFileClip(str(path))
        except (OSError, KeyError, IndexError) as e:
            raise ProbeError(f"Cannot read audio {path}: {e}") from e
        try:
            return ProbeInfo(
                width=0,
                height=0,
                framerate=0,
                duration=float(clip.duration),
                aspect_ratio=math.nan,
                has_audio=True,
                kind="audio",
            )
        finally:
            clip.close()

    try:
        clip = VideoFileClip(str(path))
    except (OSError, KeyError, IndexError) as e:
        raise ProbeError(f"Cannot read video {path}: {e}") from e
    try:
        width, height = clip.size
        if not width or not height:
            raise ProbeError(f"No video stream found in {path}")
        return ProbeInfo(
            width=int(width),
            height=int(height),
            framerate=float(clip.fps),
            duration=float(clip.duration),
            aspect_ratio=width / height,
            has_audio=clip.audio is not None,
            kind="video",
        )
    finally:
        clip.close()


# ── Cache ─────────────────────────────────────────────────────────


class ProbeCache:
    """Probe results keyed by (path, mtime).

    An entry is a Future so a second request for a path that is still being
    probed waits on the first probe instead of starting another.
    """

    def __init__(self, probe_fn: Callable[[Path], ProbeInfo] = probe_file):
        self._probe_fn = probe_fn
        self._entries: dict[tuple[str, float], Future] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(path: str | Path) -> tuple[str, float]:
        path = Path(path).resolve()
        try:
            mtime = os.stat(path).st_mtime
        except FileNotFoundError:
            raise ProbeError(f"Source file not found: {path}") from None
        return str(path), mtime

    def _store(self, key: tuple[str, float], future: Future) -> None:
        # Caller holds the lock. Replaces any entry for an older mtime of the path.
        for stale in [k for k in self._entries if k[0] == key[0] and k != key]:
            del self._entries[stale]
        self._entries[key] = future

    def put(self, path: str | Path, info: ProbeInfo) -> None:
        """Seed the cache with externally supplied probe data."""
        future = Future()
        future.set_result(info)
        key = self._key(path)
        with self._lock:
            self._store(key, future)

    def get_or_probe(self, path: str | Path) -> ProbeInfo:
        key = self._key(path)
        with self._lock:
            future = self._entries.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._store(key, future)

        if not owner:
            return future.result()

        try:
            info = self._probe_fn(Path(key[0]))
        except Exception as e:
            # Failures are not cached; the next render probes again.
            with self._lock:
                self._entries.pop(key, None)
            future.set_exception(e)
            raise
        future.set_result(info)
        return info

    def __len__(self) -> int:
        return len(self._entries)


def probe_clips(
    clips,
    cache: ProbeCache,
    workers: int = 4,
    quiet: bool = False,
) -> dict[str, ProbeInfo]:
    """Probe every media clip, each unique file once, in parallel.

    Args:
        clips: Template clips. Text clips are ignored.
        cache: Shared ProbeCache.
        workers: Thread count for the fan-out.
        quiet: Suppress status lines.

    Returns:
        {clip_id: ProbeInfo} for every media clip.
    """
    paths = {}
    for clip in clips:
        if clip.is_media:
            paths.setdefault(clip.file, []).append(clip.id)

    results = {}
    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        futures = {pool.submit(cache.get_or_probe, path): path for path in paths}
        for future in as_completed(futures):
            path = futures[future]
            results[path] = future.result()
            if not quiet:
                print(f"  PROBE  {path}", flush=True)

    return {
        clip_id: results[path]
        for path, clip_ids in paths.items()
        for clip_id in clip_ids
    }
