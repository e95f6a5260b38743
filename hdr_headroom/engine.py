# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Orchestration of the headroom pipeline for interactive and batch use.

HeadroomEngine owns the registered images, a worker pool and one bounded
cache per result kind:

    ┌────────────────────┬──────────────────────────────────────────────┐
    │ Cache              │ Key                                          │
    ├────────────────────┼──────────────────────────────────────────────┤
    │ linear views       │ image id (cost: megapixels)                  │
    │ peaks              │ image id                                     │
    │ percentile tables  │ image id                                     │
    │ base previews      │ image id | method fingerprint                │
    │ overlays           │ image id | method fingerprint                │
    │ clipping counts    │ image id | method fingerprint                │
    │ HDR histograms     │ image id                                     │
    │ SDR histograms     │ image id | method fingerprint                │
    └────────────────────┴──────────────────────────────────────────────┘

Every computation goes through single-flight deduplication on the same key
and checks its cancellation token before publishing, so a cancelled or
failed computation never writes a cache entry.

Each registration of an image id starts a new generation. Re-registering or
unregistering drops every entry derived from the old content, and results
still in flight for an older generation are returned to their caller but
never cached.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Final, Self, TypeVar

import numpy as np
from numpy.typing import NDArray

from .cache import BoundedCache, SingleFlight, fingerprint
from .clipping import ClippingReport, ClippingStats, detailed_clipping, overlay_and_count
from .config import EngineConfig
from .errors import HeadroomEngineError, UnknownImage
from .headroom import (
    Direct,
    HeadroomMethod,
    ImageSettings,
    PeakMax,
    Percentile,
    ResolvedHeadroom,
    direct_headroom,
    measure_peak,
    peak_max_headroom,
)
from .histogram import HistogramBinner, HistogramResult, VectorizedBinner, hdr_histogram, sdr_histogram
from .percentile import PercentileTable, build_percentile_table, headroom_from_cdf
from .pixels import LinearView, PixelBuffer, validate
from .scheduler import CancellationToken, Debouncer, checkpoint
from .tonecurve import ExtendedReinhardCurve, ToneCurveApplicator, apply_tone_curve

__all__: Final[list[str]] = [
    "PreviewResult",
    "ImageResult",
    "HeadroomEngine",
]

logger = logging.getLogger(__name__)

V = TypeVar("V")


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True, slots=True)
class _TonedImage:
    headroom: ResolvedHeadroom
    sdr: NDArray[np.float32]


@dataclass(frozen=True, slots=True, kw_only=True)
class PreviewResult:
    """Tone-mapped preview of one image under one set of settings.

    sdr is always the pre-overlay raster; overlay is only present when the
    settings ask for it.
    """

    image_id: str
    settings: ImageSettings
    headroom: ResolvedHeadroom
    sdr: NDArray[np.float32]
    overlay: NDArray[np.float32] | None = None
    clipping: ClippingStats | None = None

    @property
    def raster(self) -> NDArray[np.float32]:
        """The raster to display."""
        return self.overlay if self.overlay is not None else self.sdr


@dataclass(frozen=True, slots=True, kw_only=True)
class ImageResult:
    """Outcome of analyzing one image in a batch."""

    image_id: str
    preview: PreviewResult | None = None
    error: Exception | None = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


# =============================================================================
# Engine
# =============================================================================


class HeadroomEngine:
    """Cached, cancellable headroom/tone-map/histogram pipeline.

    Args:
        config: Engine constants and cache limits
        applicator: Tone curve used for previews
        binner: Histogram backend (default: VectorizedBinner)
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        applicator: ToneCurveApplicator | None = None,
        binner: HistogramBinner | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.applicator = applicator or ExtendedReinhardCurve()
        self.binner = binner or VectorizedBinner()
        cfg = self.config

        self._executor = ThreadPoolExecutor(
            max_workers=cfg.max_workers, thread_name_prefix="hdr-headroom"
        )
        self._lock = threading.Lock()
        self._sources: dict[str, PixelBuffer | LinearView] = {}
        self._generations: dict[str, int] = {}
        self._registrations = itertools.count()
        self._debouncers: list[Debouncer[ImageSettings, PreviewResult]] = []
        self._closed = False

        self._views: BoundedCache[str, LinearView] = BoundedCache(
            "views", cost_limit=cfg.source_cache_megapixels, cost=lambda v: v.megapixels
        )
        self._peaks: BoundedCache[str, float] = BoundedCache(
            "peaks", count_limit=cfg.percentile_cache_count
        )
        self._tables: BoundedCache[str, PercentileTable] = BoundedCache(
            "percentile", count_limit=cfg.percentile_cache_count
        )
        self._previews: BoundedCache[str, _TonedImage] = BoundedCache(
            "preview", count_limit=cfg.preview_cache_count
        )
        self._overlays: BoundedCache[str, ClippingReport] = BoundedCache(
            "overlay", count_limit=cfg.overlay_cache_count
        )
        self._clipping: BoundedCache[str, ClippingStats] = BoundedCache(
            "clipping", count_limit=cfg.clipping_cache_count
        )
        self._hdr_histograms: BoundedCache[str, HistogramResult] = BoundedCache(
            "hdr-histogram", count_limit=cfg.histogram_cache_count
        )
        self._sdr_histograms: BoundedCache[str, HistogramResult] = BoundedCache(
            "sdr-histogram", count_limit=cfg.histogram_cache_count
        )
        self._flights: dict[str, SingleFlight[str, object]] = {
            cache.name: SingleFlight(cache.name)
            for cache in self._all_caches()
        }

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Cancel debounced work and shut the worker pool down."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            debouncers = list(self._debouncers)
            self._debouncers.clear()
        for debouncer in debouncers:
            debouncer.cancel()
        self._executor.shutdown(wait=True, cancel_futures=True)

    def _all_caches(self) -> tuple[BoundedCache, ...]:
        return (
            self._views,
            self._peaks,
            self._tables,
            self._previews,
            self._overlays,
            self._clipping,
            self._hdr_histograms,
            self._sdr_histograms,
        )

    # -------------------------------------------------------------------------
    # Images
    # -------------------------------------------------------------------------

    def register_image(self, image_id: str, buffer: PixelBuffer, profile: str | None) -> LinearView:
        """Validate and register a decoded image under *image_id*.

        Registering over an existing id drops every result computed from the
        previous content.

        Raises:
            InvalidColorSpace: profile is not the required HDR profile
        """
        view = validate(buffer, profile, self.config)
        self._install(image_id, buffer, view)
        logger.debug("Registered %s (%dx%d)", image_id, buffer.width, buffer.height)
        return view

    def register_linear(self, image_id: str, view: LinearView) -> LinearView:
        """Register an already-linear view (1.0 = reference white)."""
        self._install(image_id, view, view)
        return view

    def unregister_image(self, image_id: str) -> None:
        """Forget an image and every result computed from it."""
        with self._lock:
            self._sources.pop(image_id, None)
            self._generations.pop(image_id, None)
            self._forget_locked(image_id)

    def _install(self, image_id: str, source: PixelBuffer | LinearView, view: LinearView) -> None:
        with self._lock:
            self._forget_locked(image_id)
            self._sources[image_id] = source
            self._generations[image_id] = next(self._registrations)
            self._views.put(image_id, view)

    def _forget_locked(self, image_id: str) -> None:
        dropped = 0
        for cache in (self._views, self._peaks, self._tables, self._hdr_histograms):
            dropped += cache.discard(image_id)
        # Settings fingerprints never contain "|", so the last field is the settings
        for cache in (self._previews, self._overlays, self._clipping, self._sdr_histograms):
            dropped += cache.discard_where(lambda key: key.rpartition("|")[0] == image_id)
        if dropped:
            logger.debug("Dropped %d cached results of %s", dropped, image_id)

    def _generation(self, image_id: str) -> int:
        with self._lock:
            return self._generations.get(image_id, -1)

    @property
    def image_ids(self) -> list[str]:
        with self._lock:
            return list(self._sources)

    def view(self, image_id: str) -> LinearView:
        """Linear view of a registered image, re-created if it was evicted.

        Raises:
            UnknownImage: nothing is registered under *image_id*
        """
        view = self._views.get(image_id)
        if view is not None:
            return view
        with self._lock:
            source = self._sources.get(image_id)
            generation = self._generations.get(image_id, -1)
        if source is None:
            raise UnknownImage(image_id)
        if isinstance(source, LinearView):
            view = source
        else:
            view = validate(source, self.config.required_profile, self.config)
        with self._lock:
            if self._generations.get(image_id, -1) == generation:
                self._views.put(image_id, view)
        return view

    # -------------------------------------------------------------------------
    # Cached computation
    # -------------------------------------------------------------------------

    def _cached(
        self,
        cache: BoundedCache[str, V],
        image_id: str,
        key: str,
        compute: Callable[[], V],
        token: CancellationToken | None,
        generation: int | None = None,
    ) -> V:
        hit = cache.get(key)
        if hit is not None:
            logger.debug("%s cache hit: %s", cache.name, key)
            return hit

        # Computations on replaced content neither share a flight with nor
        # publish over computations on the current content
        if generation is None:
            generation = self._generation(image_id)

        def run() -> V:
            # A previous leader may have published while we queued
            published = cache.peek(key)
            if published is not None:
                return published
            checkpoint(token)
            value = compute()
            checkpoint(token)
            self._publish(cache, image_id, key, value, generation)
            return value

        logger.debug("%s cache miss: %s", cache.name, key)
        flight_key = f"{key}#{generation}"
        return self._flights[cache.name].do(flight_key, run)  # type: ignore[return-value]

    def _publish(
        self,
        cache: BoundedCache[str, V],
        image_id: str,
        key: str,
        value: V,
        generation: int,
    ) -> None:
        """Cache *value* unless *image_id* was re-registered since *generation*."""
        with self._lock:
            current = self._generations.get(image_id, -1)
            if current == -1 or current != generation:
                logger.debug("%s: dropping result for replaced image %s", cache.name, key)
                return
            cache.put(key, value)

    # -------------------------------------------------------------------------
    # Headroom
    # -------------------------------------------------------------------------

    def measured_headroom(
        self,
        image_id: str,
        token: CancellationToken | None = None,
        generation: int | None = None,
    ) -> float:
        """Peak linear luminance of the image (1.0 = reference white), scanned once."""
        return self._cached(
            self._peaks,
            image_id,
            image_id,
            lambda: measure_peak(self.view(image_id), token),
            token,
            generation,
        )

    def percentile_table(
        self,
        image_id: str,
        token: CancellationToken | None = None,
        generation: int | None = None,
    ) -> PercentileTable:
        """The image's percentile table, built once and shared."""
        generation = self._generation(image_id) if generation is None else generation

        def build() -> PercentileTable:
            peak = self.measured_headroom(image_id, token, generation)
            return build_percentile_table(
                self.view(image_id).luminance,
                peak=peak,
                bins=self.config.percentile_bins,
                reference_white_nits=self.config.reference_white_nits,
                token=token,
            )

        return self._cached(self._tables, image_id, image_id, build, token, generation)

    def percentile_headroom(self, image_id: str, p: float) -> float | None:
        """Headroom at percentile *p* from an already-built table.

        Never scans: returns None when the table has not been built yet.
        Meant for live indicators while a slider is being dragged.
        """
        table = self._tables.peek(image_id)
        if table is None:
            return None
        return max(1.0, headroom_from_cdf(table, p))

    def resolve_headroom(
        self,
        image_id: str,
        method: HeadroomMethod,
        token: CancellationToken | None = None,
        generation: int | None = None,
    ) -> ResolvedHeadroom:
        """Resolve *method* using the cached peak and percentile table."""
        match method:
            case Percentile(p=p):
                table = self.percentile_table(image_id, token, generation)
                return ResolvedHeadroom(source=max(1.0, headroom_from_cdf(table, p)))
            case Direct():
                return direct_headroom(method, self.measured_headroom(image_id, token, generation))
            case PeakMax(ratio=ratio):
                peak = self.measured_headroom(image_id, token, generation)
                return ResolvedHeadroom(source=peak_max_headroom(peak, ratio))
            case _:
                msg = f"Unknown headroom method: {method!r}"
                raise TypeError(msg)

    # -------------------------------------------------------------------------
    # Previews
    # -------------------------------------------------------------------------

    def _toned(
        self,
        image_id: str,
        settings: ImageSettings,
        token: CancellationToken | None,
        generation: int,
    ) -> _TonedImage:
        def render() -> _TonedImage:
            headroom = self.resolve_headroom(image_id, settings.method, token, generation)
            checkpoint(token)
            return _TonedImage(
                headroom, apply_tone_curve(self.applicator, self.view(image_id), headroom)
            )

        key = fingerprint(image_id, settings.fingerprint())
        return self._cached(self._previews, image_id, key, render, token, generation)

    def preview(
        self,
        image_id: str,
        settings: ImageSettings | None = None,
        token: CancellationToken | None = None,
    ) -> PreviewResult:
        """Tone-mapped preview, with clipping overlay and counts if requested.

        Raises:
            UnknownImage: nothing is registered under *image_id*
        """
        settings = settings or ImageSettings()
        started = time.perf_counter()
        generation = self._generation(image_id)
        toned = self._toned(image_id, settings, token, generation)

        overlay = None
        clipping = None
        if settings.show_clipped_overlay:
            key = fingerprint(image_id, settings.fingerprint())
            report = self._cached(
                self._overlays,
                image_id,
                key,
                lambda: overlay_and_count(toned.sdr, self.config.clip_epsilon, token),
                token,
                generation,
            )
            self._publish(self._clipping, image_id, key, report.stats, generation)
            overlay, clipping = report.overlay, report.stats

        logger.debug(
            "Preview %s [%s]: headroom %.3f -> %.3f (%.3fs)",
            image_id,
            settings.fingerprint(),
            toned.headroom.source,
            toned.headroom.target,
            time.perf_counter() - started,
        )
        return PreviewResult(
            image_id=image_id,
            settings=settings,
            headroom=toned.headroom,
            sdr=toned.sdr,
            overlay=overlay,
            clipping=clipping,
        )

    def detailed_clipping(
        self,
        image_id: str,
        settings: ImageSettings | None = None,
        token: CancellationToken | None = None,
    ) -> ClippingStats:
        """Per-category clipping breakdown of the tone-mapped image."""
        settings = settings or ImageSettings()
        generation = self._generation(image_id)
        toned = self._toned(image_id, settings, token, generation)
        return self._cached(
            self._clipping,
            image_id,
            fingerprint(image_id, settings.fingerprint()),
            lambda: detailed_clipping(toned.sdr, self.config.clip_epsilon),
            token,
            generation,
        )

    # -------------------------------------------------------------------------
    # Histograms
    # -------------------------------------------------------------------------

    def hdr_histogram(self, image_id: str, token: CancellationToken | None = None) -> HistogramResult:
        """Histogram of the source; independent of settings."""
        return self._cached(
            self._hdr_histograms,
            image_id,
            image_id,
            lambda: hdr_histogram(self.view(image_id), self.config, binner=self.binner, token=token),
            token,
        )

    def sdr_histogram(
        self,
        image_id: str,
        settings: ImageSettings | None = None,
        token: CancellationToken | None = None,
    ) -> HistogramResult:
        """Histogram of the tone-mapped image, never of the overlay."""
        settings = settings or ImageSettings()
        generation = self._generation(image_id)
        toned = self._toned(image_id, settings, token, generation)
        return self._cached(
            self._sdr_histograms,
            image_id,
            fingerprint(image_id, settings.fingerprint()),
            lambda: sdr_histogram(toned.sdr, self.config, binner=self.binner, token=token),
            token,
            generation,
        )

    # -------------------------------------------------------------------------
    # Background work
    # -------------------------------------------------------------------------

    def _submit(self, fn: Callable[..., V], *args: object) -> Future[V]:
        if self._closed:
            raise RuntimeError("HeadroomEngine is closed")
        return self._executor.submit(fn, *args)

    def submit_preview(
        self,
        image_id: str,
        settings: ImageSettings | None = None,
        token: CancellationToken | None = None,
    ) -> Future[PreviewResult]:
        return self._submit(self.preview, image_id, settings, token)

    def submit_percentile_table(
        self, image_id: str, token: CancellationToken | None = None
    ) -> Future[PercentileTable]:
        return self._submit(self.percentile_table, image_id, token)

    def submit_hdr_histogram(
        self, image_id: str, token: CancellationToken | None = None
    ) -> Future[HistogramResult]:
        return self._submit(self.hdr_histogram, image_id, token)

    def submit_sdr_histogram(
        self,
        image_id: str,
        settings: ImageSettings | None = None,
        token: CancellationToken | None = None,
    ) -> Future[HistogramResult]:
        return self._submit(self.sdr_histogram, image_id, settings, token)

    def debouncer(
        self,
        image_id: str,
        *,
        on_result: Callable[[PreviewResult], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> Debouncer[ImageSettings, PreviewResult]:
        """Debounced preview refresh for one image.

        Call submit(settings) on every parameter change; only the last
        settings of a burst are rendered, and a newer burst cancels the
        render in flight.
        """

        def work(settings: ImageSettings, token: CancellationToken) -> PreviewResult:
            return self.preview(image_id, settings, token)

        debouncer = Debouncer(
            work,
            self._executor,
            delay=self.config.debounce_seconds,
            on_result=on_result,
            on_error=on_error,
        )
        with self._lock:
            self._debouncers.append(debouncer)
        return debouncer

    def analyze_batch(
        self, items: Iterable[tuple[str, ImageSettings]]
    ) -> list[ImageResult]:
        """Preview several images on the worker pool.

        A failure only affects its own image. Results are returned in input
        order.
        """
        requests = list(items)

        def analyze(image_id: str, settings: ImageSettings) -> ImageResult:
            started = time.perf_counter()
            preview = self.preview(image_id, settings)
            return ImageResult(
                image_id=image_id, preview=preview, elapsed=time.perf_counter() - started
            )

        future_to_index: dict[Future[ImageResult], int] = {}
        for index, (image_id, settings) in enumerate(requests):
            future_to_index[self._submit(analyze, image_id, settings)] = index

        results: list[ImageResult | None] = [None] * len(requests)
        for future in as_completed(future_to_index):
            index = future_to_index[future]
            image_id = requests[index][0]
            try:
                results[index] = future.result()
            except HeadroomEngineError as e:
                logger.error("%s: %s", image_id, e)
                results[index] = ImageResult(image_id=image_id, error=e)
            except Exception as e:
                logger.exception("%s: unexpected error", image_id)
                results[index] = ImageResult(image_id=image_id, error=e)

        return [r for r in results if r is not None]
