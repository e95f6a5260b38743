# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Exceptions raised by the headroom engine."""

from __future__ import annotations

from typing import Final

__all__: Final[list[str]] = [
    "HeadroomEngineError",
    "CannotDecodeSource",
    "InvalidColorSpace",
    "UnknownImage",
    "HeadroomCalculationFailed",
    "ToneMapFailed",
    "HistogramCalculationFailed",
    "ClippingCalculationFailed",
    "ComputationCancelled",
]


class HeadroomEngineError(Exception):
    """Base exception for headroom engine errors."""


class CannotDecodeSource(HeadroomEngineError):
    """Pixel buffer is malformed or the source file is unreadable."""


class InvalidColorSpace(HeadroomEngineError):
    """Declared color profile is not the required HDR profile."""

    def __init__(self, profile: str | None) -> None:
        self.profile = profile
        super().__init__(f"Invalid colorspace: {profile if profile is not None else 'nil'}")


class UnknownImage(HeadroomEngineError, KeyError):
    """No image is registered under the requested id."""

    def __init__(self, image_id: str) -> None:
        self.image_id = image_id
        super().__init__(f"Unknown image: {image_id}")

    def __str__(self) -> str:
        return self.args[0]


class HeadroomCalculationFailed(HeadroomEngineError):
    """Peak scan or percentile lookup produced a non-finite result."""


class ToneMapFailed(HeadroomEngineError):
    """Tone curve applicator rejected the resolved headroom pair."""


class HistogramCalculationFailed(HeadroomEngineError):
    """Binning produced no usable bins."""


class ClippingCalculationFailed(HeadroomEngineError):
    """Clip categories do not partition the clipped pixels."""


class ComputationCancelled(HeadroomEngineError):
    """A superseded computation stopped at a cancellation checkpoint."""
