"""bloomium.errors

Error taxonomy and the small result type used at the catalog/aligner seam.

The orchestrator never lets these cross the date loop as control flow: the
catalog and aligner calls are wrapped with `attempt()` and the orchestrator
branches on `Ok` / `Err`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, Tuple, Type, TypeVar, Union

T = TypeVar("T")


class BloomiumError(Exception):
    """Base class for worker pipeline errors."""


class MissingBandError(BloomiumError):
    """A required spectral or classification asset is absent from a scene."""

    def __init__(self, scene_id: str, missing):
        self.scene_id = scene_id
        self.missing = list(missing)
        super().__init__(f"Missing required bands in scene {scene_id}: {', '.join(self.missing)}")


class SceneSearchError(BloomiumError):
    """Scene catalog search failed (non-transient status or exhausted retries)."""


class ShapeMismatchError(BloomiumError):
    """Grids of differing geometry were combined."""


class ReprojectionError(BloomiumError):
    """A bbox or point could not be transformed into a band's CRS."""


class BandReadError(BloomiumError):
    """A band raster could not be opened or read."""


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    error: BloomiumError


Result = Union[Ok[T], Err]


def attempt(fn: Callable[..., T], *args, recover: Tuple[Type[BloomiumError], ...] = (BloomiumError,), **kwargs) -> "Result[T]":
    """Call `fn`, returning Ok(value) or Err(error) for the `recover` errors.

    Anything outside `recover` propagates unchanged.
    """
    try:
        return Ok(fn(*args, **kwargs))
    except recover as e:
        return Err(e)
