"""
Rate profile resolution.

Picks the bitrate-ladder rung for a source in two independent stages
(resolution tier first, then frame rate within that tier), applies the
user's bitrate modifier, derives the VBR ceiling and buffer, and caps the
result at the source's own bitrate.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from common.config import RateProfile
from common.constants import BUFSIZE_FACTOR, MAXRATE_FACTOR
from common.errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedRateParameters:
    """Target bitrates for one encode, in bits per second."""

    profile_name: str
    average_bitrate: int
    max_rate: int
    buffer_size: int
    source_cap_applied: bool = False

    def as_kbps(self) -> Tuple[int, int, int]:
        return (
            max(1, round(self.average_bitrate / 1000)),
            max(1, round(self.max_rate / 1000)),
            max(1, round(self.buffer_size / 1000)),
        )


def _fps_distance(profile: RateProfile, fps: float) -> float:
    if fps < profile.fps_min:
        return profile.fps_min - fps
    if fps > profile.fps_max:
        return fps - profile.fps_max
    return 0.0


def select_resolution_tier(max_dimension: int, profiles: Sequence[RateProfile]) -> int:
    """Return the largest tier threshold not above ``max_dimension`` (0 when none qualifies)."""
    qualifying = [p.min_long_edge for p in profiles if p.min_long_edge <= max_dimension]
    if qualifying:
        return max(qualifying)
    return 0


def select_rate_profile(max_dimension: int, fps: float, profiles: Sequence[RateProfile]) -> RateProfile:
    """
    Select exactly one profile for a resolution and frame rate.

    Within the chosen resolution tier an exact fps range match wins (first
    declared). Without one, the profile whose range edge is nearest to
    ``fps`` is used; ties go to the first declared profile.

    Raises:
        ConfigError: If no profile exists for the selected tier
    """
    tier = select_resolution_tier(max_dimension, profiles)
    candidates = [p for p in profiles if p.min_long_edge == tier]
    if not candidates:
        raise ConfigError(f"No rate profile defined for resolution tier {tier}")

    for profile in candidates:
        if profile.fps_min <= fps <= profile.fps_max:
            return profile

    # min() keeps the first of equal keys, which preserves declaration order on ties
    nearest = min(candidates, key=lambda p: _fps_distance(p, fps))
    logger.debug(f"No fps range covers {fps:.3f} in tier {tier}, using nearest profile '{nearest.name}'")
    return nearest


def derive_rate_parameters(
        profile: RateProfile,
        bitrate_modifier: float = 1.0,
        source_bitrate: int = 0,
) -> ResolvedRateParameters:
    """Apply the modifier, the 1.5x/2.0x ratios and the source cap to one profile."""
    average = profile.base_bitrate * bitrate_modifier
    max_rate = average * MAXRATE_FACTOR
    buffer_size = average * BUFSIZE_FACTOR
    capped = False

    if source_bitrate > 0 and average > source_bitrate:
        ratio = source_bitrate / average
        average *= ratio
        max_rate *= ratio
        buffer_size *= ratio
        capped = True
        logger.info(
            f"Capping '{profile.name}' at source bitrate: "
            f"{int(profile.base_bitrate * bitrate_modifier)} -> {int(average)} bps"
        )

    return ResolvedRateParameters(
        profile_name=profile.name,
        average_bitrate=int(round(average)),
        max_rate=int(round(max_rate)),
        buffer_size=int(round(buffer_size)),
        source_cap_applied=capped,
    )


def resolve_rate_parameters(
        max_dimension: int,
        fps: float,
        profiles: Sequence[RateProfile],
        bitrate_modifier: float = 1.0,
        source_bitrate: int = 0,
        fallback_profile: Optional[RateProfile] = None,
) -> ResolvedRateParameters:
    """
    Resolve target bitrates for a source.

    Args:
        max_dimension: Longer edge of the source in pixels, 0 when unknown
        fps: Source frame rate
        profiles: The bitrate ladder in declaration order
        bitrate_modifier: Multiplier applied to the profile's base bitrate
        source_bitrate: Source video bitrate in bps, 0 when unknown (never caps)
        fallback_profile: Profile used when the resolution is unknown

    Returns:
        ResolvedRateParameters for the selected profile
    """
    if max_dimension <= 0 and fallback_profile is not None:
        profile = fallback_profile
        logger.debug(f"Resolution unknown, using fallback profile '{profile.name}'")
    else:
        profile = select_rate_profile(max_dimension, fps, profiles)

    return derive_rate_parameters(profile, bitrate_modifier, source_bitrate)
