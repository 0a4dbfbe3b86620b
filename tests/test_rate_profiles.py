from __future__ import annotations

import pytest

from common.config import RateProfile
from common.errors import ConfigError
from encode_utils.rate_profiles import (
    derive_rate_parameters,
    resolve_rate_parameters,
    select_rate_profile,
    select_resolution_tier,
)


def test_4k_30fps_resolves_to_base_ladder(config) -> None:
    rate = resolve_rate_parameters(3840, 29.97, config.rate_profiles)

    assert rate.profile_name == "4K 30fps"
    assert rate.average_bitrate == 20_000_000
    assert rate.max_rate == 30_000_000
    assert rate.buffer_size == 40_000_000
    assert not rate.source_cap_applied


@pytest.mark.parametrize("modifier", [0.5, 0.75, 1.0, 1.3])
def test_max_rate_and_buffer_keep_their_ratios(config, modifier) -> None:
    rate = resolve_rate_parameters(1920, 30, config.rate_profiles, bitrate_modifier=modifier)

    assert rate.average_bitrate == pytest.approx(8_000_000 * modifier)
    assert rate.max_rate == pytest.approx(1.5 * rate.average_bitrate, abs=1)
    assert rate.buffer_size == pytest.approx(2.0 * rate.average_bitrate, abs=1)


def test_source_bitrate_caps_all_three_values(config) -> None:
    rate = resolve_rate_parameters(3840, 30, config.rate_profiles, source_bitrate=10_000_000)

    assert rate.source_cap_applied
    assert rate.average_bitrate == 10_000_000
    assert rate.max_rate == 15_000_000
    assert rate.buffer_size == 20_000_000


def test_source_bitrate_above_target_does_not_cap(config) -> None:
    rate = resolve_rate_parameters(1920, 30, config.rate_profiles, source_bitrate=25_000_000)

    assert not rate.source_cap_applied
    assert rate.average_bitrate == 8_000_000


def test_unknown_source_bitrate_never_caps(config) -> None:
    rate = resolve_rate_parameters(1280, 30, config.rate_profiles, source_bitrate=0)

    assert not rate.source_cap_applied
    assert rate.average_bitrate == 4_000_000


@pytest.mark.parametrize(
    ("max_dimension", "expected"),
    [(3840, 3840), (4096, 3840), (2000, 1920), (1920, 1920), (1919, 1280), (640, 0), (0, 0)],
)
def test_resolution_tier_is_largest_threshold_not_above(config, max_dimension, expected) -> None:
    assert select_resolution_tier(max_dimension, config.rate_profiles) == expected


def test_fps_inside_range_picks_that_profile(config) -> None:
    assert select_rate_profile(1920, 59.94, config.rate_profiles).name == "1080p 60fps"
    assert select_rate_profile(1280, 24, config.rate_profiles).name == "720p 30fps"


def test_fps_gap_picks_nearest_range_edge(config) -> None:
    # 40 fps is 9 away from the 30fps range and 8 away from the 60fps range
    assert select_rate_profile(1920, 40, config.rate_profiles).name == "1080p 60fps"
    assert select_rate_profile(1920, 35, config.rate_profiles).name == "1080p 30fps"
    assert select_rate_profile(1920, 120, config.rate_profiles).name == "1080p 60fps"


def test_fps_gap_tie_goes_to_first_declared(config) -> None:
    assert select_rate_profile(1920, 39.5, config.rate_profiles).name == "1080p 30fps"


def test_portrait_and_landscape_share_a_tier(config) -> None:
    landscape = resolve_rate_parameters(max(1920, 1080), 30, config.rate_profiles)
    portrait = resolve_rate_parameters(max(1080, 1920), 30, config.rate_profiles)

    assert landscape == portrait


def test_unknown_resolution_uses_fallback_profile(config) -> None:
    fallback = config.profile(config.fallback_profile)

    rate = resolve_rate_parameters(0, 0.0, config.rate_profiles, fallback_profile=fallback)

    assert rate.profile_name == "1080p 30fps"
    assert rate.average_bitrate == 8_000_000


def test_tier_without_profiles_is_a_config_error() -> None:
    profiles = [RateProfile("1080p", 1920, 20, 31, 8_000_000)]

    with pytest.raises(ConfigError):
        select_rate_profile(640, 30, profiles)


def test_derive_rate_parameters_reports_kbps() -> None:
    rate = derive_rate_parameters(RateProfile("x", 0, 0, 31, 2_000_000), bitrate_modifier=1.25)

    assert rate.as_kbps() == (2500, 3750, 5000)
