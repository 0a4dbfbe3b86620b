"""
Constants and default configuration for batch media encoding.

This module holds the folder conventions, encoder defaults, the bitrate
ladder, the codec table and the container compatibility matrix. The tables
are plain data; ``common.config`` validates them and freezes them into the
structures the planner consumes. Values can be overridden through the
environment (a ``.env`` file is honoured) or a JSON config file.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# Folder name constants
# All paths are relative to the directory the encoder is run from
INPUT_FOLDER = os.getenv("ENCODER_INPUT_DIR", "encode")
OUTPUT_FOLDER = os.getenv("ENCODER_OUTPUT_DIR")  # unset: outputs are written beside their sources
WORK_FOLDER = os.getenv("ENCODER_WORK_DIR", ".encode_work")
CONFIG_FILE = os.getenv("ENCODER_CONFIG_FILE")

# Accepted source file extensions
VIDEO_EXTENSIONS = {
    ".mkv",
    ".mp4",
    ".m4v",
    ".mov",
    ".avi",
    ".webm",
    ".ts",
    ".m2ts",
    ".wmv",
    ".flv",
    ".mpg",
    ".mpeg",
    ".vob",
}

# Encoding preferences
DEFAULT_VIDEO_CODEC = os.getenv("ENCODER_VIDEO_CODEC", "hevc_nvenc")
DEFAULT_OUTPUT_CONTAINER = os.getenv("ENCODER_OUTPUT_CONTAINER", "mp4")
KEEP_CONTAINER = "keep"
DEFAULT_AUDIO_CODEC = "aac"
DEFAULT_BITRATE_MODIFIER = 1.0
PRESERVE_AUDIO = True
OUTPUT_SUFFIX = "_encoded"
TEMP_SUFFIX = ".tmp"

# Quality preview defaults
PREVIEW_CLIP_SECONDS = 10.0
PREVIEW_START = "middle"
PREVIEW_METRIC = "vmaf"
PREVIEW_METRICS = ("vmaf", "ssim", "psnr")

# Probe heuristics
UNKNOWN = "unknown"
UNDECODABLE_AUDIO_CODECS = {"unknown", "none", ""}
ASSUMED_AUDIO_BITRATE = 256_000  # bits per second subtracted from size-based estimates
ESTIMATE_FLOOR_RATIO = 0.9
DEFAULT_BIT_DEPTH = 10
VALID_BIT_DEPTHS = (8, 10, 12, 14, 16)
EIGHT_BIT_CODECS = {
    "h264",
    "mpeg1video",
    "mpeg2video",
    "mpeg4",
    "msmpeg4v3",
    "vp8",
    "wmv1",
    "wmv2",
    "wmv3",
    "vc1",
    "mjpeg",
    "theora",
    "flv1",
}
TEN_BIT_CODECS = {"prores"}

# HDR signalling
HDR_PRIMARIES = {"bt2020"}
HDR_TRANSFERS = {"smpte2084", "arib-std-b67"}

# Rate control
MAXRATE_FACTOR = 1.5
BUFSIZE_FACTOR = 2.0
FALLBACK_RATE_PROFILE = "1080p 30fps"

# Execution
OUTPUT_SETTLE_SECONDS = 1.0  # wait before re-reading a freshly written file size
PROGRESS_MARKERS = ("frame=", "size=")
STDERR_TAIL_LINES = 20
PASSLOG_PREFIX = "encode2pass"
PASS_ARTIFACT_PATTERNS = (
    f"{PASSLOG_PREFIX}*",
    "ffmpeg2pass-*.log*",
    "x265_2pass.log*",
    "*.mbtree",
    "*.mbtree.temp",
    "*.cutree",
    "*.cutree.temp",
)
PREVIEW_PREFIX = "preview_"

# Hardware decode
PROBLEMATIC_EXTENSIONS = {".wmv", ".asf", ".flv", ".rm", ".rmvb", ".vob", ".mpg", ".mpeg"}
GPU_DECODABLE_CODECS = {"h264", "hevc", "av1", "vp8", "vp9", "mpeg1video", "mpeg2video", "mpeg4", "vc1", "mjpeg"}

# Bitrate ladder: (name, min pixels of longer edge, fps min, fps max, average bitrate bps)
RATE_PROFILES = [
    {"name": "4K 30fps", "min_long_edge": 3840, "fps_min": 20, "fps_max": 31, "base_bitrate": 20_000_000},
    {"name": "4K 60fps", "min_long_edge": 3840, "fps_min": 48, "fps_max": 61, "base_bitrate": 30_000_000},
    {"name": "1440p 30fps", "min_long_edge": 2560, "fps_min": 20, "fps_max": 31, "base_bitrate": 12_000_000},
    {"name": "1440p 60fps", "min_long_edge": 2560, "fps_min": 48, "fps_max": 61, "base_bitrate": 18_000_000},
    {"name": "1080p 30fps", "min_long_edge": 1920, "fps_min": 20, "fps_max": 31, "base_bitrate": 8_000_000},
    {"name": "1080p 60fps", "min_long_edge": 1920, "fps_min": 48, "fps_max": 61, "base_bitrate": 12_000_000},
    {"name": "720p 30fps", "min_long_edge": 1280, "fps_min": 20, "fps_max": 31, "base_bitrate": 4_000_000},
    {"name": "720p 60fps", "min_long_edge": 1280, "fps_min": 48, "fps_max": 61, "base_bitrate": 6_000_000},
    {"name": "SD 30fps", "min_long_edge": 0, "fps_min": 0, "fps_max": 31, "base_bitrate": 2_000_000},
    {"name": "SD 60fps", "min_long_edge": 0, "fps_min": 48, "fps_max": 61, "base_bitrate": 3_000_000},
]

# Video encoders keyed by the name users select
VIDEO_CODECS = {
    "h264_nvenc": {
        "encoder": "h264_nvenc",
        "family": "h264",
        "software": False,
        "preset": "p5",
        "max_bit_depth": 8,
        "pix_fmt_8bit": "yuv420p",
        "pix_fmt_10bit": None,
    },
    "hevc_nvenc": {
        "encoder": "hevc_nvenc",
        "family": "hevc",
        "software": False,
        "preset": "p5",
        "max_bit_depth": 10,
        "pix_fmt_8bit": "yuv420p",
        "pix_fmt_10bit": "p010le",
    },
    "av1_nvenc": {
        "encoder": "av1_nvenc",
        "family": "av1",
        "software": False,
        "preset": "p5",
        "max_bit_depth": 10,
        "pix_fmt_8bit": "yuv420p",
        "pix_fmt_10bit": "p010le",
    },
    "libx264": {
        "encoder": "libx264",
        "family": "h264",
        "software": True,
        "preset": "medium",
        "max_bit_depth": 8,
        "pix_fmt_8bit": "yuv420p",
        "pix_fmt_10bit": None,
    },
    "libx265": {
        "encoder": "libx265",
        "family": "hevc",
        "software": True,
        "preset": "medium",
        "max_bit_depth": 10,
        "pix_fmt_8bit": "yuv420p",
        "pix_fmt_10bit": "yuv420p10le",
    },
}

# Audio encoders: probe codec name, fallback bitrate and accepted sample rates
AUDIO_ENCODERS = {
    "aac": {
        "codec": "aac",
        "bitrate": "192k",
        "sample_rates": [96000, 88200, 64000, 48000, 44100, 32000, 24000, 22050, 16000, 12000, 11025, 8000],
    },
    "libopus": {
        "codec": "opus",
        "bitrate": "160k",
        "sample_rates": [48000, 24000, 16000, 12000, 8000],
    },
    "ac3": {
        "codec": "ac3",
        "bitrate": "384k",
        "sample_rates": [48000, 44100, 32000],
    },
    "libmp3lame": {
        "codec": "mp3",
        "bitrate": "192k",
        "sample_rates": [48000, 44100, 32000, 24000, 22050, 16000, 12000, 11025, 8000],
    },
}

_MP4_AUDIO = ["aac", "mp3", "ac3", "eac3", "alac", "opus", "flac"]
_TS_AUDIO = ["aac", "mp3", "mp2", "ac3", "eac3"]

# Container compatibility matrix, keyed by output extension without the dot.
# Closed world: a codec missing from a list is unsupported.
CONTAINER_COMPATIBILITY = {
    "mp4": {
        "muxer": "mp4",
        "video_codecs": ["h264", "hevc", "av1"],
        "audio_codecs": _MP4_AUDIO,
        "default_audio": "aac",
        "subtitles": False,
        "hwaccel_hint": None,
    },
    "m4v": {
        "muxer": "mp4",
        "video_codecs": ["h264", "hevc"],
        "audio_codecs": _MP4_AUDIO,
        "default_audio": "aac",
        "subtitles": False,
        "hwaccel_hint": None,
    },
    "mkv": {
        "muxer": "matroska",
        "video_codecs": ["h264", "hevc", "av1", "vp9", "mpeg2video", "mpeg4"],
        "audio_codecs": [
            "aac", "mp3", "ac3", "eac3", "dts", "truehd", "opus", "vorbis", "flac", "pcm_s16le", "pcm_s24le",
        ],
        "default_audio": "aac",
        "subtitles": True,
        "hwaccel_hint": None,
    },
    "mov": {
        "muxer": "mov",
        "video_codecs": ["h264", "hevc", "prores"],
        "audio_codecs": ["aac", "alac", "mp3", "pcm_s16le", "pcm_s24le"],
        "default_audio": "aac",
        "subtitles": False,
        "hwaccel_hint": None,
    },
    "webm": {
        "muxer": "webm",
        "video_codecs": ["vp9", "av1"],
        "audio_codecs": ["opus", "vorbis"],
        "default_audio": "libopus",
        "subtitles": False,
        "hwaccel_hint": None,
    },
    "ts": {
        "muxer": "mpegts",
        "video_codecs": ["h264", "hevc", "mpeg2video"],
        "audio_codecs": _TS_AUDIO,
        "default_audio": "aac",
        "subtitles": False,
        "hwaccel_hint": None,
    },
    "m2ts": {
        "muxer": "mpegts",
        "video_codecs": ["h264", "hevc", "mpeg2video"],
        "audio_codecs": _TS_AUDIO,
        "default_audio": "ac3",
        "subtitles": False,
        "hwaccel_hint": "d3d11va",
    },
    "avi": {
        "muxer": "avi",
        "video_codecs": ["h264", "mpeg4"],
        "audio_codecs": ["mp3", "ac3"],
        "default_audio": "libmp3lame",
        "subtitles": False,
        "hwaccel_hint": "d3d11va",
    },
}

# Logging configuration
LOG_LEVELS = {"DEBUG": 10, "INFO": 20, "WARN": 30, "WARNING": 30, "ERROR": 40}
DEFAULT_LOG_LEVEL = os.getenv("ENCODER_LOG_LEVEL", "INFO")
LOG_DIR = "./.logs"
