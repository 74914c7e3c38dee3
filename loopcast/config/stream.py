"""
Configuration settings related to the encoder invocation.

This module defines the fixed parts of the FFmpeg argument vector (codecs,
audio format, keyframe policy, output muxer flags) and the media file types the
playlist accepts. Values that an operator is expected to tune live in
`loopcast.config.settings` instead.
"""

# --- Playlist ---
VIDEO_EXTENSIONS = (".mp4", ".mkv", ".avi", ".mov", ".flv", ".webm", ".m4v")

# --- Video Encoder Settings ---
SOFTWARE_VIDEO_ENCODER = "libx264"
NVENC_VIDEO_ENCODER = "h264_nvenc"
PIXEL_FORMAT = "yuv420p"
KEYFRAME_INTERVAL_FACTOR = 2  # keyframe every N * fps frames
BUFFER_SIZE_FACTOR = 2  # bufsize = N * bitrate
VAAPI_DEVICE = "/dev/dri/renderD128"

# --- Audio Encoder Settings ---
AUDIO_ENCODER = "aac"
AUDIO_SAMPLE_RATE = 44100
AUDIO_CHANNELS = 2

# --- Overlay (drawtext) Settings ---
OVERLAY_RELOAD_INTERVAL = 1  # frames between re-reads of the side-channel file
OVERLAY_BOX_OPTIONS = "box=1:boxcolor=black@0.5:boxborderw=5"
OVERLAY_FILE_NAME = "current.txt"

# --- Remote Endpoint (RTMP) Output ---
DEFAULT_SERVER_URL = "rtmp://live.twitch.tv/app"
REMOTE_OUTPUT_FORMAT = "flv"
FLV_FLAGS = "no_duration_filesize"

# --- Local Segmented (HLS) Output ---
HLS_PLAYLIST_NAME = "stream.m3u8"
HLS_SEGMENT_SECONDS = 2
HLS_LIST_SIZE = 3
HLS_FLAGS = "delete_segments"
HLS_START_NUMBER = 1
