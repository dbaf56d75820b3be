"""Defines common Value Objects used across different domain contexts.

These objects represent simple values like subject keys, counter names and
API paths, ensuring consistency and type safety.
"""

from typing import NewType, Dict, Any, Optional, TypedDict, List

# === Core Value Objects ===

# Using NewType for semantic clarity, although they are strings at runtime.
ApiPath = NewType("ApiPath", str)            # Path relative to the API base URL
BearerToken = NewType("BearerToken", str)    # Raw bearer credential
SubjectKey = NewType("SubjectKey", str)      # Identity scope of a cache entry, e.g. 'alice:history'
CounterName = NewType("CounterName", str)    # Usage counter, e.g. 'screenshots'

# === Usage Counters ===
CLEAN_TRANSCRIPTS = CounterName("clean_transcripts")
UNCLEAN_TRANSCRIPTS = CounterName("unclean_transcripts")
AUDIO_DOWNLOADS = CounterName("audio_downloads")
VIDEO_DOWNLOADS = CounterName("video_downloads")
SCREENSHOTS = CounterName("screenshots")

KNOWN_COUNTERS: List[CounterName] = [
    CLEAN_TRANSCRIPTS,
    UNCLEAN_TRANSCRIPTS,
    AUDIO_DOWNLOADS,
    VIDEO_DOWNLOADS,
    SCREENSHOTS,
]

# Human readable labels used in limit messages
COUNTER_LABELS: Dict[CounterName, str] = {
    CLEAN_TRANSCRIPTS: "clean transcripts",
    UNCLEAN_TRANSCRIPTS: "unclean transcripts",
    AUDIO_DOWNLOADS: "audio downloads",
    VIDEO_DOWNLOADS: "video downloads",
    SCREENSHOTS: "screenshots",
}


def subject_scoped_key(subject: str, resource: str) -> SubjectKey:
    """Builds the cache key for a resource owned by a subject."""
    return SubjectKey(f"{subject}:{resource}")


# --- Structured Data ---
class RequestConfig(TypedDict, total=False):
    """Per-call options accepted by the API client."""
    headers: Dict[str, str]
    params: Dict[str, Any]
    timeout: Optional[float]  # seconds
