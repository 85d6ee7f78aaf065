"""
YouTube transcript fetching.

The transcript comes from youtube-transcript-api, the title is scraped from
the watch page with httpx. A missing title never fails the fetch.
"""

import html
import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Optional

import httpx
from loguru import logger
from youtube_transcript_api import YouTubeTranscriptApi

from app.utils.config import Settings, get_settings
from domains.inbox.errors import CollaboratorError
from domains.inbox.interfaces import VideoTranscript

YOUTUBE_URL_PATTERNS = [
    re.compile(r"(?:https?://)?(?:www\.)?youtu\.be/([a-zA-Z0-9_-]+)"),
    re.compile(r"(?:https?://)?(?:www\.|m\.)?youtube\.com/watch\?(?:[^\s)]*&)?v=([a-zA-Z0-9_-]+)"),
]
VIDEO_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
YOUTUBE_SECTION_HEADER = "## YouTube Video:"
UNTITLED_VIDEO = "Untitled YouTube Video"

_BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


def extract_youtube_video_id(content: str) -> Optional[str]:
    """Return the first YouTube video id referenced in ``content``."""
    for pattern in YOUTUBE_URL_PATTERNS:
        match = pattern.search(content)
        if match:
            return match.group(1)
    return None


def parse_title(page: str) -> Optional[str]:
    """Extract the video title from a watch page."""
    match = re.search(r"<title[^>]*>([^<]+)</title>", page, re.IGNORECASE)
    if match:
        title = html.unescape(match.group(1))
        title = re.sub(r"\s*-\s*YouTube\s*$", "", title).strip()
        if title:
            return title

    match = re.search(
        r"<meta\s+property=[\"']og:title[\"']\s+content=[\"']([^\"']+)[\"']",
        page,
        re.IGNORECASE,
    )
    if match:
        return html.unescape(match.group(1)).strip()
    return None


class YouTubeTranscriptFetcher:
    """Fetches title and transcript of a YouTube video."""

    def __init__(self, settings: Settings = None, transport: httpx.BaseTransport = None):
        self.settings = settings or get_settings()
        self.timeout = self.settings.youtube_timeout_seconds
        self.transport = transport
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="youtube")

    def fetch_title(self, video_id: str) -> str:
        try:
            with httpx.Client(
                timeout=self.timeout,
                transport=self.transport,
                headers=_BROWSER_HEADERS,
                follow_redirects=True,
            ) as client:
                response = client.get("https://www.youtube.com/watch", params={"v": video_id})
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Title fetch failed for {video_id}, using fallback: {e}")
            return UNTITLED_VIDEO

        return parse_title(response.text) or UNTITLED_VIDEO

    def fetch_transcript(self, video_id: str) -> str:
        # youtube-transcript-api has no timeout knob, so bound the call here
        future = self._executor.submit(lambda: YouTubeTranscriptApi().fetch(video_id))
        try:
            fetched = future.result(timeout=self.timeout)
        except FutureTimeoutError as e:
            raise CollaboratorError(f"Transcript fetch timed out after {self.timeout:.0f}s") from e
        except Exception as e:
            raise CollaboratorError(f"Failed to fetch transcript: {e}") from e

        transcript = " ".join(snippet.text for snippet in fetched).strip()
        if not transcript:
            raise CollaboratorError("No transcript items returned from YouTube")
        return transcript

    def fetch_video_transcript(self, video_id: str) -> VideoTranscript:
        """
        Fetch title and transcript of a video.

        Args:
            video_id: YouTube video id or URL

        Returns:
            VideoTranscript with the decoded title and joined transcript
        """
        video_id = (extract_youtube_video_id(video_id) or video_id or "").strip()
        if not VIDEO_ID_PATTERN.match(video_id):
            raise CollaboratorError(f"Invalid video id: {video_id!r}")

        logger.info(f"Fetching YouTube content for {video_id}")
        transcript = self.fetch_transcript(video_id)
        title = self.fetch_title(video_id)

        return VideoTranscript(title=title, transcript=transcript)
