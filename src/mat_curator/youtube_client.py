"""
YouTube Data API client wrapper for mat-curator.

This module provides the external catalog client: a quota-tracked wrapper around
the YouTube Data API v3 search and video-detail endpoints with rate limiting,
error classification and retry logic.

Every HTTP attempt is charged against the injected QuotaState before it is made.
Quota exhaustion, whether detected locally or reported by the API, surfaces as
QuotaExhaustedError and is never retried; all other failures surface as
CatalogAPIError so callers can skip just that unit of work.
"""

import time
import logging
import re
import random
from typing import List, Dict, Optional, Any, Callable

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from google.auth.exceptions import GoogleAuthError

from .models import CandidateVideo, VideoDetails
from .config import Configuration
from .quota import QuotaState
from .error_handling import QuotaExhaustedError, CatalogAPIError, AuthenticationError


logger = logging.getLogger(__name__)

QUOTA_ERROR_REASONS = ('quotaExceeded', 'dailyLimitExceeded', 'rateLimitExceeded', 'userRateLimitExceeded')

_ISO_DURATION = re.compile(
    r'^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$'
)


def parse_iso8601_duration(value: Optional[str]) -> int:
    """
    Convert an ISO 8601 duration such as ``PT1H2M3S`` to seconds.

    Unparseable or empty values yield 0.
    """
    if not value:
        return 0
    match = _ISO_DURATION.match(value.strip())
    if not match:
        return 0
    parts = {k: int(v) if v else 0 for k, v in match.groupdict().items()}
    return parts['days'] * 86400 + parts['hours'] * 3600 + parts['minutes'] * 60 + parts['seconds']


def _extract_error_reason(error: HttpError) -> str:
    """Pull the provider's reason code out of an HttpError."""
    details = getattr(error, 'error_details', None)
    if isinstance(details, list) and details:
        first = details[0]
        if isinstance(first, dict) and first.get('reason'):
            return first['reason']
    elif isinstance(details, dict) and details.get('reason'):
        return details['reason']

    content = getattr(error, 'content', b'') or b''
    if isinstance(content, bytes):
        content = content.decode('utf-8', errors='ignore')
    for reason in QUOTA_ERROR_REASONS + ('keyInvalid', 'keyExpired'):
        if reason in content:
            return reason
    return ''


class YouTubeClient:
    """
    YouTube Data API v3 client with quota tracking, rate limiting and error handling.

    Provides ``search`` and ``get_details`` with automatic retry and
    exponential backoff for transient server errors.
    """

    # Rate limiting settings
    REQUESTS_PER_SECOND = 10

    def __init__(self, config: Configuration, quota: QuotaState,
                 max_retries: int = 3, sleep: Callable[[float], None] = time.sleep):
        """
        Initialize YouTube client with configuration.

        Args:
            config: Configuration instance with API key and settings
            quota: Shared quota state charged before every call
            max_retries: Retries for transient failures
            sleep: Sleep function (injectable for tests)

        Raises:
            AuthenticationError: If API key is invalid
            CatalogAPIError: If client initialization fails
        """
        self.config = config
        self.api_key = config.youtube_api_key
        self.quota = quota
        self.max_retries = max_retries
        self._sleep = sleep
        self.last_request_time = 0.0

        try:
            self.youtube = build('youtube', 'v3', developerKey=self.api_key)
            logger.info("YouTube API client initialized successfully")
        except GoogleAuthError as e:
            raise AuthenticationError(f"YouTube API authentication failed: {e}")
        except Exception as e:
            raise CatalogAPIError(f"Failed to initialize YouTube client: {e}")

    def _enforce_rate_limit(self) -> None:
        """Enforce rate limiting between API requests."""
        current_time = time.time()
        time_since_last_request = current_time - self.last_request_time
        min_interval = 1.0 / self.REQUESTS_PER_SECOND

        if time_since_last_request < min_interval:
            sleep_time = min_interval - time_since_last_request
            logger.debug(f"Rate limiting: sleeping for {sleep_time:.2f} seconds")
            self._sleep(sleep_time)

        self.last_request_time = time.time()

    def _backoff(self, attempt: int) -> float:
        return (2 ** attempt) + random.uniform(0, 1)

    def _execute(self, operation: str, request_factory: Callable[[], Any]) -> Dict[str, Any]:
        """
        Charge quota and execute one API request with retry logic.

        Args:
            operation: Quota operation name ('search' or 'videos')
            request_factory: Builds the request object to execute

        Returns:
            Raw API response

        Raises:
            QuotaExhaustedError: If quota is exhausted (never retried)
            AuthenticationError: If authentication fails
            CatalogAPIError: If all retries fail or the request is rejected
        """
        last_exception = None

        for attempt in range(self.max_retries + 1):
            self.quota.consume(operation)
            try:
                self._enforce_rate_limit()
                return request_factory().execute()

            except HttpError as e:
                last_exception = e
                error_code = e.resp.status
                error_reason = _extract_error_reason(e)

                logger.warning(f"HTTP error {error_code} on {operation} attempt {attempt + 1}: {error_reason}")

                if error_reason in QUOTA_ERROR_REASONS or (error_code == 403 and 'quota' in error_reason.lower()):
                    self.quota.mark_exhausted(error_reason or "HTTP 403")
                    raise QuotaExhaustedError(f"YouTube API quota exceeded: {error_reason}", operation=operation)
                if error_code == 401 or error_reason in ('keyInvalid', 'keyExpired'):
                    raise AuthenticationError(f"YouTube API authentication failed: {error_reason}")
                if error_code == 429:
                    if attempt < self.max_retries:
                        wait_time = self._backoff(attempt)
                        logger.info(f"Rate limited, waiting {wait_time:.2f} seconds before retry")
                        self._sleep(wait_time)
                        continue
                    break

                if 400 <= error_code < 500:
                    raise CatalogAPIError(f"Client error {error_code}: {error_reason}")

                if attempt < self.max_retries:
                    wait_time = self._backoff(attempt)
                    logger.info(f"Server error {error_code}, retrying in {wait_time:.2f} seconds")
                    self._sleep(wait_time)
                    continue

            except (QuotaExhaustedError, AuthenticationError):
                raise
            except Exception as e:
                last_exception = e
                logger.warning(f"Unexpected error on {operation} attempt {attempt + 1}: {e}")

                if attempt < self.max_retries:
                    wait_time = self._backoff(attempt)
                    logger.info(f"Retrying in {wait_time:.2f} seconds")
                    self._sleep(wait_time)
                    continue

        raise CatalogAPIError(f"All retry attempts failed. Last error: {last_exception}")

    def search(self, query: str, max_results: Optional[int] = None) -> List[CandidateVideo]:
        """
        Search for videos matching a text query, ordered by relevance.

        Args:
            query: Search query text
            max_results: Result cap (defaults to config.search_max_results, API limit 50)

        Returns:
            Candidate videos in provider-returned order

        Raises:
            QuotaExhaustedError: If API quota is exhausted
            CatalogAPIError: If search fails
        """
        cap = min(max_results or self.config.search_max_results, 50)
        logger.info(f"Searching for videos: query='{query}', max_results={cap}")

        def _search():
            return self.youtube.search().list(
                part='snippet',
                q=query,
                type='video',
                order='relevance',
                maxResults=cap,
            )

        response = self._execute('search', _search)

        candidates = []
        for item in response.get('items', []):
            try:
                candidates.append(self._convert_to_candidate(item))
            except (KeyError, ValueError) as e:
                logger.debug(f"Skipping malformed search result: {e}")

        logger.info(f"Found {len(candidates)} videos in search results")
        return candidates

    def get_details(self, external_id: str) -> Optional[VideoDetails]:
        """
        Get duration and engagement counters for one video.

        Args:
            external_id: YouTube video ID

        Returns:
            VideoDetails, or None if the video does not exist

        Raises:
            QuotaExhaustedError: If API quota is exhausted
            CatalogAPIError: If details fetching fails
        """
        def _get_details():
            return self.youtube.videos().list(
                part='contentDetails,statistics',
                id=external_id,
            )

        response = self._execute('videos', _get_details)
        items = response.get('items', [])
        if not items:
            logger.debug(f"No details found for video {external_id}")
            return None

        item = items[0]
        statistics = item.get('statistics', {})
        content_details = item.get('contentDetails', {})

        try:
            view_count = int(statistics.get('viewCount', 0))
            like_count = int(statistics.get('likeCount', 0))
        except (TypeError, ValueError):
            view_count, like_count = 0, 0

        return VideoDetails(
            external_id=external_id,
            duration_seconds=parse_iso8601_duration(content_details.get('duration')),
            view_count=view_count,
            like_count=like_count,
        )

    @staticmethod
    def _convert_to_candidate(item: Dict[str, Any]) -> CandidateVideo:
        """
        Convert a search result item to a CandidateVideo.

        Args:
            item: Search result from the YouTube API

        Returns:
            CandidateVideo object
        """
        snippet = item['snippet']
        thumbnails = snippet.get('thumbnails', {})
        thumbnail = thumbnails.get('high') or thumbnails.get('default') or {}

        return CandidateVideo(
            external_id=item['id']['videoId'],
            title=snippet['title'],
            channel=snippet.get('channelTitle', ''),
            channel_id=snippet.get('channelId'),
            description=snippet.get('description') or '',
            published_at=snippet.get('publishedAt'),
            thumbnail_url=thumbnail.get('url'),
        )
