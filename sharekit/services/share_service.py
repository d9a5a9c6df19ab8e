"""Share service - validate, upload, poll and post media to X with classified retries"""
import asyncio
import enum
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from sharekit.core.config import Settings
from sharekit.core.exceptions import (
    AuthError, InputValidationError, MediaProcessingError, ProcessingTimeoutError
)
from sharekit.core.metrics import failed_shares_counter, successful_shares_counter, upload_retries_counter
from sharekit.schemas.twitter import MediaUploadResponse
from sharekit.services.event_service import EventBus, ShareCompleted, ShareFailed, ShareStarted
from sharekit.services.platforms.base import BasePlatformClient
from sharekit.services.platforms.x_api import build_post_url
from sharekit.services.rate_limiter import RateLimiter
from sharekit.services.session_manager import SessionManager
from sharekit.utils.retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)
upload_logger = logging.getLogger("upload")


class UploadState(str, enum.Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class UploadJob:
    media_bytes: bytes
    mime_type: str
    size_bytes: int
    state: UploadState = UploadState.PENDING
    retry_count: int = 0
    last_error: Optional[str] = None
    media_id: Optional[str] = None


@dataclass(frozen=True)
class ShareStatus:
    state: Optional[UploadState]
    retry_count: int
    last_error: Optional[str]
    can_retry: bool


def compose_post_text(caption: str, suffix: str, max_length: int) -> str:
    """Append the suffix, then cut to the platform limit"""
    return f"{caption or ''}{suffix or ''}"[:max_length]


def iter_chunks(data: bytes, chunk_size: int):
    for offset in range(0, len(data), chunk_size):
        yield data[offset:offset + chunk_size]


class SharePipeline:
    """Posts an image with a caption on behalf of a connected X account

    Args:
        settings: Media limits, polling bounds, post text rules
        session_manager: Supplies the authenticated client
        rate_limiter: Consulted for the upload and post operations
        event_bus: Receives ShareStarted and exactly one ShareCompleted/ShareFailed per submit
        retry_policy: Attempt bound and linear backoff for upstream calls
        sleep: Awaitable sleep for status polls and retry backoff, injectable for tests
    """

    def __init__(
        self,
        settings: Settings,
        session_manager: SessionManager,
        rate_limiter: RateLimiter,
        event_bus: EventBus,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._settings = settings
        self._sessions = session_manager
        self._rate_limiter = rate_limiter
        self._events = event_bus
        self._retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.RETRY_MAX_ATTEMPTS, base_delay=settings.RETRY_BASE_DELAY
        )
        self._sleep = sleep
        # Latest job per subject, least recently submitted evicted first
        self._jobs: "OrderedDict[str, UploadJob]" = OrderedDict()
        self._max_jobs = settings.SHARE_STATUS_MAX_ENTRIES
        self._latest_subject: Optional[str] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit(
        self,
        media_bytes: bytes,
        mime_type: str,
        caption: str,
        subject_id: str,
        user_id: Optional[str] = None,
    ) -> str:
        """Upload media and publish a post, returning the post URL

        Args:
            media_bytes: Image bytes
            mime_type: Declared media type
            caption: Post text (the configured suffix is appended, then truncated)
            subject_id: Who the share is for; rate limits are counted per subject
            user_id: Connected X account to post as; defaults to the app's posting account

        Raises:
            InputValidationError: Media too large, empty or of an unsupported type
            RateLimitExceededError: Local upload/post limit reached
            AuthError: No session, or X rejected the token
            PermissionDeniedError: X refused the action (e.g. access tier)
            ProcessingTimeoutError: Media processing did not finish in time
        """
        share_method = "user" if user_id else "app"
        self._events.publish(ShareStarted(subject_id=subject_id, share_method=share_method))

        job = UploadJob(media_bytes=media_bytes, mime_type=mime_type, size_bytes=len(media_bytes or b""))
        self._remember(subject_id, job)

        try:
            post_url = await self._run(job, caption, subject_id, user_id or self._settings.X_POSTING_USER_ID)
        except Exception as e:
            job.state = UploadState.FAILED
            job.last_error = str(e)
            failed_shares_counter.labels(error_type=type(e).__name__).inc()
            upload_logger.error(
                f"Share failed for {subject_id}: {type(e).__name__}: {e}",
                extra={"subject_id": subject_id, "retry_count": job.retry_count, "error_type": type(e).__name__},
            )
            self._events.publish(ShareFailed(subject_id=subject_id, error=str(e), share_method=share_method))
            raise
        finally:
            job.media_bytes = b""

        successful_shares_counter.inc()
        upload_logger.info(f"Shared media for {subject_id}: {post_url}")
        self._events.publish(ShareCompleted(subject_id=subject_id, post_url=post_url, share_method=share_method))
        return post_url

    def get_status(self, subject_id: Optional[str] = None) -> ShareStatus:
        """Retry bookkeeping of a subject's latest job (or of the latest job overall)"""
        job = self._jobs.get(subject_id or self._latest_subject or "")
        if job is None:
            return ShareStatus(state=None, retry_count=0, last_error=None, can_retry=True)
        return ShareStatus(
            state=job.state,
            retry_count=job.retry_count,
            last_error=job.last_error,
            can_retry=job.retry_count < self._retry_policy.max_attempts,
        )

    def _remember(self, subject_id: str, job: UploadJob) -> None:
        self._jobs[subject_id] = job
        self._jobs.move_to_end(subject_id)
        while len(self._jobs) > self._max_jobs:
            self._jobs.popitem(last=False)
        self._latest_subject = subject_id

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def validate_media(self, media_bytes: bytes, mime_type: str) -> None:
        if not media_bytes:
            raise InputValidationError("Media is empty")
        if len(media_bytes) > self._settings.MEDIA_MAX_BYTES:
            raise InputValidationError(
                f"Media is {len(media_bytes)} bytes, larger than the "
                f"{self._settings.MEDIA_MAX_BYTES} byte limit"
            )
        if mime_type not in self._settings.MEDIA_ALLOWED_TYPES:
            raise InputValidationError(
                f"Unsupported media type {mime_type}. Allowed: {', '.join(self._settings.MEDIA_ALLOWED_TYPES)}"
            )

    async def _run(self, job: UploadJob, caption: str, subject_id: str, user_id: str) -> str:
        self.validate_media(job.media_bytes, job.mime_type)

        await self._rate_limiter.check_and_consume("upload", subject_id)
        session = await self._sessions.get_session(user_id) if user_id else None
        if session is None:
            raise AuthError("No connected X account available for posting. Please connect your X account.")
        client = session.client

        job.state = UploadState.UPLOADING
        upload = await self._upload(client, job)
        job.media_id = upload.media_id_string

        job.state = UploadState.PROCESSING
        await self._wait_for_processing(client, job, upload)
        job.state = UploadState.SUCCEEDED

        await self._rate_limiter.check_and_consume("post", subject_id)
        text = compose_post_text(caption, self._settings.X_POST_SUFFIX, self._settings.X_POST_MAX_LENGTH)
        post = await self._with_retry(job, lambda: client.create_post(text, [job.media_id]), "Create post")
        return build_post_url(self._settings.X_WEB_URL, post.id)

    async def _with_retry(self, job: UploadJob, func, description: str):
        def on_retry(attempt: int, exc: BaseException) -> None:
            job.retry_count += 1
            job.last_error = str(exc)
            upload_retries_counter.inc()

        return await retry_async(
            func,
            policy=self._retry_policy,
            on_retry=on_retry,
            description=description,
            sleep=self._sleep,
        )

    async def _upload(self, client: BasePlatformClient, job: UploadJob) -> MediaUploadResponse:
        threshold = self._settings.MEDIA_CHUNK_THRESHOLD
        if job.size_bytes <= threshold:
            upload_logger.debug(f"Single-shot upload of {job.size_bytes} bytes ({job.mime_type})")
            return await self._with_retry(
                job, lambda: client.upload_media(job.media_bytes, job.mime_type), "Media upload"
            )

        init = await self._with_retry(
            job, lambda: client.init_upload(job.size_bytes, job.mime_type), "Media upload INIT"
        )
        media_id = init.media_id_string
        upload_logger.info(f"Chunked upload of {job.size_bytes} bytes started (media {media_id})")

        for segment_index, chunk in enumerate(iter_chunks(job.media_bytes, threshold)):
            await self._with_retry(
                job,
                lambda i=segment_index, c=chunk: client.append_upload(media_id, i, c),
                f"Media upload APPEND {segment_index}",
            )

        return await self._with_retry(job, lambda: client.finalize_upload(media_id), "Media upload FINALIZE")

    @staticmethod
    def _processing_done(info, job: UploadJob) -> bool:
        # No processing_info means X finished synchronously
        if info is None or info.state == "succeeded":
            return True
        if info.state == "failed":
            detail = (info.error or {}).get("message", "unknown error")
            raise MediaProcessingError(f"X failed to process media {job.media_id}: {detail}")
        return False

    async def _wait_for_processing(self, client: BasePlatformClient, job: UploadJob, upload: MediaUploadResponse):
        """Poll STATUS until processing ends; bounded by attempts x poll interval"""
        info = upload.processing_info
        attempts = self._settings.MEDIA_STATUS_POLL_ATTEMPTS
        interval = self._settings.MEDIA_STATUS_POLL_INTERVAL

        for attempt in range(attempts):
            if self._processing_done(info, job):
                return
            delay = min(info.check_after_secs or interval, interval)
            upload_logger.info(
                f"Media {job.media_id} processing ({info.state}, attempt {attempt + 1}/{attempts}), "
                f"checking again in {delay}s"
            )
            await self._sleep(delay)
            status = await self._with_retry(job, lambda: client.upload_status(job.media_id), "Media status")
            info = status.processing_info

        if self._processing_done(info, job):
            return
        raise ProcessingTimeoutError(f"Media {job.media_id} still processing after {attempts} status checks")
