"""Abstract base class for authenticated platform clients"""

from abc import ABC, abstractmethod
from typing import List, Optional


class BasePlatformClient(ABC):
    """Interface contract for an authenticated social platform handle.

    A Session holds one of these. Implementations raise the classified errors
    from sharekit.core.exceptions so the retry utility can decide what to retry.
    """

    @abstractmethod
    async def get_me(self):
        """Fetch the identity of the authenticated account.

        Raises:
            AuthError: If the token is rejected
            TransientError: On network or 5xx failures
        """

    @abstractmethod
    async def upload_media(self, data: bytes, mime_type: str):
        """Upload media in a single request and return the upload response."""

    @abstractmethod
    async def init_upload(self, total_bytes: int, media_type: str):
        """Start a chunked upload and return the upload response (with media id)."""

    @abstractmethod
    async def append_upload(self, media_id: str, segment_index: int, chunk: bytes) -> None:
        """Upload one chunk of a chunked upload."""

    @abstractmethod
    async def finalize_upload(self, media_id: str):
        """Complete a chunked upload and return the upload response."""

    @abstractmethod
    async def upload_status(self, media_id: str):
        """Fetch processing status for an uploaded media id."""

    @abstractmethod
    async def create_post(self, text: str, media_ids: Optional[List[str]] = None):
        """Publish a post and return its data (with id)."""
