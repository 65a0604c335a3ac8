"""Recording upload with tracked status.

``RecordingUploader`` moves a stored recording through
``pending -> uploading -> uploaded | failed`` while sending it with
``BackendClient.upload_recording``. Each upload is attempted once; failed or
pending recordings are only retried through the explicit ``resubmit`` path.
"""

import asyncio
import logging

from agrivoice.core.models import ApiResult, Recording, UploadMetadata, UploadStatus
from agrivoice.core.utils import device_info
from agrivoice.services.api.client import BackendClient
from agrivoice.services.storage.recording_store import RecordingStore

logger = logging.getLogger(__name__)


class RecordingUploader:
    """Uploads recordings and records the outcome in the store.

    Args:
        client: Backend client.
        store: Recording index to update.
        user_id: Fixed user identity sent in upload metadata.
        content_type: MIME type of recording files.
    """

    def __init__(
        self,
        client: BackendClient,
        store: RecordingStore,
        user_id: str,
        content_type: str = "audio/mp4",
    ) -> None:
        self._client = client
        self._store = store
        self._user_id = user_id
        self._content_type = content_type
        self._in_flight: set[str] = set()
        self._background: set[asyncio.Task] = set()

    def is_uploading(self, recording_id: str) -> bool:
        return recording_id in self._in_flight

    def build_metadata(self, recording: Recording) -> UploadMetadata:
        return UploadMetadata(
            user_id=self._user_id,
            call_id=recording.call_id or recording.id,
            duration=recording.duration_seconds,
            language=recording.language_code,
            timestamp=recording.created_at_millis,
            is_segment=recording.is_segment,
            segment_index=recording.segment_index,
            device_info=device_info(),
        )

    def upload_in_background(self, recording: Recording) -> asyncio.Task:
        """Start ``upload`` as a tracked task so the caller can keep recording."""
        task = asyncio.create_task(self.upload(recording), name=f"upload-{recording.id}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for every background upload started so far."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def upload(self, recording: Recording) -> ApiResult:
        """Upload *recording* once and store the resulting status."""
        if recording.id in self._in_flight:
            return ApiResult.fail(f"Recording {recording.id} is already uploading", message="Upload skipped")

        self._in_flight.add(recording.id)
        try:
            await self._store.update(recording.id, {"upload_status": UploadStatus.uploading})
            result = await self._client.upload_recording(
                recording.local_path,
                self.build_metadata(recording),
                filename=recording.filename,
                content_type=self._content_type,
            )
        except asyncio.CancelledError:
            await self._store.update(recording.id, {"upload_status": UploadStatus.failed})
            raise
        finally:
            self._in_flight.discard(recording.id)

        if result.success:
            data = result.data if isinstance(result.data, dict) else {}
            remote_id = data.get("id")
            await self._store.update(
                recording.id,
                {
                    "upload_status": UploadStatus.uploaded,
                    "remote_id": str(remote_id) if remote_id is not None else None,
                    "remote_url": data.get("url"),
                },
            )
            logger.info("Upload successful: %s", recording.filename)
        else:
            await self._store.update(recording.id, {"upload_status": UploadStatus.failed})
            logger.warning("Backend upload failed for %s: %s", recording.filename, result.error)
        return result

    def can_resubmit(self, recording: Recording) -> bool:
        """Pending and failed recordings can be resubmitted, as can an
        ``uploading`` one left over from a previous run."""
        if recording.id in self._in_flight:
            return False
        return recording.upload_status != UploadStatus.uploaded

    async def resubmit(self, recording_id: str) -> ApiResult:
        """Explicitly retry one recording by id."""
        recording = self._store.get(recording_id)
        if recording is None:
            return ApiResult.fail(f"Recording not found: {recording_id}", message="Upload failed")
        if not self.can_resubmit(recording):
            return ApiResult.fail(
                f"Recording {recording_id} is {recording.upload_status}, not resubmittable",
                message="Upload skipped",
            )
        return await self.upload(recording)

    async def resubmit_all(self) -> dict[str, ApiResult]:
        """Resubmit every pending or failed recording once, in order."""
        results: dict[str, ApiResult] = {}
        for recording in self._store.pending():
            if self.can_resubmit(recording):
                results[recording.id] = await self.upload(recording)
        return results
