"""
RecSplit Backend — Recording Service
======================================

What:  Read and delete operations on recordings that sit next to splitting:
       listing a parent's segments and removing a locally created recording.
Why:   Segments are ordinary recordings; users review them and discard the
       ones they do not want.
How:   Reads go straight to the MetadataStore. Deletion removes the row in a
       transaction first and the blob afterwards, best effort, so a failure
       can orphan a blob but never leaves a row pointing at a missing one.
"""

import logging
from typing import List

from recsplit.config import Settings
from recsplit.exceptions import ForbiddenError, NotFoundError
from recsplit.models.recording import Recording
from recsplit.provenance import is_locally_created
from recsplit.services.metadata_store import MetadataStore, RecordingWriter
from recsplit.services.split_service import delete_blob_quietly
from recsplit.storage.factory import BlobStoreFactory

logger = logging.getLogger(__name__)


class RecordingService:
    def __init__(self, metadata_store: MetadataStore, blob_stores: BlobStoreFactory, settings: Settings):
        self._metadata_store = metadata_store
        self._blob_stores = blob_stores
        self._settings = settings

    async def _require_owned(self, recording_id: str, user_id: str) -> Recording:
        recording = await self._metadata_store.get_owned_recording(recording_id, user_id)
        if recording is None:
            raise NotFoundError(resource="recording", resource_id=recording_id)
        return recording

    async def list_segments(self, recording_id: str, user_id: str) -> List[Recording]:
        """Current split set of a recording, ordered by part number."""
        parent = await self._require_owned(recording_id, user_id)
        return await self._metadata_store.list_split_segments(user_id, parent.provenance_id)

    async def delete_recording(self, recording_id: str, user_id: str) -> bool:
        """
        Delete a locally created recording and its blob.

        Returns:
            True if the blob was removed as well, False if it was left orphaned.

        Raises:
            NotFoundError: not found or not owned
            ForbiddenError: the recording was synced from a device
            TransactionError: the row could not be deleted
        """
        recording = await self._require_owned(recording_id, user_id)
        if not is_locally_created(recording.provenance_id):
            raise ForbiddenError(
                message="Only locally created recordings can be deleted",
                context={"recording_id": recording_id, "provenance_id": recording.provenance_id},
            )
        store = await self._blob_stores.for_user(user_id)

        async def remove_row(writer: RecordingWriter) -> int:
            return await writer.delete_recordings([recording.id])

        await self._metadata_store.run_in_transaction(remove_row)
        logger.info("Deleted recording %s (%s)", recording.id, recording.provenance_id)

        return await delete_blob_quietly(store, recording.storage_path, self._settings)
