"""Request a server-side merge of uploaded chunks."""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ApiError, MergeNotAllowed
from ..store.session import MergeCompleted, MergeFailed, MergeStarted, MergeSucceeded, SessionStore
from .logger import LogBuffer
from .network import ApiClient


@dataclass(slots=True)
class MergeReport:
    merged_key: str | None = None
    size: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class MergeRequester:
    """Merge uploaded keys on the server, then download the merged object.

    The two steps are recorded separately: once ``/merge`` answers, the
    merged key replaces the source keys in the session. A failed download
    leaves that key in place, and the next ``merge()`` only retries the
    download.
    """

    def __init__(self, store: SessionStore, client: ApiClient, logger: LogBuffer) -> None:
        self.store = store
        self.client = client
        self.logger = logger

    def check_allowed(self) -> None:
        state = self.store.state
        if state.is_merging:
            raise MergeNotAllowed("A merge is already in progress")
        if state.is_uploading:
            raise MergeNotAllowed("Wait for the upload to finish")
        if state.awaiting_download:
            return
        if state.unsent_chunks:
            raise MergeNotAllowed("Upload all chunks before merging")
        if not state.uploaded_keys:
            raise MergeNotAllowed("No uploaded chunks to merge")

    async def merge(self) -> MergeReport:
        self.check_allowed()
        state = self.store.state
        self.store.dispatch(MergeStarted())
        try:
            if state.awaiting_download:
                merged_key = state.merged_key
                self.logger.add(f"Retrying download of {merged_key}")
            else:
                merged_key = await self._request_merge(list(state.uploaded_keys))
            data = await self.client.fetch_object(merged_key)
        except ApiError as exc:
            message = f"Merge failed: {exc}"
            self.logger.error(message)
            self.store.dispatch(MergeFailed(message))
            return MergeReport(merged_key=self.store.state.merged_key, error=message)
        except BaseException as exc:
            self.store.dispatch(MergeFailed(f"Merge interrupted: {exc!r}"))
            raise
        self.store.dispatch(MergeSucceeded(merged_key, data))
        self.logger.add(f"Merged recording ready ({merged_key}, {len(data)} bytes)")
        return MergeReport(merged_key=merged_key, size=len(data))

    async def _request_merge(self, keys: list[str]) -> str:
        self.logger.add(f"Merging {len(keys)} chunk(s)")
        response = await self.client.merge(keys)
        merged_key = str(response["mergedKey"])
        self.store.dispatch(MergeCompleted(merged_key))
        return merged_key


__all__ = ["MergeReport", "MergeRequester"]
