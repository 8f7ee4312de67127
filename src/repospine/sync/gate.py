"""Dedup Commit Gate.

Decides, per fetched page, whether the page is kept and whether pagination
continues. The decision is a compare-and-decide over the store itself:

1. stage the page as a raw document inside a transaction,
2. find which documents of the same resource hold the newest ``updated_at``,
   the staged row included,
3. commit only if the staged row is the *sole* holder of that maximum,
   otherwise roll back and stop.

Pages are requested newest-updated first, so a page that adds nothing newer
than what is stored means no later page can either.

Example:
    >>> from repospine.sync.gate import DedupCommitGate
    >>> gate = DedupCommitGate(store)
    >>> verdict = await gate.evaluate(key, page, watermark)
    >>> verdict.kept, verdict.proceed
    (True, False)
"""

from __future__ import annotations

import logging

from repospine.http.client import Page
from repospine.models.base import DataSource, DataType
from repospine.models.document import DocumentMetadata
from repospine.models.resource import ResourceKey
from repospine.models.sync import GateVerdict
from repospine.models.watermark import Watermark
from repospine.storage.duckdb import DuckDBStore

logger = logging.getLogger(__name__)


class DedupCommitGate:
    """Keep-or-discard decision for pull request pages.

    Args:
        store: Store holding raw documents and watermarks.
        data_source: Source tag written on every document.
        data_type: Payload tag written on every document.
    """

    def __init__(
        self,
        store: DuckDBStore,
        data_source: DataSource = DataSource.GITHUB_REST_API,
        data_type: DataType = DataType.PULLS,
    ) -> None:
        self._store = store
        self._data_source = data_source
        self._data_type = data_type

    async def evaluate(
        self,
        resource: ResourceKey,
        page: Page,
        watermark: Watermark | None,
    ) -> GateVerdict:
        """Conditional mode: keep the page only if it holds the newest record.

        Args:
            resource: Resource the page belongs to. The freshness query is
                scoped to it.
            page: A 200 response.
            watermark: Watermark to write if the page is kept. ``None`` keeps
                the stored watermark as is (pages after the first).

        Returns:
            Verdict; ``proceed`` is true only when the page was kept and has
            a next link.
        """
        metadata = DocumentMetadata.for_resource(resource, page.etag)
        async with self._store.transaction() as tx:
            document_id = tx.insert_raw_document(
                self._data_source, self._data_type, metadata, page.body
            )
            contributors = tx.freshest_contributors(self._data_source, self._data_type, resource)

            if contributors != {document_id}:
                tx.rollback()
                logger.info(
                    "Discarding page %s for %s: nothing newer than stored data",
                    page.request_url,
                    resource,
                )
                return GateVerdict(kept=False, proceed=False)

            if watermark is not None:
                tx.set_watermark(watermark)

        logger.info("Kept page %s for %s as document %d", page.request_url, resource, document_id)
        return GateVerdict(
            kept=True,
            document_id=document_id,
            watermark=watermark,
            proceed=page.next_url is not None,
        )

    async def commit(
        self,
        resource: ResourceKey,
        page: Page,
        watermark: Watermark | None,
    ) -> GateVerdict:
        """Since mode: commit the page unconditionally.

        Args:
            resource: Resource the page belongs to.
            page: A 200 response.
            watermark: Written with the page when given. The fetcher passes it
                only with the last page, so a run that fails partway leaves the
                stored watermark where it was and the next run re-reads the gap.
        """
        metadata = DocumentMetadata.for_resource(resource, page.etag)
        async with self._store.transaction() as tx:
            document_id = tx.insert_raw_document(
                self._data_source, self._data_type, metadata, page.body
            )
            if watermark is not None:
                tx.set_watermark(watermark)

        logger.debug("Committed page %s for %s as document %d", page.request_url, resource, document_id)
        return GateVerdict(
            kept=True,
            document_id=document_id,
            watermark=watermark,
            proceed=page.next_url is not None,
        )


__all__ = ["DedupCommitGate"]
