from __future__ import annotations

import logging
from typing import Any, Dict, List, Set

from stickershop.client.errors import ApiError
from stickershop.client.models import ImportResult, SyncResult
from stickershop.client.notify import Notifier

logger = logging.getLogger(__name__)


def _listing_id(listing: Dict[str, Any]) -> str:
    return str(listing.get("itemId") or listing.get("sku") or "")


class AdminImportFlow:
    """Browse marketplace listings, pick some, import them into the catalog."""

    def __init__(self, api: Any, notifier: Notifier) -> None:
        self.api = api
        self.notifier = notifier
        self.listings: List[Dict[str, Any]] = []
        self.selected: Set[str] = set()
        self.loading = False
        self.submitting = False
        self.syncing = False
        self.sync_log = ""

    @property
    def listing_ids(self) -> List[str]:
        return [i for i in (_listing_id(l) for l in self.listings) if i]

    async def browse(self) -> List[Dict[str, Any]]:
        self.loading = True
        try:
            self.listings = await self.api.ebay_products()
        except ApiError as exc:
            self.notifier.error(f"Failed to fetch eBay products: {exc.message}")
            raise
        finally:
            self.loading = False
        self.selected &= set(self.listing_ids)
        logger.info("Fetched %d eBay listings", len(self.listings))
        return self.listings

    def select(self, listing_id: str) -> None:
        if listing_id not in self.listing_ids:
            raise ValueError(f"Unknown listing: {listing_id}")
        self.selected.add(listing_id)

    def deselect(self, listing_id: str) -> None:
        self.selected.discard(listing_id)

    def select_all(self) -> None:
        self.selected = set(self.listing_ids)

    def clear_selection(self) -> None:
        self.selected.clear()

    async def submit(self) -> ImportResult:
        """A partial import is a completed import; failures are listed in the result."""
        if not self.selected:
            raise ValueError("No products selected for import")
        if self.submitting:
            raise RuntimeError("Import already in progress")

        ids = [i for i in self.listing_ids if i in self.selected]
        self.submitting = True
        try:
            result = ImportResult.from_api(await self.api.ebay_import(ids))
        except ApiError as exc:
            self.notifier.error(f"Failed to import products: {exc.message}")
            raise
        finally:
            self.submitting = False

        if result.errors:
            self.notifier.info(f"Imported {result.imported_count} products, {result.failed_count} failed")
            for err in result.errors:
                logger.warning("Listing %s not imported: %s", err["productId"], err["error"])
        else:
            self.notifier.info(f"Successfully imported {result.imported_count} products")
        self.selected.clear()
        return result

    # ---------------- store sync ----------------

    async def save_seller_id(self, seller_id: str) -> str:
        try:
            data = await self.api.save_ebay_seller_id(seller_id.strip())
        except ApiError as exc:
            self.notifier.error(f"Failed to save eBay seller ID: {exc.message}")
            raise
        self.notifier.info("eBay seller ID saved")
        return str(data["settings"]["sellerId"])

    async def sync_store(self) -> SyncResult:
        """Full-store sync; refreshes the sync log whether or not it worked."""
        if self.syncing:
            raise RuntimeError("Sync already in progress")
        self.syncing = True
        try:
            result = SyncResult.from_api(await self.api.ebay_sync())
        except ApiError as exc:
            self.notifier.error(f"Could not sync products from eBay: {exc.message}")
            raise
        finally:
            self.syncing = False
            await self.refresh_log()

        self.notifier.info(f"Synced {result.products_imported} products from eBay")
        return result

    async def refresh_log(self) -> str:
        try:
            self.sync_log = await self.api.ebay_sync_logs()
        except ApiError as exc:
            logger.warning("Sync log unavailable: %s", exc)
        return self.sync_log
