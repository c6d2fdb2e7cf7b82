"""
eBay marketplace integration: OAuth client-credentials token, listing
fetch (Inventory API, falling back to Browse search), selective import
of listings into the local catalog and the full store sync with its
JSON/CSV exports and sync log.
"""
from __future__ import annotations

import csv
import json
import logging
import os
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests

from stickershop.config import settings
from stickershop.constants import EBAY_FALLBACK_IMAGE, EBAY_FALLBACK_PRICE
from stickershop.db import sqlite
from stickershop.services.pricing import parse_float, round_half_up

logger = logging.getLogger(__name__)

INVENTORY_PATH = "/sell/inventory/v1/inventory_item"
BROWSE_PATH = "/buy/browse/v1/item_summary/search"
TOKEN_PATH = "/identity/v1/oauth2/token"
SCOPES = " ".join(
    (
        "https://api.ebay.com/oauth/api_scope",
        "https://api.ebay.com/oauth/api_scope/sell.inventory",
        "https://api.ebay.com/oauth/api_scope/sell.marketing",
        "https://api.ebay.com/oauth/api_scope/sell.account",
    )
)
MARKETPLACE_ID = "EBAY_US"
TIMEOUT = 20

_token: Optional[str] = None
_token_expires_at: float = 0.0


class EbayError(Exception):
    pass


def get_token() -> str:
    global _token, _token_expires_at
    if _token and time.time() < _token_expires_at:
        return _token

    if not settings.ebay_app_id or not settings.ebay_secret:
        raise EbayError("EBAY_APP_ID / EBAY_SECRET are empty. Set them in .env")

    logger.info("Requesting new eBay access token")
    try:
        resp = requests.post(
            settings.ebay_api_url + TOKEN_PATH,
            auth=(settings.ebay_app_id, settings.ebay_secret),
            data={"grant_type": "client_credentials", "scope": SCOPES},
            timeout=TIMEOUT,
        )
        resp.raise_for_status()
        payload = resp.json()
    except requests.RequestException as exc:
        raise EbayError("Failed to authenticate with eBay API") from exc

    token = payload.get("access_token")
    if not token:
        raise EbayError("No access token received from eBay API")
    _token = token
    # refresh a minute early
    _token_expires_at = time.time() + int(payload.get("expires_in", 0)) - 60
    return token


def _get(path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    resp = requests.get(
        settings.ebay_api_url + path,
        params=params,
        headers={
            "Authorization": f"Bearer {get_token()}",
            "Content-Type": "application/json",
            "X-EBAY-C-MARKETPLACE-ID": MARKETPLACE_ID,
        },
        timeout=TIMEOUT,
    )
    resp.raise_for_status()
    return resp.json()


def fetch_inventory() -> List[Dict[str, Any]]:
    return _get(INVENTORY_PATH).get("inventoryItems") or []


def fetch_browse(query: str = "stickers", limit: int = 50, seller_id: str = "") -> List[Dict[str, Any]]:
    params: Dict[str, Any] = {"q": query, "limit": limit}
    if seller_id:
        params["filter"] = f"sellers:{{{seller_id}}}"
    return _get(BROWSE_PATH, params).get("itemSummaries") or []


def fetch_listings(seller_id: str = "") -> List[Dict[str, Any]]:
    try:
        listings = fetch_inventory()
        logger.info("Retrieved %d products from Inventory API", len(listings))
    except (requests.RequestException, EbayError) as exc:
        logger.warning("Inventory API failed (%s), falling back to Browse API", exc)
        try:
            listings = fetch_browse(seller_id=seller_id)
        except requests.RequestException as fallback_exc:
            raise EbayError("Failed to fetch products from eBay using both methods") from fallback_exc
        logger.info("Retrieved %d products from Browse API", len(listings))

    if not listings:
        raise EbayError("No products retrieved from eBay APIs")
    return listings


def listing_id(listing: Dict[str, Any]) -> Optional[str]:
    return listing.get("itemId") or listing.get("sku")


def _first(*values: Any) -> Any:
    return next((v for v in values if v), None)


def listing_to_product(listing: Dict[str, Any]) -> Dict[str, Any]:
    """Maps either an inventory item or a browse summary onto catalog fields."""
    product = listing.get("product") or {}
    inventory_product = (listing.get("inventoryItem") or {}).get("product") or {}

    title = _first(listing.get("title"), product.get("title"), inventory_product.get("title"), listing.get("sku")) or "eBay Product"
    description = _first(
        listing.get("shortDescription"),
        listing.get("description"),
        product.get("description"),
        inventory_product.get("description"),
    ) or title
    image_url = _first(
        (listing.get("image") or {}).get("imageUrl"),
        (product.get("imageUrls") or [None])[0],
        (inventory_product.get("imageUrls") or [None])[0],
    ) or EBAY_FALLBACK_IMAGE

    price = parse_float((listing.get("price") or {}).get("value"))
    if price is None:
        offers = listing.get("offers") or []
        if offers:
            price = parse_float((offers[0].get("price") or {}).get("value"))
    if price is None:
        price = EBAY_FALLBACK_PRICE

    return {
        "title": title,
        "description": description,
        "image_url": image_url,
        "price": round_half_up(price * 100),
    }


def import_selected(
    product_ids: Iterable[str],
    fetch: Optional[Callable[[], List[Dict[str, Any]]]] = None,
    create: Optional[Callable[..., Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    Imports the listings whose ids were selected. A failure on one listing is
    recorded and the rest still go through, so partial success reports
    success=True with the failures listed in errors.
    """
    fetch = fetch or fetch_listings
    create = create or sqlite.add_product
    wanted = [str(pid) for pid in product_ids]
    logger.info("Starting selective import of %d eBay products", len(wanted))

    by_id = {listing_id(l): l for l in fetch()}
    imported = 0
    errors: List[Dict[str, str]] = []

    for pid in wanted:
        listing = by_id.get(pid)
        if listing is None:
            errors.append({"productId": pid, "error": "Listing not found"})
            continue
        try:
            fields = listing_to_product(listing)
            create(fields["title"], fields["description"], fields["image_url"], fields["price"])
            imported += 1
            logger.info("Imported eBay product %s: %s", pid, fields["title"])
        except Exception as exc:
            logger.error("Failed to import eBay product %s: %s", pid, exc)
            errors.append({"productId": pid, "error": str(exc)})

    logger.info("Import completed. %d products imported, %d failed", imported, len(errors))
    return {"success": True, "importedCount": imported, "errors": errors}


# ---------------- store sync ----------------

SETTINGS_FILE = "ebay_settings.json"
SYNC_LOG_FILE = "ebay_sync_log.txt"
EXPORT_FILES = {"json": "ebay_products.json", "csv": "ebay_products.csv"}
CSV_HEADERS = ["Product ID", "Title", "Price", "Quantity", "Description", "Image URL"]


def _data_path(name: str) -> str:
    os.makedirs(settings.data_dir, exist_ok=True)
    return os.path.join(settings.data_dir, name)


def log_sync(message: str) -> None:
    """Appends to the admin-readable sync log and mirrors the line to the app log."""
    ts = datetime.now().isoformat(timespec="seconds")
    with open(_data_path(SYNC_LOG_FILE), "a", encoding="utf-8") as f:
        f.write(f"[{ts}] {message}\n")
    logger.info("eBay sync: %s", message)


def read_sync_log() -> str:
    path = _data_path(SYNC_LOG_FILE)
    if not os.path.exists(path):
        return ""
    with open(path, encoding="utf-8") as f:
        return f.read()


def load_store_settings() -> Dict[str, Any]:
    path = _data_path(SETTINGS_FILE)
    if not os.path.exists(path):
        return {"sellerId": "", "lastUpdated": None}
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        logger.error("Unreadable eBay settings file %s: %s", path, exc)
        return {"sellerId": "", "lastUpdated": None}
    return {"sellerId": str(data.get("sellerId") or ""), "lastUpdated": data.get("lastUpdated")}


def save_seller_id(seller_id: str) -> Dict[str, Any]:
    data = {"sellerId": seller_id.strip(), "lastUpdated": datetime.now().isoformat(timespec="seconds")}
    with open(_data_path(SETTINGS_FILE), "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    log_sync(f"Saved eBay settings with seller ID: {data['sellerId'] or '(none)'}")
    return data


def current_seller_id() -> str:
    # environment wins over the saved setting
    return settings.ebay_seller_id or load_store_settings()["sellerId"]


def _quantity(listing: Dict[str, Any]) -> int:
    availability = (listing.get("availability") or {}).get("shipToLocationAvailability") or {}
    raw = _first(listing.get("availableQuantity"), listing.get("quantity"), availability.get("quantity"))
    try:
        return int(raw) if raw is not None else 1
    except (TypeError, ValueError):
        return 1


def export_json(listings: List[Dict[str, Any]]) -> str:
    path = _data_path(EXPORT_FILES["json"])
    with open(path, "w", encoding="utf-8") as f:
        json.dump(listings, f, indent=2)
    return path


def export_csv(listings: List[Dict[str, Any]]) -> str:
    path = _data_path(EXPORT_FILES["csv"])
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(CSV_HEADERS)
        for listing in listings:
            fields = listing_to_product(listing)
            writer.writerow(
                [
                    listing_id(listing) or "",
                    fields["title"],
                    f"{fields['price'] / 100:.2f}",
                    _quantity(listing),
                    fields["description"],
                    fields["image_url"],
                ]
            )
    return path


def sync_store(
    fetch: Optional[Callable[[], List[Dict[str, Any]]]] = None,
    create: Optional[Callable[..., Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """
    Pulls every listing of the configured seller, writes the raw JSON and a
    CSV summary to the data dir, then imports all of them into the catalog.
    A listing that fails to import is logged and counted; the rest go on.
    """
    fetch = fetch or (lambda: fetch_listings(current_seller_id()))
    create = create or sqlite.add_product

    log_sync("Starting eBay product sync")
    try:
        listings = fetch()
    except EbayError as exc:
        log_sync(f"ERROR: eBay sync failed - {exc}")
        raise
    log_sync(f"Retrieved {len(listings)} listings")

    json_path = export_json(listings)
    csv_path = export_csv(listings)
    log_sync(f"Saved raw eBay data to JSON: {json_path}")
    log_sync(f"Saved raw eBay data to CSV: {csv_path}")

    imported = 0
    failed = 0
    for listing in listings:
        try:
            fields = listing_to_product(listing)
            create(fields["title"], fields["description"], fields["image_url"], fields["price"])
            imported += 1
        except Exception as exc:
            failed += 1
            log_sync(f"ERROR: Failed to import product {listing_id(listing)} - {exc}")

    log_sync(f"Successfully imported {imported} products to database, {failed} failed")
    return {
        "success": True,
        "productsImported": imported,
        "failedCount": failed,
        "jsonFile": json_path,
        "csvFile": csv_path,
    }


def export_file(kind: str) -> str:
    """Path of the last export of `kind`; syncs first when there is none yet."""
    if kind not in EXPORT_FILES:
        raise ValueError(f"Unknown export format: {kind}")
    path = _data_path(EXPORT_FILES[kind])
    if not os.path.exists(path):
        sync_store()
    return path
