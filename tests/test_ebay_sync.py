import csv
import dataclasses
import json

import pytest

from stickershop.db import sqlite
from stickershop.services import ebay

LISTINGS = [
    {"itemId": "a", "title": "Holo Cat", "price": {"value": "3.50"}, "image": {"imageUrl": "http://img/a"},
     "availableQuantity": 4},
    {"sku": "b", "product": {"title": "Kraft, Fox", "description": "says \"hi\""}},
    {"itemId": "c", "title": "Broken"},
]


def test_seller_id_env_wins_over_saved(db, monkeypatch):
    assert ebay.current_seller_id() == ""

    saved = ebay.save_seller_id("  sticker_studio ")
    assert saved["sellerId"] == "sticker_studio"
    assert ebay.load_store_settings()["sellerId"] == "sticker_studio"
    assert ebay.current_seller_id() == "sticker_studio"

    monkeypatch.setattr(ebay, "settings", dataclasses.replace(ebay.settings, ebay_seller_id="from_env"))
    assert ebay.current_seller_id() == "from_env"


def test_unreadable_settings_fall_back_to_defaults(db):
    with open(ebay._data_path(ebay.SETTINGS_FILE), "w") as f:
        f.write("{not json")

    assert ebay.load_store_settings() == {"sellerId": "", "lastUpdated": None}


def test_sync_exports_imports_and_logs(db):
    before = len(sqlite.list_products())

    def create(title, description, image_url, price):
        if title == "Broken":
            raise ValueError("bad listing")
        return sqlite.add_product(title, description, image_url, price)

    result = ebay.sync_store(fetch=lambda: LISTINGS, create=create)

    assert result["productsImported"] == 2
    assert result["failedCount"] == 1
    assert len(sqlite.list_products()) == before + 2

    with open(result["jsonFile"]) as f:
        assert json.load(f) == LISTINGS
    with open(result["csvFile"], newline="") as f:
        rows = list(csv.reader(f))
    assert rows[0] == ebay.CSV_HEADERS
    assert rows[1] == ["a", "Holo Cat", "3.50", "4", "Holo Cat", "http://img/a"]
    assert rows[2][1] == "Kraft, Fox" and rows[2][4] == 'says "hi"'

    log = ebay.read_sync_log()
    assert "Starting eBay product sync" in log
    assert "ERROR: Failed to import product c - bad listing" in log
    assert "Successfully imported 2 products to database, 1 failed" in log


def test_sync_failure_is_logged_and_raised(db):
    def fetch():
        raise ebay.EbayError("No products retrieved from eBay APIs")

    with pytest.raises(ebay.EbayError):
        ebay.sync_store(fetch=fetch)

    assert "ERROR: eBay sync failed - No products retrieved from eBay APIs" in ebay.read_sync_log()


def test_default_sync_uses_saved_seller(db, monkeypatch):
    seen = []

    def fetch_listings(seller_id=""):
        seen.append(seller_id)
        return LISTINGS[:1]

    monkeypatch.setattr(ebay, "fetch_listings", fetch_listings)
    ebay.save_seller_id("sticker_studio")

    path = ebay.export_file("csv")

    assert seen == ["sticker_studio"]
    assert path.endswith("ebay_products.csv")
    # a second download reuses the existing export
    ebay.export_file("csv")
    assert len(seen) == 1
    with pytest.raises(ValueError):
        ebay.export_file("xml")
