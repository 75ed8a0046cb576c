"""Single-table DynamoDB storage."""

from homeapi.storage.client import Page, PageEntry, StorageClient

__all__ = ["Page", "PageEntry", "StorageClient"]
