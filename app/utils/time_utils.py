# app/utils/time_utils.py
from datetime import datetime, timezone

def utcnow() -> datetime:
    """
    目前的 UTC 時間 (naive)。
    資料庫一律存 naive UTC，MySQL TIMESTAMP 與 SQLite 都不保留時區。
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)

def to_naive_utc(value: datetime) -> datetime:
    """將外部傳入的時間統一轉成 naive UTC (沒有時區的視為 UTC)"""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
