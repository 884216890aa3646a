class SyncError(Exception):
    """同步流程的基礎例外"""


class FetchError(SyncError):
    """連線失敗、逾時或非 200/404 的回應"""

    def __init__(self, url: str, status: int | None = None, reason: str = ""):
        self.url = url
        self.status = status
        self.reason = reason
        detail = f"Status {status}" if status is not None else (reason or "transport error")
        super().__init__(f"{detail}: {url}")


class CatalogError(SyncError):
    """無法繼續執行的設定錯誤 (目錄頁讀不到、沒有選到任何系列...)"""
