import codecs
import re
import shutil
import time
from pathlib import Path
from typing import Optional

import httpx
from loguru import logger

from constants import REQUEST_TIMEOUT, USER_AGENT
from context import RunContext
from errors import FetchError

RETRY_STATUSES = {403, 429, 451, 500, 502, 503}
_CACHE_KEY_RE = re.compile(r"[^a-z0-9]+", re.I)


def cache_key(url: str) -> str:
    """URL -> 快取檔名 (去掉協定，非英數字元換成底線)"""
    safe = re.sub(r"^https?://", "", url.strip())
    return _CACHE_KEY_RE.sub("_", safe).lower()[:200]


def decode_body(response: httpx.Response) -> str:
    """依 Content-Type 宣告的 charset 解碼，沒有或不認得就用 utf-8"""
    charset = response.charset_encoding
    if charset:
        try:
            codecs.lookup(charset)
        except LookupError:
            charset = None
    return response.content.decode(charset or "utf-8", errors="replace")


class PageCache:
    """以 URL 為 key 的頁面快取"""

    def __init__(self, cache_dir: Path, max_age: float, clock=time.time):
        self.cache_dir = cache_dir
        self.max_age = max_age
        self.clock = clock

    def path_for(self, url: str) -> Path:
        return self.cache_dir / f"{cache_key(url)}.html"

    def read(self, url: str) -> Optional[str]:
        path = self.path_for(url)
        if not path.is_file():
            return None
        if self.max_age > 0 and self.clock() - path.stat().st_mtime > self.max_age:
            return None
        return path.read_text(encoding="utf-8")

    def write(self, url: str, text: str) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.path_for(url).write_text(text, encoding="utf-8")

    def purge(self) -> bool:
        if not self.cache_dir.exists():
            return False
        shutil.rmtree(self.cache_dir)
        return True


class SourceClient:
    """來源網站的 HTTP 存取：限流、快取、404 與連線失敗分開處理"""

    def __init__(self, context: RunContext, client: Optional[httpx.AsyncClient] = None):
        self.context = context
        options = context.options
        self.cache = PageCache(context.paths.cache_dir, options.cache_hours * 3600)
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "SourceClient":
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=REQUEST_TIMEOUT,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            )
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("SourceClient 尚未開啟，請用 async with")
        return self._client

    def set_cookies(self, cookies: dict[str, str]) -> None:
        for name, value in cookies.items():
            self.client.cookies.set(name, value)

    async def fetch_page(self, url: str) -> str:
        options = self.context.options
        if not options.force_refresh:
            cached = self.cache.read(url)
            if cached is not None:
                logger.debug(f"快取命中: {url}")
                return cached

        attempts = max(0, options.fetch_retry) + 1
        last_error: Optional[FetchError] = None
        for attempt in range(attempts):
            await self.context.limiter.wait()
            try:
                resp = await self.client.get(url)
            except httpx.HTTPError as e:
                last_error = FetchError(url, reason=str(e) or type(e).__name__)
            else:
                if resp.status_code == 200:
                    text = decode_body(resp)
                    self.cache.write(url, text)
                    return text
                last_error = FetchError(url, status=resp.status_code)
                if resp.status_code not in RETRY_STATUSES:
                    raise last_error

            if attempt < attempts - 1:
                logger.warning(f"讀取失敗 ({last_error})，{options.fetch_cooldown_ms} ms 後重試")
                await self.context.sleep(options.fetch_cooldown_ms / 1000)

        raise last_error

    async def fetch_binary(self, url: str, delay: float = 0) -> Optional[bytes]:
        """下載二進位檔；404 回傳 None，其他失敗丟出 FetchError"""
        if delay > 0:
            await self.context.sleep(delay)
        clean_url = url.strip().replace("\n", "")
        try:
            resp = await self.client.get(clean_url)
        except httpx.HTTPError as e:
            raise FetchError(clean_url, reason=str(e) or type(e).__name__) from e
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise FetchError(clean_url, status=resp.status_code)
        return resp.content
