from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from constants import USER_AGENT


async def fetch_session_cookies(url: str, timeout: int = 60000) -> dict[str, str]:
    """用無頭瀏覽器開一次頁面，取得防護頁面發的 cookie"""
    async with async_playwright() as p:
        try:
            browser = await p.chromium.launch(headless=True)
        except PlaywrightError as e:
            logger.warning(f"無法啟動 Playwright，略過瀏覽器 session: {e}")
            return {}
        try:
            context = await browser.new_context(user_agent=USER_AGENT)
            page = await context.new_page()
            await page.goto(url, wait_until="networkidle", timeout=timeout)
            cookies = await context.cookies(url)
        except PlaywrightError as e:
            logger.warning(f"瀏覽器 session 取得失敗: {e}")
            return {}
        finally:
            await browser.close()

    logger.info(f"取得 {len(cookies)} 個 cookie")
    return {c["name"]: c["value"] for c in cookies}
