"""
Achievement artwork scraped from exophase.com, used as tournament cover options.
"""

import re
import time
from typing import Optional

import httpx
from bs4 import BeautifulSoup

from apoxer.core.logging import get_logger
from apoxer.core.metrics import external_latency, record_external_call

logger = get_logger(__name__)

SERVICE = "exophase"
BASE_URL = "https://www.exophase.com"
MAX_IMAGES = 100
PLATFORMS = (
    "psn",
    "xbox",
    "steam",
    "origin",
    "blizzard",
    "retro",
    "android",
    "gog",
    "ubisoft",
    "stadia",
    "epic",
    "nintendo",
    "apple",
    "ps3",
)
HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120 Safari/537.36"
    ),
    "Accept-Language": "en-US,en;q=0.9",
}


def slugify_game_name(name: str) -> str:
    slug = name.strip().lower().replace("&", "and")
    slug = re.sub(r"[^a-z0-9]+", "-", slug)
    return slug.strip("-")


def candidate_urls(game_name: str) -> list[str]:
    slug = slugify_game_name(game_name)
    urls = [f"{BASE_URL}/game/{slug}-{platform}/achievements/" for platform in PLATFORMS]
    urls.append(f"{BASE_URL}/game/{slug}/achievements/")
    return urls


def to_absolute(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    if url.startswith("//"):
        return "https:" + url
    if url.startswith("http"):
        return url
    if url.startswith("/"):
        return BASE_URL + url
    return url


def is_page_not_found(status_code: int, html: str) -> bool:
    if status_code == 404:
        return True
    soup = BeautifulSoup(html or "", "html.parser")
    title = soup.title.get_text().lower() if soup.title else ""
    h1 = soup.find("h1")
    heading = h1.get_text().lower() if h1 else ""
    body = soup.body.get_text().lower() if soup.body else ""
    return (
        "page not found" in title
        or "page not found" in heading
        or "page not found" in body
        or "404" in title
        or "404" in heading
    )


def extract_images(html: str) -> list[str]:
    """Every distinct <img> source on the page, first srcset candidate as fallback."""
    soup = BeautifulSoup(html, "html.parser")
    seen = {}
    for img in soup.find_all("img"):
        raw = img.get("data-src") or img.get("src")
        if not raw:
            srcset = img.get("data-srcset") or img.get("srcset") or ""
            first = srcset.split(",")[0].strip()
            raw = first.split(" ")[0] if first else None
        url = to_absolute(raw)
        if url:
            seen.setdefault(url, None)
    return list(seen)


async def find_achievement_images(
    game_name: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    timeout: float = 20.0,
) -> Optional[tuple[str, list[str]]]:
    """
    Try each platform page for the game, then the platformless one.
    Returns (page url, images) for the first page that exists, else None.
    """
    async with httpx.AsyncClient(headers=HEADERS, timeout=timeout, transport=transport) as client:
        for url in candidate_urls(game_name):
            started = time.perf_counter()
            try:
                response = await client.get(url)
            except httpx.HTTPError as e:
                logger.warning("exophase_request_failed", url=url, error=str(e))
                record_external_call(SERVICE, "error")
                continue
            finally:
                external_latency.labels(service=SERVICE).observe(time.perf_counter() - started)

            if response.status_code >= 500:
                record_external_call(SERVICE, "error")
                continue
            if is_page_not_found(response.status_code, response.text):
                record_external_call(SERVICE, "skipped")
                continue

            record_external_call(SERVICE, "ok")
            images = extract_images(response.text)[:MAX_IMAGES]
            logger.info("exophase_page_found", url=url, images=len(images))
            return url, images

    logger.info("exophase_page_missing", game=game_name)
    return None
