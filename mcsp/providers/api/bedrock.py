"""Bedrock dedicated server download page.

There is no machine readable API, versions are scraped from the html.
"""
import re

from mcsp.providers.api.base import JsonApi

DOWNLOAD_BASE = "https://www.minecraft.net/bedrockdedicatedserver"
ARCHIVE_PATTERN = re.compile(r"bedrock-server-([0-9.]+?)\.zip")
PREVIEW_WINDOW = 100


def parse_versions(html: str) -> list[str]:
    """Unique versions in page order, with preview builds dropped when stable ones exist"""
    versions = list(dict.fromkeys(ARCHIVE_PATTERN.findall(html)))
    stable = [v for v in versions if not is_preview(html, v)]
    return stable or versions


def is_preview(html: str, version: str) -> bool:
    token = f"bedrock-server-{version}.zip"
    idx = html.find(token)
    if idx == -1:
        return False
    # only the first mention is inspected
    after = html[idx + len(token):]
    tag_rest = after.split(">", 1)[0]
    return "preview" in tag_rest.lower() or "preview" in after[:PREVIEW_WINDOW].lower()


def download_url(version: str, windows: bool) -> str:
    platform = "win" if windows else "linux"
    return f"{DOWNLOAD_BASE}/bin-{platform}/bedrock-server-{version}.zip"


class BedrockPage(JsonApi):
    BASE_URL = "https://www.minecraft.net/"

    def get_page(self, locale: str) -> str | None:
        return self._get_text(f"/{locale}/download/server/bedrock")
