"""Recon capture: record the application's API traffic into a JSON log.

The user navigates the pipeline views by hand; every API-like request is
recorded. The resulting log feeds the query catalog.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from patchright.async_api import Request, Response

from src.browser.session import BrowserSession
from src.core.config import Settings
from src.session.state import SessionState

logger = logging.getLogger(__name__)

RESPONSE_SNIPPET_CHARS = 2000


def is_api_request(url: str, method: str) -> bool:
    return method == "POST" or "/api/" in url or "graphql" in url


class RequestRecorder:
    """Collects request/response pairs from patchright page events."""

    def __init__(self) -> None:
        self.captured: list[dict[str, Any]] = []

    def on_request(self, request: Request) -> None:
        if not is_api_request(request.url, request.method):
            return
        self.captured.append({
            "url": request.url,
            "method": request.method,
            "postData": request.post_data,
        })
        logger.info("[CAPTURED] %s %s", request.method, request.url)

    async def on_response(self, response: Response) -> None:
        request = response.request
        if not is_api_request(response.url, request.method):
            return
        entry = next(
            (e for e in self.captured if e["url"] == response.url and "responseStatus" not in e),
            None,
        )
        if entry is None:
            return
        entry["responseStatus"] = response.status
        try:
            text = await response.text()
        except Exception as e:
            logger.debug("No text body for %s: %s", response.url, e)
            return
        entry["responseBodySnippet"] = text[:RESPONSE_SNIPPET_CHARS]

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.captured, indent=2))
        logger.info("Saved %d captured requests to %s", len(self.captured), path)
        return path


async def run_recon(settings: Settings, session: SessionState) -> Path:
    """Open the application with the saved session and record traffic until Enter."""
    recorder = RequestRecorder()
    async with BrowserSession(settings.http.base_url, session=session) as browser:
        browser.context.on("request", recorder.on_request)
        browser.context.on("response", recorder.on_response)
        await browser.page.goto(settings.http.base_url)
        print("Navigate to Candidates > Pipeline > Active and open a few candidates.")
        await asyncio.to_thread(input, "\n>>> Press Enter here when done to save the recon log...")
    return recorder.save(settings.catalog.recon_log_path)
