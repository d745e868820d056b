"""Showdown replay lookup.

Turns user input (a replay URL, a ``.json`` URL or a bare replay id) into
canonical URLs and fetches the replay JSON payload.

Payload shape (only ``id`` and ``log`` are required)::

    {"id": "gen9vgc2024regg-123", "formatid": "gen9vgc2024regg",
     "format": "[Gen 9] VGC 2024 Reg G", "players": ["Alice", "Bob"],
     "log": "|j|...", "uploadtime": 1700000000, "views": 3, "rating": 1500,
     "private": 0}
"""

import logging
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx

from replaylink.core.constants import DEFAULT_FETCH_TIMEOUT_SECONDS, SHOWDOWN_REPLAY_BASE
from replaylink.core.errors import InvalidReplayError, ReplayFetchError

logger = logging.getLogger(__name__)

JSON_SUFFIX = ".json"


@dataclass(frozen=True)
class ReplayRef:
    replay_id: str
    replay_url: str
    json_url: str


def _strip_json_suffix(value: str) -> str:
    return value[: -len(JSON_SUFFIX)] if value.endswith(JSON_SUFFIX) else value


def normalize_replay_input(line: str, base_url: str = SHOWDOWN_REPLAY_BASE) -> ReplayRef:
    """Normalize a replay URL or id.

    Examples:
        "https://replay.pokemonshowdown.com/gen9ou-1.json" -> id "gen9ou-1"
        "gen9ou-1"                                         -> id "gen9ou-1"

    Raises:
        InvalidReplayError: Blank input or a URL without a replay id
    """
    raw = (line or "").strip()
    if not raw:
        raise InvalidReplayError("Empty replay input")

    if raw.startswith(("http://", "https://")):
        path = urlparse(raw).path.strip("/")
        replay_id = _strip_json_suffix(path)
        if not replay_id:
            raise InvalidReplayError(f"Could not extract replay id from URL: {raw}")
    else:
        replay_id = _strip_json_suffix(raw)

    replay_url = f"{base_url.rstrip('/')}/{replay_id}"
    return ReplayRef(replay_id=replay_id, replay_url=replay_url, json_url=f"{replay_url}{JSON_SUFFIX}")


def fetch_replay_json(
    json_url: str,
    timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
    user_agent: str | None = None,
    client: httpx.Client | None = None,
) -> dict:
    """Fetch and validate a replay JSON payload.

    Args:
        json_url: Replay ``.json`` URL
        timeout: Request timeout in seconds
        user_agent: Optional User-Agent header
        client: Existing client to reuse (its own timeout applies)

    Returns:
        The decoded payload

    Raises:
        ReplayFetchError: Network/HTTP failure, non-JSON body, or a payload
            missing ``id`` or ``log``
    """
    headers = {"User-Agent": user_agent} if user_agent else None
    try:
        if client is not None:
            resp = client.get(json_url, headers=headers)
        else:
            with httpx.Client(timeout=timeout, follow_redirects=True) as own_client:
                resp = own_client.get(json_url, headers=headers)
        resp.raise_for_status()
        data = resp.json()
    except httpx.HTTPStatusError as e:
        raise ReplayFetchError(
            f"Fetch failed ({e.response.status_code}) for {json_url}", url=json_url
        ) from e
    except httpx.HTTPError as e:
        raise ReplayFetchError(f"Fetch failed for {json_url}: {e}", url=json_url) from e
    except ValueError as e:
        raise ReplayFetchError(f"Replay payload is not JSON: {json_url}", url=json_url) from e

    if not isinstance(data, dict) or not data.get("id") or not data.get("log"):
        raise ReplayFetchError("Unexpected JSON payload (missing id/log)", url=json_url)

    logger.debug(f"Fetched replay {data['id']} ({len(data['log'])} chars)")
    return data
