"""
Workstream naming via an OpenAI-compatible chat-completions API.

All clusters are named in a single request.  Any failure (disabled, no key,
HTTP error, unparseable or wrong-length reply) falls back to names built
from the most frequent meaningful words in member titles, so naming never
fails a clustering run.
"""
from __future__ import annotations

import logging
import time
from typing import Dict, List, Optional, Tuple

import httpx

from app.config import settings
from app.utils.helpers import extract_keywords, parse_llm_json, truncate_text

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 256
MAX_DESCRIPTION_LENGTH = 1000
SAMPLE_SIZE = 15

_PROMPT = """Analyze these achievement clusters and generate a workstream name and description for each.

{clusters}

IMPORTANT: Generate exactly {count} workstreams in the same order as the clusters above.
Each workstream name should be 2-5 words that capture the theme.
Each description should be 1-2 sentences explaining what this workstream represents.

Respond with JSON only, in this shape:
{{"workstreams": [{{"name": "...", "description": "..."}}]}}"""


def fallback_name(titles: List[str], index: int, size: int) -> Tuple[str, str]:
    """Name from the three most frequent title words, else ``Workstream N``."""
    words = extract_keywords(" ".join(titles[:SAMPLE_SIZE]), top_n=3)
    name = " ".join(words) or f"Workstream {index + 1}"
    return name[:MAX_NAME_LENGTH], f"Workstream with {size} achievements"


class WorkstreamNamer:
    """Batch LLM namer with a deterministic keyword fallback."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        enabled: Optional[bool] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or settings.LLM_BASE_URL).rstrip("/")
        self.api_key = settings.LLM_API_KEY if api_key is None else api_key
        self.model = model or settings.LLM_MODEL
        self.enabled = settings.WORKSTREAM_LLM_NAMING if enabled is None else enabled
        self.timeout = httpx.Timeout(timeout or settings.LLM_TIMEOUT, connect=10.0)
        self._transport = transport

    async def name_clusters(
        self, clusters: List[List[Dict[str, Optional[str]]]]
    ) -> List[Tuple[str, str]]:
        """
        Return one ``(name, description)`` per cluster, in cluster order.

        Each cluster is a list of ``{"title", "summary"}`` dicts.
        """
        if not clusters:
            return []

        if self.enabled and self.api_key:
            named = await self._name_with_llm(clusters)
            if named is not None:
                return named
        else:
            logger.info("name_clusters: LLM naming unavailable, using keyword names")

        return [
            fallback_name([a["title"] or "" for a in members], idx, len(members))
            for idx, members in enumerate(clusters)
        ]

    async def _name_with_llm(
        self, clusters: List[List[Dict[str, Optional[str]]]]
    ) -> Optional[List[Tuple[str, str]]]:
        blocks = []
        for idx, members in enumerate(clusters):
            lines = "\n".join(
                f"  - {m['title']}: {truncate_text(m.get('summary') or '', 300)}"
                for m in members[:SAMPLE_SIZE]
            )
            blocks.append(f"Cluster {idx + 1} ({len(members)} achievements):\n{lines}")
        prompt = _PROMPT.format(clusters="\n\n".join(blocks), count=len(clusters))

        t0 = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={
                        "model": self.model,
                        "messages": [{"role": "user", "content": prompt}],
                        "temperature": 0.7,
                        "response_format": {"type": "json_object"},
                    },
                )
        except httpx.HTTPError as exc:
            logger.error("name_clusters: LLM request failed: %s", exc)
            return None

        if resp.status_code != 200:
            logger.error(
                "name_clusters: LLM returned HTTP %d: %s",
                resp.status_code,
                resp.text[:300],
            )
            return None

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            logger.error("name_clusters: malformed LLM response: %s", exc)
            return None

        ok, parsed = parse_llm_json(content)
        items = parsed.get("workstreams") if ok and isinstance(parsed, dict) else parsed
        if not ok or not isinstance(items, list) or len(items) != len(clusters):
            logger.warning(
                "name_clusters: expected %d names, could not use LLM reply",
                len(clusters),
            )
            return None

        named: List[Tuple[str, str]] = []
        for item in items:
            if not isinstance(item, dict) or not str(item.get("name") or "").strip():
                logger.warning("name_clusters: LLM reply has an unnamed entry")
                return None
            named.append((
                str(item["name"]).strip()[:MAX_NAME_LENGTH],
                str(item.get("description") or "").strip()[:MAX_DESCRIPTION_LENGTH],
            ))

        logger.info(
            "name_clusters: named %d cluster(s) in %.0f ms",
            len(named),
            (time.perf_counter() - t0) * 1000,
        )
        return named
