"""Site context providers.

The site profile (niche, audience, tone) is built by a separate profiler;
the pipeline only reads it. A missing profile is a normal state, not an error.
"""

import json
import logging
from pathlib import Path
from typing import Optional, Protocol

from pydantic import ValidationError

from .models import SiteProfile

logger = logging.getLogger(__name__)


class SiteContextProvider(Protocol):
    def get_profile(self) -> Optional[SiteProfile]:
        ...


class StaticProfileProvider:
    """Serves a fixed profile, or none at all."""

    def __init__(self, profile: Optional[SiteProfile] = None):
        self.profile = profile

    def get_profile(self) -> Optional[SiteProfile]:
        return self.profile


class JsonProfileProvider:
    """Reads the profile from the JSON file written by the site profiler.

    Accepts both the flat layout of SiteProfile and the nested layout the
    profiler emits (``niche.primary_niche``, ``writing_style.tone``, ...).
    """

    def __init__(self, path: Optional[str]):
        self.path = Path(path) if path else None

    def get_profile(self) -> Optional[SiteProfile]:
        if self.path is None or not self.path.exists():
            return None

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read site profile {self.path}: {e}")
            return None

        if not isinstance(raw, dict) or not raw:
            return None

        try:
            return SiteProfile(**_flatten_profile(raw))
        except ValidationError as e:
            logger.warning(f"Invalid site profile {self.path}: {e}")
            return None


def _flatten_profile(raw: dict) -> dict:
    niche = raw.get("niche")
    style = raw.get("writing_style") or {}
    audience = raw.get("target_audience")

    flat = {k: v for k, v in raw.items() if k in SiteProfile.model_fields and isinstance(v, str)}
    if isinstance(niche, dict):
        flat.setdefault("niche", niche.get("primary_niche", "general"))
        if niche.get("content_approach"):
            flat.setdefault("content_approach", niche["content_approach"])
    if isinstance(audience, dict) and audience.get("primary_audience"):
        flat.setdefault("audience", audience["primary_audience"])
    if isinstance(style, dict):
        for key in ("tone", "voice"):
            if style.get(key):
                flat.setdefault(key, style[key])
    return flat
