"""
auth/fingerprint.py -- Stable device identifiers derived from request metadata.

fingerprint() is a pure function of the RequestContext: the components are
canonicalized (key-sorted JSON) and hashed with SHA-256, so identical input
always produces the identical id and any single changed component produces a
different one. There is no clock, randomness or I/O involved.

The confidence score and the automation/risk checks are advisory signals for
risk analysis. None of them blocks a request on its own.

Layer rule: no imports from api/ or store/.
"""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any

from auth.models import DeviceFingerprint, FingerprintRisk, RequestContext, RiskLevel

# Confidence weights: basic signals 1 point, advanced render/audio hashes 2,
# hardware hints 3. Confidence is the covered share of the maximum.
_BASIC_COMPONENTS = ("user_agent", "accept_language", "timezone")
_ADVANCED_COMPONENTS = ("canvas", "webgl", "audio")
_HARDWARE_COMPONENTS = ("hardware_concurrency", "device_memory", "color_depth")
_WEIGHTS = ((_BASIC_COMPONENTS, 1), (_ADVANCED_COMPONENTS, 2), (_HARDWARE_COMPONENTS, 3))

AUTOMATION_PATTERNS = (
    re.compile(r"bot", re.IGNORECASE),
    re.compile(r"crawler", re.IGNORECASE),
    re.compile(r"spider", re.IGNORECASE),
    re.compile(r"scraper", re.IGNORECASE),
    re.compile(r"curl", re.IGNORECASE),
    re.compile(r"wget", re.IGNORECASE),
    re.compile(r"python-requests", re.IGNORECASE),
    re.compile(r"headless", re.IGNORECASE),
)

# Order matters: Android UAs also contain "Linux", iOS UAs contain "Mac OS".
_PLATFORMS = (
    ("Android", re.compile(r"Android")),
    ("iOS", re.compile(r"iPhone|iPad")),
    ("Windows", re.compile(r"Windows")),
    ("macOS", re.compile(r"Mac OS")),
    ("Linux", re.compile(r"Linux")),
)


def extract_platform(user_agent: str) -> str:
    """Map a user-agent string to a coarse platform name."""
    for name, pattern in _PLATFORMS:
        if pattern.search(user_agent or ""):
            return name
    return "Unknown"


class DeviceFingerprinter:
    """Derives {id, components, confidence} for a request."""

    def components(self, context: RequestContext) -> dict[str, Any]:
        device = context.device
        return {
            "user_agent": context.user_agent or "",
            "accept_language": context.accept_language or "",
            "accept_encoding": context.accept_encoding or "",
            "accept": context.accept or "",
            "platform": extract_platform(context.user_agent),
            "do_not_track": context.do_not_track or "",
            "screen_resolution": device.screen_resolution or "",
            "timezone": device.timezone or "",
            "canvas": device.canvas or "",
            "webgl": device.webgl or "",
            "audio": device.audio or "",
            "fonts": sorted(device.fonts or []),
            "plugins": sorted(device.plugins or []),
            "cpu_class": device.cpu_class or "",
            "hardware_concurrency": device.hardware_concurrency or 0,
            "device_memory": device.device_memory or 0,
            "color_depth": device.color_depth or 0,
            "pixel_ratio": device.pixel_ratio or 0,
            "touch_support": bool(device.touch_support),
        }

    def fingerprint(self, context: RequestContext) -> DeviceFingerprint:
        components = self.components(context)
        return DeviceFingerprint(
            id=self.digest(components),
            components=components,
            confidence=self.confidence(components),
        )

    @staticmethod
    def digest(components: dict[str, Any]) -> str:
        canonical = json.dumps(components, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    @staticmethod
    def confidence(components: dict[str, Any]) -> int:
        score = 0
        maximum = 0
        for keys, weight in _WEIGHTS:
            for key in keys:
                maximum += weight
                if components.get(key):
                    score += weight
        return round(score / maximum * 100) if maximum else 0

    @staticmethod
    def looks_automated(components: dict[str, Any]) -> bool:
        user_agent = components.get("user_agent") or ""
        return any(pattern.search(user_agent) for pattern in AUTOMATION_PATTERNS)

    def analyze_risk(self, components: dict[str, Any], cookies_enabled: bool = True) -> FingerprintRisk:
        """Advisory risk summary of how much the device reveals about itself."""
        level = RiskLevel.LOW
        factors: list[str] = []

        if not components.get("canvas") or not components.get("webgl"):
            level = RiskLevel.MEDIUM
            factors.append("limited fingerprint coverage")
        if self.looks_automated(components):
            level = RiskLevel.HIGH
            factors.append("automation user-agent")
        if not components.get("plugins"):
            factors.append("no plugins reported")
        if not cookies_enabled:
            factors.append("cookies disabled")

        return FingerprintRisk(level=level, factors=factors, score=min(len(factors) * 25, 100))
