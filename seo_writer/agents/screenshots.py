"""Screenshot URL filtering.

Candidate pages come from the outline model. Only pages that render a stable,
public view are kept: social networks, video hosts, large brand sites that
block automated capture, file sharing, account/payment flows and documents
are dropped.
"""
import re
from typing import Dict, List, NamedTuple, Optional, Tuple
from urllib.parse import urlparse

from seo_writer.agents.schemas import ScreenshotCandidate
from seo_writer.utils.logger import logger

SOCIAL_MEDIA_DOMAINS = [
    "facebook.com", "fb.com", "instagram.com", "threads.net", "whatsapp.com",
    "twitter.com", "x.com", "t.co", "linkedin.com", "lnkd.in",
    "tiktok.com", "snapchat.com", "reddit.com", "pinterest.com", "tumblr.com",
    "discord.com", "discord.gg", "telegram.org", "t.me", "signal.org",
    "clubhouse.com", "mastodon.social", "mastodon.world", "slack.com",
    "zoom.us", "teams.microsoft.com", "meet.google.com", "quora.com",
    "stackoverflow.com",
]

VIDEO_PLATFORMS = [
    "youtube.com", "youtu.be", "vimeo.com", "twitch.tv", "dailymotion.com",
    "wistia.com", "brightcove.com", "jwplayer.com", "kaltura.com",
]

BRAND_DOMAINS = [
    "google.com", "apple.com", "microsoft.com", "amazon.com", "netflix.com",
    "shopify.com", "etsy.com", "ebay.com", "alibaba.com", "salesforce.com",
    "hubspot.com", "zendesk.com", "intercom.com", "atlassian.com",
    "github.com", "gitlab.com", "bitbucket.org", "news.google.com", "flipboard.com",
]

PAYMENT_DOMAINS = ["paypal.com", "stripe.com", "squareup.com", "square.com", "venmo.com"]

FILE_SHARING_DOMAINS = [
    "dropbox.com", "drive.google.com", "onedrive.live.com", "box.com",
    "icloud.com", "mega.nz", "mediafire.com", "rapidshare.com",
    "sendspace.com", "wetransfer.com",
]

DENYLISTS: Dict[str, List[str]] = {
    "social-media": SOCIAL_MEDIA_DOMAINS,
    "video-platform": VIDEO_PLATFORMS,
    "brand-domain": BRAND_DOMAINS,
    "payment": PAYMENT_DOMAINS,
    "file-sharing": FILE_SHARING_DOMAINS,
}

BLOCKED_PATHS = [
    "/login", "/signin", "/signup", "/register",
    "/checkout", "/cart", "/payment",
    "/api/", "/admin", "/dashboard/",
    "/download", "/file/", "/attachment/",
]

DOCUMENT_EXTENSION_RE = re.compile(r"\.(pdf|doc|docx|xls|xlsx|ppt|pptx|zip|rar|tar|gz)$", re.IGNORECASE)


class ScreenshotVerdict(NamedTuple):
    is_valid: bool
    domain: Optional[str] = None
    category: Optional[str] = None
    reason: Optional[str] = None


def normalize_domain(value: str) -> str:
    """Lowercased host without ``www.``; accepts a URL or a bare domain."""
    value = (value or "").strip().lower()
    host = urlparse(value).hostname if "://" in value else value.split("/")[0]
    host = (host or "").split(":")[0]
    return host[4:] if host.startswith("www.") else host


def _matches(domain: str, blocked: str) -> bool:
    return domain == blocked or domain.endswith("." + blocked)


def validate_screenshot_url(url: str, excluded_domains: Optional[List[str]] = None) -> ScreenshotVerdict:
    try:
        parsed = urlparse(url)
    except ValueError:
        return ScreenshotVerdict(False, category="invalid-url", reason="Invalid URL format")
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return ScreenshotVerdict(False, category="invalid-url", reason="Invalid URL format")

    domain = normalize_domain(url)
    for excluded in excluded_domains or []:
        if _matches(domain, normalize_domain(excluded)):
            return ScreenshotVerdict(False, domain, "excluded-domain", "Domain is in the excluded domains list")

    for category, blocked_domains in DENYLISTS.items():
        if any(_matches(domain, blocked) for blocked in blocked_domains):
            return ScreenshotVerdict(False, domain, category, f"{category} hosts are not suitable for screenshots")

    path = (parsed.path or "").lower()
    if any(blocked in path for blocked in BLOCKED_PATHS):
        return ScreenshotVerdict(False, domain, "invalid-url", "Login, payment or administrative page")
    if DOCUMENT_EXTENSION_RE.search(path):
        return ScreenshotVerdict(False, domain, "invalid-url", "Document files are not suitable for screenshots")

    return ScreenshotVerdict(True, domain)


def screenshot_score(candidate: ScreenshotCandidate) -> float:
    score = 1.0
    domain = normalize_domain(candidate.url)
    if "news" in domain or "edu" in domain or "org" in domain or domain.endswith(".gov"):
        score += 3
    if "blog" in domain or "guide" in domain or "tutorial" in domain:
        score += 2
    if candidate.url.startswith("https://"):
        score += 0.5
    if candidate.title and len(candidate.title) > 20:
        score += 1
    return score


def select_screenshots(candidates: List[ScreenshotCandidate],
                       excluded_domains: Optional[List[str]] = None,
                       limit: int = 3) -> Tuple[List[ScreenshotCandidate], List[Dict[str, str]]]:
    """Filter, dedupe and rank candidates; return (kept, rejected)."""
    valid: List[ScreenshotCandidate] = []
    rejected: List[Dict[str, str]] = []
    seen = set()
    for candidate in candidates:
        if candidate.url in seen:
            continue
        seen.add(candidate.url)
        verdict = validate_screenshot_url(candidate.url, excluded_domains)
        if verdict.is_valid:
            valid.append(candidate)
        else:
            rejected.append({"url": candidate.url, "category": verdict.category or "", "reason": verdict.reason or ""})

    if rejected:
        logger.debug(f"Screenshot filter dropped {len(rejected)} of {len(candidates)} candidates")

    # sorted() is stable, so equal scores keep the model's order
    ranked = sorted(valid, key=screenshot_score, reverse=True)
    return ranked[:limit], rejected
