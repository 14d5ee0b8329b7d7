"""
Cookie-free pageview classification.

Each function maps one header value to one coarse category, applies its
patterns in a fixed order (first match wins) and never raises.
"""
from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urlparse

BOT_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        # search engines
        r"googlebot", r"bingbot", r"slurp", r"duckduckbot",
        r"baiduspider", r"yandexbot", r"sogou", r"exabot",
        # social crawlers
        r"facebookexternalhit", r"twitterbot", r"linkedinbot",
        r"whatsapp", r"telegrambot", r"pinterest", r"slackbot",
        # generic
        r"bot", r"crawler", r"spider", r"crawling", r"scraper",
        # tools
        r"curl", r"wget", r"httpie", r"postman",
        # http libraries
        r"python-requests", r"python-urllib", r"java/", r"php/",
        r"go-http-client", r"ruby", r"perl",
        # headless browsers
        r"headless", r"phantom", r"selenium", r"puppeteer", r"playwright",
        # monitoring
        r"uptimerobot", r"pingdom", r"statuscake", r"gtmetrix",
        # SEO tools; moz\.com because "moz" matches every Mozilla UA
        r"ahrefs", r"semrush", r"moz\.com", r"dotbot", r"majestic", r"screaming",
    )
]

BROWSER_RULES = [
    ("Edge", re.compile(r"edg", re.IGNORECASE)),
    ("Opera", re.compile(r"opr|opera", re.IGNORECASE)),
    ("Chrome", re.compile(r"chrome", re.IGNORECASE)),
    ("Safari", re.compile(r"safari", re.IGNORECASE)),
    ("Firefox", re.compile(r"firefox", re.IGNORECASE)),
    ("IE", re.compile(r"msie|trident", re.IGNORECASE)),
]

OS_RULES = [
    ("Windows 10/11", re.compile(r"windows nt 10", re.IGNORECASE)),
    ("Windows", re.compile(r"windows", re.IGNORECASE)),
    ("macOS", re.compile(r"macintosh|mac os x", re.IGNORECASE)),
    ("iOS", re.compile(r"iphone", re.IGNORECASE)),
    ("iPadOS", re.compile(r"ipad", re.IGNORECASE)),
    ("Android", re.compile(r"android", re.IGNORECASE)),
    ("Linux", re.compile(r"linux", re.IGNORECASE)),
    ("ChromeOS", re.compile(r"cros", re.IGNORECASE)),
]

DEVICE_RULES = [
    ("mobile", re.compile(r"mobile|android.*mobile|iphone", re.IGNORECASE)),
    ("tablet", re.compile(r"ipad|tablet|android(?!.*mobile)", re.IGNORECASE)),
]

_LANG_COUNTRY_RE = re.compile(r"[a-z]{2}-([A-Z]{2})")
_PAGE_LANG_RE = re.compile(r"^/(de|es|fr|pt)/?")


def anonymize_ip(ip: Optional[str]) -> str:
    """
    192.168.1.123 -> 192.168.1.xxx
    2001:0db8:85a3:... -> 2001:0db8:85a3::xxx
    """
    if not ip:
        return "unknown"

    parts = ip.split(".")
    if len(parts) == 4:
        return f"{parts[0]}.{parts[1]}.{parts[2]}.xxx"

    v6parts = ip.split(":")
    if len(v6parts) > 3:
        return ":".join(v6parts[:3]) + "::xxx"

    return "unknown"


def is_bot(user_agent: Optional[str]) -> bool:
    if not user_agent:
        return True
    return any(p.search(user_agent) for p in BOT_PATTERNS)


def _first_match(rules, ua: str, default: str) -> str:
    for label, pattern in rules:
        if pattern.search(ua):
            return label
    return default


def detect_browser(ua: Optional[str]) -> str:
    if not ua:
        return "Unknown"
    # Chrome UAs also say Safari, Edge UAs also say Chrome: order matters
    return _first_match(BROWSER_RULES, ua, "Other")


def detect_os(ua: Optional[str]) -> str:
    if not ua:
        return "Unknown"
    return _first_match(OS_RULES, ua, "Other")


def detect_device(ua: Optional[str]) -> str:
    if not ua:
        return "unknown"
    return _first_match(DEVICE_RULES, ua, "desktop")


def clean_referrer(ref: Optional[str], own_domain: str = "allgood.click") -> str:
    """Reduce a referrer to its bare hostname."""
    if not ref:
        return "direct"
    try:
        hostname = urlparse(ref).hostname
    except ValueError:
        return "direct"
    if not hostname:
        return "direct"
    if own_domain and own_domain in hostname:
        return "internal"
    return hostname.replace("www.", "", 1)


def extract_country_from_lang(accept_language: Optional[str]) -> Optional[str]:
    if not accept_language:
        return None
    match = _LANG_COUNTRY_RE.search(accept_language)
    return match.group(1) if match else None


def language_for_page(page: str, accept_language: Optional[str]) -> str:
    match = _PAGE_LANG_RE.match(page or "")
    if match:
        return match.group(1)
    if accept_language:
        primary = accept_language.split(",")[0].split("-")[0].split(";")[0].strip()
        if primary:
            return primary.lower()
    return "en"
