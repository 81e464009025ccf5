import html
import re

TAG_PATTERN = re.compile(r"<[^>]+>")
WHITESPACE_PATTERN = re.compile(r"\s+")
ANCHOR_PATTERN = re.compile(
    r"""<a\s[^>]*?href=["']([^"']+)["'][^>]*>(.*?)</a>""", re.IGNORECASE | re.DOTALL
)
IMG_SRC_PATTERN = re.compile(
    r"""<img\s[^>]*?src=["']([^"']+)["']""", re.IGNORECASE | re.DOTALL
)
IFRAME_SRC_PATTERN = re.compile(
    r"""<iframe\s[^>]*?src=["']([^"']+)["']""", re.IGNORECASE | re.DOTALL
)
PARAGRAPH_PATTERN = re.compile(r"<p[^>]*>(.*?)</p>", re.IGNORECASE | re.DOTALL)
LIST_ITEM_PATTERN = re.compile(r"<li[^>]*>(.*?)</li>", re.IGNORECASE | re.DOTALL)
STRONG_PATTERN = re.compile(r"<strong[^>]*>(.*?)</strong>", re.IGNORECASE | re.DOTALL)

STREAMING_PROVIDERS = {
    "mp4upload": "mp4upload",
    "streamtape": "streamtape",
    "doodstream": "doodstream",
    "dood.": "doodstream",
    "fembed": "fembed",
    "desustream": "desustream",
}

DOWNLOAD_PROVIDERS = {
    "drive.google.com": "Google Drive",
    "mega.nz": "Mega",
    "mediafire": "MediaFire",
    "zippyshare": "ZippyShare",
    "pixeldrain": "Pixeldrain",
    "krakenfiles": "KrakenFiles",
}


def clean_text(fragment: str):
    if not fragment:
        return ""
    text = TAG_PATTERN.sub(" ", fragment)
    text = html.unescape(text)
    return WHITESPACE_PATTERN.sub(" ", text).strip()


def blocks_by_class(page: str, class_name: str, end_tag: str):
    """Slices starting at each element carrying `class_name` and ending at the next `end_tag`."""
    class_pattern = re.compile(
        r"""class=["'](?:[^"']*\s)?"""
        + re.escape(class_name)
        + r"""(?:\s[^"']*)?["']""",
        re.IGNORECASE,
    )
    end_pattern = re.compile(re.escape(end_tag), re.IGNORECASE)

    blocks = []
    for match in class_pattern.finditer(page):
        tag_close = page.find(">", match.end())
        start = tag_close + 1 if tag_close != -1 else match.end()
        end = end_pattern.search(page, start)
        stop = end.start() if end else len(page)
        blocks.append(page[start:stop])
    return blocks


def first_block(page: str, class_name: str, end_tag: str):
    blocks = blocks_by_class(page, class_name, end_tag)
    return blocks[0] if blocks else None


def anchors(fragment: str):
    return [
        (html.unescape(href.strip()), clean_text(text))
        for href, text in ANCHOR_PATTERN.findall(fragment or "")
    ]


def first_image(fragment: str):
    match = IMG_SRC_PATTERN.search(fragment or "")
    return html.unescape(match.group(1).strip()) if match else None


def iframe_sources(fragment: str):
    return [html.unescape(src.strip()) for src in IFRAME_SRC_PATTERN.findall(fragment or "")]


def paragraphs(fragment: str):
    return [clean_text(p) for p in PARAGRAPH_PATTERN.findall(fragment or "")]


def list_items(fragment: str):
    return LIST_ITEM_PATTERN.findall(fragment or "")


def strong_text(fragment: str):
    match = STRONG_PATTERN.search(fragment or "")
    return clean_text(match.group(1)) if match else ""


def tag_text(fragment: str, tag: str):
    pattern = re.compile(
        rf"<{tag}(?:\s[^>]*)?>(.*?)</{tag}>", re.IGNORECASE | re.DOTALL
    )
    match = pattern.search(fragment or "")
    return clean_text(match.group(1)) if match else ""


def detect_provider(url: str, providers: dict, default: str = "unknown"):
    lowered = url.lower()
    for needle, provider in providers.items():
        if needle in lowered:
            return provider
    return default
