"""
Очистка пользовательского ввода.
"""

import html
import re
from pathlib import Path
from urllib.parse import urlparse


MAX_TEXT_LENGTH = 5000
MAX_HTML_LENGTH = 10000
ALLOWED_HTML_TAGS = ("p", "br", "strong", "em", "u", "code", "pre")

_TAG_RE = re.compile(r"<[^>]*>")
_JS_SCHEME_RE = re.compile(r"javascript\s*:", re.IGNORECASE)
_DATA_HTML_RE = re.compile(r"data\s*:\s*text/html", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"\bon\w+\s*=", re.IGNORECASE)
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_ANY_TAG_RE = re.compile(r"<\s*(/?)\s*([a-zA-Z0-9]+)[^>]*>")
_FILENAME_BAD_CHARS_RE = re.compile(r"[^\w.\-]")


def sanitize_text(text: str) -> str:
    """
    Убирает из текста HTML и опасные конструкции.

    Теги удаляются до и после декодирования сущностей, поэтому
    &lt;script&gt; тоже не проходит.
    """
    if not text:
        return ""
    cleaned = _TAG_RE.sub("", str(text))
    cleaned = html.unescape(cleaned)
    cleaned = _TAG_RE.sub("", cleaned)
    cleaned = _JS_SCHEME_RE.sub("", cleaned)
    cleaned = _DATA_HTML_RE.sub("", cleaned)
    cleaned = _EVENT_HANDLER_RE.sub("", cleaned)
    return cleaned[:MAX_TEXT_LENGTH].strip()


def sanitize_html(content: str) -> str:
    """Оставляет только простые теги форматирования без атрибутов."""
    if not content:
        return ""

    def _replace(match: re.Match) -> str:
        closing, tag = match.group(1), match.group(2).lower()
        if tag not in ALLOWED_HTML_TAGS:
            return ""
        if tag == "br":
            return "<br>"
        return f"<{closing}{tag}>"

    cleaned = _ANY_TAG_RE.sub(_replace, str(content))
    cleaned = _JS_SCHEME_RE.sub("", cleaned)
    cleaned = _EVENT_HANDLER_RE.sub("", cleaned)
    return cleaned[:MAX_HTML_LENGTH].strip()


def is_valid_email(email: str) -> bool:
    if not email or len(email) > 254:
        return False
    return bool(_EMAIL_RE.match(email))


def is_valid_url(url: str) -> bool:
    """Разрешены только абсолютные http/https ссылки."""
    if not url:
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def sanitize_filename(filename: str) -> str:
    """Безопасное имя файла без путей и спецсимволов."""
    name = Path(filename or "").name
    name = _FILENAME_BAD_CHARS_RE.sub("_", name)
    name = name.lstrip(".")
    return name[:255] or "file"
