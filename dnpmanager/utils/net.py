"""网络工具 — URL 校验与拼接"""

from __future__ import annotations

from urllib.parse import urlparse

from dnpmanager.core.exceptions import ValidationError

_ALLOWED_SCHEMES = frozenset(("http", "https"))


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，仅支持 http/https: {url}"
        )


def join_url(base: str, path: str) -> str:
    """拼接 base 与 path，去掉多余的 '/'"""
    return f"{base.rstrip('/')}/{path.lstrip('/')}"
