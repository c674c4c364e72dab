"""版本选择器 — 内容哈希 / semver 范围 / latest

范围语法沿用 npm（^ ~ x-range 连字符范围），由 semantic_version.NpmSpec 解析。
"""

from __future__ import annotations

import re
from enum import Enum

import semantic_version

LATEST = "latest"

# CIDv0 (Qm + 44 位 base58) 或 CIDv1 (base32, b 开头)
_HASH_RE = re.compile(r"^(?:/ipfs/)?(Qm[1-9A-HJ-NP-Za-km-z]{44}|b[a-z2-7]{58,})$")


class SelectorKind(str, Enum):
    """版本选择器类型"""
    HASH = "hash"
    RANGE = "range"
    LATEST = "latest"


def is_hash(value: str) -> bool:
    return bool(_HASH_RE.match(value.strip()))


def normalize_hash(value: str) -> str:
    """去掉 /ipfs/ 前缀，返回裸哈希"""
    m = _HASH_RE.match(value.strip())
    if not m:
        raise ValueError(f"不是合法的内容哈希: {value}")
    return m.group(1)


def selector_kind(selector: str) -> SelectorKind:
    s = (selector or "").strip()
    if not s or s in (LATEST, "*"):
        return SelectorKind.LATEST
    if is_hash(s):
        return SelectorKind.HASH
    return SelectorKind.RANGE


def parse_version(version: str) -> semantic_version.Version | None:
    try:
        return semantic_version.Version(version)
    except ValueError:
        return None


def parse_range(spec: str) -> semantic_version.NpmSpec:
    """解析 npm 风格范围，非法时抛 ValueError"""
    return semantic_version.NpmSpec(spec.strip())


def satisfies(version: str, spec: str) -> bool:
    """version 是否满足 semver 范围 spec；任一方不合法视为不满足"""
    ver = parse_version(version)
    if ver is None:
        return False
    try:
        return parse_range(spec).match(ver)
    except ValueError:
        return False


def highest_satisfying(candidates: list[str], spec: str | None = None) -> str | None:
    """从候选版本中挑出满足 spec 的最高版本（spec 为空则取最高版本）

    预发布版本只有在 spec 明确包含时才会被选中。
    """
    parsed = {}
    for c in candidates:
        v = parse_version(c)
        if v is not None:
            parsed[v] = c
    if spec is None:
        stable = [v for v in parsed if not v.prerelease]
        pool = stable or list(parsed)
    else:
        npm_spec = parse_range(spec)
        pool = [v for v in parsed if npm_spec.match(v)]
    if not pool:
        return None
    return parsed[max(pool)]


def is_newer(version: str, than: str) -> bool:
    """version 是否严格高于 than（不合法版本号视为不高于）"""
    a, b = parse_version(version), parse_version(than)
    if a is None or b is None:
        return False
    return a > b
