"""内容寻址存储客户端

ContentStore 协议只有两个操作:
  - cat(hash): 读取文件内容
  - ls(hash):  列出目录条目（对文件返回空列表）

IpfsHttpStore 通过 IPFS HTTP API 实现。每次调用都从 Config 读取 fetch_timeout，
运行期修改超时后立即生效。
"""

from __future__ import annotations

import json
import logging
import socket
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol
from urllib.parse import quote

from dnpmanager.core.exceptions import ContentStoreError, FetchTimeoutError, NotFoundError
from dnpmanager.utils.net import join_url, validate_url_scheme

if TYPE_CHECKING:
    from dnpmanager.core.config import Config

logger = logging.getLogger(__name__)

# IPFS 目录条目类型
_TYPE_DIRECTORY = 1

_NOT_FOUND_HINTS = (b"not found", b"invalid path", b"invalid cid", b"no link named")


@dataclass(frozen=True)
class ContentEntry:
    """目录中的一个条目"""

    name: str
    hash: str
    size: int = 0
    is_dir: bool = False


class ContentStore(Protocol):
    """内容寻址存储协议"""

    def cat(self, content_hash: str) -> bytes:
        """读取文件内容"""
        ...

    def ls(self, content_hash: str) -> list[ContentEntry]:
        """列出目录条目，文件返回空列表"""
        ...


class IpfsHttpStore:
    """IPFS HTTP API 客户端（/api/v0/cat, /api/v0/ls）"""

    def __init__(self, config: Config, api_url: str = "") -> None:
        self.config = config
        self.api_url = api_url or config.ipfs_api_url
        validate_url_scheme(self.api_url, context="IpfsHttpStore api_url")

    def cat(self, content_hash: str) -> bytes:
        return self._call("cat", content_hash)

    def ls(self, content_hash: str) -> list[ContentEntry]:
        raw = self._call("ls", content_hash)
        try:
            data = json.loads(raw)
            objects = data.get("Objects") or []
            links = objects[0].get("Links") or [] if objects else []
        except (ValueError, AttributeError, IndexError) as e:
            raise ContentStoreError(f"ls 响应格式错误 {content_hash}: {e}") from e
        return [
            ContentEntry(
                name=link.get("Name", ""),
                hash=link.get("Hash", ""),
                size=int(link.get("Size") or 0),
                is_dir=link.get("Type") == _TYPE_DIRECTORY,
            )
            for link in links
        ]

    def _call(self, endpoint: str, content_hash: str) -> bytes:
        timeout = self.config.fetch_timeout
        url = join_url(self.api_url, f"api/v0/{endpoint}?arg={quote(content_hash)}")
        req = urllib.request.Request(url, method="POST")
        logger.debug("内容存储请求: %s (timeout=%ss)", url, timeout)
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:  # nosec B310
                return resp.read()
        except urllib.error.HTTPError as e:
            body = e.read() or b""
            if e.code == 404 or any(h in body.lower() for h in _NOT_FOUND_HINTS):
                raise NotFoundError(f"内容不存在: {content_hash}") from e
            raise ContentStoreError(
                f"内容存储返回 {e.code} ({endpoint} {content_hash}): {body[:200]!r}"
            ) from e
        except urllib.error.URLError as e:
            if isinstance(e.reason, (socket.timeout, TimeoutError)):
                raise FetchTimeoutError(
                    f"内容存储超时 {timeout}s: {endpoint} {content_hash}", timeout,
                ) from e
            raise ContentStoreError(f"内容存储不可达 {self.api_url}: {e.reason}") from e
        except (socket.timeout, TimeoutError) as e:
            raise FetchTimeoutError(
                f"内容存储超时 {timeout}s: {endpoint} {content_hash}", timeout,
            ) from e
