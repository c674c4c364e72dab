"""发布解析模块

- content_store.py: 内容寻址存储协议与 IPFS HTTP 实现
- index.py:         包名 / 版本 -> 哈希 的发布索引
- fetcher.py:       单个发布解析 + 依赖递归拉取
"""

from dnpmanager.core.release.content_store import ContentEntry, ContentStore, IpfsHttpStore
from dnpmanager.core.release.fetcher import ReleaseFetcher
from dnpmanager.core.release.index import ReleaseIndex

__all__ = [
    "ContentEntry",
    "ContentStore",
    "IpfsHttpStore",
    "ReleaseFetcher",
    "ReleaseIndex",
]
