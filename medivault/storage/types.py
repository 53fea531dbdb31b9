"""
存储层的标准引用结构。

Report.file_url 只存 key；container 由当前 ArtifactStore 决定。
访问 URL（公开或签名）每次读取时重新生成，不缓存。
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ArtifactRef:
    key: str           # {epochMillis}-{randomToken}.{ext}
    container: str
