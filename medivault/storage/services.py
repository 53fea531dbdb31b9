"""
具体对象存储实现。

新增存储后端：在此文件添加一个类，然后在 factory.py 注册即可。

已注册后端：
  minio — MinioArtifactStore  (MinIO / S3 兼容存储)
  local — LocalArtifactStore  (本地磁盘，签名 URL 由 /api/artifacts/ 视图校验后下发文件)
"""

import io
import json
import logging
import os
from datetime import timedelta

from django.core import signing
from django.core.files.base import ContentFile
from django.core.files.storage import FileSystemStorage

from ..exceptions import StorageAccessError, TransientIOError
from .base import BaseArtifactStore
from .types import ArtifactRef

logger = logging.getLogger(__name__)


# ── MinioArtifactStore ─────────────────────────────────────────────────────
#
# 使用 minio SDK。
# 配置：MINIO_ENDPOINT / MINIO_ACCESS_KEY / MINIO_SECRET_KEY / MINIO_USE_SSL / MINIO_PUBLIC_URL
# 公开容器通过 bucket policy 开放匿名 GetObject。

# 这些 S3 错误码说明是权限 / 凭证问题，重试没用
PERMISSION_ERROR_CODES = {
    "AccessDenied",
    "AllAccessDisabled",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
}
ALREADY_EXISTS_CODES = {
    "BucketAlreadyOwnedByYou",
    "BucketAlreadyExists",
}


def public_read_policy(bucket: str) -> str:
    return json.dumps({
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {"AWS": ["*"]},
                "Action": ["s3:GetObject"],
                "Resource": [f"arn:aws:s3:::{bucket}/*"],
            }
        ],
    })


def grants_public_read(policy, bucket: str) -> bool:
    """bucket policy 是否允许匿名 GetObject 读取 bucket 下所有对象。"""
    try:
        document = json.loads(policy or "{}")
    except (TypeError, ValueError):
        return False

    def as_list(value):
        return value if isinstance(value, list) else [value]

    for statement in document.get("Statement", []):
        if statement.get("Effect") != "Allow":
            continue
        principal = statement.get("Principal")
        if isinstance(principal, dict):
            principal = principal.get("AWS")
        if "*" not in as_list(principal):
            continue
        actions = as_list(statement.get("Action"))
        resources = as_list(statement.get("Resource"))
        if ("s3:GetObject" in actions or "s3:*" in actions) and f"arn:aws:s3:::{bucket}/*" in resources:
            return True
    return False


# 进程内缓存：(endpoint, bucket) → 是否可匿名读。
# store 每个请求新建一次，公开与否必须以 bucket 实际策略为准，不能只看本实例。
_public_access_cache: dict[tuple[str, str], bool] = {}


class MinioArtifactStore(BaseArtifactStore):

    def __init__(self, container, public=True, max_bytes=None, client=None,
                 endpoint=None, access_key=None, secret_key=None, secure=False, public_base_url=""):
        super().__init__(container, public=public, max_bytes=max_bytes)
        self._client = client
        self._endpoint = endpoint
        self._access_key = access_key
        self._secret_key = secret_key
        self._secure = secure
        self.public_base_url = (public_base_url or "").rstrip("/")

    @property
    def client(self):
        if self._client is None:
            from minio import Minio

            self._client = Minio(
                self._endpoint,
                access_key=self._access_key,
                secret_key=self._secret_key,
                secure=self._secure,
            )
        return self._client

    def _translate(self, operation: str, exc: Exception):
        """SDK 异常 → StorageAccessError / TransientIOError。"""
        from minio.error import S3Error

        if isinstance(exc, S3Error) and exc.code in PERMISSION_ERROR_CODES:
            logger.error("[storage] %s denied on %r: %s", operation, self.container, exc.code)
            return StorageAccessError(
                message=(
                    "Insufficient storage permissions: the storage account is not allowed to "
                    f"{operation} for container '{self.container}'. Ask an administrator to "
                    "grant access."
                ),
                detail={"operation": operation, "container": self.container, "backend_code": exc.code},
            )

        logger.warning("[storage] %s failed on %r: %r", operation, self.container, exc)
        return TransientIOError(
            message=f"Object storage is unavailable ({operation}). Please retry.",
            detail={"operation": operation, "container": self.container},
        )

    def _sdk_errors(self):
        from minio.error import MinioException
        from urllib3.exceptions import HTTPError

        return (MinioException, HTTPError, OSError)

    def _list_containers(self) -> list[str]:
        try:
            return [b.name for b in self.client.list_buckets()]
        except self._sdk_errors() as exc:
            raise self._translate("list containers", exc) from exc

    def _create_container(self) -> None:
        from minio.error import S3Error

        try:
            self.client.make_bucket(self.container)
        except S3Error as exc:
            if exc.code not in ALREADY_EXISTS_CODES:
                raise self._translate("create container", exc) from exc
            logger.info("[storage] container %r was created concurrently", self.container)
        except self._sdk_errors() as exc:
            raise self._translate("create container", exc) from exc

        if self.public:
            try:
                self.client.set_bucket_policy(self.container, public_read_policy(self.container))
            except self._sdk_errors() as exc:
                # 开放策略失败不影响上传，退回私有容器 + 签名 URL
                logger.warning("[storage] public policy on %r failed, falling back to signed URLs: %r",
                               self.container, exc)
                self.public = False
        _public_access_cache[self._cache_key] = self.public

    @property
    def _cache_key(self) -> tuple[str, str]:
        return (self._endpoint or "", self.container)

    def bucket_is_public(self) -> bool:
        """读取 bucket policy 判断是否可匿名读；读不到时按私有处理（签名 URL 总是可用）。"""
        from minio.error import S3Error

        key = self._cache_key
        if key in _public_access_cache:
            return _public_access_cache[key]

        try:
            policy = self.client.get_bucket_policy(self.container)
        except S3Error as exc:
            if exc.code != "NoSuchBucketPolicy":
                logger.warning("[storage] reading policy of %r failed: %s", self.container, exc.code)
                return False
            policy = ""
        except self._sdk_errors() as exc:
            logger.warning("[storage] reading policy of %r failed: %r", self.container, exc)
            return False

        _public_access_cache[key] = grants_public_read(policy, self.container)
        return _public_access_cache[key]

    def resolve_access_url(self, ref: ArtifactRef, ttl_seconds: int) -> str:
        if self.public and self.bucket_is_public():
            return self.public_url(ref)
        return self.signed_url(ref, ttl_seconds)

    def _put(self, key: str, data: bytes, content_type: str) -> None:
        try:
            self.client.put_object(
                self.container,
                key,
                io.BytesIO(data),
                length=len(data),
                content_type=content_type,
            )
        except self._sdk_errors() as exc:
            raise self._translate("upload", exc) from exc

    def public_url(self, ref: ArtifactRef) -> str:
        return f"{self.public_base_url}/{ref.container}/{ref.key}"

    def signed_url(self, ref: ArtifactRef, ttl_seconds: int) -> str:
        try:
            return self.client.presigned_get_object(
                ref.container,
                ref.key,
                expires=timedelta(seconds=ttl_seconds),
            )
        except self._sdk_errors() as exc:
            raise self._translate("sign URL", exc) from exc

    def delete(self, ref: ArtifactRef) -> None:
        try:
            self.client.remove_object(ref.container, ref.key)
        except self._sdk_errors() as exc:
            raise self._translate("delete", exc) from exc


# ── LocalArtifactStore ─────────────────────────────────────────────────────
#
# 使用 Django FileSystemStorage，每个容器是 ARTIFACT_LOCAL_ROOT 下的一个子目录。
# 签名 URL：{base_url}{container}/{key}?token=...，token 由 TimestampSigner 生成，
# 内含 ttl，下载视图用 max_age=ttl 校验。

SIGNING_SALT = "medivault.artifacts"


class LocalArtifactStore(BaseArtifactStore):

    def __init__(self, container, public=True, max_bytes=None, root="", base_url="/api/artifacts/"):
        super().__init__(container, public=public, max_bytes=max_bytes)
        self.root = root
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.signer = signing.TimestampSigner(salt=SIGNING_SALT)

    @property
    def container_path(self) -> str:
        return os.path.join(self.root, self.container)

    @property
    def storage(self) -> FileSystemStorage:
        return FileSystemStorage(location=self.container_path)

    def _translate(self, operation: str, exc: OSError):
        if isinstance(exc, PermissionError):
            logger.error("[storage] %s denied on %r: %s", operation, self.container_path, exc)
            return StorageAccessError(
                message=(
                    "Insufficient storage permissions: the server cannot "
                    f"{operation} for container '{self.container}'. Ask an administrator to "
                    "fix the storage directory permissions."
                ),
                detail={"operation": operation, "container": self.container},
            )
        logger.warning("[storage] %s failed on %r: %r", operation, self.container_path, exc)
        return TransientIOError(
            message=f"Object storage is unavailable ({operation}). Please retry.",
            detail={"operation": operation, "container": self.container},
        )

    def _list_containers(self) -> list[str]:
        try:
            if not os.path.isdir(self.root):
                return []
            return [
                name for name in os.listdir(self.root)
                if os.path.isdir(os.path.join(self.root, name))
            ]
        except OSError as exc:
            raise self._translate("list containers", exc) from exc

    def _create_container(self) -> None:
        try:
            os.makedirs(self.container_path)
        except FileExistsError:
            logger.info("[storage] container %r was created concurrently", self.container)
        except OSError as exc:
            raise self._translate("create container", exc) from exc

    def _put(self, key: str, data: bytes, content_type: str) -> None:
        try:
            saved = self.storage.save(key, ContentFile(data))
        except OSError as exc:
            raise self._translate("upload", exc) from exc
        if saved != key:
            # FileSystemStorage 遇到同名文件会改名；key 冲突说明随机数出了问题
            self.storage.delete(saved)
            raise TransientIOError(
                message="Generated storage key collided with an existing file. Please retry.",
                detail={"key": key},
            )

    def public_url(self, ref: ArtifactRef) -> str:
        return f"{self.base_url}{ref.container}/{ref.key}"

    def signed_url(self, ref: ArtifactRef, ttl_seconds: int) -> str:
        token = self.signer.sign_object({"p": f"{ref.container}/{ref.key}", "ttl": ttl_seconds})
        return f"{self.public_url(ref)}?token={token}"

    def verify_token(self, ref: ArtifactRef, token: str) -> bool:
        """token 属于这个对象且没有过期。"""
        try:
            payload = self.signer.unsign_object(token)
            self.signer.unsign_object(token, max_age=payload["ttl"])
        except (signing.BadSignature, KeyError, TypeError):
            return False
        return payload.get("p") == f"{ref.container}/{ref.key}"

    def open(self, ref: ArtifactRef):
        try:
            return self.storage.open(ref.key, "rb")
        except OSError as exc:
            raise self._translate("read", exc) from exc

    def exists(self, ref: ArtifactRef) -> bool:
        return self.storage.exists(ref.key)

    def delete(self, ref: ArtifactRef) -> None:
        try:
            self.storage.delete(ref.key)
        except OSError as exc:
            raise self._translate("delete", exc) from exc
