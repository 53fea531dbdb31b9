import logging
from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=10,   # 初始重试延迟（秒），指数退避会乘以 2^retry_count
    acks_late=True,           # 任务执行完才 ack，防止 worker 崩溃时任务丢失
    reject_on_worker_lost=True,
)
def delete_orphaned_artifact(self, key: str):
    """
    回收孤儿文件：文件已上传，但 report 写入失败。

    只删没有任何 report 引用的对象（写入可能在稍后被重试成功）。

    重试策略：
      - 最多重试 3 次
      - 指数退避：10s → 20s → 40s
      - 超出次数后放弃，留给人工清理
    """
    from medivault.exceptions import StorageAccessError
    from medivault.models import Report
    from medivault.storage.factory import get_artifact_store

    logger.info("[Celery][delete_orphaned_artifact] key=%s (attempt %d/%d)",
                key, self.request.retries + 1, self.max_retries + 1)

    if Report.objects.filter(file_url=key).exists():
        logger.info("[Celery] %s is referenced by a report, keeping it", key)
        return False

    store = get_artifact_store()
    try:
        store.delete(store.ref_for(key))
    except StorageAccessError:
        # 权限问题重试也没用
        logger.error("[Celery] no permission to delete %s, giving up", key)
        raise
    except Exception as exc:
        logger.warning("[Celery] deleting %s failed (attempt %d): %s",
                       key, self.request.retries + 1, str(exc))
        if self.request.retries < self.max_retries:
            countdown = self.default_retry_delay * (2 ** self.request.retries)
            logger.info("[Celery] 将在 %ds 后重试 (第 %d 次)...", countdown, self.request.retries + 1)
            raise self.retry(exc=exc, countdown=countdown)
        logger.error("[Celery] %s 已达最大重试次数，放弃回收", key)
        raise

    logger.info("[Celery] orphaned artifact %s deleted", key)
    return True
