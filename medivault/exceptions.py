"""
统一异常体系。

所有业务异常继承 BaseAppException，包含：
- type:        错误类型标识（validation_error / not_found / conflict / storage_access / transient_io）
- code:        业务错误码（INVALID_EMAIL / DUPLICATE_PHONE / PATIENT_NOT_FOUND / ...）
- message:     人类可读的描述
- detail:      可选的附加信息（dict / list / None）
- http_status: HTTP 状态码

Service 层只需 raise，exception_handler 统一捕获并格式化响应。
"""


class BaseAppException(Exception):
    """所有业务异常的基类。"""

    type = 'error'
    code = 'UNKNOWN_ERROR'
    http_status = 500

    def __init__(self, message, code=None, detail=None, http_status=None):
        self.message = message
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.detail = detail
        super().__init__(message)


class ValidationError(BaseAppException):
    """调用方输入不满足前置条件（空姓名 / 空电话 / 邮箱格式错误）。400，不重试。"""

    type = 'validation_error'
    code = 'VALIDATION_ERROR'
    http_status = 400


class NotFoundError(BaseAppException):
    """
    找不到目标身份或记录。

    对 resolve 流程来说 NotFound 不是失败，而是触发注册的信号；
    只有在调用方要求"必须存在"时才以异常形式抛出。
    """

    type = 'not_found'
    code = 'NOT_FOUND'
    http_status = 404


class ConflictError(BaseAppException):
    """
    唯一性冲突（同一电话已注册）。

    detail 里尽量带上 existing_id，调用方应重新走 resolve 而不是再次注册。
    """

    type = 'conflict'
    code = 'CONFLICT'
    http_status = 409


class StorageAccessError(BaseAppException):
    """对象存储拒绝列举 / 创建容器。需要管理员改权限配置，重试无用。"""

    type = 'storage_access'
    code = 'STORAGE_PERMISSION_DENIED'
    http_status = 403


class TransientIOError(BaseAppException):
    """网络或后端存储暂时不可用。调用方可以重试，绝不静默吞掉。"""

    type = 'transient_io'
    code = 'BACKEND_UNAVAILABLE'
    http_status = 503
