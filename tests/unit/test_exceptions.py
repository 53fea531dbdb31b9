"""
Unit tests for exception classes and unified_exception_handler.

不需要数据库，纯 Python 测试：
1. BaseAppException 默认值
2. 各子类的默认 type / code / http_status
3. 构造时覆盖 code / http_status
4. detail 可选
5. unified_exception_handler 经由 APIView 把异常转成正确的 JsonResponse
"""
import json
import pytest
from django.http import JsonResponse
from rest_framework.exceptions import ParseError
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.test import APIRequestFactory
from rest_framework.views import APIView

from medivault.exceptions import (
    BaseAppException,
    ConflictError,
    NotFoundError,
    StorageAccessError,
    TransientIOError,
    ValidationError,
)


# -------------------------------------------------------------------
# Exception classes
# -------------------------------------------------------------------

class TestBaseAppException:

    def test_defaults(self):
        exc = BaseAppException('something broke')
        assert exc.message == 'something broke'
        assert exc.type == 'error'
        assert exc.code == 'UNKNOWN_ERROR'
        assert exc.http_status == 500
        assert exc.detail is None

    def test_override_code_and_status(self):
        exc = BaseAppException('bad', code='CUSTOM_CODE', http_status=418)
        assert exc.code == 'CUSTOM_CODE'
        assert exc.http_status == 418

    def test_detail_preserved(self):
        exc = BaseAppException('bad', detail={'key': 'value'})
        assert exc.detail == {'key': 'value'}


@pytest.mark.parametrize('cls,type_,code,status', [
    (ValidationError, 'validation_error', 'VALIDATION_ERROR', 400),
    (NotFoundError, 'not_found', 'NOT_FOUND', 404),
    (ConflictError, 'conflict', 'CONFLICT', 409),
    (StorageAccessError, 'storage_access', 'STORAGE_PERMISSION_DENIED', 403),
    (TransientIOError, 'transient_io', 'BACKEND_UNAVAILABLE', 503),
])
def test_subclass_defaults(cls, type_, code, status):
    exc = cls('msg')
    assert isinstance(exc, BaseAppException)
    assert (exc.type, exc.code, exc.http_status) == (type_, code, status)


def test_custom_code_keeps_status():
    exc = NotFoundError('no patient', code='PATIENT_NOT_FOUND')
    assert exc.code == 'PATIENT_NOT_FOUND'
    assert exc.http_status == 404  # status 没变


def test_subclass_default_code_not_shared():
    NotFoundError('a', code='PATIENT_NOT_FOUND')
    assert NotFoundError('b').code == 'NOT_FOUND'


# -------------------------------------------------------------------
# unified_exception_handler
# -------------------------------------------------------------------

class _RaisingView(APIView):
    """测试用 APIView，抛出类属性上配置的异常。"""

    exc_to_raise = None

    def get(self, request):
        if self.exc_to_raise:
            raise self.exc_to_raise
        return JsonResponse({'ok': True})


class TestUnifiedExceptionHandler:

    def _call(self, exc):
        _RaisingView.exc_to_raise = exc
        return _RaisingView.as_view()(APIRequestFactory().get('/'))

    def test_no_exception_passes_through(self):
        response = self._call(None)
        assert response.status_code == 200

    def test_conflict_returns_409(self):
        response = self._call(ConflictError(
            'dup', code='DUPLICATE_PHONE', detail={'existing_id': 'abc'}
        ))

        assert response.status_code == 409
        body = json.loads(response.content)
        assert body['type'] == 'conflict'
        assert body['code'] == 'DUPLICATE_PHONE'
        assert body['detail']['existing_id'] == 'abc'

    def test_validation_error_returns_400(self):
        response = self._call(ValidationError('bad input'))

        assert response.status_code == 400
        assert json.loads(response.content)['type'] == 'validation_error'

    def test_storage_access_returns_403(self):
        response = self._call(StorageAccessError('Insufficient storage permissions'))

        assert response.status_code == 403
        body = json.loads(response.content)
        assert body['code'] == 'STORAGE_PERMISSION_DENIED'
        assert 'permissions' in body['message']

    def test_transient_returns_503(self):
        response = self._call(TransientIOError('down', detail={'operation': 'insert_report'}))

        assert response.status_code == 503
        assert json.loads(response.content)['detail'] == {'operation': 'insert_report'}

    def test_no_detail_field_when_none(self):
        body = json.loads(self._call(NotFoundError('gone')).content)
        assert 'detail' not in body

    def test_drf_validation_error_uses_same_envelope(self):
        response = self._call(DRFValidationError({'phone': ['This field is required.']}))

        assert response.status_code == 400
        body = json.loads(response.content)
        assert body['type'] == 'validation_error'
        assert body['detail']['phone'] == ['This field is required.']

    def test_other_api_exceptions_use_drf_default(self):
        response = self._call(ParseError('malformed JSON'))

        assert response.status_code == 400
        assert response.data == {'detail': 'malformed JSON'}

    def test_non_app_exception_not_caught(self):
        """非 API 异常不被处理器吞掉，应正常冒泡。"""
        with pytest.raises(RuntimeError):
            self._call(RuntimeError('unexpected'))
