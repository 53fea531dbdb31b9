"""
Unit tests for PatientRegistrar.

覆盖：
1. 校验：空姓名 / 空电话 / 无数字电话 / 错误邮箱
2. 成功注册：返回 id + name，不需要再查一次
3. 同号码（格式不同）重复注册 → ConflictError，带 existing_id
4. resolve 和 insert 之间被并发抢先 → 唯一约束兜底 → ConflictError
5. resolve → register → resolve 场景
"""
import pytest
from unittest.mock import patch

from medivault.exceptions import ConflictError, ValidationError
from medivault.models import Patient, Profile
from medivault.records.types import Found, NotFound
from medivault.services import PatientRegistrar, PatientResolver
from tests.conftest import PatientProfileFactory


@pytest.mark.django_db
class TestRegisterValidation:

    @pytest.mark.parametrize('name,phone,email,field', [
        ('', '5551234567', None, 'name'),
        ('   ', '5551234567', None, 'name'),
        ('Alice', '', None, 'phone'),
        ('Alice', 'no digits', None, 'phone'),
        ('Alice', '5551234567', 'not-an-email', 'email'),
    ])
    def test_invalid_input(self, profiles_store, name, phone, email, field):
        with pytest.raises(ValidationError) as exc_info:
            PatientRegistrar(profiles_store).register(name, phone, email)

        fields = [e['field'] for e in exc_info.value.detail['errors']]
        assert fields == [field]
        assert Profile.objects.count() == 0

    def test_collects_all_errors(self, profiles_store):
        with pytest.raises(ValidationError) as exc_info:
            PatientRegistrar(profiles_store).register('', '', 'bad')

        fields = {e['field'] for e in exc_info.value.detail['errors']}
        assert fields == {'name', 'phone', 'email'}

    def test_blank_email_treated_as_missing(self, profiles_store):
        identity = PatientRegistrar(profiles_store).register('Alice', '5551234567', '  ')
        assert identity.email is None


@pytest.mark.django_db
class TestRegisterSuccess:

    def test_returns_created_identity(self, profiles_store):
        identity = PatientRegistrar(profiles_store).register('Alice', '(555) 123-4567', 'alice@example.com')

        row = Profile.objects.get(id=identity.id)
        assert identity.display_name == 'Alice'
        assert row.user_type == 'patient'
        # 保存原始格式，比较列存数字
        assert row.phone == '(555) 123-4567'
        assert row.phone_digits == '5551234567'
        assert row.email == 'alice@example.com'

    def test_split_schema_writes_patients_table(self, split_store):
        identity = PatientRegistrar(split_store).register('Jane', '555-123-4567', None)

        row = Patient.objects.get(id=identity.id)
        assert row.name == 'Jane'
        assert row.phone_number == '555-123-4567'
        assert Profile.objects.count() == 0


@pytest.mark.django_db
class TestRegisterConflict:

    def test_same_digits_different_format_conflicts(self, profiles_store):
        registrar = PatientRegistrar(profiles_store)
        first = registrar.register('Alice', '555-123-4567')

        with pytest.raises(ConflictError) as exc_info:
            registrar.register('Alice Again', '(555) 123 4567')

        assert exc_info.value.code == 'DUPLICATE_PHONE'
        assert exc_info.value.http_status == 409
        assert exc_info.value.detail['existing_id'] == str(first.id)
        assert Profile.objects.filter(user_type='patient').count() == 1

    def test_race_caught_by_unique_constraint(self, profiles_store):
        winner = PatientProfileFactory(phone='555-123-4567')
        real_lookup = profiles_store.find_patient_by_phone_key
        calls = []

        def lookup(digits):
            # 第一次（插入前检查）假装还没人注册，模拟并发窗口
            calls.append(digits)
            return None if len(calls) == 1 else real_lookup(digits)

        with patch.object(profiles_store, 'find_patient_by_phone_key', side_effect=lookup):
            with pytest.raises(ConflictError) as exc_info:
                PatientRegistrar(profiles_store).register('Loser', '5551234567')

        assert exc_info.value.detail['existing_id'] == str(winner.id)
        assert Profile.objects.filter(user_type='patient').count() == 1

    def test_race_in_split_schema(self, split_store):
        registrar = PatientRegistrar(split_store)
        registrar.register('Jane', '555-123-4567')

        with patch.object(split_store, 'find_patient_by_phone_key', return_value=None):
            with pytest.raises(ConflictError):
                registrar.register('Jane Again', '5551234567')

        assert Patient.objects.count() == 1

    def test_fullwidth_digits_cannot_register_duplicate(self, profiles_store):
        registrar = PatientRegistrar(profiles_store)
        registrar.register('Alice', '5551234567')

        with pytest.raises(ValidationError) as exc_info:
            registrar.register('Alice2', '５５５１２３４５６７')

        assert [e['field'] for e in exc_info.value.detail['errors']] == ['phone']
        assert Profile.objects.filter(user_type='patient').count() == 1


@pytest.mark.django_db
class TestResolveRegisterScenario:

    @pytest.mark.parametrize('store_fixture', ['profiles_store', 'split_store'])
    def test_not_found_then_register_then_found(self, request, store_fixture):
        store = request.getfixturevalue(store_fixture)
        resolver = PatientResolver(store)

        assert isinstance(resolver.resolve('555-123-4567'), NotFound)

        identity = PatientRegistrar(store).register('Alice', '5551234567', None)

        assert resolver.resolve('(555) 123-4567') == Found(id=identity.id, name='Alice')
