"""
Shared fixtures for all tests.

factory-boy factories live here so both unit/ and integration/ can import them.
"""
import pytest
from datetime import date
from django.test import Client
from django.utils import timezone

import factory
from medivault.models import Lab, Patient, Profile, Report
from medivault.phone import phone_key
from medivault.records.adapters import DjangoReportStore, ProfilesIdentityStore, SplitIdentityStore
from medivault.realtime.notify import ReportChangeNotifier
from medivault.storage.services import LocalArtifactStore


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

class PatientProfileFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Profile

    user_type = 'patient'
    full_name = 'John Doe'
    phone = factory.Sequence(lambda n: f'555-010-{1000 + n}')
    phone_digits = factory.LazyAttribute(lambda o: phone_key(o.phone))


class CenterProfileFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Profile

    user_type = 'center'
    center_name = 'Acme Lab'
    phone = factory.Sequence(lambda n: f'555-020-{1000 + n}')
    phone_digits = factory.LazyAttribute(lambda o: phone_key(o.phone))


class SplitPatientFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Patient

    name = 'Jane Roe'
    phone_number = factory.Sequence(lambda n: f'555-030-{1000 + n}')
    phone_digits = factory.LazyAttribute(lambda o: phone_key(o.phone_number))


class LabFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Lab

    name = factory.Sequence(lambda n: f'Lab {n}')


class ReportFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Report

    name = 'CBC'
    type = 'Blood Test'
    lab = 'Acme Lab'
    patient_id = factory.LazyFunction(lambda: PatientProfileFactory().id)
    date = factory.LazyFunction(date.today)
    created_at = factory.LazyFunction(timezone.now)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def artifact_settings(settings, tmp_path):
    """每个测试一个独立的本地存储目录，默认公开容器。"""
    settings.ARTIFACT_STORE_BACKEND = 'local'
    settings.ARTIFACT_LOCAL_ROOT = str(tmp_path / 'artifacts')
    settings.ARTIFACT_CONTAINER = 'reports'
    settings.ARTIFACT_CONTAINER_PUBLIC = True
    settings.ARTIFACT_MAX_BYTES = 1024 * 1024
    return settings


@pytest.fixture
def api_client():
    """Django test client for integration tests."""
    return Client()


@pytest.fixture
def profiles_store():
    return ProfilesIdentityStore()


@pytest.fixture
def split_store():
    return SplitIdentityStore()


@pytest.fixture
def report_store():
    return DjangoReportStore()


@pytest.fixture
def notifier():
    """独立的 notifier，channel layer 关掉，只用进程内回调。"""
    n = ReportChangeNotifier()
    n._channel_layer = None
    n._send_group = lambda scope, event: None
    return n


@pytest.fixture
def local_store(tmp_path):
    return LocalArtifactStore(
        container='reports',
        public=True,
        max_bytes=1024 * 1024,
        root=str(tmp_path / 'store'),
        base_url='/api/artifacts/',
    )


@pytest.fixture
def private_local_store(tmp_path):
    return LocalArtifactStore(
        container='reports',
        public=False,
        max_bytes=1024 * 1024,
        root=str(tmp_path / 'private-store'),
        base_url='/api/artifacts/',
    )
