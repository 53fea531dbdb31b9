"""
Unit tests for serializer functions.

覆盖 report 的 file_url 现算（无文件 / 公开 / 签名）+ upload 结果的 message 分支。
"""
from datetime import date, datetime, timezone as dt_timezone
from uuid import uuid4

from medivault.records.types import Found, PatientIdentity, ReportRecord
from medivault.serializers import (
    serialize_patient,
    serialize_registered_patient,
    serialize_report,
    serialize_report_list,
    serialize_upload_outcome,
)
from medivault.services import UploadOutcome
from medivault.storage.types import ArtifactRef


def make_record(artifact_key=None):
    return ReportRecord(
        id=uuid4(),
        name='CBC',
        type='Blood Test',
        lab='Acme Lab',
        patient_id=uuid4(),
        date=date(2024, 3, 1),
        created_at=datetime(2024, 3, 1, 9, 30, tzinfo=dt_timezone.utc),
        artifact_key=artifact_key,
    )


class TestSerializePatient:

    def test_found(self):
        pid = uuid4()
        assert serialize_patient(Found(id=pid, name='Alice')) == {'id': str(pid), 'name': 'Alice'}

    def test_identity_uses_display_name(self):
        identity = PatientIdentity(id=uuid4(), phone='555', display_name='Alice')
        assert serialize_patient(identity)['name'] == 'Alice'

    def test_registered_patient(self):
        identity = PatientIdentity(id=uuid4(), phone='(555) 123-4567', display_name='Alice')
        body = serialize_registered_patient(identity)

        assert body['phone'] == '(555) 123-4567'
        assert body['email'] is None


class TestSerializeReport:

    def test_without_file(self, local_store):
        body = serialize_report(make_record(), local_store, 60)

        assert body['file_url'] is None
        assert body['date'] == '2024-03-01'
        assert body['created_at'] == '2024-03-01T09:30:00+00:00'
        assert body['uploaded_by'] is None

    def test_public_file(self, local_store):
        body = serialize_report(make_record('1-a.pdf'), local_store, 60)
        assert body['file_url'] == '/api/artifacts/reports/1-a.pdf'

    def test_private_file_is_signed_on_every_read(self, private_local_store):
        body = serialize_report(make_record('1-a.pdf'), private_local_store, 60)

        url = body['file_url']
        assert url.startswith('/api/artifacts/reports/1-a.pdf?token=')
        ref = ArtifactRef(key='1-a.pdf', container='reports')
        assert private_local_store.verify_token(ref, url.split('token=', 1)[1])

    def test_list(self, local_store):
        body = serialize_report_list([make_record(), make_record()], local_store, 60)
        assert body['count'] == 2
        assert len(body['reports']) == 2


class TestSerializeUploadOutcome:

    def test_success_message(self, local_store):
        outcome = UploadOutcome(report=make_record(), patient=Found(id=uuid4(), name='Alice'))
        body = serialize_upload_outcome(outcome, local_store, 60)

        assert body['message'] == 'Report uploaded successfully'
        assert 'warnings' not in body
        assert 'type' not in body

    def test_partial_success_carries_warnings(self, local_store):
        warning = {'code': 'ARTIFACT_UPLOAD_FAILED', 'message': 'x', 'detail': {}}
        outcome = UploadOutcome(
            report=make_record(), patient=Found(id=uuid4(), name='Alice'),
            registered=True, warnings=[warning],
        )
        body = serialize_upload_outcome(outcome, local_store, 60)

        assert body['patient_registered'] is True
        assert body['warnings'] == [warning]
        assert body['message'] == 'Report saved, but the file could not be stored'
