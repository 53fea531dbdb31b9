import mimetypes

from django.conf import settings
from django.http import FileResponse, JsonResponse
from rest_framework.views import APIView

from .exceptions import NotFoundError
from .serializers import (
    serialize_patient,
    serialize_registered_patient,
    serialize_report_list,
    serialize_upload_outcome,
)
from .services import (
    get_patient_registrar,
    get_patient_resolver,
    get_report_query_service,
    get_upload_service,
)
from .storage.factory import get_artifact_store
from .storage.services import LocalArtifactStore


def _url_ttl():
    return settings.ARTIFACT_URL_TTL_SECONDS


class PatientLookupView(APIView):
    """POST /api/patients/lookup/ - Find a patient by (free-form) phone number"""

    def post(self, request):
        found = get_patient_resolver().require(request.data.get('phone'))
        return JsonResponse(serialize_patient(found))


class PatientRegisterView(APIView):
    """POST /api/patients/ - Register a new patient"""

    def post(self, request):
        data = request.data
        identity = get_patient_registrar().register(
            data.get('name'),
            data.get('phone'),
            data.get('email'),
        )
        return JsonResponse(serialize_registered_patient(identity), status=201)


class PatientReportsView(APIView):
    """GET /api/patients/<patient_id>/reports/ - Reports for one patient, newest first"""

    def get(self, request, patient_id):
        reports = get_report_query_service().list_by_patient(patient_id)
        return JsonResponse(serialize_report_list(reports, get_artifact_store(), _url_ttl()))


class LabReportsView(APIView):
    """GET /api/labs/reports/?lab=<name> - Reports uploaded under a lab label, newest first"""

    def get(self, request):
        reports = get_report_query_service().list_by_lab(request.query_params.get('lab'))
        return JsonResponse(serialize_report_list(reports, get_artifact_store(), _url_ttl()))


class ReportUploadView(APIView):
    """
    POST /api/reports/ - Link a report (and optional file) to a patient

    multipart 字段：phone 或 patient_id、center_name 或 center_id、name、type、
    可选 file / patient_name / patient_email / uploaded_by。
    """

    def post(self, request):
        data = request.data
        upload = request.FILES.get('file')

        service = get_upload_service()
        outcome = service.upload_report(
            report_name=data.get('name'),
            report_type=data.get('type'),
            phone=data.get('phone'),
            patient_id=data.get('patient_id') or None,
            center_label=data.get('center_name'),
            uploaded_by=data.get('uploaded_by') or data.get('center_id') or None,
            file_name=upload.name if upload else None,
            file_data=upload,
            content_type=upload.content_type if upload else None,
            patient_name=data.get('patient_name'),
            patient_email=data.get('patient_email'),
        )
        return JsonResponse(
            serialize_upload_outcome(outcome, service.artifact_store, _url_ttl()),
            status=201,
        )


class StorageEnsureView(APIView):
    """POST /api/storage/ensure/ - Make sure the report container exists"""

    def post(self, request):
        store = get_artifact_store()
        store.ensure_container()
        return JsonResponse({'container': store.container, 'public': store.public})


class ArtifactDownloadView(APIView):
    """GET /api/artifacts/<container>/<key>?token= - Serve a file from the local artifact store"""

    def get(self, request, container, key):
        store = get_artifact_store()
        if not isinstance(store, LocalArtifactStore) or container != store.container:
            raise NotFoundError('File not found', code='ARTIFACT_NOT_FOUND')

        ref = store.ref_for(key)
        if not store.public and not store.verify_token(ref, request.query_params.get('token', '')):
            raise NotFoundError('This file link is invalid or has expired.', code='ARTIFACT_LINK_EXPIRED')
        if not store.exists(ref):
            raise NotFoundError('File not found', code='ARTIFACT_NOT_FOUND')

        content_type = mimetypes.guess_type(key)[0] or 'application/octet-stream'
        return FileResponse(store.open(ref), content_type=content_type)
