import hmac
import logging

from django.conf import settings
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView, exception_handler

from dispatch.errors import InvalidTransition, NeedNotFound, OfferNotFound, QuantityBelowAccepted, StorageError

from .models import Project, VacancyNeed
from .serializers import (
    ProjectSerializer,
    QuantitySerializer,
    RespondSerializer,
    VacancyNeedSerializer,
    conflict_data,
    dispatch_result_data,
    preview_data,
)
from .services import get_batcher, get_engine, get_scheduler, get_token_service

logger = logging.getLogger(__name__)

_ERROR_STATUS = (
    (NeedNotFound, status.HTTP_404_NOT_FOUND),
    (OfferNotFound, status.HTTP_404_NOT_FOUND),
    (QuantityBelowAccepted, status.HTTP_409_CONFLICT),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (StorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def engine_exception_handler(exc, context):
    """
    DRF exception handler: engine errors become JSON responses,
    everything else goes through DRF's default handling.
    """
    for error_class, http_status in _ERROR_STATUS:
        if isinstance(exc, error_class):
            body = {"error": str(exc), "kind": error_class.__name__}
            if isinstance(exc, StorageError):
                body["retryable"] = True
                logger.warning("storage failure in %s: %s", context.get('view').__class__.__name__, exc)
            if isinstance(exc, QuantityBelowAccepted):
                body["accepted"] = exc.accepted
            return Response(body, status=http_status)
    return exception_handler(exc, context)


class RespondView(APIView):
    """
    Public endpoint behind the link in every offer email/SMS.
    GET  ?token=...                      -> offer context or the reason the link is unusable
    POST {token, response}               -> records the answer exactly once
    Races and replays are normal answers (200), never errors.
    """
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    def get(self, request):
        token = request.query_params.get('token')
        if not token:
            return Response({"valid": False, "reason": "invalid", "message": "Token missing"},
                            status=status.HTTP_400_BAD_REQUEST)

        validation = get_token_service().validate(token)
        body = {"valid": validation.valid, "reason": validation.reason.value if validation.reason else None}
        if validation.context is not None:
            body["offer"] = validation.context.as_dict()
        return Response(body)

    def post(self, request):
        serializer = RespondSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = get_token_service().consume(serializer.validated_data['token'], serializer.validated_data['response'])
        return Response({
            "outcome": result.outcome.value,
            "message": result.message,
            "success": result.succeeded,
        })


class SendProgressView(APIView):
    def get(self, request):
        session_id = request.query_params.get('sessionId')
        if not session_id:
            return Response({"error": "sessionId is required"}, status=status.HTTP_400_BAD_REQUEST)
        return Response(get_batcher().progress(session_id).as_dict())


class CronTickView(APIView):
    """
    Runs one reminder/expiry tick. Called by an external scheduler with
    Authorization: Bearer <CRON_SECRET>.
    """
    permission_classes = [permissions.AllowAny]
    authentication_classes = []

    def post(self, request):
        secret = settings.CRON_SECRET
        supplied = request.headers.get('Authorization', '')
        if not secret or not hmac.compare_digest(supplied, f"Bearer {secret}"):
            return Response({"error": "Unauthorized"}, status=status.HTTP_401_UNAUTHORIZED)

        report = get_scheduler().run_tick()
        return Response(report.as_dict())


class VacancyNeedViewSet(mixins.CreateModelMixin,
                         mixins.RetrieveModelMixin,
                         mixins.ListModelMixin,
                         viewsets.GenericViewSet):
    """
    Needs are created here; every state change goes through the engine.
    """
    queryset = VacancyNeed.objects.all().order_by('id')
    serializer_class = VacancyNeedSerializer
    lookup_value_regex = r'\d+'

    @action(detail=True, methods=['post'])
    def open(self, request, pk=None):
        result = get_engine().open_need(int(pk))
        return Response(dispatch_result_data(result))

    @action(detail=True, methods=['post'])
    def close(self, request, pk=None):
        need = get_engine().close_need(int(pk))
        return Response({"status": need.status.value if need else "deleted"})

    @action(detail=True, methods=['post'])
    def pause(self, request, pk=None):
        need = get_engine().pause_need(int(pk))
        return Response({"status": need.status.value})

    @action(detail=True, methods=['post'])
    def resume(self, request, pk=None):
        result = get_engine().resume_need(int(pk))
        return Response(dispatch_result_data(result))

    @action(detail=True, methods=['patch'])
    def quantity(self, request, pk=None):
        serializer = QuantitySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        result = get_engine().update_quantity(int(pk), serializer.validated_data['quantity'])
        return Response(dispatch_result_data(result))

    @action(detail=True, methods=['get'])
    def preview(self, request, pk=None):
        return Response(preview_data(get_engine().preview(int(pk))))

    @action(detail=True, methods=['get'])
    def summary(self, request, pk=None):
        return Response(get_engine().summary(int(pk)).as_dict())


class ProjectViewSet(viewsets.ModelViewSet):
    queryset = Project.objects.all().order_by('id')
    serializer_class = ProjectSerializer

    @action(detail=True, methods=['get'])
    def conflicts(self, request, pk=None):
        project = self.get_object()
        return Response([conflict_data(report) for report in get_engine().conflicts(project.id)])

    # named dispatch_needs: APIView.dispatch must not be shadowed
    @action(detail=True, methods=['post'], url_path='dispatch')
    def dispatch_needs(self, request, pk=None):
        project = self.get_object()
        return Response([dispatch_result_data(result) for result in get_engine().dispatch_project(project.id)])
