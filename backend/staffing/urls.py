from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import CronTickView, ProjectViewSet, RespondView, SendProgressView, VacancyNeedViewSet

router = DefaultRouter()
router.register(r'needs', VacancyNeedViewSet)
router.register(r'projects', ProjectViewSet)

urlpatterns = [
    path('', include(router.urls)),
    path('respond', RespondView.as_view(), name='respond'),
    path('send-progress', SendProgressView.as_view(), name='send-progress'),
    path('cron/tick', CronTickView.as_view(), name='cron-tick'),
]
