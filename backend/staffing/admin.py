from django.contrib import admin

from .models import Candidate, EngineSetting, Offer, Position, Project, Ranking, RankingList, VacancyNeed

admin.site.register(Project)
admin.site.register(Position)
admin.site.register(RankingList)
admin.site.register(Ranking)
admin.site.register(EngineSetting)


@admin.register(Candidate)
class CandidateAdmin(admin.ModelAdmin):
    list_display = ('first_name', 'last_name', 'email', 'status', 'local_residence')
    list_filter = ('status',)


@admin.register(VacancyNeed)
class VacancyNeedAdmin(admin.ModelAdmin):
    list_display = ('id', 'position', 'quantity', 'dispatch_strategy', 'status')
    list_filter = ('status', 'dispatch_strategy')
    # status moves only through the engine
    readonly_fields = ('status',)


@admin.register(Offer)
class OfferAdmin(admin.ModelAdmin):
    list_display = ('id', 'need', 'candidate', 'status', 'sent_at', 'expires_at')
    list_filter = ('status',)
