from rest_framework import serializers

from .models import Project, VacancyNeed


class VacancyNeedSerializer(serializers.ModelSerializer):
    class Meta:
        model = VacancyNeed
        fields = '__all__'
        read_only_fields = ['status', 'created_at']

    def validate(self, attrs):
        ranking_list = attrs.get('ranking_list') or getattr(self.instance, 'ranking_list', None)
        position = attrs.get('position') or getattr(self.instance, 'position', None)
        if ranking_list and position and ranking_list.position_id != position.id:
            raise serializers.ValidationError("ranking_list must belong to the need's position")
        return attrs


class ProjectSerializer(serializers.ModelSerializer):
    class Meta:
        model = Project
        fields = '__all__'


class RespondSerializer(serializers.Serializer):
    token = serializers.CharField()
    response = serializers.ChoiceField(choices=['accepted', 'declined'])


class QuantitySerializer(serializers.Serializer):
    quantity = serializers.IntegerField(min_value=1)


def ranked_candidate_data(ranked):
    return {
        "candidateId": ranked.candidate_id,
        "name": ranked.candidate.full_name,
        "rank": ranked.rank,
    }


def resolution_data(resolution):
    return {
        "candidateId": resolution.candidate_id,
        "decision": resolution.decision.value,
        "reason": resolution.reason,
        "chosenNeedId": resolution.chosen_need_id,
        "pendingElsewhere": [offer.need_id for offer in resolution.overlapping_offers],
        "standings": [standing_data(s) for s in resolution.standings],
    }


def standing_data(standing):
    return {
        "needId": standing.need_id,
        "positionName": standing.position_name,
        "listType": standing.list_type,
        "rank": standing.rank,
        "hierarchyLevel": standing.hierarchy_level,
    }


def conflict_data(report):
    return {
        "candidateId": report.candidate_id,
        "candidateName": report.candidate_name,
        "chosenNeedId": report.chosen_need_id,
        "needs": [standing_data(s) for s in report.standings],
    }


def dispatch_result_data(result):
    return {
        "needId": result.need_id,
        "issued": [offer.candidate_id for offer in result.issued],
        "skipped": [resolution_data(r) for r in result.skipped],
        "overlaps": [resolution_data(r) for r in result.overlaps],
        "warnings": [str(w) for w in result.warnings],
        "sessionId": result.session_id,
    }


def preview_data(preview):
    return {
        "needId": preview.need_id,
        "wouldOffer": [ranked_candidate_data(r) for r in preview.would_offer],
        "queue": [ranked_candidate_data(r) for r in preview.queue],
        "skipped": [resolution_data(r) for r in preview.skipped],
        "excluded": [
            {"candidateId": e.candidate_id, "name": e.name, "rank": e.rank, "reason": e.reason}
            for e in preview.excluded
        ],
        "conflicts": [conflict_data(c) for c in preview.conflicts],
        "alreadyContacted": preview.already_contacted,
    }
