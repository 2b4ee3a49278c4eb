from django.db import models
from phonenumber_field.modelfields import PhoneNumberField


class Project(models.Model):
    """
    Optional grouping of needs. Needs of one project share one conflict scope.
    """
    name = models.CharField(max_length=255)
    start_date = models.DateTimeField(blank=True, null=True)

    def __str__(self):
        return self.name


class Position(models.Model):
    """
    A role within a category (e.g. "1st Violin" in "Strings").
    Lower hierarchy_level = more senior; used to break rank ties.
    """
    name = models.CharField(max_length=255)
    category = models.CharField(max_length=255, blank=True)
    hierarchy_level = models.PositiveIntegerField(default=0)

    def __str__(self):
        return self.name


class Candidate(models.Model):
    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        INACTIVE = "inactive", "Inactive"
        ARCHIVED = "archived", "Archived"

    class Channel(models.TextChoices):
        EMAIL = "email", "Email"
        SMS = "sms", "SMS"

    first_name = models.CharField(max_length=150)
    last_name = models.CharField(max_length=150)
    email = models.EmailField()
    # SMS offers fall back to email when no number is on file
    phone_number = PhoneNumberField(blank=True, null=True)
    preferred_channel = models.CharField(max_length=10, choices=Channel.choices, default=Channel.EMAIL)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.ACTIVE)
    local_residence = models.BooleanField(default=False)
    qualifications = models.ManyToManyField(Position, blank=True, related_name='qualified_candidates')

    def __str__(self):
        return f"{self.first_name} {self.last_name}"


class RankingList(models.Model):
    """
    An ordered tier ("A", "B", "C" ...) of candidates for one Position.
    """
    position = models.ForeignKey(Position, on_delete=models.CASCADE, related_name='ranking_lists')
    list_type = models.CharField(max_length=10)
    name = models.CharField(max_length=255, blank=True)

    def __str__(self):
        return f"{self.position} / {self.list_type}"


class Ranking(models.Model):
    ranking_list = models.ForeignKey(RankingList, on_delete=models.CASCADE, related_name='rankings')
    candidate = models.ForeignKey(Candidate, on_delete=models.CASCADE, related_name='rankings')
    rank = models.PositiveIntegerField()

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['ranking_list', 'rank'], name='unique_rank_per_list'),
        ]
        ordering = ['ranking_list', 'rank']


class VacancyNeed(models.Model):
    """
    A request for `quantity` filled slots of one Position.
    Lifecycle: created -> active <-> paused -> completed | archived.
    """
    class Status(models.TextChoices):
        CREATED = "created", "Created"
        ACTIVE = "active", "Active"
        PAUSED = "paused", "Paused"
        COMPLETED = "completed", "Completed"
        ARCHIVED = "archived", "Archived"

    class Strategy(models.TextChoices):
        SEQUENTIAL = "sequential", "Sequential"
        PARALLEL = "parallel", "Parallel"
        FIRST_COME = "first_come", "First come"

    project = models.ForeignKey(Project, on_delete=models.CASCADE, null=True, blank=True, related_name='needs')
    position = models.ForeignKey(Position, on_delete=models.PROTECT, related_name='needs')
    ranking_list = models.ForeignKey(RankingList, on_delete=models.PROTECT, related_name='needs')

    quantity = models.PositiveIntegerField(default=1)
    dispatch_strategy = models.CharField(max_length=20, choices=Strategy.choices, default=Strategy.SEQUENTIAL)
    # first_come only; null = offer every eligible candidate
    max_offers = models.PositiveIntegerField(blank=True, null=True)
    response_window_hours = models.PositiveIntegerField(default=48)
    require_local_residence = models.BooleanField(default=False)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.CREATED)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"Need #{self.id} - {self.position} x{self.quantity} ({self.status})"


class Offer(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        ACCEPTED = "accepted", "Accepted"
        DECLINED = "declined", "Declined"
        EXPIRED = "expired", "Expired"
        SUPERSEDED = "superseded", "Superseded"

    need = models.ForeignKey(VacancyNeed, on_delete=models.CASCADE, related_name='offers')
    candidate = models.ForeignKey(Candidate, on_delete=models.CASCADE, related_name='offers')
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    response = models.CharField(max_length=20, blank=True, null=True)

    sent_at = models.DateTimeField()
    expires_at = models.DateTimeField()
    responded_at = models.DateTimeField(blank=True, null=True)
    reminder_sent_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['need', 'candidate'], name='one_offer_per_candidate_and_need'),
        ]
        indexes = [models.Index(fields=['status', 'expires_at'])]

    def __str__(self):
        return f"Offer #{self.id} - need {self.need_id} to {self.candidate_id} ({self.status})"


class ResponseToken(models.Model):
    token = models.CharField(max_length=128, unique=True)
    offer = models.ForeignKey(Offer, on_delete=models.CASCADE, related_name='tokens')
    created_at = models.DateTimeField()
    expires_at = models.DateTimeField()
    used_at = models.DateTimeField(blank=True, null=True)
    revoked_at = models.DateTimeField(blank=True, null=True)


class EngineSetting(models.Model):
    """
    Process-wide engine settings (reminder_percentage, ranking_conflict_strategy).
    Read into a DispatchPolicy at the start of every cycle.
    """
    key = models.CharField(max_length=100, unique=True)
    value = models.CharField(max_length=255)

    def __str__(self):
        return f"{self.key}={self.value}"
