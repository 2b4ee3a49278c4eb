import threading

from django.core.management.base import BaseCommand

from staffing.services import get_scheduler


class Command(BaseCommand):
    help = "Expire overdue offers and send due reminders (one tick, or forever with --loop)."

    def add_arguments(self, parser):
        parser.add_argument('--loop', action='store_true', help="Keep ticking until interrupted")
        parser.add_argument('--interval', type=float, default=None,
                            help="Seconds between ticks (default: tick_interval_seconds of the policy)")

    def handle(self, *args, **options):
        scheduler = get_scheduler()

        if options['loop']:
            stop = threading.Event()
            try:
                scheduler.run_forever(stop, options['interval'])
            except KeyboardInterrupt:
                stop.set()
            return

        report = scheduler.run_tick()
        self.stdout.write(self.style.SUCCESS(
            f"expired={len(report.expired)} reminded={len(report.reminded)} issued={len(report.issued)}"
        ))
