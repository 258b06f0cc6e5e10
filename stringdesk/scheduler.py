from apscheduler.schedulers.background import BackgroundScheduler
import atexit
from datetime import datetime
from .extensions import db
from .services.order_automation import run_order_automation
from .services.package_automation import run_package_automation

scheduler = BackgroundScheduler()


def init_scheduler(app):
    """Initialize the APScheduler scheduler with Flask app context."""

    @scheduler.scheduled_job("interval", hours=1, id="order_automation")
    def scheduled_task():
        """Cancel unpaid orders, flag overdue work and send pickup reminders."""
        current_time = datetime.now()
        current_time_str = current_time.strftime("%Y-%m-%d %H:%M:%S")

        try:
            with app.app_context():
                result = run_order_automation(current_time)
                print(
                    f"[SCHEDULER] {current_time_str} - "
                    f"cancelled {result['cancelled']['count']}, "
                    f"overdue {result['overdue']['count']}, "
                    f"reminders {result['pickup_reminders']['count']}"
                )
        except Exception as e:
            print(f"[SCHEDULER] {current_time_str} - Error running order automation: {e}")
            with app.app_context():
                db.session.rollback()

    @scheduler.scheduled_job("cron", hour=9, id="package_renewal")
    def package_renewal_task():
        """Expire lapsed packages and remind holders of packages about to expire."""
        current_time = datetime.now()
        current_time_str = current_time.strftime("%Y-%m-%d %H:%M:%S")

        try:
            with app.app_context():
                result = run_package_automation(current_time)
                print(
                    f"[SCHEDULER] {current_time_str} - "
                    f"expired {result['expired']['count']}, "
                    f"renewal reminders {result['renewal_reminders']['count']}"
                )
        except Exception as e:
            print(f"[SCHEDULER] {current_time_str} - Error running package renewal: {e}")
            with app.app_context():
                db.session.rollback()

    if not scheduler.running:
        scheduler.start()
        print("[SCHEDULER] Scheduler started")
    else:
        print("[SCHEDULER] Scheduler already running (skipping duplicate start)")

    atexit.register(lambda: scheduler.shutdown(wait=False) if scheduler.running else None)
