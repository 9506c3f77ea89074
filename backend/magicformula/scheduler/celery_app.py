from celery import Celery
from celery.schedules import crontab

from magicformula.core.config import settings

app = Celery(
    "magicformula",
    include=[
        "magicformula.tasks.buy_positions",
        "magicformula.tasks.sell_positions",
    ],
)
app.conf.broker_url = settings.CELERY_BROKER_URL
app.conf.result_backend = settings.CELERY_RESULT_BACKEND
app.conf.timezone = settings.CELERY_TIMEZONE
app.conf.enable_utc = False

app.conf.beat_schedule = {
    # 09:00 on the first day of each quarter
    "buy-top-ranked-batch": {
        "task": "magicformula.tasks.buy_positions.buy_positions",
        "schedule": crontab(minute=0, hour=9, day_of_month=1, month_of_year="1,4,7,10"),
    },
    # 10:00 on weekdays
    "sell-aged-positions": {
        "task": "magicformula.tasks.sell_positions.sell_positions",
        "schedule": crontab(minute=0, hour=10, day_of_week="1-5"),
    },
}
