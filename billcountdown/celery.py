from celery import Celery

# Create Celery app
celery = Celery("billcountdown")

# Load configuration from billcountdown.config.celeryconfig module
celery.config_from_object("billcountdown.config.celeryconfig")
