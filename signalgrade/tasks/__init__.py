# Background scan tasks (Celery)
