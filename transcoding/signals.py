from django.dispatch import Signal

# Sent after every ledger write with kwargs: job_id, status, progress.
# Receivers (UI push, metrics) observe transitions without polling the table.
job_changed = Signal()
