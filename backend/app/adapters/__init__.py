from app.adapters.report_generator import ReportAdapter
from app.adapters.notifier import EmailNotifier

__all__ = ["ReportAdapter", "EmailNotifier"]
