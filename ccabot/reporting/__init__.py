from ccabot.reporting.summary import BidSummary, build_summary, log_summary, persist_summary

__all__ = ["BidSummary", "build_summary", "log_summary", "persist_summary"]
