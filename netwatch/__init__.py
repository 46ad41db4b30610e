"""NetWatch 告警关联与实时推送后端 (NetWatch alert correlation and realtime fanout backend)."""

__version__ = "0.1.0"
