"""
alerts — Health alert workflow and broadcasting.

Sub-modules:
    channels/       — Per-channel delivery backends (email)
    broadcast       — Recipient resolution, de-duplication and fan-out
    alert_service   — Create / approve / deactivate / delete workflow
    auto_alerts     — System-derived alerts from report volume
    models          — Data structures shared across the system
"""
