"""
channels — Per-channel delivery backends.

Each channel module exposes:
    async send(alert, address) → DeliveryAttempt

Channels never raise for transport failures; the returned attempt carries
the outcome. Fan-out and de-duplication live in alerts.broadcast.
"""
