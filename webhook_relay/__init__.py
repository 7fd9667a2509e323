"""Never-miss-a-webhook relay: ingress, at-least-once queue and delivery worker."""

__version__ = "0.1.0"
