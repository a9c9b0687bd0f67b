"""ImFine: check-in escalation and trusted-contact alerting service."""
