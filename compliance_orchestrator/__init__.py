"""Device Compliance & Recovery Orchestrator

Coordinates the lifecycle of financed devices:
- Scans installment schedules for delinquency
- Dispatches lock/unlock directives over push and enterprise MDM channels
- Provisions devices with enrollment tokens and QR payloads
- Reconciles device state from signed webhooks and device callbacks
- Escalates long-locked devices to recovery agents
"""

__version__ = "1.0.0"
