"""
SLA Engine Module
=================

Bounded Context for SLA timers and escalation.

Responsibilities:
- Resolve response/solution budgets from priority and contract template
- Compute deadlines, optionally across business hours
- Classify open tickets on a schedule (on_track, at_risk, breached, ...)
- Escalate once per transition (flag, notify, raise priority)
- Expose stats and scan operations over HTTP
- Hot-reload SLA tuning from YAML via watchdog
"""

__version__ = "1.0.0"
