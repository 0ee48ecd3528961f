"""
Shared Kernel Module
====================

Shared infrastructure used by the SLA bounded context: structured
logging and HTTP middleware.

DO NOT add SLA business logic to the shared kernel.
"""

__version__ = "1.0.0"
