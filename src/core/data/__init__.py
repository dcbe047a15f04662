"""Data layer — cache-first, failure-tolerant upstream access.

Design: every upstream read goes through FreshnessOrchestrator.read(), which
serves the ResourceCache first and only reaches a provider on a miss, a
forced refresh, or a stale entry (refreshed in the background).
  • Concurrent reads of one key share a single upstream call (UpstreamCoalescer).
  • Rate-limit signals are recorded in the shared BackoffLedger, so no
    instance calls a blocked resource until its window has passed.
  • Switching market-data providers is a config change: entries stamped with
    the old provenance are purged on their next read.

The objects are wired together by src.core.service.create_service(); this
package holds no process-wide instances.
"""
