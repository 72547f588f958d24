"""Job scheduling: reference images x prompts become tasks run by an executor.

Jobs live in memory only. Each started job gets one daemon thread that picks
queued tasks in creation order, hands them to the configured executor, and
applies the typed result: done, retry with exponential backoff, rate-limit
cooldown, or error. Pause, resume, and cancel flip flags under the job's lock
and wake the loop through its condition variable.
"""
