"""Generic background job queue.

Sub-modules:
- ``queue``    -- ``JobQueue``: enqueue, atomic claim, complete, fail, stale sweep
- ``registry`` -- ``@job_handler`` decorator and handler lookup
- ``handlers`` -- built-in ``cache_warming`` and ``metadata_extraction`` handlers
- ``worker``   -- ``JobWorker`` poll loop with graceful SIGINT / SIGTERM shutdown
"""
