"""
Inbox Processing Domain

Drives files dropped into the vault inbox through the processing stages:
- watcher.py - watchdog observer on the inbox folder
- records.py - FileRecord model and the debounced JSON record store
- stages.py - per-stage handlers (validate, extract, classify, move, tag, ...)
- pipeline.py - stage sequencing, bypass/error relocation, retry
- queue.py - worker pool with one active run per record
- queries.py - recent issues and stage timelines
- service.py - process root wiring the components together
"""

__all__ = ["pipeline", "queries", "queue", "records", "service", "stages", "watcher"]
