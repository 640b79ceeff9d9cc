"""arq worker settings module.

Import path for arq CLI: arq learnsphere.workers.settings.WorkerSettings
"""

from __future__ import annotations

from learnsphere.workers.progression_worker import WorkerSettings

__all__ = ["WorkerSettings"]
