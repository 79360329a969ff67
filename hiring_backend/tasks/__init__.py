"""Analysis tasks: models, worker units, the worker pool and maintenance."""
