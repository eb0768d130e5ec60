"""Request logging and metrics pipeline.

A structured single-line log file written through ``LogSink``, Prometheus
metrics held by ``MetricsRegistry``, and the ``RequestPipelineMiddleware``
that ties both to every HTTP request.
"""
