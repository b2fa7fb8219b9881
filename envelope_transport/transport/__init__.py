"""Envelope delivery transport.

Background pipeline that submits telemetry envelopes over HTTP:
  - Rate Limiter (per-category throttle windows from server responses)
  - Destination Resolver (proxy and TLS selection)
  - Submission Adapter (one POST per envelope via httpx)
  - Delivery Worker (single thread, bounded FIFO queue)
  - Transport Facade (send / flush / shutdown)
"""
