"""
Ingestion-side components.

- buffers.py: thread-safe IMU / pose buffers, single-slot sweep staging,
  pairing queue
- pairing.py: sweep <-> pose bracket matching
"""
