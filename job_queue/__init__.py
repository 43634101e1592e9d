"""
Notification bus: decouples calling applications, the scheduler and the processor.

- Calling applications PUBLISH schedule requests to the inbound topic
- The scheduler CONSUMES them and either stores a placement or
  republishes "now" requests to the processor topic
- Supports SNS (production), Redis Streams, and in-memory asyncio queues (dev)
"""
