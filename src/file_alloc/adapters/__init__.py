"""
Adapter layer for file-alloc.

Object store adapters (S3 / in-memory) and job queues (local files / SQS)
selected from the deployment mode.
"""
