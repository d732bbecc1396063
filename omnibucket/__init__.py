"""
Omnibucket: one adapter layer over many object-storage providers.

Supports AWS S3, Cloudflare R2, MinIO, Aliyun OSS, Tencent COS and
Supabase Storage behind a single async interface, plus a bounded
concurrent upload orchestrator.
"""

__version__ = "0.1.0"
