"""Services for postpay module."""
from .codec import ByteCodec
from .kv_store import MemoryKeyValueStore, JSONFileKeyValueStore
from .staging import StagingStore, generate_file_id
from .api_client import HTTPAPIClient, APIError
from .order_gateway import HTTPOrderGateway
from .upload_sink import HTTPUploadSink, DirectoryUploadSink

__all__ = [
    "ByteCodec",
    "MemoryKeyValueStore",
    "JSONFileKeyValueStore",
    "StagingStore",
    "generate_file_id",
    "HTTPAPIClient",
    "APIError",
    "HTTPOrderGateway",
    "HTTPUploadSink",
    "DirectoryUploadSink",
]
