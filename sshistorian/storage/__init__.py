from sshistorian.storage.metadata import InMemoryMetadataSink, JsonMetadataSink

__all__ = ["InMemoryMetadataSink", "JsonMetadataSink"]
