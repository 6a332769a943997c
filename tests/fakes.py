"""Test doubles shared by the test modules."""

from documents import ObjectNotFound, ObjectStore


class InMemoryObjectStore(ObjectStore):
    """Object store over a dict of path -> url that records every lookup."""

    def __init__(self, objects=None, listing_error=None, resolve_error=None):
        self.objects = dict(objects or {})
        self.listing_error = listing_error
        self.resolve_error = resolve_error
        self.resolved = []
        self.listed = []

    def resolve(self, path):
        self.resolved.append(path)
        if self.resolve_error is not None:
            raise self.resolve_error
        if path not in self.objects:
            raise ObjectNotFound(path)
        return self.objects[path]

    def list(self, prefix):
        self.listed.append(prefix)
        if self.listing_error is not None:
            raise self.listing_error
        return [name for name in self.objects if name.startswith(prefix)]
