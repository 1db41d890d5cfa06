"""In-memory stand-ins for the external collaborators."""

from hub_engine.lib.errors import UnknownFieldError


class FakeFetcher:
    """
    RecordFetcher stand-in.

    `routes` maps an object type to a list of records or to a callable
    (descriptor) -> records. Any requested field listed in `missing_fields`
    raises UnknownFieldError, mimicking an org without that custom field.
    """

    def __init__(self, routes=None, missing_fields=(), fail_objects=()):
        self.routes = routes or {}
        self.missing_fields = set(missing_fields)
        self.fail_objects = set(fail_objects)
        self.calls = []

    async def query(self, descriptor):
        self.calls.append(descriptor)
        if descriptor.object_type in self.fail_objects:
            raise RuntimeError(f"{descriptor.object_type} unavailable")
        for name in descriptor.fields:
            if name in self.missing_fields:
                raise UnknownFieldError(field=name, object_type=descriptor.object_type)
        route = self.routes.get(descriptor.object_type, [])
        records = route(descriptor) if callable(route) else route
        return {"records": list(records), "totalSize": len(records)}

    def calls_for(self, object_type):
        return [c for c in self.calls if c.object_type == object_type]
