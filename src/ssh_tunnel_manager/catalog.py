"""Static catalog of remote applications reachable through tunnels."""

from collections.abc import Iterator, Mapping
from types import MappingProxyType

from .common.exceptions import UnknownApplication
from .common.utils import parse_host_port
from .models import CatalogEntry

DEFAULT_APPS: Mapping[str, str] = MappingProxyType(
    {
        "app1": "app1-host.example.com:3000",
        "app2": "app2-host.example.com:3001",
        "app3": "app3-host.example.com:3002",
        "app4": "app4-host.example.com:3003",
        "app5": "app5-host.example.com:3004",
        "app6": "app6-host.example.com:3005",
        "app7": "app7-host.example.com:3006",
        "app8": "app8-host.example.com:3007",
    }
)


class Catalog:
    """Immutable mapping of application name to catalog entry."""

    def __init__(self, entries: list[CatalogEntry] | tuple[CatalogEntry, ...] = ()):
        """Initialize catalog.

        Args:
            entries: Catalog entries; names must be unique

        Raises:
            ValueError: If two entries share a name
        """
        by_name: dict[str, CatalogEntry] = {}
        for entry in entries:
            if entry.name in by_name:
                raise ValueError(f"Duplicate application '{entry.name}' in catalog")
            by_name[entry.name] = entry
        self._entries = MappingProxyType(by_name)

    @classmethod
    def from_mapping(cls, apps: Mapping[str, str]) -> "Catalog":
        """Build a catalog from ``{name: "host:port"}`` pairs."""
        entries = []
        for name, endpoint in apps.items():
            host, port = parse_host_port(endpoint, f"Application '{name}'")
            entries.append(CatalogEntry(name=name, remote_host=host, remote_port=port))
        return cls(entries)

    @classmethod
    def default(cls, overrides: Mapping[str, str] | None = None) -> "Catalog":
        """Built-in catalog, optionally extended or overridden by name."""
        apps = dict(DEFAULT_APPS)
        if overrides:
            apps.update(overrides)
        return cls.from_mapping(apps)

    def get(self, name: str) -> CatalogEntry:
        """Look up an application.

        Raises:
            UnknownApplication: If the name is not in the catalog
        """
        try:
            return self._entries[name]
        except KeyError:
            raise UnknownApplication(name) from None

    def entries(self) -> list[CatalogEntry]:
        """All entries sorted by name."""
        return sorted(self._entries.values(), key=lambda e: e.name)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._entries))

    def __len__(self) -> int:
        return len(self._entries)
