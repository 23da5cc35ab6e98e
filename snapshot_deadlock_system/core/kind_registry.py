from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class CustomKindSpec:
    kind_id: str
    display_name: str
    category: Optional[str] = None
    icon: Optional[str] = None


class CustomKindRegistry:
    """Lookup table of custom entity kinds, populated as kinds are first observed.

    Entries are only ever added; the first registration of a kind id wins.
    """

    def __init__(self):
        self._kinds: Dict[str, CustomKindSpec] = {}

    def register(self, kind_id: str, display_name: Optional[str] = None,
                 category: Optional[str] = None, icon: Optional[str] = None) -> CustomKindSpec:
        """Register a custom kind if it has not been seen yet and return its spec"""
        existing = self._kinds.get(kind_id)
        if existing:
            return existing
        spec = CustomKindSpec(
            kind_id=kind_id,
            display_name=display_name or kind_id,
            category=category,
            icon=icon,
        )
        self._kinds[kind_id] = spec
        return spec

    def get(self, kind_id: str) -> Optional[CustomKindSpec]:
        return self._kinds.get(kind_id)

    def display_name(self, kind_id: str) -> str:
        spec = self._kinds.get(kind_id)
        return spec.display_name if spec else kind_id

    def all_kinds(self) -> List[CustomKindSpec]:
        return list(self._kinds.values())

    def __contains__(self, kind_id: str) -> bool:
        return kind_id in self._kinds

    def __len__(self) -> int:
        return len(self._kinds)


# Process-wide registry shared by every snapshot conversion
custom_kinds = CustomKindRegistry()


def register_custom_kind(kind_id: str, display_name: Optional[str] = None,
                         category: Optional[str] = None, icon: Optional[str] = None) -> CustomKindSpec:
    return custom_kinds.register(kind_id, display_name, category, icon)
