"""
Static route table mapping URL prefixes to services.
"""

from typing import Dict, Iterable, List, Optional, Tuple

from .models import ServiceKey

DEFAULT_ROUTES: Tuple[Tuple[str, ServiceKey], ...] = (
    ("/api/auth", ServiceKey.AUTH),
    ("/api/products", ServiceKey.PRODUCTS),
    ("/api/categories", ServiceKey.PRODUCTS),
    ("/api/manager", ServiceKey.MANAGER),
    ("/api/admin", ServiceKey.ADMIN),
    ("/api/cart", ServiceKey.CART),
)


class RouteTable:
    """Prefix to service lookup.

    Prefixes are consulted longest first, so the outcome does not depend on
    declaration order. Each prefix maps to exactly one service.
    """

    def __init__(self, routes: Iterable[Tuple[str, ServiceKey]] = DEFAULT_ROUTES):
        mapping: Dict[str, ServiceKey] = {}
        for prefix, key in routes:
            if prefix in mapping and mapping[prefix] != key:
                raise ValueError(f"Route prefix {prefix} is mapped to more than one service")
            mapping[prefix] = ServiceKey(key)
        self._mapping = mapping
        self._ordered = sorted(mapping.items(), key=lambda item: len(item[0]), reverse=True)

    def resolve(self, path: str) -> Optional[Tuple[str, ServiceKey]]:
        for prefix, key in self._ordered:
            if path.startswith(prefix):
                return prefix, key
        return None

    def prefixes(self) -> List[str]:
        return list(self._mapping)

    def prefixes_for(self, key: ServiceKey) -> Tuple[str, ...]:
        return tuple(prefix for prefix, owner in self._mapping.items() if owner == key)

    def mapping(self) -> Dict[str, str]:
        return {prefix: key.value for prefix, key in self._mapping.items()}
