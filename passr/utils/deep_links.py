import json
from typing import Optional
from urllib.parse import quote

# Must match the routing structure of the mobile client
ROUTES = {
    "chat": "/chat",
    "listing_offers": "/profile-listing-offers",
    "my_listings": "/profile-my-listings",
    "past_orders": "/profile-past-orders",
    "product_details": "/product-detail",
}

def create_deep_link(route: str, params: Optional[dict] = None) -> str:
    """Build a client URL such as ``/chat?listingId=1&isSeller=true``; dict/list values are JSON-encoded."""
    if not params:
        return route

    parts = []
    for key, value in params.items():
        if isinstance(value, (dict, list)):
            value = json.dumps(value, separators=(",", ":"), default=str)
        elif isinstance(value, bool):
            value = "true" if value else "false"
        elif value is None:
            value = ""
        parts.append(f"{quote(str(key), safe='')}={quote(str(value), safe='')}")
    return f"{route}?{'&'.join(parts)}"
