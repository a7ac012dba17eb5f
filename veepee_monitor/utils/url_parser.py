"""
Helpers for Veepee product URLs.
"""
import re
from typing import Optional, Tuple

# https://www.veepee.fr/gr/product/897233/90983689
PRODUCT_URL_PATTERN = re.compile(r'/product/(\d+)/(\d+)')


def parse_product_url(url: str) -> Optional[Tuple[str, str]]:
    """Extract ``(sale_id, item_id)`` from a product URL, or None if it doesn't match."""
    if not url:
        return None
    match = PRODUCT_URL_PATTERN.search(url)
    if not match:
        return None
    return match.group(1), match.group(2)
