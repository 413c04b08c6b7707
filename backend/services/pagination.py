"""Offset pagination shared by every paged Jira and GitHub endpoint."""

from typing import Callable, Iterable, Optional


def paginate(fetch_page: Callable[[int, int], dict],
             extract_items: Callable[[dict], list],
             extract_total: Optional[Callable[[dict], Optional[int]]] = None,
             page_size: int = 100) -> list:
    """Fetch every page of an offset/limit endpoint and concatenate the items.

    Args:
        fetch_page: Called with ``(start_at, page_size)``; returns the raw page.
        extract_items: Pulls the item list out of a page.
        extract_total: Pulls the total count out of a page. When it returns
            None the loop stops on the first short page instead.
        page_size: Requested page length.

    Returns:
        All items from all pages, in page order.
    """
    items = []
    start_at = 0

    while True:
        page = fetch_page(start_at, page_size)
        page_items = extract_items(page) or []
        items.extend(page_items)

        # An empty page with offset < total would otherwise loop forever
        if not page_items:
            break

        start_at += len(page_items)

        total = extract_total(page) if extract_total else None
        if total is None:
            if isinstance(page, dict) and page.get("isLast") is True:
                break
            if len(page_items) < page_size:
                break
        elif start_at >= total:
            break

    return items


def chunked(items: Iterable, size: int) -> list:
    """Split ``items`` into lists of at most ``size`` elements."""
    items = list(items)
    return [items[i:i + size] for i in range(0, len(items), size)]
