from typing import Callable

from gsp.panel.resources import Page


def fetch_all(list_page: Callable[..., Page], scope=None) -> list:
    """Drain a paginated listing into one list, in page order.

    ``list_page(page)`` or, for node-scoped listings, ``list_page(scope, page)``.
    Page 1 is fetched first to learn the page count. Items are not deduplicated
    and a failing page propagates its error.
    """
    def _page(number: int) -> Page:
        if scope is not None:
            return list_page(scope, number)
        return list_page(number)

    first = _page(1)
    items = list(first.items)
    for number in range(2, first.total_pages + 1):
        items.extend(_page(number).items)
    return items
