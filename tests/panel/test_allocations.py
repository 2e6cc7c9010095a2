from unittest.mock import MagicMock

from gsp.panel.allocations import find_available_allocation
from gsp.panel.resources import Allocation, Page


def _app(*pages):
    app = MagicMock()
    app.list_node_allocations.side_effect = lambda node_id, page=1: Page(
        items=pages[page - 1], total_pages=len(pages),
    )
    return app


def _alloc(id, assigned):
    return Allocation(id=id, ip="10.0.0.1", alias=None, port=27000 + id, assigned=assigned)


def test_returns_first_unassigned_in_page_order():
    app = _app([_alloc(1, True), _alloc(2, True)], [_alloc(3, False), _alloc(4, False)])
    assert find_available_allocation(app, 1).id == 3
    app.list_node_allocations.assert_any_call(1, 1)


def test_returns_none_when_all_assigned():
    app = _app([_alloc(1, True)], [_alloc(2, True)])
    assert find_available_allocation(app, 1) is None


def test_returns_none_for_empty_node():
    app = _app([])
    assert find_available_allocation(app, 1) is None
