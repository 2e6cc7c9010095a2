from gsp.panel.application import ApplicationAPI
from gsp.panel.pagination import fetch_all
from gsp.panel.resources import Allocation


def find_available_allocation(app: ApplicationAPI, node_id: int) -> Allocation | None:
    """First unassigned allocation on the node, in listing order."""
    for allocation in fetch_all(app.list_node_allocations, node_id):
        if not allocation.assigned:
            return allocation
    return None
