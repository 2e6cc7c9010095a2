from gsp.accounts.tokens import Account
from gsp.control.reconciler import Reconciler
from gsp.errors import AccountServiceError


def _reconciler(fake_panel, state, owner_id=5):
    return Reconciler(fake_panel.app, fake_panel.client, fake_panel.accounts, state, owner_id)


def _seed_local(state, *server_ids):
    location = state.upsert_location(1, short_code="eu", description="Europe")
    node = state.upsert_node(1, panel_location_id=location.id, external_location_id=1, name="node-1")
    for server_id in server_ids:
        state.upsert_server(server_id, panel_node_id=node.id, name=f"server-{server_id}")
    return location, node


class TestDeleteMissingServers:
    def test_keeps_only_servers_the_owner_still_has(self, fake_panel, state, make_server):
        _seed_local(state, 10, 11, 12)
        fake_panel.set(servers=[make_server(id=10, user=5), make_server(id=11, user=6)])

        report = _reconciler(fake_panel, state).delete_not_exists_servers()

        assert [s.server_id for s in state.list_servers()] == [10]
        assert report.deleted == 2

    def test_unresolved_owner_deletes_every_local_server(self, fake_panel, state, make_server):
        _seed_local(state, 10, 11)
        fake_panel.set(servers=[make_server(id=10, user=5), make_server(id=11, user=5)])

        report = _reconciler(fake_panel, state, owner_id=None).delete_not_exists_servers()

        assert state.list_servers() == []
        assert report.deleted == 2

    def test_pending_rows_without_panel_id_are_removed(self, fake_panel, state, make_server):
        _seed_local(state, 10)
        pending = state.create_server(status="pending-install")
        state.add_activity(pending.id, "create", "pending-install")
        fake_panel.set(servers=[make_server(id=10, user=5)])

        _reconciler(fake_panel, state).delete_not_exists_servers()

        assert state.get_server(pending.id) is None
        assert state.list_activities(pending.id) == []
        assert state.get_server_by_server_id(10) is not None


class TestCascade:
    def test_nodes_then_locations_go_once_unreferenced(self, fake_panel, state):
        location, node = _seed_local(state, 10)
        reconciler = _reconciler(fake_panel, state)

        reconciler.delete_not_exists_servers()
        nodes = reconciler.delete_unused_nodes()
        locations = reconciler.delete_unused_locations()

        assert nodes.deleted == 1
        assert locations.deleted == 1
        assert state.get_node(node.id) is None
        assert state.list_locations() == []

    def test_referenced_rows_survive_out_of_order_cleanup(self, fake_panel, state, make_server):
        location, node = _seed_local(state, 10)
        fake_panel.set(servers=[make_server(id=10, user=5)])
        reconciler = _reconciler(fake_panel, state)

        reconciler.delete_unused_locations()
        reconciler.delete_unused_nodes()

        assert state.get_node(node.id) is not None
        assert state.get_location_by_external_id(1) is not None

    def test_reconcile_runs_every_pass_in_order(self, fake_panel, state, make_location, make_node, make_server):
        fake_panel.set(
            locations=[make_location(id=1), make_location(id=2, short="us")],
            nodes=[make_node(id=1, location_id=1), make_node(id=2, location_id=2, name="node-2")],
            servers=[make_server(id=10, user=5, node=1), make_server(id=11, user=6, node=2)],
        )
        statuses = []
        reconciler = Reconciler(
            fake_panel.app, fake_panel.client, fake_panel.accounts, state, 5, on_status=statuses.append,
        )

        reports = reconciler.reconcile()

        assert [r.name for r in reports] == [
            "locations", "nodes", "servers", "missing-servers", "unused-nodes", "unused-locations",
        ]
        assert all(r.ok for r in reports)
        assert [n.external_id for n in state.list_nodes()] == [1]
        assert [loc.external_id for loc in state.list_locations()] == [1]
        assert statuses[0] == "Syncing locations"


class TestPruneOrphanTokens:
    def test_deletes_only_unused_accounts(self, fake_panel, state, make_server):
        fake_panel.set(servers=[make_server(id=10, user=5), make_server(id=11, user=6)])
        fake_panel.accounts.list_accounts.return_value = [
            Account(login_token="token-10", account_id="1"),
            Account(login_token="token-11", account_id="2"),
            Account(login_token="orphan", account_id="3"),
        ]

        report = _reconciler(fake_panel, state).prune_orphan_login_tokens()

        fake_panel.accounts.delete_account.assert_called_once_with("3")
        assert report.deleted == 1

    def test_failed_delete_is_reported(self, fake_panel, state):
        fake_panel.accounts.list_accounts.return_value = [
            Account(login_token="a", account_id="1"),
            Account(login_token="b", account_id="2"),
        ]
        fake_panel.accounts.delete_account.side_effect = [AccountServiceError("nope"), None]

        report = _reconciler(fake_panel, state).prune_orphan_login_tokens()

        assert report.deleted == 1
        assert report.failures == ["account 1: nope"]
